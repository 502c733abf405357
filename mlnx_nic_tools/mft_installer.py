#!/usr/bin/env python3
# SPDX-FileCopyrightText: NVIDIA CORPORATION & AFFILIATES
# Copyright (c) 2026 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
# http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#

"""
Mellanox Firmware Tools (MFT) installer.

Resolves the MFT version to install (user-specified, auto-detected or
fallback), downloads the RPM bundle, runs its installer and verifies
the resulting tools.
"""

import os
import logging
import platform
from typing import Dict, Tuple

from .config import (
    MFT_VERSION_FALLBACK, MFT_DOWNLOAD_PAGE, MFT_BUILD_DEPENDENCIES, MFT_TOOLS
)
from .downloader import download_file, extract_tarball, temporary_workdir
from .platform_utils import (
    run_command, command_exists, is_root, install_packages,
    start_mst_service, get_mst_status, list_cx7_pci_devices
)
from .tool_base import (
    PrerequisiteError, VersionDetectionError, DownloadError, InstallError
)
from .version_scraper import (
    detect_latest_mft_version, validate_mft_version, mft_package_name, mft_package_url
)

SOURCE_SPECIFIED = "User-specified version"
SOURCE_AUTO_DETECTED = "Auto-detected (latest available)"
SOURCE_FALLBACK = "Fallback version"


class MftInstaller:
    """Installs MFT from the NVIDIA download server."""

    def __init__(self, specified_version: str = None, auto_detect: bool = True,
                 fallback_version: str = MFT_VERSION_FALLBACK):
        """
        Initialize the MFT installer.

        Args:
            specified_version: Exact version to install, disables auto-detection
            auto_detect: Detect the latest LTS version from NVIDIA
            fallback_version: Version used when detection is disabled or fails
        """
        self.specified_version = specified_version
        self.auto_detect = auto_detect and not specified_version
        self.fallback_version = fallback_version
        self.logger = logging.getLogger()

        self.version = None
        self.version_source = None

    def check_prerequisites(self) -> None:
        if not is_root():
            raise PrerequisiteError("This command must be run as root")

    def get_mft_version(self) -> Tuple[str, str]:
        """
        Resolve the MFT version to install.

        Returns:
            Tuple of (version, source description)

        Raises:
            InstallError: If the specified or fallback version is malformed
        """
        if self.specified_version:
            if validate_mft_version(self.specified_version):
                self.logger.info(f"✅ Using user-specified version: {self.specified_version}")
                return self.specified_version, SOURCE_SPECIFIED
            raise InstallError(f"User-specified version has invalid format: {self.specified_version}")

        if self.auto_detect:
            self.logger.info("Auto-detection enabled, attempting to find latest LTS version...")
            try:
                version = detect_latest_mft_version()
                if validate_mft_version(version):
                    self.logger.info(f"✅ Using auto-detected version: {version}")
                    return version, SOURCE_AUTO_DETECTED
                self.logger.warning("⚠️  Auto-detected version has invalid format, using fallback")
            except VersionDetectionError:
                self.logger.warning("⚠️  Auto-detection failed, using fallback version")
        else:
            self.logger.info("Auto-detection disabled, using configured version")

        if validate_mft_version(self.fallback_version):
            self.logger.info(f"Using fallback version: {self.fallback_version}")
            return self.fallback_version, SOURCE_FALLBACK

        raise InstallError(f"Fallback version is invalid: {self.fallback_version}")

    def resolve(self) -> Dict[str, str]:
        """Resolve the version and return the installation summary."""
        self.version, self.version_source = self.get_mft_version()
        summary = {
            'version': self.version,
            'package': mft_package_name(self.version),
            'url': mft_package_url(self.version),
            'source': self.version_source
        }
        self.logger.info(f"Selected MFT version: {summary['version']}")
        self.logger.info(f"Package: {summary['package']}")
        self.logger.info(f"Download URL: {summary['url']}")
        return summary

    def install_dependencies(self) -> None:
        self.logger.info("Installing dependencies...")
        if not install_packages(MFT_BUILD_DEPENDENCIES, logger=self.logger):
            self.logger.warning("Some dependencies could not be installed")

        kernel_version = platform.release()
        self.logger.info(f"Current kernel version: {kernel_version}")
        self.logger.info("Installing kernel-devel for current kernel...")
        if not install_packages([f"kernel-devel-{kernel_version}"], logger=self.logger):
            self.logger.warning("Exact kernel-devel match not found, installing latest available")
            install_packages(['kernel-devel'], logger=self.logger)

    def _log_download_hints(self) -> None:
        self.logger.error(f"URL: {mft_package_url(self.version)}")
        self.logger.error(f"Version: {self.version}")
        if self.auto_detect:
            self.logger.info("Auto-detection may have failed. You can try:")
            self.logger.info("1. Run with --no-auto-detect to use fallback version")
            self.logger.info(f"2. Check available versions at: {MFT_DOWNLOAD_PAGE}")
            self.logger.info("3. Specify a version manually: --version X.Y.Z-W")
        else:
            self.logger.info(f"Please check if the version {self.version} is available at:")
            self.logger.info(MFT_DOWNLOAD_PAGE)

    def _install_package(self, workdir: str) -> None:
        try:
            package_path = download_file(mft_package_url(self.version), workdir)
        except DownloadError:
            self.logger.error("Failed to download MFT package")
            self._log_download_hints()
            raise

        extract_tarball(package_path, workdir)

        mft_dir = os.path.join(workdir, f"mft-{self.version}-x86_64-rpm")
        install_script = os.path.join(mft_dir, 'install.sh')
        if not os.path.isfile(install_script):
            raise InstallError("install.sh not found in extracted package")

        self.logger.info("Running MFT installation...")
        result = run_command(['./install.sh'], logger=self.logger, cwd=mft_dir)
        if result.returncode != 0:
            raise InstallError(f"MFT installation failed with return code {result.returncode}")
        self.logger.info("MFT installation completed successfully")

    def verify_tools(self) -> Dict[str, bool]:
        """Check that the MFT tools landed on PATH."""
        self.logger.info("Verifying installation...")
        found = {}
        for tool in MFT_TOOLS:
            found[tool] = command_exists(tool)
            if found[tool]:
                self.logger.info(f"✅ {tool} command available")
            else:
                self.logger.error(f"❌ {tool} command not found")
        return found

    def report_devices(self) -> int:
        self.logger.info("Checking for ConnectX-7 devices...")
        devices = list_cx7_pci_devices(logger=self.logger)
        if devices:
            self.logger.info(f"✅ Found {len(devices)} ConnectX-7 device(s)")
            for _, line in devices:
                self.logger.info(line)
        else:
            self.logger.warning("⚠️  No ConnectX-7 devices detected")
        return len(devices)

    def install(self) -> Dict[str, bool]:
        """
        Run the complete MFT installation.

        Returns:
            Tool availability after installation

        Raises:
            PrerequisiteError: If not running as root
            DownloadError: If the package cannot be downloaded or extracted
            InstallError: If the bundled installer fails
        """
        self.check_prerequisites()

        if not self.version:
            self.resolve()

        self.install_dependencies()

        with temporary_workdir(prefix='mft-') as workdir:
            self._install_package(workdir)

        start_mst_service(logger=self.logger)
        tools = self.verify_tools()

        self.logger.info("MST Status:")
        for line in get_mst_status(logger=self.logger).splitlines():
            self.logger.info(line)

        self.report_devices()
        return tools
