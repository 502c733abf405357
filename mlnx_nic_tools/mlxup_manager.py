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
mlxup firmware manager.

Installs NVIDIA's mlxup updater when missing and uses it to query and
apply ConnectX-7 firmware updates.
"""

import os
import time
import shutil
import logging
from typing import Callable, Optional

from .config import MLXUP_PAGE_URL, MLXUP_INSTALL_PATH
from .downloader import download_first_available, extract_tarball, find_file, temporary_workdir
from .platform_utils import (
    run_command, command_exists, is_root, start_mst_service, list_cx7_pci_devices
)
from .tool_base import (
    NicToolError, PrerequisiteError, DownloadError, InstallError, FirmwareBurnError
)
from .version_scraper import detect_mlxup_version, mlxup_download_urls

MST_SETTLE_SECONDS = 2


class MlxupManager:
    """Firmware updates through mlxup."""

    def __init__(self, force: bool = False, confirm: Optional[Callable[[str], bool]] = None,
                 install_path: str = MLXUP_INSTALL_PATH):
        """
        Initialize the mlxup manager.

        Args:
            force: Pass --force to mlxup (reinstall even if same version)
            confirm: Callback asked before updating; None updates without asking
            install_path: Where a downloaded mlxup binary is installed
        """
        self.force = force
        self.confirm = confirm
        self.install_path = install_path
        self.logger = logging.getLogger()
        self.last_query_output = ''

    def installed_version(self) -> str:
        try:
            result = run_command(['mlxup', '--version'], logger=self.logger, capture_output=True, text=True)
        except OSError:
            return "unknown"
        lines = (result.stdout or '').strip().splitlines()
        return lines[0] if result.returncode == 0 and lines else "unknown"

    def _install_binary(self, source: str) -> bool:
        self.logger.info(f"Installing mlxup to {os.path.dirname(self.install_path)}/")
        shutil.copyfile(source, self.install_path)
        os.chmod(self.install_path, 0o755)

        if command_exists('mlxup'):
            self.logger.info(f"✅ mlxup installed successfully: {self.installed_version()}")
            return True
        return False

    def _install_from_cwd(self) -> bool:
        local = os.path.join(os.getcwd(), 'mlxup')
        if not os.path.isfile(local):
            return False

        self.logger.info("✅ mlxup binary found in current directory")
        if self._install_binary(local):
            return True
        self.logger.warning("⚠️  mlxup installation verification failed, trying other methods...")
        return False

    def _link_from_mft(self) -> bool:
        mst_path = shutil.which('mst')
        if not mst_path:
            return False

        candidate = os.path.join(os.path.dirname(os.path.realpath(mst_path)), 'mlxup')
        if not os.path.isfile(candidate):
            return False

        self.logger.info(f"✅ mlxup found in MFT installation: {candidate}")
        if not command_exists('mlxup'):
            if os.path.lexists(self.install_path):
                os.remove(self.install_path)
            os.symlink(candidate, self.install_path)
        return True

    def _install_from_package_manager(self) -> bool:
        searches = [
            ('yum', ['yum', 'search', 'mlxup'], ['yum', 'install', '-y', 'mlxup']),
            ('apt-get', ['apt-cache', 'search', 'mlxup'], ['apt-get', 'install', '-y', 'mlxup']),
        ]
        for manager, search_cmd, install_cmd in searches:
            if not command_exists(manager):
                continue
            search = run_command(search_cmd, logger=self.logger, capture_output=True, text=True)
            if 'mlxup' not in (search.stdout or ''):
                return False
            self.logger.info(f"Found mlxup in {manager} repositories, attempting installation...")
            result = run_command(install_cmd, logger=self.logger, capture_output=True, text=True)
            if result.returncode == 0:
                self.logger.info(f"✅ mlxup installed via {manager}")
                return True
            return False
        return False

    def _log_manual_instructions(self, version: str) -> None:
        self.logger.info("Manual download instructions:")
        self.logger.info(f"1. Visit: {MLXUP_PAGE_URL}")
        self.logger.info(f"2. Look for mlxup version {version}")
        self.logger.info("3. Download the Linux x64 package")
        self.logger.info(f"4. Extract and copy mlxup binary to {os.path.dirname(self.install_path)}/")

    def download_mlxup(self) -> None:
        """
        Download mlxup from NVIDIA and install it.

        Raises:
            InstallError: If every download URL and the package manager fail
        """
        self.logger.info("Downloading mlxup from NVIDIA website...")
        version = detect_mlxup_version()
        self.logger.info(f"Using mlxup version: {version}")

        urls = mlxup_download_urls(version)
        self.logger.info(f"Primary download URL: {urls[0]}")

        def name_for(url):
            return f"mlxup-{version}" if os.path.basename(url) == 'mlxup' else None

        with temporary_workdir(prefix='mlxup-') as workdir:
            try:
                url, path = download_first_available(urls, workdir, name_for=name_for)
            except DownloadError:
                self.logger.info("Trying fallback: checking for mlxup in package repositories...")
                if self._install_from_package_manager():
                    return
                self._log_manual_instructions(version)
                raise InstallError("Failed to download mlxup automatically")

            if os.path.basename(url) == 'mlxup':
                self.logger.info(f"Downloaded mlxup binary directly: {path}")
                binary = path
            else:
                self.logger.info(f"Extracting mlxup archive: {path}")
                extract_tarball(path, workdir)
                self.logger.info("✅ mlxup archive extracted successfully")
                binary = find_file(workdir, 'mlxup', executable=True)
                if not binary:
                    raise InstallError("mlxup binary not found in extracted archive")

            if not self._install_binary(binary):
                raise InstallError("mlxup installation verification failed")

    def ensure_mlxup(self) -> None:
        """Make mlxup available, installing it if needed."""
        if command_exists('mlxup'):
            return

        self.logger.info("mlxup not found, attempting to install...")
        if self._install_from_cwd() or self._link_from_mft():
            return

        self.logger.info("mlxup not found locally or in MFT installation, downloading from NVIDIA...")
        self.download_mlxup()

    def check_prerequisites(self) -> int:
        """
        Prepare the host for mlxup.

        Returns:
            Number of ConnectX-7 devices found

        Raises:
            PrerequisiteError: If not root or MST tools are missing
            NicToolError: If no ConnectX-7 device is present
        """
        if not is_root():
            raise PrerequisiteError("This command must be run as root (use sudo)")

        self.logger.info("Checking MFT tools installation...")
        if not command_exists('mst'):
            raise PrerequisiteError("MST tools not found. Please install MFT first using "
                                    "'mlnx-nic-tools install-mft'")
        self.ensure_mlxup()
        self.logger.info("✅ MFT tools are available")

        start_mst_service(logger=self.logger, quiet=True)
        time.sleep(MST_SETTLE_SECONDS)

        self.logger.info("Detecting ConnectX-7 devices...")
        devices = list_cx7_pci_devices(logger=self.logger)
        if not devices:
            raise NicToolError("No ConnectX-7 devices detected")

        self.logger.info(f"✅ Found {len(devices)} ConnectX-7 device(s)")
        for _, line in devices:
            self.logger.info(f"  {line}")
        return len(devices)

    def query(self) -> bool:
        """Run ``mlxup --query``. Returns True when the query succeeded."""
        self.logger.info("Querying available firmware updates...")
        try:
            result = run_command(['mlxup', '--query'], logger=self.logger, capture_output=True, text=True)
        except OSError as e:
            self.logger.error(f"Failed to run mlxup query: {e}")
            self.last_query_output = ''
            return False
        self.last_query_output = result.stdout or ''
        for line in self.last_query_output.splitlines():
            self.logger.info(line)

        if result.returncode == 0:
            self.logger.info("✅ Firmware query completed successfully")
            return True

        self.logger.warning("⚠️  Firmware query completed with warnings or no updates available")
        return False

    def update_available(self) -> bool:
        """Whether the last query reported a device needing an update."""
        return 'update required' in self.last_query_output.lower()

    def update(self) -> bool:
        """
        Apply firmware updates with mlxup.

        Returns:
            True if the update ran, False if the user cancelled

        Raises:
            FirmwareBurnError: If the query or update fails
        """
        self.logger.info("Starting firmware update process...")
        if self.force:
            self.logger.warning("⚠️  Force mode enabled")

        self.logger.info("Checking for firmware updates...")
        if not self.query():
            raise FirmwareBurnError("No firmware updates available or query failed")

        if self.confirm is not None:
            message = ("⚠️  FIRMWARE UPDATE WARNING ⚠️\n"
                       "About to update firmware on all ConnectX-7 devices\n"
                       "This process:\n"
                       "- Will automatically download and install compatible firmware\n"
                       "- May require a system reboot to complete\n"
                       "- Should not be interrupted once started\n"
                       "Continue with firmware update?")
            if not self.confirm(message):
                self.logger.info("Firmware update cancelled by user")
                return False

        cmd = ['mlxup']
        if self.force:
            cmd.append('--force')

        self.logger.info("Executing firmware update...")
        try:
            result = run_command(cmd, logger=self.logger)
        except OSError as e:
            self.logger.error("❌ Firmware update failed")
            raise FirmwareBurnError(f"Failed to run mlxup: {e}")
        if result.returncode != 0:
            self.logger.error("❌ Firmware update failed")
            raise FirmwareBurnError(f"mlxup failed with return code {result.returncode}")

        self.logger.info("✅ Firmware update completed successfully")
        return True
