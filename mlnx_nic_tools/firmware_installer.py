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
ConnectX-7 firmware installer.

Maps each detected PSID to a firmware archive, downloads it, verifies it
against the device with flint and burns it after confirmation.
"""

import os
import time
import logging
import subprocess
from typing import Callable, Dict, List, Optional

from .config import FIRMWARE_MAP_FALLBACK, FIRMWARE_PAGE_URL, FIRMWARE_BACKUP_DIR, FirmwareConfig
from .device_manager import Cx7Device, DeviceManager
from .downloader import download_file, extract_zip, find_file, temporary_workdir
from .platform_utils import run_command, command_exists, is_root, start_mst_service
from .tool_base import (
    NicToolError, PrerequisiteError, DownloadError, FirmwareBurnPartialError,
    BurnStatus, BurnStatusType, BurnSummary
)
from .version_scraper import detect_latest_firmware, firmware_url

SOURCE_AUTO_DETECTED = "Auto-detected (latest available)"
SOURCE_STATIC = "Static fallback mappings"


class FirmwareInstaller:
    """Downloads and burns ConnectX-7 firmware matched by PSID."""

    def __init__(self, auto_detect: bool = True, force: bool = False, config_path: str = None,
                 confirm: Optional[Callable[[str], bool]] = None):
        """
        Initialize the firmware installer.

        Args:
            auto_detect: Detect the latest firmware from NVIDIA instead of static mappings
            force: Bypass flint compatibility checks (allows PSID/ROM changes)
            config_path: Static firmware configuration file
            confirm: Callback asked before each burn; None burns without asking
        """
        self.auto_detect = auto_detect
        self.force = force
        self.config_path = config_path
        self.confirm = confirm
        self.logger = logging.getLogger()

        self.firmware_map = {}
        self.mapping_source = None
        self.device_manager = DeviceManager()

    def check_prerequisites(self) -> None:
        """
        Raises:
            PrerequisiteError: If not root or MFT tools are missing
        """
        if not is_root():
            raise PrerequisiteError("This command must be run as root (use sudo)")

        self.logger.info("Checking MFT tools installation...")
        for tool in ('flint', 'mst'):
            if not command_exists(tool):
                raise PrerequisiteError(f"{tool} command not found. Please install MFT tools first "
                                        f"using 'mlnx-nic-tools install-mft'")
        self.logger.info("✅ MFT tools are installed")

        start_mst_service(logger=self.logger)

    def _static_mappings(self) -> Dict[str, str]:
        mappings = dict(FIRMWARE_MAP_FALLBACK)
        config = FirmwareConfig(self.config_path)
        mappings.update(config.get_firmware_map())
        return mappings

    def load_firmware_mappings(self) -> Dict[str, str]:
        """
        Load PSID to firmware mappings, auto-detected or static.

        Raises:
            NicToolError: If no mappings are available
        """
        self.firmware_map = {}

        if self.auto_detect:
            self.logger.info("Auto-detection enabled, attempting to find latest firmware versions...")
            detected = detect_latest_firmware()
            if detected:
                self.logger.info("✅ Using auto-detected firmware mappings")
                self.firmware_map = detected
                self.mapping_source = SOURCE_AUTO_DETECTED
            else:
                self.logger.warning("⚠️  Auto-detection failed, falling back to static mappings")
        else:
            self.logger.info("Auto-detection disabled, using static mappings")

        if not self.firmware_map:
            self.logger.info("Loading fallback firmware mappings...")
            self.firmware_map = self._static_mappings()
            self.mapping_source = SOURCE_STATIC

        if not self.firmware_map:
            raise NicToolError("No firmware mappings available")

        for psid, firmware_file in sorted(self.firmware_map.items()):
            self.logger.info(f"  PSID {psid} -> {firmware_file}")

        return self.firmware_map

    def detect_devices(self) -> List[Cx7Device]:
        return self.device_manager.detect()

    def _log_missing_mapping(self, psid: str) -> None:
        self.logger.error(f"No firmware mapping found for PSID: {psid}")
        self.logger.error("Available PSIDs in current mappings:")
        for available in sorted(self.firmware_map):
            self.logger.error(f"  - {available}")

        if self.auto_detect:
            self.logger.info("Auto-detection may have failed for this PSID. You can try:")
            self.logger.info("1. Run with --no-auto-detect to use fallback mappings")
            self.logger.info(f"2. Check available firmware at: {FIRMWARE_PAGE_URL}")
            self.logger.info("3. Add the PSID to firmware-config.json and pass it with --config")
        else:
            self.logger.info(f"Please add a mapping for PSID {psid} to firmware-config.json")

    def download_firmware(self, psid: str, workdir: str) -> str:
        """
        Download and unpack the firmware image for a PSID.

        Returns:
            Path of a short-named symlink to the extracted .bin image

        Raises:
            NicToolError: If no mapping exists for the PSID
            DownloadError: If the download or extraction fails
        """
        firmware_file = self.firmware_map.get(psid)
        if not firmware_file:
            self._log_missing_mapping(psid)
            raise NicToolError(f"No firmware available for PSID: {psid}")

        self.logger.info(f"Downloading firmware for PSID {psid}...")
        psid_dir = os.path.join(workdir, psid)
        os.makedirs(psid_dir, exist_ok=True)

        archive = download_file(firmware_url(firmware_file), psid_dir)
        self.logger.info("✅ Firmware download completed")

        extract_zip(archive, psid_dir)
        self.logger.info("✅ Firmware extracted successfully")

        bin_file = find_file(psid_dir, '*.bin')
        if not bin_file:
            raise DownloadError("Could not find .bin file in extracted firmware")
        self.logger.info(f"Found firmware binary: {bin_file}")

        # flint rejects the long vendor file names
        short_path = os.path.join(workdir, f"cx7_fw_{psid}.bin")
        if os.path.lexists(short_path):
            os.remove(short_path)
        os.symlink(bin_file, short_path)
        self.logger.info(f"Created short symlink: {short_path}")
        return short_path

    def verify_compatibility(self, device: Cx7Device, image: str) -> bool:
        """Check the image against the device with ``flint verify``."""
        self.logger.info(f"Verifying firmware compatibility for device {device.pci_address}...")
        self.logger.info(f"Using firmware file: {image}")

        if not os.path.isfile(image):
            self.logger.error(f"❌ Firmware file does not exist: {image}")
            return False

        cmd = ['flint', '-d', device.pci_address, '-i', image, 'verify']
        if self.force:
            cmd.extend(['--allow_psid_change', '--allow_rom_change'])
            self.logger.warning("⚠️  Force mode enabled - bypassing some compatibility checks")

        result = run_command(cmd, logger=self.logger, capture_output=True, text=True)
        if result.returncode == 0:
            self.logger.info(f"✅ Firmware compatibility verified for device {device.pci_address}")
            return True

        if self.force:
            self.logger.warning("⚠️  Compatibility check failed but force mode enabled - proceeding anyway")
            return True

        self.logger.error(f"❌ Firmware compatibility check failed for device {device.pci_address}: "
                          f"{(result.stderr or result.stdout or '').strip()}")
        self.logger.info("💡 Try using --force to bypass compatibility checks (use with caution)")
        return False

    def backup_firmware(self, device: Cx7Device) -> Optional[str]:
        """Read the current image off the device. Failure is not fatal."""
        self.logger.info("Creating firmware backup...")
        safe_name = device.pci_address.replace(':', '_').replace('/', '_')
        backup_file = os.path.join(FIRMWARE_BACKUP_DIR,
                                   f"firmware_backup_{safe_name}_{time.strftime('%Y%m%d_%H%M%S')}.bin")
        try:
            result = run_command(['flint', '-d', device.pci_address, 'read', backup_file],
                                 logger=self.logger, capture_output=True, text=True)
        except OSError as e:
            self.logger.warning(f"Could not create firmware backup: {e}")
            return None

        if result.returncode != 0:
            self.logger.warning("Could not create firmware backup")
            return None

        self.logger.info(f"✅ Firmware backup created: {backup_file}")
        return backup_file

    def burn(self, device: Cx7Device, image: str) -> bool:
        """Burn an image to a device through its MST path."""
        self.logger.info(f"Burning firmware to device {device.pci_address} ({device.mst_device})...")
        self.logger.info(f"Firmware file: {image}")

        self.backup_firmware(device)

        self.logger.info("Starting firmware burn process...")
        self.logger.warning("⚠️  Do not interrupt this process or power off the system!")
        try:
            result = run_command(['flint', '-d', device.mst_device, '-i', image, 'burn', '-y'],
                                 logger=self.logger)
        except (OSError, subprocess.SubprocessError) as e:
            self.logger.error(f"❌ Firmware burn failed for device {device.pci_address}: {e}")
            return False

        if result.returncode == 0:
            self.logger.info(f"✅ Firmware burned successfully to device {device.pci_address}")
            return True

        self.logger.error(f"❌ Firmware burn failed for device {device.pci_address}")
        return False

    def _confirm_burn(self, device: Cx7Device, image: str) -> bool:
        if self.confirm is None:
            return True
        message = (f"⚠️  FIRMWARE BURN WARNING ⚠️\n"
                   f"About to burn firmware to device: {device.pci_address}\n"
                   f"PSID: {device.psid}\n"
                   f"Firmware: {os.path.basename(self.firmware_map.get(device.psid, image))}\n"
                   f"Continue with firmware burn?")
        return self.confirm(message)

    def install(self, devices: List[Cx7Device] = None) -> BurnSummary:
        """
        Download, verify and burn firmware for every detected device.

        Args:
            devices: Devices to update, detected when not given

        Returns:
            Per-device burn results
        """
        if devices is None:
            devices = self.detect_devices()
        if not self.firmware_map:
            self.load_firmware_mappings()

        psids = self.device_manager.unique_psids(devices)
        self.logger.info(f"Unique PSIDs detected: {' '.join(psids)}")

        summary = BurnSummary()
        with temporary_workdir(prefix='cx7-fw-') as workdir:
            images = {psid: self.download_firmware(psid, workdir) for psid in psids}

            for device in devices:
                image = images[device.psid]
                self.logger.info(f"Processing device {device.pci_address} with PSID {device.psid}...")

                if not self.verify_compatibility(device, image):
                    self.logger.error(f"❌ Skipping device {device.pci_address} due to compatibility issues")
                    summary.add(BurnStatus(device.pci_address, BurnStatusType.SKIPPED,
                                           "Compatibility check failed", device.psid, image))
                    continue

                if not self._confirm_burn(device, image):
                    self.logger.info(f"Firmware burn cancelled by user for device {device.pci_address}")
                    summary.add(BurnStatus(device.pci_address, BurnStatusType.CANCELLED,
                                           "Cancelled by user", device.psid, image))
                    continue

                if self.burn(device, image):
                    summary.add(BurnStatus(device.pci_address, BurnStatusType.SUCCESS,
                                           "Firmware burned", device.psid, image))
                else:
                    summary.add(BurnStatus(device.pci_address, BurnStatusType.FAILED,
                                           "Firmware burn failed", device.psid, image))

        self.logger.info(f"Firmware installation completed: {summary.success_count}/{summary.total} devices updated")
        if summary.reboot_required:
            self.logger.warning("⚠️  REBOOT REQUIRED: Please reboot the system to activate new firmware")

        if summary.failure_count and summary.success_count:
            failed = [s.pci_address for s in summary.statuses if s.status == BurnStatusType.FAILED]
            raise FirmwareBurnPartialError(
                f"{summary.failure_count}/{summary.total} device(s) failed: {', '.join(failed)}")

        return summary
