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
Configuration constants and the static firmware configuration file.

URLs, fallback versions and probe lists used by the version scraper,
log file locations for each workflow and the firmware-config.json loader.
"""

import os
import json
import logging
from typing import Dict, List, Optional

from .tool_base import NicToolError

# MFT
MFT_VERSION_FALLBACK = "4.30.1-1210"
MFT_DOWNLOAD_PAGE = "https://network.nvidia.com/products/adapter-software/firmware-tools/"
MFT_DOWNLOAD_BASE_URL = "https://www.mellanox.com/downloads/MFT"
MFT_PROBE_VERSIONS = [
    "4.30.1-1210",
    "4.29.1-1200",
    "4.28.1-1190",
    "4.27.1-1180",
    "4.26.1-1170",
]
MFT_BUILD_DEPENDENCIES = ['gcc', 'rpm-build', 'make', 'elfutils-libelf-devel', 'perl', 'lshw']
MFT_TOOLS = ['mlxconfig', 'mlxlink', 'flint']

# ConnectX-7 firmware
FIRMWARE_BASE_URL = "https://www.mellanox.com/downloads/firmware"
FIRMWARE_PAGE_URL = "https://network.nvidia.com/support/firmware/connectx7/"
FIRMWARE_MAP_FALLBACK = {
    'MT_0000000834': 'fw-ConnectX7-rel-28_43_3608-MCX755106AS-HEA_Ax-UEFI-14.37.50-FlexBoot-3.7.500.signed.bin.zip',
    'MT_0000000833': 'fw-ConnectX7-rel-28_43_3608-MCX755106AS-HEA_Ax-UEFI-14.37.50-FlexBoot-3.7.500.signed.bin.zip',
}
FIRMWARE_PROBE_VERSIONS = [
    '28_43_3608',
    '28_42_1000',
    '28_41_1000',
    '28_40_1000',
    '28_39_3560',
]
FIRMWARE_UEFI_VERSIONS = {
    '28_43_3608': '14.37.50',
    '28_42_1000': '14.35.20',
    '28_41_1000': '14.33.17',
    '28_40_1000': '14.32.17',
    '28_39_3560': '14.32.17',
}
FIRMWARE_FLEXBOOT_VERSIONS = {
    '28_43_3608': '3.7.500',
    '28_42_1000': '3.7.400',
    '28_41_1000': '3.7.300',
    '28_40_1000': '3.7.300',
    '28_39_3560': '3.7.300',
}
DEFAULT_UEFI_VERSION = '14.32.17'
DEFAULT_FLEXBOOT_VERSION = '3.7.300'

# Probe order matters: the first model found wins.
FIRMWARE_MODEL_PSIDS = [
    ('MCX755106AS-HEA_Ax', ['MT_0000000834', 'MT_0000000833']),
    ('MCX755105AS-HEA_Ax', ['MT_0000000835']),
]
FIRMWARE_BACKUP_DIR = "/tmp"

# mlxup
MLXUP_PAGE_URL = "https://network.nvidia.com/support/firmware/mlxup-mft/"
MLXUP_DEFAULT_VERSION = "4.30.0"
MLXUP_INSTALL_PATH = "/usr/local/bin/mlxup"

# Hardware
CX7_LSPCI_PATTERNS = ['MT2910', 'ConnectX-7']
CX7_LSHW_PRODUCT = "MT2910 Family [ConnectX-7]"
SYSFS_NET_PATH = "/sys/class/net"
DEFAULT_NUM_VFS = 127
VF_SETTLE_SECONDS = 2
TEMP_WARNING_THRESHOLD = 80
TEMP_CAUTION_THRESHOLD = 70

# systemd
VF_SERVICE_NAME = "create-vf.service"
VF_SERVICE_PATH = "/etc/systemd/system/create-vf.service"

# Logs
MFT_INSTALL_LOG = "/var/log/mft-install.log"
FIRMWARE_INSTALL_LOG = "/var/log/cx7-firmware-install.log"
MLXUP_LOG = "/var/log/cx7-firmware-mlxup.log"
CREATE_VF_LOG = "/var/log/create-vf.log"
VF_SERVICE_LOG = "/var/log/vf-service-install.log"

LOCK_FILE = "/tmp/mlnx-nic-tools-lock"

DEFAULT_CONFIG_FILE = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'firmware-config.json')

DEFAULT_NOTES = [
    "This is a personal reference project - test thoroughly in lab!",
    "Always backup current firmware before updates",
    "Verify PSID compatibility before installation",
    "Reboot required after firmware installation",
]


def env_flag(name: str, default: bool = True) -> bool:
    """Read a true/false switch from the environment."""
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() not in ('false', '0', 'no', 'off')


class FirmwareConfig:
    """Static PSID to firmware mappings loaded from firmware-config.json."""

    def __init__(self, path: Optional[str] = None):
        self.path = path or DEFAULT_CONFIG_FILE
        self.logger = logging.getLogger()
        self.firmware_mappings = {}
        self.latest_lts_versions = {}
        self.notes = []
        self._load()

    def _load(self) -> None:
        if not os.path.exists(self.path):
            raise NicToolError(f"Configuration file not found: {self.path}")

        try:
            with open(self.path, 'r') as f:
                data = json.load(f)
        except (ValueError, IOError) as e:
            raise NicToolError(f"Invalid firmware configuration {self.path}: {e}")

        if not isinstance(data, dict) or not isinstance(data.get('firmware_mappings'), dict):
            raise NicToolError(f"Missing 'firmware_mappings' in {self.path}")

        for psid, entry in data['firmware_mappings'].items():
            if not isinstance(entry, dict) or not entry.get('firmware_file'):
                raise NicToolError(f"Mapping for PSID {psid} has no 'firmware_file' in {self.path}")

        latest_lts_versions = data.get('latest_lts_versions', {})
        if not isinstance(latest_lts_versions, dict):
            raise NicToolError(f"'latest_lts_versions' must be an object in {self.path}")

        notes = data.get('notes', [])
        if not isinstance(notes, list) or not all(isinstance(note, str) for note in notes):
            raise NicToolError(f"'notes' must be a list of strings in {self.path}")

        self.firmware_mappings = data['firmware_mappings']
        self.latest_lts_versions = latest_lts_versions
        self.notes = notes
        self.logger.debug(f"Loaded {len(self.firmware_mappings)} firmware mapping(s) from {self.path}")

    def get_firmware_map(self) -> Dict[str, str]:
        """Get the PSID to firmware file mapping."""
        return {psid: entry['firmware_file'] for psid, entry in self.firmware_mappings.items()}

    def describe_mappings(self) -> List[str]:
        lines = []
        for psid, entry in self.firmware_mappings.items():
            lines.append(f"PSID: {psid} - Version: {entry.get('version', 'unknown')} - "
                         f"{entry.get('description', '')}")
        return lines
