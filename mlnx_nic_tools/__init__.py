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
Mellanox ConnectX-7 NIC Tools Package

This package installs Mellanox Firmware Tools and mlxup, updates
ConnectX-7 firmware, configures SR-IOV virtual functions and reports
adapter health.
"""
__version__ = "1.0.0"
__author__ = "SONiC Team"

from .tool_base import (
    NicToolError,
    PrerequisiteError,
    VersionDetectionError,
    DownloadError,
    InstallError,
    FirmwareBurnError,
    FirmwareBurnPartialError,
    SriovError
)
from .config import FirmwareConfig
from .device_manager import DeviceManager
from .firmware_installer import FirmwareInstaller
from .mft_installer import MftInstaller
from .mlxup_manager import MlxupManager
from .sriov_manager import SriovManager, VfServiceInstaller
from .health_check import HealthChecker
__all__ = [
    'NicToolError',
    'PrerequisiteError',
    'VersionDetectionError',
    'DownloadError',
    'InstallError',
    'FirmwareBurnError',
    'FirmwareBurnPartialError',
    'SriovError',
    'FirmwareConfig',
    'DeviceManager',
    'FirmwareInstaller',
    'MftInstaller',
    'MlxupManager',
    'SriovManager',
    'VfServiceInstaller',
    'HealthChecker'
]
