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
Exceptions, exit codes and result types shared by all NIC tool workflows.
"""
from __future__ import annotations

from enum import Enum
from typing import List

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
FW_UPDATE_IS_AVAILABLE = 10


class NicToolError(Exception):
    """Base exception for NIC tool errors."""
    pass


class PrerequisiteError(NicToolError):
    """Raised when a required vendor tool or privilege is missing."""
    pass


class VersionDetectionError(NicToolError):
    """Raised when no version could be detected from any source."""
    pass


class DownloadError(NicToolError):
    """Raised when an artifact cannot be downloaded or extracted."""
    pass


class InstallError(NicToolError):
    """Raised when a package or tool installation fails."""
    pass


class FirmwareBurnError(NicToolError):
    """Raised when firmware could not be burned to any device."""
    pass


class FirmwareBurnPartialError(NicToolError):
    """Raised when some device burns fail."""
    pass


class SriovError(NicToolError):
    """Raised when virtual functions cannot be configured."""
    pass


class BurnStatusType(Enum):
    """Enum for per-device firmware burn outcomes."""
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


class BurnStatus:
    """Outcome of a firmware burn on a single device."""

    def __init__(self, pci_address: str, status: BurnStatusType, message: str = "",
                 psid: str = None, firmware_file: str = None):
        self.pci_address = pci_address
        self.status = status
        self.message = message
        self.psid = psid
        self.firmware_file = firmware_file


class BurnSummary:
    """Aggregated burn results for one installer run."""

    def __init__(self, statuses: List[BurnStatus] = None):
        self.statuses = statuses or []

    def add(self, status: BurnStatus) -> None:
        self.statuses.append(status)

    @property
    def total(self) -> int:
        return len(self.statuses)

    @property
    def success_count(self) -> int:
        return len([s for s in self.statuses if s.status == BurnStatusType.SUCCESS])

    @property
    def failure_count(self) -> int:
        return len([s for s in self.statuses if s.status == BurnStatusType.FAILED])

    @property
    def reboot_required(self) -> bool:
        """Firmware only activates after reboot, so any success needs one."""
        return self.success_count > 0
