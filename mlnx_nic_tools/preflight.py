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
Non-destructive self check that needs neither root nor hardware.
"""

from enum import Enum
from typing import List

from .config import (
    FirmwareConfig, MFT_DOWNLOAD_PAGE, FIRMWARE_PAGE_URL, MFT_DOWNLOAD_BASE_URL, FIRMWARE_BASE_URL
)
from .platform_utils import command_exists, list_cx7_pci_devices
from .tool_base import NicToolError
from .version_scraper import url_exists

VENDOR_TOOLS = ['mst', 'flint', 'mlxconfig', 'mlxlink', 'mget_temp', 'mlxup']
CONNECTIVITY_URLS = [
    MFT_DOWNLOAD_PAGE,
    FIRMWARE_PAGE_URL,
    f"{MFT_DOWNLOAD_BASE_URL}/",
    f"{FIRMWARE_BASE_URL}/",
]


class CheckLevel(Enum):
    OK = "✓"
    WARN = "⚠"
    FAIL = "✗"
    INFO = "ℹ"


class CheckResult:
    def __init__(self, level: CheckLevel, message: str):
        self.level = level
        self.message = message

    def __str__(self):
        return f"  {self.level.value} {self.message}"


def check_tools() -> List[CheckResult]:
    results = []
    for tool in VENDOR_TOOLS:
        if command_exists(tool):
            results.append(CheckResult(CheckLevel.OK, f"{tool} found"))
        else:
            results.append(CheckResult(CheckLevel.WARN, f"{tool} not found on PATH"))
    return results


def check_config(config_path: str = None) -> List[CheckResult]:
    try:
        config = FirmwareConfig(config_path)
    except NicToolError as e:
        return [CheckResult(CheckLevel.FAIL, str(e))]
    return [CheckResult(CheckLevel.OK, f"{config.path} is valid "
                                       f"({len(config.firmware_mappings)} firmware mapping(s))")]


def check_connectivity(urls: List[str] = None) -> List[CheckResult]:
    """Probe every download endpoint and summarize how many answered."""
    if urls is None:
        urls = CONNECTIVITY_URLS

    results = []
    reachable = 0
    for url in urls:
        if url_exists(url):
            reachable += 1
            results.append(CheckResult(CheckLevel.OK, f"Reachable: {url}"))
        else:
            results.append(CheckResult(CheckLevel.WARN, f"Not reachable: {url}"))

    total = len(urls)
    if reachable == total:
        results.append(CheckResult(CheckLevel.OK, "All required URLs are reachable"))
    elif reachable:
        results.append(CheckResult(
            CheckLevel.WARN, f"{reachable}/{total} URLs reachable - auto-detection may work partially"))
    else:
        results.append(CheckResult(CheckLevel.FAIL, "No URLs reachable - auto-detection will fail"))
    return results


def check_hardware() -> List[CheckResult]:
    if not command_exists('lspci'):
        return [CheckResult(CheckLevel.WARN, "lspci not available")]

    devices = list_cx7_pci_devices()
    if devices:
        return [CheckResult(CheckLevel.OK, f"Found {len(devices)} ConnectX-7 device(s)")]
    return [CheckResult(CheckLevel.INFO, "No ConnectX-7 devices found (normal if not on CX-7 hardware)")]


def run_preflight(config_path: str = None) -> List[tuple]:
    """
    Run every check group.

    Returns:
        List of (group title, results) tuples
    """
    return [
        ("🔧 Checking vendor tools...", check_tools()),
        ("📋 Validating firmware configuration...", check_config(config_path)),
        ("🌐 Testing network connectivity...", check_connectivity()),
        ("🔍 Checking for ConnectX-7 hardware...", check_hardware()),
    ]


def has_failures(groups: List[tuple]) -> bool:
    return any(result.level == CheckLevel.FAIL for _, results in groups for result in results)
