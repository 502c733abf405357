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
ConnectX-7 health report built from mst, mlxconfig, mlxlink, flint,
mget_temp, lspci and lshw output.
"""

import socket
import logging
import datetime
from typing import List, Optional

from .config import DEFAULT_NUM_VFS, TEMP_WARNING_THRESHOLD, TEMP_CAUTION_THRESHOLD
from .platform_utils import (
    run_command, command_exists, start_mst_service, get_mst_status,
    list_cx7_pci_devices, list_cx7_interfaces, find_in_output, first_field_after
)
from .tool_base import NicToolError

CONFIG_FIELDS = r'(Device type|Name|Description|Configurations)'
LINK_FIELDS = r'(Operational|Physical state|Speed|Width|Enabled Link Speed|Supported Cable Speed)'
FIRMWARE_FIELDS = r'(FW Version|Product Version|PSID|Description)'
PCIE_FIELDS = r'(LnkCap|LnkSta)'
PORTS = (1, 2)

SEPARATOR = "=" * 40


def classify_temperature(temperature: int) -> str:
    if temperature > TEMP_WARNING_THRESHOLD:
        return f"⚠️  WARNING: High temperature detected! ({temperature}°C > {TEMP_WARNING_THRESHOLD}°C)"
    if temperature > TEMP_CAUTION_THRESHOLD:
        return f"⚠️  CAUTION: Elevated temperature ({temperature}°C > {TEMP_CAUTION_THRESHOLD}°C)"
    return f"✅ Temperature normal ({temperature}°C)"


def classify_vfs(vf_count: Optional[int]) -> str:
    if vf_count is None:
        return "❌ VF query failed"
    if vf_count == DEFAULT_NUM_VFS:
        return "✅ Maximum VFs configured"
    if vf_count > 0:
        return f"⚠️  Partial VF configuration ({vf_count}/{DEFAULT_NUM_VFS})"
    return "❌ No VFs configured"


class HealthChecker:
    """Collects the health report for all ConnectX-7 devices."""

    def __init__(self):
        self.logger = logging.getLogger()
        self.lines = []

    def _emit(self, line: str = "") -> None:
        self.lines.append(line)

    def _section(self, title: str) -> None:
        self._emit()
        self._emit(SEPARATOR)
        self._emit(f"=== {title} ===")
        self._emit(SEPARATOR)

    def _output(self, cmd: List[str]) -> Optional[str]:
        try:
            result = run_command(cmd, logger=self.logger, capture_output=True, text=True)
        except OSError as e:
            self.logger.debug(f"{cmd[0]} unavailable: {e}")
            return None
        if result.returncode != 0:
            return None
        return result.stdout

    def _filtered(self, cmd: List[str], pattern: str) -> List[str]:
        output = self._output(cmd)
        if not output:
            return []
        return find_in_output(output, pattern)

    def get_temperature(self, mst_device: str) -> Optional[int]:
        output = self._output(['mget_temp', '-d', mst_device])
        if output is None:
            return None
        try:
            return int(output.strip().split()[0])
        except (ValueError, IndexError):
            return None

    def get_vf_count(self, device: str) -> Optional[int]:
        output = self._output(['mlxconfig', '-d', device, 'query'])
        if not output:
            return None
        value = first_field_after(output, 'NUM_OF_VFS', 1)
        try:
            return int(value) if value is not None else None
        except ValueError:
            return None

    def check_device(self, device: str, mst_status: str) -> None:
        self._section(f"Device: {device}")

        self._emit()
        self._emit("--- Configuration Status ---")
        lines = self._filtered(['mlxconfig', '-d', device, 'query'], CONFIG_FIELDS)
        self.lines.extend(lines or ["Configuration query failed"])

        self._emit()
        self._emit("--- Link Status ---")
        for port in PORTS:
            self._emit(f"Port {port}:")
            lines = self._filtered(['mlxlink', '-d', device, '-p', str(port)], LINK_FIELDS)
            self.lines.extend(lines or [f"  Port {port} not available or link down"])

        self._emit()
        self._emit("--- Firmware Information ---")
        lines = self._filtered(['flint', '-d', device, 'query'], FIRMWARE_FIELDS)
        self.lines.extend(lines or ["Firmware query failed"])

        self._emit()
        self._emit("--- Temperature Monitoring ---")
        mst_device = first_field_after(mst_status, device, 1)
        if mst_device:
            temperature = self.get_temperature(mst_device)
            if temperature is not None:
                self._emit(f"Temperature: {temperature}°C")
                self._emit(classify_temperature(temperature))
            else:
                self._emit("Temperature data not available")
        else:
            self._emit(f"MST device path not found for {device}")

        self._emit()
        self._emit("--- PCIe Information ---")
        lines = self._filtered(['lspci', '-vvv', '-s', device], PCIE_FIELDS)
        self.lines.extend(lines or ["PCIe information not available"])

    def check_vfs(self, devices: List[str]) -> None:
        self._section("Virtual Function Status")
        for device in devices:
            self._emit()
            self._emit(f"Device {device}:")
            vf_count = self.get_vf_count(device)
            if vf_count is not None:
                self._emit(f"  Configured VFs: {vf_count}")
            self._emit(f"  {classify_vfs(vf_count)}")

    def check_interfaces(self) -> None:
        self._section("Network Interface Status")
        if not command_exists('lshw'):
            self._emit("lshw not installed - network interface details unavailable")
            return

        interfaces = list_cx7_interfaces(logger=self.logger)
        if not interfaces:
            self._emit("  Network interface information not available")
            return

        self._emit("ConnectX-7 Network Interfaces:")
        for name, description in interfaces:
            self._emit(f"  Interface: {name} - {description}")

    def run(self) -> List[str]:
        """
        Build the full health report.

        Returns:
            Report lines

        Raises:
            NicToolError: If no ConnectX-7 device is present
        """
        self.lines = []
        self._emit("=== Mellanox NIC Health Check ===")
        self._emit(f"Timestamp: {datetime.datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
        self._emit(f"Hostname: {socket.gethostname()}")

        start_mst_service(logger=self.logger, quiet=True)

        self._emit()
        self._emit("=== MST Status ===")
        mst_status = get_mst_status(logger=self.logger)
        self.lines.extend(mst_status.splitlines() or ["MST status not available"])

        self._emit()
        self._emit("=== Detecting ConnectX-7 Devices ===")
        devices = [address for address, _ in list_cx7_pci_devices(logger=self.logger)]
        if not devices:
            raise NicToolError("No ConnectX-7 devices found!")
        self._emit(f"Found {len(devices)} ConnectX-7 device(s): {' '.join(devices)}")

        verbose_status = get_mst_status(verbose=True, logger=self.logger)
        for device in devices:
            self.check_device(device, verbose_status)

        self.check_vfs(devices)
        self.check_interfaces()

        self._section("Health Check Summary")
        self._emit(f"Devices checked: {len(devices)}")
        self._emit(f"Timestamp: {datetime.datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
        self._emit("Status: Health check completed")
        self._emit()
        self._emit("💡 Tip: Run 'sudo systemctl status create-vf.service' to check VF creation service status")
        self._emit("💡 Tip: Monitor logs with 'dmesg | grep -i mellanox' for hardware messages")
        return self.lines
