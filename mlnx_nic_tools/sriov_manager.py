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
SR-IOV virtual function management.

Creates virtual functions on ConnectX-7 interfaces through sysfs and
installs a systemd unit that repeats this at boot.
"""

import os
import sys
import time
import shutil
import logging
from typing import Dict, List, Optional

from .config import (
    SYSFS_NET_PATH, DEFAULT_NUM_VFS, VF_SETTLE_SECONDS, VF_SERVICE_NAME, VF_SERVICE_PATH
)
from .platform_utils import (
    run_command, is_root, ensure_command, list_cx7_interfaces, read_sysfs_int, write_sysfs
)
from .tool_base import PrerequisiteError, InstallError, SriovError

VF_SERVICE_TEMPLATE = """[Unit]
Description=Create SR-IOV Virtual Functions on Mellanox ConnectX-7 NICs
After=network.target
Wants=network.target

[Service]
Type=oneshot
ExecStart={exec_start}
RemainAfterExit=yes
StandardOutput=journal
StandardError=journal

[Install]
WantedBy=multi-user.target
"""


class VfResult:
    """VF state of one interface after configuration."""

    def __init__(self, interface: str, requested: int, configured: int, verified: bool, message: str = ""):
        self.interface = interface
        self.requested = requested
        self.configured = configured
        self.verified = verified
        self.message = message


class SriovManager:
    """Configures virtual functions on ConnectX-7 interfaces."""

    def __init__(self, num_vfs: int = DEFAULT_NUM_VFS, sysfs_net_path: str = SYSFS_NET_PATH,
                 settle_seconds: int = VF_SETTLE_SECONDS):
        """
        Initialize the SR-IOV manager.

        Args:
            num_vfs: Virtual functions requested per interface
            sysfs_net_path: Root of the network class in sysfs
            settle_seconds: Delay after each sysfs write
        """
        if num_vfs < 0:
            raise SriovError(f"Invalid VF count: {num_vfs}")

        self.num_vfs = num_vfs
        self.sysfs_net_path = sysfs_net_path
        self.settle_seconds = settle_seconds
        self.logger = logging.getLogger()

    def _attr(self, interface: str, name: str) -> str:
        return os.path.join(self.sysfs_net_path, interface, 'device', name)

    def get_current_vfs(self, interface: str) -> int:
        return read_sysfs_int(self._attr(interface, 'sriov_numvfs'))

    def get_max_vfs(self, interface: str) -> int:
        return read_sysfs_int(self._attr(interface, 'sriov_totalvfs'))

    def detect_interfaces(self) -> List[str]:
        """
        Raises:
            SriovError: If no ConnectX-7 interface is found
        """
        if not ensure_command('lshw', logger=self.logger):
            self.logger.warning("lshw is not available, interface detection may fail")

        self.logger.info("Detecting ConnectX-7 network interfaces...")
        interfaces = [name for name, _ in list_cx7_interfaces(logger=self.logger)]
        if not interfaces:
            raise SriovError("No ConnectX-7 interfaces found!")

        self.logger.info(f"Found {len(interfaces)} ConnectX-7 interface(s): {' '.join(interfaces)}")
        return interfaces

    def configure_interface(self, interface: str) -> Optional[VfResult]:
        """
        Bring an interface to the requested VF count.

        Returns:
            Result of the configuration, None if the interface is not in sysfs
        """
        self.logger.info(f"Processing interface: {interface}")

        if not os.path.isdir(os.path.join(self.sysfs_net_path, interface)):
            self.logger.warning(f"Interface {interface} not found in {self.sysfs_net_path}/")
            return None

        current = self.get_current_vfs(interface)
        self.logger.info(f"Current VFs for {interface}: {current}")
        max_vfs = self.get_max_vfs(interface)
        self.logger.info(f"Maximum supported VFs for {interface}: {max_vfs}")

        target = self.num_vfs
        if target > max_vfs:
            self.logger.warning(f"Requested VFs ({target}) exceeds maximum ({max_vfs}) for {interface}. Using maximum.")
            target = max_vfs

        if current == target:
            self.logger.info(f"VFs already configured correctly for {interface} ({current} VFs)")
            return VfResult(interface, target, current, True, "Already configured")

        self.logger.info(f"Creating {target} Virtual Functions for interface: {interface}")
        numvfs = self._attr(interface, 'sriov_numvfs')
        try:
            # The kernel rejects a change between two non-zero counts.
            if current > 0:
                self.logger.info(f"Resetting existing VFs for {interface}...")
                write_sysfs(numvfs, 0)
                time.sleep(self.settle_seconds)

            write_sysfs(numvfs, target)
        except OSError as e:
            self.logger.error(f"Failed to create VFs for {interface}: {e}")
            return VfResult(interface, target, self.get_current_vfs(interface), False, str(e))

        self.logger.info(f"Successfully created {target} VFs for {interface}")
        time.sleep(self.settle_seconds)

        created = self.get_current_vfs(interface)
        if created == target:
            self.logger.info(f"✅ VF creation verified for {interface}: {created} VFs active")
            return VfResult(interface, target, created, True, "Created")

        self.logger.error(f"❌ VF creation verification failed for {interface}: expected {target}, got {created}")
        return VfResult(interface, target, created, False, "Verification failed")

    def create_vfs(self, interfaces: List[str] = None) -> Dict[str, VfResult]:
        """
        Create virtual functions on every ConnectX-7 interface.

        Returns:
            Results keyed by interface name for interfaces present in sysfs
        """
        self.logger.info("Starting Virtual Function creation")
        if interfaces is None:
            interfaces = self.detect_interfaces()

        results = {}
        for interface in interfaces:
            if not interface:
                continue
            result = self.configure_interface(interface)
            if result is not None:
                results[interface] = result

        self.logger.info("Virtual Function creation completed")
        self.logger.info("Summary:")
        for interface in interfaces:
            if interface:
                self.logger.info(f"  {interface}: {self.get_current_vfs(interface)} VFs")

        return results


def _default_exec_start() -> str:
    executable = shutil.which('mlnx-nic-tools')
    if executable:
        return f"{executable} --nosyslog create-vfs"
    return f"{sys.executable} -m mlnx_nic_tools.main --nosyslog create-vfs"


class VfServiceInstaller:
    """Installs the systemd unit that creates VFs at boot."""

    def __init__(self, service_path: str = VF_SERVICE_PATH, exec_start: str = None):
        self.service_path = service_path
        self.exec_start = exec_start or _default_exec_start()
        self.logger = logging.getLogger()

    def render_unit(self) -> str:
        return VF_SERVICE_TEMPLATE.format(exec_start=self.exec_start)

    def _systemctl(self, *args: str, check: bool = True) -> None:
        cmd = ['systemctl'] + list(args)
        result = run_command(cmd, logger=self.logger)
        if check and result.returncode != 0:
            raise InstallError(f"{' '.join(cmd)} failed with return code {result.returncode}")

    def install(self) -> str:
        """
        Write and enable the unit.

        Returns:
            Path of the installed unit file

        Raises:
            PrerequisiteError: If not running as root
            InstallError: If systemd rejects the unit
        """
        if not is_root():
            raise PrerequisiteError("This command must be run as root")

        self.logger.info("Installing Mellanox VF Creation Service")
        self.logger.info(f"Installing systemd service file to {self.service_path}")
        try:
            with open(self.service_path, 'w') as f:
                f.write(self.render_unit())
            os.chmod(self.service_path, 0o644)
        except OSError as e:
            raise InstallError(f"Failed to write {self.service_path}: {e}")

        self.logger.info("Reloading systemd daemon")
        self._systemctl('daemon-reload')

        self.logger.info(f"Enabling {VF_SERVICE_NAME}")
        self._systemctl('enable', VF_SERVICE_NAME)

        self.logger.info("Service installation completed")
        self.logger.info("Service status:")
        self._systemctl('status', VF_SERVICE_NAME, '--no-pager', check=False)

        self.logger.info(f"✅ Service file installed to: {self.service_path}")
        self.logger.info("✅ Service enabled for automatic startup")
        return self.service_path
