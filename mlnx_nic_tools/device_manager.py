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
Device Manager

Handles ConnectX-7 detection and maps each PCI device to its MST device
path and PSID.
"""

import logging
from typing import List, Optional

from .platform_utils import run_command, get_mst_status, list_cx7_pci_devices, first_field_after
from .tool_base import NicToolError


class Cx7Device:
    """A detected ConnectX-7 function."""

    def __init__(self, pci_address: str, mst_device: str = None, psid: str = None):
        self.pci_address = pci_address
        self.mst_device = mst_device
        self.psid = psid

    def __repr__(self):
        return f"Cx7Device({self.pci_address}, mst={self.mst_device}, psid={self.psid})"

    def __eq__(self, other):
        if not isinstance(other, Cx7Device):
            return NotImplemented
        return (self.pci_address, self.mst_device, self.psid) == \
            (other.pci_address, other.mst_device, other.psid)


class DeviceManager:
    """Manages ConnectX-7 detection and PSID lookup."""

    def __init__(self):
        self.logger = logging.getLogger()
        self.devices = []

    def get_mst_device(self, pci_address: str, mst_status: str) -> Optional[str]:
        """Find the MST device path for a PCI address in ``mst status -v`` output."""
        return first_field_after(mst_status, pci_address, 1)

    def get_psid(self, pci_address: str) -> Optional[str]:
        """Read the board PSID with ``flint query``."""
        try:
            result = run_command(['flint', '-d', pci_address, 'query'], logger=self.logger,
                                 capture_output=True, text=True)
        except OSError as e:
            self.logger.error(f"Failed to query {pci_address}: {e}")
            return None

        if result.returncode != 0:
            return None
        return first_field_after(result.stdout, 'PSID:', 1)

    def detect(self) -> List[Cx7Device]:
        """
        Detect ConnectX-7 devices with their MST paths and PSIDs.

        Devices without an MST path or PSID are skipped.

        Returns:
            List of fully resolved devices

        Raises:
            NicToolError: If no device is found or none could be resolved
        """
        self.logger.info("Detecting ConnectX-7 devices and PSIDs...")

        pci_devices = list_cx7_pci_devices(logger=self.logger)
        if not pci_devices:
            raise NicToolError("No ConnectX-7 devices found")

        addresses = [address for address, _ in pci_devices]
        self.logger.info(f"Found {len(addresses)} ConnectX-7 device(s): {' '.join(addresses)}")

        mst_status = get_mst_status(verbose=True, logger=self.logger)

        self.devices = []
        for address in addresses:
            mst_device = self.get_mst_device(address, mst_status)
            if not mst_device:
                self.logger.warning(f"Could not find MST device for PCI device {address}")
                continue

            psid = self.get_psid(address)
            if not psid:
                self.logger.warning(f"Could not detect PSID for device {address}")
                continue

            self.devices.append(Cx7Device(address, mst_device, psid))
            self.logger.info(f"Device {address}: MST={mst_device}, PSID={psid}")

        if not self.devices:
            raise NicToolError("Could not detect PSID for any devices")

        return self.devices

    def unique_psids(self, devices: List[Cx7Device] = None) -> List[str]:
        if devices is None:
            devices = self.devices
        return sorted(set(device.psid for device in devices))
