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
Host utilities for NIC management.

Contains subprocess helpers, package installation and ConnectX-7 hardware
detection through lspci and lshw.
"""

import os
import re
import json
import shutil
import logging
import subprocess
from typing import List, Optional, Tuple

from .config import CX7_LSPCI_PATTERNS, CX7_LSHW_PRODUCT


def run_command(cmd: List[str], logger: logging.Logger = None, **kwargs) -> subprocess.CompletedProcess:
    """
    Execute a subprocess command with automatic logging.

    Args:
        cmd: Command and arguments as a list
        logger: Logger instance to use for logging. If None, uses root logger
        **kwargs: Additional arguments to pass to subprocess.run

    Returns:
        CompletedProcess instance from subprocess.run
    """
    if logger is None:
        logger = logging.getLogger()

    try:
        logger.info(f"Executing: {' '.join(cmd)}")
        return subprocess.run(cmd, **kwargs)
    except Exception as e:
        logger.error(f"Failed to execute command {' '.join(cmd)}: {e}")
        raise


def command_exists(name: str) -> bool:
    """Check whether an executable is available on PATH."""
    return shutil.which(name) is not None


def is_root() -> bool:
    return os.geteuid() == 0


def version_key(version: str) -> List[Tuple[int, object]]:
    """
    Natural sort key for version strings (same ordering as ``sort -V``).

    Digit runs compare numerically, everything else compares as text.
    """
    key = []
    for part in re.split(r'(\d+)', version):
        if not part:
            continue
        if part.isdigit():
            key.append((0, int(part)))
        else:
            key.append((1, part))
    return key


def install_packages(packages: List[str], logger: logging.Logger = None) -> bool:
    """
    Install packages with yum, falling back to apt-get.

    Returns:
        True if one of the package managers succeeded, False otherwise
    """
    if logger is None:
        logger = logging.getLogger()

    for manager in (['yum', 'install', '-y'], ['apt-get', 'install', '-y']):
        if not command_exists(manager[0]):
            continue
        try:
            result = run_command(manager + packages, logger=logger)
        except OSError:
            continue
        if result.returncode == 0:
            return True
        logger.warning(f"{manager[0]} failed to install {' '.join(packages)}")

    return False


def ensure_command(name: str, package: str = None, logger: logging.Logger = None) -> bool:
    """Install the package providing ``name`` when the command is missing."""
    if logger is None:
        logger = logging.getLogger()

    if command_exists(name):
        return True

    logger.info(f"Installing {package or name}...")
    install_packages([package or name], logger=logger)
    return command_exists(name)


def start_mst_service(logger: logging.Logger = None, quiet: bool = False) -> bool:
    """
    Start the MST service.

    Failure is not fatal: ``mst start`` returns non-zero when the service
    is already running.
    """
    if logger is None:
        logger = logging.getLogger()

    logger.info("Starting MST service...")
    try:
        if quiet:
            result = run_command(['mst', 'start'], logger=logger, capture_output=True, text=True)
        else:
            result = run_command(['mst', 'start'], logger=logger)
    except OSError as e:
        logger.warning(f"Failed to start MST service: {e}")
        return False

    if result.returncode == 0:
        logger.info("✅ MST service started successfully")
        return True

    logger.warning("MST service may already be running")
    return False


def get_mst_status(verbose: bool = False, logger: logging.Logger = None) -> str:
    """Get ``mst status`` output, empty string if unavailable."""
    cmd = ['mst', 'status']
    if verbose:
        cmd.append('-v')
    try:
        result = run_command(cmd, logger=logger, capture_output=True, text=True)
    except OSError:
        return ""
    return result.stdout or ""


def list_cx7_pci_devices(logger: logging.Logger = None) -> List[Tuple[str, str]]:
    """
    Detect ConnectX-7 devices using lspci.

    Returns:
        List of (pci_address, lspci_line) tuples, e.g. ('17:00.0', '17:00.0 Ethernet ...')
    """
    if logger is None:
        logger = logging.getLogger()

    try:
        result = run_command(['lspci'], logger=logger, capture_output=True, text=True)
    except OSError as e:
        logger.error(f"Failed to run lspci: {e}")
        return []

    if result.returncode != 0:
        logger.error(f"lspci failed with return code {result.returncode}")
        return []

    pattern = re.compile('|'.join(re.escape(p) for p in CX7_LSPCI_PATTERNS), re.IGNORECASE)
    devices = []
    for line in result.stdout.splitlines():
        if pattern.search(line):
            devices.append((line.split()[0], line.strip()))

    return devices


def _lshw_entries(data) -> list:
    if isinstance(data, dict):
        # Older lshw prints a single object, sometimes wrapping a tree.
        entries = [data]
        for child in data.get('children', []):
            entries.extend(_lshw_entries(child))
        return entries
    if isinstance(data, list):
        entries = []
        for item in data:
            entries.extend(_lshw_entries(item))
        return entries
    return []


def list_cx7_interfaces(logger: logging.Logger = None) -> List[Tuple[str, str]]:
    """
    Detect ConnectX-7 network interfaces using lshw.

    Returns:
        List of (interface_name, description) tuples
    """
    if logger is None:
        logger = logging.getLogger()

    try:
        result = run_command(['lshw', '-class', 'network', '-json'], logger=logger,
                             capture_output=True, text=True)
    except OSError as e:
        logger.error(f"Failed to run lshw: {e}")
        return []

    if result.returncode != 0 or not result.stdout.strip():
        return []

    try:
        data = json.loads(result.stdout)
    except ValueError as e:
        logger.error(f"Could not parse lshw output: {e}")
        return []

    interfaces = []
    for entry in _lshw_entries(data):
        if entry.get('product') != CX7_LSHW_PRODUCT:
            continue
        names = entry.get('logicalname')
        if not names:
            continue
        if isinstance(names, str):
            names = [names]
        for name in names:
            if name not in [i for i, _ in interfaces]:
                interfaces.append((name, entry.get('description', 'N/A')))

    return interfaces


def read_sysfs_int(path: str, default: int = 0) -> int:
    """Read an integer sysfs attribute, returning ``default`` on any error."""
    try:
        with open(path, 'r') as f:
            return int(f.read().strip())
    except (OSError, ValueError):
        return default


def write_sysfs(path: str, value) -> None:
    with open(path, 'w') as f:
        f.write(f"{value}\n")


def find_in_output(output: str, pattern: str) -> List[str]:
    """Return the lines of ``output`` matching a regular expression."""
    regex = re.compile(pattern)
    return [line for line in output.splitlines() if regex.search(line)]


def first_field_after(output: str, token: str, index: int = 1) -> Optional[str]:
    """Return whitespace field ``index`` of the first line containing ``token``."""
    for line in output.splitlines():
        if token in line:
            parts = line.split()
            if len(parts) > index:
                return parts[index]
    return None
