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
Command Line Interface for the Mellanox ConnectX-7 NIC tools.

Provides commands for MFT installation, firmware updates, SR-IOV
configuration and health reporting.
"""

import sys
import fcntl
import logging
import logging.handlers
from contextlib import contextmanager
import click

from .config import (
    MFT_INSTALL_LOG, FIRMWARE_INSTALL_LOG, MLXUP_LOG, CREATE_VF_LOG, VF_SERVICE_LOG,
    LOCK_FILE, DEFAULT_NUM_VFS, VF_SERVICE_NAME, env_flag
)
from .firmware_installer import FirmwareInstaller
from .firmware_update import FirmwareUpdatePlan
from .health_check import HealthChecker
from .mft_installer import MftInstaller
from .mlxup_manager import MlxupManager
from .preflight import run_preflight, has_failures
from .sriov_manager import SriovManager, VfServiceInstaller
from .tool_base import (
    EXIT_SUCCESS, EXIT_FAILURE, FW_UPDATE_IS_AVAILABLE, NicToolError, FirmwareBurnPartialError
)

logger = None


def setup_logging(log_file: str = None, verbose: bool = False, nosyslog: bool = False, quiet: bool = False):
    """
    Setup global logging with a per-command log file, console and syslog.

    With quiet set, the console only shows warnings unless verbose is enabled.
    """
    global logger

    level = logging.DEBUG if verbose else logging.INFO

    logger = logging.getLogger()
    logger.setLevel(level)

    logger.handlers.clear()

    if log_file:
        try:
            file_handler = logging.FileHandler(log_file)
            file_handler.setLevel(level)
            file_handler.setFormatter(logging.Formatter('%(asctime)s - %(message)s', '%Y-%m-%d %H:%M:%S'))
            logger.addHandler(file_handler)
        except OSError as e:
            click.echo(f"WARNING: Cannot write log file {log_file}: {e}", err=True)

    if not nosyslog:
        try:
            syslog_handler = logging.handlers.SysLogHandler(address='/dev/log')
            syslog_handler.setLevel(level)
            syslog_handler.setFormatter(logging.Formatter('mlnx-nic-tools[%(process)d]: %(levelname)s - %(message)s'))
            logger.addHandler(syslog_handler)
        except OSError:
            pass

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.WARNING if quiet and not verbose else level)
    console_handler.setFormatter(logging.Formatter('%(asctime)s - %(message)s', '%Y-%m-%d %H:%M:%S'))
    logger.addHandler(console_handler)

    return logger


def confirm_yes(message: str) -> bool:
    """Ask for confirmation. Only an explicit 'yes' proceeds."""
    click.echo("")
    click.echo(message)
    answer = click.prompt("(yes/no)", default="", show_default=False)
    return answer.strip() == "yes"


@contextmanager
def _lock_state_change():
    """Serialize firmware operations across processes."""
    lock_fd = None

    try:
        logger.info(f"Locking {LOCK_FILE}")
        lock_fd = open(LOCK_FILE, 'w')
        fcntl.flock(lock_fd.fileno(), fcntl.LOCK_EX)
        yield lock_fd
    except OSError as e:
        logger.error(f"Failed to acquire lock: {e}")
        raise NicToolError(f"Failed to acquire lock: {e}")
    finally:
        if lock_fd:
            try:
                fcntl.flock(lock_fd.fileno(), fcntl.LOCK_UN)
                lock_fd.close()
            except OSError as e:
                logger.warning(f"Failed to unlock: {e}")


def handle_install_mft(auto_detect: bool, version: str) -> int:
    """
    Handle MFT installation.

    Args:
        auto_detect: Detect the latest LTS version
        version: Explicit version, overrides auto-detection

    Returns:
        Exit code
    """
    logger.info("Starting Mellanox MFT installation")
    try:
        installer = MftInstaller(specified_version=version, auto_detect=auto_detect)
        installer.check_prerequisites()
        summary = installer.resolve()

        click.echo("")
        click.echo("=== MFT Installation Summary ===")
        click.echo(f"Version: {summary['version']}")
        click.echo(f"Package: {summary['package']}")
        click.echo(f"Source: {summary['source']}")
        click.echo("=================================")
        click.echo("")

        installer.install()
    except NicToolError as e:
        logger.error(f"ERROR: {e}")
        return EXIT_FAILURE

    logger.info("MFT installation completed")
    logger.info("Next steps:")
    logger.info("1. Run health check: sudo mlnx-nic-tools health-check")
    logger.info("2. Configure VFs if needed: sudo mlnx-nic-tools create-vfs")
    logger.info("3. Check firmware versions and update if necessary")
    click.echo("")
    click.echo(f"Installation completed! Check {MFT_INSTALL_LOG} for detailed logs.")
    return EXIT_SUCCESS


def _print_mappings(installer: FirmwareInstaller) -> None:
    click.echo("")
    click.echo("=== FIRMWARE MAPPING SUMMARY ===")
    click.echo(f"Source: {installer.mapping_source}")
    click.echo("Available firmware mappings:")
    for psid, firmware_file in sorted(installer.firmware_map.items()):
        click.echo(f"  PSID: {psid}")
        click.echo(f"    Firmware: {firmware_file}")
    click.echo("=================================")
    click.echo("")


def _print_devices(devices) -> None:
    click.echo("")
    click.echo("=== DETECTED DEVICES SUMMARY ===")
    for device in devices:
        click.echo(f"Device: {device.pci_address}")
        click.echo(f"  PSID: {device.psid}")
        click.echo(f"  MST Path: {device.mst_device}")
        click.echo("")


def handle_install_firmware(auto_detect: bool, force: bool, config_path: str, assume_yes: bool) -> int:
    """
    Handle flint-based firmware installation.

    Returns:
        Exit code
    """
    logger.info("Starting ConnectX-7 firmware installation")
    confirm = None if assume_yes else confirm_yes
    try:
        installer = FirmwareInstaller(auto_detect=auto_detect, force=force,
                                      config_path=config_path, confirm=confirm)
        installer.check_prerequisites()
        installer.load_firmware_mappings()
        _print_mappings(installer)

        devices = installer.detect_devices()
        _print_devices(devices)

        if confirm and not confirm("Proceed with firmware download and installation?"):
            logger.info("Installation cancelled by user")
            return EXIT_SUCCESS

        with _lock_state_change():
            summary = installer.install(devices)
    except FirmwareBurnPartialError as e:
        click.echo(f"Firmware installation partially failed: {e}")
        return EXIT_SUCCESS
    except NicToolError as e:
        logger.error(f"ERROR: {e}")
        return EXIT_FAILURE

    if summary.failure_count and not summary.success_count:
        return EXIT_FAILURE
    return EXIT_SUCCESS


def handle_update_firmware(auto_detect: bool, force: bool, config_path: str, assume_yes: bool) -> int:
    """
    Handle the guided firmware update.

    Returns:
        Exit code
    """
    try:
        plan = FirmwareUpdatePlan(auto_detect=auto_detect, config_path=config_path)
    except NicToolError as e:
        click.echo(f"ERROR: {e}")
        return EXIT_FAILURE

    for line in plan.describe():
        click.echo(line)

    click.echo("🚀 Ready to proceed with firmware update")
    if not assume_yes and not confirm_yes(plan.confirmation_prompt()):
        click.echo("Update cancelled by user")
        return EXIT_SUCCESS

    click.echo("")
    click.echo("🔧 Starting firmware installation...")
    click.echo("==================================")
    exit_code = handle_install_firmware(auto_detect, force, config_path, assume_yes)

    if exit_code == EXIT_SUCCESS:
        click.echo("")
        click.echo("✅ Firmware update process completed!")
        click.echo("⚠️  Remember to reboot the system to activate new firmware")
    return exit_code


def handle_mlxup_update(query_only: bool, force: bool, assume_yes: bool) -> int:
    """
    Handle firmware query or update through mlxup.

    Returns:
        Exit code. In query mode FW_UPDATE_IS_AVAILABLE signals a pending update.
    """
    logger.info("Starting ConnectX-7 firmware update using mlxup")
    manager = MlxupManager(force=force, confirm=None if assume_yes else confirm_yes)
    try:
        manager.check_prerequisites()

        click.echo("")
        click.echo("=== FIRMWARE UPDATE QUERY ===")
        manager.query()
        click.echo("=============================")
        click.echo("")

        if query_only:
            return FW_UPDATE_IS_AVAILABLE if manager.update_available() else EXIT_SUCCESS

        with _lock_state_change():
            updated = manager.update()
    except NicToolError as e:
        logger.error(f"ERROR: {e}")
        logger.error("Firmware update process completed with issues")
        return EXIT_FAILURE

    if updated:
        click.echo("")
        click.echo("✅ Firmware Update Successful!")
        click.echo("")
        click.echo("Next steps:")
        click.echo("1. Reboot the system to activate new firmware:")
        click.echo("   sudo reboot")
        click.echo("")
        click.echo("2. After reboot, verify firmware versions:")
        click.echo("   sudo mlnx-nic-tools health-check")
        click.echo("")
    return EXIT_SUCCESS


def handle_create_vfs(num_vfs: int) -> int:
    try:
        manager = SriovManager(num_vfs=num_vfs)
        manager.create_vfs()
    except NicToolError as e:
        logger.error(f"ERROR: {e}")
        return EXIT_FAILURE

    logger.info("Script execution finished")
    return EXIT_SUCCESS


def handle_install_vf_service() -> int:
    try:
        VfServiceInstaller().install()
    except NicToolError as e:
        logger.error(f"ERROR: {e}")
        return EXIT_FAILURE

    service = VF_SERVICE_NAME.replace('.service', '')
    click.echo("")
    click.echo("Service installation completed!")
    click.echo("")
    click.echo("Available commands:")
    click.echo(f"  Start service:    sudo systemctl start {service}")
    click.echo(f"  Stop service:     sudo systemctl stop {service}")
    click.echo(f"  Check status:     sudo systemctl status {service}")
    click.echo(f"  View logs:        sudo journalctl -u {service} -f")
    click.echo(f"  Disable service:  sudo systemctl disable {service}")
    click.echo("")
    click.echo("The service will automatically run on system boot/reboot.")
    click.echo(f"Check logs at: {CREATE_VF_LOG}")
    return EXIT_SUCCESS


def handle_health_check() -> int:
    checker = HealthChecker()
    try:
        checker.run()
    except NicToolError as e:
        for line in checker.lines:
            click.echo(line)
        click.echo(str(e))
        return EXIT_FAILURE

    for line in checker.lines:
        click.echo(line)
    return EXIT_SUCCESS


def handle_preflight(config_path: str, strict: bool) -> int:
    click.echo("🚀 Quick Test - Mellanox ConnectX-7 Tools")
    click.echo("===========================================")
    groups = run_preflight(config_path)
    for title, results in groups:
        click.echo("")
        click.echo(title)
        for result in results:
            click.echo(str(result))

    click.echo("")
    click.echo("✅ Quick test completed!")
    if strict and has_failures(groups):
        return EXIT_FAILURE
    return EXIT_SUCCESS


def _finish(exit_code: int):
    logger.info(f"Mellanox NIC tools finished with exit code {exit_code}")
    sys.exit(exit_code)


CONTEXT_SETTINGS = {'help_option_names': ['-h', '--help'], 'max_content_width': 120}


@click.group(context_settings=CONTEXT_SETTINGS)
@click.option('-v', '--verbose', is_flag=True, help='Verbose mode (debug logging)')
@click.option('--nosyslog', is_flag=True, help='Disable syslog and log to file and console only')
@click.pass_context
def main(ctx, verbose, nosyslog):
    """
    Mellanox ConnectX-7 NIC tools

    Install MFT and mlxup, update firmware, configure SR-IOV virtual
    functions and check adapter health.

    \b
    Examples:
      sudo mlnx-nic-tools install-mft
      sudo mlnx-nic-tools install-mft --version 4.29.1-1200
      sudo mlnx-nic-tools install-firmware --no-auto-detect
      sudo mlnx-nic-tools update-firmware
      sudo mlnx-nic-tools mlxup-update --query
      sudo mlnx-nic-tools create-vfs --num-vfs 64
      sudo mlnx-nic-tools install-vf-service
      sudo mlnx-nic-tools health-check
      mlnx-nic-tools preflight

    WARNING: test firmware operations in a lab environment first.
    """
    ctx.ensure_object(dict)
    ctx.obj['verbose'] = verbose
    ctx.obj['nosyslog'] = nosyslog


def _setup(ctx, log_file: str = None, quiet: bool = False):
    setup_logging(log_file, ctx.obj.get('verbose', False), ctx.obj.get('nosyslog', False), quiet)


@main.command('install-mft', context_settings=CONTEXT_SETTINGS)
@click.option('--no-auto-detect', 'no_auto_detect', is_flag=True,
              help='Use fallback version instead of auto-detecting latest')
@click.option('--version', 'version', metavar='X.Y.Z-W', default=None,
              help='Install specific version (e.g., 4.30.1-1210)')
@click.pass_context
def install_mft(ctx, no_auto_detect, version):
    """Download and install the latest LTS Mellanox Firmware Tools (MFT).

    Set AUTO_DETECT_VERSION=false to disable auto-detection.
    """
    _setup(ctx, MFT_INSTALL_LOG)
    auto_detect = env_flag('AUTO_DETECT_VERSION') and not no_auto_detect
    _finish(handle_install_mft(auto_detect, version))


@main.command('install-firmware', context_settings=CONTEXT_SETTINGS)
@click.option('--no-auto-detect', 'no_auto_detect', is_flag=True,
              help='Use static firmware mappings instead of auto-detecting latest')
@click.option('--force', is_flag=True,
              help='Bypass compatibility checks (allows PSID/ROM changes, use with caution)')
@click.option('--config', 'config_path', type=click.Path(dir_okay=False), default=None,
              help='Static firmware configuration (default: packaged firmware-config.json)')
@click.option('-y', '--yes', 'assume_yes', is_flag=True, help='Do not ask for confirmation')
@click.pass_context
def install_firmware(ctx, no_auto_detect, force, config_path, assume_yes):
    """Detect PSIDs, download matching firmware and burn it with flint.

    Set AUTO_DETECT_FIRMWARE=false to disable auto-detection.
    """
    _setup(ctx, FIRMWARE_INSTALL_LOG)
    auto_detect = env_flag('AUTO_DETECT_FIRMWARE') and not no_auto_detect
    _finish(handle_install_firmware(auto_detect, force, config_path, assume_yes))


@main.command('update-firmware', context_settings=CONTEXT_SETTINGS)
@click.option('--no-auto-detect', 'no_auto_detect', is_flag=True,
              help='Use static firmware-config.json instead of auto-detecting latest')
@click.option('--force', is_flag=True, help='Bypass compatibility checks (use with caution)')
@click.option('--config', 'config_path', type=click.Path(dir_okay=False), default=None,
              help='Static firmware configuration (default: packaged firmware-config.json)')
@click.option('-y', '--yes', 'assume_yes', is_flag=True, help='Do not ask for confirmation')
@click.pass_context
def update_firmware(ctx, no_auto_detect, force, config_path, assume_yes):
    """Guided firmware update in auto-detection or static configuration mode."""
    _setup(ctx, FIRMWARE_INSTALL_LOG)
    auto_detect = env_flag('AUTO_DETECT_FIRMWARE') and not no_auto_detect
    _finish(handle_update_firmware(auto_detect, force, config_path, assume_yes))


@main.command('mlxup-update', context_settings=CONTEXT_SETTINGS)
@click.option('--query', 'query_only', is_flag=True,
              help='Query available firmware updates without installing. '
                   'Return code "10" means an update is available.')
@click.option('--force', is_flag=True, help='Force firmware update even if same version')
@click.option('-y', '--yes', 'assume_yes', is_flag=True, help='Do not ask for confirmation')
@click.pass_context
def mlxup_update(ctx, query_only, force, assume_yes):
    """Check and install firmware updates with NVIDIA's mlxup tool."""
    _setup(ctx, MLXUP_LOG)
    _finish(handle_mlxup_update(query_only, force, assume_yes))


@main.command('create-vfs', context_settings=CONTEXT_SETTINGS)
@click.option('--num-vfs', type=click.IntRange(min=0), default=DEFAULT_NUM_VFS, show_default=True,
              help='Virtual functions to create per interface (clamped to sriov_totalvfs)')
@click.pass_context
def create_vfs(ctx, num_vfs):
    """Create SR-IOV virtual functions on all ConnectX-7 interfaces."""
    _setup(ctx, CREATE_VF_LOG)
    _finish(handle_create_vfs(num_vfs))


@main.command('install-vf-service', context_settings=CONTEXT_SETTINGS)
@click.pass_context
def install_vf_service(ctx):
    """Install and enable the systemd service that creates VFs at boot."""
    _setup(ctx, VF_SERVICE_LOG)
    _finish(handle_install_vf_service())


@main.command('health-check', context_settings=CONTEXT_SETTINGS)
@click.pass_context
def health_check(ctx):
    """Report MST status, configuration, link, firmware, temperature, PCIe and VF state."""
    _setup(ctx, quiet=True)
    _finish(handle_health_check())


@main.command('preflight', context_settings=CONTEXT_SETTINGS)
@click.option('--config', 'config_path', type=click.Path(dir_okay=False), default=None,
              help='Firmware configuration to validate')
@click.option('--strict', is_flag=True, help='Exit with 1 if any check fails')
@click.pass_context
def preflight(ctx, config_path, strict):
    """Quick non-destructive check of tools, configuration, connectivity and hardware."""
    _setup(ctx, quiet=True)
    _finish(handle_preflight(config_path, strict))


if __name__ == '__main__':
    main()
