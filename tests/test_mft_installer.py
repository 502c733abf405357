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
Unit tests for mft_installer module
"""

from mlnx_nic_tools.tool_base import PrerequisiteError, VersionDetectionError, DownloadError, InstallError
from mlnx_nic_tools.mft_installer import (
    MftInstaller, SOURCE_SPECIFIED, SOURCE_AUTO_DETECTED, SOURCE_FALLBACK
)
import os
import sys
import shutil
import tempfile
import unittest
from unittest.mock import patch, MagicMock

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))


class TestMftVersionResolution(unittest.TestCase):
    """Test cases for MFT version selection"""

    def test_specified_version_wins(self):
        """Test a user version disables auto-detection"""
        installer = MftInstaller(specified_version="4.29.1-1200", auto_detect=True)

        with patch('mlnx_nic_tools.mft_installer.detect_latest_mft_version') as mock_detect:
            self.assertEqual(installer.get_mft_version(), ("4.29.1-1200", SOURCE_SPECIFIED))
            mock_detect.assert_not_called()
        self.assertFalse(installer.auto_detect)

    def test_specified_version_invalid(self):
        installer = MftInstaller(specified_version="4.29")

        with self.assertRaises(InstallError):
            installer.get_mft_version()

    @patch('mlnx_nic_tools.mft_installer.detect_latest_mft_version')
    def test_auto_detected(self, mock_detect):
        mock_detect.return_value = "4.31.0-1300"

        self.assertEqual(MftInstaller().get_mft_version(), ("4.31.0-1300", SOURCE_AUTO_DETECTED))

    @patch('mlnx_nic_tools.mft_installer.detect_latest_mft_version')
    def test_auto_detect_failure_uses_fallback(self, mock_detect):
        mock_detect.side_effect = VersionDetectionError("offline")

        self.assertEqual(MftInstaller().get_mft_version(), ("4.30.1-1210", SOURCE_FALLBACK))

    @patch('mlnx_nic_tools.mft_installer.detect_latest_mft_version')
    def test_auto_detect_invalid_uses_fallback(self, mock_detect):
        mock_detect.return_value = "garbage"

        self.assertEqual(MftInstaller().get_mft_version()[1], SOURCE_FALLBACK)

    @patch('mlnx_nic_tools.mft_installer.detect_latest_mft_version')
    def test_auto_detect_disabled(self, mock_detect):
        installer = MftInstaller(auto_detect=False)

        self.assertEqual(installer.get_mft_version(), ("4.30.1-1210", SOURCE_FALLBACK))
        mock_detect.assert_not_called()

    def test_invalid_fallback(self):
        installer = MftInstaller(auto_detect=False, fallback_version="bad")

        with self.assertRaises(InstallError):
            installer.get_mft_version()

    def test_resolve_summary(self):
        installer = MftInstaller(specified_version="4.30.1-1210")

        summary = installer.resolve()

        self.assertEqual(summary['version'], "4.30.1-1210")
        self.assertEqual(summary['package'], "mft-4.30.1-1210-x86_64-rpm.tgz")
        self.assertTrue(summary['url'].endswith("/MFT/mft-4.30.1-1210-x86_64-rpm.tgz"))
        self.assertEqual(summary['source'], SOURCE_SPECIFIED)
        self.assertEqual(installer.version, "4.30.1-1210")


class TestMftInstallation(unittest.TestCase):
    """Test cases for the MFT installation flow"""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.installer = MftInstaller(specified_version="4.30.1-1210")
        self.installer.resolve()

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    @patch('mlnx_nic_tools.mft_installer.is_root')
    def test_check_prerequisites_not_root(self, mock_is_root):
        mock_is_root.return_value = False

        with self.assertRaises(PrerequisiteError):
            self.installer.check_prerequisites()

    @patch('mlnx_nic_tools.mft_installer.platform.release')
    @patch('mlnx_nic_tools.mft_installer.install_packages')
    def test_install_dependencies_kernel_fallback(self, mock_install, mock_release):
        """Test generic kernel-devel is used when the exact match is missing"""
        mock_release.return_value = "5.14.0-362.el9.x86_64"
        mock_install.side_effect = [True, False, True]

        self.installer.install_dependencies()

        packages = [c[0][0] for c in mock_install.call_args_list]
        self.assertIn('gcc', packages[0])
        self.assertEqual(packages[1], ['kernel-devel-5.14.0-362.el9.x86_64'])
        self.assertEqual(packages[2], ['kernel-devel'])

    @patch('mlnx_nic_tools.mft_installer.run_command')
    @patch('mlnx_nic_tools.mft_installer.extract_tarball')
    @patch('mlnx_nic_tools.mft_installer.download_file')
    def test_install_package(self, mock_download, mock_extract, mock_run):
        """Test install.sh is run from the extracted bundle"""
        mft_dir = os.path.join(self.temp_dir, 'mft-4.30.1-1210-x86_64-rpm')
        os.makedirs(mft_dir)
        with open(os.path.join(mft_dir, 'install.sh'), 'w') as f:
            f.write('#!/bin/sh\n')
        mock_download.return_value = os.path.join(self.temp_dir, 'mft.tgz')
        mock_run.return_value = MagicMock(returncode=0)

        self.installer._install_package(self.temp_dir)

        mock_run.assert_called_once()
        self.assertEqual(mock_run.call_args[0][0], ['./install.sh'])
        self.assertEqual(mock_run.call_args[1]['cwd'], mft_dir)

    @patch('mlnx_nic_tools.mft_installer.extract_tarball')
    @patch('mlnx_nic_tools.mft_installer.download_file')
    def test_install_package_missing_script(self, mock_download, mock_extract):
        mock_download.return_value = os.path.join(self.temp_dir, 'mft.tgz')

        with self.assertRaises(InstallError):
            self.installer._install_package(self.temp_dir)

    @patch('mlnx_nic_tools.mft_installer.run_command')
    @patch('mlnx_nic_tools.mft_installer.extract_tarball')
    @patch('mlnx_nic_tools.mft_installer.download_file')
    def test_install_package_script_fails(self, mock_download, mock_extract, mock_run):
        mft_dir = os.path.join(self.temp_dir, 'mft-4.30.1-1210-x86_64-rpm')
        os.makedirs(mft_dir)
        open(os.path.join(mft_dir, 'install.sh'), 'w').close()
        mock_download.return_value = os.path.join(self.temp_dir, 'mft.tgz')
        mock_run.return_value = MagicMock(returncode=2)

        with self.assertRaises(InstallError):
            self.installer._install_package(self.temp_dir)

    @patch('mlnx_nic_tools.mft_installer.download_file')
    def test_install_package_download_fails(self, mock_download):
        mock_download.side_effect = DownloadError("404")

        with self.assertRaises(DownloadError):
            self.installer._install_package(self.temp_dir)

    @patch('mlnx_nic_tools.mft_installer.command_exists')
    def test_verify_tools(self, mock_exists):
        mock_exists.side_effect = lambda name: name != 'mlxlink'

        self.assertEqual(self.installer.verify_tools(),
                         {'mlxconfig': True, 'mlxlink': False, 'flint': True})

    @patch('mlnx_nic_tools.mft_installer.list_cx7_pci_devices')
    def test_report_devices(self, mock_list):
        mock_list.return_value = [('17:00.0', '17:00.0 Ethernet controller: MT2910')]
        self.assertEqual(self.installer.report_devices(), 1)

        mock_list.return_value = []
        self.assertEqual(self.installer.report_devices(), 0)

    @patch('mlnx_nic_tools.mft_installer.list_cx7_pci_devices')
    @patch('mlnx_nic_tools.mft_installer.get_mst_status')
    @patch('mlnx_nic_tools.mft_installer.command_exists')
    @patch('mlnx_nic_tools.mft_installer.start_mst_service')
    @patch.object(MftInstaller, '_install_package')
    @patch.object(MftInstaller, 'install_dependencies')
    @patch('mlnx_nic_tools.mft_installer.is_root')
    def test_install_flow(self, mock_is_root, mock_deps, mock_package, mock_mst,
                          mock_exists, mock_status, mock_list):
        """Test the full installation sequence"""
        mock_is_root.return_value = True
        mock_exists.return_value = True
        mock_status.return_value = "MST modules:\n  MST PCI module loaded\n"
        mock_list.return_value = []

        tools = self.installer.install()

        self.assertTrue(all(tools.values()))
        mock_deps.assert_called_once()
        mock_package.assert_called_once()
        mock_mst.assert_called_once()
        workdir = mock_package.call_args[0][0]
        self.assertFalse(os.path.exists(workdir))

    @patch('mlnx_nic_tools.mft_installer.is_root')
    def test_install_requires_root(self, mock_is_root):
        mock_is_root.return_value = False

        with self.assertRaises(PrerequisiteError):
            self.installer.install()


if __name__ == '__main__':
    unittest.main()
