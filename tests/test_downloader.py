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
Unit tests for downloader module
"""

from mlnx_nic_tools.tool_base import DownloadError
from mlnx_nic_tools.downloader import (
    download_file, download_first_available, extract_tarball, extract_zip,
    find_file, temporary_workdir
)
import os
import sys
import shutil
import tarfile
import zipfile
import tempfile
import unittest
from unittest.mock import patch, MagicMock

import requests

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))


def streaming_response(chunks=None, error=None):
    response = MagicMock()
    if error is not None:
        response.iter_content.side_effect = error
    else:
        response.iter_content.return_value = chunks or []
    context = MagicMock()
    context.__enter__.return_value = response
    context.__exit__.return_value = False
    return context, response


class TestDownload(unittest.TestCase):
    """Test cases for HTTP downloads"""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    @patch('mlnx_nic_tools.downloader.requests.get')
    def test_download_file(self, mock_get):
        """Test body is streamed into a file named after the URL"""
        context, _ = streaming_response([b'abc', b'', b'def'])
        mock_get.return_value = context

        path = download_file("https://example.invalid/files/fw.zip?x=1", self.temp_dir)

        self.assertEqual(path, os.path.join(self.temp_dir, 'fw.zip'))
        with open(path, 'rb') as f:
            self.assertEqual(f.read(), b'abcdef')
        self.assertTrue(mock_get.call_args[1]['stream'])
        self.assertTrue(mock_get.call_args[1]['allow_redirects'])

    @patch('mlnx_nic_tools.downloader.requests.get')
    def test_download_file_custom_name(self, mock_get):
        context, _ = streaming_response([b'binary'])
        mock_get.return_value = context

        path = download_file("https://example.invalid/mlxup", self.temp_dir, filename='mlxup-4.30.0')

        self.assertEqual(os.path.basename(path), 'mlxup-4.30.0')

    @patch('mlnx_nic_tools.downloader.requests.get')
    def test_download_file_http_error(self, mock_get):
        context, response = streaming_response()
        response.raise_for_status.side_effect = requests.exceptions.HTTPError("404 Not Found")
        mock_get.return_value = context

        with self.assertRaises(DownloadError):
            download_file("https://example.invalid/fw.zip", self.temp_dir)
        self.assertFalse(os.path.exists(os.path.join(self.temp_dir, 'fw.zip')))

    @patch('mlnx_nic_tools.downloader.requests.get')
    def test_download_file_removes_partial(self, mock_get):
        """Test an interrupted transfer leaves no partial file"""
        context, _ = streaming_response(error=requests.exceptions.ConnectionError("reset"))
        mock_get.return_value = context

        with self.assertRaises(DownloadError):
            download_file("https://example.invalid/fw.zip", self.temp_dir)
        self.assertEqual(os.listdir(self.temp_dir), [])

    @patch('mlnx_nic_tools.downloader.download_file')
    def test_download_first_available(self, mock_download):
        """Test URLs are tried in order until one succeeds"""
        mock_download.side_effect = [DownloadError("404"), '/tmp/second']
        urls = ['https://a.invalid/mlxup', 'https://b.invalid/mlxup', 'https://c.invalid/mlxup']

        url, path = download_first_available(urls, self.temp_dir, name_for=lambda u: 'mlxup-x')

        self.assertEqual((url, path), ('https://b.invalid/mlxup', '/tmp/second'))
        self.assertEqual(mock_download.call_count, 2)
        self.assertEqual(mock_download.call_args[1]['filename'], 'mlxup-x')

    @patch('mlnx_nic_tools.downloader.download_file')
    def test_download_first_available_all_fail(self, mock_download):
        mock_download.side_effect = DownloadError("404")

        with self.assertRaises(DownloadError):
            download_first_available(['https://a.invalid/x', 'https://b.invalid/y'], self.temp_dir)


class TestArchives(unittest.TestCase):
    """Test cases for archive extraction and file lookup"""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.out_dir = os.path.join(self.temp_dir, 'out')
        os.makedirs(self.out_dir)

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _write(self, name, content='data'):
        path = os.path.join(self.temp_dir, name)
        with open(path, 'w') as f:
            f.write(content)
        return path

    def test_extract_tarball(self):
        source = self._write('install.sh', '#!/bin/sh\n')
        archive = os.path.join(self.temp_dir, 'mft.tgz')
        with tarfile.open(archive, 'w:gz') as tar:
            tar.add(source, arcname='mft-4.30.1-1210-x86_64-rpm/install.sh')

        extract_tarball(archive, self.out_dir)

        self.assertTrue(os.path.isfile(os.path.join(self.out_dir, 'mft-4.30.1-1210-x86_64-rpm', 'install.sh')))

    @unittest.skipUnless(hasattr(tarfile, 'data_filter'), "tarfile extraction filters not available")
    def test_extract_tarball_rejects_outside_paths(self):
        source = self._write('escape.txt')
        archive = os.path.join(self.temp_dir, 'evil.tgz')
        with tarfile.open(archive, 'w:gz') as tar:
            tar.add(source, arcname='../escape.txt')

        with self.assertRaises(DownloadError):
            extract_tarball(archive, self.out_dir)

        self.assertEqual(os.listdir(self.out_dir), [])

    def test_extract_tarball_invalid(self):
        archive = self._write('broken.tgz', 'not a tarball')
        with self.assertRaises(DownloadError):
            extract_tarball(archive, self.out_dir)

    def test_extract_zip(self):
        archive = os.path.join(self.temp_dir, 'fw.zip')
        with zipfile.ZipFile(archive, 'w') as zf:
            zf.writestr('fw-ConnectX7.bin', b'\x00\x01')

        extract_zip(archive, self.out_dir)

        self.assertTrue(os.path.isfile(os.path.join(self.out_dir, 'fw-ConnectX7.bin')))

    def test_extract_zip_invalid(self):
        archive = self._write('broken.zip', 'not a zip')
        with self.assertRaises(DownloadError):
            extract_zip(archive, self.out_dir)

    def test_find_file(self):
        """Test glob lookup walks subdirectories and skips symlinks"""
        nested = os.path.join(self.out_dir, 'a', 'b')
        os.makedirs(nested)
        target = os.path.join(nested, 'image.bin')
        with open(target, 'w') as f:
            f.write('fw')
        os.symlink(target, os.path.join(self.out_dir, 'link.bin'))
        with open(os.path.join(self.out_dir, 'readme.txt'), 'w') as f:
            f.write('text')

        self.assertEqual(find_file(self.out_dir, '*.bin'), target)
        self.assertIsNone(find_file(self.out_dir, '*.zip'))

    def test_find_file_executable(self):
        plain = os.path.join(self.out_dir, 'mlxup')
        with open(plain, 'w') as f:
            f.write('x')
        os.chmod(plain, 0o644)

        self.assertIsNone(find_file(self.out_dir, 'mlxup', executable=True))
        os.chmod(plain, 0o755)
        self.assertEqual(find_file(self.out_dir, 'mlxup', executable=True), plain)

    def test_temporary_workdir_removed(self):
        """Test the working directory is removed even on error"""
        with self.assertRaises(RuntimeError):
            with temporary_workdir(prefix='test-') as workdir:
                self.assertTrue(os.path.isdir(workdir))
                raise RuntimeError("boom")
        self.assertFalse(os.path.exists(workdir))


if __name__ == '__main__':
    unittest.main()
