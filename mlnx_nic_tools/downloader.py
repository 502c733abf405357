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
Artifact download and extraction helpers.
"""

import os
import fnmatch
import shutil
import logging
import tarfile
import tempfile
import zipfile
from contextlib import contextmanager
from typing import Callable, List, Optional, Tuple

import requests

from .tool_base import DownloadError

DOWNLOAD_TIMEOUT = (10, 300)
CHUNK_SIZE = 1024 * 1024

logger = logging.getLogger()


def download_file(url: str, dest_dir: str, filename: str = None, timeout=DOWNLOAD_TIMEOUT) -> str:
    """
    Download a URL into a directory.

    Args:
        url: URL to download
        dest_dir: Target directory
        filename: Target file name, defaults to the last URL path component

    Returns:
        Path of the downloaded file

    Raises:
        DownloadError: If the request fails or the file cannot be written
    """
    if not filename:
        filename = os.path.basename(url.split('?')[0])
    path = os.path.join(dest_dir, filename)

    logger.info(f"Downloading {url}")
    try:
        with requests.get(url, stream=True, timeout=timeout, allow_redirects=True) as response:
            response.raise_for_status()
            with open(path, 'wb') as f:
                for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                    if chunk:
                        f.write(chunk)
    except (requests.exceptions.RequestException, OSError) as e:
        if os.path.exists(path):
            os.remove(path)
        raise DownloadError(f"Failed to download {url}: {e}")

    logger.info(f"Download completed: {path}")
    return path


def download_first_available(urls: List[str], dest_dir: str,
                             name_for: Callable[[str], str] = None) -> Tuple[str, str]:
    """
    Try each URL in order until one downloads.

    Returns:
        Tuple of (url, path) for the first successful download

    Raises:
        DownloadError: If every URL fails
    """
    logger.info(f"Will try {len(urls)} different URL combinations...")
    for url in urls:
        logger.info(f"Trying: {url}")
        filename = name_for(url) if name_for else None
        try:
            path = download_file(url, dest_dir, filename=filename, timeout=(10, 60))
            logger.info(f"✅ Downloaded from: {url}")
            return url, path
        except DownloadError as e:
            logger.debug(str(e))

    logger.error("❌ All download attempts failed")
    raise DownloadError("All download attempts failed")


def extract_tarball(path: str, dest_dir: str) -> None:
    logger.info(f"Extracting {os.path.basename(path)}...")
    try:
        with tarfile.open(path) as tar:
            if hasattr(tarfile, 'data_filter'):
                tar.extractall(dest_dir, filter='data')
            else:
                tar.extractall(dest_dir)
    except (tarfile.TarError, OSError) as e:
        raise DownloadError(f"Failed to extract {path}: {e}")


def extract_zip(path: str, dest_dir: str) -> None:
    logger.info(f"Extracting {os.path.basename(path)}...")
    try:
        with zipfile.ZipFile(path) as archive:
            archive.extractall(dest_dir)
    except (zipfile.BadZipFile, OSError) as e:
        raise DownloadError(f"Failed to extract {path}: {e}")


def find_file(root: str, pattern: str, executable: bool = False) -> Optional[str]:
    """Find the first regular file under ``root`` whose name matches a glob."""
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        for name in sorted(filenames):
            path = os.path.join(dirpath, name)
            if not fnmatch.fnmatch(name, pattern) or os.path.islink(path):
                continue
            if executable and not os.access(path, os.X_OK):
                continue
            return path
    return None


@contextmanager
def temporary_workdir(prefix: str = 'mlnx-nic-tools-'):
    """Create a temporary working directory that is always removed."""
    workdir = tempfile.mkdtemp(prefix=prefix)
    logger.info(f"Working in temporary directory: {workdir}")
    try:
        yield workdir
    finally:
        shutil.rmtree(workdir, ignore_errors=True)
        logger.info("Temporary files cleaned up")
