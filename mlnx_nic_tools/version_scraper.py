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
Version detection for MFT, ConnectX-7 firmware and mlxup.

Versions are scraped from NVIDIA download pages with regular expressions.
When scraping finds nothing, known versions are probed newest-first with
HEAD requests against the download server.
"""

import re
import logging
from typing import Dict, List, Optional

import requests

from .config import (
    MFT_DOWNLOAD_PAGE, MFT_DOWNLOAD_BASE_URL, MFT_PROBE_VERSIONS,
    FIRMWARE_BASE_URL, FIRMWARE_PAGE_URL, FIRMWARE_PROBE_VERSIONS,
    FIRMWARE_UEFI_VERSIONS, FIRMWARE_FLEXBOOT_VERSIONS,
    DEFAULT_UEFI_VERSION, DEFAULT_FLEXBOOT_VERSION, FIRMWARE_MODEL_PSIDS,
    MLXUP_PAGE_URL, MLXUP_DEFAULT_VERSION
)
from .platform_utils import version_key
from .tool_base import VersionDetectionError

MFT_VERSION_RE = re.compile(r'^\d+\.\d+\.\d+-\d+$')
MFT_PACKAGE_RE = re.compile(r'mft-(\d+\.\d+\.\d+-\d+)-x86_64-rpm\.tgz')
LTS_VERSION_RE = re.compile(r'\d+\.\d+\.\d+[^"\s<]*-LTS')
CX7_FIRMWARE_RE = re.compile(
    r'fw-ConnectX7-rel-[0-9_]+-MCX755106AS-HEA_Ax-UEFI-\d+\.\d+\.\d+-FlexBoot-\d+\.\d+\.\d+\.signed\.bin\.zip')
CX7_FIRMWARE_LOOSE_RE = re.compile(r'fw-ConnectX7-rel-[^"\s<>]*?MCX755106AS-HEA_Ax[^"\s<>]*?\.signed\.bin\.zip')
SEMVER_RE = re.compile(r'\d+\.\d+\.\d+')
MLXUP_PREFERRED_RE = re.compile(r'^4\.(3[0-9]|[4-9][0-9])\.')
MLXUP_ANY_RE = re.compile(r'^4\.')

PAGE_TIMEOUT = (15, 30)
PROBE_TIMEOUT = (5, 10)

logger = logging.getLogger()


def fetch_page(url: str, timeout=PAGE_TIMEOUT) -> str:
    """
    Fetch a page body.

    Returns:
        Page text, or an empty string on any request error
    """
    try:
        response = requests.get(url, timeout=timeout)
        response.raise_for_status()
        return response.text
    except requests.exceptions.RequestException as e:
        logger.warning(f"Failed to fetch {url}: {e}")
        return ""


def url_exists(url: str, timeout=PROBE_TIMEOUT) -> bool:
    """Probe a URL with a HEAD request. Any status below 400 counts as available."""
    try:
        response = requests.head(url, timeout=timeout, allow_redirects=False)
        return response.status_code < 400
    except requests.exceptions.RequestException as e:
        logger.debug(f"HEAD {url} failed: {e}")
        return False


def sort_versions(values: List[str], reverse: bool = False) -> List[str]:
    """Sort and de-duplicate version-like strings in natural order."""
    return sorted(set(values), key=version_key, reverse=reverse)


def validate_mft_version(version: str) -> bool:
    """Check that an MFT version looks like X.Y.Z-W."""
    if version and MFT_VERSION_RE.match(version):
        return True
    logger.warning(f"Invalid version format: {version}")
    return False


def mft_package_name(version: str) -> str:
    return f"mft-{version}-x86_64-rpm.tgz"


def mft_package_url(version: str) -> str:
    return f"{MFT_DOWNLOAD_BASE_URL}/{mft_package_name(version)}"


def detect_latest_mft_version(page_url: str = MFT_DOWNLOAD_PAGE) -> str:
    """
    Detect the latest MFT LTS version.

    Raises:
        VersionDetectionError: If neither the download page nor the probed
            versions yield a version
    """
    logger.info("Attempting to detect latest MFT LTS version...")

    logger.info("Method 1: Parsing NVIDIA download page...")
    page = fetch_page(page_url, timeout=(10, 30))
    if page:
        versions = sort_versions(MFT_PACKAGE_RE.findall(page))
        if versions:
            logger.info(f"✅ Detected version from download page: {versions[-1]}")
            return versions[-1]

    logger.info("Method 2: Probing for common LTS versions...")
    for version in MFT_PROBE_VERSIONS:
        logger.info(f"Testing version: {version}")
        if url_exists(mft_package_url(version)):
            logger.info(f"✅ Found available version: {version}")
            return version

    logger.error("❌ Could not auto-detect latest MFT version")
    raise VersionDetectionError("Could not auto-detect latest MFT version")


def firmware_file_name(version: str, model: str) -> str:
    """Build a ConnectX-7 firmware archive name from its release and model."""
    uefi = FIRMWARE_UEFI_VERSIONS.get(version, DEFAULT_UEFI_VERSION)
    flexboot = FIRMWARE_FLEXBOOT_VERSIONS.get(version, DEFAULT_FLEXBOOT_VERSION)
    return f"fw-ConnectX7-rel-{version}-{model}-UEFI-{uefi}-FlexBoot-{flexboot}.signed.bin.zip"


def firmware_url(firmware_file: str) -> str:
    return f"{FIRMWARE_BASE_URL}/{firmware_file}"


def _psids_for_model(model: str) -> List[str]:
    for known_model, psids in FIRMWARE_MODEL_PSIDS:
        if known_model == model:
            return psids
    return []


def _scrape_firmware_page(page: str) -> Optional[str]:
    lts_versions = sort_versions(LTS_VERSION_RE.findall(page), reverse=True)
    if lts_versions:
        logger.info(f"Found latest LTS version: {lts_versions[0]}")
        files = sort_versions(CX7_FIRMWARE_RE.findall(page), reverse=True)
        if files:
            logger.info(f"✅ Found latest LTS firmware for MCX755106AS-HEA: {files[0]}")
            return files[0]
        logger.warning("⚠️  No firmware found for MCX755106AS-HEA_Ax pattern")
    else:
        logger.warning("⚠️  No LTS versions found on firmware page")

    logger.info("Fallback: Looking for any ConnectX-7 firmware files...")
    files = sort_versions(CX7_FIRMWARE_LOOSE_RE.findall(page), reverse=True)
    if files:
        logger.info(f"✅ Found firmware (fallback): {files[0]}")
        return files[0]

    return None


def detect_latest_firmware(page_url: str = FIRMWARE_PAGE_URL) -> Dict[str, str]:
    """
    Detect the latest ConnectX-7 firmware per PSID.

    Returns:
        Mapping of PSID to firmware archive name. Empty when detection failed.
    """
    logger.info("Attempting to detect latest ConnectX-7 firmware versions...")
    firmware_map = {}

    logger.info("Method 1: Parsing NVIDIA ConnectX-7 firmware page for latest LTS version...")
    page = fetch_page(page_url)
    if page:
        firmware_file = _scrape_firmware_page(page)
        if firmware_file:
            for psid in _psids_for_model('MCX755106AS-HEA_Ax'):
                firmware_map[psid] = firmware_file

    if not firmware_map:
        logger.info("Method 2: Probing for latest firmware versions...")
        for version in FIRMWARE_PROBE_VERSIONS:
            for model, psids in FIRMWARE_MODEL_PSIDS:
                candidate = firmware_file_name(version, model)
                logger.info(f"Testing: {candidate}")
                if url_exists(firmware_url(candidate)):
                    logger.info(f"✅ Found available firmware: {candidate}")
                    for psid in psids:
                        firmware_map[psid] = candidate
                    break
            if firmware_map:
                break

    logger.info(f"Auto-detection completed: {len(firmware_map)} firmware mappings found")
    return firmware_map


def mlxup_download_urls(version: str) -> List[str]:
    """Candidate mlxup download URLs, direct binaries first, then tarballs."""
    return [
        f"https://www.mellanox.com/downloads/firmware/mlxup/{version}/SFX/linux_x64/mlxup",
        f"https://content.mellanox.com/firmware/mlxup/{version}/SFX/linux_x64/mlxup",
        f"https://network.nvidia.com/downloads/firmware/mlxup/{version}/SFX/linux_x64/mlxup",
        f"https://www.mellanox.com/downloads/MFT/mlxup-{version}-linux-x64.tar.gz",
        f"https://content.mellanox.com/MFT/mlxup-{version}-linux-x64.tar.gz",
    ]


def detect_mlxup_version(page_url: str = MLXUP_PAGE_URL) -> str:
    """
    Determine the mlxup version to download.

    The known default is used when its download URL answers. Otherwise the
    mlxup page is scraped, preferring 4.30 and newer, then any 4.x release.
    """
    logger.info("Detecting latest mlxup version...")
    version = MLXUP_DEFAULT_VERSION

    logger.info(f"Verifying version {version} is available...")
    if url_exists(mlxup_download_urls(version)[0]):
        logger.info(f"✅ Confirmed version {version} is available")
        return version

    logger.warning(f"⚠️  Version {version} not confirmed, trying web detection...")
    page = fetch_page(page_url)
    if page:
        found = SEMVER_RE.findall(page)
        versions = sort_versions([v for v in found if MLXUP_PREFERRED_RE.match(v)], reverse=True)
        if not versions:
            versions = sort_versions([v for v in found if MLXUP_ANY_RE.match(v)], reverse=True)
        if versions:
            version = versions[0]
            logger.info(f"Web detection found version: {version}")

    return version
