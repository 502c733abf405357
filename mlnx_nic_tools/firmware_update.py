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
Guided firmware update: explains the selected mode, then hands over to
the firmware installer.
"""

import logging
from typing import List, Optional

from .config import FirmwareConfig, DEFAULT_NOTES
from .tool_base import NicToolError


class FirmwareUpdatePlan:
    """Describes an auto-detect or static-configuration firmware update."""

    def __init__(self, auto_detect: bool = True, config_path: str = None):
        self.auto_detect = auto_detect
        self.config_path = config_path
        self.logger = logging.getLogger()
        self.config = self._load_config()

    def _load_config(self) -> Optional[FirmwareConfig]:
        try:
            return FirmwareConfig(self.config_path)
        except NicToolError as e:
            if not self.auto_detect:
                # Static mode has nothing to install without the mappings.
                raise NicToolError(f"{e}. Static mode requires firmware-config.json for PSID mappings")
            self.logger.warning(f"Firmware configuration not loaded: {e}")
            return None

    def describe(self) -> List[str]:
        lines = ["=== ConnectX-7 Firmware Update Tool ===", ""]

        if self.auto_detect:
            lines.extend([
                "🔍 Mode: Auto-Detection (Latest LTS Firmware)",
                "   - Will automatically detect latest firmware from NVIDIA website",
                "   - Downloads most current LTS versions for detected PSIDs",
                "   - Requires internet connectivity",
                "",
                "📋 Process:",
                "   1. Auto-detect latest firmware versions",
                "   2. Detect ConnectX-7 devices and PSIDs",
                "   3. Match PSIDs to latest firmware",
                "   4. Download and install firmware",
                "",
            ])
        else:
            lines.extend([
                "📁 Mode: Static Configuration (firmware-config.json)",
                "   - Using predefined firmware mappings from configuration file",
                "   - Predictable, repeatable installations",
                "",
                "Available firmware configurations:",
            ])
            lines.extend(f"   {line}" for line in self.config.describe_mappings())
            lines.append("")
            lines.append("Latest LTS versions (from config):")
            for model, version in self.config.latest_lts_versions.items():
                lines.append(f"   Model: {model} - Version: {version}")
            lines.append("")

        lines.append("⚠️  Important Notes:")
        notes = self.config.notes if self.config and self.config.notes else DEFAULT_NOTES
        lines.extend(f"   - {note}" for note in notes)
        lines.append("")
        return lines

    def confirmation_prompt(self) -> str:
        if self.auto_detect:
            return "Proceed with auto-detection and firmware update?"
        return "Proceed with static configuration firmware update?"
