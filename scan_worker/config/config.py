# Copyright 2026 Cisco Systems, Inc.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#
# SPDX-License-Identifier: Apache-2.0

"""
Configuration class for Scan Worker.

Explicit constructor arguments win; anything left at its default is
taken from ``SCAN_WORKER_*`` environment variables.
"""

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from ..core.exceptions import ConfigError
from .constants import ScanWorkerConstants


def _env_float(name: str) -> float | None:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return None
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}")


def _env_int(name: str) -> int | None:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return None
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")


@dataclass
class Config:
    """
    Configuration for Scan Worker.
    """

    # Coordinator
    base_url: str = ScanWorkerConstants.DEFAULT_BASE_URL
    inspector_base_url: str = ScanWorkerConstants.DEFAULT_INSPECTOR_BASE_URL
    user_agent: str = ScanWorkerConstants.USER_AGENT

    # Timeouts
    request_timeout_seconds: float = ScanWorkerConstants.DEFAULT_REQUEST_TIMEOUT
    download_timeout_seconds: float = ScanWorkerConstants.DEFAULT_DOWNLOAD_TIMEOUT
    scan_timeout_seconds: int = ScanWorkerConstants.DEFAULT_SCAN_TIMEOUT

    # Artifact retrieval
    max_download_size: int = ScanWorkerConstants.MAX_DOWNLOAD_SIZE

    # Loop policy
    poll_interval_seconds: float = ScanWorkerConstants.DEFAULT_POLL_INTERVAL
    rules_sync_interval_seconds: float | None = None
    submit_retries: int = ScanWorkerConstants.DEFAULT_SUBMIT_RETRIES
    retry_delay_seconds: float = ScanWorkerConstants.DEFAULT_RETRY_DELAY

    def __post_init__(self):
        """Load configuration from environment variables if not provided."""

        if self.base_url == ScanWorkerConstants.DEFAULT_BASE_URL:
            if env_url := os.getenv("SCAN_WORKER_BASE_URL"):
                self.base_url = env_url
        self.base_url = self.base_url.rstrip("/")

        if self.inspector_base_url == ScanWorkerConstants.DEFAULT_INSPECTOR_BASE_URL:
            if env_inspector := os.getenv("SCAN_WORKER_INSPECTOR_URL"):
                self.inspector_base_url = env_inspector
        self.inspector_base_url = self.inspector_base_url.rstrip("/")

        if self.max_download_size == ScanWorkerConstants.MAX_DOWNLOAD_SIZE:
            if (value := _env_int("SCAN_WORKER_MAX_DOWNLOAD_SIZE")) is not None:
                self.max_download_size = value

        if self.request_timeout_seconds == ScanWorkerConstants.DEFAULT_REQUEST_TIMEOUT:
            if (value := _env_float("SCAN_WORKER_REQUEST_TIMEOUT")) is not None:
                self.request_timeout_seconds = value

        if self.download_timeout_seconds == ScanWorkerConstants.DEFAULT_DOWNLOAD_TIMEOUT:
            if (value := _env_float("SCAN_WORKER_DOWNLOAD_TIMEOUT")) is not None:
                self.download_timeout_seconds = value

        if self.scan_timeout_seconds == ScanWorkerConstants.DEFAULT_SCAN_TIMEOUT:
            if (value := _env_int("SCAN_WORKER_SCAN_TIMEOUT")) is not None:
                self.scan_timeout_seconds = value

        if self.poll_interval_seconds == ScanWorkerConstants.DEFAULT_POLL_INTERVAL:
            if (value := _env_float("SCAN_WORKER_POLL_INTERVAL")) is not None:
                self.poll_interval_seconds = value

        if self.rules_sync_interval_seconds is None:
            self.rules_sync_interval_seconds = _env_float("SCAN_WORKER_RULES_SYNC_INTERVAL")

        if self.submit_retries == ScanWorkerConstants.DEFAULT_SUBMIT_RETRIES:
            if (value := _env_int("SCAN_WORKER_SUBMIT_RETRIES")) is not None:
                self.submit_retries = value

        if self.retry_delay_seconds == ScanWorkerConstants.DEFAULT_RETRY_DELAY:
            if (value := _env_float("SCAN_WORKER_RETRY_DELAY")) is not None:
                self.retry_delay_seconds = value

        if self.max_download_size <= 0:
            raise ConfigError("max_download_size must be positive")
        if self.submit_retries < 0:
            raise ConfigError("submit_retries must not be negative")

    @classmethod
    def from_env(cls) -> "Config":
        """
        Create configuration from environment variables.

        Returns:
            Config instance with values from environment
        """
        return cls()

    @classmethod
    def from_file(cls, config_file: Path) -> "Config":
        """
        Load configuration from .env file.

        Values in the file override variables already present in the
        environment.

        Args:
            config_file: Path to .env file

        Returns:
            Config instance
        """
        if config_file.exists():
            load_dotenv(config_file, override=True)

        return cls.from_env()
