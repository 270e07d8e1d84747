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
Constants for Scan Worker.
"""

from .. import __version__


class ScanWorkerConstants:
    """Constants used throughout the worker."""

    # Coordinator
    DEFAULT_BASE_URL = "http://127.0.0.1:8000"
    RULES_ENDPOINT = "/rules"
    JOB_ENDPOINT = "/job"
    RESULT_ENDPOINT = "/package"
    USER_AGENT = f"scan-worker/{__version__}"

    # Inspector links for matched files
    DEFAULT_INSPECTOR_BASE_URL = "https://inspector.pypi.io"

    # Artifact retrieval
    MAX_DOWNLOAD_SIZE = 250_000_000
    DOWNLOAD_CHUNK_SIZE = 64 * 1024

    # Default values
    DEFAULT_REQUEST_TIMEOUT = 30.0
    DEFAULT_DOWNLOAD_TIMEOUT = 300.0
    DEFAULT_SCAN_TIMEOUT = 60
    DEFAULT_POLL_INTERVAL = 10.0
    DEFAULT_SUBMIT_RETRIES = 3
    DEFAULT_RETRY_DELAY = 2.0

    # Distribution suffixes
    TARBALL_SUFFIXES = (".tar.gz", ".tgz")
    ZIP_SUFFIXES = (".zip", ".whl", ".egg")
