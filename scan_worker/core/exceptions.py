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

"""Scan Worker exceptions.

This module defines the error taxonomy for the job-processing core.
All exceptions inherit from ScanWorkerError for easy catching.

None of these errors is fatal to the worker process once it is running:
the orchestration loop recovers from each of them and still submits a
result for the job in hand.

Example:
    >>> from scan_worker.core.exceptions import DownloadTooLarge, TransportError
    >>>
    >>> try:
    ...     archive = fetcher.fetch_tarball(url)
    ... except DownloadTooLarge as e:
    ...     print(f"Artifact too large: {e.url}")
    ... except TransportError as e:
    ...     print(f"Download failed: {e}")
"""

from __future__ import annotations


class ScanWorkerError(Exception):
    """Base exception for all Scan Worker errors."""

    pass


class ConfigError(ScanWorkerError):
    """Raised when configuration values cannot be parsed."""

    pass


class TransportError(ScanWorkerError):
    """Raised on network, timeout or HTTP status failures.

    Retryable by the orchestration policy.
    """

    def __init__(self, message: str, url: str | None = None):
        super().__init__(message)
        self.url = url


class DeserializationError(ScanWorkerError):
    """Raised when a coordinator response does not have the expected shape.

    Treated as transient: the next poll tries again.
    """

    pass


class RuleCompilationError(ScanWorkerError):
    """Raised when a rule bundle fails to compile.

    Fatal to that sync attempt only. The previously installed rule-set
    stays authoritative.
    """

    def __init__(self, detail: str, bundle_hash: str | None = None):
        message = f"Failed to compile rules: {detail}"
        if bundle_hash:
            message = f"Failed to compile rules for bundle {bundle_hash}: {detail}"
        super().__init__(message)
        self.detail = detail
        self.bundle_hash = bundle_hash


class ArtifactError(ScanWorkerError):
    """Base for failures scoped to a single distribution URL."""

    def __init__(self, message: str, url: str):
        super().__init__(message)
        self.url = url


class DownloadTooLarge(ArtifactError):
    """Raised when an artifact exceeds the download size bound.

    Non-retryable: the caller moves on to the next distribution.
    """

    def __init__(self, url: str, limit: int | None = None):
        message = f"Download too large: {url}"
        if limit is not None:
            message = f"Download too large (limit {limit} bytes): {url}"
        super().__init__(message, url)
        self.limit = limit


class ArchiveFormatError(ArtifactError):
    """Raised when an artifact is not a readable gzip, tar or zip archive."""

    pass


class UnsupportedDistributionError(ArtifactError):
    """Raised when a distribution URL is neither a tarball nor a zip."""

    pass


class ScanError(ScanWorkerError):
    """Raised when the matcher fails on a single archive entry."""

    pass
