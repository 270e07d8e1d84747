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
Scan Worker - malware scanning worker for software-registry packages.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("scan-worker")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"


def __getattr__(name: str):
    """Lazy-load public API symbols on first access.

    Keeps ``import scan_worker`` free of httpx and YARA-X imports until a
    symbol that needs them is used.
    """
    _lazy_map = {
        "Config": (".config.config", "Config"),
        "ScanWorkerConstants": (".config.constants", "ScanWorkerConstants"),
        "ArchiveFetcher": (".core.extractors.archive_fetcher", "ArchiveFetcher"),
        "JobClient": (".core.job_client", "JobClient"),
        "Job": (".core.models", "Job"),
        "RuleBundle": (".core.models", "RuleBundle"),
        "ScanResult": (".core.models", "ScanResult"),
        "WorkerStage": (".core.models", "WorkerStage"),
        "BaseRuleEngine": (".core.rules.engine", "BaseRuleEngine"),
        "YaraXEngine": (".core.rules.engine", "YaraXEngine"),
        "RuleSetSynchronizer": (".core.rules.synchronizer", "RuleSetSynchronizer"),
        "WorkerState": (".core.state", "WorkerState"),
        "Worker": (".core.worker", "Worker"),
        "ScanWorkerError": (".core.exceptions", "ScanWorkerError"),
        "TransportError": (".core.exceptions", "TransportError"),
        "DeserializationError": (".core.exceptions", "DeserializationError"),
        "RuleCompilationError": (".core.exceptions", "RuleCompilationError"),
        "DownloadTooLarge": (".core.exceptions", "DownloadTooLarge"),
    }
    if name in _lazy_map:
        module_path, attr = _lazy_map[name]
        import importlib

        mod = importlib.import_module(module_path, __package__)
        val = getattr(mod, attr)
        # Cache on the module so __getattr__ is only called once per symbol
        globals()[name] = val
        return val
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    "Worker",
    "WorkerState",
    "WorkerStage",
    "RuleSetSynchronizer",
    "ArchiveFetcher",
    "JobClient",
    "BaseRuleEngine",
    "YaraXEngine",
    "Job",
    "RuleBundle",
    "ScanResult",
    "Config",
    "ScanWorkerConstants",
    "ScanWorkerError",
    "TransportError",
    "DeserializationError",
    "RuleCompilationError",
    "DownloadTooLarge",
]
