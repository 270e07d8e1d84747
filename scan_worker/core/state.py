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
Shared, atomically replaceable rule-set state.

The compiled rules and the hash of the bundle they came from live in one
immutable :class:`RuleSetSnapshot`. Readers take a snapshot and keep
using it for the whole scan; the synchronizer swaps in a new snapshot
under a lock. A scan can therefore never see a hash paired with a
rule-set compiled from a different bundle.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class RuleSetSnapshot:
    """A compiled rule-set together with its source bundle hash."""

    hash: str
    rules: Any
    rule_count: int = 0


class WorkerState:
    """Holds the currently active rule-set for a worker process."""

    def __init__(self, snapshot: RuleSetSnapshot):
        self._lock = threading.Lock()
        self._snapshot = snapshot

    @classmethod
    def from_rules(cls, bundle_hash: str, rules: Any, rule_count: int = 0) -> WorkerState:
        return cls(RuleSetSnapshot(hash=bundle_hash, rules=rules, rule_count=rule_count))

    def get_current(self) -> RuleSetSnapshot:
        """Return the active snapshot."""
        with self._lock:
            return self._snapshot

    def replace(self, bundle_hash: str, rules: Any, rule_count: int = 0) -> RuleSetSnapshot:
        """Install a new rule-set and its hash in one step."""
        snapshot = RuleSetSnapshot(hash=bundle_hash, rules=rules, rule_count=rule_count)
        with self._lock:
            self._snapshot = snapshot
        return snapshot

    @property
    def hash(self) -> str:
        return self.get_current().hash

    @property
    def rules(self) -> Any:
        return self.get_current().rules
