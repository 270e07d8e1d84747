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
Rule-set synchronization with the coordinator.

The coordinator is authoritative for the rule bundle. A sync fetches the
bundle, compiles it and, only when compilation fully succeeds, swaps the
result into :class:`WorkerState` together with the bundle hash.
"""

from __future__ import annotations

import logging
import threading
from typing import Any

import httpx

from ...config.constants import ScanWorkerConstants
from ..exceptions import DeserializationError, RuleCompilationError, ScanWorkerError
from ..models import RuleBundle
from ..state import WorkerState
from ..transport import request_json
from .engine import BaseRuleEngine

logger = logging.getLogger(__name__)


class RuleSetSynchronizer:
    """Keeps a worker's compiled rules in step with the coordinator."""

    def __init__(self, client: httpx.Client, engine: BaseRuleEngine):
        """
        Initialize the synchronizer.

        Args:
            client: Shared HTTP client with the coordinator base URL
            engine: Rule engine used to compile bundles
        """
        self.client = client
        self.engine = engine

    def fetch_current_bundle(self) -> RuleBundle:
        """
        Fetch the current rule bundle.

        Raises:
            TransportError: On network or HTTP failure
            DeserializationError: If the body is not a rule bundle
        """
        response = request_json(self.client, "GET", ScanWorkerConstants.RULES_ENDPOINT)
        try:
            payload = response.json()
        except ValueError as e:
            raise DeserializationError(f"Rules response is not valid JSON: {e}") from e
        return RuleBundle.from_dict(payload)

    def compile(self, bundle: RuleBundle) -> Any:
        """
        Compile every rule of a bundle into one rule-set.

        Raises:
            RuleCompilationError: If any rule text is invalid
        """
        try:
            return self.engine.compile(bundle.source())
        except RuleCompilationError as e:
            raise RuleCompilationError(e.detail, bundle_hash=bundle.hash) from e

    def bootstrap(self) -> WorkerState:
        """Fetch and compile the first rule-set for a new worker."""
        bundle = self.fetch_current_bundle()
        rules = self.compile(bundle)
        logger.info("Loaded %d rules (bundle %s)", len(bundle.rules), bundle.hash)
        return WorkerState.from_rules(bundle.hash, rules, rule_count=len(bundle.rules))

    def sync(self, state: WorkerState) -> bool:
        """
        Bring ``state`` up to date with the coordinator.

        The state is left untouched if anything fails.

        Returns:
            True if a new rule-set was installed, False if the bundle hash
            was unchanged
        """
        bundle = self.fetch_current_bundle()
        if bundle.hash == state.hash:
            logger.debug("Rules unchanged (bundle %s)", bundle.hash)
            return False

        rules = self.compile(bundle)
        previous = state.hash
        state.replace(bundle.hash, rules, rule_count=len(bundle.rules))
        logger.info("Updated rules %s -> %s (%d rules)", previous, bundle.hash, len(bundle.rules))
        return True


class BackgroundRuleSync:
    """Runs :meth:`RuleSetSynchronizer.sync` on a timer in a daemon thread."""

    def __init__(self, synchronizer: RuleSetSynchronizer, state: WorkerState, interval_seconds: float):
        self.synchronizer = synchronizer
        self.state = state
        self.interval_seconds = interval_seconds
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name="rule-sync", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _run(self) -> None:
        while not self._stop.wait(self.interval_seconds):
            try:
                self.synchronizer.sync(self.state)
            except ScanWorkerError as e:
                logger.warning("Background rule sync failed, keeping bundle %s: %s", self.state.hash, e)
