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
Orchestration loop for a scan worker.

One job at a time: poll, refresh rules, fetch each distribution, scan
every entry, submit. Whatever happens between polling and submitting,
a job that was handed out gets exactly one result back.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from urllib.parse import urlparse

import httpx

from ..config.config import Config
from .exceptions import ArtifactError, DeserializationError, ScanError, ScanWorkerError, TransportError
from .extractors.archive_fetcher import ArchiveFetcher, TarContainer, ZipContainer
from .job_client import JobClient
from .models import Job, ScanResult, WorkerStage
from .rules.engine import BaseRuleEngine, YaraXEngine
from .rules.synchronizer import BackgroundRuleSync, RuleSetSynchronizer
from .state import RuleSetSnapshot, WorkerState
from .transport import build_http_client

logger = logging.getLogger(__name__)


def build_inspector_url(inspector_base_url: str, job: Job, distribution_url: str, entry_name: str) -> str | None:
    """
    Link to a matched file in the package inspector.

    Returns None when the distribution URL has no ``/packages/`` segment
    to anchor the link on.
    """
    path = urlparse(distribution_url).path
    marker = "/packages/"
    index = path.find(marker)
    if index == -1:
        return None
    artifact_path = path[index + len(marker) :]
    return f"{inspector_base_url}/project/{job.name}/{job.version}/packages/{artifact_path}/{entry_name}"


class Worker:
    """Drives jobs from poll to submission."""

    def __init__(
        self,
        config: Config,
        job_client: JobClient,
        fetcher: ArchiveFetcher,
        synchronizer: RuleSetSynchronizer,
        engine: BaseRuleEngine,
        state: WorkerState,
        background_sync: BackgroundRuleSync | None = None,
        http_client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self.job_client = job_client
        self.fetcher = fetcher
        self.synchronizer = synchronizer
        self.engine = engine
        self.state = state
        self.background_sync = background_sync
        self.http_client = http_client
        self._sleep = sleep
        self._stage = WorkerStage.IDLE

    @classmethod
    def from_config(
        cls,
        config: Config,
        engine: BaseRuleEngine | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> Worker:
        """
        Build a worker and load its first rule-set.

        Args:
            config: Worker configuration
            engine: Rule engine; defaults to YARA-X
            transport: Optional HTTP transport override

        Raises:
            ScanWorkerError: If the initial rule-set cannot be loaded
        """
        client = build_http_client(config, transport)
        engine = engine or YaraXEngine(timeout_seconds=config.scan_timeout_seconds)
        synchronizer = RuleSetSynchronizer(client, engine)
        try:
            state = synchronizer.bootstrap()
        except ScanWorkerError:
            client.close()
            raise

        background_sync = None
        if config.rules_sync_interval_seconds:
            background_sync = BackgroundRuleSync(synchronizer, state, config.rules_sync_interval_seconds)

        return cls(
            config=config,
            job_client=JobClient(client),
            fetcher=ArchiveFetcher(
                client,
                max_size=config.max_download_size,
                download_timeout_seconds=config.download_timeout_seconds,
            ),
            synchronizer=synchronizer,
            engine=engine,
            state=state,
            background_sync=background_sync,
            http_client=client,
        )

    @property
    def stage(self) -> WorkerStage:
        return self._stage

    def _enter(self, stage: WorkerStage) -> None:
        logger.debug("Stage %s -> %s", self._stage.value, stage.value)
        self._stage = stage

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    def run_once(self) -> ScanResult | None:
        """
        Poll for one job and process it.

        Returns:
            The submitted result, or None if there was no job to process
        """
        self._enter(WorkerStage.POLLING)
        try:
            job = self.job_client.get_job()
        except (TransportError, DeserializationError) as e:
            logger.warning("Polling for a job failed: %s", e)
            self._enter(WorkerStage.IDLE)
            return None

        if job is None:
            self._enter(WorkerStage.NO_JOB)
            self._enter(WorkerStage.IDLE)
            return None

        self._enter(WorkerStage.HAS_JOB)
        return self.process_job(job)

    def run_forever(self, stop_event: threading.Event | None = None) -> None:
        """Process jobs until ``stop_event`` is set, backing off when idle."""
        stop_event = stop_event or threading.Event()
        if self.background_sync is not None:
            self.background_sync.start()

        snapshot = self.state.get_current()
        logger.info(
            "Worker started against %s with bundle %s (%d rules)",
            self.config.base_url,
            snapshot.hash,
            snapshot.rule_count,
        )
        try:
            while not stop_event.is_set():
                try:
                    result = self.run_once()
                except Exception:
                    logger.exception("Unexpected error while processing a job")
                    result = None
                if result is None:
                    stop_event.wait(self.config.poll_interval_seconds)
        finally:
            if self.background_sync is not None:
                self.background_sync.stop()
            logger.info("Worker stopped")

    def close(self) -> None:
        if self.background_sync is not None:
            self.background_sync.stop()
        if self.http_client is not None:
            self.http_client.close()

    def __enter__(self) -> Worker:
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Job processing
    # ------------------------------------------------------------------

    def process_job(self, job: Job) -> ScanResult:
        """
        Sync rules, scan every distribution of ``job`` and submit the result.

        The result is submitted even if an unexpected error escapes a
        stage; that error is re-raised after submission.
        """
        result = ScanResult(name=job.name, version=job.version)
        try:
            self._sync_rules()
            snapshot = self.state.get_current()
            self._scan_distributions(job, snapshot, result)
        finally:
            self._enter(WorkerStage.SUBMITTING)
            self._submit(result)
            self._enter(WorkerStage.IDLE)
        return result

    def _sync_rules(self) -> None:
        if self.background_sync is not None:
            return
        self._enter(WorkerStage.SYNCING_RULES)
        try:
            self.synchronizer.sync(self.state)
        except ScanWorkerError as e:
            snapshot = self.state.get_current()
            logger.warning(
                "Rule sync failed, scanning with bundle %s (%d rules): %s", snapshot.hash, snapshot.rule_count, e
            )

    def _scan_distributions(self, job: Job, snapshot: RuleSetSnapshot, result: ScanResult) -> None:
        fetched_any = False
        for url in job.distributions:
            self._enter(WorkerStage.FETCHING_ARTIFACT)
            try:
                container = self.fetcher.fetch(url)
            except (ArtifactError, TransportError) as e:
                logger.warning("Skipping distribution %s: %s", url, e)
                continue

            fetched_any = True
            self._enter(WorkerStage.SCANNING)
            with container:
                try:
                    self._scan_container(container, url, job, snapshot, result)
                except ArtifactError as e:
                    logger.warning("Scan of %s stopped early: %s", url, e)

        if fetched_any:
            result.score = len(result.rules_matched)
        else:
            logger.warning("No distribution of %s %s could be fetched", job.name, job.version)

    def _scan_container(
        self,
        container: TarContainer | ZipContainer,
        url: str,
        job: Job,
        snapshot: RuleSetSnapshot,
        result: ScanResult,
    ) -> None:
        for entry in container.entries():
            try:
                data = entry.read()
                matched = self.engine.scan(data, snapshot.rules)
            except (ArtifactError, ScanError) as e:
                # Entries are independent; later ones still get scanned
                logger.warning("Could not scan %s in %s: %s", entry.name, url, e)
                continue
            finally:
                entry.stream.close()

            if not matched:
                continue
            logger.info("%s in %s matched %s", entry.name, url, ", ".join(sorted(matched)))
            if result.inspector_url is None:
                result.inspector_url = build_inspector_url(self.config.inspector_base_url, job, url, entry.name)
            result.rules_matched |= matched

    def _submit(self, result: ScanResult) -> None:
        attempts = self.config.submit_retries + 1
        for attempt in range(attempts):
            try:
                self.job_client.submit_result(result)
            except TransportError as e:
                if attempt + 1 < attempts:
                    delay = self.config.retry_delay_seconds * (2**attempt)
                    logger.warning(
                        "Submitting result for %s %s failed, retrying in %ss (attempt %d/%d): %s",
                        result.name,
                        result.version,
                        delay,
                        attempt + 1,
                        attempts,
                        e,
                    )
                    self._sleep(delay)
                    continue
                logger.error(
                    "Giving up on result for %s %s after %d attempts: %s", result.name, result.version, attempts, e
                )
                return

            logger.info(
                "Submitted %s %s: score=%s, %d rules matched",
                result.name,
                result.version,
                result.score,
                len(result.rules_matched),
            )
            return
