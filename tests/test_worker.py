# Copyright 2026 Cisco Systems, Inc. and its affiliates
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

"""Tests for the orchestration loop."""

from __future__ import annotations

import threading
import zipfile
from dataclasses import replace

import httpx
import pytest

from scan_worker.core.exceptions import ScanError, TransportError
from scan_worker.core.models import Job, WorkerStage
from scan_worker.core.worker import Worker, build_inspector_url

from .conftest import ARTIFACT_HOST, FakeRuleEngine, make_tarball, make_zip


def _job(*distributions: str, name: str = "pkg", version: str = "1.0") -> dict:
    return {"hash": f"{name}-{version}-hash", "name": name, "version": version, "distributions": list(distributions)}


@pytest.fixture
def worker(config, coordinator, fake_engine):
    with Worker.from_config(config, engine=fake_engine, transport=coordinator.transport) as w:
        yield w


def _rules_requests(coordinator) -> int:
    return sum(1 for r in coordinator.requests if r.url.path == "/rules")


class TestPolling:
    def test_no_job_goes_idle_without_side_effects(self, worker, coordinator, fake_engine):
        requests_before = len(coordinator.requests)

        assert worker.run_once() is None

        assert worker.stage is WorkerStage.IDLE
        assert coordinator.submissions == []
        assert fake_engine.scanned == []
        assert [r.url.path for r in coordinator.requests[requests_before:]] == ["/job"]

    def test_poll_failure_goes_idle(self, config, fake_engine):
        def handler(request):
            if request.url.path == "/rules":
                return httpx.Response(200, json={"hash": "h", "rules": {}})
            raise httpx.ConnectError("refused", request=request)

        with Worker.from_config(config, engine=fake_engine, transport=httpx.MockTransport(handler)) as worker:
            assert worker.run_once() is None
            assert worker.stage is WorkerStage.IDLE

    def test_bootstrap_failure_raises(self, config, coordinator, fake_engine):
        coordinator.rules_status = 500

        with pytest.raises(TransportError):
            Worker.from_config(config, engine=fake_engine, transport=coordinator.transport)


class TestProcessJob:
    def test_matches_are_submitted(self, worker, coordinator):
        url = coordinator.add_artifact(
            f"{ARTIFACT_HOST}/pkg-1.0.tar.gz",
            make_tarball({"pkg-1.0/setup.py": "setup()", "pkg-1.0/pkg/evil.py": "EVIL()"}),
        )
        coordinator.jobs.append(_job(url))

        result = worker.run_once()

        assert result is not None
        assert coordinator.submissions == [
            {
                "name": "pkg",
                "version": "1.0",
                "score": 1,
                "inspector_url": "https://inspector.pypi.io/project/pkg/1.0/packages/ab/cd/ef/pkg-1.0.tar.gz/pkg-1.0/pkg/evil.py",
                "rules_matched": ["evil"],
            }
        ]
        assert worker.stage is WorkerStage.IDLE

    def test_clean_package_scores_zero(self, worker, coordinator):
        url = coordinator.add_artifact(f"{ARTIFACT_HOST}/pkg-1.0.whl", make_zip({"pkg/__init__.py": "pass"}))
        coordinator.jobs.append(_job(url))

        worker.run_once()

        assert coordinator.submissions == [{"name": "pkg", "version": "1.0", "score": 0, "rules_matched": []}]

    def test_failed_urls_are_skipped_until_one_succeeds(self, worker, coordinator, fake_engine, config):
        missing = coordinator.add_artifact(f"{ARTIFACT_HOST}/pkg-1.0.zip", b"", status=404)
        too_big = coordinator.add_artifact(
            f"{ARTIFACT_HOST}/pkg-1.0-big.tar.gz", make_tarball({"zeros": b"\x00" * (config.max_download_size // 1000)})
        )
        unsupported = f"{ARTIFACT_HOST}/pkg-1.0.exe"
        refused = f"{ARTIFACT_HOST}/pkg-1.0-refused.whl"
        coordinator.artifact_errors[refused] = httpx.ConnectError("refused")
        good = coordinator.add_artifact(f"{ARTIFACT_HOST}/pkg-1.0.tar.gz", make_tarball({"pkg/a.py": "EVIL"}))
        worker.fetcher.max_size = config.max_download_size // 2000
        coordinator.jobs.append(_job(missing, too_big, unsupported, refused, good))

        worker.run_once()

        assert len(coordinator.submissions) == 1
        assert coordinator.submissions[0]["rules_matched"] == ["evil"]
        assert coordinator.submissions[0]["score"] == 1
        assert fake_engine.scanned == [b"EVIL"]

    def test_all_urls_failing_submits_empty_result(self, worker, coordinator):
        missing = coordinator.add_artifact(f"{ARTIFACT_HOST}/pkg-1.0.tar.gz", b"", status=500)
        broken = coordinator.add_artifact(f"{ARTIFACT_HOST}/pkg-1.0.whl", b"not a zip")
        coordinator.jobs.append(_job(missing, broken))

        result = worker.run_once()

        assert result.score is None
        assert result.rules_matched == set()
        assert coordinator.submissions == [{"name": "pkg", "version": "1.0", "rules_matched": []}]

    def test_job_without_distributions_submits_empty_result(self, worker, coordinator):
        coordinator.jobs.append(_job())

        worker.run_once()

        assert coordinator.submissions == [{"name": "pkg", "version": "1.0", "rules_matched": []}]

    def test_matches_are_unioned_across_artifacts_and_entries(self, worker, coordinator):
        coordinator.bundle = {"hash": "bundle-2", "rules": {"a": "a:AAA", "b": "b:BBB", "c": "c:CCC"}}
        sdist = coordinator.add_artifact(
            f"{ARTIFACT_HOST}/pkg-1.0.tar.gz", make_tarball({"x.py": "AAA", "y.py": "AAA BBB"})
        )
        wheel = coordinator.add_artifact(f"{ARTIFACT_HOST}/pkg-1.0.whl", make_zip({"z.py": "CCC"}))
        coordinator.jobs.append(_job(sdist, wheel))

        worker.run_once()

        assert coordinator.submissions[0]["rules_matched"] == ["a", "b", "c"]
        assert coordinator.submissions[0]["score"] == 3

    def test_first_match_sets_inspector_url(self, worker, coordinator):
        url = coordinator.add_artifact(
            f"{ARTIFACT_HOST}/pkg-1.0.tar.gz", make_tarball({"first.py": "EVIL", "second.py": "EVIL"})
        )
        coordinator.jobs.append(_job(url))

        result = worker.run_once()

        assert result.inspector_url.endswith("/pkg-1.0.tar.gz/first.py")

    def test_entry_scan_error_skips_entry(self, config, coordinator):
        class FlakyEngine(FakeRuleEngine):
            def scan(self, data, rules):
                if data == b"BROKEN":
                    raise ScanError("timed out")
                return super().scan(data, rules)

        url = coordinator.add_artifact(
            f"{ARTIFACT_HOST}/pkg-1.0.tar.gz", make_tarball({"a.py": "BROKEN", "b.py": "EVIL"})
        )
        coordinator.jobs.append(_job(url))

        with Worker.from_config(config, engine=FlakyEngine(), transport=coordinator.transport) as worker:
            worker.run_once()

        assert coordinator.submissions[0]["rules_matched"] == ["evil"]

    def test_corrupt_zip_entry_does_not_hide_later_entries(self, worker, coordinator):
        body = make_zip({"aaa_corrupt.py": "print('hi')\n" * 50, "zzz_evil.py": "EVIL()"}, corrupt=("aaa_corrupt.py",))
        url = coordinator.add_artifact(f"{ARTIFACT_HOST}/pkg-1.0-py3-none-any.whl", body)
        coordinator.jobs.append(_job(url))

        worker.run_once()

        submission = coordinator.submissions[0]
        assert (submission["score"], submission["rules_matched"]) == (1, ["evil"])

    def test_oversize_zip_entry_does_not_hide_later_entries(self, worker, coordinator):
        url = coordinator.add_artifact(
            f"{ARTIFACT_HOST}/pkg-1.0.whl", make_zip({"aaa_bomb.bin": b"\x00" * 200_000, "zzz_evil.py": "EVIL"})
        )
        worker.fetcher.max_size = 50_000
        coordinator.jobs.append(_job(url))

        worker.run_once()

        assert coordinator.submissions[0]["rules_matched"] == ["evil"]

    @pytest.mark.parametrize("compression", [zipfile.ZIP_BZIP2, zipfile.ZIP_LZMA])
    def test_corrupt_wheel_moves_on_to_next_distribution(self, worker, coordinator, compression):
        wheel = coordinator.add_artifact(
            f"{ARTIFACT_HOST}/pkg-1.0-py3-none-any.whl",
            make_zip({"pkg/mod.py": "print('hi')\n" * 50}, compression=compression, corrupt=("pkg/mod.py",)),
        )
        tarball = coordinator.add_artifact(f"{ARTIFACT_HOST}/pkg-1.0.tar.gz", make_tarball({"pkg/mod.py": "EVIL"}))
        coordinator.jobs.append(_job(wheel, tarball))

        result = worker.run_once()

        assert result.rules_matched == {"evil"}
        assert worker.stage is WorkerStage.IDLE
        submission = coordinator.submissions[0]
        assert (submission["score"], submission["rules_matched"]) == (1, ["evil"])

    def test_unexpected_error_still_submits_then_raises(self, config, coordinator):
        class BrokenEngine(FakeRuleEngine):
            def scan(self, data, rules):
                raise RuntimeError("engine crashed")

        url = coordinator.add_artifact(f"{ARTIFACT_HOST}/pkg-1.0.tar.gz", make_tarball({"a.py": "x"}))
        coordinator.jobs.append(_job(url))

        with Worker.from_config(config, engine=BrokenEngine(), transport=coordinator.transport) as worker:
            with pytest.raises(RuntimeError, match="engine crashed"):
                worker.run_once()
            assert worker.stage is WorkerStage.IDLE

        assert coordinator.submissions == [{"name": "pkg", "version": "1.0", "rules_matched": []}]


class TestRuleSyncDuringJobs:
    def test_new_rules_are_used_for_the_next_job(self, worker, coordinator):
        url = coordinator.add_artifact(f"{ARTIFACT_HOST}/pkg-1.0.tar.gz", make_tarball({"a.py": "FRESH"}))
        coordinator.bundle = {"hash": "bundle-2", "rules": {"fresh": "fresh:FRESH"}}
        coordinator.jobs.append(_job(url))

        worker.run_once()

        assert worker.state.hash == "bundle-2"
        assert coordinator.submissions[0]["rules_matched"] == ["fresh"]

    def test_sync_failure_scans_with_installed_rules(self, worker, coordinator, caplog):
        url = coordinator.add_artifact(f"{ARTIFACT_HOST}/pkg-1.0.tar.gz", make_tarball({"a.py": "EVIL"}))
        coordinator.rules_status = 503
        coordinator.jobs.append(_job(url))

        worker.run_once()

        assert worker.state.hash == "bundle-1"
        assert coordinator.submissions[0]["rules_matched"] == ["evil"]
        assert "Rule sync failed, scanning with bundle bundle-1 (1 rules)" in caplog.text

    def test_compile_failure_scans_with_installed_rules(self, worker, coordinator):
        url = coordinator.add_artifact(f"{ARTIFACT_HOST}/pkg-1.0.tar.gz", make_tarball({"a.py": "EVIL"}))
        coordinator.bundle = {"hash": "bundle-broken", "rules": {"bad": "not a rule"}}
        coordinator.jobs.append(_job(url))

        worker.run_once()

        assert worker.state.hash == "bundle-1"
        assert coordinator.submissions[0]["rules_matched"] == ["evil"]

    def test_background_sync_replaces_per_job_sync(self, config, coordinator, fake_engine):
        config = replace(config, rules_sync_interval_seconds=3600)
        url = coordinator.add_artifact(f"{ARTIFACT_HOST}/pkg-1.0.tar.gz", make_tarball({"a.py": "EVIL"}))
        coordinator.jobs.append(_job(url))

        with Worker.from_config(config, engine=fake_engine, transport=coordinator.transport) as worker:
            assert worker.background_sync is not None
            before = _rules_requests(coordinator)
            worker.run_once()

        assert _rules_requests(coordinator) == before
        assert len(coordinator.submissions) == 1


class TestSubmission:
    def test_transient_submit_failures_are_retried(self, worker, coordinator):
        coordinator.submit_failures = 2
        coordinator.jobs.append(_job())

        worker.run_once()

        assert len(coordinator.submissions) == 1

    def test_gives_up_after_retries(self, worker, coordinator, caplog):
        coordinator.submit_failures = worker.config.submit_retries + 1
        coordinator.jobs.append(_job())

        result = worker.run_once()

        assert result is not None
        assert coordinator.submissions == []
        assert "Giving up" in caplog.text

    def test_retry_delays_back_off(self, worker, coordinator):
        delays = []
        worker._sleep = delays.append
        worker.config.retry_delay_seconds = 1.5
        coordinator.submit_failures = 2
        coordinator.jobs.append(_job())

        worker.run_once()

        assert delays == [1.5, 3.0]


class TestRunForever:
    def test_processes_jobs_until_stopped(self, worker, coordinator):
        url = coordinator.add_artifact(f"{ARTIFACT_HOST}/pkg-1.0.tar.gz", make_tarball({"a.py": "EVIL"}))
        coordinator.jobs.extend([_job(url, name="one"), _job(url, name="two")])
        stop = threading.Event()
        thread = threading.Thread(target=worker.run_forever, args=(stop,))
        thread.start()
        try:
            for _ in range(500):
                if len(coordinator.submissions) == 2:
                    break
                stop.wait(0.01)
        finally:
            stop.set()
            thread.join(timeout=5)

        assert not thread.is_alive()
        assert [s["name"] for s in coordinator.submissions] == ["one", "two"]


class TestInspectorUrl:
    def test_builds_from_packages_path(self):
        job = Job(hash="h", name="pkg", version="1.0")

        url = build_inspector_url(
            "https://inspector.example", job, "https://files.example.org/packages/ab/cd/pkg-1.0.tar.gz", "pkg/x.py"
        )

        assert url == "https://inspector.example/project/pkg/1.0/packages/ab/cd/pkg-1.0.tar.gz/pkg/x.py"

    def test_none_without_packages_segment(self):
        job = Job(hash="h", name="pkg", version="1.0")

        assert build_inspector_url("https://inspector.example", job, "https://mirror.example/pkg.tar.gz", "x") is None
