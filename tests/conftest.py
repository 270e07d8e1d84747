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

"""
Pytest configuration and shared fixtures.

This file is automatically loaded by pytest before running tests.
All fixtures defined here are available to every test module without
explicit imports.
"""

from __future__ import annotations

import gzip
import os
import io
import json
import struct
import tarfile
import zipfile
from typing import Any

import httpx
import pytest

from scan_worker.config.config import Config
from scan_worker.core.exceptions import RuleCompilationError
from scan_worker.core.rules.engine import BaseRuleEngine
from scan_worker.core.transport import build_http_client

BASE_URL = "http://coordinator.test"
ARTIFACT_HOST = "https://files.example.org/packages/ab/cd/ef"


# ---------------------------------------------------------------------------
# Rule engine test double
# ---------------------------------------------------------------------------


class FakeRuleEngine(BaseRuleEngine):
    """Line-oriented stand-in for a real matcher.

    Each non-blank source line is ``name:needle``; a rule matches when its
    needle occurs in the scanned bytes. A line without a colon fails the
    whole compilation.
    """

    def __init__(self):
        self.compile_calls = 0
        self.scanned: list[bytes] = []

    def compile(self, source: str) -> tuple[tuple[str, bytes], ...]:
        self.compile_calls += 1
        rules = []
        for line in source.splitlines():
            line = line.strip()
            if not line:
                continue
            if ":" not in line:
                raise RuleCompilationError(f"syntax error in {line!r}")
            name, needle = line.split(":", 1)
            rules.append((name, needle.encode()))
        return tuple(rules)

    def scan(self, data: bytes, rules: tuple[tuple[str, bytes], ...]) -> set[str]:
        self.scanned.append(data)
        return {name for name, needle in rules if needle in data}


@pytest.fixture
def fake_engine() -> FakeRuleEngine:
    return FakeRuleEngine()


# ---------------------------------------------------------------------------
# Archive builders
# ---------------------------------------------------------------------------


def make_tarball(files: dict[str, bytes | str]) -> bytes:
    """Build a gzipped tarball in memory."""
    raw = io.BytesIO()
    with tarfile.open(fileobj=raw, mode="w") as tar:
        for name, content in files.items():
            data = content.encode() if isinstance(content, str) else content
            info = tarfile.TarInfo(name)
            info.size = len(data)
            tar.addfile(info, io.BytesIO(data))
    return gzip.compress(raw.getvalue())


def make_zip(
    files: dict[str, bytes | str],
    compression: int = zipfile.ZIP_DEFLATED,
    corrupt: tuple[str, ...] = (),
) -> bytes:
    """
    Build a zip archive in memory.

    Entries named in ``corrupt`` keep valid headers but have every byte of
    their compressed data inverted.
    """
    raw = io.BytesIO()
    with zipfile.ZipFile(raw, "w", compression=compression) as zf:
        for name, content in files.items():
            zf.writestr(name, content)
    if not corrupt:
        return raw.getvalue()

    data = bytearray(raw.getvalue())
    with zipfile.ZipFile(io.BytesIO(bytes(data))) as zf:
        for info in zf.infolist():
            if info.filename not in corrupt:
                continue
            offset = info.header_offset
            name_len, extra_len = struct.unpack("<HH", data[offset + 26 : offset + 30])
            start = offset + 30 + name_len + extra_len
            for i in range(start, start + info.compress_size):
                data[i] ^= 0xFF
    return bytes(data)


# ---------------------------------------------------------------------------
# Coordinator test double
# ---------------------------------------------------------------------------


class FakeCoordinator:
    """Serves the coordinator endpoints and artifact downloads in memory."""

    def __init__(self):
        self.bundle: dict[str, Any] = {"hash": "bundle-1", "rules": {"evil": "evil:EVIL"}}
        self.rules_status = 200
        self.jobs: list[dict[str, Any]] = []
        self.no_job_status = 404
        self.artifacts: dict[str, tuple[int, bytes]] = {}
        self.artifact_errors: dict[str, Exception] = {}
        self.submissions: list[dict[str, Any]] = []
        self.submit_failures = 0
        self.requests: list[httpx.Request] = []

    def add_artifact(self, url: str, body: bytes, status: int = 200) -> str:
        self.artifacts[url] = (status, body)
        return url

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)

        if url in self.artifact_errors:
            raise self.artifact_errors[url]
        if url in self.artifacts:
            status, body = self.artifacts[url]
            # Streamed like a real download so the fetcher can iterate raw bytes
            return httpx.Response(
                status, headers={"Content-Length": str(len(body))}, stream=httpx.ByteStream(body)
            )

        path = request.url.path
        if request.method == "GET" and path == "/rules":
            return httpx.Response(self.rules_status, json=self.bundle)
        if request.method == "POST" and path == "/job":
            if self.jobs:
                return httpx.Response(200, json=self.jobs.pop(0))
            return httpx.Response(self.no_job_status, json={"detail": "no job"})
        if request.method == "PUT" and path == "/package":
            if self.submit_failures:
                self.submit_failures -= 1
                raise httpx.ConnectError("connection refused", request=request)
            self.submissions.append(json.loads(request.content))
            return httpx.Response(200, json={"status": "ok"})
        return httpx.Response(404, json={"detail": "not found"})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)


@pytest.fixture
def coordinator() -> FakeCoordinator:
    return FakeCoordinator()


@pytest.fixture
def config(monkeypatch) -> Config:
    for key in list(os.environ):
        if key.startswith("SCAN_WORKER_"):
            monkeypatch.delenv(key)
    return Config(base_url=BASE_URL, poll_interval_seconds=0.0, retry_delay_seconds=0.0)


@pytest.fixture
def http_client(config: Config, coordinator: FakeCoordinator):
    with build_http_client(config, coordinator.transport) as client:
        yield client
