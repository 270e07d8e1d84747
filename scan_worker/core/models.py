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
Data models for coordinator payloads, scan results and archive entries.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import IO, Any

from .exceptions import DeserializationError


class WorkerStage(str, Enum):
    """Stages of the orchestration loop."""

    IDLE = "idle"
    POLLING = "polling"
    NO_JOB = "no_job"
    HAS_JOB = "has_job"
    SYNCING_RULES = "syncing_rules"
    FETCHING_ARTIFACT = "fetching_artifact"
    SCANNING = "scanning"
    SUBMITTING = "submitting"


class DistributionKind(str, Enum):
    """Container format of a distribution artifact."""

    TARBALL = "tarball"
    ZIP = "zip"


def _require_str(payload: dict[str, Any], key: str, what: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str):
        raise DeserializationError(f"{what}: field {key!r} must be a string, got {type(value).__name__}")
    return value


@dataclass(frozen=True)
class RuleBundle:
    """The full rule collection as served by the coordinator.

    ``hash`` identifies the bundle version and is only ever compared for
    equality. A bundle is replaced wholesale, never merged.
    """

    hash: str
    rules: dict[str, str]

    @classmethod
    def from_dict(cls, payload: Any) -> RuleBundle:
        """Parse a ``GET /rules`` response body."""
        if not isinstance(payload, dict):
            raise DeserializationError("Rules response must be a JSON object")
        bundle_hash = _require_str(payload, "hash", "Rules response")
        rules = payload.get("rules")
        if not isinstance(rules, dict):
            raise DeserializationError("Rules response: field 'rules' must be an object")
        for rule_id, text in rules.items():
            if not isinstance(text, str):
                raise DeserializationError(f"Rules response: rule {rule_id!r} must be a string")
        return cls(hash=bundle_hash, rules=dict(rules))

    def source(self) -> str:
        """Concatenate every rule text into one compilable source blob."""
        return "\n".join(self.rules[rule_id] for rule_id in sorted(self.rules))


@dataclass(frozen=True)
class Job:
    """One package version to scan.

    ``hash`` is the package identity assigned by the coordinator. It lives
    in a different namespace from :attr:`RuleBundle.hash`.
    """

    hash: str
    name: str
    version: str
    distributions: tuple[str, ...] = ()

    REQUIRED_FIELDS = ("hash", "name", "version", "distributions")

    @classmethod
    def matches(cls, payload: dict[str, Any]) -> bool:
        return all(key in payload for key in cls.REQUIRED_FIELDS)

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> Job:
        distributions = payload.get("distributions")
        if not isinstance(distributions, list) or not all(isinstance(url, str) for url in distributions):
            raise DeserializationError("Job response: field 'distributions' must be a list of strings")
        return cls(
            hash=_require_str(payload, "hash", "Job response"),
            name=_require_str(payload, "name", "Job response"),
            version=_require_str(payload, "version", "Job response"),
            distributions=tuple(distributions),
        )


@dataclass(frozen=True)
class NoJob:
    """The coordinator's "nothing to do" answer on the job endpoint."""

    detail: str

    @classmethod
    def matches(cls, payload: dict[str, Any]) -> bool:
        return "detail" in payload

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> NoJob:
        return cls(detail=str(payload["detail"]))


def parse_job_response(payload: Any) -> Job | NoJob:
    """Match a ``POST /job`` body against its two possible shapes.

    The wire format carries no discriminant field, so the variant is
    chosen by which required fields are present. A job shape wins over
    ``detail``.
    """
    if not isinstance(payload, dict):
        raise DeserializationError("Job response must be a JSON object")
    if Job.matches(payload):
        return Job.from_dict(payload)
    if NoJob.matches(payload):
        return NoJob.from_dict(payload)
    raise DeserializationError(f"Job response matches neither a job nor an error: keys {sorted(payload)}")


@dataclass
class ScanResult:
    """Verdict for one job, submitted exactly once."""

    name: str
    version: str
    score: int | None = None
    inspector_url: str | None = None
    rules_matched: set[str] = field(default_factory=set)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the ``PUT /package`` body, omitting unset optionals."""
        body: dict[str, Any] = {"name": self.name, "version": self.version}
        if self.score is not None:
            body["score"] = self.score
        if self.inspector_url is not None:
            body["inspector_url"] = self.inspector_url
        body["rules_matched"] = sorted(self.rules_matched)
        return body


@dataclass
class ArchiveEntry:
    """A regular file inside a retrieved archive."""

    name: str
    size: int
    stream: IO[bytes]

    def read(self) -> bytes:
        return self.stream.read()
