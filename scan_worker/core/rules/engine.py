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
Rule engine capability used by the worker.

The core only needs two operations from a pattern-matching engine:
compile a blob of rule text, and scan bytes against the compiled result.
:class:`BaseRuleEngine` is that seam; :class:`YaraXEngine` backs it with
YARA-X.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

import yara_x

from ..exceptions import RuleCompilationError, ScanError

logger = logging.getLogger(__name__)


class BaseRuleEngine(ABC):
    """Abstract compile/scan capability."""

    @abstractmethod
    def compile(self, source: str) -> Any:
        """
        Compile concatenated rule text.

        Args:
            source: All rule texts of a bundle joined together

        Returns:
            An opaque compiled rule-set

        Raises:
            RuleCompilationError: If any rule text is invalid. Nothing is
                returned for a partially valid source.
        """
        pass

    @abstractmethod
    def scan(self, data: bytes, rules: Any) -> set[str]:
        """
        Scan bytes against a compiled rule-set.

        Returns:
            Identifiers of the rules that matched

        Raises:
            ScanError: If the engine fails on this input
        """
        pass


class YaraXEngine(BaseRuleEngine):
    """Rule engine backed by YARA-X."""

    def __init__(self, timeout_seconds: int | None = None):
        """
        Initialize the engine.

        Args:
            timeout_seconds: Per-scan timeout; None disables it
        """
        self.timeout_seconds = timeout_seconds

    def compile(self, source: str) -> yara_x.Rules:
        logger.debug("Compiling %d bytes of rule source", len(source))
        compiler = yara_x.Compiler()
        try:
            compiler.add_source(source)
            return compiler.build()
        except yara_x.CompileError as e:
            raise RuleCompilationError(str(e)) from e

    def scan(self, data: bytes, rules: yara_x.Rules) -> set[str]:
        scanner = yara_x.Scanner(rules)
        if self.timeout_seconds:
            scanner.set_timeout(self.timeout_seconds)
        try:
            results = scanner.scan(data)
        except yara_x.TimeoutError as e:
            raise ScanError(f"YARA scan timed out after {self.timeout_seconds}s") from e
        except yara_x.ScanError as e:
            raise ScanError(f"YARA scanning error: {e}") from e
        return {rule.identifier for rule in results.matching_rules}
