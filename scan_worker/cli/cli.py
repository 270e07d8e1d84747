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

"""Command-line interface for the Scan Worker."""

from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from pathlib import Path

from ..config.config import Config
from ..core.exceptions import ScanWorkerError
from ..core.rules.engine import YaraXEngine
from ..core.rules.synchronizer import RuleSetSynchronizer
from ..core.transport import build_http_client
from ..core.worker import Worker

logger = logging.getLogger("scan_worker.cli")


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _load_config(args: argparse.Namespace) -> Config:
    """Build configuration from ``--env-file`` and flag overrides."""
    env_file = getattr(args, "env_file", None)
    config = Config.from_file(Path(env_file)) if env_file else Config.from_env()

    base_url = getattr(args, "base_url", None)
    if base_url:
        config.base_url = base_url.rstrip("/")
    return config


def _add_common_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--env-file", help="Load configuration from a .env file")
    parser.add_argument("--base-url", help="Coordinator base URL (overrides SCAN_WORKER_BASE_URL)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def run_command(args: argparse.Namespace) -> int:
    """Start the worker loop."""
    try:
        config = _load_config(args)
        worker = Worker.from_config(config)
    except ScanWorkerError as e:
        print(f"Error: could not start worker: {e}", file=sys.stderr)
        return 1

    with worker:
        if args.once:
            result = worker.run_once()
            if result is None:
                print("No job available")
            else:
                print(f"{result.name} {result.version}: score={result.score} rules={sorted(result.rules_matched)}")
            return 0

        stop_event = threading.Event()

        def _handle_signal(signum, _frame):
            logger.info("Received signal %d, finishing current job", signum)
            stop_event.set()

        signal.signal(signal.SIGTERM, _handle_signal)
        try:
            worker.run_forever(stop_event)
        except KeyboardInterrupt:
            logger.info("Interrupted, shutting down")
    return 0


def check_rules_command(args: argparse.Namespace) -> int:
    """Fetch and compile the coordinator's current rule bundle."""
    try:
        config = _load_config(args)
    except ScanWorkerError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    with build_http_client(config) as client:
        synchronizer = RuleSetSynchronizer(client, YaraXEngine(timeout_seconds=config.scan_timeout_seconds))
        try:
            bundle = synchronizer.fetch_current_bundle()
            synchronizer.compile(bundle)
        except ScanWorkerError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1

    print(f"Bundle {bundle.hash}: {len(bundle.rules)} rules compiled")
    return 0


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Scan Worker - registry package malware scanning worker",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  scan-worker run
  scan-worker run --once --verbose
  scan-worker run --base-url http://coordinator:8000
  scan-worker check-rules --env-file .env
        """,
    )
    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    # -- run ---------------------------------------------------------------
    run_p = subparsers.add_parser("run", help="Poll the coordinator and scan jobs")
    run_p.add_argument("--once", action="store_true", help="Process at most one job and exit")
    _add_common_flags(run_p)

    # -- check-rules -------------------------------------------------------
    cr_p = subparsers.add_parser("check-rules", help="Fetch and compile the current rule bundle")
    _add_common_flags(cr_p)

    # -- dispatch ----------------------------------------------------------
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    _configure_logging(getattr(args, "verbose", False))

    dispatch = {
        "run": run_command,
        "check-rules": check_rules_command,
    }
    handler = dispatch.get(args.command)
    if handler:
        return handler(args)

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
