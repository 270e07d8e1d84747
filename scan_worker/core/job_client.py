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
Client for the coordinator's job endpoints.
"""

from __future__ import annotations

import logging

import httpx

from ..config.constants import ScanWorkerConstants
from .exceptions import DeserializationError, TransportError
from .models import Job, NoJob, ScanResult, parse_job_response
from .transport import request_json

logger = logging.getLogger(__name__)


class JobClient:
    """Polls for scan jobs and submits their results."""

    def __init__(self, client: httpx.Client):
        self.client = client

    def get_job(self) -> Job | None:
        """
        Ask the coordinator for the next job.

        The coordinator answers "no job" with an error-shaped body, usually
        under a 4xx status, so the body is parsed before the status is
        considered.

        Returns:
            The next job, or None when none is available

        Raises:
            TransportError: On network failure, or an error status whose
                body is not a recognizable response
            DeserializationError: If a successful response has the wrong shape
        """
        response = request_json(self.client, "POST", ScanWorkerConstants.JOB_ENDPOINT, raise_for_status=False)

        try:
            payload = response.json()
            parsed = parse_job_response(payload)
        except (ValueError, DeserializationError) as e:
            if response.is_error:
                raise TransportError(
                    f"POST {ScanWorkerConstants.JOB_ENDPOINT} returned HTTP {response.status_code}",
                    url=str(response.request.url),
                ) from e
            if isinstance(e, DeserializationError):
                raise
            raise DeserializationError(f"Job response is not valid JSON: {e}") from e

        if isinstance(parsed, NoJob):
            logger.debug("No job available: %s", parsed.detail)
            return None

        logger.info("Received job %s %s (%d distributions)", parsed.name, parsed.version, len(parsed.distributions))
        return parsed

    def submit_result(self, result: ScanResult) -> None:
        """
        Report a scan result.

        The acknowledgement body is not interpreted. An error status is
        logged but not raised; only transport failures raise.

        Raises:
            TransportError: On network failure or timeout
        """
        response = request_json(
            self.client,
            "PUT",
            ScanWorkerConstants.RESULT_ENDPOINT,
            json_body=result.to_dict(),
            raise_for_status=False,
        )
        if response.is_error:
            logger.warning(
                "Coordinator returned HTTP %d for result of %s %s",
                response.status_code,
                result.name,
                result.version,
            )
