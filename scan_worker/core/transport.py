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
HTTP transport helpers.

One ``httpx.Client`` is shared by every component of a worker. httpx
exceptions are translated to :class:`TransportError` here so nothing
above this module has to know about httpx.
"""

import logging
from typing import Any

import httpx

from ..config.config import Config
from .exceptions import TransportError

logger = logging.getLogger(__name__)


def build_http_client(config: Config, transport: httpx.BaseTransport | None = None) -> httpx.Client:
    """
    Build the shared HTTP client for a worker.

    Args:
        config: Worker configuration
        transport: Optional transport override (used by tests)

    Returns:
        Configured httpx.Client
    """
    return httpx.Client(
        base_url=config.base_url,
        headers={"User-Agent": config.user_agent, "Accept": "application/json"},
        timeout=httpx.Timeout(config.request_timeout_seconds),
        follow_redirects=True,
        transport=transport,
    )


def request_json(
    client: httpx.Client,
    method: str,
    url: str,
    *,
    json_body: Any = None,
    raise_for_status: bool = True,
) -> httpx.Response:
    """
    Send a request and return the response.

    Raises:
        TransportError: On connection failure, timeout or (optionally) a
            non-2xx status.
    """
    try:
        response = client.request(method, url, json=json_body)
        if raise_for_status:
            response.raise_for_status()
        return response
    except httpx.TimeoutException as e:
        raise TransportError(f"{method} {url} timed out: {e}", url=url) from e
    except httpx.HTTPStatusError as e:
        raise TransportError(f"{method} {url} returned HTTP {e.response.status_code}", url=url) from e
    except httpx.RequestError as e:
        raise TransportError(f"{method} {url} failed: {e}", url=url) from e
