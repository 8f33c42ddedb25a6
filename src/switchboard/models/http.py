"""Shared plumbing for adapters that speak HTTP.

One httpx.AsyncClient per base URL, lazily created. Tests inject an
``httpx.MockTransport``. Transport failures are wrapped in
ModelConnectionError with a message that health classification can read.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator

import httpx

from switchboard.exceptions import ModelConnectionError
from switchboard.models.base import ModelAdapter

logger = logging.getLogger(__name__)


async def http_error_body(response: httpx.Response, limit: int = 200) -> str:
    """Safely extract an HTTP error body from normal or streaming responses."""
    try:
        body = await response.aread()
    except httpx.HTTPError:
        return "<response body unavailable>"
    return body.decode("utf-8", errors="replace")[:limit]


async def iter_sse_data(response: httpx.Response) -> AsyncIterator[dict]:
    """Yield decoded JSON payloads of ``data:`` lines until ``[DONE]``."""
    async for line in response.aiter_lines():
        line = line.strip()
        if not line.startswith("data:"):
            continue
        payload = line[len("data:"):].strip()
        if payload == "[DONE]":
            return
        try:
            yield json.loads(payload)
        except json.JSONDecodeError:
            logger.debug("Skipping malformed SSE payload: %s", payload[:200])


async def iter_ndjson(response: httpx.Response) -> AsyncIterator[dict]:
    async for line in response.aiter_lines():
        if not line.strip():
            continue
        try:
            yield json.loads(line)
        except json.JSONDecodeError:
            logger.debug("Skipping malformed NDJSON line: %s", line[:200])


class HTTPAdapter(ModelAdapter):
    """Base for adapters backed by an HTTP API."""

    label = "Model server"
    default_timeout = 300.0

    def __init__(
        self,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float | None = None,
    ):
        self._transport = transport
        self._timeout = timeout or self.default_timeout
        self._clients: dict[str, httpx.AsyncClient] = {}

    def _client(self, base_url: str) -> httpx.AsyncClient:
        base_url = base_url.rstrip("/")
        client = self._clients.get(base_url)
        if client is None or client.is_closed:
            client = httpx.AsyncClient(
                base_url=base_url,
                timeout=httpx.Timeout(self._timeout),
                transport=self._transport,
            )
            self._clients[base_url] = client
        return client

    async def close(self) -> None:
        clients = list(self._clients.values())
        self._clients.clear()
        for client in clients:
            await client.aclose()

    @staticmethod
    def _request_timeout(timeout: float | None):
        return httpx.Timeout(timeout) if timeout else httpx.USE_CLIENT_DEFAULT

    def _connection_error(
        self, error: httpx.HTTPError, base_url: str, model: str,
    ) -> ModelConnectionError:
        if isinstance(error, httpx.ConnectError):
            message = f"Cannot connect to {self.label} at {base_url}: {error}"
        elif isinstance(error, httpx.TimeoutException):
            message = f"{self.label} request timed out ({model}): {error}"
        else:
            message = f"{self.label} network error ({model}): {error}"
        return ModelConnectionError(message, original=error)

    def _status_message(self, status: int, body: str) -> str:
        return f"{self.label} returned HTTP {status}: {body}"

    async def _status_error(self, response: httpx.Response) -> ModelConnectionError:
        body = await http_error_body(response)
        return ModelConnectionError(self._status_message(response.status_code, body))

    async def _get_json(self, base_url: str, path: str, headers: dict | None = None) -> dict:
        client = self._client(base_url)
        try:
            response = await client.get(path, headers=headers)
        except httpx.HTTPError as e:
            raise self._connection_error(e, base_url, path) from e
        if response.is_error:
            raise await self._status_error(response)
        return response.json()
