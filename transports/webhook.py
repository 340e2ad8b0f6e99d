"""
Webhook transport — POSTs the persisted message document to an HTTP endpoint.

Config options:
    url:      endpoint (required)
    headers:  extra request headers
    timeout:  request timeout in seconds (default 30)

Connection-level failures are retried; any non-2xx response fails the send
with a TransportError carrying the HTTP status. A JSON object response body
is merged into the result, so {"state": "Queued"} marks a pull hand-off.
"""
from __future__ import annotations

import structlog
from typing import Any, Optional

import httpx
from tenacity import (
    retry, retry_if_exception_type, stop_after_attempt, wait_exponential,
)

from models.errors import TransportError
from transports.base import Transport

logger = structlog.get_logger()


class WebhookTransport(Transport):
    name = "webhook"

    def __init__(self, *args, client: Optional[httpx.AsyncClient] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self._client = client
        self.url: str = ""
        self.headers: dict[str, str] = {}
        self.timeout: float = 30.0

    async def initialize(self, config: dict[str, Any]) -> None:
        await super().initialize(config)
        self.url = self._config.get("url", "")
        self.headers = dict(self._config.get("headers") or {})
        self.timeout = float(self._config.get("timeout", 30))
        if not self.url:
            logger.warning("webhook_url_missing", transport=self.name)

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                headers=self.headers,
                timeout=httpx.Timeout(self.timeout, connect=10.0),
            )
        return self._client

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(min=1, max=5),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def _post(self, payload: dict[str, Any]) -> httpx.Response:
        client = await self._get_client()
        return await client.post(self.url, json=payload, headers=self.headers)

    async def send(self, message) -> dict[str, Any]:
        if not self.url:
            raise TransportError("Webhook URL not configured",
                                 code="not_configured", transport=self.name)
        try:
            resp = await self._post(message.to_document())
        except httpx.HTTPError as e:
            raise TransportError(str(e) or type(e).__name__,
                                 code=type(e).__name__, transport=self.name) from e

        if not resp.is_success:
            logger.error("webhook_error",
                         transport=self.name,
                         status=resp.status_code,
                         body=resp.text[:500],
                         message_id=message.id)
            raise TransportError(f"Webhook returned HTTP {resp.status_code}",
                                 code="http_error",
                                 status=resp.status_code,
                                 transport=self.name)

        result: dict[str, Any] = {"message": "success", "status": resp.status_code}
        if resp.content:
            try:
                body = resp.json()
            except ValueError:
                body = None
            if isinstance(body, dict):
                result.update(body)
        return result

    async def shutdown(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
