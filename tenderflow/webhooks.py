"""Webhook dispatch for workflow actions."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Protocol

import httpx
from pydantic import BaseModel

from .constants import DEFAULT_WEBHOOK_MAX_RETRIES, DEFAULT_WEBHOOK_TIMEOUT_SECONDS
from .utils.retry import schedule_retry

logger = logging.getLogger(__name__)


class WebhookResponse(BaseModel):
    status_code: int
    attempts: int


class WebhookDeliveryError(Exception):
    """Raised once every delivery attempt has failed."""

    def __init__(self, message: str, attempts: int) -> None:
        super().__init__(message)
        self.attempts = attempts


class WebhookDispatcher(Protocol):
    """Protocol for sending webhook payloads to external systems."""

    async def dispatch(
        self,
        url: str,
        payload: Dict[str, Any],
        headers: Optional[Dict[str, str]] = None,
        method: str = "POST",
    ) -> WebhookResponse:
        """Deliver ``payload`` to ``url``."""


class HttpWebhookDispatcher:
    """Send webhooks with ``httpx``, retrying transport errors and 5xx replies."""

    def __init__(
        self,
        timeout: float = DEFAULT_WEBHOOK_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_WEBHOOK_MAX_RETRIES,
        backoff_base: float = 1.5,
        jitter: float = 0.5,
        max_backoff: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.jitter = jitter
        self.max_backoff = max_backoff
        self._client = client

    async def _send(
        self,
        client: httpx.AsyncClient,
        url: str,
        payload: Dict[str, Any],
        headers: Optional[Dict[str, str]],
        method: str,
    ) -> WebhookResponse:
        attempts = 0
        last_error: Optional[Exception] = None
        while attempts <= self.max_retries:
            attempts += 1
            try:
                response = await client.request(
                    method, url, json=payload, headers=headers
                )
            except httpx.TransportError as e:
                last_error = e
            else:
                if response.status_code < 500:
                    response.raise_for_status()
                    return WebhookResponse(
                        status_code=response.status_code, attempts=attempts
                    )
                last_error = httpx.HTTPStatusError(
                    f"Server error {response.status_code}",
                    request=response.request,
                    response=response,
                )

            if attempts <= self.max_retries:
                logger.warning(
                    f"Webhook {url} attempt {attempts} failed: {last_error}; retrying"
                )
                await schedule_retry(
                    attempts,
                    base=self.backoff_base,
                    jitter=self.jitter,
                    max_delay=self.max_backoff,
                )

        raise WebhookDeliveryError(
            f"Webhook {url} failed after {attempts} attempts: {last_error}",
            attempts=attempts,
        )

    async def dispatch(
        self,
        url: str,
        payload: Dict[str, Any],
        headers: Optional[Dict[str, str]] = None,
        method: str = "POST",
    ) -> WebhookResponse:
        if self._client is not None:
            return await self._send(self._client, url, payload, headers, method)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await self._send(client, url, payload, headers, method)
