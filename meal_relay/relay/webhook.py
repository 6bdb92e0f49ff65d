from __future__ import annotations
from datetime import datetime, timezone
from typing import Any, Optional
from urllib.parse import urlsplit
import asyncio
import json
import time
import httpx
from meal_relay.api.schemas import CHAT_FIELDS, ChatEvent, ChatRequest
from meal_relay.logger import get_logger

logger = get_logger(__name__)

CONNECTION_ERROR_MESSAGE = "Sorry, I'm having trouble connecting right now. Please try again."
TIMEOUT_ERROR_MESSAGE = "The request timed out. Please try again with a shorter message."


class WebhookError(Exception):
    """Raised when the upstream webhook could not produce a reply."""
    user_message = CONNECTION_ERROR_MESSAGE


class WebhookConfigError(WebhookError):
    """Raised when no webhook URL is configured."""


class WebhookTimeoutError(WebhookError):
    """Raised when the webhook did not answer within the configured timeout."""
    user_message = TIMEOUT_ERROR_MESSAGE


class WebhookStatusError(WebhookError):
    """Raised on a non-2xx webhook response. The status stays internal."""

    def __init__(self, status_code: int):
        super().__init__(f"Webhook responded with status: {status_code}")
        self.status_code = status_code


def utc_timestamp() -> str:
    """Current UTC time as ISO-8601 with milliseconds and a Z suffix."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def mask_url(url: Optional[str]) -> str:
    """Hide the webhook path (it acts as a secret) for safe logging."""
    if not url:
        return "<unset>"
    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        return "***"
    return f"{parts.scheme}://{parts.netloc}/***"


def _output_of(item: Any) -> Optional[str]:
    if isinstance(item, dict):
        output = item.get("output")
        if isinstance(output, str) and output:
            return output
    return None


def extract_message(response_text: str, default: str = "") -> str:
    """
    Pull the display message out of a webhook response body.

    Preference order:
    1. JSON array whose first element has an ``output`` string
    2. JSON object with an ``output`` string
    3. the raw body verbatim

    Anything that fails to parse falls back to the raw body, and an empty
    body falls back to ``default``.
    """
    if not response_text:
        return default

    try:
        parsed = json.loads(response_text)
    except (ValueError, RecursionError) as e:
        logger.debug(f"[WEBHOOK] Response is not JSON, using raw text | error={e}")
        return response_text

    if isinstance(parsed, list) and parsed:
        output = _output_of(parsed[0])
        if output:
            return output

    return _output_of(parsed) or response_text


class WebhookClient:
    """
    Async client for the n8n chat webhook.

    A short-lived ``httpx.AsyncClient`` is opened per call so concurrent
    requests never share connection state.
    """

    def __init__(
        self,
        url: Optional[str],
        timeout_seconds: float = 60.0,
        payload_format: str = "json",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if payload_format not in ("json", "form"):
            raise ValueError(f"Unsupported webhook payload format: {payload_format}")
        self.url = url
        self.timeout_seconds = timeout_seconds
        self.payload_format = payload_format
        self.transport = transport

    def build_payload(self, request: ChatRequest) -> dict[str, str]:
        """Normalise a chat request into the exact field set the webhook expects."""
        payload = {field: getattr(request, field) for field in CHAT_FIELDS}
        payload["timestamp"] = payload["timestamp"] or utc_timestamp()
        return payload

    def _encode(self, payload: dict[str, str]) -> dict[str, Any]:
        if self.payload_format == "form":
            # (None, value) makes httpx send a plain multipart field rather than a file
            return {"files": {key: (None, value) for key, value in payload.items()}}
        return {"json": payload}

    async def send(self, request: ChatRequest) -> str:
        """POST one chat request and return the full response body as text."""
        payload = self.build_payload(request)
        message_preview = payload["message"][:100]
        logger.info(
            f"[WEBHOOK] Sending chat request | user={payload['user_id'] or 'anonymous'} "
            f"| session={payload['session_id'][:8] or 'none'} | format={self.payload_format} "
            f"| message='{message_preview}'"
        )

        response = await self._post(**self._encode(payload))
        response_text = response.text
        logger.info(f"[WEBHOOK] Received response | chars={len(response_text)} | preview='{response_text[:200]}'")
        return response_text

    async def notify(self, event: ChatEvent) -> None:
        """Forward a chat lifecycle event. The response body is ignored."""
        payload = event.model_dump()
        payload["timestamp"] = payload["timestamp"] or utc_timestamp()
        logger.info(f"[EVENTS] Forwarding event | event={event.event} | user={event.user_id or 'anonymous'}")
        await self._post(json=payload)

    async def _post(self, **kwargs: Any) -> httpx.Response:
        if not self.url:
            raise WebhookConfigError("N8N_WEBHOOK_URL is not set in environment variables.")

        start_time = time.perf_counter()
        try:
            async with httpx.AsyncClient(transport=self.transport, timeout=self.timeout_seconds) as client:
                # httpx timeouts are per phase; wait_for bounds the whole exchange
                response = await asyncio.wait_for(
                    client.post(self.url, **kwargs),
                    timeout=self.timeout_seconds,
                )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise WebhookTimeoutError(f"Webhook timed out after {self.timeout_seconds:.0f}s") from e
        except httpx.HTTPError as e:
            raise WebhookError(f"Webhook request failed: {e!r}") from e

        duration = (time.perf_counter() - start_time) * 1000
        logger.info(f"[WEBHOOK] Response status={response.status_code} | duration={duration:.0f}ms")
        if not response.is_success:
            raise WebhookStatusError(response.status_code)
        return response
