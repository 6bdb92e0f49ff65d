
from __future__ import annotations
from typing import Any
import json
from fastapi import Request
from starlette.exceptions import HTTPException
from meal_relay.config import settings
from meal_relay.logger import get_logger
from meal_relay.relay.webhook import WebhookClient, WebhookError
from .schemas import ChatEvent, ChatRequest

logger = get_logger(__name__)

FORM_CONTENT_TYPES = ("multipart/form-data", "application/x-www-form-urlencoded")

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",  # Disable nginx buffering
}

INTERNAL_SERVER_ERROR = "Internal server error"


def response_headers(streaming: bool = False) -> dict[str, str]:
    """CORS headers for every relay response, plus SSE headers when streaming."""
    headers = dict(settings.cors_headers)
    if streaming:
        headers.update(SSE_HEADERS)
    return headers


async def read_chat_payload(request: Request) -> dict[str, Any]:
    """
    Read the inbound body as a flat dict, from either form fields or JSON.

    Malformed bodies are treated as empty so missing fields simply default.
    """
    content_type = request.headers.get("content-type", "").lower()

    if content_type.startswith(FORM_CONTENT_TYPES):
        try:
            form = await request.form()
        except HTTPException as e:
            logger.warning(f"[API] Unreadable form body, treating as empty | error={e}")
            return {}
        # Uploaded files carry no chat fields
        return {key: value for key, value in form.items() if isinstance(value, str)}

    body = await request.body()
    if not body.strip():
        return {}
    try:
        data = json.loads(body)
    except (ValueError, RecursionError) as e:
        logger.warning(f"[API] Malformed JSON body, treating as empty | error={e}")
        return {}
    if not isinstance(data, dict):
        logger.warning(f"[API] JSON body is a {type(data).__name__}, expected an object; treating as empty")
        return {}
    return data


async def parse_chat_request(request: Request) -> ChatRequest:
    return ChatRequest.model_validate(await read_chat_payload(request))


async def forward_chat_event(webhook: WebhookClient, event: ChatEvent) -> None:
    """Background task: notify the webhook of a chat event; failures are only logged."""
    try:
        await webhook.notify(event)
    except WebhookError as e:
        logger.warning(f"[EVENTS] Event not delivered | event={event.event} | error={e}")
