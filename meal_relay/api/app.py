from __future__ import annotations
from contextlib import asynccontextmanager
from datetime import datetime
import platform
import time
import uuid
from fastapi import BackgroundTasks, Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, StreamingResponse
import httpx
from meal_relay.config import settings
from meal_relay.logger import get_logger
from meal_relay.relay.chat_relay import ChatRelay
from meal_relay.relay.webhook import WebhookClient, WebhookError, mask_url
from meal_relay.utils.clients import get_chat_relay, get_webhook_client
from .schemas import ChatEvent, ChatResponse, ErrorResponse
from .helpers import (
    INTERNAL_SERVER_ERROR,
    forward_chat_event,
    parse_chat_request,
    response_headers,
)

logger = get_logger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    logger.info("Starting Meal Planner Chat Relay...")
    logger.info(f"Webhook: {mask_url(settings.n8n_webhook_url)} | format={settings.webhook_payload_format} | timeout={settings.webhook_timeout_seconds:.0f}s")
    if not settings.n8n_webhook_url:
        logger.warning("N8N_WEBHOOK_URL is not set; every chat request will fail until it is configured")
    yield
    logger.info("Shutting down Meal Planner Chat Relay...")

app = FastAPI(title="Meal Planner Chat Relay", version="0.1.0", docs_url="/docs", lifespan=lifespan)

# CORS middleware answers browser pre-flights; plain OPTIONS is handled by the routes below
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.cors_allow_origin],
    allow_credentials=False,
    allow_methods=["POST", "OPTIONS"],
    allow_headers=[h.strip() for h in settings.cors_allow_headers.split(",") if h.strip()],
)

@app.options("/chat")
@app.options("/chat/events")
async def preflight():
    return PlainTextResponse("ok", headers=response_headers())

@app.post("/chat")
async def chat_endpoint(request: Request, relay: ChatRelay = Depends(get_chat_relay)):
    """
    Chat endpoint supporting both streaming and non-streaming responses.
    Accepts JSON or form-encoded bodies; set stream=true for SSE streaming.
    """
    request_id = str(uuid.uuid4())[:8]
    start_time = time.perf_counter()

    try:
        chat_request = await parse_chat_request(request)
        message = chat_request.message
        query_preview = message[:60] + "..." if len(message) > 60 else message

        logger.info("[API] " + "="*60)
        logger.info(f"[API] REQUEST START | id={request_id} | user={chat_request.user_id or 'anonymous'} | stream={chat_request.stream} | session_id={chat_request.session_id[:8] + '...' if chat_request.session_id else 'none'}")
        logger.info(f"[API] Message: '{query_preview}' | diet={chat_request.dietary_preference or 'none'} | meals_per_day={chat_request.meals_per_day or '-'}")

        if chat_request.stream:
            logger.info(f"[API] Starting SSE stream...")
            return StreamingResponse(
                relay.stream(chat_request, request_id, is_disconnected=request.is_disconnected),
                media_type="text/event-stream",
                headers=response_headers(streaming=True),
            )

        try:
            reply = await relay.reply(chat_request)
        except WebhookError as e:
            duration = (time.perf_counter() - start_time) * 1000
            logger.error(f"[API] WEBHOOK FAILED | id={request_id} | duration={duration:.0f}ms | error={e}")
            return JSONResponse(
                ErrorResponse(error=e.user_message).model_dump(),
                status_code=500,
                headers=response_headers(),
            )

        total_duration = (time.perf_counter() - start_time) * 1000
        logger.info(f"[API] REQUEST COMPLETE | id={request_id} | chars={len(reply)} | total={total_duration:.0f}ms")
        logger.info("[API] " + "="*60)
        return JSONResponse(ChatResponse(message=reply).model_dump(), headers=response_headers())

    except Exception as e:
        duration = (time.perf_counter() - start_time) * 1000
        logger.exception(f"[API] REQUEST FAILED | id={request_id} | duration={duration:.0f}ms | error={e}")
        logger.info("[API] " + "="*60)
        return JSONResponse(
            ErrorResponse(error=INTERNAL_SERVER_ERROR).model_dump(),
            status_code=500,
            headers=response_headers(),
        )

@app.post("/chat/events", status_code=202)
async def chat_events_endpoint(
    event: ChatEvent,
    background_tasks: BackgroundTasks,
    webhook: WebhookClient = Depends(get_webhook_client),
):
    """Fire-and-forget notification that a user entered the chat or sent a message."""
    logger.info(f"[EVENTS] Accepted | event={event.event} | from={event.triggered_from or 'unknown'}")
    background_tasks.add_task(forward_chat_event, webhook, event)
    return JSONResponse({"status": "accepted"}, status_code=202, headers=response_headers())

@app.get("/health")
async def health():
    logger.debug("Health check requested")
    return {
        "status": "ok",
        "timestamp": datetime.now().isoformat() + "Z",
        "environment": settings.environment,
        "debug": settings.debug,
        "python_version": platform.python_version(),
        "httpx_version": getattr(httpx, "__version__", "unknown"),
        "webhook": {
            "url_masked": mask_url(settings.n8n_webhook_url),
            "configured": bool(settings.n8n_webhook_url),
            "payload_format": settings.webhook_payload_format,
            "timeout_seconds": settings.webhook_timeout_seconds,
        },
        "stream_token_delay_ms": settings.stream_token_delay_ms,
    }
