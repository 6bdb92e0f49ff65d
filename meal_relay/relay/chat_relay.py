from __future__ import annotations
from typing import AsyncGenerator, Awaitable, Callable, Optional
import asyncio
import time
from meal_relay.api.schemas import ChatRequest, StreamEvent
from meal_relay.config import DEFAULT_REPLY
from meal_relay.logger import get_logger
from .webhook import WebhookClient, WebhookError, extract_message

logger = get_logger(__name__)

DisconnectCheck = Callable[[], Awaitable[bool]]

INTERNAL_ERROR_MESSAGE = "Sorry, something went wrong while preparing your reply. Please try again."


class ChatRelay:
    """
    Forwards chat requests to the webhook and replays the reply.

    The reply is always fully received before anything is streamed; the
    streaming variant only re-chunks the finished text word by word.
    """

    def __init__(
        self,
        webhook: WebhookClient,
        token_delay_ms: int = 25,
        disconnect_poll_interval: float = 0.25,
        default_reply: str = DEFAULT_REPLY,
    ):
        self.webhook = webhook
        self.token_delay = max(token_delay_ms, 0) / 1000
        self.disconnect_poll_interval = disconnect_poll_interval
        self.default_reply = default_reply

    @staticmethod
    def tokenize(message: str) -> list[str]:
        # Single spaces only; consecutive spaces yield empty tokens
        return message.split(" ")

    async def reply(self, request: ChatRequest) -> str:
        """Non-streaming variant: one webhook call, one extracted message."""
        response_text = await self.webhook.send(request)
        return extract_message(response_text, self.default_reply)

    async def stream(
        self,
        request: ChatRequest,
        request_id: str = "unknown",
        is_disconnected: Optional[DisconnectCheck] = None,
    ) -> AsyncGenerator[str, None]:
        """
        Async generator of SSE lines for one chat request.

        Emits ``connected`` first, then either a single ``error`` or one
        ``delta`` per token followed by ``complete``. Emission stops
        silently when the client has gone away.
        """
        start_time = time.perf_counter()
        yield StreamEvent.connected().to_sse()

        try:
            upstream = asyncio.create_task(self.reply(request))
            try:
                message = await self._wait_for_upstream(upstream, is_disconnected)
            except WebhookError as e:
                duration = (time.perf_counter() - start_time) * 1000
                logger.error(f"[STREAM] WEBHOOK FAILED | id={request_id} | duration={duration:.0f}ms | error={e}")
                yield StreamEvent.error(e.user_message).to_sse()
                return

            if message is None:
                logger.info(f"[STREAM] CLIENT GONE before reply | id={request_id} | upstream cancelled")
                return

            tokens = self.tokenize(message)
            for index, token in enumerate(tokens):
                if index:
                    await asyncio.sleep(self.token_delay)
                if is_disconnected is not None and await is_disconnected():
                    logger.info(f"[STREAM] CLIENT GONE mid-stream | id={request_id} | sent={index}/{len(tokens)}")
                    return
                yield StreamEvent.delta(token).to_sse()

            yield StreamEvent.complete().to_sse()

            total_duration = (time.perf_counter() - start_time) * 1000
            logger.info(f"[STREAM] STREAM COMPLETE | id={request_id} | tokens={len(tokens)} | total={total_duration:.0f}ms")

        except Exception as e:
            duration = (time.perf_counter() - start_time) * 1000
            logger.exception(f"[STREAM] STREAM FAILED | id={request_id} | duration={duration:.0f}ms | error={e}")
            yield StreamEvent.error(INTERNAL_ERROR_MESSAGE).to_sse()

    async def _wait_for_upstream(
        self,
        upstream: "asyncio.Task[str]",
        is_disconnected: Optional[DisconnectCheck],
    ) -> Optional[str]:
        """Wait for the webhook reply; returns None if the client disconnected first."""
        timeout = self.disconnect_poll_interval if is_disconnected is not None else None
        try:
            while True:
                done, _ = await asyncio.wait({upstream}, timeout=timeout)
                if done:
                    return upstream.result()
                if await is_disconnected():
                    return None
        finally:
            if not upstream.done():
                upstream.cancel()
