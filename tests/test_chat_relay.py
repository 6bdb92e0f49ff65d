import asyncio
import json
import httpx
import pytest
from unittest.mock import AsyncMock, MagicMock
from meal_relay.api.schemas import ChatRequest
from meal_relay.relay.chat_relay import INTERNAL_ERROR_MESSAGE, ChatRelay
from meal_relay.relay.webhook import (
    TIMEOUT_ERROR_MESSAGE,
    WebhookClient,
    WebhookStatusError,
    WebhookTimeoutError,
)

@pytest.fixture
def mock_webhook():
    webhook = MagicMock(spec=WebhookClient)
    webhook.send = AsyncMock(return_value='{"output":"a b c"}')
    return webhook

@pytest.fixture
def relay(mock_webhook):
    return ChatRelay(mock_webhook, token_delay_ms=0, disconnect_poll_interval=1.0)

async def collect(stream):
    events = []
    async for chunk in stream:
        assert chunk.startswith("data: ") and chunk.endswith("\n\n")
        events.append(json.loads(chunk[len("data: "):]))
    return events

def test_tokenize_splits_on_single_spaces():
    assert ChatRelay.tokenize("a b c") == ["a", "b", "c"]
    assert ChatRelay.tokenize("a  b") == ["a", "", "b"]
    assert ChatRelay.tokenize("line\nbreak here") == ["line\nbreak", "here"]

@pytest.mark.asyncio
async def test_reply_extracts_output(relay, mock_webhook):
    mock_webhook.send.return_value = '[{"output":"Hi there"}]'

    assert await relay.reply(ChatRequest(message="hello")) == "Hi there"

@pytest.mark.asyncio
async def test_reply_empty_body_uses_default_reply(mock_webhook):
    mock_webhook.send.return_value = ""
    relay = ChatRelay(mock_webhook, default_reply="What shall we cook?")

    assert await relay.reply(ChatRequest()) == "What shall we cook?"

@pytest.mark.asyncio
async def test_stream_emits_deltas_then_complete(relay):
    events = await collect(relay.stream(ChatRequest(message="plan")))

    assert events == [
        {"type": "connected"},
        {"type": "delta", "content": "a ", "isComplete": False},
        {"type": "delta", "content": "b ", "isComplete": False},
        {"type": "delta", "content": "c ", "isComplete": False},
        {"type": "complete", "isComplete": True},
    ]

@pytest.mark.asyncio
async def test_stream_preserves_empty_tokens(relay, mock_webhook):
    mock_webhook.send.return_value = "x  y"

    events = await collect(relay.stream(ChatRequest()))

    assert [e.get("content") for e in events if e["type"] == "delta"] == ["x ", " ", "y "]

@pytest.mark.asyncio
async def test_stream_timeout_emits_single_error(relay, mock_webhook):
    mock_webhook.send.side_effect = WebhookTimeoutError("timed out")

    events = await collect(relay.stream(ChatRequest(message="hi")))

    assert events == [
        {"type": "connected"},
        {"type": "error", "content": TIMEOUT_ERROR_MESSAGE, "isComplete": True},
    ]

@pytest.mark.asyncio
async def test_stream_status_error_hides_status(relay, mock_webhook):
    mock_webhook.send.side_effect = WebhookStatusError(503)

    events = await collect(relay.stream(ChatRequest(message="hi")))

    assert [e["type"] for e in events] == ["connected", "error"]
    assert "503" not in events[-1]["content"]

@pytest.mark.asyncio
async def test_stream_unexpected_failure_still_terminates(relay, mock_webhook):
    mock_webhook.send.side_effect = RuntimeError("boom")

    events = await collect(relay.stream(ChatRequest(message="hi")))

    assert events[-1] == {"type": "error", "content": INTERNAL_ERROR_MESSAGE, "isComplete": True}
    assert not any(e["type"] == "delta" for e in events)

@pytest.mark.asyncio
async def test_stream_stops_when_client_disconnects_mid_stream(relay):
    is_disconnected = AsyncMock(side_effect=[False, True])

    events = await collect(relay.stream(ChatRequest(message="hi"), is_disconnected=is_disconnected))

    assert events == [
        {"type": "connected"},
        {"type": "delta", "content": "a ", "isComplete": False},
    ]

@pytest.mark.asyncio
async def test_stream_cancels_upstream_when_client_disconnects():
    started = asyncio.Event()
    cancelled = asyncio.Event()

    async def slow_handler(request):
        started.set()
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            cancelled.set()
            raise
        return httpx.Response(200, text="too late")

    webhook = WebhookClient("https://hooks.example.com/webhook/x", transport=httpx.MockTransport(slow_handler))
    relay = ChatRelay(webhook, token_delay_ms=0, disconnect_poll_interval=0.01)

    async def is_disconnected():
        return started.is_set()

    events = await asyncio.wait_for(
        collect(relay.stream(ChatRequest(message="hi"), is_disconnected=is_disconnected)),
        timeout=2,
    )

    assert events == [{"type": "connected"}]
    await asyncio.wait_for(cancelled.wait(), timeout=2)

@pytest.mark.asyncio
async def test_identical_requests_are_not_memoized(relay, mock_webhook):
    request = ChatRequest(message="same question", user_id="u-1")

    await collect(relay.stream(request))
    await collect(relay.stream(request))

    assert mock_webhook.send.await_count == 2
