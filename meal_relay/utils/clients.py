from meal_relay.config import settings
from meal_relay.logger import get_logger
from meal_relay.relay.chat_relay import ChatRelay
from meal_relay.relay.webhook import WebhookClient, mask_url

logger = get_logger(__name__)

# Global instances (lazy initialization)
_webhook_client = None
_chat_relay = None

def get_webhook_client() -> WebhookClient:
    """
    Get or create the shared webhook client.
    Uses lazy initialization to avoid reading settings at import time.
    """
    global _webhook_client
    if _webhook_client is None:
        logger.debug(f"[CLIENTS] Initializing webhook client for {mask_url(settings.n8n_webhook_url)}")
        _webhook_client = WebhookClient(
            url=settings.n8n_webhook_url,
            timeout_seconds=settings.webhook_timeout_seconds,
            payload_format=settings.webhook_payload_format,
        )
    return _webhook_client

def get_chat_relay() -> ChatRelay:
    """
    Get or create the shared chat relay.
    The relay holds configuration only, so one instance serves every request.
    """
    global _chat_relay
    if _chat_relay is None:
        logger.debug("[CLIENTS] Initializing chat relay")
        _chat_relay = ChatRelay(
            webhook=get_webhook_client(),
            token_delay_ms=settings.stream_token_delay_ms,
            disconnect_poll_interval=settings.disconnect_poll_interval_seconds,
            default_reply=settings.default_reply,
        )
    return _chat_relay
