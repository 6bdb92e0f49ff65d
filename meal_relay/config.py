from __future__ import annotations
from functools import lru_cache
from typing import Literal
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import computed_field

DEFAULT_REPLY = (
    "I'm here to help you plan your meals and create grocery lists! "
    "What would you like to work on today?"
)

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore", frozen=True)

    # Core
    environment: str = "dev"
    debug: bool = False
    log_level: str = "INFO"
    log_file: str = "logs/app.log"

    # Upstream n8n webhook
    n8n_webhook_url: str | None = None  # MUST be set in .env
    webhook_timeout_seconds: float = 60.0
    webhook_payload_format: Literal["json", "form"] = "json"

    # Synthetic streaming
    stream_token_delay_ms: int = 25
    disconnect_poll_interval_seconds: float = 0.25

    # CORS
    cors_allow_origin: str = "*"
    cors_allow_headers: str = "authorization, x-client-info, apikey, content-type"

    # Reply used when the webhook answers with an empty body
    default_reply: str = DEFAULT_REPLY

    @computed_field
    @property
    def cors_headers(self) -> dict[str, str]:
        return {
            "Access-Control-Allow-Origin": self.cors_allow_origin,
            "Access-Control-Allow-Headers": self.cors_allow_headers,
        }

    @computed_field
    @property
    def is_prod(self) -> bool:
        return self.environment.lower() == "prod"

@lru_cache(maxsize=1)
def get_settings() -> Settings:
    # Allow overriding .env via explicit environment variables
    return Settings()  # pydantic-settings handles precedence

settings = get_settings()

__all__ = ["Settings", "get_settings", "settings", "DEFAULT_REPLY"]
