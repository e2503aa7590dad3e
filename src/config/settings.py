"""Application-wide configuration loading and validation."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from prompts.loader import load_prompt


class Settings(BaseSettings):
    """Centralized environment configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    environment: Literal["local", "dev", "prod"] = Field(default="local")
    log_level: str = Field(default="INFO")
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=5050)

    # OpenAI Realtime
    openai_api_key: str | None = Field(default=None)
    openai_realtime_url: str = Field(default="wss://api.openai.com/v1/realtime")
    openai_realtime_model: str = Field(default="gpt-realtime")
    openai_realtime_voice: str | None = Field(
        default=None,
        description="Optional output voice; the model default is used when unset.",
    )
    system_instructions: str | None = Field(
        default=None,
        description="Behavioral instructions for the model. Defaults to prompts/system_instructions.txt.",
    )
    greeting_prompt: str | None = Field(
        default=None,
        description="Synthetic opening turn so the assistant speaks first. Defaults to prompts/greeting.txt.",
    )
    session_renew_interval_seconds: float = Field(
        default=3300.0,
        gt=0,
        description="How often session.update is re-sent to keep long calls alive.",
    )

    # Call lifecycle
    max_concurrent_calls: int = Field(default=10, ge=0)
    hangup_grace_seconds: float = Field(
        default=2.0,
        ge=0,
        description="Upper bound on how long the goodbye turn may take before the call is ended.",
    )
    farewell_message: str = Field(default="Thank you for calling.")

    # Twilio (Voice)
    twilio_account_sid: str | None = Field(default=None)
    twilio_auth_token: str | None = Field(default=None)
    public_host: str | None = Field(
        default=None,
        description="Public host name Twilio uses to reach the media stream (e.g. <ngrok>.ngrok-free.app).",
    )
    twilio_say_voice: str = Field(default="Google.en-US-Neural2-C")
    twilio_connect_message: str = Field(
        default="Please wait while we connect your call to the AI voice assistant.",
    )

    @field_validator("public_host")
    @classmethod
    def strip_scheme(cls, value: str | None) -> str | None:
        if not value:
            return None
        for prefix in ("https://", "http://", "wss://", "ws://"):
            value = value.removeprefix(prefix)
        return value.rstrip("/")

    def resolved_instructions(self) -> str:
        return (self.system_instructions or load_prompt("system_instructions.txt")).strip()

    def resolved_greeting(self) -> str:
        return (self.greeting_prompt or load_prompt("greeting.txt")).strip()


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance."""

    return Settings()
