"""Application-wide configuration loading and validation."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_APOLOGY = (
    "I'm sorry, I'm having some trouble on my side right now. "
    "Could you please say that again?"
)


class Settings(BaseSettings):
    """Centralized environment configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    environment: Literal["local", "dev", "prod"] = Field(default="local")
    log_level: str = Field(default="INFO")

    # Server
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3000)
    public_base_url: str | None = Field(
        default=None,
        description="Public base URL used to build the relay WebSocket URL (e.g. https://<ngrok>.ngrok-free.app).",
    )

    # LLM connectivity
    llm_provider: Literal["openai", "deepseek", "self_hosted_vllm"] = Field(default="openai")
    llm_endpoint: str | None = Field(
        default=None, description="Base URL of the model backend, required for self-hosted vLLM."
    )
    llm_api_key: str | None = Field(default=None)
    llm_model: str = Field(default="gpt-4o-mini")
    llm_temperature: float = Field(default=0.2, ge=0.0, le=2.0)
    llm_max_tool_rounds: int = Field(
        default=5,
        ge=1,
        description="Maximum number of tool/follow-up rounds within a single model turn.",
    )
    llm_context_file: str = Field(default="default_context.md")
    llm_manifest_file: str = Field(default="default_tool_manifest.json")

    # Twilio
    twilio_account_sid: str | None = Field(default=None)
    twilio_auth_token: str | None = Field(default=None)
    twilio_from_number: str | None = Field(default=None, description="E.164, e.g. +61400000000")
    twilio_verify_service_sid: str | None = Field(default=None)
    twilio_outbound_api_key: str | None = Field(
        default=None,
        description="Optional API key required to call the outbound call endpoint.",
    )

    # ConversationRelay TwiML
    relay_voice: str = Field(default="en-AU-Journey-D")
    relay_language: str = Field(default="en-AU")
    relay_transcription_provider: str = Field(default="deepgram")
    relay_dtmf_detection: bool = Field(default=True)
    relay_interrupt_by_dtmf: bool = Field(default=True)

    # Silence detection
    silence_seconds_threshold: float = Field(
        default=20.0,
        gt=0.0,
        description="Seconds of caller inactivity before a re-engagement prompt.",
    )
    silence_retry_limit: int = Field(
        default=2,
        ge=0,
        description="Re-engagement prompts sent before the session escalates.",
    )

    # Customer context collaborator
    customer_lookup_base_url: str | None = Field(
        default=None,
        description="Base URL exposing POST /tools/get-customer.",
    )
    customer_lookup_timeout_seconds: float = Field(default=5.0, gt=0.0)

    apology_message: str = Field(default=DEFAULT_APOLOGY)

    @field_validator("public_base_url", "customer_lookup_base_url", "llm_endpoint")
    @classmethod
    def strip_trailing_slash(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip().rstrip("/")
        return value or None


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance."""

    return Settings()
