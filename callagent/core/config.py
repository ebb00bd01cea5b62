"""Application configuration."""
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Model providers
    openai_api_key: Optional[str] = None
    anthropic_api_key: Optional[str] = None

    # Ordered best-first, "provider:model"
    model_chain: List[str] = [
        "anthropic:claude-sonnet-4-20250514",
        "anthropic:claude-3-5-haiku-20241022",
        "openai:gpt-4o-mini",
    ]
    model_timeout_seconds: float = 8.0
    model_max_tokens: int = 500
    model_temperature: float = 0.7

    # Twilio
    twilio_account_sid: Optional[str] = None
    twilio_auth_token: Optional[str] = None
    twilio_phone_number: Optional[str] = None
    twilio_voice: str = "Polly.Joanna"

    # Management API protection (disabled when unset)
    api_key: Optional[str] = None

    # Public URL used for provider callbacks
    base_url: Optional[str] = None

    # Knowledge
    knowledge_chunk_size: int = 500
    knowledge_context_results: int = 3
    knowledge_seed_file: Optional[str] = None

    # Sessions
    history_limit: int = 50
    chat_history_limit: int = 20
    session_grace_seconds: int = 300
    session_max_age_seconds: int = 86400
    session_sweep_interval_seconds: float = 60.0

    # Turn taking
    greeting_message: str = (
        "Hello! I am your AI assistant. I have access to information about our "
        "products, pricing, and support. How can I help you today?"
    )
    greeting_listen_timeout: int = 15
    followup_listen_timeout: int = 10
    max_silent_retries: int = 1
    turn_timeout_seconds: float = 12.0
    turn_busy_timeout_seconds: float = 2.0

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )


settings = Settings()
