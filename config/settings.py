"""
=====================================================
AI Phone Receptionist - Configuration Module
=====================================================
Centralized configuration management using pydantic-settings
"""

from typing import Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


PLACEHOLDER_HOSTS = ("example.ngrok",)


class Settings(BaseSettings):
    """Application settings with environment variable support"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # =====================================================
    # APPLICATION
    # =====================================================
    app_name: str = "AI Phone Receptionist"
    app_version: str = "1.0.0"
    environment: str = Field(default="development", alias="ENVIRONMENT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_file: str = Field(default="", alias="LOG_FILE")
    log_json: bool = Field(default=False, alias="LOG_JSON")

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 3000

    # Public URL Twilio uses to reach this server (callback URLs, signatures)
    base_url: str = Field(..., alias="BASE_URL")

    # =====================================================
    # TWILIO
    # =====================================================
    twilio_auth_token: str = Field(default="", alias="TWILIO_AUTH_TOKEN")
    twilio_validate_signature: bool = Field(default=True, alias="TWILIO_VALIDATE_SIGNATURE")
    transfer_phone_number: str = Field(default="", alias="TRANSFER_NUMBER")
    tts_voice: str = Field(default="Polly.Joanna", alias="TTS_VOICE")
    tts_language: str = Field(default="en-US", alias="TTS_LANGUAGE")

    # =====================================================
    # OPENAI
    # =====================================================
    openai_api_key: str = Field(..., alias="OPENAI_API_KEY")
    openai_model: str = Field(default="gpt-4o-mini", alias="OPENAI_MODEL")
    openai_base_url: str = Field(default="", alias="OPENAI_BASE_URL")
    openai_temperature: float = 0.75
    openai_max_tokens: int = 256

    # =====================================================
    # DATABASE (optional - persistence disabled when empty)
    # =====================================================
    database_url: str = Field(default="", alias="DATABASE_URL")
    db_pool_min_size: int = Field(default=1, alias="DB_POOL_MIN_SIZE")
    db_pool_max_size: int = Field(default=10, alias="DB_POOL_MAX_SIZE")
    db_command_timeout: float = Field(default=10.0, alias="DB_COMMAND_TIMEOUT")  # seconds

    # =====================================================
    # ERROR REPORTING
    # =====================================================
    sentry_dsn: str = Field(default="", alias="SENTRY_DSN")

    # =====================================================
    # CALL HANDLING
    # =====================================================
    max_call_duration: int = Field(default=600, alias="MAX_CALL_DURATION")  # seconds, 0 = no limit
    default_timezone: str = Field(default="America/Chicago", alias="TIMEZONE")

    turn_timeout_seconds: float = 14.0  # Twilio gives up on a webhook after 15s
    idempotency_window_seconds: float = 15.0
    max_tool_rounds: int = 3
    gather_timeout_seconds: int = 5  # How long to wait for speech after a silence

    @field_validator("base_url")
    @classmethod
    def _check_base_url(cls, value: str) -> str:
        value = value.strip().rstrip("/")
        if not value:
            raise ValueError("BASE_URL must be set (e.g. https://your-ngrok-id.ngrok.io)")
        if any(host in value for host in PLACEHOLDER_HOSTS):
            raise ValueError(
                "BASE_URL is set to a placeholder. Twilio would POST caller speech "
                "to a URL that does not reach this server."
            )
        return value

    @field_validator("openai_api_key")
    @classmethod
    def _check_api_key(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("OPENAI_API_KEY must be set")
        return value.strip()

    # =====================================================
    # PROPERTIES
    # =====================================================
    @property
    def voice_url(self) -> str:
        """Voice webhook URL (Gather action and Redirect target)"""
        return f"{self.base_url}/twilio/voice"

    @property
    def status_url(self) -> str:
        """Status callback URL"""
        return f"{self.base_url}/twilio/status"

    @property
    def persistence_enabled(self) -> bool:
        return bool(self.database_url)


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get settings instance (for dependency injection)"""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
