"""Configuration management."""

from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class PolychatSettings(BaseSettings):
    """
    Settings consumed by the completion core.

    Read from 'POLYCHAT_*' environment variables and an optional '.env' file.
    Credentials are optional: a provider without a key fails with
    'ProviderUnavailableError' when it is first called, not at startup.
    """

    # Provider credentials
    openai_api_key: SecretStr | None = None
    anthropic_api_key: SecretStr | None = None
    google_api_key: SecretStr | None = None
    openai_base_url: str | None = None
    local_base_url: str = "http://localhost:11434"

    # Defaults for new conversations
    default_model: str = "gpt-4o"
    default_temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    default_max_tokens: int = Field(default=1000, gt=0)

    # Conversation store
    store_url: str = "memory://"

    # Provider calls
    provider_timeout_seconds: float = Field(default=30.0, gt=0)
    max_attempts: int = Field(default=3, ge=1)
    retry_backoff_seconds: float = Field(default=1.0, ge=0)

    # What a second request on a busy conversation does
    busy_policy: Literal["reject", "wait"] = "reject"

    model_config = SettingsConfigDict(
        env_prefix="POLYCHAT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @staticmethod
    def secret(value: SecretStr | None) -> str | None:
        return value.get_secret_value() if value is not None else None
