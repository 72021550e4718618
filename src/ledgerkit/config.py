"""Configuration management for ledgerkit."""

from decimal import Decimal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError


class Settings(BaseSettings):
    """Library settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGERKIT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Identity of the caller in payer_id / split.member_id fields
    self_member_id: str = "me"

    # Currency used when neither the transaction nor the account carries one
    default_currency: str = "BRL"

    # Anything within one cent is treated as zero
    tolerance: Decimal = Decimal("0.01")

    # Repository cache lifetime
    cache_ttl_seconds: float = Field(default=300.0, ge=0)

    # Description markers used by the degraded payer-name fallback
    shared_by_markers: list[str] = Field(
        default_factory=lambda: [
            r"\(Shared by (.*?)\)",
            r"\(Compartilhado por (.*?)\)",
        ]
    )


def load_settings() -> Settings:
    """Load library settings from environment variables."""
    try:
        return Settings()
    except Exception as e:
        raise ConfigurationError(
            f"Failed to load ledgerkit settings. Check the LEDGERKIT_* "
            f"environment variables or your .env file.\n"
            f"Error: {e}"
        ) from e
