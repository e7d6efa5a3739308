"""Configuration management for Tableback using Pydantic."""

import logging

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Config(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Twilio Configuration
    twilio_account_sid: str | None = Field(None, description="Twilio account SID")
    twilio_auth_token: str | None = Field(None, description="Twilio auth token")
    twilio_whatsapp_from: str | None = Field(
        None, description="WhatsApp-enabled Twilio sender number"
    )
    twilio_webhook_url: str | None = Field(
        None,
        description="Public URL Twilio posts inbound messages to (used for signature checks)",
    )

    # Server Configuration
    server_host: str = Field(default="0.0.0.0", description="Server host")
    server_port: int = Field(default=8080, description="Server port")
    server_url: str = Field(
        default="http://localhost:8080",
        description="Server URL for CLI to connect to API",
    )

    # Logging Configuration
    log_level: str = Field(default="INFO", description="Logging level")

    # Automation Configuration
    timezone: str = Field(
        default="Europe/Brussels",
        description="Reference timezone for reservation times",
    )
    first_reminder_minutes_before: int = Field(
        default=120, ge=0, description="Minutes before the reservation for the first reminder"
    )
    final_reminder_minutes_before: int = Field(
        default=30, ge=0, description="Minutes before the reservation for the final reminder"
    )
    no_show_threshold_minutes: int = Field(
        default=15, ge=0, description="Grace period after the reservation time"
    )
    waitlist_response_minutes: int = Field(
        default=10, ge=0, description="Minutes a waitlist guest has to answer an offer"
    )
    preferred_channel: str = Field(
        default="whatsapp", description="Contact channel (whatsapp, sms, email)"
    )

    # Tick Configuration
    tick_interval_seconds: float = Field(
        default=1.0, gt=0, description="How often the server advances the engine clock"
    )
    reminder_interval_seconds: float = Field(
        default=5.0, ge=0, description="Reminder scheduler interval"
    )
    confirmation_interval_seconds: float = Field(
        default=6.0, ge=0, description="Confirmation reconciler interval"
    )
    offer_interval_seconds: float = Field(
        default=4.0, ge=0, description="Offer reconciler interval"
    )

    # Reply Ledger
    ledger_path: str | None = Field(
        default=".data/whatsapp-confirmations.json",
        description="JSON file the reply ledger is persisted to (empty to disable)",
    )

    def has_twilio_config(self) -> bool:
        """Check if Twilio is properly configured."""
        return bool(
            self.twilio_account_sid
            and self.twilio_auth_token
            and self.twilio_whatsapp_from
        )

    def model_post_init(self, __context) -> None:
        """Validate configuration after initialization."""
        if not self.twilio_account_sid:
            logger.warning("TWILIO_ACCOUNT_SID not set - WhatsApp messages disabled")

        if not self.twilio_auth_token:
            logger.warning("TWILIO_AUTH_TOKEN not set - WhatsApp messages disabled")

        if not self.twilio_whatsapp_from:
            logger.warning("TWILIO_WHATSAPP_FROM not set - WhatsApp messages disabled")


# Global config instance
config: Config | None = None


def get_config() -> Config:
    """Get or create the global configuration instance."""
    global config
    if config is None:
        config = Config()
    return config


def setup_logging(cfg: Config | None = None) -> None:
    """Configure logging for the application."""
    if cfg is None:
        cfg = get_config()

    log_level = getattr(logging, cfg.log_level.upper(), logging.INFO)

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # Reduce noise from external libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("twilio").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
