"""Runtime settings for reminders and waitlist automation."""

from enum import Enum

from pydantic import BaseModel, Field

from tableback.config import Config


class ContactChannel(str, Enum):
    """Channel used to reach guests."""

    WHATSAPP = "whatsapp"
    SMS = "sms"
    EMAIL = "email"

    @property
    def label(self) -> str:
        if self is ContactChannel.WHATSAPP:
            return "WhatsApp"
        if self is ContactChannel.SMS:
            return "SMS"
        return "E-mail"


class ReminderSettings(BaseModel):
    """When confirmation reminders go out."""

    first_reminder_minutes_before: int = Field(default=120, ge=0)
    final_reminder_minutes_before: int = Field(default=30, ge=0)

    @classmethod
    def from_config(cls, cfg: Config) -> "ReminderSettings":
        return cls(
            first_reminder_minutes_before=cfg.first_reminder_minutes_before,
            final_reminder_minutes_before=cfg.final_reminder_minutes_before,
        )


class AutomationSettings(BaseModel):
    """No-show detection and waitlist offer behaviour."""

    no_show_threshold_minutes: int = Field(default=15, ge=0)
    waitlist_response_minutes: int = Field(default=10, ge=0)
    preferred_channel: ContactChannel = Field(default=ContactChannel.WHATSAPP)

    @classmethod
    def from_config(cls, cfg: Config) -> "AutomationSettings":
        return cls(
            no_show_threshold_minutes=cfg.no_show_threshold_minutes,
            waitlist_response_minutes=cfg.waitlist_response_minutes,
            preferred_channel=ContactChannel(cfg.preferred_channel.lower()),
        )
