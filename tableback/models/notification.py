"""Notifications emitted by the automation engine."""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field


class NotificationLevel(str, Enum):
    INFO = "info"
    ERROR = "error"


class Notification(BaseModel):
    """A transient, user-facing notice about an automation event."""

    message: str
    level: NotificationLevel = NotificationLevel.INFO
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
