"""Data models for the Tableback automation engine."""

from tableback.models.notification import Notification, NotificationLevel
from tableback.models.reply import ConversationType, ReplyRecord
from tableback.models.reservation import (
    NewReservation,
    Reservation,
    ReservationStatus,
)
from tableback.models.settings import (
    AutomationSettings,
    ContactChannel,
    ReminderSettings,
)
from tableback.models.waitlist import NewWaitlistEntry, WaitlistEntry, WaitlistStatus

__all__ = [
    "AutomationSettings",
    "ContactChannel",
    "ConversationType",
    "NewReservation",
    "NewWaitlistEntry",
    "Notification",
    "NotificationLevel",
    "ReminderSettings",
    "ReplyRecord",
    "Reservation",
    "ReservationStatus",
    "WaitlistEntry",
    "WaitlistStatus",
]
