"""State shared by every automation component."""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from zoneinfo import ZoneInfo

from tableback.models import (
    AutomationSettings,
    ContactChannel,
    NotificationLevel,
    ReminderSettings,
)
from tableback.services.messaging import MessagingGateway
from tableback.services.reply_ledger import ReplyLedger
from tableback.services.scheduler import TimeoutScheduler
from tableback.services.store import EntityStore, OfferTracker

logger = logging.getLogger(__name__)

Notifier = Callable[[str, NotificationLevel], None]


def _discard(_message: str, _level: NotificationLevel) -> None:
    pass


@dataclass
class EngineContext:
    """The engine's single-owner state and collaborators."""

    store: EntityStore
    gateway: MessagingGateway
    ledger: ReplyLedger
    tz: ZoneInfo
    reminder_settings: ReminderSettings = field(default_factory=ReminderSettings)
    automation_settings: AutomationSettings = field(default_factory=AutomationSettings)
    offers: OfferTracker = field(default_factory=OfferTracker)
    scheduler: TimeoutScheduler = field(default_factory=TimeoutScheduler)
    notify: Notifier = _discard
    unconfigured_reported: bool = False

    @property
    def messaging_enabled(self) -> bool:
        """Whether guest messages go out over the WhatsApp gateway."""
        return self.automation_settings.preferred_channel == ContactChannel.WHATSAPP

    @property
    def channel_label(self) -> str:
        return self.automation_settings.preferred_channel.label

    def can_deliver(self) -> bool:
        """Check the gateway before a send.

        A gateway without configuration is reported once, not on every tick.
        """
        if self.gateway.is_configured():
            self.unconfigured_reported = False
            return True
        if not self.unconfigured_reported:
            self.unconfigured_reported = True
            logger.warning("Messaging gateway not configured - guest messages are on hold")
            self.notify(
                "WhatsApp is not configured, guest messages are on hold",
                NotificationLevel.ERROR,
            )
        return False
