"""Automation engine components and collaborators."""

from tableback.services.engine import AutomationEngine, EngineSnapshot, TickIntervals
from tableback.services.messaging import (
    DeliveryError,
    MessagingGateway,
    TwilioWhatsAppGateway,
)
from tableback.services.reply_ledger import ReplyLedger
from tableback.services.store import EntityNotFoundError, EntityStore, OfferTracker

__all__ = [
    "AutomationEngine",
    "DeliveryError",
    "EngineSnapshot",
    "EntityNotFoundError",
    "EntityStore",
    "MessagingGateway",
    "OfferTracker",
    "ReplyLedger",
    "TickIntervals",
    "TwilioWhatsAppGateway",
]
