"""Data models for inbound guest replies."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel


class ConversationType(str, Enum):
    """What an outbound message asked the guest."""

    RESERVATION_CONFIRMATION = "reservation_confirmation"
    WAITLIST_OFFER = "waitlist_offer"


class ReplyRecord(BaseModel):
    """Latest classified reply stored per phone number."""

    confirmed: bool = False
    declined: bool = False
    last_reply: str = ""
    updated_at: datetime
    conversation_type: ConversationType = ConversationType.RESERVATION_CONFIRMATION
    offer_expires_at: datetime | None = None
    offer_closed: bool = False

    @property
    def is_decisive(self) -> bool:
        return self.confirmed or self.declined
