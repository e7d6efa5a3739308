"""Classification of inbound WhatsApp replies."""

import logging
import re
import unicodedata
from datetime import datetime

from tableback.models import ConversationType, ReplyRecord
from tableback.services.reply_ledger import ReplyLedger

logger = logging.getLogger(__name__)

POSITIVE_REPLIES = frozenset({"JA", "YES", "Y", "OK", "BEVESTIG"})
NEGATIVE_REPLIES = frozenset({"NEE", "NO", "N", "CANCEL", "ANNULEER", "ANNULEREN"})


def normalize_reply(text: str) -> str:
    """Upper-case, strip diacritics and punctuation, collapse whitespace."""
    decomposed = unicodedata.normalize("NFD", text.strip().upper())
    without_marks = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    cleaned = re.sub(r"[^A-Z0-9\s]", " ", without_marks)
    return re.sub(r"\s+", " ", cleaned).strip()


def _matches(text: str, vocabulary: frozenset[str]) -> bool:
    cleaned = normalize_reply(text)
    if not cleaned:
        return False
    if cleaned in vocabulary:
        return True
    return cleaned.split(" ")[0] in vocabulary


def is_positive_reply(text: str) -> bool:
    return _matches(text, POSITIVE_REPLIES)


def is_negative_reply(text: str) -> bool:
    return _matches(text, NEGATIVE_REPLIES)


def record_inbound_reply(
    ledger: ReplyLedger, phone: str, body: str, now: datetime
) -> str:
    """Classify an inbound message, store it and pick the auto-reply.

    Replies to a waitlist offer that has already been answered or has run
    past its expiry are stored as neither confirmed nor declined so the
    engine never acts on them.

    Args:
        ledger: Reply ledger to update
        phone: Sender phone number (any format)
        body: Message text
        now: Time the message arrived

    Returns:
        Text to send back to the guest
    """
    current = ledger.get(phone)
    conversation_type = current.conversation_type if current else None
    is_offer = conversation_type == ConversationType.WAITLIST_OFFER
    offer_expired = bool(
        is_offer
        and current.offer_expires_at is not None
        and now > current.offer_expires_at
    )
    offer_closed = bool(is_offer and current.offer_closed)

    confirmed = is_positive_reply(body)
    declined = not confirmed and is_negative_reply(body)
    offer_expires_at = current.offer_expires_at if current else None

    if is_offer and (offer_closed or offer_expired):
        record = ReplyRecord(
            last_reply=body,
            updated_at=now,
            conversation_type=ConversationType.WAITLIST_OFFER,
            offer_expires_at=offer_expires_at,
            offer_closed=True,
        )
    else:
        record = ReplyRecord(
            confirmed=confirmed,
            declined=declined,
            last_reply=body,
            updated_at=now,
            conversation_type=conversation_type
            or ConversationType.RESERVATION_CONFIRMATION,
            offer_expires_at=offer_expires_at,
            offer_closed=is_offer and (confirmed or declined),
        )
    ledger.set(phone, record)
    logger.info(
        f"Reply from {phone} recorded (confirmed={record.confirmed}, declined={record.declined})"
    )

    if is_offer:
        if offer_closed or offer_expired:
            return "Sorry, this table has already been taken."
        if confirmed:
            return "Great, the table is yours. See you soon."
        if declined:
            return "No problem, we will offer the table to someone else. Thanks for letting us know."
        return "Thanks. Reply YES to take the table or NO to skip."

    if confirmed:
        return "Great, your reservation is confirmed. See you later."
    if declined:
        return "Your cancellation has been received. Thanks for letting us know."
    return "Thanks. Reply YES to confirm or NO to cancel."
