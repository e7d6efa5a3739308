"""Outbound guest messaging over Twilio WhatsApp."""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone

from twilio.base.exceptions import TwilioException
from twilio.rest import Client

from tableback.config import Config, get_config
from tableback.models import ConversationType, ReplyRecord
from tableback.phone import normalize_phone, to_whatsapp_address
from tableback.services.reply_ledger import ReplyLedger

logger = logging.getLogger(__name__)


class DeliveryError(Exception):
    """A message could not be handed to the messaging provider."""


class MessagingGateway(ABC):
    """Sends guest-facing messages.

    Implementations must fail synchronously by raising DeliveryError so the
    caller can roll back whatever depended on the message.
    """

    def is_configured(self) -> bool:
        """Whether the gateway has what it needs to send at all."""
        return True

    @abstractmethod
    def send(
        self,
        to: str,
        message: str,
        conversation_type: ConversationType,
        expires_at: datetime | None = None,
    ) -> str:
        """Send a message.

        Args:
            to: Guest phone number
            message: Message text
            conversation_type: What the message asks the guest
            expires_at: When an offer stops being valid

        Returns:
            Provider message identifier

        Raises:
            DeliveryError: If the message was not accepted
        """


class TwilioWhatsAppGateway(MessagingGateway):
    """Gateway sending WhatsApp messages through the Twilio REST API.

    Before sending, a fresh conversation record is opened in the reply
    ledger so replies to earlier conversations are not attributed to this
    one.
    """

    def __init__(self, ledger: ReplyLedger, config: Config | None = None) -> None:
        """Initialize the gateway.

        Args:
            ledger: Reply ledger to open conversations in
            config: Application configuration (global config if omitted)
        """
        self.config = config or get_config()
        self.ledger = ledger
        if not self.config.has_twilio_config():
            logger.warning("Twilio not configured - WhatsApp messages will fail")
            self.client = None
        else:
            self.client = Client(
                self.config.twilio_account_sid, self.config.twilio_auth_token
            )
            logger.info("Twilio WhatsApp gateway initialized")

    def is_configured(self) -> bool:
        """Check if Twilio is properly configured."""
        return self.client is not None

    def send(
        self,
        to: str,
        message: str,
        conversation_type: ConversationType,
        expires_at: datetime | None = None,
    ) -> str:
        if not self.client:
            msg = "Twilio is not configured"
            raise DeliveryError(msg)

        normalized_to = normalize_phone(to)
        normalized_from = normalize_phone(self.config.twilio_whatsapp_from or "")
        if not normalized_to or not normalized_from:
            msg = f"Invalid WhatsApp phone number: {to!r}"
            raise DeliveryError(msg)

        message = message.strip()
        if not message:
            msg = "Message body is empty"
            raise DeliveryError(msg)

        now = datetime.now(timezone.utc)
        is_offer = conversation_type == ConversationType.WAITLIST_OFFER
        self.ledger.set(
            normalized_to,
            ReplyRecord(
                updated_at=now,
                conversation_type=conversation_type,
                offer_expires_at=expires_at if is_offer and expires_at and expires_at > now else None,
            ),
        )

        try:
            logger.info(f"Sending {conversation_type.value} message to {normalized_to}")
            sent = self.client.messages.create(
                from_=to_whatsapp_address(normalized_from),
                to=to_whatsapp_address(normalized_to),
                body=message,
            )
        except TwilioException as e:
            logger.exception("Failed to send WhatsApp message")
            raise DeliveryError(str(e)) from e
        else:
            logger.info(f"Message sent with SID: {sent.sid}")
            return sent.sid
