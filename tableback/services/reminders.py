"""Confirmation reminders and no-show detection."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from tableback.models import (
    ConversationType,
    NotificationLevel,
    Reservation,
    ReservationStatus,
)
from tableback.services.clock import reservation_datetime
from tableback.services.context import EngineContext
from tableback.services.messaging import DeliveryError

logger = logging.getLogger(__name__)

FIRST_REMINDER = 1
FINAL_REMINDER = 2


@dataclass
class ReminderUpdate:
    reservation_id: str
    status: ReservationStatus
    reminder_count: int
    last_reminder_at: datetime | None


@dataclass
class OutboundReminder:
    name: str
    phone: str
    text: str


class ReminderScheduler:
    """Sends first and final reminders and flags no-shows.

    Each tick first decides every transition, then applies them, and only
    then talks to the messaging gateway. A failed send is reported but the
    reminder still counts as given.
    """

    def __init__(self, context: EngineContext) -> None:
        self.context = context

    def tick(self, now: datetime) -> list[ReminderUpdate]:
        """Evaluate every reservation awaiting confirmation.

        Args:
            now: Current instant (timezone-aware)

        Returns:
            The updates that were applied
        """
        updates: list[ReminderUpdate] = []
        outbound: list[OutboundReminder] = []
        notices: list[str] = []

        for reservation in self.context.store.reservations_with_status(
            ReservationStatus.ATTENTION
        ):
            try:
                update = self._evaluate(reservation, now, outbound, notices)
            except Exception:
                logger.exception(f"Reminder evaluation failed for {reservation.id}")
                continue
            if update is not None:
                updates.append(update)

        for update in updates:
            self._apply(update)

        for message in notices:
            self.context.notify(message, NotificationLevel.INFO)

        for reminder in outbound:
            self._dispatch(reminder)

        return updates

    def _evaluate(
        self,
        reservation: Reservation,
        now: datetime,
        outbound: list[OutboundReminder],
        notices: list[str],
    ) -> ReminderUpdate | None:
        reservation_at = reservation_datetime(reservation.time, now, self.context.tz)
        if reservation_at is None:
            logger.debug(
                f"Skipping reservation {reservation.id} with unparseable time {reservation.time!r}"
            )
            return None

        reminder_settings = self.context.reminder_settings
        first_reminder_at = reservation_at - timedelta(
            minutes=reminder_settings.first_reminder_minutes_before
        )
        final_reminder_at = reservation_at - timedelta(
            minutes=reminder_settings.final_reminder_minutes_before
        )
        no_show_at = reservation_at + timedelta(
            minutes=self.context.automation_settings.no_show_threshold_minutes
        )

        reminder_count = reservation.reminder_count
        last_reminder_at = reservation.last_reminder_at
        status = reservation.status
        changed = False

        if reminder_count < FINAL_REMINDER and now >= final_reminder_at:
            reminder_count = FINAL_REMINDER
            last_reminder_at = now
            changed = True
            if self.context.offers.claim_reminder(reservation.id, FINAL_REMINDER):
                notices.append(f"Final reminder sent to {reservation.name}")
                self._queue(
                    outbound,
                    reservation,
                    f"Final reminder: please confirm your reservation at {reservation.time}. "
                    "Reply YES to confirm or NO to cancel.",
                )
        elif reminder_count < FIRST_REMINDER and now >= first_reminder_at:
            reminder_count = FIRST_REMINDER
            last_reminder_at = now
            changed = True
            if self.context.offers.claim_reminder(reservation.id, FIRST_REMINDER):
                notices.append(f"First reminder sent to {reservation.name}")
                self._queue(
                    outbound,
                    reservation,
                    f"Hi {reservation.name}, please confirm your reservation at "
                    f"{reservation.time} for {reservation.party_size} people. "
                    "Reply YES to confirm or NO to cancel.",
                )

        if now >= no_show_at:
            status = ReservationStatus.EXPIRED
            changed = True
            notices.append(f"{reservation.name} marked as no-show")

        if not changed:
            return None

        return ReminderUpdate(
            reservation_id=reservation.id,
            status=status,
            reminder_count=reminder_count,
            last_reminder_at=last_reminder_at,
        )

    def _queue(
        self, outbound: list[OutboundReminder], reservation: Reservation, text: str
    ) -> None:
        if self.context.messaging_enabled and reservation.phone.strip():
            outbound.append(
                OutboundReminder(name=reservation.name, phone=reservation.phone, text=text)
            )

    def _apply(self, update: ReminderUpdate) -> None:
        reservation = self.context.store.get_reservation(update.reservation_id)
        if reservation is None or reservation.status != ReservationStatus.ATTENTION:
            return
        reservation.reminder_count = max(reservation.reminder_count, update.reminder_count)
        reservation.last_reminder_at = update.last_reminder_at
        reservation.status = update.status
        if update.status == ReservationStatus.EXPIRED:
            logger.info(f"Reservation {reservation.id} marked as no-show")

    def _dispatch(self, reminder: OutboundReminder) -> None:
        if not self.context.can_deliver():
            logger.debug(f"Reminder to {reminder.name} held back, gateway not configured")
            return
        try:
            self.context.gateway.send(
                reminder.phone,
                reminder.text,
                ConversationType.RESERVATION_CONFIRMATION,
            )
        except DeliveryError as e:
            logger.warning(f"Reminder to {reminder.name} not delivered: {e}")
            self.context.notify(f"WhatsApp error: {e}", NotificationLevel.ERROR)
        except Exception as e:
            logger.exception(f"Unexpected error sending reminder to {reminder.name}")
            self.context.notify(f"WhatsApp error: {e}", NotificationLevel.ERROR)
