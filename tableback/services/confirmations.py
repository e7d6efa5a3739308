"""Applies guest replies to reservations awaiting confirmation."""

import logging
from datetime import datetime

from tableback.models import NotificationLevel, ReservationStatus
from tableback.services.context import EngineContext

logger = logging.getLogger(__name__)


class ConfirmationReconciler:
    """Polls the reply ledger for reservations that got a reminder.

    Only replies logged at or after ``max(last_reminder_at, created_at)``
    count. Transitions are guarded by ``status == attention`` so seeing the
    same reply twice changes nothing.
    """

    def __init__(self, context: EngineContext) -> None:
        self.context = context

    def tick(self, now: datetime) -> tuple[int, int]:  # noqa: ARG002
        """Reconcile replies.

        Returns:
            Number of reservations confirmed and cancelled in this tick
        """
        candidates = [
            reservation
            for reservation in self.context.store.reservations_with_status(
                ReservationStatus.ATTENTION
            )
            if reservation.reminder_count > 0 and reservation.phone.strip()
        ]

        confirmed_ids: set[str] = set()
        declined_ids: set[str] = set()

        for reservation in candidates:
            try:
                record = self.context.ledger.get(reservation.phone)
            except Exception:
                logger.exception(f"Reply lookup failed for reservation {reservation.id}")
                continue

            if record is None or reservation.last_reminder_at is None:
                continue
            minimum_accepted_at = max(reservation.last_reminder_at, reservation.created_at)
            if record.updated_at < minimum_accepted_at:
                continue

            if record.declined:
                declined_ids.add(reservation.id)
            elif record.confirmed:
                confirmed_ids.add(reservation.id)

        if not confirmed_ids and not declined_ids:
            return 0, 0

        confirmed_count = 0
        declined_count = 0
        for reservation in self.context.store.reservations:
            if reservation.status != ReservationStatus.ATTENTION:
                continue
            if reservation.id in declined_ids:
                reservation.status = ReservationStatus.EXPIRED
                declined_count += 1
                logger.info(f"Reservation {reservation.id} cancelled by guest")
            elif reservation.id in confirmed_ids:
                reservation.status = ReservationStatus.CONFIRMED
                confirmed_count += 1
                logger.info(f"Reservation {reservation.id} confirmed by guest")

        if confirmed_count:
            self.context.notify(
                "Reservation confirmed via WhatsApp"
                if confirmed_count == 1
                else f"{confirmed_count} reservations confirmed via WhatsApp",
                NotificationLevel.INFO,
            )
        if declined_count:
            self.context.notify(
                "Reservation cancelled via WhatsApp"
                if declined_count == 1
                else f"{declined_count} reservations cancelled via WhatsApp",
                NotificationLevel.INFO,
            )

        return confirmed_count, declined_count
