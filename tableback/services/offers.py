"""Resolves outstanding waitlist offers from guest replies."""

import logging
from dataclasses import dataclass
from datetime import datetime

from tableback.models import (
    NotificationLevel,
    Reservation,
    ReservationStatus,
    WaitlistEntry,
    WaitlistStatus,
)
from tableback.services.context import EngineContext
from tableback.services.matching import release_offer
from tableback.services.scheduler import EventKind
from tableback.services.store import PendingOffer

logger = logging.getLogger(__name__)


@dataclass
class OfferDecision:
    offer: PendingOffer
    accepted: bool


class OfferReconciler:
    """Polls the reply ledger for every pending waitlist offer.

    A reply counts only if it was logged at or after the moment the guest
    was contacted. Ambiguous replies are left for the next tick.
    """

    def __init__(self, context: EngineContext) -> None:
        self.context = context

    def tick(self, now: datetime) -> list[OfferDecision]:  # noqa: ARG002
        """Resolve offers that received a decisive reply.

        Returns:
            The decisions that were applied
        """
        decisions: list[OfferDecision] = []

        for offer in self.context.offers.pending():
            reservation = self.context.store.get_reservation(offer.reservation_id)
            entry = self.context.store.get_waitlist_entry(offer.waitlist_id)
            if (
                reservation is None
                or reservation.status != ReservationStatus.PROCESSING
                or entry is None
            ):
                continue

            try:
                record = self.context.ledger.get(entry.phone)
            except Exception:
                logger.exception(f"Reply lookup failed for waitlist entry {entry.id}")
                continue

            if record is None or entry.last_contacted_at is None:
                continue
            if record.updated_at < entry.last_contacted_at:
                continue
            if not record.is_decisive:
                continue

            decisions.append(OfferDecision(offer=offer, accepted=record.confirmed))

        for decision in decisions:
            reservation = self.context.store.get_reservation(decision.offer.reservation_id)
            entry = self.context.store.get_waitlist_entry(decision.offer.waitlist_id)
            if reservation is None or entry is None:
                continue
            if decision.accepted:
                self._fill(decision.offer, reservation, entry)
            else:
                self._decline(decision.offer, entry)

        return decisions

    def _fill(
        self, offer: PendingOffer, reservation: Reservation, entry: WaitlistEntry
    ) -> None:
        self.context.scheduler.cancel(offer.reservation_id, EventKind.OFFER_TIMEOUT)
        self.context.offers.finish(offer.reservation_id)

        if reservation.status == ReservationStatus.PROCESSING:
            if not reservation.original_guest_name:
                reservation.original_guest_name = reservation.name
            reservation.name = entry.name
            reservation.phone = entry.phone
            reservation.filled_from_waitlist = True
            reservation.status = ReservationStatus.FILLED

        self.context.store.remove_waitlist_entry(entry.id)
        logger.info(f"Reservation {reservation.id} filled from waitlist entry {entry.id}")
        self.context.notify(f"{entry.name} confirmed the table", NotificationLevel.INFO)

    def _decline(self, offer: PendingOffer, entry: WaitlistEntry) -> None:
        release_offer(
            self.context, offer, offer.fallback_status, WaitlistStatus.DECLINED
        )
        logger.info(f"Waitlist entry {entry.id} declined reservation {offer.reservation_id}")
        self.context.notify(f"{entry.name} skipped the table", NotificationLevel.INFO)
