"""Offering vacated tables to the waitlist."""

import logging
from datetime import datetime, timedelta

from tableback.models import (
    ConversationType,
    NotificationLevel,
    Reservation,
    ReservationStatus,
    WaitlistEntry,
    WaitlistStatus,
)
from tableback.services.context import EngineContext
from tableback.services.messaging import DeliveryError
from tableback.services.scheduler import EventKind, ScheduledEvent
from tableback.services.store import EntityNotFoundError, PendingOffer

logger = logging.getLogger(__name__)

OPEN_TABLE_STATUSES = (ReservationStatus.EXPIRED, ReservationStatus.UNFILLED)
OFFER_RETRY_DELAY = timedelta(minutes=1)


def release_offer(
    context: EngineContext,
    offer: PendingOffer,
    reservation_status: ReservationStatus,
    entry_status: WaitlistStatus,
) -> None:
    """End an offer: disarm its timeout, drop the guard and set both statuses.

    The reservation is only moved if it is still ``processing``.
    """
    context.scheduler.cancel(offer.reservation_id, EventKind.OFFER_TIMEOUT)
    context.offers.finish(offer.reservation_id)

    reservation = context.store.get_reservation(offer.reservation_id)
    if reservation is not None and reservation.status == ReservationStatus.PROCESSING:
        reservation.status = reservation_status

    entry = context.store.get_waitlist_entry(offer.waitlist_id)
    if entry is not None:
        entry.status = entry_status


class WaitlistMatcher:
    """Matches vacated tables with waitlist guests.

    The automatic path picks up ``expired`` reservations, the manual path is
    started by staff for a specific waitlist entry. Both run the same offer
    protocol: guard the table, contact the guest, arm a response timeout
    and roll everything back if the offer cannot be sent.
    """

    def __init__(self, context: EngineContext) -> None:
        self.context = context

    def evaluate(self, now: datetime) -> Reservation | None:
        """Handle at most one vacated table.

        Args:
            now: Current instant

        Returns:
            The reservation that was processed, if any
        """
        store = self.context.store
        vacated = next(
            (
                reservation
                for reservation in store.reservations
                if reservation.status == ReservationStatus.EXPIRED
                and not self.context.offers.is_in_flight(reservation.id)
                and not self.context.offers.is_deferred(reservation.id, now)
            ),
            None,
        )
        if vacated is None:
            return None

        match = self.find_waitlist_match(vacated.party_size)
        if match is None:
            vacated.status = ReservationStatus.UNFILLED
            logger.info(f"No waitlist match for reservation {vacated.id}")
            self.context.notify(
                f"No match found for table of {vacated.party_size} people",
                NotificationLevel.INFO,
            )
            return vacated

        started = self._start_offer(
            vacated,
            match,
            now,
            notice=f"{self.context.channel_label} sent to {match.name}",
            message=(
                f"A table for {match.party_size} people just became available. "
                "Reply YES to take it or NO to skip."
            ),
        )
        return vacated if started else None

    def contact(self, entry_id: str, now: datetime) -> Reservation | None:
        """Offer an open table to a specific waitlist guest.

        Args:
            entry_id: Waitlist entry to contact
            now: Current instant

        Returns:
            The reservation offered, or None if no table was available or the
            offer could not be sent

        Raises:
            EntityNotFoundError: If the waitlist entry does not exist
        """
        entry = self.context.store.get_waitlist_entry(entry_id)
        if entry is None:
            raise EntityNotFoundError(entry_id)

        if self.context.offers.offer_for_entry(entry_id) is not None:
            self.context.notify(
                f"{entry.name} already has a table offer pending",
                NotificationLevel.INFO,
            )
            return None

        candidate = self.find_open_table(entry.party_size)
        if candidate is None:
            self.context.notify(
                f"No open table available for {entry.party_size} people",
                NotificationLevel.INFO,
            )
            return None

        started = self._start_offer(
            candidate,
            entry,
            now,
            notice=f"{entry.name} contacted via {self.context.channel_label}",
            message=(
                f"Hi {entry.name}, a table for {entry.party_size} people may be available. "
                "Reply YES to confirm or NO to skip."
            ),
        )
        return candidate if started else None

    def find_waitlist_match(self, party_size: int) -> WaitlistEntry | None:
        """Longest-waiting guest with exactly this party size."""
        candidates = [
            entry
            for entry in self.context.store.waitlist
            if entry.party_size == party_size and entry.status == WaitlistStatus.WAITING
        ]
        return min(candidates, key=lambda entry: entry.created_at, default=None)

    def find_open_table(self, party_size: int) -> Reservation | None:
        """Earliest-created vacated table of exactly this size that is not in flight."""
        candidates = [
            reservation
            for reservation in self.context.store.reservations_with_status(
                *OPEN_TABLE_STATUSES
            )
            if reservation.party_size == party_size
            and not self.context.offers.is_in_flight(reservation.id)
        ]
        return min(candidates, key=lambda reservation: reservation.created_at, default=None)

    def handle_timeout(self, event: ScheduledEvent, now: datetime) -> bool:  # noqa: ARG002
        """Expire an unanswered offer.

        Returns:
            True if an offer was reverted, False if the event was stale
        """
        offer = self.context.offers.get(event.entity_id)
        if offer is None or offer.waitlist_id != event.token:
            return False

        reservation = self.context.store.get_reservation(offer.reservation_id)
        if reservation is None or reservation.status != ReservationStatus.PROCESSING:
            self.context.offers.finish(offer.reservation_id)
            return False

        entry = self.context.store.get_waitlist_entry(offer.waitlist_id)
        release_offer(
            self.context, offer, offer.fallback_status, WaitlistStatus.DECLINED
        )
        name = entry.name if entry is not None else "Waitlist guest"
        logger.info(f"Offer for reservation {offer.reservation_id} timed out")
        self.context.notify(f"{name} did not respond in time", NotificationLevel.INFO)
        return True

    def _start_offer(
        self,
        reservation: Reservation,
        entry: WaitlistEntry,
        now: datetime,
        notice: str,
        message: str,
    ) -> bool:
        """Run the offer protocol for one table and one guest.

        Returns:
            True if the offer is now pending, False if nothing changed
        """
        sends_message = self.context.messaging_enabled and bool(entry.phone.strip())
        if sends_message and not self.context.can_deliver():
            return False

        response_minutes = max(
            self.context.automation_settings.waitlist_response_minutes, 1
        )
        expires_at = now + timedelta(minutes=response_minutes)
        offer = PendingOffer(
            reservation_id=reservation.id,
            waitlist_id=entry.id,
            fallback_status=reservation.status,
            contacted_at=now,
            expires_at=expires_at,
        )

        previous_contacted_at = entry.last_contacted_at
        self.context.offers.start(offer)
        reservation.status = ReservationStatus.PROCESSING
        entry.status = WaitlistStatus.CONTACTED
        entry.last_contacted_at = now
        self.context.scheduler.schedule(
            expires_at, reservation.id, EventKind.OFFER_TIMEOUT, token=entry.id
        )
        logger.info(
            f"Offering reservation {reservation.id} to waitlist entry {entry.id} "
            f"until {expires_at.isoformat()}"
        )

        if sends_message:
            try:
                self.context.gateway.send(
                    entry.phone, message, ConversationType.WAITLIST_OFFER, expires_at
                )
            except DeliveryError as e:
                logger.warning(f"Offer to {entry.name} not delivered: {e}")
                self._roll_back(offer, entry, previous_contacted_at, now, e)
                return False
            except Exception as e:
                logger.exception(f"Unexpected error sending offer to {entry.name}")
                self._roll_back(offer, entry, previous_contacted_at, now, e)
                return False

        self.context.notify(notice, NotificationLevel.INFO)
        return True

    def _roll_back(
        self,
        offer: PendingOffer,
        entry: WaitlistEntry,
        previous_contacted_at: datetime | None,
        now: datetime,
        error: Exception,
    ) -> None:
        release_offer(self.context, offer, offer.fallback_status, WaitlistStatus.WAITING)
        entry.last_contacted_at = previous_contacted_at
        self.context.offers.defer(offer.reservation_id, now + OFFER_RETRY_DELAY)
        self.context.notify(f"WhatsApp error: {error}", NotificationLevel.ERROR)
