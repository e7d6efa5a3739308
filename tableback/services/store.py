"""In-memory entity store and in-flight offer bookkeeping."""

import logging
from dataclasses import dataclass
from datetime import datetime

from tableback.models import Reservation, ReservationStatus, WaitlistEntry

logger = logging.getLogger(__name__)


class EntityNotFoundError(KeyError):
    """Raised when a staff operation names an unknown reservation or entry."""


class EntityStore:
    """Reservations and waitlist entries, kept in insertion order.

    This is the single source of truth every engine component reads and
    mutates. It does not persist anything.
    """

    def __init__(
        self,
        reservations: list[Reservation] | None = None,
        waitlist: list[WaitlistEntry] | None = None,
    ) -> None:
        self._reservations: dict[str, Reservation] = {
            r.id: r for r in reservations or []
        }
        self._waitlist: dict[str, WaitlistEntry] = {w.id: w for w in waitlist or []}

    @property
    def reservations(self) -> list[Reservation]:
        return list(self._reservations.values())

    @property
    def waitlist(self) -> list[WaitlistEntry]:
        return list(self._waitlist.values())

    def add_reservation(self, reservation: Reservation) -> Reservation:
        self._reservations[reservation.id] = reservation
        return reservation

    def get_reservation(self, reservation_id: str) -> Reservation | None:
        return self._reservations.get(reservation_id)

    def remove_reservation(self, reservation_id: str) -> Reservation | None:
        return self._reservations.pop(reservation_id, None)

    def clear_reservations(self) -> list[Reservation]:
        removed = self.reservations
        self._reservations.clear()
        return removed

    def add_waitlist_entry(self, entry: WaitlistEntry) -> WaitlistEntry:
        self._waitlist[entry.id] = entry
        return entry

    def get_waitlist_entry(self, entry_id: str) -> WaitlistEntry | None:
        return self._waitlist.get(entry_id)

    def remove_waitlist_entry(self, entry_id: str) -> WaitlistEntry | None:
        return self._waitlist.pop(entry_id, None)

    def reservations_with_status(
        self, *statuses: ReservationStatus
    ) -> list[Reservation]:
        return [r for r in self._reservations.values() if r.status in statuses]


@dataclass
class PendingOffer:
    """A table currently offered to a waitlist guest."""

    reservation_id: str
    waitlist_id: str
    fallback_status: ReservationStatus
    contacted_at: datetime
    expires_at: datetime


class OfferTracker:
    """Engine-owned in-flight guard and reminder bookkeeping.

    A reservation id is in-flight exactly while a pending offer exists for
    it. The sent-reminder keys make every reminder a one-shot event.
    """

    def __init__(self) -> None:
        self._offers: dict[str, PendingOffer] = {}
        self._sent_reminders: set[str] = set()
        self._retry_after: dict[str, datetime] = {}

    def start(self, offer: PendingOffer) -> None:
        if offer.reservation_id in self._offers:
            msg = f"Reservation {offer.reservation_id} already has an offer in flight"
            raise ValueError(msg)
        self._offers[offer.reservation_id] = offer

    def get(self, reservation_id: str) -> PendingOffer | None:
        return self._offers.get(reservation_id)

    def finish(self, reservation_id: str) -> PendingOffer | None:
        return self._offers.pop(reservation_id, None)

    def is_in_flight(self, reservation_id: str) -> bool:
        return reservation_id in self._offers

    def offer_for_entry(self, waitlist_id: str) -> PendingOffer | None:
        for offer in self._offers.values():
            if offer.waitlist_id == waitlist_id:
                return offer
        return None

    @property
    def in_flight_ids(self) -> frozenset[str]:
        return frozenset(self._offers)

    def pending(self) -> list[PendingOffer]:
        return list(self._offers.values())

    @staticmethod
    def _reminder_key(reservation_id: str, reminder_number: int) -> str:
        return f"{reservation_id}:{reminder_number}"

    def defer(self, reservation_id: str, until: datetime) -> None:
        """Keep the automatic matcher away from a table until ``until``."""
        self._retry_after[reservation_id] = until

    def is_deferred(self, reservation_id: str, now: datetime) -> bool:
        until = self._retry_after.get(reservation_id)
        return until is not None and now < until

    def claim_reminder(self, reservation_id: str, reminder_number: int) -> bool:
        """Mark a reminder as dispatched.

        Returns:
            False if that reminder was already claimed
        """
        key = self._reminder_key(reservation_id, reminder_number)
        if key in self._sent_reminders:
            return False
        self._sent_reminders.add(key)
        return True

    def forget(self, reservation_id: str) -> None:
        """Drop every piece of bookkeeping held for a reservation."""
        self._offers.pop(reservation_id, None)
        self._retry_after.pop(reservation_id, None)
        self._sent_reminders.discard(self._reminder_key(reservation_id, 1))
        self._sent_reminders.discard(self._reminder_key(reservation_id, 2))
