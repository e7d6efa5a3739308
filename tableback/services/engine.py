"""The reservation/waitlist automation engine."""

import logging
import threading
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

from pydantic import BaseModel, Field

from tableback.config import Config
from tableback.models import (
    AutomationSettings,
    NewReservation,
    NewWaitlistEntry,
    Notification,
    NotificationLevel,
    ReminderSettings,
    Reservation,
    WaitlistEntry,
)
from tableback.services.clock import utc_now
from tableback.services.confirmations import ConfirmationReconciler
from tableback.services.context import EngineContext
from tableback.services.matching import WaitlistMatcher
from tableback.services.messaging import MessagingGateway
from tableback.services.offers import OfferReconciler
from tableback.services.reminders import ReminderScheduler
from tableback.services.reply_ledger import ReplyLedger
from tableback.services.scheduler import EventKind
from tableback.services.store import EntityNotFoundError, EntityStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TickIntervals:
    """Minimum time between two runs of each polling component.

    A zero interval runs the component on every ``advance_time`` call.
    """

    reminders: timedelta = timedelta(seconds=5)
    confirmations: timedelta = timedelta(seconds=6)
    offers: timedelta = timedelta(seconds=4)

    @classmethod
    def from_config(cls, cfg: Config) -> "TickIntervals":
        return cls(
            reminders=timedelta(seconds=cfg.reminder_interval_seconds),
            confirmations=timedelta(seconds=cfg.confirmation_interval_seconds),
            offers=timedelta(seconds=cfg.offer_interval_seconds),
        )


class EngineSnapshot(BaseModel):
    """Point-in-time copy of the engine state."""

    reservations: list[Reservation]
    waitlist: list[WaitlistEntry]
    reminder_settings: ReminderSettings
    automation_settings: AutomationSettings
    in_flight_reservation_ids: list[str] = Field(default_factory=list)


class AutomationEngine:
    """Drives reminders, no-show detection and waitlist offers.

    All components share one entity store and one offer tracker owned by
    this engine. Every public operation holds the engine lock, so the tick
    loop and staff actions never interleave their mutations.
    """

    def __init__(
        self,
        gateway: MessagingGateway,
        ledger: ReplyLedger,
        store: EntityStore | None = None,
        reminder_settings: ReminderSettings | None = None,
        automation_settings: AutomationSettings | None = None,
        timezone_name: str = "Europe/Brussels",
        intervals: TickIntervals | None = None,
        clock: Callable[[], datetime] = utc_now,
        notification_history: int = 100,
    ) -> None:
        self.context = EngineContext(
            store=store or EntityStore(),
            gateway=gateway,
            ledger=ledger,
            tz=ZoneInfo(timezone_name),
            reminder_settings=reminder_settings or ReminderSettings(),
            automation_settings=automation_settings or AutomationSettings(),
            notify=self._notify,
        )
        self.intervals = intervals or TickIntervals()
        self._clock = clock
        self._lock = threading.RLock()
        self._last_runs: dict[str, datetime] = {}
        self._notifications: deque[Notification] = deque(maxlen=notification_history)
        self._subscribers: list[Callable[[Notification], None]] = []

        self.reminders = ReminderScheduler(self.context)
        self.confirmations = ConfirmationReconciler(self.context)
        self.matcher = WaitlistMatcher(self.context)
        self.offers = OfferReconciler(self.context)

    @classmethod
    def from_config(
        cls, cfg: Config, gateway: MessagingGateway, ledger: ReplyLedger
    ) -> "AutomationEngine":
        """Build an engine with settings taken from configuration."""
        return cls(
            gateway=gateway,
            ledger=ledger,
            reminder_settings=ReminderSettings.from_config(cfg),
            automation_settings=AutomationSettings.from_config(cfg),
            timezone_name=cfg.timezone,
            intervals=TickIntervals.from_config(cfg),
        )

    @property
    def store(self) -> EntityStore:
        return self.context.store

    def now(self) -> datetime:
        return self._clock()

    # ------------------------------------------------------------------
    # Tick loop
    # ------------------------------------------------------------------

    def advance_time(self, now: datetime | None = None) -> None:
        """Run every component that is due at ``now``.

        Order: expired offer timeouts, reminders and no-shows, confirmation
        replies, offer replies, then one matcher evaluation. A failing
        component is logged and reported; the others still run.

        Args:
            now: Current instant (defaults to the engine clock)
        """
        if now is None:
            now = self._clock()

        with self._lock:
            self._run("timeouts", self._drain_timeouts, now)
            if self._is_due("reminders", self.intervals.reminders, now):
                self._run("reminders", self.reminders.tick, now)
            if self._is_due("confirmations", self.intervals.confirmations, now):
                self._run("confirmations", self.confirmations.tick, now)
            if self._is_due("offers", self.intervals.offers, now):
                self._run("offers", self.offers.tick, now)
            self._run("matcher", self.matcher.evaluate, now)

    def _is_due(self, name: str, interval: timedelta, now: datetime) -> bool:
        last_run = self._last_runs.get(name)
        if last_run is not None and now - last_run < interval:
            return False
        self._last_runs[name] = now
        return True

    def _run(self, name: str, step: Callable[[datetime], object], now: datetime) -> None:
        try:
            step(now)
        except Exception as e:
            logger.exception(f"Automation step {name} failed")
            self._notify(f"Automation error ({name}): {e}", NotificationLevel.ERROR)

    def _drain_timeouts(self, now: datetime) -> None:
        for event in self.context.scheduler.pop_due(now):
            if event.kind == EventKind.OFFER_TIMEOUT:
                try:
                    self.matcher.handle_timeout(event, now)
                except Exception:
                    logger.exception(f"Offer timeout failed for {event.entity_id}")

    # ------------------------------------------------------------------
    # Staff operations
    # ------------------------------------------------------------------

    def add_reservation(self, entry: NewReservation) -> Reservation:
        """Create a reservation awaiting confirmation."""
        with self._lock:
            reservation = self.store.add_reservation(
                Reservation.create(entry, created_at=self._clock())
            )
            logger.info(f"Added reservation {reservation.id} for {reservation.name}")
            self._notify(f"Reservation for {entry.name} added", NotificationLevel.INFO)
            return reservation

    def remove_reservation(self, reservation_id: str) -> Reservation:
        """Delete a reservation and all automation state held for it.

        Raises:
            EntityNotFoundError: If the reservation does not exist
        """
        with self._lock:
            reservation = self.store.remove_reservation(reservation_id)
            if reservation is None:
                raise EntityNotFoundError(reservation_id)
            self._forget(reservation_id)
            self._notify(
                f"Reservation for {reservation.name} removed", NotificationLevel.INFO
            )
            return reservation

    def clear_reservations(self) -> int:
        """Delete every reservation.

        Returns:
            Number of reservations removed
        """
        with self._lock:
            removed = self.store.clear_reservations()
            for reservation in removed:
                self._forget(reservation.id)
            if removed:
                self._notify("All reservations removed", NotificationLevel.INFO)
            return len(removed)

    def add_waitlist_entry(self, entry: NewWaitlistEntry) -> WaitlistEntry:
        """Put a guest on the waitlist."""
        with self._lock:
            waitlist_entry = self.store.add_waitlist_entry(
                WaitlistEntry(
                    name=entry.name,
                    phone=entry.phone,
                    party_size=entry.party_size,
                    created_at=self._clock(),
                )
            )
            logger.info(f"Added waitlist entry {waitlist_entry.id} for {entry.name}")
            self._notify(f"{entry.name} added to the waitlist", NotificationLevel.INFO)
            return waitlist_entry

    def remove_waitlist_entry(self, entry_id: str) -> WaitlistEntry:
        """Take a guest off the waitlist.

        An offer still pending for the guest runs into its timeout.

        Raises:
            EntityNotFoundError: If the entry does not exist
        """
        with self._lock:
            entry = self.store.remove_waitlist_entry(entry_id)
            if entry is None:
                raise EntityNotFoundError(entry_id)
            self._notify(
                f"{entry.name} removed from the waitlist", NotificationLevel.INFO
            )
            return entry

    def contact_waitlist_entry(self, entry_id: str) -> Reservation | None:
        """Offer an open table to a waitlist guest on staff request.

        Returns:
            The reservation offered, or None if no table was available or the
            offer could not be sent

        Raises:
            EntityNotFoundError: If the entry does not exist
        """
        with self._lock:
            return self.matcher.contact(entry_id, self._clock())

    def update_reminder_settings(self, settings: ReminderSettings) -> None:
        with self._lock:
            self.context.reminder_settings = settings
            logger.info(f"Reminder settings updated: {settings.model_dump()}")

    def update_automation_settings(self, settings: AutomationSettings) -> None:
        with self._lock:
            self.context.automation_settings = settings
            logger.info(f"Automation settings updated: {settings.model_dump(mode='json')}")

    def snapshot(self) -> EngineSnapshot:
        """Copy of the full entity store and settings."""
        with self._lock:
            return EngineSnapshot(
                reservations=[r.model_copy(deep=True) for r in self.store.reservations],
                waitlist=[w.model_copy(deep=True) for w in self.store.waitlist],
                reminder_settings=self.context.reminder_settings.model_copy(),
                automation_settings=self.context.automation_settings.model_copy(),
                in_flight_reservation_ids=sorted(self.context.offers.in_flight_ids),
            )

    def _forget(self, reservation_id: str) -> None:
        self.context.scheduler.cancel_all(reservation_id)
        self.context.offers.forget(reservation_id)

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    @property
    def notifications(self) -> list[Notification]:
        """Most recent notifications, oldest first."""
        return list(self._notifications)

    def subscribe(self, callback: Callable[[Notification], None]) -> None:
        """Register a callback invoked for every new notification."""
        self._subscribers.append(callback)

    def _notify(self, message: str, level: NotificationLevel) -> None:
        latest = self._notifications[-1] if self._notifications else None
        if (
            level == NotificationLevel.ERROR
            and latest is not None
            and latest.level == level
            and latest.message == message
        ):
            logger.debug(f"Suppressed repeated notification: {message}")
            return

        notification = Notification(message=message, level=level, created_at=self._clock())
        if level == NotificationLevel.ERROR:
            logger.warning(f"Notification: {message}")
        else:
            logger.debug(f"Notification: {message}")
        self._notifications.append(notification)
        for callback in self._subscribers:
            try:
                callback(notification)
            except Exception:
                logger.exception("Notification subscriber failed")
