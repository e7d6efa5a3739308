"""Shared fixtures for Tableback tests."""

from dataclasses import dataclass
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

import pytest

from tableback.models import (
    AutomationSettings,
    ConversationType,
    NewReservation,
    NewWaitlistEntry,
    ReminderSettings,
    ReplyRecord,
    ReservationStatus,
)
from tableback.services import (
    AutomationEngine,
    DeliveryError,
    MessagingGateway,
    ReplyLedger,
    TickIntervals,
)

BRUSSELS = ZoneInfo("Europe/Brussels")


class FakeClock:
    """Controllable clock returning Brussels wall-clock instants."""

    def __init__(self, start: datetime) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current

    def at(self, hour: int, minute: int = 0, second: int = 0) -> datetime:
        self.current = self.current.replace(hour=hour, minute=minute, second=second)
        return self.current


@dataclass
class SentMessage:
    to: str
    message: str
    conversation_type: ConversationType
    expires_at: datetime | None


class FakeGateway(MessagingGateway):
    """Records messages instead of sending them."""

    def __init__(self) -> None:
        self.sent: list[SentMessage] = []
        self.fail_with: str | None = None
        self.configured = True

    def is_configured(self) -> bool:
        return self.configured

    def send(self, to, message, conversation_type, expires_at=None) -> str:
        if self.fail_with:
            raise DeliveryError(self.fail_with)
        self.sent.append(SentMessage(to, message, conversation_type, expires_at))
        return f"SM{len(self.sent):04d}"

    def sent_of(self, conversation_type: ConversationType) -> list[SentMessage]:
        return [m for m in self.sent if m.conversation_type == conversation_type]


@pytest.fixture
def clock():
    """Clock starting at 10:00 Brussels time on a summer day."""
    return FakeClock(datetime(2026, 6, 15, 10, 0, tzinfo=BRUSSELS))


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def ledger():
    return ReplyLedger()


@pytest.fixture
def engine(gateway, ledger, clock):
    """Engine that runs every component on every advance_time call."""
    return AutomationEngine(
        gateway=gateway,
        ledger=ledger,
        reminder_settings=ReminderSettings(
            first_reminder_minutes_before=120, final_reminder_minutes_before=30
        ),
        automation_settings=AutomationSettings(
            no_show_threshold_minutes=15, waitlist_response_minutes=10
        ),
        intervals=TickIntervals(
            reminders=timedelta(0), confirmations=timedelta(0), offers=timedelta(0)
        ),
        clock=clock,
    )


@pytest.fixture
def add_reservation(engine):
    """Factory fixture to add a reservation through the engine."""

    def _add(name="Alice", phone="+32470000001", party_size=4, time="19:00"):
        return engine.add_reservation(
            NewReservation(name=name, phone=phone, party_size=party_size, time=time)
        )

    return _add


@pytest.fixture
def add_waitlist_entry(engine):
    """Factory fixture to add a waitlist entry through the engine."""

    def _add(name="Bob", phone="+32470000002", party_size=4):
        return engine.add_waitlist_entry(
            NewWaitlistEntry(name=name, phone=phone, party_size=party_size)
        )

    return _add


def record_reply(
    ledger: ReplyLedger,
    phone: str,
    at: datetime,
    confirmed: bool = False,
    declined: bool = False,
    text: str = "",
) -> None:
    """Simulate the webhook storing a classified reply."""
    ledger.set(
        phone,
        ReplyRecord(
            confirmed=confirmed,
            declined=declined,
            last_reply=text or ("JA" if confirmed else "NEE" if declined else "hmm"),
            updated_at=at,
        ),
    )


def assert_single_ownership(engine: AutomationEngine) -> None:
    """In-flight guard holds exactly the processing reservations."""
    processing = {
        r.id for r in engine.store.reservations if r.status == ReservationStatus.PROCESSING
    }
    assert engine.context.offers.in_flight_ids == processing
