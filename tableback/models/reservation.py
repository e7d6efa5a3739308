"""Data models for restaurant reservations."""

import uuid
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

REVENUE_PER_GUEST = 60


class ReservationStatus(str, Enum):
    """Status of a reservation."""

    CONFIRMED = "confirmed"
    ATTENTION = "attention"
    EXPIRED = "expired"
    PROCESSING = "processing"
    FILLED = "filled"
    UNFILLED = "unfilled"


class NewReservation(BaseModel):
    """Staff input for creating a reservation."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, description="Guest name")
    phone: str = Field(default="", description="Guest phone number")
    party_size: int = Field(..., gt=0, description="Number of people")
    time: str = Field(..., description="Time of day, HH:MM")


class Reservation(BaseModel):
    """A table reservation tracked by the automation engine."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str = Field(..., description="Guest name")
    phone: str = Field(default="", description="Guest phone number")
    time: str = Field(..., description="Time of day, HH:MM")
    party_size: int = Field(..., gt=0, description="Number of people")
    estimated_revenue: float = Field(default=0, description="Expected revenue")
    status: ReservationStatus = Field(default=ReservationStatus.ATTENTION)
    reminder_count: int = Field(default=0, ge=0, le=2)
    last_reminder_at: datetime | None = Field(
        None, description="When the latest reminder was due"
    )
    filled_from_waitlist: bool = Field(default=False)
    original_guest_name: str | None = Field(
        None, description="Guest the table was booked for before a waitlist fill"
    )
    created_at: datetime = Field(..., description="Creation timestamp")

    @classmethod
    def create(cls, entry: NewReservation, created_at: datetime) -> "Reservation":
        """Build a fresh reservation awaiting confirmation."""
        return cls(
            name=entry.name,
            phone=entry.phone,
            time=entry.time,
            party_size=entry.party_size,
            estimated_revenue=entry.party_size * REVENUE_PER_GUEST,
            created_at=created_at,
        )
