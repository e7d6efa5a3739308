"""Data models for the waitlist."""

import uuid
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class WaitlistStatus(str, Enum):
    """Status of a waitlist entry."""

    WAITING = "waiting"
    CONTACTED = "contacted"
    DECLINED = "declined"


class NewWaitlistEntry(BaseModel):
    """Staff input for adding a guest to the waitlist."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, description="Guest name")
    phone: str = Field(..., description="Guest phone number")
    party_size: int = Field(..., gt=0, description="Number of people")


class WaitlistEntry(BaseModel):
    """A guest waiting for a table to free up."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    phone: str
    party_size: int = Field(..., gt=0)
    status: WaitlistStatus = Field(default=WaitlistStatus.WAITING)
    created_at: datetime
    last_contacted_at: datetime | None = Field(
        None, description="When the latest offer was sent"
    )
