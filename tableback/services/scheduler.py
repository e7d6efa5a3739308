"""Timed events drained by the engine tick loop."""

import heapq
import itertools
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    OFFER_TIMEOUT = "offer_timeout"


@dataclass(order=True)
class ScheduledEvent:
    """A pending timed event for one entity."""

    fire_at: datetime
    sequence: int
    entity_id: str = field(compare=False)
    kind: EventKind = field(compare=False)
    token: str | None = field(default=None, compare=False)
    cancelled: bool = field(default=False, compare=False)


class TimeoutScheduler:
    """Heap of ``(fire_at, entity_id, kind)`` events.

    At most one event per ``(entity_id, kind)`` is live. Scheduling again
    replaces the previous event and cancelling removes it, so a resolved
    timeout can never fire.
    """

    def __init__(self) -> None:
        self._heap: list[ScheduledEvent] = []
        self._live: dict[tuple[str, EventKind], ScheduledEvent] = {}
        self._counter = itertools.count()

    def schedule(
        self,
        fire_at: datetime,
        entity_id: str,
        kind: EventKind,
        token: str | None = None,
    ) -> ScheduledEvent:
        """Arm an event, replacing any live event of the same kind for the entity."""
        self.cancel(entity_id, kind)
        event = ScheduledEvent(
            fire_at=fire_at,
            sequence=next(self._counter),
            entity_id=entity_id,
            kind=kind,
            token=token,
        )
        self._live[(entity_id, kind)] = event
        heapq.heappush(self._heap, event)
        logger.debug(f"Scheduled {kind.value} for {entity_id} at {fire_at.isoformat()}")
        return event

    def cancel(self, entity_id: str, kind: EventKind) -> bool:
        """Remove a live event.

        Returns:
            True if an event was cancelled
        """
        event = self._live.pop((entity_id, kind), None)
        if event is None:
            return False
        event.cancelled = True
        logger.debug(f"Cancelled {kind.value} for {entity_id}")
        return True

    def cancel_all(self, entity_id: str) -> None:
        for kind in EventKind:
            self.cancel(entity_id, kind)

    def get(self, entity_id: str, kind: EventKind) -> ScheduledEvent | None:
        return self._live.get((entity_id, kind))

    def pop_due(self, now: datetime) -> list[ScheduledEvent]:
        """Remove and return every live event with ``fire_at <= now``, in order."""
        due = []
        while self._heap and self._heap[0].fire_at <= now:
            event = heapq.heappop(self._heap)
            if event.cancelled:
                continue
            self._live.pop((event.entity_id, event.kind), None)
            due.append(event)
        return due

    def __len__(self) -> int:
        return len(self._live)
