"""RSVP submission and attendance counting.

Writes go through a single upsert keyed on (event_id, user_id), so a pair can
never hold more than one row. Submissions for one event are serialised by an
in-process lock, and the capacity check reads a fresh going count while that
lock is held. Within one process capacity is therefore a hard limit; other
processes writing to the same store are not coordinated.
"""

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from threading import Lock
from typing import Callable, Dict, Iterator, List, Optional

from huddle.auth import Session
from huddle.gateway.base import DataGateway, eq, utc_now_iso
from huddle.gateway.provider import gateway as default_gateway
from huddle.gateway.realtime import ChangeEvent, Subscription
from huddle.models import CommunityEvent, EventRsvp, RsvpResult
from huddle.services.errors import CapacityReachedError, EventPassedError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

RSVP_STATUSES = {"going", "maybe", "not_going"}


class RsvpCoordinator:
    def __init__(self, gateway: DataGateway) -> None:
        self.gateway = gateway
        self._guard = Lock()
        self._event_locks: Dict[str, Lock] = {}
        self._pending: Dict[str, int] = {}

    @contextmanager
    def _event_lock(self, event_id: str) -> Iterator[None]:
        with self._guard:
            lock = self._event_locks.setdefault(event_id, Lock())
            self._pending[event_id] = self._pending.get(event_id, 0) + 1
        try:
            with lock:
                yield
        finally:
            with self._guard:
                self._pending[event_id] -= 1
                if self._pending[event_id] == 0:
                    del self._pending[event_id]
                    self._event_locks.pop(event_id, None)

    def pending_operations(self) -> int:
        with self._guard:
            return sum(self._pending.values())

    def fetch_attendance_count(self, event_id: str) -> int:
        return self.gateway.count("event_rsvps", [eq("event_id", event_id), eq("status", "going")])

    def get_user_rsvp(self, event_id: str, user_id: str) -> Optional[EventRsvp]:
        row = self.gateway.select_one("event_rsvps", [eq("event_id", event_id), eq("user_id", user_id)])
        return EventRsvp(**row) if row else None

    def list_attendees(self, event_id: str) -> List[EventRsvp]:
        rows = self.gateway.select(
            "event_rsvps",
            filters=[eq("event_id", event_id)],
            order_by="created_at",
            descending=True,
        ).rows
        return [EventRsvp(**row) for row in rows]

    def watch_attendance(self, event_id: str, on_count: Callable[[int], None]) -> Subscription:
        """Call ``on_count`` with a freshly read going count after every RSVP change for the event."""

        def _refetch(_change: ChangeEvent) -> None:
            on_count(self.fetch_attendance_count(event_id))

        return self.gateway.subscribe("event_rsvps", _refetch, filters=[eq("event_id", event_id)])

    def submit_rsvp(
        self,
        session: Session,
        event: CommunityEvent,
        status: str,
        now: Optional[datetime] = None,
    ) -> RsvpResult:
        if status not in RSVP_STATUSES:
            raise ValidationError("RSVP status must be one of going, maybe, not_going")
        current = now or datetime.now(timezone.utc)
        if current.tzinfo is None:
            current = current.replace(tzinfo=timezone.utc)
        # Checked on the event the caller already holds: no store round trip.
        if event.deleted_at is not None:
            raise NotFoundError("Event not found")
        if event.start_time < current:
            raise EventPassedError()
        if event.status == "cancelled":
            raise ValidationError("This event has been cancelled")

        with self._event_lock(event.id):
            if status == "going" and event.capacity is not None:
                existing = self.get_user_rsvp(event.id, session.user_id)
                if existing is None or existing.status != "going":
                    if self.fetch_attendance_count(event.id) >= event.capacity:
                        raise CapacityReachedError()
            self.gateway.upsert(
                "event_rsvps",
                {
                    "event_id": event.id,
                    "user_id": session.user_id,
                    "status": status,
                    "updated_at": utc_now_iso(),
                },
                on_conflict=["event_id", "user_id"],
            )
            attendee_count = self.fetch_attendance_count(event.id)

        logger.info("RSVP %s for event %s by %s", status, event.id, session.user_id)
        spots_left = max(0, event.capacity - attendee_count) if event.capacity is not None else None
        return RsvpResult(
            event_id=event.id,
            user_id=session.user_id,
            status=status,  # type: ignore[arg-type]
            attendee_count=attendee_count,
            capacity=event.capacity,
            spots_left=spots_left,
        )


rsvp_coordinator = RsvpCoordinator(default_gateway)
