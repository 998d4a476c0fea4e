import logging
from collections import Counter
from datetime import datetime, timezone
from typing import Dict, List, Optional

from dateutil.rrule import rrulestr

from huddle.auth import Session
from huddle.gateway.base import DataGateway, eq, gte, in_, is_null, neq, not_null, utc_now_iso
from huddle.gateway.provider import gateway as default_gateway
from huddle.models import (
    CommunityEvent,
    EventCreateRequest,
    EventSearchHit,
    EventUpdateRequest,
    EventView,
    MyEvents,
    RecurrenceOptions,
)
from huddle.services.communities import CommunityDirectory, community_directory
from huddle.services.errors import NotFoundError, PermissionDeniedError, ValidationError
from huddle.services.rsvp_coordinator import RsvpCoordinator, rsvp_coordinator

logger = logging.getLogger(__name__)

_FREQUENCIES = {"daily": "DAILY", "weekly": "WEEKLY", "monthly": "MONTHLY"}


def build_recurrence_rule(options: RecurrenceOptions) -> str:
    parts = [f"FREQ={_FREQUENCIES[options.frequency]}", f"INTERVAL={options.interval}"]
    if options.until:
        parts.append(f"UNTIL={options.until.strftime('%Y%m%d')}T235959Z")
    return ";".join(parts)


def _utc(value: Optional[datetime]) -> datetime:
    if value is None:
        return datetime.now(timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class EventService:
    def __init__(self, gateway: DataGateway, directory: CommunityDirectory, rsvps: RsvpCoordinator) -> None:
        self.gateway = gateway
        self.directory = directory
        self.rsvps = rsvps

    def get_event(self, event_id: str, include_deleted: bool = False) -> CommunityEvent:
        row = self.gateway.select_one("community_events", [eq("id", event_id)])
        if not row or (row.get("deleted_at") and not include_deleted):
            raise NotFoundError("Event not found")
        return CommunityEvent(**row)

    def _going_counts(self, event_ids: List[str]) -> Dict[str, int]:
        if not event_ids:
            return {}
        rows = self.gateway.select(
            "event_rsvps",
            columns="event_id",
            filters=[in_("event_id", event_ids), eq("status", "going")],
        ).rows
        return dict(Counter(row["event_id"] for row in rows))

    def _my_statuses(self, event_ids: List[str], user_id: Optional[str]) -> Dict[str, str]:
        if not event_ids or not user_id:
            return {}
        rows = self.gateway.select(
            "event_rsvps",
            columns="event_id,status",
            filters=[in_("event_id", event_ids), eq("user_id", user_id)],
        ).rows
        return {row["event_id"]: row["status"] for row in rows}

    def _to_views(self, events: List[CommunityEvent], session: Optional[Session]) -> List[EventView]:
        ids = [event.id for event in events]
        counts = self._going_counts(ids)
        mine = self._my_statuses(ids, session.user_id if session else None)
        views = []
        for event in events:
            count = counts.get(event.id, 0)
            spots_left = max(0, event.capacity - count) if event.capacity is not None else None
            views.append(
                EventView(
                    **event.model_dump(),
                    rsvp_count=count,
                    my_rsvp_status=mine.get(event.id),
                    spots_left=spots_left,
                    is_full=spots_left == 0,
                )
            )
        return views

    def get_event_view(self, session: Optional[Session], event_id: str) -> EventView:
        return self._to_views([self.get_event(event_id)], session)[0]

    def list_community_events(
        self,
        community_id: str,
        session: Optional[Session] = None,
        include_past: bool = False,
        now: Optional[datetime] = None,
        limit: int = 50,
    ) -> List[EventView]:
        filters = [eq("community_id", community_id), is_null("deleted_at")]
        if not include_past:
            filters.append(gte("start_time", _utc(now)))
        rows = self.gateway.select(
            "community_events",
            filters=filters,
            order_by="start_time",
            limit=max(1, min(limit, 200)),
        ).rows
        return self._to_views([CommunityEvent(**row) for row in rows], session)

    @staticmethod
    def _validate(title: Optional[str], start: Optional[datetime], end: Optional[datetime], capacity: Optional[int]) -> None:
        if title is not None and not title.strip():
            raise ValidationError("Event title is required")
        if start and end and end <= start:
            raise ValidationError("End time must be after start time")
        if capacity is not None and capacity < 1:
            raise ValidationError("Capacity must be at least 1")

    def create_event(self, session: Session, request: EventCreateRequest) -> CommunityEvent:
        self.directory.get_community(request.community_id)
        self.directory.require_manager(session, request.community_id)
        if not request.title.strip():
            raise ValidationError("Event title is required")
        end_time = _utc(request.end_time) if request.end_time else None
        self._validate(request.title, _utc(request.start_time), end_time, request.capacity)
        rule = build_recurrence_rule(request.recurrence) if request.recurrence else None
        rows = self.gateway.insert(
            "community_events",
            {
                "community_id": request.community_id,
                "created_by": session.user_id,
                "title": request.title.strip(),
                "description": request.description,
                "start_time": _utc(request.start_time),
                "end_time": end_time,
                "location": request.location,
                "is_online": request.is_online,
                "meeting_url": request.meeting_url,
                "capacity": request.capacity,
                "tags": request.tags,
                "is_recurring": rule is not None,
                "recurrence_rule": rule,
                "status": "upcoming",
                "ai_generated": False,
                "metadata": {},
            },
        )
        event = CommunityEvent(**rows[0])
        logger.info("Event %s created in %s by %s", event.id, event.community_id, session.user_id)
        return event

    def _require_owner_or_manager(self, session: Session, event: CommunityEvent) -> None:
        if event.created_by == session.user_id:
            return
        self.directory.require_manager(session, event.community_id)

    def update_event(self, session: Session, event_id: str, request: EventUpdateRequest) -> CommunityEvent:
        event = self.get_event(event_id)
        self._require_owner_or_manager(session, event)
        changes = request.model_dump(exclude_unset=True, exclude={"recurrence"})
        for key in ("title", "start_time", "status"):
            if key in changes and changes[key] is None:
                raise ValidationError(f"{key} cannot be cleared")
        for key in ("start_time", "end_time"):
            if changes.get(key):
                changes[key] = _utc(changes[key])
        start = changes.get("start_time") or event.start_time
        end = changes["end_time"] if "end_time" in changes else event.end_time
        capacity = changes["capacity"] if "capacity" in changes else event.capacity
        self._validate(changes.get("title"), start, end, capacity)
        if "title" in changes:
            changes["title"] = changes["title"].strip()
        if "recurrence" in request.model_fields_set:
            rule = build_recurrence_rule(request.recurrence) if request.recurrence else None
            changes["recurrence_rule"] = rule
            changes["is_recurring"] = rule is not None
        if not changes:
            return event
        rows = self.gateway.update("community_events", changes, [eq("id", event_id)])
        if not rows:
            raise NotFoundError("Event not found")
        return CommunityEvent(**rows[0])

    def soft_delete_event(self, session: Session, event_id: str) -> CommunityEvent:
        event = self.get_event(event_id)
        self._require_owner_or_manager(session, event)
        rows = self.gateway.update("community_events", {"deleted_at": utc_now_iso()}, [eq("id", event_id)])
        logger.info("Event %s soft-deleted by %s", event_id, session.user_id)
        return CommunityEvent(**rows[0])

    def restore_event(self, session: Session, event_id: str) -> CommunityEvent:
        event = self.get_event(event_id, include_deleted=True)
        self._require_owner_or_manager(session, event)
        rows = self.gateway.update("community_events", {"deleted_at": None}, [eq("id", event_id)])
        return CommunityEvent(**rows[0])

    def hard_delete_event(self, session: Session, event_id: str) -> None:
        event = self.get_event(event_id, include_deleted=True)
        self.directory.require_admin(session, event.community_id)
        self.gateway.delete("event_rsvps", [eq("event_id", event_id)])
        self.gateway.delete("community_events", [eq("id", event_id)])
        logger.info("Event %s permanently deleted by %s", event_id, session.user_id)

    def my_events(self, session: Session, now: Optional[datetime] = None) -> MyEvents:
        current = _utc(now)
        owned = self.gateway.select(
            "community_events",
            filters=[eq("created_by", session.user_id), is_null("deleted_at")],
            order_by="start_time",
        ).rows
        deleted = self.gateway.select(
            "community_events",
            filters=[eq("created_by", session.user_id), not_null("deleted_at")],
            order_by="deleted_at",
            descending=True,
        ).rows
        going = self.gateway.select(
            "event_rsvps",
            columns="event_id",
            filters=[eq("user_id", session.user_id), eq("status", "going")],
        ).rows
        participating: List[dict] = []
        going_ids = [row["event_id"] for row in going]
        if going_ids:
            participating = self.gateway.select(
                "community_events",
                filters=[
                    in_("id", going_ids),
                    is_null("deleted_at"),
                    neq("created_by", session.user_id),
                    gte("start_time", current),
                ],
                order_by="start_time",
            ).rows
        return MyEvents(
            owned=[CommunityEvent(**row) for row in owned],
            participating=[CommunityEvent(**row) for row in participating],
            deleted=[CommunityEvent(**row) for row in deleted],
        )

    def occurrences(self, event_id: str, count: int = 10, after: Optional[datetime] = None) -> List[datetime]:
        event = self.get_event(event_id)
        if not event.recurrence_rule:
            return [event.start_time]
        try:
            rule = rrulestr(event.recurrence_rule, dtstart=event.start_time)
        except (ValueError, TypeError) as exc:
            raise ValidationError(f"Invalid recurrence rule: {exc}") from exc
        start_from = _utc(after) if after else event.start_time
        results: List[datetime] = []
        current = rule.after(start_from, inc=True)
        while current is not None and len(results) < max(1, min(count, 100)):
            results.append(current)
            current = rule.after(current, inc=False)
        return results

    def search_events(self, query: str, match_count: int = 10) -> List[EventSearchHit]:
        text = (query or "").strip()
        if not text:
            raise ValidationError("Search query is required")
        rows = self.gateway.rpc("search_events_semantically", {"query_text": text, "match_count": match_count}) or []
        hits = []
        for row in rows:
            similarity = float(row.pop("similarity", 0.0) or 0.0)
            if row.get("deleted_at"):
                continue
            hits.append(EventSearchHit(event=CommunityEvent(**row), similarity=similarity))
        return hits


event_service = EventService(default_gateway, community_directory, rsvp_coordinator)
