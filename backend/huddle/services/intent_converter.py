"""Turns AI-classified event intents into community events.

Conversion is a short saga. The event insert is the only step that can fail
the operation. Marking the intent read and posting the announcement are
best-effort follow-ups: their failures are logged, nothing is rolled back,
and the event's ``metadata.announcement_status`` stays ``"pending"`` until
``retry_pending_announcements`` manages to post it.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional
from zoneinfo import ZoneInfo

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from huddle.auth import Session
from huddle.config import settings
from huddle.gateway.base import DataGateway, GatewayError, eq, is_null, utc_now_iso
from huddle.gateway.provider import gateway as default_gateway
from huddle.models import (
    AdminNotification,
    AnnouncementRetryResult,
    CommunityEvent,
    ConversionResult,
    EventIntent,
    IntentPayload,
)
from huddle.services.communities import CommunityDirectory, community_directory
from huddle.services.errors import ConversionError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

ANNOUNCEMENT_PENDING = "pending"
ANNOUNCEMENT_POSTED = "posted"

_payload_adapter = TypeAdapter(IntentPayload)


def _first_positive(*values: Optional[int]) -> Optional[int]:
    """First value that is at least 1. Zero or negative numbers from a classifier count as missing."""
    for value in values:
        if value is not None and value >= 1:
            return value
    return None


def parse_intent_payload(raw: Any, intent_type: Optional[str] = None) -> Any:
    data = dict(raw or {})
    if "type" not in data and intent_type:
        data["type"] = intent_type
    try:
        return _payload_adapter.validate_python(data)
    except PydanticValidationError as exc:
        raise ValidationError(f"Malformed intent payload: {exc.errors()[0].get('msg', 'invalid')}") from exc


def format_announcement(title: str, start_time: datetime, tz: ZoneInfo) -> str:
    local = start_time.astimezone(tz)
    day = f"{local.month}/{local.day}/{local.year}"
    clock = local.strftime("%I:%M %p")
    return f'📅 New event created: "{title}" on {day} at {clock}. Check the Events tab for details!'


class IntentConverter:
    def __init__(self, gateway: DataGateway, directory: CommunityDirectory, timezone_name: Optional[str] = None) -> None:
        self.gateway = gateway
        self.directory = directory
        self.tz = ZoneInfo(timezone_name or settings.timezone)

    def _to_notification(self, row: Dict[str, Any]) -> AdminNotification:
        payload = parse_intent_payload(row.get("intent_details"), row.get("intent_type"))
        return AdminNotification(**{**row, "intent_details": payload})

    def get_notification(self, notification_id: str) -> AdminNotification:
        row = self.gateway.select_one("admin_notifications", [eq("id", notification_id)])
        if not row:
            raise NotFoundError("Notification not found")
        return self._to_notification(row)

    def record_intent(
        self,
        community_id: str,
        message_id: Optional[str],
        created_by: Optional[str],
        payload: Any,
    ) -> AdminNotification:
        intent = payload if hasattr(payload, "model_dump") else parse_intent_payload(payload)
        rows = self.gateway.insert(
            "admin_notifications",
            {
                "community_id": community_id,
                "message_id": message_id,
                "intent_type": intent.type,
                "intent_details": intent.model_dump(by_alias=True, mode="json"),
                "is_read": False,
                "created_by": created_by,
            },
        )
        return self._to_notification(rows[0])

    def list_notifications(self, session: Session, community_id: str, include_read: bool = False) -> List[AdminNotification]:
        self.directory.require_manager(session, community_id)
        filters = [eq("community_id", community_id), eq("intent_type", "event")]
        if not include_read:
            filters.append(eq("is_read", False))
        rows = self.gateway.select(
            "admin_notifications",
            filters=filters,
            order_by="created_at",
            descending=True,
        ).rows
        notifications = []
        for row in rows:
            try:
                notifications.append(self._to_notification(row))
            except ValidationError:
                logger.warning("Skipping malformed intent %s", row.get("id"))
        return notifications

    def _resolve_start(self, date_text: Optional[str], time_text: Optional[str]) -> datetime:
        if not date_text or not time_text:
            raise ValidationError("Event intent is missing a date or time")
        try:
            local = datetime.fromisoformat(f"{date_text.strip()}T{time_text.strip()}")
        except ValueError as exc:
            raise ValidationError("Event intent has an unreadable date or time") from exc
        if local.tzinfo is None:
            local = local.replace(tzinfo=self.tz)
        return local.astimezone(timezone.utc)

    def resolve_event_fields(self, intent: EventIntent) -> Dict[str, Any]:
        extracted = intent.details.extracted_details
        ai = intent.details.ai_generated_details
        title = (ai.title if ai else None) or extracted.title
        if not title or not title.strip():
            raise ValidationError("Event intent has no title")
        description = (ai.description if ai else None) or extracted.description
        capacity = _first_positive(extracted.suggested_capacity, ai.recommended_capacity if ai else None)
        tags = extracted.tags or (ai.suggested_tags if ai else []) or []
        duration = _first_positive(extracted.suggested_duration, ai.recommended_duration if ai else None)
        start = self._resolve_start(extracted.date, extracted.time)
        end = start + timedelta(minutes=duration) if duration else None
        return {
            "title": title.strip(),
            "description": description,
            "start_time": start,
            "end_time": end,
            "location": extracted.location,
            "is_online": extracted.is_online,
            "meeting_url": extracted.meeting_url,
            "capacity": capacity,
            "tags": list(tags),
        }

    def _mark_read(self, notification_id: str) -> bool:
        try:
            rows = self.gateway.update(
                "admin_notifications",
                {"is_read": True, "read_at": utc_now_iso()},
                [eq("id", notification_id)],
            )
        except GatewayError:
            logger.exception("Failed to mark notification %s read", notification_id)
            return False
        return bool(rows)

    def _post_announcement(self, event: CommunityEvent, user_id: str) -> bool:
        try:
            self.gateway.insert(
                "community_posts",
                {
                    "community_id": event.community_id,
                    "user_id": user_id,
                    "content": format_announcement(event.title, event.start_time, self.tz),
                },
            )
            self.gateway.update(
                "community_events",
                {"metadata": {**event.metadata, "announcement_status": ANNOUNCEMENT_POSTED}},
                [eq("id", event.id)],
            )
        except GatewayError:
            logger.exception("Failed to post announcement for event %s", event.id)
            return False
        return True

    def create_event_from_notification(
        self,
        session: Session,
        notification: AdminNotification,
        on_created: Optional[Callable[[str], None]] = None,
    ) -> ConversionResult:
        self.directory.require_manager(session, notification.community_id)
        intent = notification.intent_details
        if not isinstance(intent, EventIntent):
            raise ValidationError("Notification is not an event intent")
        fields = self.resolve_event_fields(intent)

        try:
            rows = self.gateway.insert(
                "community_events",
                {
                    **fields,
                    "community_id": notification.community_id,
                    "created_by": session.user_id,
                    "status": "upcoming",
                    "is_recurring": False,
                    "ai_generated": True,
                    "metadata": {
                        "source_notification_id": notification.id,
                        "announcement_status": ANNOUNCEMENT_PENDING,
                    },
                },
            )
        except GatewayError as exc:
            logger.exception("Event insert failed for notification %s", notification.id)
            raise ConversionError("Failed to create event from notification") from exc
        event = CommunityEvent(**rows[0])
        logger.info("Event %s created from notification %s", event.id, notification.id)

        marked = self._mark_read(notification.id)
        posted = self._post_announcement(event, session.user_id)
        if posted:
            event = event.model_copy(update={"metadata": {**event.metadata, "announcement_status": ANNOUNCEMENT_POSTED}})
        if on_created is not None:
            on_created(event.id)
        return ConversionResult(event=event, notification_marked_read=marked, announcement_posted=posted)

    def dismiss_notification(self, session: Session, notification: AdminNotification) -> bool:
        self.directory.require_manager(session, notification.community_id)
        return self._mark_read(notification.id)

    def retry_pending_announcements(self, session: Session, community_id: str) -> AnnouncementRetryResult:
        self.directory.require_manager(session, community_id)
        rows = self.gateway.select(
            "community_events",
            filters=[eq("community_id", community_id), eq("ai_generated", True), is_null("deleted_at")],
            order_by="created_at",
        ).rows
        pending = [CommunityEvent(**row) for row in rows if (row.get("metadata") or {}).get("announcement_status") == ANNOUNCEMENT_PENDING]
        still_pending: List[str] = []
        posted = 0
        for event in pending:
            if self._post_announcement(event, event.created_by):
                posted += 1
            else:
                still_pending.append(event.id)
        return AnnouncementRetryResult(retried=len(pending), posted=posted, still_pending=still_pending)

    def apply_enhancement(self, session: Session, notification: AdminNotification, enhancer: Any) -> AdminNotification:
        self.directory.require_manager(session, notification.community_id)
        intent = notification.intent_details
        if not isinstance(intent, EventIntent):
            raise ValidationError("Notification is not an event intent")
        details = enhancer.enhance(
            intent.details.extracted_details,
            intent.details.original_message,
            community_id=notification.community_id,
        )
        if details is None:
            return notification
        updated = intent.model_copy(update={"details": intent.details.model_copy(update={"ai_generated_details": details})})
        rows = self.gateway.update(
            "admin_notifications",
            {"intent_details": updated.model_dump(by_alias=True, mode="json")},
            [eq("id", notification.id)],
        )
        if not rows:
            raise NotFoundError("Notification not found")
        return self._to_notification(rows[0])


intent_converter = IntentConverter(default_gateway, community_directory)
