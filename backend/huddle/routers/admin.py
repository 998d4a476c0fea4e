from typing import Optional

from fastapi import APIRouter, Depends, Query

from huddle.auth import Session, require_session
from huddle.gateway.base import GatewayError
from huddle.models import (
    AdminNotification,
    AiOperationStats,
    AnnouncementRetryResult,
    ChatAnalytics,
    ConversionResult,
    EventOverview,
    EventValidationResult,
    ExtractedEventDetails,
    IntentRecordRequest,
    ModerationSummary,
    RsvpBreakdown,
    TimeRange,
)
from huddle.routers.errors import raise_http_error
from huddle.services.communities import community_directory
from huddle.services.dashboards import dashboard_service
from huddle.services.errors import HuddleError
from huddle.services.event_enhancer import event_enhancer, validate_event_details
from huddle.services.event_service import event_service
from huddle.services.intent_converter import intent_converter

router = APIRouter(prefix="/admin", tags=["admin"])


def _load_managed_notification(session: Session, notification_id: str) -> AdminNotification:
    notification = intent_converter.get_notification(notification_id)
    community_directory.require_manager(session, notification.community_id)
    return notification


@router.delete("/events/{event_id}", response_model=dict)
def hard_delete_event(event_id: str, session: Session = Depends(require_session)):
    try:
        event_service.hard_delete_event(session, event_id)
    except (HuddleError, GatewayError) as exc:
        raise_http_error(exc, "Failed to delete event")
    return {"status": "deleted", "event_id": event_id}


@router.get("/communities/{community_id}/intents", response_model=list[AdminNotification])
def list_intents(
    community_id: str,
    include_read: bool = Query(default=False),
    session: Session = Depends(require_session),
):
    try:
        return intent_converter.list_notifications(session, community_id, include_read=include_read)
    except (HuddleError, GatewayError) as exc:
        raise_http_error(exc, "Failed to load notifications")


@router.post("/intents", response_model=AdminNotification)
def record_intent(request: IntentRecordRequest, session: Session = Depends(require_session)):
    try:
        community_directory.require_manager(session, request.community_id)
        return intent_converter.record_intent(
            community_id=request.community_id,
            message_id=request.message_id,
            created_by=session.user_id,
            payload=request.payload,
        )
    except (HuddleError, GatewayError) as exc:
        raise_http_error(exc, "Failed to record intent")


@router.post("/intents/validate", response_model=EventValidationResult)
def validate_intent_details(details: ExtractedEventDetails, session: Session = Depends(require_session)):
    return validate_event_details(details)


@router.get("/intents/{notification_id}", response_model=AdminNotification)
def get_intent(notification_id: str, session: Session = Depends(require_session)):
    try:
        return _load_managed_notification(session, notification_id)
    except (HuddleError, GatewayError) as exc:
        raise_http_error(exc, "Failed to load notification")


@router.post("/intents/{notification_id}/convert", response_model=ConversionResult)
def convert_intent(notification_id: str, session: Session = Depends(require_session)):
    try:
        notification = _load_managed_notification(session, notification_id)
        return intent_converter.create_event_from_notification(session, notification)
    except (HuddleError, GatewayError) as exc:
        raise_http_error(exc, "Failed to create event")


@router.post("/intents/{notification_id}/dismiss", response_model=dict)
def dismiss_intent(notification_id: str, session: Session = Depends(require_session)):
    try:
        notification = _load_managed_notification(session, notification_id)
        marked = intent_converter.dismiss_notification(session, notification)
    except (HuddleError, GatewayError) as exc:
        raise_http_error(exc, "Failed to dismiss notification")
    return {"status": "dismissed" if marked else "unchanged", "notification_id": notification_id}


@router.post("/intents/{notification_id}/enhance", response_model=AdminNotification)
def enhance_intent(notification_id: str, session: Session = Depends(require_session)):
    try:
        notification = _load_managed_notification(session, notification_id)
        return intent_converter.apply_enhancement(session, notification, event_enhancer)
    except (HuddleError, GatewayError) as exc:
        raise_http_error(exc, "Failed to enhance notification")


@router.post("/communities/{community_id}/announcements/retry", response_model=AnnouncementRetryResult)
def retry_announcements(community_id: str, session: Session = Depends(require_session)):
    try:
        return intent_converter.retry_pending_announcements(session, community_id)
    except (HuddleError, GatewayError) as exc:
        raise_http_error(exc, "Failed to retry announcements")


@router.get("/dashboards/events", response_model=EventOverview)
def events_dashboard(
    community_id: Optional[str] = Query(default=None),
    session: Session = Depends(require_session),
):
    try:
        return dashboard_service.event_overview(session, community_id)
    except (HuddleError, GatewayError) as exc:
        raise_http_error(exc, "Failed to load events")


@router.get("/dashboards/rsvps", response_model=RsvpBreakdown)
def rsvps_dashboard(
    community_id: Optional[str] = Query(default=None),
    time_range: TimeRange = Query(default="30d"),
    session: Session = Depends(require_session),
):
    try:
        return dashboard_service.rsvp_breakdown(session, community_id, time_range)
    except (HuddleError, GatewayError) as exc:
        raise_http_error(exc, "Failed to load RSVPs")


@router.get("/dashboards/ai", response_model=AiOperationStats)
def ai_dashboard(
    community_id: Optional[str] = Query(default=None),
    time_range: TimeRange = Query(default="30d"),
    session: Session = Depends(require_session),
):
    try:
        return dashboard_service.ai_operation_stats(session, community_id, time_range)
    except (HuddleError, GatewayError) as exc:
        raise_http_error(exc, "Failed to load AI statistics")


@router.get("/dashboards/chat", response_model=ChatAnalytics)
def chat_dashboard(
    community_id: Optional[str] = Query(default=None),
    time_range: TimeRange = Query(default="week"),
    session: Session = Depends(require_session),
):
    try:
        return dashboard_service.chat_analytics(session, community_id, time_range)
    except (HuddleError, GatewayError) as exc:
        raise_http_error(exc, "Failed to load chat analytics")


@router.get("/dashboards/moderation", response_model=ModerationSummary)
def moderation_dashboard(
    community_id: Optional[str] = Query(default=None),
    time_range: TimeRange = Query(default="week"),
    session: Session = Depends(require_session),
):
    try:
        return dashboard_service.moderation_summary(session, community_id, time_range)
    except (HuddleError, GatewayError) as exc:
        raise_http_error(exc, "Failed to load moderation summary")
