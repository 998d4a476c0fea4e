from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query

from huddle.auth import Session, optional_session, require_session
from huddle.gateway.base import GatewayError
from huddle.models import (
    CommunityEvent,
    EventCreateRequest,
    EventRsvp,
    EventSearchHit,
    EventUpdateRequest,
    EventView,
    MyEvents,
    RsvpRequest,
    RsvpResult,
)
from huddle.routers.errors import raise_http_error
from huddle.services.errors import HuddleError
from huddle.services.event_service import event_service
from huddle.services.notification_store import notification_store
from huddle.services.rsvp_coordinator import rsvp_coordinator

router = APIRouter(prefix="/events", tags=["events"])


@router.post("", response_model=CommunityEvent)
def create_event(request: EventCreateRequest, session: Session = Depends(require_session)):
    try:
        return event_service.create_event(session, request)
    except (HuddleError, GatewayError) as exc:
        raise_http_error(exc, "Failed to create event")


@router.get("/mine", response_model=MyEvents)
def my_events(session: Session = Depends(require_session)):
    try:
        return event_service.my_events(session)
    except (HuddleError, GatewayError) as exc:
        raise_http_error(exc, "Failed to load events")


@router.get("/search", response_model=list[EventSearchHit])
def search_events(q: str = Query(..., min_length=1), limit: int = Query(default=10, ge=1, le=50)):
    try:
        return event_service.search_events(q, match_count=limit)
    except (HuddleError, GatewayError) as exc:
        raise_http_error(exc, "Failed to search events")


@router.get("/{event_id}", response_model=EventView)
def get_event(event_id: str, session: Optional[Session] = Depends(optional_session)):
    try:
        return event_service.get_event_view(session, event_id)
    except (HuddleError, GatewayError) as exc:
        raise_http_error(exc, "Failed to load event")


@router.patch("/{event_id}", response_model=CommunityEvent)
def update_event(event_id: str, request: EventUpdateRequest, session: Session = Depends(require_session)):
    try:
        return event_service.update_event(session, event_id, request)
    except (HuddleError, GatewayError) as exc:
        raise_http_error(exc, "Failed to update event")


@router.delete("/{event_id}", response_model=CommunityEvent)
def soft_delete_event(event_id: str, session: Session = Depends(require_session)):
    try:
        return event_service.soft_delete_event(session, event_id)
    except (HuddleError, GatewayError) as exc:
        raise_http_error(exc, "Failed to delete event")


@router.post("/{event_id}/restore", response_model=CommunityEvent)
def restore_event(event_id: str, session: Session = Depends(require_session)):
    try:
        return event_service.restore_event(session, event_id)
    except (HuddleError, GatewayError) as exc:
        raise_http_error(exc, "Failed to restore event")


@router.post("/{event_id}/rsvp", response_model=RsvpResult)
def submit_rsvp(event_id: str, request: RsvpRequest, session: Session = Depends(require_session)):
    try:
        event = event_service.get_event(event_id)
        result = rsvp_coordinator.submit_rsvp(session, event, request.status)
    except (HuddleError, GatewayError) as exc:
        raise_http_error(exc, "Failed to update RSVP")
    if request.status == "going" and event.created_by != session.user_id:
        notification_store.notify_quietly(
            user_id=event.created_by,
            title="New RSVP",
            body=f"{session.user_id} is going to {event.title}",
            category="event",
            deep_link=f"huddle://events/{event.id}",
        )
    return result


@router.get("/{event_id}/rsvp/me", response_model=Optional[EventRsvp])
def my_rsvp(event_id: str, session: Session = Depends(require_session)):
    try:
        return rsvp_coordinator.get_user_rsvp(event_id, session.user_id)
    except GatewayError as exc:
        raise_http_error(exc, "Failed to load RSVP")


@router.get("/{event_id}/attendance", response_model=dict)
def attendance(event_id: str):
    try:
        return {"event_id": event_id, "attendee_count": rsvp_coordinator.fetch_attendance_count(event_id)}
    except GatewayError as exc:
        raise_http_error(exc, "Failed to load attendance")


@router.get("/{event_id}/attendees", response_model=list[EventRsvp])
def list_attendees(event_id: str, session: Session = Depends(require_session)):
    try:
        event = event_service.get_event(event_id)
        if event.created_by != session.user_id:
            event_service.directory.require_manager(session, event.community_id)
        return rsvp_coordinator.list_attendees(event_id)
    except (HuddleError, GatewayError) as exc:
        raise_http_error(exc, "Failed to load attendees")


@router.get("/{event_id}/occurrences", response_model=list[datetime])
def occurrences(event_id: str, count: int = Query(default=10, ge=1, le=100)):
    try:
        return event_service.occurrences(event_id, count=count)
    except (HuddleError, GatewayError) as exc:
        raise_http_error(exc, "Failed to expand recurrence")
