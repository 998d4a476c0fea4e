from fastapi import APIRouter, Depends, HTTPException, Query

from huddle.auth import Session, require_session
from huddle.gateway.base import GatewayError
from huddle.models import DeviceTokenRegisterRequest, NotificationRecord
from huddle.routers.errors import raise_http_error
from huddle.services.notification_store import notification_store

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=list[NotificationRecord])
def list_notifications(
    unread_only: bool = Query(default=False),
    session: Session = Depends(require_session),
):
    try:
        return notification_store.list_for_user(user_id=session.user_id, unread_only=unread_only)
    except GatewayError as exc:
        raise_http_error(exc, "Failed to load notifications")


@router.post("/register-device", response_model=dict)
def register_device(
    payload: DeviceTokenRegisterRequest,
    session: Session = Depends(require_session),
):
    try:
        notification_store.register_device_token(user_id=session.user_id, device_token=payload.device_token)
    except GatewayError as exc:
        raise_http_error(exc, "Failed to register device")
    return {"status": "ok"}


@router.post("/{notification_id}/read", response_model=NotificationRecord)
def mark_notification_read(
    notification_id: str,
    session: Session = Depends(require_session),
):
    try:
        updated = notification_store.mark_read(user_id=session.user_id, notification_id=notification_id)
    except GatewayError as exc:
        raise_http_error(exc, "Failed to update notification")
    if not updated:
        raise HTTPException(status_code=404, detail="Notification not found")
    return updated
