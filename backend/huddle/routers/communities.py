from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from starlette.concurrency import run_in_threadpool

from huddle.auth import Session, optional_session, require_session
from huddle.gateway.base import GatewayError
from huddle.models import (
    Community,
    CommunityCreateRequest,
    CommunityMember,
    EventView,
    MemberRoleUpdateRequest,
    TopicCount,
)
from huddle.routers.errors import raise_http_error
from huddle.services.communities import community_directory
from huddle.services.dashboards import dashboard_service
from huddle.services.errors import HuddleError
from huddle.services.event_service import event_service

router = APIRouter(prefix="/communities", tags=["communities"])

MAX_IMAGE_BYTES = 5 * 1024 * 1024


@router.get("", response_model=list[Community])
def list_communities(
    search: Optional[str] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
):
    try:
        return community_directory.list_communities(search=search, limit=limit)
    except (HuddleError, GatewayError) as exc:
        raise_http_error(exc, "Failed to load communities")


@router.post("", response_model=Community)
def create_community(request: CommunityCreateRequest, session: Session = Depends(require_session)):
    try:
        return community_directory.create_community(session, request)
    except (HuddleError, GatewayError) as exc:
        raise_http_error(exc, "Failed to create community")


@router.get("/managed", response_model=list[Community])
def list_managed_communities(session: Session = Depends(require_session)):
    try:
        return community_directory.list_managed_communities(session)
    except (HuddleError, GatewayError) as exc:
        raise_http_error(exc, "Failed to load communities")


@router.get("/{community_id}", response_model=Community)
def get_community(community_id: str):
    try:
        return community_directory.get_community(community_id)
    except (HuddleError, GatewayError) as exc:
        raise_http_error(exc, "Failed to load community")


@router.post("/{community_id}/join", response_model=CommunityMember)
def join_community(community_id: str, session: Session = Depends(require_session)):
    try:
        return community_directory.join_community(session, community_id)
    except (HuddleError, GatewayError) as exc:
        raise_http_error(exc, "Failed to join community")


@router.post("/{community_id}/leave", response_model=dict)
def leave_community(community_id: str, session: Session = Depends(require_session)):
    try:
        community_directory.leave_community(session, community_id)
    except (HuddleError, GatewayError) as exc:
        raise_http_error(exc, "Failed to leave community")
    return {"status": "ok"}


@router.get("/{community_id}/members", response_model=list[CommunityMember])
def list_members(community_id: str, session: Session = Depends(require_session)):
    try:
        community_directory.require_manager(session, community_id)
        return community_directory.list_members(community_id)
    except (HuddleError, GatewayError) as exc:
        raise_http_error(exc, "Failed to load members")


@router.put("/{community_id}/members/{user_id}/role", response_model=CommunityMember)
def set_member_role(
    community_id: str,
    user_id: str,
    request: MemberRoleUpdateRequest,
    session: Session = Depends(require_session),
):
    try:
        return community_directory.set_member_role(session, community_id, user_id, request.role)
    except (HuddleError, GatewayError) as exc:
        raise_http_error(exc, "Failed to update member role")


@router.post("/{community_id}/image", response_model=Community)
async def upload_community_image(
    community_id: str,
    request: Request,
    filename: str = Query(..., min_length=3),
    session: Session = Depends(require_session),
):
    content = await request.body()
    if len(content) > MAX_IMAGE_BYTES:
        raise HTTPException(status_code=413, detail="Image is larger than 5 MB")
    content_type = request.headers.get("content-type", "application/octet-stream")
    try:
        return await run_in_threadpool(
            community_directory.upload_community_image,
            session,
            community_id,
            filename,
            content,
            content_type,
        )
    except (HuddleError, GatewayError) as exc:
        raise_http_error(exc, "Failed to upload image")


@router.get("/{community_id}/events", response_model=list[EventView])
def list_community_events(
    community_id: str,
    include_past: bool = Query(default=False),
    limit: int = Query(default=50, ge=1, le=200),
    session: Optional[Session] = Depends(optional_session),
):
    try:
        return event_service.list_community_events(community_id, session=session, include_past=include_past, limit=limit)
    except (HuddleError, GatewayError) as exc:
        raise_http_error(exc, "Failed to load events")


@router.get("/{community_id}/trending-topics", response_model=list[TopicCount])
def trending_topics(community_id: str, sample_size: int = Query(default=20, ge=1, le=200)):
    try:
        return dashboard_service.trending_topics(community_id, sample_size=sample_size)
    except (HuddleError, GatewayError) as exc:
        raise_http_error(exc, "Failed to load trending topics")
