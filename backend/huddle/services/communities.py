import logging
import re
import secrets
import string
from datetime import datetime, timezone
from typing import List, Optional

from huddle.auth import Session
from huddle.gateway.base import DataGateway, eq, in_, is_null
from huddle.gateway.provider import gateway as default_gateway
from huddle.models import Community, CommunityCreateRequest, CommunityMember
from huddle.services.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError

logger = logging.getLogger(__name__)

COMMUNITY_IMAGE_BUCKET = "community-images"
MANAGER_ROLES = {"admin", "co-admin"}
ALLOWED_IMAGE_EXTENSIONS = {"png", "jpg", "jpeg", "gif", "webp"}
_SLUG_ALPHABET = string.ascii_lowercase + string.digits


def generate_slug(text: str) -> str:
    slug = re.sub(r"[^\w\s-]", "", text.lower())
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"-+", "-", slug)
    return slug.strip().strip("-")


class CommunityDirectory:
    def __init__(self, gateway: DataGateway) -> None:
        self.gateway = gateway

    def get_community(self, community_id: str) -> Community:
        row = self.gateway.select_one("communities", [eq("id", community_id), is_null("deleted_at")])
        if not row:
            raise NotFoundError("Community not found")
        return Community(**row)

    def list_communities(self, search: Optional[str] = None, limit: int = 50) -> List[Community]:
        rows = self.gateway.select(
            "communities",
            filters=[eq("is_active", True), is_null("deleted_at")],
            order_by="created_at",
            descending=True,
        ).rows
        if search and search.strip():
            needle = search.strip().lower()
            rows = [
                row
                for row in rows
                if needle in (row.get("name") or "").lower() or needle in (row.get("description") or "").lower()
            ]
        rows = rows[: max(1, min(limit, 200))]
        counts = self._member_counts([row["id"] for row in rows])
        return [Community(**row, member_count=counts.get(row["id"], 0)) for row in rows]

    def _member_counts(self, community_ids: List[str]) -> dict:
        if not community_ids:
            return {}
        result = self.gateway.rpc("get_community_member_counts", {"community_ids": community_ids}) or []
        return {item["community_id"]: int(item["member_count"]) for item in result}

    def _unique_slug(self, name: str) -> str:
        base = generate_slug(name)
        if len(base) < 3:
            raise ValidationError("Community name must produce a slug of at least 3 characters")
        if not self.gateway.select_one("communities", [eq("slug", base)], columns="id"):
            return base
        suffix = "".join(secrets.choice(_SLUG_ALPHABET) for _ in range(6))
        return f"{base}-{suffix}"

    def create_community(self, session: Session, request: CommunityCreateRequest) -> Community:
        name = request.name.strip()
        if not name:
            raise ValidationError("Community name is required")
        slug = self._unique_slug(name)
        rows = self.gateway.insert(
            "communities",
            {
                "name": name,
                "description": request.description.strip(),
                "slug": slug,
                "image_url": request.image_url,
                "created_by": session.user_id,
                "is_active": True,
            },
        )
        community = Community(**rows[0])
        self.gateway.upsert(
            "community_members",
            {"community_id": community.id, "user_id": session.user_id, "role": "admin"},
            on_conflict=["community_id", "user_id"],
        )
        logger.info("Community %s created by %s", community.id, session.user_id)
        return community.model_copy(update={"member_count": 1})

    def get_role(self, community_id: str, user_id: str) -> Optional[str]:
        row = self.gateway.select_one(
            "community_members",
            [eq("community_id", community_id), eq("user_id", user_id)],
            columns="role",
        )
        return row["role"] if row else None

    def require_manager(self, session: Session, community_id: str) -> str:
        if session.is_platform_admin:
            return "platform_admin"
        role = self.get_role(community_id, session.user_id)
        if role not in MANAGER_ROLES:
            raise PermissionDeniedError("Only community admins and co-admins can do this")
        return role

    def require_admin(self, session: Session, community_id: str) -> str:
        if session.is_platform_admin:
            return "platform_admin"
        role = self.get_role(community_id, session.user_id)
        if role != "admin":
            raise PermissionDeniedError("Only community admins can do this")
        return role

    def join_community(self, session: Session, community_id: str) -> CommunityMember:
        self.get_community(community_id)
        # Keys only: an existing row (and its role) is left untouched.
        rows = self.gateway.upsert(
            "community_members",
            {"community_id": community_id, "user_id": session.user_id},
            on_conflict=["community_id", "user_id"],
        )
        return CommunityMember(**rows[0])

    def leave_community(self, session: Session, community_id: str) -> None:
        role = self.get_role(community_id, session.user_id)
        if role is None:
            raise NotFoundError("Not a member of this community")
        if role == "admin":
            admins = self.gateway.count("community_members", [eq("community_id", community_id), eq("role", "admin")])
            if admins <= 1:
                raise ConflictError("The last admin cannot leave the community")
        self.gateway.delete("community_members", [eq("community_id", community_id), eq("user_id", session.user_id)])

    def list_members(self, community_id: str) -> List[CommunityMember]:
        rows = self.gateway.select(
            "community_members",
            filters=[eq("community_id", community_id)],
            order_by="joined_at",
        ).rows
        return [CommunityMember(**row) for row in rows]

    def set_member_role(self, session: Session, community_id: str, user_id: str, role: str) -> CommunityMember:
        self.require_admin(session, community_id)
        if self.get_role(community_id, user_id) is None:
            raise NotFoundError("Member not found")
        rows = self.gateway.update(
            "community_members",
            {"role": role},
            [eq("community_id", community_id), eq("user_id", user_id)],
        )
        return CommunityMember(**rows[0])

    def list_managed_communities(self, session: Session) -> List[Community]:
        if session.is_platform_admin:
            return self.list_communities(limit=200)
        memberships = self.gateway.select(
            "community_members",
            columns="community_id",
            filters=[eq("user_id", session.user_id), in_("role", sorted(MANAGER_ROLES))],
        ).rows
        ids = [row["community_id"] for row in memberships]
        if not ids:
            return []
        rows = self.gateway.select(
            "communities",
            filters=[in_("id", ids), is_null("deleted_at")],
            order_by="name",
        ).rows
        counts = self._member_counts(ids)
        return [Community(**row, member_count=counts.get(row["id"], 0)) for row in rows]

    def upload_community_image(
        self,
        session: Session,
        community_id: str,
        filename: str,
        content: bytes,
        content_type: str = "application/octet-stream",
    ) -> Community:
        self.require_manager(session, community_id)
        ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
        if ext not in ALLOWED_IMAGE_EXTENSIONS:
            raise ValidationError("Unsupported image type")
        if not content:
            raise ValidationError("Image is empty")
        stamp = int(datetime.now(timezone.utc).timestamp() * 1000)
        path = f"{session.user_id}/{stamp}.{ext}"
        stored_path = self.gateway.upload_file(COMMUNITY_IMAGE_BUCKET, path, content, content_type)
        url = self.gateway.public_url(COMMUNITY_IMAGE_BUCKET, stored_path)
        rows = self.gateway.update("communities", {"image_url": url}, [eq("id", community_id)])
        if not rows:
            raise NotFoundError("Community not found")
        return Community(**rows[0])


community_directory = CommunityDirectory(default_gateway)
