import logging
from typing import List, Optional

from huddle.gateway.base import DataGateway, GatewayError, eq, in_
from huddle.gateway.provider import gateway as default_gateway
from huddle.models import NotificationRecord
from huddle.services.push_sender import PushSender, push_sender

logger = logging.getLogger(__name__)


class NotificationStore:
    def __init__(self, gateway: DataGateway, sender: PushSender) -> None:
        self.gateway = gateway
        self.sender = sender

    def register_device_token(self, user_id: str, device_token: str) -> None:
        token = device_token.strip()
        if not token:
            return
        self.gateway.upsert(
            "device_tokens",
            {"user_id": user_id, "device_token": token},
            on_conflict=["user_id", "device_token"],
        )

    def _device_tokens(self, user_id: str) -> List[str]:
        rows = self.gateway.select("device_tokens", columns="device_token", filters=[eq("user_id", user_id)]).rows
        return [row["device_token"] for row in rows]

    def create(
        self,
        user_id: str,
        title: str,
        body: str,
        category: str = "system",
        deep_link: Optional[str] = None,
    ) -> NotificationRecord:
        rows = self.gateway.insert(
            "user_notifications",
            {
                "user_id": user_id,
                "title": title,
                "body": body,
                "category": category,
                "is_read": False,
                "deep_link": deep_link,
            },
        )
        record = NotificationRecord(**rows[0])
        tokens = self._device_tokens(user_id)
        outcome = self.sender.send(
            tokens=tokens,
            title=title,
            body=body,
            data={
                "notification_id": record.id,
                "category": category,
                "deep_link": deep_link or "",
            },
        )
        if outcome.stale_tokens:
            self.gateway.delete("device_tokens", [eq("user_id", user_id), in_("device_token", outcome.stale_tokens)])
        return record

    def notify_quietly(self, user_id: str, title: str, body: str, category: str = "system", deep_link: Optional[str] = None) -> None:
        """Best-effort variant for side notifications of another write."""
        try:
            self.create(user_id=user_id, title=title, body=body, category=category, deep_link=deep_link)
        except GatewayError:
            logger.exception("Failed to notify %s", user_id)

    def list_for_user(self, user_id: str, unread_only: bool = False) -> List[NotificationRecord]:
        filters = [eq("user_id", user_id)]
        if unread_only:
            filters.append(eq("is_read", False))
        rows = self.gateway.select(
            "user_notifications",
            filters=filters,
            order_by="created_at",
            descending=True,
            limit=100,
        ).rows
        return [NotificationRecord(**row) for row in rows]

    def mark_read(self, user_id: str, notification_id: str) -> Optional[NotificationRecord]:
        rows = self.gateway.update(
            "user_notifications",
            {"is_read": True},
            [eq("id", notification_id), eq("user_id", user_id)],
        )
        return NotificationRecord(**rows[0]) if rows else None


notification_store = NotificationStore(default_gateway, push_sender)
