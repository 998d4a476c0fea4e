import logging
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence
from zoneinfo import ZoneInfo

from dateutil.relativedelta import relativedelta

from huddle.auth import Session
from huddle.config import settings
from huddle.gateway.base import DataGateway, Filter, eq, gte, in_, is_null, lt, parse_timestamp
from huddle.gateway.provider import gateway as default_gateway
from huddle.models import (
    AiOperationStats,
    ChatAnalytics,
    EventOverview,
    ModerationFlag,
    ModerationSummary,
    OperationStats,
    RsvpBreakdown,
    SentimentSplit,
    TopicCount,
    UpcomingEventSummary,
)
from huddle.services.communities import CommunityDirectory, community_directory
from huddle.services.errors import PermissionDeniedError, ValidationError

logger = logging.getLogger(__name__)

TOPIC_KEYWORDS = ["workout", "exercise", "nutrition", "motivation", "postpartum", "baby", "time", "energy"]
TRENDING_KEYWORDS = [
    "workout",
    "nutrition",
    "yoga",
    "running",
    "strength",
    "motivation",
    "recovery",
    "sleep",
    "stress",
    "goals",
]
POSITIVE_WORDS = ["great", "amazing", "love", "excited", "happy", "awesome"]
NEGATIVE_WORDS = ["tired", "frustrated", "difficult", "hard", "struggle"]

_WINDOWS = {
    "24h": timedelta(hours=24),
    "day": timedelta(days=1),
    "7d": timedelta(days=7),
    "week": timedelta(days=7),
    "30d": timedelta(days=30),
    "90d": timedelta(days=90),
    "month": relativedelta(months=1),
}


def window_start(time_range: str, now: datetime):
    window = _WINDOWS.get(time_range)
    if window is None:
        raise ValidationError(f"Unsupported time range: {time_range}")
    return now - window


def _rate(success: int, total: int) -> float:
    return round(success / total * 100, 1) if total else 0.0


def _tally_keywords(texts: Sequence[str], keywords: Sequence[str], top: int = 5) -> List[TopicCount]:
    counts: Counter = Counter()
    for text in texts:
        lowered = (text or "").lower()
        for keyword in keywords:
            if keyword in lowered:
                counts[keyword] += 1
    # Stable on ties: keyword list order.
    ranked = sorted((k for k in keywords if counts[k]), key=lambda k: -counts[k])
    return [TopicCount(topic=k, count=counts[k]) for k in ranked[:top]]


def classify_sentiment(text: str) -> str:
    lowered = (text or "").lower()
    positive = sum(1 for word in POSITIVE_WORDS if word in lowered)
    negative = sum(1 for word in NEGATIVE_WORDS if word in lowered)
    if positive > negative:
        return "positive"
    if negative > positive:
        return "negative"
    return "neutral"


class DashboardService:
    def __init__(self, gateway: DataGateway, directory: CommunityDirectory, timezone_name: Optional[str] = None) -> None:
        self.gateway = gateway
        self.directory = directory
        self.tz = ZoneInfo(timezone_name or settings.timezone)

    def _authorize(self, session: Session, community_id: Optional[str]) -> None:
        if community_id is None:
            if not session.is_platform_admin:
                raise PermissionDeniedError("Only platform admins can view all communities")
            return
        self.directory.require_manager(session, community_id)

    @staticmethod
    def _scope(community_id: Optional[str]) -> List[Filter]:
        return [eq("community_id", community_id)] if community_id else []

    @staticmethod
    def _now(now: Optional[datetime]) -> datetime:
        current = now or datetime.now(timezone.utc)
        return current if current.tzinfo else current.replace(tzinfo=timezone.utc)

    def _event_ids(self, community_id: Optional[str]) -> List[str]:
        rows = self.gateway.select(
            "community_events",
            columns="id",
            filters=self._scope(community_id) + [is_null("deleted_at")],
        ).rows
        return [row["id"] for row in rows]

    def event_overview(self, session: Session, community_id: Optional[str], now: Optional[datetime] = None) -> EventOverview:
        self._authorize(session, community_id)
        current = self._now(now)
        live = self._scope(community_id) + [is_null("deleted_at")]
        total = self.gateway.count("community_events", live)
        upcoming_count = self.gateway.count("community_events", live + [gte("start_time", current)])
        past = self.gateway.count("community_events", live + [lt("start_time", current)])

        event_ids = self._event_ids(community_id)
        total_attendees = 0
        if event_ids:
            total_attendees = self.gateway.count("event_rsvps", [in_("event_id", event_ids), eq("status", "going")])

        next_rows = self.gateway.select(
            "community_events",
            columns="id,title,start_time,capacity",
            filters=live + [gte("start_time", current)],
            order_by="start_time",
            limit=5,
        ).rows
        going: Dict[str, int] = {}
        if next_rows:
            rsvps = self.gateway.select(
                "event_rsvps",
                columns="event_id",
                filters=[in_("event_id", [row["id"] for row in next_rows]), eq("status", "going")],
            ).rows
            going = dict(Counter(row["event_id"] for row in rsvps))
        upcoming = [UpcomingEventSummary(**row, rsvp_count=going.get(row["id"], 0)) for row in next_rows]
        return EventOverview(
            total_events=total,
            upcoming_events=upcoming_count,
            past_events=past,
            total_attendees=total_attendees,
            upcoming=upcoming,
        )

    def rsvp_breakdown(
        self,
        session: Session,
        community_id: Optional[str],
        time_range: str = "30d",
        now: Optional[datetime] = None,
    ) -> RsvpBreakdown:
        self._authorize(session, community_id)
        since = window_start(time_range, self._now(now))
        filters: List[Filter] = [gte("created_at", since)]
        if community_id:
            event_ids = self._event_ids(community_id)
            if not event_ids:
                return RsvpBreakdown(time_range=time_range)  # type: ignore[arg-type]
            filters.append(in_("event_id", event_ids))
        rows = self.gateway.select("event_rsvps", columns="status", filters=filters).rows
        counts = Counter(row["status"] for row in rows)
        return RsvpBreakdown(
            time_range=time_range,  # type: ignore[arg-type]
            going=counts.get("going", 0),
            maybe=counts.get("maybe", 0),
            not_going=counts.get("not_going", 0),
            total=len(rows),
        )

    def ai_operation_stats(
        self,
        session: Session,
        community_id: Optional[str],
        time_range: str = "30d",
        now: Optional[datetime] = None,
    ) -> AiOperationStats:
        self._authorize(session, community_id)
        since = window_start(time_range, self._now(now))
        rows = self.gateway.select(
            "ai_generation_logs",
            columns="operation_type,status",
            filters=self._scope(community_id) + [gte("created_at", since)],
        ).rows
        totals: Counter = Counter()
        successes: Counter = Counter()
        for row in rows:
            totals[row["operation_type"]] += 1
            if row["status"] == "success":
                successes[row["operation_type"]] += 1
        by_operation = [
            OperationStats(
                operation_type=op,
                total=totals[op],
                success=successes[op],
                success_rate=_rate(successes[op], totals[op]),
            )
            for op in sorted(totals)
        ]
        return AiOperationStats(
            time_range=time_range,  # type: ignore[arg-type]
            total_operations=len(rows),
            success_rate=_rate(sum(successes.values()), len(rows)),
            by_operation=by_operation,
        )

    def chat_analytics(
        self,
        session: Session,
        community_id: Optional[str],
        time_range: str = "week",
        now: Optional[datetime] = None,
    ) -> ChatAnalytics:
        self._authorize(session, community_id)
        since = window_start(time_range, self._now(now))
        rows = self.gateway.select(
            "community_posts",
            columns="user_id,content,created_at",
            filters=self._scope(community_id) + [gte("created_at", since)],
        ).rows
        by_hour = [0] * 24
        sentiment: Counter = Counter()
        for row in rows:
            created = parse_timestamp(row["created_at"])
            if created is not None:
                by_hour[created.astimezone(self.tz).hour] += 1
            sentiment[classify_sentiment(row["content"])] += 1
        return ChatAnalytics(
            time_range=time_range,  # type: ignore[arg-type]
            message_count=len(rows),
            active_users=len({row["user_id"] for row in rows}),
            top_topics=_tally_keywords([row["content"] for row in rows], TOPIC_KEYWORDS),
            messages_by_hour=by_hour,
            sentiment=SentimentSplit(
                positive=sentiment["positive"],
                neutral=sentiment["neutral"],
                negative=sentiment["negative"],
            ),
        )

    def moderation_summary(
        self,
        session: Session,
        community_id: Optional[str],
        time_range: str = "week",
        now: Optional[datetime] = None,
    ) -> ModerationSummary:
        self._authorize(session, community_id)
        since = window_start(time_range, self._now(now))
        rows = self.gateway.select(
            "content_moderation_flags",
            filters=self._scope(community_id) + [gte("created_at", since)],
            order_by="created_at",
            descending=True,
        ).rows
        return ModerationSummary(
            time_range=time_range,  # type: ignore[arg-type]
            total_flags=len(rows),
            by_status=dict(Counter(row["status"] for row in rows)),
            by_content_type=dict(Counter(row["content_type"] for row in rows)),
            recent=[ModerationFlag(**row) for row in rows[:5]],
        )

    def trending_topics(self, community_id: str, sample_size: int = 20) -> List[TopicCount]:
        rows = self.gateway.select(
            "community_posts",
            columns="content",
            filters=[eq("community_id", community_id)],
            order_by="created_at",
            descending=True,
            limit=max(1, min(sample_size, 200)),
        ).rows
        return _tally_keywords([row["content"] for row in rows], TRENDING_KEYWORDS)


dashboard_service = DashboardService(default_gateway, community_directory)
