import os
import sys
from datetime import datetime, timedelta, timezone

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from huddle.auth import Session
from huddle.services.communities import CommunityDirectory
from huddle.services.dashboards import DashboardService, classify_sentiment, window_start
from huddle.services.errors import PermissionDeniedError, ValidationError

NOW = datetime(2030, 3, 31, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def dashboards(gateway):
    return DashboardService(gateway, CommunityDirectory(gateway), timezone_name="UTC")


def _post(gateway, community_id, user_id, content, created_at):
    gateway.insert(
        "community_posts",
        {"community_id": community_id, "user_id": user_id, "content": content, "created_at": created_at},
    )


def test_window_start_uses_calendar_month():
    assert window_start("month", NOW) == datetime(2030, 2, 28, 12, 0, tzinfo=timezone.utc)
    assert window_start("7d", NOW) == NOW - timedelta(days=7)
    assert window_start("24h", NOW) == NOW - timedelta(hours=24)
    with pytest.raises(ValidationError):
        window_start("fortnight", NOW)


def test_classify_sentiment():
    assert classify_sentiment("I love this, so excited!") == "positive"
    assert classify_sentiment("So tired and frustrated today") == "negative"
    assert classify_sentiment("Meeting at the track") == "neutral"
    assert classify_sentiment("great run but hard hills") == "neutral"


def test_event_overview_counts_and_is_idempotent(dashboards, gateway, seed_community, admin_session):
    community_id = seed_community()
    other_id = seed_community()
    upcoming = gateway.insert("community_events", {"community_id": community_id, "created_by": "admin_1", "title": "Next", "start_time": NOW + timedelta(days=2), "capacity": 10})[0]
    gateway.insert("community_events", {"community_id": community_id, "created_by": "admin_1", "title": "Last", "start_time": NOW - timedelta(days=2)})
    gateway.insert("community_events", {"community_id": community_id, "created_by": "admin_1", "title": "Gone", "start_time": NOW + timedelta(days=1), "deleted_at": NOW})
    gateway.insert("community_events", {"community_id": other_id, "created_by": "admin_1", "title": "Elsewhere", "start_time": NOW + timedelta(days=1)})
    for user_id, status in (("u1", "going"), ("u2", "going"), ("u3", "maybe")):
        gateway.insert("event_rsvps", {"event_id": upcoming["id"], "user_id": user_id, "status": status})

    first = dashboards.event_overview(admin_session, community_id, now=NOW)
    second = dashboards.event_overview(admin_session, community_id, now=NOW)

    assert first == second
    assert first.total_events == 2
    assert first.upcoming_events == 1
    assert first.past_events == 1
    assert first.total_attendees == 2
    assert [(item.title, item.rsvp_count, item.capacity) for item in first.upcoming] == [("Next", 2, 10)]


def test_all_community_scope_requires_platform_admin(dashboards, seed_community, admin_session, member_session, platform_session):
    community_id = seed_community()
    with pytest.raises(PermissionDeniedError):
        dashboards.event_overview(admin_session, None, now=NOW)
    with pytest.raises(PermissionDeniedError):
        dashboards.rsvp_breakdown(member_session, community_id, now=NOW)

    overview = dashboards.event_overview(platform_session, None, now=NOW)
    assert overview.total_events == 0
    # Platform admins may also look at a single community they do not belong to.
    assert dashboards.rsvp_breakdown(platform_session, community_id, now=NOW).total == 0


def test_rsvp_breakdown_respects_window(dashboards, gateway, seed_community, admin_session):
    community_id = seed_community()
    event = gateway.insert("community_events", {"community_id": community_id, "created_by": "admin_1", "title": "Run", "start_time": NOW + timedelta(days=1)})[0]
    gateway.insert("event_rsvps", {"event_id": event["id"], "user_id": "u1", "status": "going", "created_at": NOW - timedelta(days=1)})
    gateway.insert("event_rsvps", {"event_id": event["id"], "user_id": "u2", "status": "maybe", "created_at": NOW - timedelta(days=3)})
    gateway.insert("event_rsvps", {"event_id": event["id"], "user_id": "u3", "status": "not_going", "created_at": NOW - timedelta(days=20)})

    week = dashboards.rsvp_breakdown(admin_session, community_id, "7d", now=NOW)
    assert (week.going, week.maybe, week.not_going, week.total) == (1, 1, 0, 2)

    month = dashboards.rsvp_breakdown(admin_session, community_id, "month", now=NOW)
    assert month.total == 3

    empty = dashboards.rsvp_breakdown(admin_session, seed_community(), "7d", now=NOW)
    assert empty.total == 0


def test_ai_operation_stats_success_rate(dashboards, gateway, seed_community, admin_session):
    community_id = seed_community()
    rows = [
        ("event_enhancement", "success"),
        ("event_enhancement", "success"),
        ("event_enhancement", "error"),
        ("intent_classification", "success"),
    ]
    for operation, status in rows:
        gateway.insert(
            "ai_generation_logs",
            {"community_id": community_id, "operation_type": operation, "status": status, "created_at": NOW - timedelta(hours=2)},
        )
    gateway.insert(
        "ai_generation_logs",
        {"community_id": community_id, "operation_type": "event_enhancement", "status": "error", "created_at": NOW - timedelta(days=60)},
    )

    stats = dashboards.ai_operation_stats(admin_session, community_id, "30d", now=NOW)
    assert stats.total_operations == 4
    assert stats.success_rate == 75.0
    by_op = {item.operation_type: item for item in stats.by_operation}
    assert by_op["event_enhancement"].success_rate == 66.7
    assert by_op["intent_classification"].success_rate == 100.0

    empty = dashboards.ai_operation_stats(admin_session, seed_community(), "30d", now=NOW)
    assert empty.total_operations == 0
    assert empty.success_rate == 0.0


def test_chat_analytics(dashboards, gateway, seed_community, admin_session):
    community_id = seed_community()
    base = datetime(2030, 3, 30, 0, 0, tzinfo=timezone.utc)
    _post(gateway, community_id, "u1", "Great workout today, love it", base + timedelta(hours=7))
    _post(gateway, community_id, "u2", "So tired after the workout", base + timedelta(hours=7, minutes=30))
    _post(gateway, community_id, "u1", "Any nutrition tips?", base + timedelta(hours=19))
    _post(gateway, community_id, "u3", "old news", base - timedelta(days=30))

    analytics = dashboards.chat_analytics(admin_session, community_id, "week", now=NOW)

    assert analytics.message_count == 3
    assert analytics.active_users == 2
    assert analytics.messages_by_hour[7] == 2
    assert analytics.messages_by_hour[19] == 1
    assert sum(analytics.messages_by_hour) == 3
    assert [(topic.topic, topic.count) for topic in analytics.top_topics] == [("workout", 2), ("nutrition", 1)]
    assert (analytics.sentiment.positive, analytics.sentiment.neutral, analytics.sentiment.negative) == (1, 1, 1)


def test_chat_analytics_buckets_by_local_hour(gateway, seed_community, admin_session):
    dashboards = DashboardService(gateway, CommunityDirectory(gateway), timezone_name="America/New_York")
    community_id = seed_community()
    _post(gateway, community_id, "u1", "hello", datetime(2030, 3, 30, 14, 0, tzinfo=timezone.utc))

    analytics = dashboards.chat_analytics(admin_session, community_id, "week", now=NOW)
    assert analytics.messages_by_hour[10] == 1


def test_moderation_summary(dashboards, gateway, seed_community, admin_session):
    community_id = seed_community()
    for idx, (content_type, status) in enumerate((("post", "pending"), ("post", "resolved"), ("comment", "pending"))):
        gateway.insert(
            "content_moderation_flags",
            {
                "community_id": community_id,
                "content_type": content_type,
                "content_id": f"c{idx}",
                "reason": "spam",
                "status": status,
                "created_at": NOW - timedelta(hours=idx + 1),
            },
        )

    summary = dashboards.moderation_summary(admin_session, community_id, "week", now=NOW)
    assert summary.total_flags == 3
    assert summary.by_status == {"pending": 2, "resolved": 1}
    assert summary.by_content_type == {"post": 2, "comment": 1}
    assert [flag.content_id for flag in summary.recent] == ["c0", "c1", "c2"]


def test_trending_topics_top_five_in_keyword_order_on_ties(dashboards, gateway, seed_community):
    community_id = seed_community()
    texts = [
        "yoga and running",
        "running and sleep",
        "strength, recovery, stress",
        "goals and motivation",
        "nutrition talk",
        "workout plans",
    ]
    for idx, text in enumerate(texts):
        _post(gateway, community_id, "u1", text, NOW - timedelta(minutes=idx))

    topics = dashboards.trending_topics(community_id)
    assert topics[0].topic == "running"
    assert topics[0].count == 2
    assert [topic.topic for topic in topics[1:]] == ["workout", "nutrition", "yoga", "strength"]

    assert dashboards.trending_topics(seed_community()) == []
