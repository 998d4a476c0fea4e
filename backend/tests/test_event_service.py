import os
import sys
from datetime import date, datetime, timedelta, timezone

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from huddle.auth import Session
from huddle.gateway.base import eq
from huddle.models import EventCreateRequest, EventUpdateRequest, RecurrenceOptions
from huddle.services.communities import CommunityDirectory
from huddle.services.errors import NotFoundError, PermissionDeniedError, ValidationError
from huddle.services.event_service import EventService, build_recurrence_rule
from huddle.services.rsvp_coordinator import RsvpCoordinator


@pytest.fixture
def service(gateway):
    return EventService(gateway, CommunityDirectory(gateway), RsvpCoordinator(gateway))


def _request(community_id, **overrides):
    values = {
        "community_id": community_id,
        "title": "  Track night  ",
        "start_time": datetime.now(timezone.utc) + timedelta(days=2),
        "capacity": 2,
        "tags": ["running"],
    }
    values.update(overrides)
    return EventCreateRequest(**values)


def test_build_recurrence_rule():
    assert build_recurrence_rule(RecurrenceOptions(frequency="weekly")) == "FREQ=WEEKLY;INTERVAL=1"
    assert (
        build_recurrence_rule(RecurrenceOptions(frequency="monthly", interval=2, until=date(2030, 12, 31)))
        == "FREQ=MONTHLY;INTERVAL=2;UNTIL=20301231T235959Z"
    )


def test_create_event_requires_manager_and_valid_fields(service, seed_community, admin_session, member_session):
    community_id = seed_community()

    event = service.create_event(admin_session, _request(community_id))
    assert event.title == "Track night"
    assert event.created_by == admin_session.user_id
    assert event.is_recurring is False

    with pytest.raises(PermissionDeniedError):
        service.create_event(member_session, _request(community_id))
    with pytest.raises(ValidationError):
        service.create_event(admin_session, _request(community_id, title="   "))
    with pytest.raises(ValidationError):
        start = datetime.now(timezone.utc) + timedelta(days=1)
        service.create_event(admin_session, _request(community_id, start_time=start, end_time=start - timedelta(hours=1)))
    with pytest.raises(ValidationError):
        service.create_event(admin_session, _request(community_id, capacity=0))
    with pytest.raises(NotFoundError):
        service.create_event(admin_session, _request("missing-community"))


def test_recurring_event_occurrences(service, seed_community, admin_session):
    community_id = seed_community()
    start = datetime(2030, 1, 7, 18, 0, tzinfo=timezone.utc)
    event = service.create_event(
        admin_session,
        _request(community_id, start_time=start, recurrence=RecurrenceOptions(frequency="weekly", interval=2, until=date(2030, 2, 20))),
    )
    assert event.is_recurring is True

    occurrences = service.occurrences(event.id, count=10)
    assert occurrences == [
        datetime(2030, 1, 7, 18, 0, tzinfo=timezone.utc),
        datetime(2030, 1, 21, 18, 0, tzinfo=timezone.utc),
        datetime(2030, 2, 4, 18, 0, tzinfo=timezone.utc),
        datetime(2030, 2, 18, 18, 0, tzinfo=timezone.utc),
    ]
    assert service.occurrences(event.id, count=2, after=datetime(2030, 1, 22, tzinfo=timezone.utc)) == occurrences[2:]


def test_single_event_has_one_occurrence(service, seed_community, seed_event):
    event = seed_event(seed_community())
    assert service.occurrences(event.id) == [event.start_time]


def test_update_event_by_creator_or_manager(service, seed_community, seed_event, admin_session):
    community_id = seed_community(members=("member_1", "member_2"))
    event = seed_event(community_id, created_by="member_1")

    updated = service.update_event(Session(user_id="member_1"), event.id, EventUpdateRequest(title="Hill repeats", capacity=5))
    assert updated.title == "Hill repeats"
    assert updated.capacity == 5

    updated = service.update_event(admin_session, event.id, EventUpdateRequest(recurrence=RecurrenceOptions(frequency="daily")))
    assert updated.recurrence_rule == "FREQ=DAILY;INTERVAL=1"
    assert updated.is_recurring is True

    with pytest.raises(PermissionDeniedError):
        service.update_event(Session(user_id="member_2"), event.id, EventUpdateRequest(title="Mine now"))
    with pytest.raises(ValidationError):
        service.update_event(admin_session, event.id, EventUpdateRequest(title=None))
    with pytest.raises(ValidationError):
        service.update_event(admin_session, event.id, EventUpdateRequest(end_time=event.start_time - timedelta(minutes=5)))


def test_soft_delete_restore_and_hard_delete(service, gateway, seed_community, seed_event, admin_session, member_session):
    community_id = seed_community()
    event = seed_event(community_id)
    service.rsvps.submit_rsvp(member_session, event, "going")

    deleted = service.soft_delete_event(admin_session, event.id)
    assert deleted.deleted_at is not None
    with pytest.raises(NotFoundError):
        service.get_event(event.id)
    assert service.my_events(admin_session).deleted[0].id == event.id

    restored = service.restore_event(admin_session, event.id)
    assert restored.deleted_at is None
    assert service.get_event(event.id).id == event.id

    with pytest.raises(PermissionDeniedError):
        service.hard_delete_event(member_session, event.id)

    service.hard_delete_event(admin_session, event.id)
    assert gateway.select_one("community_events", [eq("id", event.id)]) is None
    assert gateway.count("event_rsvps", [eq("event_id", event.id)]) == 0


def test_list_community_events_with_views(service, seed_community, seed_event, member_session):
    community_id = seed_community()
    seed_event(community_id, title="Yesterday", starts_in=timedelta(days=-1))
    full = seed_event(community_id, title="Tiny", starts_in=timedelta(days=1), capacity=1)
    open_event = seed_event(community_id, title="Open", starts_in=timedelta(days=2))
    service.rsvps.submit_rsvp(member_session, full, "going")
    service.rsvps.submit_rsvp(Session(user_id="u2"), open_event, "maybe")

    views = service.list_community_events(community_id, member_session)
    assert [view.title for view in views] == ["Tiny", "Open"]
    tiny, opened = views
    assert (tiny.rsvp_count, tiny.spots_left, tiny.is_full, tiny.my_rsvp_status) == (1, 0, True, "going")
    assert (opened.rsvp_count, opened.spots_left, opened.is_full, opened.my_rsvp_status) == (0, None, False, None)

    everything = service.list_community_events(community_id, include_past=True)
    assert [view.title for view in everything] == ["Yesterday", "Tiny", "Open"]


def test_my_events_groups(service, seed_community, seed_event, member_session):
    community_id = seed_community()
    mine = seed_event(community_id, created_by="member_1", title="Mine")
    attending = seed_event(community_id, title="Attending")
    seed_event(community_id, title="Maybe only")
    past = seed_event(community_id, title="Past", starts_in=timedelta(hours=2))
    service.rsvps.submit_rsvp(member_session, attending, "going")
    service.rsvps.submit_rsvp(member_session, past, "going")

    groups = service.my_events(member_session, now=datetime.now(timezone.utc) + timedelta(hours=3))
    assert [event.id for event in groups.owned] == [mine.id]
    assert [event.id for event in groups.participating] == [attending.id]
    assert groups.deleted == []


def test_search_events_skips_deleted(service, seed_community, seed_event):
    community_id = seed_community()
    seed_event(community_id, title="Sunrise yoga")
    seed_event(community_id, title="Yoga archive", deleted_at="2030-01-01T00:00:00+00:00")

    hits = service.search_events("yoga")
    assert [hit.event.title for hit in hits] == ["Sunrise yoga"]
    assert hits[0].similarity == 1.0

    with pytest.raises(ValidationError):
        service.search_events("   ")
