import os
import sys
from datetime import datetime, timedelta, timezone
from uuid import uuid4

from fastapi.testclient import TestClient

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from huddle.gateway.base import GatewayError
from huddle.main import app
from huddle.services.event_service import event_service

client = TestClient(app)


def _login(user_id: str) -> str:
    response = client.post("/auth/login", json={"user_id": user_id, "password": "huddle-demo"})
    assert response.status_code == 200
    return response.json()["access_token"]


def _auth(user_id: str) -> dict:
    return {"Authorization": f"Bearer {_login(user_id)}"}


def _unique(prefix: str) -> str:
    return f"{prefix}_{uuid4().hex[:8]}"


def _create_community(admin_user: str) -> str:
    response = client.post(
        "/communities",
        json={"name": f"Trail Runners {uuid4().hex[:6]}", "description": "Weekend trail runs"},
        headers=_auth(admin_user),
    )
    assert response.status_code == 200
    return response.json()["id"]


def _create_event(admin_user: str, community_id: str, **overrides) -> dict:
    body = {
        "community_id": community_id,
        "title": "Hill repeats",
        "start_time": (datetime.now(timezone.utc) + timedelta(days=2)).isoformat(),
    }
    body.update(overrides)
    response = client.post("/events", json=body, headers=_auth(admin_user))
    assert response.status_code == 200, response.text
    return response.json()


def test_health_ok():
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_ready_reports_disabled_integrations():
    response = client.get("/ready")
    assert response.status_code == 200
    payload = response.json()
    assert payload["gateway"] == "sqlite"
    assert payload["llm_configured"] is False
    assert payload["llm_mode"] == "disabled"
    assert payload["push_enabled"] is False


def test_auth_login_and_me():
    user_id = _unique("runner")
    me = client.get("/auth/me", headers=_auth(user_id))
    assert me.status_code == 200
    assert me.json() == {"user_id": user_id, "is_platform_admin": False}

    admin_me = client.get("/auth/me", headers=_auth("platform_admin"))
    assert admin_me.json()["is_platform_admin"] is True


def test_auth_rejects_bad_password_and_missing_token():
    response = client.post("/auth/login", json={"user_id": "user_2", "password": "wrong"})
    assert response.status_code == 401
    assert client.get("/auth/me").status_code == 401
    assert client.get("/auth/me", headers={"Authorization": "Bearer not.a-token"}).status_code == 401


def test_community_lifecycle():
    admin_user = _unique("admin")
    member_user = _unique("member")
    community_id = _create_community(admin_user)

    fetched = client.get(f"/communities/{community_id}")
    assert fetched.status_code == 200
    assert fetched.json()["created_by"] == admin_user
    assert fetched.json()["slug"].startswith("trail-runners-")

    joined = client.post(f"/communities/{community_id}/join", headers=_auth(member_user))
    assert joined.status_code == 200
    assert joined.json()["role"] == "member"

    listed = client.get("/communities", params={"search": "trail"})
    assert any(item["id"] == community_id and item["member_count"] == 2 for item in listed.json())

    assert client.get(f"/communities/{community_id}/members", headers=_auth(member_user)).status_code == 403
    members = client.get(f"/communities/{community_id}/members", headers=_auth(admin_user))
    assert {item["user_id"] for item in members.json()} == {admin_user, member_user}

    promoted = client.put(
        f"/communities/{community_id}/members/{member_user}/role",
        json={"role": "co-admin"},
        headers=_auth(admin_user),
    )
    assert promoted.status_code == 200
    assert promoted.json()["role"] == "co-admin"
    managed = client.get("/communities/managed", headers=_auth(member_user))
    assert [item["id"] for item in managed.json()] == [community_id]

    # Re-joining never demotes.
    client.post(f"/communities/{community_id}/join", headers=_auth(member_user))
    members = client.get(f"/communities/{community_id}/members", headers=_auth(admin_user)).json()
    assert {item["user_id"]: item["role"] for item in members}[member_user] == "co-admin"

    last_admin = client.post(f"/communities/{community_id}/leave", headers=_auth(admin_user))
    assert last_admin.status_code == 409
    left = client.post(f"/communities/{community_id}/leave", headers=_auth(member_user))
    assert left.status_code == 200


def test_missing_community_is_404():
    assert client.get(f"/communities/{uuid4()}").status_code == 404


def test_community_image_upload_is_served():
    admin_user = _unique("admin")
    community_id = _create_community(admin_user)

    rejected = client.post(
        f"/communities/{community_id}/image",
        params={"filename": "notes.txt"},
        content=b"text",
        headers={**_auth(admin_user), "Content-Type": "text/plain"},
    )
    assert rejected.status_code == 400

    uploaded = client.post(
        f"/communities/{community_id}/image",
        params={"filename": "logo.png"},
        content=b"\x89PNG fake",
        headers={**_auth(admin_user), "Content-Type": "image/png"},
    )
    assert uploaded.status_code == 200
    image_url = uploaded.json()["image_url"]
    assert image_url.startswith(f"/storage/community-images/{admin_user}/")

    served = client.get(image_url)
    assert served.status_code == 200
    assert served.content == b"\x89PNG fake"


def test_event_create_list_and_rsvp_flow():
    admin_user = _unique("admin")
    member_user = _unique("member")
    community_id = _create_community(admin_user)
    client.post(f"/communities/{community_id}/join", headers=_auth(member_user))

    assert client.post(
        "/events",
        json={"community_id": community_id, "title": "Nope", "start_time": datetime.now(timezone.utc).isoformat()},
        headers=_auth(member_user),
    ).status_code == 403

    event = _create_event(admin_user, community_id, capacity=1, tags=["hills"])

    rsvp = client.post(f"/events/{event['id']}/rsvp", json={"status": "going"}, headers=_auth(member_user))
    assert rsvp.status_code == 200
    assert rsvp.json()["attendee_count"] == 1
    assert rsvp.json()["spots_left"] == 0

    full = client.post(f"/events/{event['id']}/rsvp", json={"status": "going"}, headers=_auth(_unique("late")))
    assert full.status_code == 409
    assert full.json()["detail"] == "This event is at full capacity"

    bad_status = client.post(f"/events/{event['id']}/rsvp", json={"status": "interested"}, headers=_auth(member_user))
    assert bad_status.status_code == 422

    mine = client.get(f"/events/{event['id']}/rsvp/me", headers=_auth(member_user))
    assert mine.json()["status"] == "going"
    assert client.get(f"/events/{event['id']}/attendance").json()["attendee_count"] == 1

    view = client.get(f"/events/{event['id']}", headers=_auth(member_user)).json()
    assert view["my_rsvp_status"] == "going"
    assert view["is_full"] is True

    listed = client.get(f"/communities/{community_id}/events")
    assert [item["id"] for item in listed.json()] == [event["id"]]

    assert client.get(f"/events/{event['id']}/attendees", headers=_auth(member_user)).status_code == 403
    attendees = client.get(f"/events/{event['id']}/attendees", headers=_auth(admin_user))
    assert [item["user_id"] for item in attendees.json()] == [member_user]


def test_rsvp_to_past_event_is_rejected():
    admin_user = _unique("admin")
    community_id = _create_community(admin_user)
    event = _create_event(
        admin_user,
        community_id,
        start_time=(datetime.now(timezone.utc) - timedelta(hours=1)).isoformat(),
    )

    response = client.post(f"/events/{event['id']}/rsvp", json={"status": "going"}, headers=_auth(_unique("member")))
    assert response.status_code == 400
    assert response.json()["detail"] == "This event has already passed"


def test_event_update_soft_delete_restore_and_hard_delete():
    admin_user = _unique("admin")
    community_id = _create_community(admin_user)
    event = _create_event(admin_user, community_id)

    patched = client.patch(f"/events/{event['id']}", json={"title": "Tempo run"}, headers=_auth(admin_user))
    assert patched.json()["title"] == "Tempo run"
    assert client.patch(f"/events/{event['id']}", json={"title": "x"}, headers=_auth(_unique("stranger"))).status_code == 403

    assert client.delete(f"/events/{event['id']}", headers=_auth(admin_user)).status_code == 200
    assert client.get(f"/events/{event['id']}").status_code == 404
    mine = client.get("/events/mine", headers=_auth(admin_user)).json()
    assert [item["id"] for item in mine["deleted"]] == [event["id"]]

    assert client.post(f"/events/{event['id']}/restore", headers=_auth(admin_user)).status_code == 200
    assert client.get(f"/events/{event['id']}").status_code == 200

    assert client.delete(f"/admin/events/{event['id']}", headers=_auth(admin_user)).json()["status"] == "deleted"
    assert client.get(f"/events/{event['id']}").status_code == 404


def test_recurring_event_occurrences_over_http():
    admin_user = _unique("admin")
    community_id = _create_community(admin_user)
    event = _create_event(
        admin_user,
        community_id,
        start_time="2030-01-07T18:00:00+00:00",
        recurrence={"frequency": "weekly", "interval": 1},
    )
    response = client.get(f"/events/{event['id']}/occurrences", params={"count": 3})
    assert response.status_code == 200
    assert [datetime.fromisoformat(item.replace("Z", "+00:00")).day for item in response.json()] == [7, 14, 21]


def test_event_search():
    admin_user = _unique("admin")
    community_id = _create_community(admin_user)
    word = f"zumba{uuid4().hex[:6]}"
    event = _create_event(admin_user, community_id, title=f"{word} session")

    hits = client.get("/events/search", params={"q": word}).json()
    assert [hit["event"]["id"] for hit in hits] == [event["id"]]


def test_gateway_failure_maps_to_502(monkeypatch):
    def broken_get_event(event_id, include_deleted=False):
        raise GatewayError("store unavailable", code="transport")

    monkeypatch.setattr(event_service, "get_event", broken_get_event)
    response = client.post(f"/events/{uuid4()}/rsvp", json={"status": "going"}, headers=_auth(_unique("member")))
    assert response.status_code == 502
    assert response.json()["detail"] == "Failed to update RSVP"


def test_dashboards_scope_and_permissions():
    admin_user = _unique("admin")
    member_user = _unique("member")
    community_id = _create_community(admin_user)
    client.post(f"/communities/{community_id}/join", headers=_auth(member_user))
    event = _create_event(admin_user, community_id)
    client.post(f"/events/{event['id']}/rsvp", json={"status": "maybe"}, headers=_auth(member_user))

    overview = client.get("/admin/dashboards/events", params={"community_id": community_id}, headers=_auth(admin_user))
    assert overview.status_code == 200
    assert overview.json()["upcoming_events"] == 1

    rsvps = client.get(
        "/admin/dashboards/rsvps",
        params={"community_id": community_id, "time_range": "month"},
        headers=_auth(admin_user),
    )
    assert rsvps.json()["maybe"] == 1

    assert client.get("/admin/dashboards/events", params={"community_id": community_id}, headers=_auth(member_user)).status_code == 403
    assert client.get("/admin/dashboards/events", headers=_auth(admin_user)).status_code == 403
    assert client.get("/admin/dashboards/events", headers=_auth("platform_admin")).status_code == 200
    assert client.get("/admin/dashboards/chat", params={"time_range": "fortnight"}, headers=_auth("platform_admin")).status_code == 422

    for path in ("ai", "chat", "moderation"):
        response = client.get(f"/admin/dashboards/{path}", params={"community_id": community_id}, headers=_auth(admin_user))
        assert response.status_code == 200, path

    topics = client.get(f"/communities/{community_id}/trending-topics")
    assert topics.status_code == 200
