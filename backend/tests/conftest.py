import os
import sys
import tempfile
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

# The app builds its gateway at import time, so point it at a scratch directory first.
_TEST_DATA_DIR = tempfile.mkdtemp(prefix="huddle-tests-")
os.environ["HUDDLE_GATEWAY"] = "sqlite"
os.environ["HUDDLE_DB_PATH"] = os.path.join(_TEST_DATA_DIR, "huddle.sqlite3")
os.environ["HUDDLE_STORAGE_DIR"] = os.path.join(_TEST_DATA_DIR, "storage")
os.environ["HUDDLE_TIMEZONE"] = "UTC"
os.environ["PLATFORM_ADMIN_USER_IDS"] = "platform_admin"
os.environ["AUTH_DEV_LOGIN_ENABLED"] = "true"
for _name in ("OPENAI_API_KEY", "OPENAI_API_KEY_FILE", "FIREBASE_CREDENTIALS_PATH", "TRUSTED_HOSTS"):
    os.environ.pop(_name, None)

from huddle.auth import Session
from huddle.gateway.sqlite_gateway import SqliteGateway
from huddle.models import CommunityEvent


@pytest.fixture
def gateway(tmp_path):
    return SqliteGateway(db_path=str(tmp_path / "huddle.sqlite3"), storage_dir=str(tmp_path / "storage"))


@pytest.fixture
def admin_session():
    return Session(user_id="admin_1")


@pytest.fixture
def member_session():
    return Session(user_id="member_1")


@pytest.fixture
def platform_session():
    return Session(user_id="platform_admin", is_platform_admin=True)


@pytest.fixture
def seed_community(gateway):
    def _seed(admin_user: str = "admin_1", members: tuple = ("member_1",)) -> str:
        suffix = uuid4().hex[:6]
        community = gateway.insert(
            "communities",
            {"name": f"Run Club {suffix}", "slug": f"run-club-{suffix}", "created_by": admin_user},
        )[0]
        gateway.insert("community_members", {"community_id": community["id"], "user_id": admin_user, "role": "admin"})
        for user_id in members:
            gateway.insert("community_members", {"community_id": community["id"], "user_id": user_id, "role": "member"})
        return community["id"]

    return _seed


@pytest.fixture
def seed_event(gateway):
    def _seed(
        community_id: str,
        created_by: str = "admin_1",
        starts_in: timedelta = timedelta(days=3),
        capacity=None,
        **extra,
    ) -> CommunityEvent:
        values = {
            "community_id": community_id,
            "created_by": created_by,
            "title": extra.pop("title", "Saturday long run"),
            "start_time": datetime.now(timezone.utc) + starts_in,
            "capacity": capacity,
        }
        values.update(extra)
        return CommunityEvent(**gateway.insert("community_events", values)[0])

    return _seed
