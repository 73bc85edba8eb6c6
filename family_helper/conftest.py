# family_helper/conftest.py
import sys
from datetime import timedelta
from pathlib import Path
from uuid import uuid4

import pytest
from sqlalchemy import insert
from sqlalchemy.orm import sessionmaker

# Add project root to PYTHONPATH
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from family_helper.core.config import settings
from family_helper.core.database import (
    build_engine,
    create_all_tables,
    drop_all_tables,
    get_db,
    group_members,
    group_settings,
    groups,
    users,
)
from family_helper.core.timeutil import utc_now
from family_helper.features.wiki.encryption import reset_encryption_service

TEST_ENCRYPTION_KEY = "00112233445566778899aabbccddeeff00112233445566778899aabbccddeeff"


@pytest.fixture(autouse=True)
def encryption_key(monkeypatch):
    """Use a fixed AES key and a fresh cached cipher for every test."""
    monkeypatch.setattr(settings, "MESSAGE_ENCRYPTION_KEY", TEST_ENCRYPTION_KEY)
    reset_encryption_service()
    yield TEST_ENCRYPTION_KEY
    reset_encryption_service()


@pytest.fixture(autouse=True)
def header_auth(monkeypatch):
    """Tests authenticate with X-User-Id."""
    monkeypatch.setattr(settings, "ENVIRONMENT", "test")
    monkeypatch.setattr(settings, "ALLOW_HEADER_AUTH", True)


@pytest.fixture
def engine():
    """Isolated in-memory SQLite database with all tables."""
    eng = build_engine("sqlite+pysqlite:///:memory:")
    create_all_tables(eng)
    yield eng
    drop_all_tables(eng)
    eng.dispose()


@pytest.fixture
def db_session(engine):
    SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(db_session):
    """TestClient whose get_db dependency yields the test session."""
    from fastapi.testclient import TestClient
    from family_helper.main import app

    def _override():
        yield db_session

    app.dependency_overrides[get_db] = _override
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.pop(get_db, None)


@pytest.fixture
def make_user(db_session):
    def _make(user_id=None, **fields):
        user_id = user_id or f"user-{uuid4().hex[:8]}"
        values = {
            "user_id": user_id,
            "email": f"{user_id}@example.com",
            "display_name": user_id,
            "created_at": utc_now() - timedelta(days=365),
        }
        values.update(fields)
        db_session.execute(insert(users).values(**values))
        db_session.commit()
        return user_id
    return _make


@pytest.fixture
def make_subscriber(make_user):
    """A user with an active subscription ending in 30 days."""
    def _make(user_id=None, **fields):
        values = {"is_subscribed": True, "subscription_end_date": utc_now() + timedelta(days=30)}
        values.update(fields)
        return make_user(user_id, **values)
    return _make


@pytest.fixture
def support_user(make_user):
    return make_user("support-1", email="support@example.com", is_support_user=True)


@pytest.fixture
def make_group(db_session):
    def _make(name="Family", wiki_visible=True, **fields):
        group_id = str(uuid4())
        db_session.execute(insert(groups).values(group_id=group_id, name=name, **fields))
        if wiki_visible is not None:
            db_session.execute(
                insert(group_settings).values(
                    group_id=group_id,
                    wiki_visible_to_admins=wiki_visible,
                    wiki_visible_to_parents=wiki_visible,
                    wiki_visible_to_adults=wiki_visible,
                    wiki_visible_to_caregivers=wiki_visible,
                    wiki_visible_to_children=wiki_visible,
                )
            )
        db_session.commit()
        return group_id
    return _make


@pytest.fixture
def add_member(db_session):
    def _add(group_id, user_id, role="adult", **fields):
        member_id = str(uuid4())
        values = {
            "group_member_id": member_id,
            "group_id": group_id,
            "user_id": user_id,
            "role": role,
            "display_name": f"{user_id} ({role})",
        }
        values.update(fields)
        db_session.execute(insert(group_members).values(**values))
        db_session.commit()
        return member_id
    return _add
