"""Backfill script that encrypts legacy plaintext wiki rows."""
import pytest
from sqlalchemy import insert, select
from sqlalchemy.orm import sessionmaker

from family_helper.core.config import settings
from family_helper.core.database import wiki_documents, wiki_revisions
from family_helper.core.timeutil import utc_now
from family_helper.features.wiki.encryption import decrypt, encrypt, is_encrypted
from family_helper.scripts import encrypt_wiki_documents as script


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine)


@pytest.fixture
def legacy_rows(db_session, make_user, make_group, add_member):
    user_id = make_user("writer")
    group_id = make_group()
    member_id = add_member(group_id, user_id, role="admin")
    now = utc_now()
    db_session.execute(insert(wiki_documents), [
        {"document_id": "plain", "group_id": group_id, "title": "Plain title", "content": "Plain body",
         "created_by": member_id, "created_at": now, "updated_at": now},
        {"document_id": "done", "group_id": group_id, "title": encrypt("Done"), "content": encrypt("Already"),
         "created_by": member_id, "created_at": now, "updated_at": now},
        {"document_id": "half", "group_id": group_id, "title": encrypt("Half"), "content": "Half plain",
         "created_by": member_id, "created_at": now, "updated_at": now},
    ])
    db_session.execute(insert(wiki_revisions).values(
        revision_id="rev-1", document_id="plain", title="Older title", content="Older body",
        edited_by=member_id, edited_at=now,
    ))
    db_session.commit()


def _documents(db_session):
    return {r.document_id: r for r in db_session.execute(select(wiki_documents)).fetchall()}


def test_encrypts_plaintext_and_skips_encrypted(db_session, session_factory, legacy_rows):
    report = script.encrypt_wiki_documents(session_factory=session_factory)

    assert report["documents"] == {"checked": 3, "encrypted": 2, "skipped": 1}
    assert report["revisions"] == {"checked": 1, "encrypted": 1, "skipped": 0}
    assert report["dry_run"] is False

    db_session.expire_all()
    docs = _documents(db_session)
    assert all(is_encrypted(d.title) and is_encrypted(d.content) for d in docs.values())
    assert decrypt(docs["plain"].title) == "Plain title"
    assert decrypt(docs["half"].title) == "Half"
    assert decrypt(docs["half"].content) == "Half plain"

    revision = db_session.execute(select(wiki_revisions)).first()
    assert decrypt(revision.content) == "Older body"


def test_second_run_changes_nothing(db_session, session_factory, legacy_rows):
    script.encrypt_wiki_documents(session_factory=session_factory)
    db_session.expire_all()
    before = {k: (r.title, r.content) for k, r in _documents(db_session).items()}

    report = script.encrypt_wiki_documents(session_factory=session_factory)

    assert report["documents"]["encrypted"] == 0
    assert report["revisions"]["encrypted"] == 0
    db_session.expire_all()
    after = {k: (r.title, r.content) for k, r in _documents(db_session).items()}
    assert after == before


def test_dry_run_writes_nothing(db_session, session_factory, legacy_rows):
    report = script.encrypt_wiki_documents(dry_run=True, session_factory=session_factory)

    assert report["dry_run"] is True
    assert report["documents"]["encrypted"] == 2
    db_session.expire_all()
    assert _documents(db_session)["plain"].title == "Plain title"


def test_main_refuses_without_key(monkeypatch):
    monkeypatch.setattr(settings, "MESSAGE_ENCRYPTION_KEY", None)
    assert script.main(["--dry-run"]) == 1
