"""
Engine, sessions and table metadata.

Tables are plain SQLAlchemy Core: users, groups and memberships, per-group
settings, wiki documents with revisions, and the two audit logs.
"""
import logging
import os
import uuid
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    false,
    func,
    true,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from family_helper.core.config import settings

logger = logging.getLogger("family_helper.database")

metadata = MetaData()

# Server databases only; SQLite gets a single static connection
SERVER_POOL = {
    "pool_size": 10,
    "max_overflow": 20,
    "pool_timeout": 30,
    "pool_recycle": 3600,
    "pool_pre_ping": True,
}

_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None


def new_id() -> str:
    return str(uuid.uuid4())


def get_database_url() -> Optional[str]:
    """TEST_DATABASE_URL from the environment wins over settings.DATABASE_URL."""
    return os.getenv("TEST_DATABASE_URL") or settings.DATABASE_URL


def build_engine(url: str, echo: bool = False) -> Engine:
    if url.startswith("sqlite"):
        # In-memory databases live only as long as their connection
        return create_engine(
            url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
            echo=echo,
        )
    return create_engine(url, poolclass=QueuePool, echo=echo, **SERVER_POOL)


def init_engine(database_url: Optional[str] = None) -> Engine:
    """(Re)build the process-wide engine and session factory."""
    global _engine, _session_factory

    url = database_url or get_database_url()
    if not url:
        raise ValueError("No database configured: set DATABASE_URL (or TEST_DATABASE_URL)")

    _engine = build_engine(url, echo=settings.DB_ECHO)
    _session_factory = sessionmaker(bind=_engine, autoflush=False, autocommit=False)
    logger.info(f"Database engine ready ({_engine.dialect.name})")
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        init_engine()
    return _engine


def get_session_factory() -> sessionmaker:
    if _session_factory is None:
        init_engine()
    return _session_factory


@contextmanager
def get_db_session():
    """Session for scripts: commit when the block exits cleanly, otherwise roll back."""
    session = get_session_factory()()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency; services commit their own units of work."""
    session = get_session_factory()()
    try:
        yield session
    finally:
        session.close()


def create_all_tables(engine: Optional[Engine] = None) -> None:
    metadata.create_all(bind=engine or get_engine())


def drop_all_tables(engine: Optional[Engine] = None) -> None:
    """Destructive; tests and local development only."""
    metadata.drop_all(bind=engine or get_engine())


# Users
users = Table(
    'users',
    metadata,
    Column('user_id', String(100), primary_key=True),
    Column('email', String(320), nullable=True, index=True),
    Column('display_name', Text, nullable=True),
    Column('member_icon', String(10), nullable=True),
    Column('icon_color', String(20), nullable=True),
    Column('profile_photo_file_id', String(100), nullable=True),
    Column('is_subscribed', Boolean, nullable=False, default=False, server_default=false()),
    Column('subscription_id', String(200), nullable=True),
    Column('subscription_start_date', DateTime(timezone=True), nullable=True),
    Column('subscription_end_date', DateTime(timezone=True), nullable=True),
    Column('renewal_date', DateTime(timezone=True), nullable=True),
    Column('subscription_manually_expired', Boolean, nullable=False, default=False, server_default=false()),
    Column('storage_limit_gb', Integer, nullable=False, default=0, server_default='0'),
    Column('is_support_user', Boolean, nullable=False, default=False, server_default=false()),
    Column('is_locked', Boolean, nullable=False, default=False, server_default=false()),
    Column('locked_at', DateTime(timezone=True), nullable=True),
    Column('locked_reason', Text, nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('last_login', DateTime(timezone=True), nullable=True),
    Index('idx_users_created_at', 'created_at'),
)

# Groups
groups = Table(
    'groups',
    metadata,
    Column('group_id', String(36), primary_key=True, default=new_id),
    Column('name', String(200), nullable=False),
    Column('has_active_admin', Boolean, nullable=False, default=True, server_default=true()),
    # Legacy grace period; superseded by has_active_admin
    Column('read_only_until', DateTime(timezone=True), nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
)

# Group members ('admin', 'parent', 'adult', 'caregiver', 'child')
group_members = Table(
    'group_members',
    metadata,
    Column('group_member_id', String(36), primary_key=True, default=new_id),
    Column('group_id', String(36), ForeignKey('groups.group_id'), nullable=False, index=True),
    Column('user_id', String(100), ForeignKey('users.user_id'), nullable=True, index=True),
    Column('role', String(20), nullable=False),
    Column('display_name', Text, nullable=True),
    Column('icon_letters', String(10), nullable=True),
    Column('icon_color', String(20), nullable=True),
    Column('email', String(320), nullable=True),
    Column('is_registered', Boolean, nullable=False, default=True, server_default=true()),
    Column('joined_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    UniqueConstraint('group_id', 'user_id', name='uq_group_members_group_user'),
    Index('idx_group_members_user_role', 'user_id', 'role'),
)

# Per-group settings (wiki visibility by role)
group_settings = Table(
    'group_settings',
    metadata,
    Column('group_id', String(36), ForeignKey('groups.group_id'), primary_key=True),
    Column('wiki_visible_to_admins', Boolean, nullable=False, default=True, server_default=true()),
    Column('wiki_visible_to_parents', Boolean, nullable=False, default=True, server_default=true()),
    Column('wiki_visible_to_adults', Boolean, nullable=False, default=True, server_default=true()),
    Column('wiki_visible_to_caregivers', Boolean, nullable=False, default=True, server_default=true()),
    Column('wiki_visible_to_children', Boolean, nullable=False, default=True, server_default=true()),
)

# Wiki documents (title/content hold AES-GCM tokens)
wiki_documents = Table(
    'wiki_documents',
    metadata,
    Column('document_id', String(36), primary_key=True, default=new_id),
    Column('group_id', String(36), ForeignKey('groups.group_id'), nullable=False, index=True),
    Column('title', Text, nullable=False),
    Column('content', Text, nullable=False, default=''),
    Column('created_by', String(36), ForeignKey('group_members.group_member_id'), nullable=False),
    Column('is_hidden', Boolean, nullable=False, default=False, server_default=false()),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
    Index('idx_wiki_documents_group_hidden_updated', 'group_id', 'is_hidden', 'updated_at'),
)

# Wiki revisions (snapshot of the previous ciphertext)
wiki_revisions = Table(
    'wiki_revisions',
    metadata,
    Column('revision_id', String(36), primary_key=True, default=new_id),
    Column('document_id', String(36), ForeignKey('wiki_documents.document_id'), nullable=False, index=True),
    Column('title', Text, nullable=False),
    Column('content', Text, nullable=False, default=''),
    Column('edited_by', String(36), ForeignKey('group_members.group_member_id'), nullable=False),
    Column('change_note', Text, nullable=True),
    Column('edited_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_wiki_revisions_document_edited', 'document_id', 'edited_at'),
)

# Group activity log
audit_logs = Table(
    'audit_logs',
    metadata,
    Column('log_id', Integer, primary_key=True, autoincrement=True),
    Column('group_id', String(36), ForeignKey('groups.group_id'), nullable=False, index=True),
    Column('action', String(100), nullable=False),
    Column('performed_by', String(36), nullable=True),
    Column('performed_by_name', Text, nullable=True),
    Column('performed_by_email', String(320), nullable=True),
    Column('action_location', String(50), nullable=True),
    Column('message_content', Text, nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False, index=True),
)

# Support audit log
support_audit_logs = Table(
    'support_audit_logs',
    metadata,
    Column('log_id', Integer, primary_key=True, autoincrement=True),
    Column('performed_by_id', String(100), nullable=False),
    Column('performed_by_email', String(320), nullable=True),
    Column('target_user_id', String(100), nullable=False, index=True),
    Column('target_user_email', String(320), nullable=True),
    Column('action', String(100), nullable=False),
    Column('details', Text, nullable=True),
    Column('previous_value', Text, nullable=True),  # JSON
    Column('new_value', Text, nullable=True),  # JSON
    Column('ip_address', String(100), nullable=True),
    Column('user_agent', Text, nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_support_audit_logs_action', 'action'),
    Index('idx_support_audit_logs_created_at', 'created_at'),
)
