"""
Wiki documents within a group.

Titles and content are encrypted at rest (see encryption.py). The database
cannot search ciphertext, so search decrypts and filters in memory.
Mutations are blocked while the group is read-only and each one writes a
group audit_logs row.
"""
import logging
from typing import Any, List, Optional

from sqlalchemy import and_, desc, insert, select, update
from sqlalchemy.orm import Session

from family_helper.core.config import settings
from family_helper.core.database import (
    audit_logs,
    group_members,
    group_settings,
    groups,
    users,
    wiki_documents,
    wiki_revisions,
)
from family_helper.core.errors import NotFoundError, PermissionError, ReadOnlyGroupError, ValidationError
from family_helper.core.logging import log_event
from family_helper.core.timeutil import utc_now
from family_helper.features.access.permissions import (
    can_view_wiki,
    get_read_only_error_response,
    is_group_read_only,
)
from family_helper.features.wiki import encryption
from family_helper.models.group import Group, GroupMember, GroupWikiSettings, MemberRole
from family_helper.models.wiki import MemberProfile, WikiDocument, WikiDocumentDetail, WikiRevision

logger = logging.getLogger("family_helper.wiki")

REVISION_HISTORY_LIMIT = 10


def _photo_url(file_id: Optional[str]) -> Optional[str]:
    if not file_id:
        return None
    return f"{settings.API_BASE_URL}/files/{file_id}"


def _profile_columns(member_table, user_table, prefix: str) -> List[Any]:
    return [
        member_table.c.group_member_id.label(f"{prefix}_member_id"),
        member_table.c.display_name.label(f"{prefix}_member_name"),
        member_table.c.icon_letters.label(f"{prefix}_member_letters"),
        member_table.c.icon_color.label(f"{prefix}_member_color"),
        user_table.c.display_name.label(f"{prefix}_user_name"),
        user_table.c.member_icon.label(f"{prefix}_user_icon"),
        user_table.c.icon_color.label(f"{prefix}_user_color"),
        user_table.c.profile_photo_file_id.label(f"{prefix}_user_photo"),
    ]


def _profile_from_row(row: Any, prefix: str) -> MemberProfile:
    m = row._mapping
    return MemberProfile(
        group_member_id=m[f"{prefix}_member_id"],
        display_name=m[f"{prefix}_user_name"] or m[f"{prefix}_member_name"],
        icon_letters=m[f"{prefix}_user_icon"] or m[f"{prefix}_member_letters"],
        icon_color=m[f"{prefix}_user_color"] or m[f"{prefix}_member_color"],
        profile_photo_url=_photo_url(m[f"{prefix}_user_photo"]),
    )


def _document_query():
    creator = group_members.alias("creator")
    creator_user = users.alias("creator_user")
    return (
        select(wiki_documents, *_profile_columns(creator, creator_user, "creator"))
        .select_from(
            wiki_documents
            .join(creator, wiki_documents.c.created_by == creator.c.group_member_id)
            .outerjoin(creator_user, creator.c.user_id == creator_user.c.user_id)
        )
    )


def _document_from_row(row: Any) -> WikiDocument:
    return WikiDocument(
        document_id=row.document_id,
        title=encryption.safe_decrypt(row.title) or "",
        content=encryption.safe_decrypt(row.content) or "",
        created_at=row.created_at,
        updated_at=row.updated_at,
        creator=_profile_from_row(row, "creator"),
    )


def get_membership(session: Session, group_id: str, user_id: str) -> GroupMember:
    row = session.execute(
        select(group_members).where(
            and_(
                group_members.c.group_id == group_id,
                group_members.c.user_id == user_id,
                group_members.c.is_registered.is_(True),
            )
        )
    ).first()
    if not row:
        raise PermissionError("You are not a member of this group", code="not_group_member")
    return GroupMember.model_validate(dict(row._mapping))


def get_group(session: Session, group_id: str) -> Group:
    row = session.execute(select(groups).where(groups.c.group_id == group_id)).first()
    if not row:
        raise NotFoundError("Group not found", code="group_not_found")
    return Group.model_validate(dict(row._mapping))


def ensure_group_writable(session: Session, group_id: str) -> Group:
    """Raise ReadOnlyGroupError carrying the distinguished code if the group is read-only."""
    group = get_group(session, group_id)
    if is_group_read_only(group):
        raise ReadOnlyGroupError.from_response(get_read_only_error_response(group))
    return group


def ensure_wiki_visible(session: Session, membership: GroupMember) -> None:
    row = session.execute(
        select(group_settings).where(group_settings.c.group_id == membership.group_id)
    ).first()
    wiki_settings = GroupWikiSettings.model_validate(dict(row._mapping)) if row else None
    if not can_view_wiki(membership.role, wiki_settings):
        raise PermissionError("You do not have permission to view wiki", code="wiki_not_visible")


def _record_activity(session: Session, membership: GroupMember, action: str, message: str) -> None:
    session.execute(
        insert(audit_logs).values(
            group_id=membership.group_id,
            action=action,
            performed_by=membership.group_member_id,
            performed_by_name=membership.display_name,
            performed_by_email=membership.email or "N/A",
            action_location="wiki",
            message_content=message,
            created_at=utc_now(),
        )
    )


def _require_title(title: Optional[str]) -> str:
    if not title or not title.strip():
        raise ValidationError("Title is required")
    return title.strip()


def _load_document(session: Session, group_id: str, document_id: str):
    row = session.execute(
        _document_query().where(
            and_(
                wiki_documents.c.document_id == document_id,
                wiki_documents.c.group_id == group_id,
                wiki_documents.c.is_hidden.is_(False),
            )
        )
    ).first()
    if not row:
        raise NotFoundError("Wiki document not found", code="wiki_document_not_found")
    return row


def _matches(doc: WikiDocument, term: str) -> bool:
    term = term.lower()
    return term in doc.title.lower() or term in doc.content.lower()


def _visible_documents(session: Session, group_id: str) -> List[WikiDocument]:
    rows = session.execute(
        _document_query()
        .where(and_(wiki_documents.c.group_id == group_id, wiki_documents.c.is_hidden.is_(False)))
        .order_by(desc(wiki_documents.c.updated_at))
    ).fetchall()
    return [_document_from_row(r) for r in rows]


def list_documents(session: Session, user_id: str, group_id: str, search: Optional[str] = None) -> List[WikiDocument]:
    membership = get_membership(session, group_id, user_id)
    ensure_wiki_visible(session, membership)

    documents = _visible_documents(session, group_id)
    if search:
        documents = [d for d in documents if _matches(d, search)]
    return documents


def search_documents(session: Session, user_id: str, group_id: str, query: Optional[str]) -> List[WikiDocument]:
    if not query or not query.strip():
        raise ValidationError("Search query is required")

    membership = get_membership(session, group_id, user_id)
    ensure_wiki_visible(session, membership)
    return [d for d in _visible_documents(session, group_id) if _matches(d, query)]


def get_document(session: Session, user_id: str, group_id: str, document_id: str) -> WikiDocumentDetail:
    membership = get_membership(session, group_id, user_id)
    ensure_wiki_visible(session, membership)

    doc = _document_from_row(_load_document(session, group_id, document_id))

    editor = group_members.alias("editor")
    editor_user = users.alias("editor_user")
    revision_rows = session.execute(
        select(wiki_revisions, *_profile_columns(editor, editor_user, "editor"))
        .select_from(
            wiki_revisions
            .join(editor, wiki_revisions.c.edited_by == editor.c.group_member_id)
            .outerjoin(editor_user, editor.c.user_id == editor_user.c.user_id)
        )
        .where(wiki_revisions.c.document_id == document_id)
        .order_by(desc(wiki_revisions.c.edited_at))
        .limit(REVISION_HISTORY_LIMIT)
    ).fetchall()

    revisions = [
        WikiRevision(
            revision_id=r.revision_id,
            title=encryption.safe_decrypt(r.title) or "",
            edited_at=r.edited_at,
            change_note=r.change_note,
            editor=_profile_from_row(r, "editor"),
        )
        for r in revision_rows
    ]
    return WikiDocumentDetail(**doc.model_dump(), revisions=revisions)


def create_document(session: Session, user_id: str, group_id: str, title: Optional[str], content: Optional[str]) -> WikiDocument:
    title = _require_title(title)
    membership = get_membership(session, group_id, user_id)
    ensure_group_writable(session, group_id)

    now = utc_now()
    try:
        result = session.execute(
            insert(wiki_documents).values(
                group_id=group_id,
                title=encryption.encrypt(title),
                content=encryption.encrypt(content or ""),
                created_by=membership.group_member_id,
                created_at=now,
                updated_at=now,
            )
        )
        document_id = result.inserted_primary_key[0]
        _record_activity(session, membership, "create_wiki_document", f"Created wiki document: {title}")
        session.commit()
    except Exception:
        session.rollback()
        raise

    log_event("info", "wiki.document.created", user_id=user_id, group_id=group_id, extra={"document_id": document_id})
    return _document_from_row(_load_document(session, group_id, document_id))


def update_document(
    session: Session,
    user_id: str,
    group_id: str,
    document_id: str,
    title: Optional[str],
    content: Optional[str],
    change_note: Optional[str] = None,
) -> WikiDocument:
    title = _require_title(title)
    membership = get_membership(session, group_id, user_id)
    ensure_group_writable(session, group_id)
    existing = _load_document(session, group_id, document_id)

    now = utc_now()
    try:
        # Keep the previous ciphertext as a revision
        session.execute(
            insert(wiki_revisions).values(
                document_id=document_id,
                title=existing.title,
                content=existing.content,
                edited_by=membership.group_member_id,
                change_note=change_note or None,
                edited_at=now,
            )
        )
        session.execute(
            update(wiki_documents)
            .where(wiki_documents.c.document_id == document_id)
            .values(
                title=encryption.encrypt(title),
                content=encryption.encrypt(content or ""),
                updated_at=now,
            )
        )
        _record_activity(session, membership, "update_wiki_document", f"Updated wiki document: {title}")
        session.commit()
    except Exception:
        session.rollback()
        raise

    log_event("info", "wiki.document.updated", user_id=user_id, group_id=group_id, extra={"document_id": document_id})
    return _document_from_row(_load_document(session, group_id, document_id))


def delete_document(session: Session, user_id: str, group_id: str, document_id: str) -> None:
    """Soft delete. Only the creator or a group admin may delete."""
    membership = get_membership(session, group_id, user_id)
    ensure_group_writable(session, group_id)
    existing = _load_document(session, group_id, document_id)

    is_creator = existing.created_by == membership.group_member_id
    is_admin = membership.role == MemberRole.ADMIN.value
    if not is_creator and not is_admin:
        raise PermissionError("Only the creator or an admin can delete this document", code="not_document_owner")

    try:
        session.execute(
            update(wiki_documents)
            .where(wiki_documents.c.document_id == document_id)
            .values(is_hidden=True)
        )
        _record_activity(
            session, membership, "delete_wiki_document",
            f"Deleted wiki document: {encryption.safe_decrypt(existing.title)}",
        )
        session.commit()
    except Exception:
        session.rollback()
        raise

    log_event("info", "wiki.document.deleted", user_id=user_id, group_id=group_id, extra={"document_id": document_id})
