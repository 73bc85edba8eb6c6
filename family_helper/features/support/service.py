"""
Support console operations.

Handles:
- User listing/search
- Subscription grant/revoke, end date, renewal date
- Support flag and account lock changes
- Manual subscription expiry with the group admin cascade
- Support audit log writes and queries

Every mutation writes a support_audit_logs row in the same transaction as
the change it records. If the audit insert fails the change is rolled back.
"""
import json
import logging
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from pydantic.alias_generators import to_camel
from sqlalchemy import and_, desc, func, insert, or_, select, update
from sqlalchemy.orm import Session

from family_helper.core.auth import AuthenticatedUser
from family_helper.core.config import settings
from family_helper.core.database import group_members, groups, support_audit_logs, users
from family_helper.core.errors import AuditWriteError, NotFoundError, ValidationError
from family_helper.core.logging import log_event
from family_helper.core.timeutil import as_utc, utc_now
from family_helper.features.access.permissions import is_subscription_active
from family_helper.models.group import MemberRole
from family_helper.models.support import (
    ExpiryResult,
    GroupReadOnlyChange,
    GroupsAffected,
    Pagination,
    RoleChange,
    SupportAuditLog,
)
from family_helper.models.user import User

logger = logging.getLogger("family_helper.support")

SUPPORT_GRANTED_ID = "SUPPORT_GRANTED"
INDEFINITE_YEARS = 100
MAX_PAGE_SIZE = 100


def indefinite_date(now: Optional[datetime] = None) -> datetime:
    """A date far enough out to count as no end date."""
    now = now or utc_now()
    try:
        return now.replace(year=now.year + INDEFINITE_YEARS)
    except ValueError:
        # 29 February
        return now.replace(year=now.year + INDEFINITE_YEARS, day=28)


def _json_default(value: Any):
    if isinstance(value, datetime):
        return as_utc(value).isoformat().replace("+00:00", "Z")
    return str(value)


def _audit_json(values: Dict[str, Any]) -> str:
    return json.dumps({to_camel(k): v for k, v in values.items()}, default=_json_default)


def _page_window(page: int, limit: int, default_limit: int) -> Tuple[int, int, int]:
    page_num = page if page and page > 0 else 1
    limit_num = min(limit if limit and limit > 0 else default_limit, MAX_PAGE_SIZE)
    return page_num, limit_num, (page_num - 1) * limit_num


@contextmanager
def _unit_of_work(session: Session):
    """Commit on success; roll back everything on any failure."""
    try:
        yield
        session.commit()
    except Exception:
        session.rollback()
        raise


def record_support_audit(
    session: Session,
    actor: AuthenticatedUser,
    target: User,
    action: str,
    details: str,
    previous_value: Dict[str, Any],
    new_value: Dict[str, Any],
) -> None:
    """
    Insert a support audit row. Not committed here; the caller's unit of work does.

    Raises:
        AuditWriteError: if the insert fails (the mutation must not stand)
    """
    try:
        session.execute(
            insert(support_audit_logs).values(
                performed_by_id=actor.user_id,
                performed_by_email=actor.email,
                target_user_id=target.user_id,
                target_user_email=target.email,
                action=action,
                details=details,
                previous_value=_audit_json(previous_value),
                new_value=_audit_json(new_value),
                ip_address=actor.ip_address,
                user_agent=actor.user_agent,
                created_at=utc_now(),
            )
        )
    except Exception as e:
        logger.error(f"[support] CRITICAL: audit log write failed: {e}", exc_info=True)
        raise AuditWriteError(f"Support audit write failed: {e}")


def get_user(session: Session, user_id: str, *, for_update: bool = False) -> User:
    stmt = select(users).where(users.c.user_id == user_id)
    if for_update:
        stmt = stmt.with_for_update()
    row = session.execute(stmt).first()
    if not row:
        raise NotFoundError("User not found", code="user_not_found")
    return User.from_row(row)


def _update_user(session: Session, user_id: str, values: Dict[str, Any]) -> None:
    session.execute(update(users).where(users.c.user_id == user_id).values(**values))


def list_users(session: Session, *, search: str = "", page: int = 1, limit: int = 20) -> Tuple[List[User], Pagination]:
    page_num, limit_num, offset = _page_window(page, limit, 20)

    where = None
    if search:
        pattern = f"%{search}%"
        where = or_(users.c.email.ilike(pattern), users.c.display_name.ilike(pattern))

    query = select(users)
    count_query = select(func.count()).select_from(users)
    if where is not None:
        query = query.where(where)
        count_query = count_query.where(where)

    total = session.execute(count_query).scalar() or 0
    rows = session.execute(
        query.order_by(desc(users.c.created_at)).offset(offset).limit(limit_num)
    ).fetchall()

    return [User.from_row(r) for r in rows], Pagination.build(page_num, limit_num, total)


def check_access(session: Session, user_id: Optional[str]) -> bool:
    if not user_id:
        return False
    flag = session.execute(select(users.c.is_support_user).where(users.c.user_id == user_id)).scalar()
    return bool(flag)


def update_subscription(session: Session, actor: AuthenticatedUser, user_id: str, grant: bool) -> None:
    """Grant indefinite subscription access, or revoke it."""
    with _unit_of_work(session):
        target = get_user(session, user_id, for_update=True)
        previous = {
            "is_subscribed": target.is_subscribed,
            "subscription_id": target.subscription_id,
            "subscription_end_date": target.subscription_end_date,
            "storage_limit_gb": target.storage_limit_gb,
        }

        if grant:
            now = utc_now()
            values = {
                "is_subscribed": True,
                "subscription_id": SUPPORT_GRANTED_ID,
                "subscription_start_date": now,
                "subscription_end_date": indefinite_date(now),
                "storage_limit_gb": settings.SUPPORT_GRANT_STORAGE_GB,
            }
            action, details = "grant_subscription", "Granted unlimited subscription access"
        else:
            values = {
                "is_subscribed": False,
                "subscription_id": None,
                "subscription_start_date": None,
                "subscription_end_date": None,
                "storage_limit_gb": 0,
            }
            action, details = "revoke_subscription", "Revoked subscription access"

        _update_user(session, user_id, values)
        record_support_audit(session, actor, target, action, details, previous, values)

    log_event("info", f"support.{action}", user_id=actor.user_id, target_user_id=user_id)


def update_support_access(session: Session, actor: AuthenticatedUser, user_id: str, grant: bool) -> None:
    if user_id == actor.user_id and not grant:
        raise ValidationError("Cannot remove your own support access", code="cannot_revoke_self")

    with _unit_of_work(session):
        target = get_user(session, user_id, for_update=True)
        _update_user(session, user_id, {"is_support_user": grant})
        action = "grant_support" if grant else "revoke_support"
        record_support_audit(
            session, actor, target, action,
            "Granted support user access" if grant else "Revoked support user access",
            {"is_support_user": target.is_support_user},
            {"is_support_user": grant},
        )

    log_event("info", f"support.{action}", user_id=actor.user_id, target_user_id=user_id)


def update_lock_status(session: Session, actor: AuthenticatedUser, user_id: str, lock: bool, reason: Optional[str] = None) -> None:
    if user_id == actor.user_id and lock:
        raise ValidationError("Cannot lock your own account", code="cannot_lock_self")

    with _unit_of_work(session):
        target = get_user(session, user_id, for_update=True)
        previous = {
            "is_locked": target.is_locked,
            "locked_at": target.locked_at,
            "locked_reason": target.locked_reason,
        }
        if lock:
            values = {"is_locked": True, "locked_at": utc_now(), "locked_reason": reason or "Locked by support"}
            details = f"Account locked. Reason: {reason or 'No reason provided'}"
        else:
            values = {"is_locked": False, "locked_at": None, "locked_reason": None}
            details = "Account unlocked"

        _update_user(session, user_id, values)
        action = "lock_user" if lock else "unlock_user"
        record_support_audit(session, actor, target, action, details, previous, values)

    log_event("info", f"support.{action}", user_id=actor.user_id, target_user_id=user_id)


def update_subscription_end_date(session: Session, actor: AuthenticatedUser, user_id: str, end_date: Optional[datetime]) -> datetime:
    """Set a future end date, which also activates the subscription."""
    if end_date is None:
        raise ValidationError("Subscription end date is required")
    end_date = as_utc(end_date)
    if end_date <= utc_now():
        raise ValidationError("Subscription end date must be in the future")

    with _unit_of_work(session):
        target = get_user(session, user_id, for_update=True)
        previous = {
            "is_subscribed": target.is_subscribed,
            "subscription_id": target.subscription_id,
            "subscription_start_date": target.subscription_start_date,
            "subscription_end_date": target.subscription_end_date,
            "storage_limit_gb": target.storage_limit_gb,
        }
        values = {
            "is_subscribed": True,
            "subscription_id": target.subscription_id or SUPPORT_GRANTED_ID,
            "subscription_start_date": target.subscription_start_date or utc_now(),
            "subscription_end_date": end_date,
            "storage_limit_gb": target.storage_limit_gb or settings.DEFAULT_STORAGE_GB,
        }
        _update_user(session, user_id, values)
        record_support_audit(
            session, actor, target, "update_subscription_end_date",
            f"Set subscription end date to {_json_default(end_date)}",
            previous, values,
        )

    log_event("info", "support.update_subscription_end_date", user_id=actor.user_id, target_user_id=user_id)
    return end_date


def update_renewal_date(session: Session, actor: AuthenticatedUser, user_id: str, renewal_date: Optional[datetime]) -> datetime:
    """Set the date the next payment is due."""
    if renewal_date is None:
        raise ValidationError("Renewal date is required")
    renewal_date = as_utc(renewal_date)

    with _unit_of_work(session):
        target = get_user(session, user_id, for_update=True)
        _update_user(session, user_id, {"renewal_date": renewal_date})
        record_support_audit(
            session, actor, target, "update_renewal_date",
            f"Set renewal date to {_json_default(renewal_date)}",
            {"renewal_date": target.renewal_date},
            {"renewal_date": renewal_date},
        )

    log_event("info", "support.update_renewal_date", user_id=actor.user_id, target_user_id=user_id)
    return renewal_date


def _other_admins_have_active_subscription(session: Session, group_id: str, user_id: str, now: datetime) -> bool:
    rows = session.execute(
        select(users.c.is_subscribed, users.c.subscription_end_date)
        .select_from(group_members.join(users, group_members.c.user_id == users.c.user_id))
        .where(
            and_(
                group_members.c.group_id == group_id,
                group_members.c.role == MemberRole.ADMIN.value,
                group_members.c.user_id != user_id,
            )
        )
    ).fetchall()
    return any(is_subscription_active(r.is_subscribed, r.subscription_end_date, now) for r in rows)


def expire_subscription(session: Session, actor: AuthenticatedUser, user_id: str, now: Optional[datetime] = None) -> ExpiryResult:
    """
    Expire a user's subscription (end date = yesterday) and cascade to groups.

    For every group where the user is admin:
    - another admin still has an active subscription: the user becomes 'adult'
    - otherwise: the group's has_active_admin flips to False (read-only),
      and the user's role is left alone

    The user update, every group/membership write and the audit row commit as
    one transaction. The target user row is locked for the duration.
    """
    now = as_utc(now) or utc_now()
    yesterday = now - timedelta(days=1)

    with _unit_of_work(session):
        target = get_user(session, user_id, for_update=True)
        previous = {
            "is_subscribed": target.is_subscribed,
            "subscription_id": target.subscription_id,
            "subscription_start_date": target.subscription_start_date,
            "subscription_end_date": target.subscription_end_date,
            "subscription_manually_expired": target.subscription_manually_expired,
            "storage_limit_gb": target.storage_limit_gb,
        }
        values = {
            "is_subscribed": False,
            "subscription_end_date": yesterday,
            "subscription_manually_expired": True,
        }
        _update_user(session, user_id, values)

        memberships = session.execute(
            select(group_members.c.group_member_id, groups.c.group_id, groups.c.name)
            .select_from(group_members.join(groups, group_members.c.group_id == groups.c.group_id))
            .where(
                and_(
                    group_members.c.user_id == user_id,
                    group_members.c.role == MemberRole.ADMIN.value,
                )
            )
            .order_by(groups.c.group_id)
        ).fetchall()

        affected = GroupsAffected()
        for m in memberships:
            if _other_admins_have_active_subscription(session, m.group_id, user_id, now):
                session.execute(
                    update(group_members)
                    .where(group_members.c.group_member_id == m.group_member_id)
                    .values(role=MemberRole.ADULT.value)
                )
                affected.role_changes.append(RoleChange(group_id=m.group_id, group_name=m.name))
            else:
                session.execute(
                    update(groups).where(groups.c.group_id == m.group_id).values(has_active_admin=False)
                )
                affected.read_only.append(GroupReadOnlyChange(group_id=m.group_id, group_name=m.name))

        new_value = dict(values)
        new_value["groups_read_only"] = [g.model_dump(by_alias=True) for g in affected.read_only]
        new_value["roles_changed"] = [r.model_dump(by_alias=True) for r in affected.role_changes]
        record_support_audit(
            session, actor, target, "expire_subscription",
            (
                f"Expired subscription. Groups affected: {len(affected.read_only)} now read-only, "
                f"{len(affected.role_changes)} role changes."
            ),
            previous, new_value,
        )

    log_event(
        "info", "support.expire_subscription",
        user_id=actor.user_id, target_user_id=user_id,
        extra={"groups_read_only": len(affected.read_only), "role_changes": len(affected.role_changes)},
    )
    return ExpiryResult(user_id=user_id, subscription_end_date=yesterday, groups_affected=affected)


def get_audit_logs(
    session: Session,
    *,
    search: str = "",
    action: str = "",
    page: int = 1,
    limit: int = 50,
) -> Tuple[List[SupportAuditLog], Pagination]:
    page_num, limit_num, offset = _page_window(page, limit, 50)

    conditions = []
    if search:
        pattern = f"%{search}%"
        conditions.append(or_(
            support_audit_logs.c.target_user_email.ilike(pattern),
            support_audit_logs.c.performed_by_email.ilike(pattern),
        ))
    if action:
        conditions.append(support_audit_logs.c.action == action)

    query = select(support_audit_logs)
    count_query = select(func.count()).select_from(support_audit_logs)
    if conditions:
        query = query.where(and_(*conditions))
        count_query = count_query.where(and_(*conditions))

    total = session.execute(count_query).scalar() or 0
    rows = session.execute(
        query.order_by(desc(support_audit_logs.c.created_at), desc(support_audit_logs.c.log_id))
        .offset(offset)
        .limit(limit_num)
    ).fetchall()

    return [SupportAuditLog.model_validate(dict(r._mapping)) for r in rows], Pagination.build(page_num, limit_num, total)
