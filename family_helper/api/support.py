"""
Support console router.
Every endpoint except check-access requires an unlocked support user, and
every mutation is recorded in support_audit_logs.
"""

import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import AliasChoices, Field
from sqlalchemy.orm import Session

from family_helper.core.auth import AuthenticatedUser, get_optional_user
from family_helper.core.database import get_db
from family_helper.features.support import service
from family_helper.features.support.auth import require_support_user
from family_helper.models.base import CamelModel
from family_helper.models.support import GroupsAffected, Pagination, SupportAuditLog
from family_helper.models.user import User

logger = logging.getLogger("family_helper.support")

router = APIRouter(prefix="/support", tags=["support"])


# ============================================================================
# Request / Response Models
# ============================================================================

class GrantRequest(CamelModel):
    grant: bool


class LockRequest(CamelModel):
    lock: bool
    reason: Optional[str] = None


class SubscriptionEndDateRequest(CamelModel):
    # The web admin's subscribe-till dialog sends a bare "YYYY-MM-DD" as `date`
    subscription_end_date: Optional[datetime] = Field(
        None, validation_alias=AliasChoices("subscriptionEndDate", "subscription_end_date", "date")
    )


class RenewalDateRequest(CamelModel):
    renewal_date: Optional[datetime] = None


class MessageResponse(CamelModel):
    success: bool = True
    message: str


class CheckAccessResponse(CamelModel):
    success: bool = True
    is_support_user: bool


class UserListResponse(CamelModel):
    success: bool = True
    users: List[User]
    pagination: Pagination


class AuditLogListResponse(CamelModel):
    success: bool = True
    logs: List[SupportAuditLog]
    pagination: Pagination


class SubscriptionEndDateResponse(MessageResponse):
    subscription_end_date: datetime


class RenewalDateResponse(MessageResponse):
    renewal_date: datetime


class ExpireSubscriptionResponse(MessageResponse):
    subscription_end_date: datetime
    groups_affected: GroupsAffected


# ============================================================================
# Endpoints
# ============================================================================

@router.get("/check-access", response_model=CheckAccessResponse)
def check_access(
    user: Optional[AuthenticatedUser] = Depends(get_optional_user),
    session: Session = Depends(get_db),
):
    """Whether the caller is a support user. Unauthenticated callers get false."""
    return CheckAccessResponse(is_support_user=service.check_access(session, user.user_id if user else None))


@router.get("/users", response_model=UserListResponse)
def list_users(
    search: str = Query(""),
    page: int = Query(1),
    limit: int = Query(20),
    actor: AuthenticatedUser = Depends(require_support_user),
    session: Session = Depends(get_db),
):
    logger.info(f"[support] listing users by {actor.user_id}: search={search!r}, page={page}, limit={limit}")
    found, pagination = service.list_users(session, search=search, page=page, limit=limit)
    return UserListResponse(users=found, pagination=pagination)


@router.put("/users/{user_id}/subscription", response_model=MessageResponse)
def update_subscription(
    user_id: str,
    req: GrantRequest,
    actor: AuthenticatedUser = Depends(require_support_user),
    session: Session = Depends(get_db),
):
    """Grant or revoke indefinite subscription access."""
    service.update_subscription(session, actor, user_id, req.grant)
    return MessageResponse(message="Subscription granted" if req.grant else "Subscription revoked")


@router.put("/users/{user_id}/support-access", response_model=MessageResponse)
def update_support_access(
    user_id: str,
    req: GrantRequest,
    actor: AuthenticatedUser = Depends(require_support_user),
    session: Session = Depends(get_db),
):
    service.update_support_access(session, actor, user_id, req.grant)
    return MessageResponse(message="Support access granted" if req.grant else "Support access revoked")


@router.put("/users/{user_id}/lock", response_model=MessageResponse)
def update_lock_status(
    user_id: str,
    req: LockRequest,
    actor: AuthenticatedUser = Depends(require_support_user),
    session: Session = Depends(get_db),
):
    service.update_lock_status(session, actor, user_id, req.lock, req.reason)
    return MessageResponse(message="User account locked" if req.lock else "User account unlocked")


@router.put("/users/{user_id}/subscription-end-date", response_model=SubscriptionEndDateResponse)
@router.put("/users/{user_id}/subscribe-till", response_model=SubscriptionEndDateResponse)
def update_subscription_end_date(
    user_id: str,
    req: SubscriptionEndDateRequest,
    actor: AuthenticatedUser = Depends(require_support_user),
    session: Session = Depends(get_db),
):
    """Set a future end date; this activates the subscription."""
    end_date = service.update_subscription_end_date(session, actor, user_id, req.subscription_end_date)
    return SubscriptionEndDateResponse(message="Subscription end date updated", subscription_end_date=end_date)


@router.put("/users/{user_id}/renewal-date", response_model=RenewalDateResponse)
def update_renewal_date(
    user_id: str,
    req: RenewalDateRequest,
    actor: AuthenticatedUser = Depends(require_support_user),
    session: Session = Depends(get_db),
):
    renewal_date = service.update_renewal_date(session, actor, user_id, req.renewal_date)
    return RenewalDateResponse(message="Renewal date updated", renewal_date=renewal_date)


@router.put("/users/{user_id}/expire-subscription", response_model=ExpireSubscriptionResponse)
def expire_subscription(
    user_id: str,
    actor: AuthenticatedUser = Depends(require_support_user),
    session: Session = Depends(get_db),
):
    """
    Expire a subscription (end date = yesterday).
    Sole-admin groups become read-only; co-admin groups demote the user to adult.
    """
    logger.info(f"[support] expire subscription requested by {actor.user_id}: {user_id}")
    result = service.expire_subscription(session, actor, user_id)
    return ExpireSubscriptionResponse(
        message="Subscription expired",
        subscription_end_date=result.subscription_end_date,
        groups_affected=result.groups_affected,
    )


@router.get("/audit-logs", response_model=AuditLogListResponse)
def get_audit_logs(
    search: str = Query(""),
    action: str = Query(""),
    page: int = Query(1),
    limit: int = Query(50),
    actor: AuthenticatedUser = Depends(require_support_user),
    session: Session = Depends(get_db),
):
    logs, pagination = service.get_audit_logs(session, search=search, action=action, page=page, limit=limit)
    return AuditLogListResponse(logs=logs, pagination=pagination)
