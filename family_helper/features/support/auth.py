"""
Support-user gate.

Support users may change any user's subscription, lock and support flags.
The gate rejects:
- callers whose user row does not exist (401)
- locked accounts, even with the support flag (403 account_locked)
- callers without the support flag (403 support_required)
"""
import logging

from fastapi import Depends

from family_helper.core.auth import AuthenticatedUser, get_current_user
from family_helper.core.errors import AuthenticationError, PermissionError

logger = logging.getLogger("family_helper.support")


def require_support_user(user: AuthenticatedUser = Depends(get_current_user)) -> AuthenticatedUser:
    """
    FastAPI dependency: require an unlocked support user.

    Usage:
        @router.get("/support/endpoint")
        def endpoint(actor: AuthenticatedUser = Depends(require_support_user)):
            ...
    """
    if user.record is None:
        raise AuthenticationError("User not found", code="user_not_found")

    if user.record.is_locked:
        logger.warning("support.denied.locked", extra={"user_id": user.user_id})
        raise PermissionError("Account is locked", code="account_locked")

    if not user.record.is_support_user:
        logger.warning("support.denied.not_support", extra={"user_id": user.user_id})
        raise PermissionError("Support access required", code="support_required")

    return user
