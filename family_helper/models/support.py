"""
family_helper/models/support.py

Results of support-console operations.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import Field

from family_helper.models.base import CamelModel


class GroupReadOnlyChange(CamelModel):
    """A group left without an actively subscribed admin."""
    group_id: str
    group_name: Optional[str] = None
    status: str = "read-only"


class RoleChange(CamelModel):
    """An expiring admin demoted because a co-admin is still subscribed."""
    group_id: str
    group_name: Optional[str] = None
    previous_role: str = "admin"
    new_role: str = "adult"


class GroupsAffected(CamelModel):
    read_only: List[GroupReadOnlyChange] = Field(default_factory=list)
    role_changes: List[RoleChange] = Field(default_factory=list)


class ExpiryResult(CamelModel):
    user_id: str
    subscription_end_date: datetime
    groups_affected: GroupsAffected


class SupportAuditLog(CamelModel):
    log_id: int
    performed_by_id: str
    performed_by_email: Optional[str] = None
    target_user_id: str
    target_user_email: Optional[str] = None
    action: str
    details: Optional[str] = None
    previous_value: Optional[str] = None
    new_value: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: Optional[datetime] = None


class Pagination(CamelModel):
    page: int
    limit: int
    total: int
    total_pages: int

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "Pagination":
        return cls(page=page, limit=limit, total=total, total_pages=-(-total // limit) if limit else 0)
