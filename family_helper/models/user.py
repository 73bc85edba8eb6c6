"""
family_helper/models/user.py

User records as seen by the support console and the permission rules.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import ConfigDict

from family_helper.models.base import CamelModel


class UserAccess(CamelModel):
    """The subset of a user the permission rules look at."""
    model_config = ConfigDict(frozen=True)

    is_subscribed: bool = False
    created_at: Optional[datetime] = None
    subscription_end_date: Optional[datetime] = None


class User(CamelModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    member_icon: Optional[str] = None
    icon_color: Optional[str] = None
    profile_photo_file_id: Optional[str] = None
    is_subscribed: bool = False
    subscription_id: Optional[str] = None
    subscription_start_date: Optional[datetime] = None
    subscription_end_date: Optional[datetime] = None
    renewal_date: Optional[datetime] = None
    subscription_manually_expired: bool = False
    storage_limit_gb: int = 0
    is_support_user: bool = False
    is_locked: bool = False
    locked_at: Optional[datetime] = None
    locked_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    last_login: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Any) -> "User":
        return cls.model_validate(dict(row._mapping))
