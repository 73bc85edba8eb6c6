"""
family_helper/models/group.py

Group, membership and per-group settings as consumed by the access rules.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import ConfigDict

from family_helper.models.base import CamelModel
from family_helper.models.user import UserAccess


class MemberRole(str, Enum):
    ADMIN = "admin"
    PARENT = "parent"
    ADULT = "adult"
    CAREGIVER = "caregiver"
    CHILD = "child"


class Group(CamelModel):
    model_config = ConfigDict(frozen=True)

    group_id: Optional[str] = None
    name: Optional[str] = None
    has_active_admin: bool = True
    read_only_until: Optional[datetime] = None


class GroupMember(CamelModel):
    model_config = ConfigDict(frozen=True)

    group_member_id: Optional[str] = None
    group_id: Optional[str] = None
    user_id: Optional[str] = None
    role: str
    display_name: Optional[str] = None
    email: Optional[str] = None
    user: Optional[UserAccess] = None


class GroupWikiSettings(CamelModel):
    model_config = ConfigDict(frozen=True)

    wiki_visible_to_admins: bool = False
    wiki_visible_to_parents: bool = False
    wiki_visible_to_adults: bool = False
    wiki_visible_to_caregivers: bool = False
    wiki_visible_to_children: bool = False
