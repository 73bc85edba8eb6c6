"""
Group access rules.

- is_group_read_only(group)
- get_read_only_error_response(group)
- has_admin_permissions(group_member)
- can_view_wiki(role, wiki_settings)

All functions are pure and treat a missing group/member as "not read-only" /
"not admin". Trial users (unsubscribed, account younger than the trial window)
get admin-equivalent permissions.
"""

from datetime import datetime, timedelta
from typing import Dict, Optional

from family_helper.core.config import settings
from family_helper.core.timeutil import as_utc, utc_now
from family_helper.models.group import Group, GroupMember, GroupWikiSettings, MemberRole

NO_ACTIVE_ADMIN = "GROUP_NO_ACTIVE_ADMIN"
READ_ONLY_UNTIL = "GROUP_READ_ONLY_UNTIL"
READ_ONLY = "GROUP_READ_ONLY"

READ_ONLY_ERROR_CODES = (NO_ACTIVE_ADMIN, READ_ONLY_UNTIL, READ_ONLY)


def _format_long_date(value: datetime) -> str:
    # "5 March 2027"
    return f"{value.day} {value.strftime('%B %Y')}"


def is_group_read_only(group: Optional[Group], now: Optional[datetime] = None) -> bool:
    if group is None:
        return False

    if group.has_active_admin is False:
        return True

    read_only_until = as_utc(group.read_only_until)
    if read_only_until is not None and (as_utc(now) or utc_now()) < read_only_until:
        return True

    return False


def get_read_only_error_response(group: Optional[Group]) -> Dict[str, str]:
    if group is not None and group.has_active_admin is False:
        return {
            "error": "Group is read-only",
            "message": (
                "This group has no active admin with a valid subscription. "
                "All modifications are disabled until an admin subscribes."
            ),
            "code": NO_ACTIVE_ADMIN,
        }

    if group is not None and group.read_only_until is not None:
        until = _format_long_date(as_utc(group.read_only_until))
        return {
            "error": "Group is read-only",
            "message": (
                f"This group is in read-only mode until {until}. No new content can be added. "
                "An admin needs to resubscribe to restore full access."
            ),
            "code": READ_ONLY_UNTIL,
        }

    return {
        "error": "Group is read-only",
        "message": "This group is in read-only mode. No new content can be added.",
        "code": READ_ONLY,
    }


def is_on_trial(created_at: Optional[datetime], is_subscribed: bool, now: Optional[datetime] = None) -> bool:
    """Unsubscribed and within TRIAL_PERIOD_DAYS of account creation."""
    if is_subscribed or created_at is None:
        return False
    age = (as_utc(now) or utc_now()) - as_utc(created_at)
    return age <= timedelta(days=settings.TRIAL_PERIOD_DAYS)


def has_admin_permissions(group_member: Optional[GroupMember], now: Optional[datetime] = None) -> bool:
    if group_member is None:
        return False

    if group_member.role == MemberRole.ADMIN.value:
        return True

    user = group_member.user
    if user is not None and is_on_trial(user.created_at, user.is_subscribed, now):
        return True

    return False


def is_subscription_active(is_subscribed: bool, subscription_end_date: Optional[datetime], now: Optional[datetime] = None) -> bool:
    """Subscribed, and the end date (if any) has not passed."""
    if not is_subscribed:
        return False
    end = as_utc(subscription_end_date)
    if end is not None and end <= (as_utc(now) or utc_now()):
        return False
    return True


_WIKI_VISIBILITY = {
    MemberRole.ADMIN.value: "wiki_visible_to_admins",
    MemberRole.PARENT.value: "wiki_visible_to_parents",
    MemberRole.ADULT.value: "wiki_visible_to_adults",
    MemberRole.CAREGIVER.value: "wiki_visible_to_caregivers",
    MemberRole.CHILD.value: "wiki_visible_to_children",
}


def can_view_wiki(role: Optional[str], wiki_settings: Optional[GroupWikiSettings]) -> bool:
    if wiki_settings is None or role not in _WIKI_VISIBILITY:
        return False
    return bool(getattr(wiki_settings, _WIKI_VISIBILITY[role]))
