"""
Tests for group access rules: read-only state, admin/trial permissions and
wiki visibility.
"""
from datetime import datetime, timedelta, timezone

import pytest

from family_helper.core.config import settings
from family_helper.core.timeutil import utc_now
from family_helper.features.access.permissions import (
    NO_ACTIVE_ADMIN,
    READ_ONLY,
    READ_ONLY_UNTIL,
    can_view_wiki,
    get_read_only_error_response,
    has_admin_permissions,
    is_group_read_only,
    is_subscription_active,
)
from family_helper.models.group import Group, GroupMember, GroupWikiSettings
from family_helper.models.user import UserAccess


class TestIsGroupReadOnly:
    def test_no_active_admin_is_read_only(self):
        assert is_group_read_only(Group(has_active_admin=False)) is True

    def test_active_admin_without_legacy_date(self):
        assert is_group_read_only(Group(has_active_admin=True, read_only_until=None)) is False

    def test_future_read_only_until(self):
        assert is_group_read_only(Group(read_only_until=utc_now() + timedelta(days=3))) is True

    def test_past_read_only_until(self):
        assert is_group_read_only(Group(read_only_until=utc_now() - timedelta(days=3))) is False

    def test_missing_group_is_not_read_only(self):
        assert is_group_read_only(None) is False

    def test_naive_datetime_treated_as_utc(self):
        naive_future = (utc_now() + timedelta(hours=2)).replace(tzinfo=None)
        assert is_group_read_only(Group(read_only_until=naive_future)) is True

    def test_explicit_now(self):
        until = datetime(2030, 1, 1, tzinfo=timezone.utc)
        group = Group(read_only_until=until)
        assert is_group_read_only(group, now=until - timedelta(seconds=1)) is True
        assert is_group_read_only(group, now=until) is False


class TestReadOnlyErrorResponse:
    def test_no_active_admin_takes_priority(self):
        group = Group(has_active_admin=False, read_only_until=utc_now() + timedelta(days=5))
        response = get_read_only_error_response(group)
        assert response["code"] == NO_ACTIVE_ADMIN
        assert response["error"] == "Group is read-only"
        assert "no active admin" in response["message"]

    def test_legacy_date_message(self):
        group = Group(read_only_until=datetime(2027, 3, 5, 12, 0, tzinfo=timezone.utc))
        response = get_read_only_error_response(group)
        assert response["code"] == READ_ONLY_UNTIL
        assert "until 5 March 2027" in response["message"]

    def test_generic_fallback(self):
        assert get_read_only_error_response(None)["code"] == READ_ONLY
        assert get_read_only_error_response(Group())["code"] == READ_ONLY

    def test_shape(self):
        assert set(get_read_only_error_response(Group(has_active_admin=False))) == {"error", "message", "code"}


class TestHasAdminPermissions:
    def test_admin_role_regardless_of_subscription(self):
        old_unsubscribed = UserAccess(is_subscribed=False, created_at=utc_now() - timedelta(days=400))
        assert has_admin_permissions(GroupMember(role="admin")) is True
        assert has_admin_permissions(GroupMember(role="admin", user=old_unsubscribed)) is True

    def test_trial_user_within_window(self):
        member = GroupMember(
            role="adult",
            user=UserAccess(is_subscribed=False, created_at=utc_now() - timedelta(days=19)),
        )
        assert has_admin_permissions(member) is True

    def test_trial_user_past_window(self):
        member = GroupMember(
            role="adult",
            user=UserAccess(is_subscribed=False, created_at=utc_now() - timedelta(days=21)),
        )
        assert has_admin_permissions(member) is False

    def test_trial_boundary_is_inclusive(self):
        now = datetime(2027, 1, 21, tzinfo=timezone.utc)
        member = GroupMember(
            role="child",
            user=UserAccess(is_subscribed=False, created_at=now - timedelta(days=20)),
        )
        assert has_admin_permissions(member, now=now) is True

    def test_subscribed_new_user_is_not_trial(self):
        member = GroupMember(
            role="adult",
            user=UserAccess(is_subscribed=True, created_at=utc_now() - timedelta(days=1)),
        )
        assert has_admin_permissions(member) is False

    def test_member_without_user(self):
        assert has_admin_permissions(GroupMember(role="parent")) is False

    def test_missing_member(self):
        assert has_admin_permissions(None) is False

    def test_trial_length_from_settings(self, monkeypatch):
        monkeypatch.setattr(settings, "TRIAL_PERIOD_DAYS", 5)
        member = GroupMember(
            role="adult",
            user=UserAccess(is_subscribed=False, created_at=utc_now() - timedelta(days=6)),
        )
        assert has_admin_permissions(member) is False


class TestSubscriptionActive:
    def test_unsubscribed(self):
        assert is_subscription_active(False, None) is False

    def test_no_end_date(self):
        assert is_subscription_active(True, None) is True

    def test_end_date_passed(self):
        assert is_subscription_active(True, utc_now() - timedelta(minutes=1)) is False

    def test_end_date_ahead(self):
        assert is_subscription_active(True, utc_now() + timedelta(days=1)) is True


@pytest.mark.parametrize("role,flag", [
    ("admin", "wiki_visible_to_admins"),
    ("parent", "wiki_visible_to_parents"),
    ("adult", "wiki_visible_to_adults"),
    ("caregiver", "wiki_visible_to_caregivers"),
    ("child", "wiki_visible_to_children"),
])
def test_can_view_wiki_per_role(role, flag):
    assert can_view_wiki(role, GroupWikiSettings(**{flag: True})) is True
    assert can_view_wiki(role, GroupWikiSettings()) is False


def test_can_view_wiki_without_settings_or_unknown_role():
    assert can_view_wiki("admin", None) is False
    assert can_view_wiki("stranger", GroupWikiSettings(wiki_visible_to_admins=True)) is False
