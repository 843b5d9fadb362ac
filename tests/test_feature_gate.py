from __future__ import annotations

from app.domain.permissions import FeatureFlags, FeatureKey, feature_allowed, resolve_feature_flag
from app.domain.roles import RoleFlags

MEMBER = RoleFlags()
ADMIN = RoleFlags(is_admin=True)


def test_unset_flags_count_as_enabled() -> None:
    assert resolve_feature_flag(None)
    assert not resolve_feature_flag(False)
    assert feature_allowed(FeatureKey.PROJECTS, flags=FeatureFlags(), role_flags=MEMBER, department_key="IT")


def test_projects_need_board_or_table() -> None:
    table_only = FeatureFlags(can_view_board=False, can_view_table=True)
    neither = FeatureFlags(can_view_board=False, can_view_table=False)
    assert feature_allowed(FeatureKey.PROJECTS, flags=table_only, role_flags=MEMBER, department_key="IT")
    assert not feature_allowed(FeatureKey.PROJECTS, flags=neither, role_flags=MEMBER, department_key="IT")


def test_department_scoping() -> None:
    flags = FeatureFlags()
    assert not feature_allowed(FeatureKey.PROJECTS, flags=flags, role_flags=MEMBER, department_key="ENGINEERING")
    assert feature_allowed(FeatureKey.HELPDESK, flags=flags, role_flags=MEMBER, department_key="ENGINEERING")
    assert not feature_allowed(FeatureKey.HELPDESK, flags=flags, role_flags=MEMBER, department_key="DIGITALIZATION")
    assert not feature_allowed(FeatureKey.DASHBOARD, flags=flags, role_flags=MEMBER, department_key=None)


def test_admin_bypasses_department_but_not_switch() -> None:
    assert feature_allowed(FeatureKey.DASHBOARD, flags=FeatureFlags(), role_flags=ADMIN, department_key=None)
    disabled = FeatureFlags(can_view_dashboard=False)
    assert not feature_allowed(FeatureKey.DASHBOARD, flags=disabled, role_flags=ADMIN, department_key=None)
