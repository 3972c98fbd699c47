"""
test_permissions.py — Unit tests for permission aggregation and guards.

log_activity runs against the FakeSession from conftest; no database required.
"""

import asyncio
import json

import pytest

from app.models.orm_models import ActivityLog
from app.services.permissions import (
    PERMISSION_FLAGS,
    PermissionDenied,
    UserPermissions,
    aggregate_permissions,
    entity_grant_allows,
    log_activity,
    master_permissions,
    require_delete,
    require_edit,
    require_invite,
    require_view,
)


def _record(entity_type="company", entity_id=1, **flags):
    record = {"entity_type": entity_type, "entity_id": entity_id}
    record.update({f: flags.get(f, 0) for f in PERMISSION_FLAGS})
    return record


class TestAggregatePermissions:

    def test_no_records_no_permissions(self):
        perms = aggregate_permissions(5, 0, [])
        assert perms.user_id == 5
        assert not any(getattr(perms, f) for f in PERMISSION_FLAGS)
        assert perms.company_ids == []

    def test_flags_are_or_across_roles(self):
        perms = aggregate_permissions(5, 0, [
            _record("company", 1, can_view=1),
            _record("project", 9, can_view=1, can_edit=1),
            _record("company", 2, can_invite=1),
        ])
        assert perms.can_view and perms.can_edit and perms.can_invite
        assert not perms.can_delete and not perms.can_manage_roles
        assert perms.company_ids == [1, 2]

    def test_master_holds_everything(self):
        perms = aggregate_permissions(1, 1, [])
        assert perms.is_master
        assert all(getattr(perms, f) for f in PERMISSION_FLAGS)

    def test_master_permissions_helper(self):
        perms = master_permissions(3, company_id=4)
        assert perms.user_id == 3 and perms.is_master
        assert all(getattr(perms, f) for f in PERMISSION_FLAGS)
        assert perms.company_ids == [4]


class TestEntityGrantAllows:

    def test_master_always_allowed(self):
        assert entity_grant_allows(1, [], "can_manage_roles")

    def test_needs_flag_on_a_grant(self):
        grants = [_record(can_view=1), _record(can_invite=1)]
        assert entity_grant_allows(0, grants, "can_invite")
        assert not entity_grant_allows(0, grants, "can_manage_roles")


class TestGuards:

    @pytest.mark.parametrize("guard,flag", [
        (require_view, "can_view"),
        (require_edit, "can_edit"),
        (require_delete, "can_delete"),
        (require_invite, "can_invite"),
    ])
    def test_guard_raises_without_flag(self, guard, flag):
        with pytest.raises(PermissionDenied) as exc:
            guard(UserPermissions(user_id=1))
        assert "permission" in exc.value.message

    @pytest.mark.parametrize("guard,flag", [
        (require_view, "can_view"),
        (require_edit, "can_edit"),
        (require_delete, "can_delete"),
        (require_invite, "can_invite"),
    ])
    def test_guard_passes_with_flag(self, guard, flag):
        guard(UserPermissions(user_id=1, **{flag: True}))


class TestLogActivity:

    def test_writes_json_details(self, fake_session):
        session = fake_session
        asyncio.run(log_activity(session, 4, "update", "stage", 9, {"name": "Stage 2"}, "10.0.0.1"))
        [row] = session.added_of(ActivityLog)
        assert (row.user_id, row.action, row.entity_type, row.entity_id) == (4, "update", "stage", 9)
        assert json.loads(row.details) == {"name": "Stage 2"}
        assert row.ip_address == "10.0.0.1"

    def test_empty_details_stored_as_null(self, fake_session):
        session = fake_session
        asyncio.run(log_activity(session, 4, "login", "user", 4))
        [row] = session.added_of(ActivityLog)
        assert row.details is None and row.ip_address is None

    def test_failed_insert_does_not_raise(self, fake_session):
        session = fake_session
        session.flush_error = RuntimeError("activity_log insert failed")
        assert asyncio.run(log_activity(session, 4, "delete", "lot", 12)) is None
        assert session.flush_error is None
