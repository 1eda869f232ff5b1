import uuid
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from app.auth.permissions import (
    MODULE_DISABLED,
    MODULE_REVOKED,
    FieldAccess,
    PermissionMatrix,
    allowed_actions,
    can_perform,
    ensure_fields_editable,
    resolve_field_permissions,
)
from app.core.exceptions import ConfigurationError, ValidationError


SCHOOL = uuid.uuid4()
OTHER_SCHOOL = uuid.uuid4()
USER = uuid.uuid4()


def assignment(role, school_id=SCHOOL, **kwargs):
    values = {
        "user_id": USER,
        "school_id": school_id,
        "role": role,
        "department": None,
        "year_group": None,
        "is_active": True,
        "expires_at": None,
    }
    values.update(kwargs)
    return SimpleNamespace(**values)


MATRIX = PermissionMatrix.from_config(
    {
        "teacher": {"grades": ["read", "write"], "students": ["read"]},
        "hod": {"grades": {"approve": {"department": "$department"}}},
        "parent": {"grades": {"read": {"own_records": True}}},
        "dsl": {"safeguarding_logs": ["read", "write", "escalate"]},
    }
)


def decide(assignments, resource, action, **kwargs):
    return can_perform(USER, SCHOOL, resource, action, assignments=assignments, matrix=MATRIX, **kwargs)


def test_rule_match_allows():
    decision = decide([assignment("teacher")], "grades", "write")
    assert decision.allowed
    assert decision.role == "teacher"


def test_missing_rule_denies():
    decision = decide([assignment("teacher")], "grades", "delete")
    assert not decision.allowed
    assert decision.reason == "no_matching_rule"


def test_super_admin_bypasses_matrix_and_modules():
    decision = decide(
        [assignment("super_admin", school_id=None)],
        "financial_data",
        "delete",
        module_access={"financial_data": MODULE_REVOKED},
    )
    assert decision.allowed
    assert decision.reason == "super_admin"


def test_assignment_in_other_school_does_not_count():
    decision = decide([assignment("teacher", school_id=OTHER_SCHOOL)], "grades", "read")
    assert not decision.allowed
    assert decision.reason == "no_active_assignment"


def test_expired_and_inactive_assignments_are_ignored():
    past = datetime.now(timezone.utc) - timedelta(days=1)
    assert not decide([assignment("teacher", expires_at=past)], "grades", "read").allowed
    assert not decide([assignment("teacher", is_active=False)], "grades", "read").allowed


def test_naive_expiry_is_treated_as_utc():
    future = (datetime.now(timezone.utc) + timedelta(days=1)).replace(tzinfo=None)
    assert decide([assignment("teacher", expires_at=future)], "grades", "read").allowed


def test_disabled_module_is_read_only():
    access = {"grades": MODULE_DISABLED}
    assert decide([assignment("teacher")], "grades", "read", module_access=access).allowed
    decision = decide([assignment("teacher")], "grades", "write", module_access=access)
    assert not decision.allowed
    assert decision.reason == "module_disabled"


def test_disabled_module_stays_readable_to_writers():
    matrix = PermissionMatrix.from_config({"ta": {"grades": ["write"]}})
    access = {"grades": MODULE_DISABLED}
    kwargs = {"assignments": [assignment("ta")], "matrix": matrix, "module_access": access}
    read = can_perform(USER, SCHOOL, "grades", "read", **kwargs)
    assert read.allowed
    assert read.reason == "rule_matched"
    write = can_perform(USER, SCHOOL, "grades", "write", **kwargs)
    assert not write.allowed
    assert write.reason == "module_disabled"

    # Without the module being disabled, write does not imply read
    assert not can_perform(USER, SCHOOL, "grades", "read", assignments=[assignment("ta")], matrix=matrix).allowed


def test_revoked_module_denies_reads():
    decision = decide([assignment("teacher")], "grades", "read", module_access={"grades": MODULE_REVOKED})
    assert decision.reason == "module_revoked"


def test_department_condition_uses_assignment_scope():
    hod = assignment("hod", department="science")
    assert decide([hod], "grades", "approve", context={"department": "science"}).allowed
    assert not decide([hod], "grades", "approve", context={"department": "maths"}).allowed


def test_scoped_assignment_restricts_base_role():
    tutor = assignment("teacher", year_group="Year 7")
    assert decide([tutor], "students", "read", context={"year_group": "Year 7"}).allowed
    assert not decide([tutor], "students", "read", context={"year_group": "Year 9"}).allowed


def test_own_records_condition():
    parent = assignment("parent")
    assert decide([parent], "grades", "read", context={"own_records": True}).allowed
    assert not decide([parent], "grades", "read", context={"own_records": False}).allowed


def test_unknown_resource_or_action_is_a_configuration_error():
    with pytest.raises(ConfigurationError):
        decide([assignment("teacher")], "spaceships", "read")
    with pytest.raises(ConfigurationError):
        decide([assignment("teacher")], "grades", "launch")


def test_allowed_actions_lists_every_granted_action():
    actions = allowed_actions(USER, SCHOOL, "safeguarding_logs", assignments=[assignment("dsl")], matrix=MATRIX)
    assert actions == frozenset({"read", "write", "escalate"})


def test_field_permissions_merge_across_roles():
    rows = [
        SimpleNamespace(role="teacher", module_key="admissions", field_name="medical_information",
                        is_visible=False, is_editable=False, is_required=False),
        SimpleNamespace(role="nurse", module_key="admissions", field_name="medical_information",
                        is_visible=True, is_editable=False, is_required=True),
    ]
    merged = resolve_field_permissions(["teacher", "nurse"], "admissions", rows)
    assert merged["medical_information"] == FieldAccess(is_visible=True, is_editable=False, is_required=True)

    with pytest.raises(ValidationError) as exc:
        ensure_fields_editable(["student_name", "medical_information"], merged)
    assert exc.value.code == "field_not_editable"
