"""
Permission resolver.

can_perform is a pure function over already-loaded rows: role assignments, the
permission matrix and the school's module flags. Loading and auditing live in
app.auth.services.authorize.

Evaluation order:
    1. unknown resource / action tag -> ConfigurationError
    2. active super_admin assignment (global or this school) -> allow
    3. no active, unexpired assignment for the school -> deny
    4. module revoked -> deny; module disabled -> deny anything but read
    5. any assignment with a matching rule whose scope and conditions hold -> allow
    6. deny
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple
from uuid import UUID

from app.core.enums import AppRole, PermissionType, ResourceType
from app.core.exceptions import ConfigurationError, ValidationError

MODULE_ENABLED = "enabled"
MODULE_DISABLED = "disabled"
MODULE_REVOKED = "revoked"

# Assignment attributes a scoped assignment restricts on, and that conditions may reference as "$name"
SCOPE_KEYS = ("department", "year_group")

RuleKey = Tuple[str, str, str]


def as_aware(value: Optional[datetime]) -> Optional[datetime]:
    """Some drivers hand back naive datetimes; treat them as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def parse_resource(resource: Any) -> ResourceType:
    try:
        return ResourceType(resource)
    except ValueError:
        raise ConfigurationError(f"Unknown resource type '{resource}'")


def parse_action(action: Any) -> PermissionType:
    try:
        return PermissionType(action)
    except ValueError:
        raise ConfigurationError(f"Unknown permission action '{action}'")


class PermissionMatrix:
    """
    (role, resource, action) -> list of condition payloads. A None payload is an
    unconditional grant. No entry means deny.
    """

    def __init__(self, rules: Optional[Mapping[RuleKey, Sequence[Optional[dict]]]] = None) -> None:
        self._rules: Dict[RuleKey, List[Optional[dict]]] = {}
        for (role, resource, action), payloads in (rules or {}).items():
            for conditions in payloads:
                self.add(role, resource, action, conditions)

    def add(self, role: str, resource: Any, action: Any, conditions: Optional[dict] = None) -> None:
        key = (str(role), parse_resource(resource).value, parse_action(action).value)
        self._rules.setdefault(key, []).append(conditions or None)

    @classmethod
    def from_rows(cls, rows: Iterable[Any]) -> "PermissionMatrix":
        """Build from RolePermission rows (role, resource, permission, conditions)."""
        matrix = cls()
        for row in rows:
            matrix.add(row.role, row.resource, row.permission, row.conditions)
        return matrix

    @classmethod
    def from_config(cls, config: Mapping[str, Mapping[str, Any]]) -> "PermissionMatrix":
        """
        Build from a nested mapping:
            {"teacher": {"grades": {"read": True, "write": {"department": "$department"}}}}
        or {"teacher": {"grades": ["read", "write"]}}.
        """
        matrix = cls()
        for role, resources in config.items():
            for resource, actions in resources.items():
                if isinstance(actions, Mapping):
                    for action, conditions in actions.items():
                        if conditions is False:
                            continue
                        matrix.add(role, resource, action, conditions if isinstance(conditions, dict) else None)
                else:
                    for action in actions:
                        matrix.add(role, resource, action)
        return matrix

    def rules_for(self, role: str, resource: str, action: str) -> List[Optional[dict]]:
        return list(self._rules.get((role, resource, action), ()))

    def __len__(self) -> int:
        return sum(len(v) for v in self._rules.values())


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: str
    role: Optional[str] = None

    def __bool__(self) -> bool:
        return self.allowed


def is_active_assignment(assignment: Any, now: datetime) -> bool:
    if not assignment.is_active:
        return False
    expires_at = as_aware(assignment.expires_at)
    return expires_at is None or expires_at > now


def _scope_matches(assignment: Any, context: Mapping[str, Any]) -> bool:
    for key in SCOPE_KEYS:
        scope = getattr(assignment, key, None)
        if scope is not None and context.get(key) != scope:
            return False
    return True


def _conditions_hold(conditions: Optional[dict], assignment: Any, context: Mapping[str, Any]) -> bool:
    if not conditions:
        return True
    for key, expected in conditions.items():
        if isinstance(expected, str) and expected.startswith("$"):
            expected = getattr(assignment, expected[1:], None)
            if expected is None:
                return False
        if context.get(key) != expected:
            return False
    return True


def can_perform(
    user_id: UUID,
    school_id: UUID,
    resource: Any,
    action: Any,
    *,
    assignments: Iterable[Any],
    matrix: PermissionMatrix,
    module_access: Optional[Mapping[str, str]] = None,
    context: Optional[Mapping[str, Any]] = None,
    now: Optional[datetime] = None,
) -> Decision:
    """Decide whether user_id may perform action on resource in school_id. See module docstring."""
    resource_type = parse_resource(resource)
    action_type = parse_action(action)
    now = now or datetime.now(timezone.utc)
    context = context or {}

    live = [
        a for a in assignments
        if a.user_id == user_id and is_active_assignment(a, now)
    ]
    for a in live:
        if a.role == AppRole.SUPER_ADMIN.value and (a.school_id is None or a.school_id == school_id):
            return Decision(True, "super_admin", a.role)

    in_school = [a for a in live if a.school_id == school_id]
    if not in_school:
        return Decision(False, "no_active_assignment")

    module_state = (module_access or {}).get(resource_type.value, MODULE_ENABLED)
    if module_state == MODULE_REVOKED:
        return Decision(False, "module_revoked")
    if module_state == MODULE_DISABLED and action_type != PermissionType.READ:
        return Decision(False, "module_disabled")

    granting = [action_type.value]
    if module_state == MODULE_DISABLED:
        # A read-only module stays readable to whoever could have written to it
        granting.append(PermissionType.WRITE.value)

    for a in in_school:
        if not _scope_matches(a, context):
            continue
        for granted in granting:
            for conditions in matrix.rules_for(a.role, resource_type.value, granted):
                if _conditions_hold(conditions, a, context):
                    return Decision(True, "rule_matched", a.role)
    return Decision(False, "no_matching_rule")


def allowed_actions(
    user_id: UUID,
    school_id: UUID,
    resource: Any,
    *,
    assignments: Iterable[Any],
    matrix: PermissionMatrix,
    module_access: Optional[Mapping[str, str]] = None,
    context: Optional[Mapping[str, Any]] = None,
    now: Optional[datetime] = None,
) -> frozenset:
    """Every action the user holds on resource under context."""
    assignments = list(assignments)
    return frozenset(
        action.value
        for action in PermissionType
        if can_perform(
            user_id,
            school_id,
            resource,
            action,
            assignments=assignments,
            matrix=matrix,
            module_access=module_access,
            context=context,
            now=now,
        ).allowed
    )


# ----- Field permissions -----

@dataclass(frozen=True)
class FieldAccess:
    is_visible: bool = True
    is_editable: bool = True
    is_required: bool = False


def resolve_field_permissions(roles: Iterable[str], module_key: str, rows: Iterable[Any]) -> Dict[str, FieldAccess]:
    """
    Merge field flags across the caller's roles: visible / editable if any role allows,
    required if any role requires. Fields with no row are unrestricted.
    """
    roles = set(roles)
    merged: Dict[str, FieldAccess] = {}
    for row in rows:
        if row.role not in roles or row.module_key != module_key:
            continue
        prev = merged.get(row.field_name)
        if prev is None:
            merged[row.field_name] = FieldAccess(row.is_visible, row.is_editable, row.is_required)
        else:
            merged[row.field_name] = FieldAccess(
                prev.is_visible or row.is_visible,
                prev.is_editable or row.is_editable,
                prev.is_required or row.is_required,
            )
    return merged


def ensure_fields_editable(fields: Iterable[str], access: Mapping[str, FieldAccess]) -> None:
    for name in fields:
        rule = access.get(name)
        if rule is not None and not rule.is_editable:
            raise ValidationError(f"Field '{name}' is not editable for your role", field=name, code="field_not_editable")


def ensure_required_fields(values: Mapping[str, Any], access: Mapping[str, FieldAccess]) -> None:
    for name, rule in access.items():
        if rule.is_required and name in values and values[name] in (None, ""):
            raise ValidationError(f"Field '{name}' is required", field=name, code="missing_required_field")
