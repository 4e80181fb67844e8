from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import ValidationError

from backoffice.domain.models import (
    AuthzState,
    EmbeddedRef,
    IdRef,
    Permission,
    Ref,
    Role,
    RoleUser,
    UserRoleAssignment,
)
from backoffice.infra.log import get_logger

logger = get_logger(__name__)

COLLECTION_KEY_PERMISSIONS = "permission"
COLLECTION_KEY_ROLES = "roles"
COLLECTION_KEY_USER_ROLES = "userRoles"
COLLECTION_KEY_USERS = "users"


def extract_id(ref: Any) -> str:
    if ref is None:
        return ""
    if isinstance(ref, str):
        return ref
    if isinstance(ref, IdRef | EmbeddedRef):
        return ref.id
    if isinstance(ref, Mapping):
        for key in ("_id", "id"):
            value = ref.get(key)
            if isinstance(value, str) and value:
                return value
        return ""
    value = getattr(ref, "id", None)
    return value if isinstance(value, str) else ""


def to_ref(raw: Any) -> Ref:
    if isinstance(raw, Mapping):
        return EmbeddedRef(id=extract_id(raw), value=dict(raw))
    return IdRef(id=extract_id(raw))


def _carries_role_body(value: Mapping[str, Any]) -> bool:
    return "name" in value or "permissions" in value


def unwrap_collection(payload: Any, key: str) -> list[Any]:
    if isinstance(payload, list):
        return payload
    if not isinstance(payload, Mapping):
        if payload is not None:
            logger.warning("Unexpected %s response format: %r", key, type(payload).__name__)
        return []
    if key in payload:
        inner = payload[key]
        if isinstance(inner, list):
            return inner
        if isinstance(inner, Mapping):
            return [inner]
        return []
    data = payload.get("data")
    if isinstance(data, list):
        return data
    if not payload:
        return []
    return [payload]


def normalize_permission(raw: Any) -> Permission | None:
    if not isinstance(raw, Mapping):
        return None
    permission_id = extract_id(raw)
    name = raw.get("name")
    if not permission_id or not isinstance(name, str):
        return None
    try:
        return Permission(
            id=permission_id,
            name=name,
            description=raw.get("description"),
            resource=raw.get("resource"),
            action=raw.get("action"),
        )
    except ValidationError:
        return None


def normalize_role(raw: Any, known_permissions: Mapping[str, Permission] | None = None) -> Role | None:
    if isinstance(raw, Role):
        return raw
    if not isinstance(raw, Mapping):
        return None
    role_id = extract_id(raw)
    name = raw.get("name")
    if not role_id or not isinstance(name, str):
        return None
    lookup = known_permissions or {}
    permissions: list[Permission] = []
    raw_permissions = raw.get("permissions")
    for item in raw_permissions if isinstance(raw_permissions, list) else []:
        if isinstance(item, str):
            resolved = lookup.get(item)
        else:
            resolved = normalize_permission(item)
        if resolved is not None:
            permissions.append(resolved)
    try:
        return Role(
            id=role_id,
            name=name,
            description=raw.get("description"),
            permissions=tuple(permissions),
            created_at=raw.get("createdAt"),
            updated_at=raw.get("updatedAt"),
        )
    except ValidationError:
        return None


def normalize_assignment(raw: Any) -> tuple[UserRoleAssignment | None, Role | None]:
    if not isinstance(raw, Mapping):
        return None, None
    user_ref = to_ref(raw.get("userId"))
    role_ref = to_ref(raw.get("roleId"))
    if not user_ref.id or not role_ref.id:
        return None, None
    embedded_role: Role | None = None
    if isinstance(role_ref, EmbeddedRef) and _carries_role_body(role_ref.value):
        embedded_role = normalize_role(role_ref.value)
    assigned_at = raw.get("assignedAt")
    assignment_id = extract_id(raw)
    try:
        assignment = UserRoleAssignment(
            id=assignment_id or None,
            user_id=user_ref.id,
            role_id=role_ref.id,
            assigned_by=extract_id(raw.get("assignedBy")),
            assigned_at=assigned_at if isinstance(assigned_at, str) else None,
        )
    except ValidationError:
        return None, None
    return assignment, embedded_role


def normalize_permissions(payload: Any) -> list[Permission]:
    items = unwrap_collection(payload, COLLECTION_KEY_PERMISSIONS)
    normalized = [normalize_permission(item) for item in items]
    return [item for item in normalized if item is not None]


def normalize_roles(payload: Any, known_permissions: Iterable[Permission] = ()) -> list[Role]:
    lookup = {item.id: item for item in known_permissions}
    items = unwrap_collection(payload, COLLECTION_KEY_ROLES)
    normalized = [normalize_role(item, lookup) for item in items]
    return [item for item in normalized if item is not None]


def normalize_assignments(payload: Any) -> tuple[list[UserRoleAssignment], dict[str, Role]]:
    assignments: list[UserRoleAssignment] = []
    embedded: dict[str, Role] = {}
    for item in unwrap_collection(payload, COLLECTION_KEY_USER_ROLES):
        assignment, role = normalize_assignment(item)
        if assignment is None:
            continue
        assignments.append(assignment)
        if role is not None:
            embedded[role.id] = role
    return assignments, embedded


def _text(value: Any) -> str:
    return value if isinstance(value, str) else ""


def normalize_user(raw: Any) -> RoleUser | None:
    if not isinstance(raw, Mapping):
        return None
    user_id = extract_id(raw)
    if not user_id:
        return None
    full_name = _text(raw.get("fullName")) or f"{_text(raw.get('firstName'))} {_text(raw.get('lastName'))}".strip()
    staff_id = raw.get("staffId")
    return RoleUser(
        id=user_id,
        full_name=full_name,
        email=_text(raw.get("email")),
        staff_id=staff_id if isinstance(staff_id, str) else None,
    )


def normalize_users(payload: Any) -> list[RoleUser]:
    normalized = [normalize_user(item) for item in unwrap_collection(payload, COLLECTION_KEY_USERS)]
    return [item for item in normalized if item is not None]


def resolve_role(state: AuthzState, ref: Any) -> Role | None:
    if isinstance(ref, Role):
        return ref
    if isinstance(ref, EmbeddedRef):
        ref = ref.value
    if isinstance(ref, Mapping) and _carries_role_body(ref):
        return normalize_role(ref)
    role_id = extract_id(ref)
    if not role_id:
        return None
    for role in state.roles:
        if role.id == role_id:
            return role
    return state.embedded_roles.get(role_id)
