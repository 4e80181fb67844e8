from __future__ import annotations

from backoffice.domain.models import AuthzState, Role
from backoffice.services.normalizer import extract_id, resolve_role


def get_user_roles(state: AuthzState, user_id: str) -> list[Role]:
    if not user_id:
        return []
    roles: list[Role] = []
    for assignment in state.user_role_assignments:
        if extract_id(assignment.user_id) != user_id:
            continue
        role = resolve_role(state, assignment.role_id)
        if role is not None:
            roles.append(role)
    return roles


def has_permission(state: AuthzState, user_id: str, permission_name: str) -> bool:
    return any(
        permission.name == permission_name
        for role in get_user_roles(state, user_id)
        for permission in role.permissions
    )


def access_candidates(resource: str, action: str) -> list[str]:
    # Remote permission names follow no single convention; this list is a
    # best guess and may under- or over-match.
    base = f"{action}_{resource}"
    plural = f"{action}_{resource}s"
    candidates = [base, plural, base.lower(), plural.lower(), f"{resource}_{action}"]
    return list(dict.fromkeys(candidates))


def can_access(state: AuthzState, user_id: str, resource: str, action: str) -> bool:
    return any(has_permission(state, user_id, name) for name in access_candidates(resource, action))


def effective_permission_names(state: AuthzState, user_id: str) -> list[str]:
    names: dict[str, None] = {}
    for role in get_user_roles(state, user_id):
        for permission in role.permissions:
            if permission.name:
                names.setdefault(permission.name, None)
    return list(names)
