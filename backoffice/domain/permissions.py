from __future__ import annotations

from collections.abc import Iterable

PERM_WILDCARD = "*"
ADMIN_ROLE_NAME = "admin"
STAFF_ROLE_NAME = "staff"

PERM_MANAGE_ROLES = "manage_roles"


def is_admin_role_name(name: str | None) -> bool:
    return isinstance(name, str) and name.strip().lower() == ADMIN_ROLE_NAME


def has_direct_permission(granted: Iterable[str], permission: str) -> bool:
    names = set(granted)
    return permission in names or PERM_WILDCARD in names
