from __future__ import annotations

from backoffice.domain.models import AuthzState, Role, SessionUser
from backoffice.domain.permissions import (
    PERM_WILDCARD,
    STAFF_ROLE_NAME,
    has_direct_permission,
    is_admin_role_name,
)
from backoffice.infra.log import get_logger
from backoffice.services import permission_resolver
from backoffice.services.authz_store import AuthorizationStore

logger = get_logger(__name__)


class UserPermissions:
    """Permission checks for one session user.

    The admin bypass and the permissions carried on the session are evaluated
    here, before the resolver is consulted, so the resolver stays a pure
    function of the store's collections.
    """

    def __init__(self, store: AuthorizationStore, user: SessionUser | None) -> None:
        self._store = store
        self._user = user

    @property
    def user_id(self) -> str | None:
        return self._user.id if self._user is not None and self._user.id else None

    def _state(self) -> AuthzState:
        return self._store.snapshot()

    def assigned_roles(self) -> list[Role]:
        if self.user_id is None:
            return []
        return permission_resolver.get_user_roles(self._state(), self.user_id)

    @property
    def is_admin(self) -> bool:
        if self._user is None or self.user_id is None:
            return False
        if is_admin_role_name(self._user.role):
            return True
        return any(is_admin_role_name(role.name) for role in self.assigned_roles())

    @property
    def is_staff(self) -> bool:
        return self._user is not None and self._user.role == STAFF_ROLE_NAME

    def has_permission(self, permission_name: str) -> bool:
        if self._user is None or self.user_id is None:
            return False
        if self.is_admin:
            return True
        if has_direct_permission(self._user.permissions, permission_name):
            return True
        result = permission_resolver.has_permission(self._state(), self.user_id, permission_name)
        logger.debug("has_permission(%s, %s) -> %s", self.user_id, permission_name, result)
        return result

    def can_access(self, resource: str, action: str) -> bool:
        if self._user is None or self.user_id is None:
            return False
        if self.is_admin:
            return True
        if any(
            has_direct_permission(self._user.permissions, name)
            for name in permission_resolver.access_candidates(resource, action)
        ):
            return True
        return permission_resolver.can_access(self._state(), self.user_id, resource, action)

    def has_any_permission(self, permission_names: list[str]) -> bool:
        if self.user_id is None:
            return False
        if self.is_admin:
            return True
        return any(self.has_permission(name) for name in permission_names)

    def has_all_permissions(self, permission_names: list[str]) -> bool:
        if self.user_id is None:
            return False
        if self.is_admin:
            return True
        return all(self.has_permission(name) for name in permission_names)

    def all_permissions(self) -> list[str]:
        if self._user is None or self.user_id is None:
            return []
        if self.is_admin:
            return [PERM_WILDCARD]
        names = dict.fromkeys(self._user.permissions)
        for name in permission_resolver.effective_permission_names(self._state(), self.user_id):
            names.setdefault(name, None)
        return list(names)

    def guard(
        self,
        *,
        permission: str | None = None,
        resource: str | None = None,
        action: str | None = None,
    ) -> bool:
        if self.user_id is None:
            return False
        if self.is_admin:
            return True
        if permission and not self.has_permission(permission):
            return False
        if resource and action and not self.can_access(resource, action):
            return False
        roles = self.assigned_roles()
        if not roles:
            return False
        if not permission and not (resource and action):
            return True
        # the exact name must be held by a role, session permissions do not count here
        required = permission or f"{action}_{resource}"
        return any(item.name == required for role in roles for item in role.permissions)
