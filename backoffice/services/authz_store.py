from __future__ import annotations

import asyncio
from collections import Counter
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

from backoffice.adapters.base import RemoteAuthority
from backoffice.domain.errors import AuthzError, RemoteError
from backoffice.domain.models import (
    AuthzState,
    BusyFlag,
    LoadStatus,
    Permission,
    Role,
    RoleUser,
    UserRoleAssignment,
)
from backoffice.infra import config
from backoffice.infra.events import (
    EVENT_ERROR,
    EVENT_PERMISSIONS_REPLACED,
    EVENT_ROLES_REPLACED,
    EVENT_USER_ROLES_REPLACED,
    EventBus,
)
from backoffice.infra.log import get_logger
from backoffice.services import permission_resolver
from backoffice.services.normalizer import (
    normalize_assignments,
    normalize_permissions,
    normalize_roles,
    normalize_users,
)
from backoffice.services.request_lifecycle import (
    CHANNEL_PERMISSIONS,
    CHANNEL_ROLES,
    CHANNEL_USER_ROLES,
    CHANNEL_USERS,
    LoadResult,
    RequestLifecycleManager,
)

logger = get_logger(__name__)


class AuthorizationStore:
    def __init__(
        self,
        remote: RemoteAuthority,
        *,
        lifecycle: RequestLifecycleManager | None = None,
        events: EventBus | None = None,
    ) -> None:
        self._remote = remote
        self._lifecycle = lifecycle or RequestLifecycleManager()
        self._events = events or EventBus()
        self._permissions: tuple[Permission, ...] = ()
        self._roles: tuple[Role, ...] = ()
        self._assignments: tuple[UserRoleAssignment, ...] = ()
        self._embedded_roles: dict[str, Role] = {}
        self._busy: Counter[BusyFlag] = Counter()
        self._last_error: str | None = None
        self._loaded = False

    @property
    def remote(self) -> RemoteAuthority:
        return self._remote

    @property
    def events(self) -> EventBus:
        return self._events

    @property
    def lifecycle(self) -> RequestLifecycleManager:
        return self._lifecycle

    @property
    def permissions(self) -> tuple[Permission, ...]:
        return self._permissions

    @property
    def roles(self) -> tuple[Role, ...]:
        return self._roles

    @property
    def user_role_assignments(self) -> tuple[UserRoleAssignment, ...]:
        return self._assignments

    @property
    def last_error(self) -> str | None:
        return self._last_error

    @property
    def loaded(self) -> bool:
        return self._loaded

    def is_busy(self, flag: BusyFlag) -> bool:
        return self._busy[flag] > 0

    def busy_flags(self) -> dict[str, bool]:
        return {flag.value: self.is_busy(flag) for flag in BusyFlag}

    def begin(self, flag: BusyFlag) -> None:
        self._busy[flag] += 1

    def end(self, flag: BusyFlag) -> None:
        if self._busy[flag] > 0:
            self._busy[flag] -= 1

    def record_error(self, message: str | None) -> None:
        self._last_error = message
        self._events.publish_dict(EVENT_ERROR, {"message": message})

    def clear_error(self) -> None:
        if self._last_error is not None:
            self.record_error(None)

    def snapshot(self) -> AuthzState:
        return AuthzState(
            permissions=self._permissions,
            roles=self._roles,
            user_role_assignments=self._assignments,
            embedded_roles=dict(self._embedded_roles),
        )

    def replace_permissions(self, items: Iterable[Permission]) -> None:
        self._permissions = tuple(items)
        self._events.publish_dict(EVENT_PERMISSIONS_REPLACED, {"count": len(self._permissions)})

    def replace_roles(self, items: Iterable[Role]) -> None:
        self._roles = tuple(items)
        self._events.publish_dict(EVENT_ROLES_REPLACED, {"count": len(self._roles)})

    def replace_assignments(
        self,
        items: Iterable[UserRoleAssignment],
        embedded_roles: dict[str, Role] | None = None,
    ) -> None:
        self._assignments = tuple(items)
        if embedded_roles is not None:
            self._embedded_roles = dict(embedded_roles)
        self._events.publish_dict(EVENT_USER_ROLES_REPLACED, {"count": len(self._assignments)})

    def find_role(self, role_id: str) -> Role | None:
        for role in self._roles:
            if role.id == role_id:
                return role
        return None

    def validate_role_name(self, name: str | None, *, exclude_role_id: str | None = None) -> str | None:
        trimmed = (name or "").strip()
        if not trimmed:
            return "Role name is required"
        if len(trimmed) > config.ROLE_NAME_MAX_LENGTH:
            return f"Role name must be {config.ROLE_NAME_MAX_LENGTH} characters or less"
        lowered = trimmed.lower()
        for role in self._roles:
            if role.id != exclude_role_id and role.name.strip().lower() == lowered:
                return "A role with this name already exists"
        return None

    async def _load(self, channel: str, fetch: Callable[[], Awaitable[Any]]) -> LoadResult[Any]:
        self.begin(BusyFlag.LOADING)
        try:
            return await self._lifecycle.run(channel, fetch)
        finally:
            self.end(BusyFlag.LOADING)

    def _load_failed(self, what: str, exc: Exception) -> None:
        message = exc.message if isinstance(exc, RemoteError) else str(exc)
        logger.warning("Failed to load %s: %s", what, message)
        self.record_error(message)

    async def refresh_permissions(self) -> LoadStatus:
        try:
            result = await self._load(CHANNEL_PERMISSIONS, self._remote.list_permissions)
        except AuthzError as exc:
            self._load_failed("permissions", exc)
            raise
        if result.cancelled:
            return LoadStatus.CANCELLED
        self.replace_permissions(normalize_permissions(result.value))
        return LoadStatus.APPLIED

    async def refresh_roles(self, *, permissions_load: asyncio.Future[Any] | None = None) -> LoadStatus:
        async def fetch() -> Any:
            payload = await self._remote.list_roles()
            if permissions_load is not None:
                # bare permission ids on roles resolve against the permissions of this cycle
                await asyncio.wait({permissions_load})
            return payload

        try:
            result = await self._load(CHANNEL_ROLES, fetch)
        except AuthzError as exc:
            self._load_failed("roles", exc)
            raise
        if result.cancelled:
            return LoadStatus.CANCELLED
        self.replace_roles(normalize_roles(result.value, self._permissions))
        return LoadStatus.APPLIED

    async def refresh_user_roles(self) -> LoadStatus:
        try:
            result = await self._load(CHANNEL_USER_ROLES, self._remote.list_user_roles)
        except AuthzError as exc:
            self._load_failed("user roles", exc)
            raise
        if result.cancelled:
            return LoadStatus.CANCELLED
        assignments, embedded = normalize_assignments(result.value)
        self.replace_assignments(assignments, embedded)
        return LoadStatus.APPLIED

    async def refresh_all(self) -> LoadStatus:
        self._lifecycle.start_cycle()
        permissions_load = asyncio.ensure_future(self.refresh_permissions())
        outcomes = await asyncio.gather(
            permissions_load,
            self.refresh_roles(permissions_load=permissions_load),
            self.refresh_user_roles(),
            return_exceptions=True,
        )
        failures = [item for item in outcomes if isinstance(item, BaseException)]
        for failure in failures:
            if not isinstance(failure, Exception):
                raise failure
        if failures:
            raise failures[0]
        if any(item == LoadStatus.CANCELLED for item in outcomes):
            return LoadStatus.CANCELLED
        self._loaded = True
        self.clear_error()
        return LoadStatus.APPLIED

    async def list_users(self) -> list[RoleUser]:
        try:
            result = await self._load(CHANNEL_USERS, self._remote.list_users)
        except AuthzError as exc:
            self._load_failed("users", exc)
            raise
        if result.cancelled:
            return []
        return normalize_users(result.value)

    def close(self) -> None:
        self._lifecycle.close()

    def get_user_roles(self, user_id: str) -> list[Role]:
        return permission_resolver.get_user_roles(self.snapshot(), user_id)

    def has_permission(self, user_id: str, permission_name: str) -> bool:
        return permission_resolver.has_permission(self.snapshot(), user_id, permission_name)

    def can_access(self, user_id: str, resource: str, action: str) -> bool:
        return permission_resolver.can_access(self.snapshot(), user_id, resource, action)
