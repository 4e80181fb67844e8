from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any
from uuid import uuid4

from backoffice.domain.errors import RemoteError
from backoffice.domain.models import (
    Permission,
    Role,
    RoleAssignmentRequest,
    RoleCreate,
    RoleRemovalRequest,
    RoleUpdate,
    RoleUser,
    UserRoleAssignment,
    WireModel,
    now_iso,
)

_UNSET: Any = object()


@dataclass
class _Failure:
    message: str
    status_code: int
    times: int


@dataclass
class _Gate:
    entered: asyncio.Event = field(default_factory=asyncio.Event)
    released: asyncio.Event = field(default_factory=asyncio.Event)


def _as_wire(item: WireModel | dict[str, Any]) -> dict[str, Any]:
    if isinstance(item, WireModel):
        return item.to_wire()
    return dict(item)


class FakeRemoteAuthority:
    def __init__(
        self,
        *,
        permissions: list[Permission | dict[str, Any]] | None = None,
        roles: list[Role | dict[str, Any]] | None = None,
        user_roles: list[UserRoleAssignment | dict[str, Any]] | None = None,
        users: list[RoleUser | dict[str, Any]] | None = None,
        delay_seconds: float = 0.0,
    ) -> None:
        self.permissions: list[dict[str, Any]] = [_as_wire(item) for item in permissions or []]
        self.roles: list[dict[str, Any]] = [_as_wire(item) for item in roles or []]
        self.user_roles: list[dict[str, Any]] = [_as_wire(item) for item in user_roles or []]
        self.users: list[dict[str, Any]] = [_as_wire(item) for item in users or []]
        self.calls: list[tuple[str, Any]] = []
        self.closed = False
        self._delay_seconds = max(delay_seconds, 0.0)
        self._payloads: dict[str, Any] = {}
        self._failures: dict[str, _Failure] = {}
        self._gates: dict[str, _Gate] = {}

    def set_payload(self, operation: str, payload: Any) -> None:
        self._payloads[operation] = payload

    def fail(self, operation: str, message: str = "remote failure", *, status_code: int = 500, times: int = 1) -> None:
        self._failures[operation] = _Failure(message=message, status_code=status_code, times=max(times, 1))

    def pause(self, operation: str) -> None:
        self._gates[operation] = _Gate()

    def resume(self, operation: str) -> None:
        gate = self._gates.pop(operation, None)
        if gate is not None:
            gate.released.set()

    async def wait_until_called(self, operation: str) -> None:
        gate = self._gates.get(operation)
        if gate is None:
            raise KeyError(f"operation is not paused: {operation}")
        await gate.entered.wait()

    def call_count(self, operation: str) -> int:
        return sum(1 for name, _ in self.calls if name == operation)

    async def _enter(self, operation: str, argument: Any = None) -> Any:
        self.calls.append((operation, argument))
        gate = self._gates.get(operation)
        if gate is not None:
            gate.entered.set()
            await gate.released.wait()
        if self._delay_seconds > 0:
            await asyncio.sleep(self._delay_seconds)
        failure = self._failures.get(operation)
        if failure is not None:
            failure.times -= 1
            if failure.times <= 0:
                del self._failures[operation]
            raise RemoteError(failure.message, status_code=failure.status_code)
        return self._payloads.pop(operation, _UNSET)

    async def list_permissions(self) -> Any:
        payload = await self._enter("list_permissions")
        return [dict(item) for item in self.permissions] if payload is _UNSET else payload

    async def list_roles(self) -> Any:
        payload = await self._enter("list_roles")
        return {"roles": [dict(item) for item in self.roles]} if payload is _UNSET else payload

    async def list_user_roles(self) -> Any:
        payload = await self._enter("list_user_roles")
        return {"userRoles": [dict(item) for item in self.user_roles]} if payload is _UNSET else payload

    async def list_users(self) -> Any:
        payload = await self._enter("list_users")
        return {"users": [dict(item) for item in self.users]} if payload is _UNSET else payload

    async def create_role(self, payload: RoleCreate) -> Any:
        override = await self._enter("create_role", payload)
        if override is not _UNSET:
            return override
        now = now_iso()
        created = {**payload.to_wire(), "_id": f"role-{uuid4().hex[:8]}", "createdAt": now, "updatedAt": now}
        self.roles.append(created)
        return dict(created)

    async def update_role(self, role_id: str, payload: RoleUpdate) -> Any:
        override = await self._enter("update_role", (role_id, payload))
        if override is not _UNSET:
            return override
        for index, item in enumerate(self.roles):
            if item.get("_id") == role_id:
                updated = {**item, **payload.to_wire(), "updatedAt": now_iso()}
                self.roles[index] = updated
                return dict(updated)
        raise RemoteError("Role not found", status_code=404)

    async def delete_role(self, role_id: str) -> None:
        await self._enter("delete_role", role_id)
        if not any(item.get("_id") == role_id for item in self.roles):
            raise RemoteError("Role not found", status_code=404)
        self.roles = [item for item in self.roles if item.get("_id") != role_id]
        self.user_roles = [item for item in self.user_roles if item.get("roleId") != role_id]

    async def assign_role(self, payload: RoleAssignmentRequest) -> Any:
        override = await self._enter("assign_role", payload)
        if override is not _UNSET:
            return override
        if not any(item.get("_id") == payload.role_id for item in self.roles):
            raise RemoteError("Role not found", status_code=404)
        created = {**payload.to_wire(), "_id": f"ur-{uuid4().hex[:8]}", "assignedAt": now_iso()}
        self.user_roles = [
            item
            for item in self.user_roles
            if not (item.get("userId") == payload.user_id and item.get("roleId") == payload.role_id)
        ]
        self.user_roles.append(created)
        return dict(created)

    async def remove_role(self, payload: RoleRemovalRequest) -> None:
        await self._enter("remove_role", payload)
        self.user_roles = [
            item
            for item in self.user_roles
            if not (item.get("userId") == payload.user_id and item.get("roleId") == payload.role_id)
        ]

    async def aclose(self) -> None:
        self.closed = True
