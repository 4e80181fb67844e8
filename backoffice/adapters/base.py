from __future__ import annotations

from typing import Any, Protocol

from backoffice.domain.models import RoleAssignmentRequest, RoleCreate, RoleRemovalRequest, RoleUpdate


class RemoteAuthority(Protocol):
    async def list_permissions(self) -> Any: ...

    async def list_roles(self) -> Any: ...

    async def list_user_roles(self) -> Any: ...

    async def list_users(self) -> Any: ...

    async def create_role(self, payload: RoleCreate) -> Any: ...

    async def update_role(self, role_id: str, payload: RoleUpdate) -> Any: ...

    async def delete_role(self, role_id: str) -> None: ...

    async def assign_role(self, payload: RoleAssignmentRequest) -> Any: ...

    async def remove_role(self, payload: RoleRemovalRequest) -> None: ...

    async def aclose(self) -> None: ...
