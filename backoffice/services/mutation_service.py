from __future__ import annotations

from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import Any, NoReturn, TypeVar

from backoffice.domain.errors import ProtectedRoleError, RemoteError, RoleValidationError
from backoffice.domain.models import (
    BusyFlag,
    Role,
    RoleAssignmentRequest,
    RoleCreate,
    RoleRemovalRequest,
    RoleUpdate,
    UserRoleAssignment,
    now_iso,
)
from backoffice.domain.permissions import is_admin_role_name
from backoffice.infra.log import get_logger
from backoffice.infra.session import get_session_user_id
from backoffice.services.authz_store import AuthorizationStore
from backoffice.services.normalizer import normalize_assignment, normalize_role

logger = get_logger(__name__)

S = TypeVar("S")
T = TypeVar("T")
R = TypeVar("R")

_RolesAndAssignments = tuple[tuple[Role, ...], tuple[UserRoleAssignment, ...]]


class MutationKind(StrEnum):
    CREATE_ROLE = "create_role"
    UPDATE_ROLE = "update_role"
    DELETE_ROLE = "delete_role"
    ASSIGN_ROLE = "assign_role"
    REMOVE_ROLE = "remove_role"


BUSY_FLAG_BY_KIND: dict[MutationKind, BusyFlag] = {
    MutationKind.CREATE_ROLE: BusyFlag.CREATING,
    MutationKind.UPDATE_ROLE: BusyFlag.UPDATING,
    MutationKind.DELETE_ROLE: BusyFlag.DELETING,
    MutationKind.ASSIGN_ROLE: BusyFlag.ASSIGNING,
    MutationKind.REMOVE_ROLE: BusyFlag.ASSIGNING,
}


def _without_pair(
    assignments: tuple[UserRoleAssignment, ...],
    user_id: str,
    role_id: str,
) -> list[UserRoleAssignment]:
    return [item for item in assignments if item.pair != (user_id, role_id)]


def _merge_role(role: Role, changes: dict[str, Any]) -> Role:
    return Role.model_validate({**role.model_dump(), **changes})


class MutationCoordinator:
    """Write side of the authorization store.

    Every mutation follows the same protocol: snapshot, optimistic local
    change, remote call, then either reconcile with the server's answer or
    restore the snapshot. Mutations of the same kind are not serialized; a
    rollback restores the snapshot taken by that mutation even if another
    one landed in between.
    """

    def __init__(self, store: AuthorizationStore) -> None:
        self._store = store

    async def _run_optimistic(
        self,
        kind: MutationKind,
        *,
        snapshot: Callable[[], S],
        apply: Callable[[], None],
        remote_call: Callable[[], Awaitable[T]],
        reconcile: Callable[[T], R],
        restore: Callable[[S], None],
    ) -> R:
        flag = BUSY_FLAG_BY_KIND[kind]
        saved = snapshot()
        self._store.begin(flag)
        try:
            apply()
            try:
                return reconcile(await remote_call())
            except Exception as exc:
                restore(saved)
                if isinstance(exc, RemoteError):
                    self._store.record_error(exc.message)
                logger.warning("%s failed, local state rolled back: %s", kind.value, exc)
                raise
        finally:
            self._store.end(flag)

    def _snapshot_roles(self) -> tuple[Role, ...]:
        return self._store.roles

    def _snapshot_assignments(self) -> tuple[UserRoleAssignment, ...]:
        return self._store.user_role_assignments

    def _snapshot_roles_and_assignments(self) -> _RolesAndAssignments:
        return self._store.roles, self._store.user_role_assignments

    def _restore_roles_and_assignments(self, saved: _RolesAndAssignments) -> None:
        roles, assignments = saved
        self._store.replace_roles(roles)
        self._store.replace_assignments(assignments)

    def _reject(self, message: str) -> NoReturn:
        logger.info("Rejected role mutation: %s", message)
        raise RoleValidationError(message)

    async def create_role(self, payload: RoleCreate) -> Role:
        message = self._store.validate_role_name(payload.name)
        if message is not None:
            self._reject(message)
        request = payload.model_copy(update={"name": payload.name.strip()})

        def _append(result: Any) -> Role:
            created = normalize_role(result, {item.id: item for item in self._store.permissions})
            if created is None:
                raise RemoteError("Failed to create role: unexpected response")
            self._store.replace_roles([*self._store.roles, created])
            logger.info("Created role %s (%s)", created.name, created.id)
            return created

        return await self._run_optimistic(
            MutationKind.CREATE_ROLE,
            snapshot=self._snapshot_roles,
            apply=lambda: None,
            remote_call=lambda: self._store.remote.create_role(request),
            reconcile=_append,
            restore=self._store.replace_roles,
        )

    async def update_role(self, role_id: str, patch: RoleUpdate) -> Role | None:
        if patch.name is not None:
            message = self._store.validate_role_name(patch.name, exclude_role_id=role_id)
            if message is not None:
                self._reject(message)
            patch = patch.model_copy(update={"name": patch.name.strip()})
        changes: dict[str, Any] = patch.model_dump(exclude_none=True)
        if patch.permissions is not None:
            changes["permissions"] = tuple(patch.permissions)

        def _apply() -> None:
            optimistic = {**changes, "updated_at": now_iso()}
            self._store.replace_roles(
                _merge_role(role, optimistic) if role.id == role_id else role for role in self._store.roles
            )
            logger.debug("Applied optimistic update to role %s", role_id)

        def _reconcile(result: Any) -> Role | None:
            confirmed = normalize_role(result, {item.id: item for item in self._store.permissions})
            if confirmed is not None:
                confirmed_changes = confirmed.model_dump(exclude_none=True)
                if not isinstance(result.get("permissions"), list):
                    # partial response: keep the optimistic permission set
                    confirmed_changes.pop("permissions", None)
                self._store.replace_roles(
                    _merge_role(role, confirmed_changes) if role.id == role_id else role
                    for role in self._store.roles
                )
            logger.info("Updated role %s", role_id)
            return self._store.find_role(role_id)

        return await self._run_optimistic(
            MutationKind.UPDATE_ROLE,
            snapshot=self._snapshot_roles,
            apply=_apply,
            remote_call=lambda: self._store.remote.update_role(role_id, patch),
            reconcile=_reconcile,
            restore=self._store.replace_roles,
        )

    async def delete_role(self, role_id: str) -> None:
        role = self._store.find_role(role_id)
        if role is not None and is_admin_role_name(role.name):
            logger.info("Refused to delete protected role %s", role_id)
            raise ProtectedRoleError("Cannot delete the admin role")

        def _apply() -> None:
            self._store.replace_roles(item for item in self._store.roles if item.id != role_id)
            self._store.replace_assignments(
                item for item in self._store.user_role_assignments if item.role_id != role_id
            )

        def _reconcile(_: Any) -> None:
            logger.info("Deleted role %s", role_id)

        await self._run_optimistic(
            MutationKind.DELETE_ROLE,
            snapshot=self._snapshot_roles_and_assignments,
            apply=_apply,
            remote_call=lambda: self._store.remote.delete_role(role_id),
            reconcile=_reconcile,
            restore=self._restore_roles_and_assignments,
        )

    async def assign_role(self, user_id: str, role_id: str, assigned_by: str = "") -> UserRoleAssignment:
        if not user_id or not role_id:
            self._reject("User and role are required")
        assigned_by = assigned_by or get_session_user_id() or ""
        request = RoleAssignmentRequest(user_id=user_id, role_id=role_id, assigned_by=assigned_by)
        optimistic = UserRoleAssignment(
            user_id=user_id,
            role_id=role_id,
            assigned_by=assigned_by,
            assigned_at=now_iso(),
        )

        def _apply() -> None:
            current = self._store.user_role_assignments
            self._store.replace_assignments([*_without_pair(current, user_id, role_id), optimistic])

        def _reconcile(result: Any) -> UserRoleAssignment:
            confirmed, _ = normalize_assignment(result)
            if confirmed is None or confirmed.pair != (user_id, role_id):
                assigned_at = result.get("assignedAt") if isinstance(result, dict) else None
                confirmed = optimistic.model_copy(
                    update={"assigned_at": assigned_at if isinstance(assigned_at, str) else optimistic.assigned_at}
                )
            current = self._store.user_role_assignments
            self._store.replace_assignments([*_without_pair(current, user_id, role_id), confirmed])
            logger.info("Assigned role %s to user %s", role_id, user_id)
            return confirmed

        return await self._run_optimistic(
            MutationKind.ASSIGN_ROLE,
            snapshot=self._snapshot_assignments,
            apply=_apply,
            remote_call=lambda: self._store.remote.assign_role(request),
            reconcile=_reconcile,
            restore=self._store.replace_assignments,
        )

    async def remove_role(self, user_id: str, role_id: str) -> None:
        if not user_id or not role_id:
            self._reject("User and role are required")
        request = RoleRemovalRequest(user_id=user_id, role_id=role_id)

        def _apply() -> None:
            self._store.replace_assignments(_without_pair(self._store.user_role_assignments, user_id, role_id))

        def _reconcile(_: Any) -> None:
            logger.info("Removed role %s from user %s", role_id, user_id)

        await self._run_optimistic(
            MutationKind.REMOVE_ROLE,
            snapshot=self._snapshot_assignments,
            apply=_apply,
            remote_call=lambda: self._store.remote.remove_role(request),
            reconcile=_reconcile,
            restore=self._store.replace_assignments,
        )

