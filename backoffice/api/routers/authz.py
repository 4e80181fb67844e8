from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from backoffice.api.deps import get_current_user, get_mutations, get_store, get_user_permissions, require_perm
from backoffice.domain.errors import AuthzError, ProtectedRoleError, RemoteError, RoleValidationError
from backoffice.domain.models import (
    AccessCheckRead,
    AccessSummaryRead,
    Permission,
    PermissionRead,
    RefreshRead,
    Role,
    RoleAssignmentBody,
    RoleCreate,
    RoleCreateBody,
    RoleRead,
    RoleUpdate,
    RoleUpdateBody,
    RoleUser,
    RoleUserRead,
    SessionUser,
    UserRoleAssignment,
    UserRoleRead,
)
from backoffice.domain.permissions import PERM_MANAGE_ROLES
from backoffice.services.authz_store import AuthorizationStore
from backoffice.services.mutation_service import MutationCoordinator
from backoffice.services.permission_resolver import access_candidates
from backoffice.services.user_permissions import UserPermissions

router = APIRouter()

Store = Annotated[AuthorizationStore, Depends(get_store)]
Mutations = Annotated[MutationCoordinator, Depends(get_mutations)]
CurrentUser = Annotated[SessionUser, Depends(get_current_user)]
Access = Annotated[UserPermissions, Depends(get_user_permissions)]
RoleManager = Annotated[UserPermissions, Depends(require_perm(PERM_MANAGE_ROLES))]


def _handle_authz_error(exc: AuthzError) -> None:
    if isinstance(exc, ProtectedRoleError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    if isinstance(exc, RoleValidationError):
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    if isinstance(exc, RemoteError):
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=exc.message) from exc
    raise exc


def _permission_read(item: Permission) -> PermissionRead:
    return PermissionRead(id=item.id, name=item.name, description=item.description)


def _role_read(item: Role) -> RoleRead:
    return RoleRead(
        id=item.id,
        name=item.name,
        description=item.description,
        permissions=[_permission_read(permission) for permission in item.permissions],
        created_at=item.created_at,
        updated_at=item.updated_at,
    )


def _user_role_read(item: UserRoleAssignment) -> UserRoleRead:
    return UserRoleRead(
        id=item.id,
        user_id=item.user_id,
        role_id=item.role_id,
        assigned_by=item.assigned_by,
        assigned_at=item.assigned_at,
    )


def _role_user_read(item: RoleUser) -> RoleUserRead:
    return RoleUserRead(id=item.id, full_name=item.full_name, email=item.email, staff_id=item.staff_id)


def _permissions_by_name(store: AuthorizationStore, names: list[str]) -> list[Permission]:
    by_name = {item.name: item for item in store.permissions}
    unknown = [name for name in names if name not in by_name]
    if unknown:
        raise RoleValidationError(f"Unknown permissions: {', '.join(unknown)}")
    return [by_name[name] for name in dict.fromkeys(names)]


@router.get("/permissions", response_model=list[PermissionRead])
def list_permissions(_: CurrentUser, store: Store) -> list[PermissionRead]:
    return [_permission_read(item) for item in store.permissions]


@router.get("/roles", response_model=list[RoleRead])
def list_roles(_: CurrentUser, store: Store) -> list[RoleRead]:
    return [_role_read(item) for item in store.roles]


@router.get("/user-roles", response_model=list[UserRoleRead])
def list_user_roles(_: CurrentUser, store: Store) -> list[UserRoleRead]:
    return [_user_role_read(item) for item in store.user_role_assignments]


@router.get("/users", response_model=list[RoleUserRead])
async def list_users(_: RoleManager, store: Store) -> list[RoleUserRead]:
    try:
        return [_role_user_read(item) for item in await store.list_users()]
    except AuthzError as exc:
        _handle_authz_error(exc)
        raise


@router.post("/refresh", response_model=RefreshRead)
async def refresh(_: CurrentUser, store: Store) -> RefreshRead:
    try:
        return RefreshRead(status=await store.refresh_all())
    except AuthzError as exc:
        _handle_authz_error(exc)
        raise


@router.post("/roles", response_model=RoleRead, status_code=status.HTTP_201_CREATED)
async def create_role(
    payload: RoleCreateBody,
    _: RoleManager,
    store: Store,
    mutations: Mutations,
) -> RoleRead:
    try:
        request = RoleCreate(
            name=payload.name,
            description=payload.description,
            permissions=_permissions_by_name(store, payload.permissions),
        )
        return _role_read(await mutations.create_role(request))
    except AuthzError as exc:
        _handle_authz_error(exc)
        raise


@router.put("/roles/{role_id}", response_model=RoleRead)
async def update_role(
    role_id: str,
    payload: RoleUpdateBody,
    _: RoleManager,
    store: Store,
    mutations: Mutations,
) -> RoleRead:
    try:
        permissions = None if payload.permissions is None else _permissions_by_name(store, payload.permissions)
        patch = RoleUpdate(name=payload.name, description=payload.description, permissions=permissions)
        updated = await mutations.update_role(role_id, patch)
    except AuthzError as exc:
        _handle_authz_error(exc)
        raise
    if updated is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="role not found")
    return _role_read(updated)


@router.delete("/roles/{role_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_role(role_id: str, _: RoleManager, mutations: Mutations) -> Response:
    try:
        await mutations.delete_role(role_id)
    except AuthzError as exc:
        _handle_authz_error(exc)
        raise
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/user-roles", response_model=UserRoleRead, status_code=status.HTTP_201_CREATED)
async def assign_role(
    payload: RoleAssignmentBody,
    access: RoleManager,
    mutations: Mutations,
) -> UserRoleRead:
    try:
        assignment = await mutations.assign_role(payload.user_id, payload.role_id, access.user_id or "")
        return _user_role_read(assignment)
    except AuthzError as exc:
        _handle_authz_error(exc)
        raise


@router.delete("/user-roles", status_code=status.HTTP_204_NO_CONTENT)
async def remove_role(payload: RoleAssignmentBody, _: RoleManager, mutations: Mutations) -> Response:
    try:
        await mutations.remove_role(payload.user_id, payload.role_id)
    except AuthzError as exc:
        _handle_authz_error(exc)
        raise
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/me", response_model=AccessSummaryRead)
def read_my_access(access: Access) -> AccessSummaryRead:
    return AccessSummaryRead(
        user_id=access.user_id or "",
        is_admin=access.is_admin,
        roles=[_role_read(item) for item in access.assigned_roles()],
        permissions=access.all_permissions(),
    )


@router.get("/check", response_model=AccessCheckRead)
def check_access(
    access: Access,
    permission: Annotated[str | None, Query()] = None,
    resource: Annotated[str | None, Query()] = None,
    action: Annotated[str | None, Query()] = None,
) -> AccessCheckRead:
    if not permission and not (resource and action):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="permission or resource and action required",
        )
    candidates = access_candidates(resource, action) if resource and action else []
    return AccessCheckRead(
        allowed=access.guard(permission=permission, resource=resource, action=action),
        candidates=candidates,
    )
