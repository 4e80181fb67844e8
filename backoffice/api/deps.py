from __future__ import annotations

from collections.abc import Callable, Coroutine
from typing import Annotated, Any

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer

from backoffice.domain.models import SessionUser
from backoffice.infra.auth import decode_access_token, session_user_from_claims
from backoffice.infra.session import set_session_context
from backoffice.services.authz_store import AuthorizationStore
from backoffice.services.mutation_service import MutationCoordinator
from backoffice.services.user_permissions import UserPermissions

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/session/token")


async def get_current_user(
    request: Request,
    token: str = Depends(oauth2_scheme),
) -> SessionUser:
    try:
        user = session_user_from_claims(decode_access_token(token))
    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
        ) from exc
    request.state.user = user
    set_session_context(token, user.id)
    return user


def get_store(request: Request) -> AuthorizationStore:
    store = getattr(request.app.state, "authz_store", None)
    if store is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="authorization store not initialized",
        )
    return store


def get_mutations(store: Annotated[AuthorizationStore, Depends(get_store)]) -> MutationCoordinator:
    return MutationCoordinator(store)


def get_user_permissions(
    user: Annotated[SessionUser, Depends(get_current_user)],
    store: Annotated[AuthorizationStore, Depends(get_store)],
) -> UserPermissions:
    return UserPermissions(store, user)


def require_perm(permission: str) -> Callable[..., Coroutine[Any, Any, UserPermissions]]:
    async def _checker(
        access: Annotated[UserPermissions, Depends(get_user_permissions)],
    ) -> UserPermissions:
        if not access.has_permission(permission):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing permission: {permission}",
            )
        return access

    return _checker
