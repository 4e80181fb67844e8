from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

import httpx

from backoffice.domain.errors import RemoteError
from backoffice.domain.models import RoleAssignmentRequest, RoleCreate, RoleRemovalRequest, RoleUpdate
from backoffice.infra import config
from backoffice.infra.log import get_logger
from backoffice.infra.session import get_session_token

logger = get_logger(__name__)

TokenProvider = Callable[[], str | None]

NETWORK_ERROR_MESSAGE = "Network error. Please check your connection and try again."

PATH_PERMISSIONS = "api/permissions/v1/all"
PATH_ROLES = "api/roles/v1/all"
PATH_USER_ROLES = "api/roles/v1/userrole"
PATH_USERS = "api/users/all"
PATH_ROLE_CREATE = "api/roles/v1/create"
PATH_ROLE_UPDATE = "api/roles/v1/update/{role_id}"
PATH_ROLE_DELETE = "api/roles/v1/delete/{role_id}"
PATH_ROLE_ASSIGN = "api/roles/v1/assign"
PATH_ROLE_REMOVE = "api/roles/v1/remove"


def extract_error_message(response: httpx.Response, fallback: str) -> str:
    try:
        body = response.json()
    except ValueError:
        return fallback
    if isinstance(body, dict):
        for key in ("message", "error", "detail"):
            value = body.get(key)
            if isinstance(value, str) and value.strip():
                return value
    return fallback


class HttpRemoteAuthority:
    def __init__(
        self,
        *,
        base_url: str | None = None,
        timeout_seconds: float | None = None,
        read_retries: int | None = None,
        retry_delay_seconds: float | None = None,
        token_provider: TokenProvider | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url or config.AUTHZ_API_BASE_URL,
            timeout=httpx.Timeout(timeout_seconds or config.AUTHZ_API_TIMEOUT_SECONDS),
            transport=transport,
        )
        self._read_retries = max(config.AUTHZ_READ_RETRIES if read_retries is None else read_retries, 0)
        delay = config.AUTHZ_RETRY_DELAY_SECONDS if retry_delay_seconds is None else retry_delay_seconds
        self._retry_delay_seconds = max(delay, 0.0)
        self._token_provider = token_provider or get_session_token

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        token = self._token_provider()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def _send(
        self,
        method: str,
        path: str,
        *,
        fallback: str,
        json: dict[str, Any] | None = None,
    ) -> httpx.Response:
        try:
            response = await self._client.request(method, path, json=json, headers=self._headers())
        except httpx.HTTPError as exc:
            logger.warning("%s %s failed: %s", method, path, exc)
            raise RemoteError(NETWORK_ERROR_MESSAGE) from exc
        if response.is_success:
            return response
        message = extract_error_message(response, fallback)
        logger.warning("%s %s returned %s: %s", method, path, response.status_code, message)
        raise RemoteError(message, status_code=response.status_code)

    async def _read(self, path: str, *, fallback: str) -> Any:
        attempts_left = self._read_retries
        while True:
            try:
                response = await self._send("GET", path, fallback=fallback)
            except RemoteError as exc:
                if exc.status_code != 401 or attempts_left <= 0:
                    raise
                attempts_left -= 1
                logger.info("Retrying %s, attempts left: %s", path, attempts_left)
                await asyncio.sleep(self._retry_delay_seconds)
                continue
            return self._json_or_none(response)

    def _json_or_none(self, response: httpx.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return None

    async def list_permissions(self) -> Any:
        return await self._read(PATH_PERMISSIONS, fallback="Failed to fetch permissions")

    async def list_roles(self) -> Any:
        return await self._read(PATH_ROLES, fallback="Failed to fetch roles")

    async def list_users(self) -> Any:
        return await self._read(PATH_USERS, fallback="Failed to fetch users")

    async def list_user_roles(self) -> Any:
        return await self._read(PATH_USER_ROLES, fallback="Failed to fetch user roles")

    async def create_role(self, payload: RoleCreate) -> Any:
        response = await self._send(
            "POST",
            PATH_ROLE_CREATE,
            json=payload.to_wire(),
            fallback="Failed to create role",
        )
        return self._json_or_none(response)

    async def update_role(self, role_id: str, payload: RoleUpdate) -> Any:
        response = await self._send(
            "PUT",
            PATH_ROLE_UPDATE.format(role_id=role_id),
            json=payload.to_wire(),
            fallback="Failed to update role",
        )
        return self._json_or_none(response)

    async def delete_role(self, role_id: str) -> None:
        await self._send("DELETE", PATH_ROLE_DELETE.format(role_id=role_id), fallback="Failed to delete role")

    async def assign_role(self, payload: RoleAssignmentRequest) -> Any:
        response = await self._send(
            "POST",
            PATH_ROLE_ASSIGN,
            json=payload.to_wire(),
            fallback="Failed to assign role",
        )
        return self._json_or_none(response)

    async def remove_role(self, payload: RoleRemovalRequest) -> None:
        await self._send("DELETE", PATH_ROLE_REMOVE, json=payload.to_wire(), fallback="Failed to remove role")

    async def aclose(self) -> None:
        await self._client.aclose()
