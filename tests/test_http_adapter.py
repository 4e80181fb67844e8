from __future__ import annotations

import asyncio
import json
from collections.abc import Callable

import httpx
import pytest

from backoffice.adapters.http_adapter import NETWORK_ERROR_MESSAGE, HttpRemoteAuthority
from backoffice.domain.errors import RemoteError
from backoffice.domain.models import LoadStatus, RoleAssignmentRequest, RoleRemovalRequest, RoleUpdate
from backoffice.infra.session import set_session_context
from backoffice.services.authz_store import AuthorizationStore

Handler = Callable[[httpx.Request], httpx.Response]


def _authority(handler: Handler, *, token: str | None = "tok-1", read_retries: int = 0) -> HttpRemoteAuthority:
    return HttpRemoteAuthority(
        base_url="http://authz.test/",
        read_retries=read_retries,
        retry_delay_seconds=0,
        token_provider=lambda: token,
        transport=httpx.MockTransport(handler),
    )


def test_reads_send_bearer_token() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"roles": []})

    async def _run() -> object:
        authority = _authority(handler)
        try:
            return await authority.list_roles()
        finally:
            await authority.aclose()

    assert asyncio.run(_run()) == {"roles": []}
    assert seen[0].method == "GET"
    assert seen[0].url.path == "/api/roles/v1/all"
    assert seen[0].headers["Authorization"] == "Bearer tok-1"


def test_missing_token_sends_no_authorization_header() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=[])

    async def _run() -> None:
        authority = _authority(handler, token=None)
        await authority.list_permissions()
        await authority.aclose()

    asyncio.run(_run())

    assert "Authorization" not in seen[0].headers


def test_session_token_is_forwarded_by_default() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"userRoles": []})

    async def _run() -> None:
        set_session_context("session-token", "u1")
        authority = HttpRemoteAuthority(base_url="http://authz.test/", transport=httpx.MockTransport(handler))
        await authority.list_user_roles()
        await authority.aclose()

    asyncio.run(_run())

    assert seen[0].headers["Authorization"] == "Bearer session-token"
    assert seen[0].url.path == "/api/roles/v1/userrole"


@pytest.mark.parametrize(
    ("body", "expected"),
    [
        ({"message": "Role already assigned"}, "Role already assigned"),
        ({"error": "Forbidden"}, "Forbidden"),
        ({"detail": "Not allowed"}, "Not allowed"),
        ({"unrelated": True}, "Failed to assign role"),
    ],
)
def test_error_message_is_taken_from_body(body: dict[str, object], expected: str) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json=body)

    async def _run() -> None:
        authority = _authority(handler)
        try:
            await authority.assign_role(RoleAssignmentRequest(user_id="u1", role_id="r1", assigned_by="root"))
        finally:
            await authority.aclose()

    with pytest.raises(RemoteError) as exc_info:
        asyncio.run(_run())

    assert exc_info.value.message == expected
    assert exc_info.value.status_code == 400


def test_non_json_error_uses_fallback_message() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="<html>oops</html>")

    async def _run() -> None:
        authority = _authority(handler)
        try:
            await authority.delete_role("r1")
        finally:
            await authority.aclose()

    with pytest.raises(RemoteError, match="Failed to delete role"):
        asyncio.run(_run())


def test_transport_failure_maps_to_network_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async def _run() -> None:
        authority = _authority(handler)
        try:
            await authority.list_roles()
        finally:
            await authority.aclose()

    with pytest.raises(RemoteError) as exc_info:
        asyncio.run(_run())

    assert exc_info.value.message == NETWORK_ERROR_MESSAGE
    assert exc_info.value.status_code is None


def test_reads_retry_on_unauthorized() -> None:
    statuses = iter([401, 401, 200])
    attempts: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request.url.path)
        code = next(statuses)
        if code == 401:
            return httpx.Response(401, json={"message": "Token expired"})
        return httpx.Response(200, json=[{"_id": "p1", "name": "view_customers"}])

    async def _run() -> object:
        authority = _authority(handler, read_retries=2)
        try:
            return await authority.list_permissions()
        finally:
            await authority.aclose()

    assert asyncio.run(_run()) == [{"_id": "p1", "name": "view_customers"}]
    assert len(attempts) == 3


def test_reads_give_up_after_retries() -> None:
    attempts: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request.url.path)
        return httpx.Response(401, json={"message": "Token expired"})

    async def _run() -> None:
        authority = _authority(handler, read_retries=1)
        try:
            await authority.list_roles()
        finally:
            await authority.aclose()

    with pytest.raises(RemoteError, match="Token expired"):
        asyncio.run(_run())
    assert len(attempts) == 2


def test_writes_use_remote_paths_and_bodies() -> None:
    seen: list[tuple[str, str, object]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else None
        seen.append((request.method, request.url.path, body))
        if request.method == "PUT":
            return httpx.Response(200, json={"_id": "r1", "name": "Lead"})
        return httpx.Response(200, json={"success": True})

    async def _run() -> None:
        authority = _authority(handler)
        await authority.update_role("r1", RoleUpdate(name="Lead"))
        await authority.remove_role(RoleRemovalRequest(user_id="u1", role_id="r1"))
        await authority.aclose()

    asyncio.run(_run())

    assert seen == [
        ("PUT", "/api/roles/v1/update/r1", {"name": "Lead"}),
        ("DELETE", "/api/roles/v1/remove", {"userId": "u1", "roleId": "r1"}),
    ]


def test_store_loads_over_http() -> None:
    payloads = {
        "/api/permissions/v1/all": {"permission": [{"_id": "p1", "name": "view_customers"}]},
        "/api/roles/v1/all": {"roles": [{"_id": "r1", "name": "Manager", "permissions": [{"_id": "p1", "name": "view_customers"}]}]},
        "/api/roles/v1/userrole": {"userRoles": [{"_id": "a1", "userId": {"_id": "u1"}, "roleId": "r1"}]},
    }

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=payloads[request.url.path])

    async def _run() -> AuthorizationStore:
        authority = _authority(handler)
        store = AuthorizationStore(authority)
        assert await store.refresh_all() == LoadStatus.APPLIED
        await authority.aclose()
        return store

    store = asyncio.run(_run())

    assert store.can_access("u1", "customers", "view") is True


def test_users_are_read_from_user_directory() -> None:
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url.path)
        return httpx.Response(200, json={"users": [{"_id": "u1", "fullName": "Ada Obi"}]})

    async def _run() -> object:
        authority = _authority(handler)
        try:
            return await authority.list_users()
        finally:
            await authority.aclose()

    assert asyncio.run(_run()) == {"users": [{"_id": "u1", "fullName": "Ada Obi"}]}
    assert seen == ["/api/users/all"]
