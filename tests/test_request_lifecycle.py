from __future__ import annotations

import asyncio

import pytest

from backoffice.domain.errors import RemoteError
from backoffice.domain.models import LoadStatus
from backoffice.services.request_lifecycle import CHANNEL_ROLES, CHANNEL_USER_ROLES, RequestLifecycleManager


def test_newer_load_supersedes_in_flight_load() -> None:
    async def _run() -> None:
        manager = RequestLifecycleManager()
        release = asyncio.Event()
        observed: list[str] = []

        async def slow() -> str:
            try:
                await release.wait()
            except asyncio.CancelledError:
                observed.append("cancelled")
                raise
            return "stale"

        async def fast() -> str:
            return "fresh"

        first = asyncio.create_task(manager.run(CHANNEL_ROLES, slow))
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        assert manager.in_flight(CHANNEL_ROLES) is True

        second = await manager.run(CHANNEL_ROLES, fast)
        stale = await first

        assert stale.status == LoadStatus.CANCELLED
        assert stale.value is None
        assert second.status == LoadStatus.APPLIED
        assert second.value == "fresh"
        assert observed == ["cancelled"]
        assert manager.in_flight(CHANNEL_ROLES) is False

    asyncio.run(_run())


def test_channels_are_independent() -> None:
    async def _run() -> None:
        manager = RequestLifecycleManager()
        release = asyncio.Event()

        async def waits() -> str:
            await release.wait()
            return "roles"

        async def immediate() -> str:
            return "user roles"

        roles = asyncio.create_task(manager.run(CHANNEL_ROLES, waits))
        await asyncio.sleep(0)
        user_roles = await manager.run(CHANNEL_USER_ROLES, immediate)
        release.set()

        assert user_roles.status == LoadStatus.APPLIED
        assert (await roles).status == LoadStatus.APPLIED

    asyncio.run(_run())


def test_response_landing_after_new_cycle_is_discarded() -> None:
    async def _run() -> None:
        manager = RequestLifecycleManager()

        async def lands_late() -> str:
            # a newer cycle begins before this response is delivered
            manager.start_cycle()
            return "stale"

        result = await manager.run(CHANNEL_ROLES, lands_late)

        assert result.cancelled is True

    asyncio.run(_run())


def test_failure_of_superseded_load_is_reported_as_cancelled() -> None:
    async def _run() -> None:
        manager = RequestLifecycleManager()
        gate = asyncio.Event()

        async def fails_later() -> str:
            await gate.wait()
            raise RemoteError("Failed to fetch roles")

        pending = asyncio.create_task(manager.run(CHANNEL_ROLES, fails_later))
        await asyncio.sleep(0)
        manager.start_cycle()
        gate.set()

        assert (await pending).status == LoadStatus.CANCELLED

    asyncio.run(_run())


def test_failure_of_current_load_propagates() -> None:
    async def _run() -> None:
        manager = RequestLifecycleManager()

        async def fails() -> str:
            raise RemoteError("Failed to fetch roles", status_code=500)

        with pytest.raises(RemoteError) as exc_info:
            await manager.run(CHANNEL_ROLES, fails)
        assert exc_info.value.status_code == 500

    asyncio.run(_run())


def test_close_cancels_in_flight_and_rejects_new_loads() -> None:
    async def _run() -> None:
        manager = RequestLifecycleManager()
        release = asyncio.Event()
        calls: list[str] = []

        async def waits() -> str:
            await release.wait()
            return "late"

        async def never_called() -> str:
            calls.append("called")
            return "unused"

        pending = asyncio.create_task(manager.run(CHANNEL_ROLES, waits))
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        manager.close()

        assert manager.closed is True
        assert (await pending).status == LoadStatus.CANCELLED
        assert (await manager.run(CHANNEL_ROLES, never_called)).status == LoadStatus.CANCELLED
        assert calls == []

    asyncio.run(_run())


def test_cancelling_the_caller_propagates() -> None:
    async def _run() -> None:
        manager = RequestLifecycleManager()
        release = asyncio.Event()

        async def waits() -> str:
            await release.wait()
            return "never"

        caller = asyncio.create_task(manager.run(CHANNEL_ROLES, waits))
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        caller.cancel()

        with pytest.raises(asyncio.CancelledError):
            await caller
        assert manager.in_flight(CHANNEL_ROLES) is False

    asyncio.run(_run())
