from __future__ import annotations

import asyncio
import itertools
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from backoffice.domain.errors import LoadCancelledError
from backoffice.domain.models import LoadStatus
from backoffice.infra.log import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

CHANNEL_PERMISSIONS = "permissions"
CHANNEL_ROLES = "roles"
CHANNEL_USER_ROLES = "user_roles"
CHANNEL_USERS = "users"


@dataclass(frozen=True)
class LoadResult(Generic[T]):
    status: LoadStatus
    value: T | None = None

    @property
    def cancelled(self) -> bool:
        return self.status == LoadStatus.CANCELLED


@dataclass
class _InFlight:
    ticket: int
    task: asyncio.Task[Any]


class RequestLifecycleManager:
    """Lets only the newest load per channel land.

    A load that is superseded (by a newer load on its channel, a new cycle or
    teardown) resolves to ``LoadStatus.CANCELLED`` even when its response had
    already arrived, and even when it failed.
    """

    def __init__(self) -> None:
        self._tickets = itertools.count(1)
        self._in_flight: dict[str, _InFlight] = {}
        self._superseded: set[int] = set()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def in_flight(self, channel: str) -> bool:
        entry = self._in_flight.get(channel)
        return entry is not None and not entry.task.done()

    def cancel(self, channel: str) -> None:
        entry = self._in_flight.pop(channel, None)
        if entry is None:
            return
        self._superseded.add(entry.ticket)
        if not entry.task.done():
            logger.debug("Cancelling superseded %s load (ticket %s)", channel, entry.ticket)
            entry.task.cancel()

    def start_cycle(self) -> None:
        for channel in list(self._in_flight):
            self.cancel(channel)

    def close(self) -> None:
        self._closed = True
        self.start_cycle()

    async def run(self, channel: str, factory: Callable[[], Awaitable[T]]) -> LoadResult[T]:
        if self._closed:
            return LoadResult(status=LoadStatus.CANCELLED)
        self.cancel(channel)
        ticket = next(self._tickets)

        async def _call() -> T:
            return await factory()

        entry = _InFlight(ticket=ticket, task=asyncio.create_task(_call()))
        self._in_flight[channel] = entry
        try:
            value: T = await self._await_task(entry.task)
        except LoadCancelledError:
            return LoadResult(status=LoadStatus.CANCELLED)
        except Exception:
            if ticket in self._superseded:
                logger.debug("Dropping failure of superseded %s load (ticket %s)", channel, ticket)
                return LoadResult(status=LoadStatus.CANCELLED)
            raise
        finally:
            if self._in_flight.get(channel) is entry:
                del self._in_flight[channel]
            superseded = ticket in self._superseded
            self._superseded.discard(ticket)

        if superseded or self._closed:
            logger.debug("Discarding stale %s response (ticket %s)", channel, ticket)
            return LoadResult(status=LoadStatus.CANCELLED)
        return LoadResult(status=LoadStatus.APPLIED, value=value)

    async def _await_task(self, task: asyncio.Task[T]) -> T:
        try:
            return await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            raise LoadCancelledError("load superseded") from None
