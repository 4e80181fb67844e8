from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import uuid4

from backoffice.domain.models import now_utc

EVENT_PERMISSIONS_REPLACED = "authz.permissions.replaced"
EVENT_ROLES_REPLACED = "authz.roles.replaced"
EVENT_USER_ROLES_REPLACED = "authz.user_roles.replaced"
EVENT_ERROR = "authz.error"


@dataclass(frozen=True)
class StoreEvent:
    event_type: str
    payload: dict[str, Any] = field(default_factory=dict)
    event_id: str = field(default_factory=lambda: str(uuid4()))
    ts: datetime = field(default_factory=now_utc)


EventHandler = Callable[[StoreEvent], None]


class EventBus:
    def __init__(self) -> None:
        self._subscribers: dict[str, list[EventHandler]] = defaultdict(list)

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        self._subscribers[event_type].append(handler)

    def unsubscribe(self, event_type: str, handler: EventHandler) -> None:
        if event_type in self._subscribers and handler in self._subscribers[event_type]:
            self._subscribers[event_type].remove(handler)

    def publish(self, event: StoreEvent) -> None:
        handlers = [*self._subscribers.get(event.event_type, []), *self._subscribers.get("*", [])]
        for handler in handlers:
            handler(event)

    def publish_dict(self, event_type: str, payload: dict[str, Any]) -> StoreEvent:
        event = StoreEvent(event_type=event_type, payload=payload)
        self.publish(event)
        return event
