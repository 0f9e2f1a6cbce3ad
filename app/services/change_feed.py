from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional

from loguru import logger

from app.schemas.enums import ChangeType

VENDOR_LOCATIONS_TABLE = "vendor_locations"


@dataclass(frozen=True)
class ChangeEvent:
    type: ChangeType
    table: str
    record: Dict[str, Any] = field(default_factory=dict)
    old_record: Optional[Dict[str, Any]] = None


ChangeHandler = Callable[[ChangeEvent], Awaitable[None]]


class Subscription:
    def __init__(self, feed: "ChangeFeed", table: str, token: int):
        self._feed = feed
        self.table = table
        self._token = token
        self.active = True

    def unsubscribe(self) -> None:
        if not self.active:
            return
        self.active = False
        self._feed._remove(self.table, self._token)


class ChangeFeed:
    """
    In-process fan-out of row-change events.

    Delivery is at-least-once and unordered: handlers must treat an event
    as a cue to re-read the store, not as the new state itself.
    """

    def __init__(self) -> None:
        self._handlers: Dict[str, Dict[int, ChangeHandler]] = {}
        self._tokens = itertools.count(1)

    def subscribe(self, table: str, handler: ChangeHandler) -> Subscription:
        token = next(self._tokens)
        self._handlers.setdefault(table, {})[token] = handler
        logger.debug(f"[feed] subscribe table={table} token={token}")
        return Subscription(self, table, token)

    def _remove(self, table: str, token: int) -> None:
        handlers = self._handlers.get(table, {})
        handlers.pop(token, None)
        if not handlers:
            self._handlers.pop(table, None)
        logger.debug(f"[feed] unsubscribe table={table} token={token}")

    def subscriber_count(self, table: str) -> int:
        return len(self._handlers.get(table, {}))

    async def publish(self, event: ChangeEvent) -> int:
        # snapshot: handlers may unsubscribe while we deliver
        handlers = list(self._handlers.get(event.table, {}).values())
        for handler in handlers:
            try:
                await handler(event)
            except Exception:
                logger.exception(f"[feed] handler failed for {event.type.value} on {event.table}")
        return len(handlers)


_FEED: ChangeFeed | None = None


def get_change_feed() -> ChangeFeed:
    global _FEED
    if _FEED is None:
        _FEED = ChangeFeed()
    return _FEED
