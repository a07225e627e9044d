"""
In-process purchase events.

Publishing never waits for subscribers: each handler runs as its own task
and its failures are logged, never propagated to the publisher.
"""
from __future__ import annotations

import asyncio
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, DefaultDict, List, Set, Type

from storefront.core.logging import log_event
from storefront.models.purchase import PurchaseResult

Handler = Callable[[Any], Awaitable[None]]


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class PurchaseCompleted:
    result: PurchaseResult
    occurred_at: datetime = field(default_factory=_now)
    event_type: str = "purchase.completed"


class EventBus:
    def __init__(self) -> None:
        self._subscribers: DefaultDict[Type[Any], List[Handler]] = defaultdict(list)
        self._tasks: Set[asyncio.Task] = set()

    def subscribe(self, event_type: Type[Any], handler: Handler) -> None:
        self._subscribers[event_type].append(handler)

    def unsubscribe_all(self) -> None:
        self._subscribers.clear()

    def publish(self, event: Any) -> int:
        """Schedule every subscriber of type(event). Returns the number scheduled."""
        handlers = list(self._subscribers.get(type(event), []))
        if not handlers:
            return 0
        loop = asyncio.get_running_loop()
        for handler in handlers:
            task = loop.create_task(self._dispatch(handler, event))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        return len(handlers)

    async def _dispatch(self, handler: Handler, event: Any) -> None:
        try:
            await handler(event)
        except Exception as e:
            log_event(
                "error",
                "events.handler_failed",
                event_type=getattr(event, "event_type", type(event).__name__),
                error_code="event_handler_failed",
                extra={"handler": getattr(handler, "__qualname__", repr(handler)), "error": e},
            )

    async def drain(self) -> None:
        """Wait for in-flight handlers (shutdown and tests)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
