"""
storefront/core/idempotency.py
In-flight idempotency for awaited operations (catalog fetches, checkout submits).
"""

import asyncio
import hashlib
import json
from typing import Any, Awaitable, Callable, Dict, Hashable, TypeVar

T = TypeVar("T")


def request_fingerprint(payload: Any) -> str:
    """
    Stable SHA-256 fingerprint of a JSON-serializable payload.

    Keys are sorted so two logically identical requests hash the same.
    """
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class InFlightRegistry:
    """
    Coalesces concurrent coroutines that share a key.

    The first caller for a key starts the work; callers arriving while it is
    pending await the same future and observe the same result or exception.
    Once the work settles the key is released, so a later call starts fresh.
    """

    def __init__(self) -> None:
        self._pending: Dict[Hashable, "asyncio.Future[Any]"] = {}

    def is_pending(self, key: Hashable) -> bool:
        return key in self._pending

    def __len__(self) -> int:
        return len(self._pending)

    async def run(self, key: Hashable, factory: Callable[[], Awaitable[T]]) -> T:
        """
        Run factory() once per key while pending.

        Returns:
            Result of the shared run
        """
        existing = self._pending.get(key)
        if existing is not None:
            # shield: one waiter being cancelled must not cancel the shared work
            return await asyncio.shield(existing)

        task = asyncio.ensure_future(factory())
        self._pending[key] = task
        task.add_done_callback(lambda _t, k=key: self._release(k, _t))
        return await asyncio.shield(task)

    def _release(self, key: Hashable, task: "asyncio.Future[Any]") -> None:
        if self._pending.get(key) is task:
            del self._pending[key]
        # retrieve the exception so an unobserved failure is not reported at gc
        if not task.cancelled():
            task.exception()

    def clear(self) -> None:
        """Forget pending keys (testing / reset only). Running work is not cancelled."""
        self._pending.clear()
