"""Process-wide "data changed" signal.

Writers call ``publish()`` after a successful commit; summary views subscribe
while mounted and recompute from the store when called. There is no payload
and no replay: a subscriber only hears about writes committed while it is
registered.
"""

from __future__ import annotations

import logging
import threading
from functools import lru_cache
from typing import Callable

logger = logging.getLogger(__name__)

Callback = Callable[[], None]


class SubscriberFault(RuntimeError):
    def __init__(self, callback: Callback, error: BaseException) -> None:
        name = getattr(callback, "__qualname__", repr(callback))
        super().__init__(f"invalidation subscriber {name} failed: {error!r}")
        self.callback = callback
        self.error = error


class Subscription:
    """Handle returned by ``InvalidationBus.subscribe``.

    Calling ``unsubscribe`` (or the handle itself) more than once is a no-op.
    """

    def __init__(self, bus: "InvalidationBus", token: int) -> None:
        self._bus = bus
        self._token = token
        self.active = True

    def unsubscribe(self) -> None:
        if not self.active:
            return
        self.active = False
        self._bus._remove(self._token)

    __call__ = unsubscribe


class InvalidationBus:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: dict[int, Callback] = {}
        self._next_token = 0
        self._closed = False

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscribers)

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self, callback: Callback) -> Subscription:
        with self._lock:
            if self._closed:
                raise RuntimeError("Invalidation bus is closed")
            self._next_token += 1
            token = self._next_token
            self._subscribers[token] = callback
        logger.debug(f"invalidation_subscribe: token={token}")
        return Subscription(self, token)

    def _remove(self, token: int) -> None:
        with self._lock:
            removed = self._subscribers.pop(token, None)
        if removed is not None:
            logger.debug(f"invalidation_unsubscribe: token={token}")

    def publish(self) -> tuple[SubscriberFault, ...]:
        """Call every current subscriber in registration order.

        A failing subscriber is logged and skipped; its fault is returned so
        callers may look at it, but nothing is raised to the writer.
        """
        with self._lock:
            callbacks = list(self._subscribers.values())
        logger.info(f"invalidation_publish: subscribers={len(callbacks)}")
        faults: list[SubscriberFault] = []
        for callback in callbacks:
            try:
                callback()
            except Exception as exc:
                fault = SubscriberFault(callback, exc)
                logger.exception(f"invalidation_subscriber_fault: {fault}")
                faults.append(fault)
        return tuple(faults)

    def close(self) -> None:
        with self._lock:
            self._closed = True
            self._subscribers.clear()
        logger.info("invalidation_bus_closed")


@lru_cache(maxsize=1)
def get_invalidation_bus() -> InvalidationBus:
    return InvalidationBus()
