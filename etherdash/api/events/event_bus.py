from __future__ import annotations

import asyncio
import inspect
import threading
from typing import Any, Callable, Dict, List, Optional, Set

from etherdash.logging.logger import get_logger

log = get_logger(__name__)

# Topics published by the synchronizer
TOPIC_NEW_BLOCK = "service:newBlock"
TOPIC_CHAIN_DATA = "service:chainData"
TOPIC_TICK = "service:tick"

Handler = Callable[[Any], Any]


class EventBus:
    """In-process publish/subscribe bus.

    Notes:
        - `publish()` must run on the event loop; it schedules handlers and returns immediately.
          Plain callables run via `loop.call_soon`, coroutine functions as tasks.
        - Handler failures are logged and never reach the publisher.
        - `attach_current_loop()` enables `publish_threadsafe()` from worker threads.
    """

    def __init__(self) -> None:
        self._subscribers: Dict[str, List[Handler]] = {}
        self._lock = threading.Lock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._pending: Set[asyncio.Task] = set()

    def attach_current_loop(self) -> None:
        """Attach the currently running event loop for thread-safe publishing."""
        self._loop = asyncio.get_running_loop()
        log.debug("[BUS] Attached to loop %s", self._loop)

    def subscribe(self, topic: str, handler: Handler) -> None:
        with self._lock:
            self._subscribers.setdefault(topic, []).append(handler)
        log.debug("[BUS] Subscribed %s to %s", getattr(handler, "__qualname__", handler), topic)

    def unsubscribe(self, topic: str, handler: Handler) -> bool:
        """Remove a handler; returns False when it was not subscribed."""
        with self._lock:
            handlers = self._subscribers.get(topic, [])
            if handler not in handlers:
                return False
            handlers.remove(handler)
            return True

    def subscribers(self, topic: str) -> List[Handler]:
        with self._lock:
            return list(self._subscribers.get(topic, []))

    def publish(self, topic: str, payload: Any) -> int:
        """Schedule every current subscriber of `topic` once; returns how many were scheduled."""
        loop = asyncio.get_running_loop()
        handlers = self.subscribers(topic)
        for handler in handlers:
            if inspect.iscoroutinefunction(handler):
                task = loop.create_task(self._run_async(topic, handler, payload))
                self._pending.add(task)
                task.add_done_callback(self._pending.discard)
            else:
                loop.call_soon(self._run_sync, topic, handler, payload)
        return len(handlers)

    def publish_threadsafe(self, topic: str, payload: Any) -> None:
        """Schedule `publish` on the attached loop from any thread.

        If no loop is attached, this is a no-op.
        """
        if self._loop is None:
            log.debug("[BUS] publish_threadsafe skipped for %s: no loop attached", topic)
            return
        self._loop.call_soon_threadsafe(self.publish, topic, payload)

    async def join(self) -> None:
        """Wait until every handler scheduled so far has completed."""
        await asyncio.sleep(0)
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
            await asyncio.sleep(0)

    @staticmethod
    def _run_sync(topic: str, handler: Handler, payload: Any) -> None:
        try:
            handler(payload)
        except Exception as exc:
            log.exception("[BUS] Handler for %s failed: %s", topic, exc)

    @staticmethod
    async def _run_async(topic: str, handler: Handler, payload: Any) -> None:
        try:
            await handler(payload)
        except Exception as exc:
            log.exception("[BUS] Handler for %s failed: %s", topic, exc)
