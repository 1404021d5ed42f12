from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Dict, Hashable, Optional, Set

from etherdash.logging.logger import get_logger

log = get_logger(__name__)

DoneCallback = Callable[[Any, Optional[BaseException]], None]


class QueryRunner:
    """
    Runs on-demand queries (account, contract, history lookups) as background tasks.

    A query submitted under a key replaces the previous query with the same key, which is
    cancelled; `on_done(result, error)` is only called for queries that were not cancelled.
    """

    def __init__(self) -> None:
        self._by_key: Dict[Hashable, asyncio.Task] = {}
        self._tasks: Set[asyncio.Task] = set()

    def __len__(self) -> int:
        return len(self._tasks)

    def submit(self, query: Awaitable[Any], on_done: DoneCallback, key: Optional[Hashable] = None) -> asyncio.Task:
        if key is not None:
            self.cancel(key)

        task = asyncio.ensure_future(query)
        self._tasks.add(task)
        if key is not None:
            self._by_key[key] = task

        def _finished(done: asyncio.Task) -> None:
            self._tasks.discard(done)
            if key is not None and self._by_key.get(key) is done:
                del self._by_key[key]
            if done.cancelled():
                return
            error = done.exception()
            if error is not None:
                log.debug("[QUERY] Query %s failed: %s", key if key is not None else "-", error)
            try:
                on_done(None if error is not None else done.result(), error)
            except Exception as exc:
                log.exception("[QUERY] Completion callback failed: %s", exc)

        task.add_done_callback(_finished)
        return task

    def cancel(self, key: Hashable) -> bool:
        """Cancel the running query registered under `key`; returns False if there is none."""
        task = self._by_key.pop(key, None)
        if task is None or task.done():
            return False
        task.cancel()
        return True

    async def close(self) -> None:
        """Cancel every outstanding query and wait for them to unwind."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        self._by_key.clear()
        await asyncio.gather(*tasks, return_exceptions=True)
