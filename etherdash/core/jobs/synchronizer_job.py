from __future__ import annotations

"""
Synchronizer: watches new blocks and a periodic tick, republishes them on the event bus.

Two producers (new heads, ticks) feed one queue; a single consumer handles one event per
iteration, so block and chain-data publications never interleave.
"""

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Union

from etherdash.api.events.event_bus import TOPIC_CHAIN_DATA, TOPIC_NEW_BLOCK, TOPIC_TICK, EventBus
from etherdash.configuration.config import settings
from etherdash.core.errors import AlreadyStartedError, ChainError, MalformedResponseError, TransportError
from etherdash.core.onchain.node_client import NewHeadsSubscription
from etherdash.core.services.chain_service import ChainService
from etherdash.core.structures.structures import Block, BlockHeader, ChainData
from etherdash.core.utils.conv import short_hex
from etherdash.logging.logger import get_logger

log = get_logger(__name__)


class SyncState(str, Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    STOPPED = "stopped"


@dataclass(frozen=True)
class NewHeadEvent:
    header: BlockHeader


@dataclass(frozen=True)
class TickEvent:
    at: float


SyncEvent = Union[NewHeadEvent, TickEvent]


class Synchronizer:
    """
    Single-loop synchronizer of live chain state.

    Lifecycle: NOT_STARTED -> RUNNING -> STOPPED. `start()` succeeds once; `stop()` is terminal.
    """

    def __init__(
            self,
            service: ChainService,
            bus: EventBus,
            interval_seconds: Optional[float] = None,
            poll_interval_seconds: Optional[float] = None,
    ) -> None:
        self._service = service
        self._bus = bus
        self._interval = float(interval_seconds if interval_seconds is not None else settings.SYNC_INTERVAL_SECONDS)
        self._poll_interval = float(
            poll_interval_seconds if poll_interval_seconds is not None else settings.SYNC_BLOCK_POLL_INTERVAL_SECONDS)
        self._state = SyncState.NOT_STARTED
        self._lock = asyncio.Lock()
        self._queue: Optional[asyncio.Queue] = None
        self._subscription: Optional[NewHeadsSubscription] = None
        self._tasks: List[asyncio.Task] = []

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state == SyncState.RUNNING

    async def start(self) -> None:
        """
        Subscribe to new heads and start the producers and the consumer.

        Raises:
            AlreadyStartedError: start() was already called successfully (or the synchronizer stopped).
            ChainError: the new-heads subscription failed; the synchronizer stays NOT_STARTED.
        """
        async with self._lock:
            if self._state != SyncState.NOT_STARTED:
                raise AlreadyStartedError(f"synchronizer is {self._state.value}")

            subscription: Optional[NewHeadsSubscription] = None
            if self._service.node.supports_subscriptions:
                subscription = await self._service.subscribe_new_heads()

            self._subscription = subscription
            self._queue = asyncio.Queue()
            self._state = SyncState.RUNNING
            self._tasks = [
                asyncio.create_task(self._produce_heads(), name="sync-heads"),
                asyncio.create_task(self._produce_ticks(), name="sync-ticks"),
                asyncio.create_task(self._consume(), name="sync-consumer"),
            ]
        log.info("[SYNC] Synchronizer started (mode=%s, interval=%ss)",
                 "subscription" if subscription is not None else "polling", self._interval)

    async def stop(self) -> None:
        """Cancel the loop and release the subscription. Stopping is terminal."""
        async with self._lock:
            if self._state == SyncState.STOPPED:
                return
            self._state = SyncState.STOPPED
            tasks, self._tasks = self._tasks, []
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            if self._subscription is not None:
                await self._subscription.unsubscribe()
                self._subscription = None
        log.info("[SYNC] Synchronizer stopped")

    # ------------------------------------------------------------------ #
    # Producers
    # ------------------------------------------------------------------ #

    async def _produce_heads(self) -> None:
        if self._subscription is not None:
            try:
                async for header in self._subscription:
                    await self._queue.put(NewHeadEvent(header))
                log.warning("[SYNC] newHeads subscription ended; polling block height instead")
            except (TransportError, MalformedResponseError) as exc:
                log.warning("[SYNC] newHeads subscription failed (%s); polling block height instead", exc)
        await self._poll_heads()

    async def _poll_heads(self) -> None:
        last_seen: Optional[int] = None
        while True:
            try:
                height = await self._service.get_block_height()
                if last_seen is not None and height > last_seen:
                    for number in range(last_seen + 1, height + 1):
                        await self._queue.put(NewHeadEvent(BlockHeader(number=number)))
                if last_seen is None or height > last_seen:
                    last_seen = height
            except ChainError as exc:
                log.warning("[SYNC] Block height poll failed: %s", exc)
            await asyncio.sleep(self._poll_interval)

    async def _produce_ticks(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            await self._queue.put(TickEvent(at=time.time()))

    # ------------------------------------------------------------------ #
    # Consumer
    # ------------------------------------------------------------------ #

    async def _consume(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                if isinstance(event, NewHeadEvent):
                    await self._handle_new_head(event.header)
                else:
                    await self._handle_tick(event.at)
            except Exception as exc:
                log.exception("[SYNC] Loop error: %s", exc)
            finally:
                self._queue.task_done()

    async def _handle_new_head(self, header: BlockHeader) -> None:
        log.info("[SYNC] Received new block header #%d %s", header.number, short_hex(header.hash))
        try:
            if header.hash is not None:
                block: Block = await self._service.get_block_by_hash(header.hash)
            else:
                block = await self._service.get_block_by_number(header.number)
        except ChainError as exc:
            log.error("[SYNC] Failed to fetch block #%d: %s", header.number, exc)
            return
        self._bus.publish(TOPIC_NEW_BLOCK, block)

    async def _handle_tick(self, at: float) -> None:
        log.debug("[SYNC] Periodic synchronization at %.0f", at)
        price = None
        gas_price = None
        try:
            price = await self._service.get_eth_price()
        except ChainError as exc:
            log.error("[SYNC] Failed to fetch ether price: %s", exc)
        try:
            gas_price = await self._service.get_gas_price()
        except ChainError as exc:
            log.error("[SYNC] Failed to fetch gas price: %s", exc)

        self._bus.publish(TOPIC_CHAIN_DATA, ChainData(price=price, gas_price=gas_price))
        self._bus.publish(TOPIC_TICK, at)
