from __future__ import annotations

from etherdash.logging.logger import init_logging

init_logging()

import asyncio

from etherdash.api.events.event_bus import TOPIC_CHAIN_DATA, TOPIC_NEW_BLOCK
from etherdash.core.bootstrap import build_core
from etherdash.core.structures.structures import Block, ChainData
from etherdash.core.utils.conv import short_hex, to_gwei
from etherdash.logging.logger import get_logger

log = get_logger(__name__)


def _on_new_block(block: Block) -> None:
    log.info("[WATCH] Block #%d %s with %d transactions", block.number, short_hex(block.hash),
             len(block.transactions))


def _on_chain_data(data: ChainData) -> None:
    price = f"${data.price}" if data.price is not None else "n/a"
    gas = f"{to_gwei(data.gas_price):.2f} gwei" if data.gas_price is not None else "n/a"
    log.info("[WATCH] ETH price=%s gas price=%s", price, gas)


async def watch() -> None:
    """Headless watch: log new blocks and chain data until interrupted."""
    core = await build_core()
    core.bus.subscribe(TOPIC_NEW_BLOCK, _on_new_block)
    core.bus.subscribe(TOPIC_CHAIN_DATA, _on_chain_data)
    try:
        height = await core.service.get_block_height()
        log.info("[WATCH] Current block height %d", height)
        await core.synchronizer.start()
        await asyncio.Event().wait()
    finally:
        await core.close()


def run() -> None:
    try:
        asyncio.run(watch())
    except KeyboardInterrupt:
        log.info("[WATCH] Interrupted")


if __name__ == "__main__":
    run()
