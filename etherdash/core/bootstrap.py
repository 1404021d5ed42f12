from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from etherdash.api.events.event_bus import EventBus
from etherdash.configuration.config import Settings, settings
from etherdash.core.errors import ChainError
from etherdash.core.jobs.query_runner import QueryRunner
from etherdash.core.jobs.synchronizer_job import Synchronizer
from etherdash.core.onchain.node_client import PROVIDER_LOCAL, NodeClient
from etherdash.core.services.chain_service import ChainService
from etherdash.core.services.networks import NetworkRegistry
from etherdash.integrations.etherscan.etherscan_client import EtherscanClient
from etherdash.logging.logger import get_logger

log = get_logger(__name__)


@dataclass
class ChainCore:
    """Everything the dashboard needs, wired for one connection."""
    node: NodeClient
    service: ChainService
    bus: EventBus
    synchronizer: Synchronizer
    queries: QueryRunner
    indexer: Optional[EtherscanClient] = None

    async def close(self) -> None:
        """Stop background work and release network resources."""
        await self.synchronizer.stop()
        await self.queries.close()
        if self.indexer is not None:
            await self.indexer.close()
        await self.node.close()


async def build_core(config: Settings = settings) -> ChainCore:
    """
    Load network metadata, connect to the node and wire the core.

    The network registry is loaded first so a broken chains file fails before any connection opens.
    The synchronizer is built but not started.
    """
    networks = NetworkRegistry.load(config.CHAINS_FILE)

    endpoint = config.node_endpoint()
    if not endpoint:
        raise ValueError(f"no endpoint for provider {config.NODE_PROVIDER!r}; set NODE_URL")

    node = NodeClient(endpoint, provider_type=config.NODE_PROVIDER, timeout=config.NODE_TIMEOUT_SECONDS)
    await node.connect()
    try:
        identity = await node.get_chain_identity()
    except ChainError:
        await node.close()
        raise
    network = networks.lookup(identity.chain_id)

    indexer: Optional[EtherscanClient] = None
    if config.ETHERSCAN_ENABLED and node.provider_type != PROVIDER_LOCAL:
        indexer = EtherscanClient(config.etherscan_endpoint(), config.ETHERSCAN_API_KEY, chain_id=identity.chain_id,
                                  timeout=config.ETHERSCAN_TIMEOUT_SECONDS)

    service = ChainService(node, networks, indexer=indexer)
    bus = EventBus()
    bus.attach_current_loop()
    synchronizer = Synchronizer(service, bus, interval_seconds=config.SYNC_INTERVAL_SECONDS,
                                poll_interval_seconds=config.SYNC_BLOCK_POLL_INTERVAL_SECONDS)

    log.info("[CORE] Connected to %s (chain_id=%d, type=%s, indexer=%s)", network.name, network.chain_id,
             network.net_type().value, "etherscan" if indexer is not None else "none")
    return ChainCore(node=node, service=service, bus=bus, synchronizer=synchronizer, queries=QueryRunner(),
                     indexer=indexer)
