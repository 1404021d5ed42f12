from __future__ import annotations

"""
Domain resolver: turns addresses into Account / Contract / Signer objects and picks the
transaction-history strategy from the network classification.

- Devnet: traverse the most recent blocks and filter client-side.
- Other networks: Etherscan account history when available, else Alchemy asset transfers.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from etherdash.configuration.config import settings
from etherdash.core.errors import InvalidArgumentError, NotAContractError, UnsupportedError
from etherdash.core.onchain.chain_signer import MixedChainSigner
from etherdash.core.onchain.node_client import PROVIDER_ALCHEMY, NewHeadsSubscription, NodeClient
from etherdash.core.services.accounts import Account, Contract, Signer
from etherdash.core.services.cache import EntryKind, ObjectCache
from etherdash.core.services.networks import NetworkRegistry
from etherdash.core.structures.structures import (
    Block,
    Network,
    NetType,
    Transaction,
    TransactionRequest,
    TxFields,
)
from etherdash.core.utils.conv import as_hex, short_hex, to_address
from etherdash.integrations.etherscan.etherscan_client import EtherscanClient
from etherdash.logging.logger import get_logger

log = get_logger(__name__)

TRANSFER_GAS_LIMIT = 21_000

CacheKey = Tuple[int, str, EntryKind]


def _parse_block_timestamp(value: Optional[str]) -> Optional[int]:
    """Parse an ISO-8601 block timestamp as returned in Alchemy transfer metadata."""
    if not value:
        return None
    try:
        return int(datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp())
    except ValueError:
        log.debug("[SERVICE] Ignoring undecodable block timestamp %r", value)
        return None


def _block_range_desc(height: int, count: int) -> List[int]:
    """Block numbers from `height` down to max(1, height - count + 1)."""
    lowest = max(1, height - count + 1)
    return list(range(height, lowest - 1, -1))


def _chunks(items: Sequence[int], size: int) -> Iterable[Sequence[int]]:
    for start in range(0, len(items), max(1, size)):
        yield items[start:start + size]


class ChainService:
    """
    Entry point for on-demand queries of the dashboard.

    The service owns the object cache; the node client, network registry and indexer are injected.
    Failures propagate to the caller; nothing is retried here.
    """

    def __init__(
            self,
            node: NodeClient,
            networks: NetworkRegistry,
            indexer: Optional[EtherscanClient] = None,
            cache: Optional[ObjectCache] = None,
    ) -> None:
        self.node = node
        self.networks = networks
        self.indexer = indexer
        self._cache = cache if cache is not None else ObjectCache()

    # ------------------------------------------------------------------ #
    # Network
    # ------------------------------------------------------------------ #

    async def get_network(self) -> Network:
        identity = await self.node.get_chain_identity()
        return self.networks.lookup(identity.chain_id)

    async def get_block_height(self) -> int:
        return await self.node.get_block_height()

    async def get_gas_price(self) -> int:
        return await self.node.get_gas_price()

    async def get_eth_price(self) -> Decimal:
        if self.indexer is None:
            raise UnsupportedError("ether price requires the Etherscan integration")
        return await self.indexer.eth_price()

    async def get_block_by_hash(self, block_hash: str) -> Block:
        return await self.node.get_block_by_hash(block_hash)

    async def get_block_by_number(self, number: int) -> Block:
        return await self.node.get_block_by_number(number)

    async def subscribe_new_heads(self) -> NewHeadsSubscription:
        return await self.node.subscribe_new_heads()

    # ------------------------------------------------------------------ #
    # Accounts and contracts
    # ------------------------------------------------------------------ #

    async def _cache_key(self, address: str, kind: EntryKind) -> CacheKey:
        identity = await self.node.get_chain_identity()
        return identity.chain_id, address, kind

    async def resolve_account(self, address: str) -> Account:
        """
        Return the account at `address`.

        A cached account is returned as-is after clearing its balance, so the next balance read
        is fresh. On a miss the byte code is fetched and the new account cached without expiry.
        """
        address = to_address(address)
        key = await self._cache_key(address, EntryKind.ACCOUNT)
        cached, hit = self._cache.get(key)
        if hit:
            cached.clear_cache()
            return cached

        code = await self.node.get_code(address)
        account = self._cache.get_or_set(key, Account(self, address, code))
        log.debug("[SERVICE] Resolved %s as %s", short_hex(address), account.type.value)
        return account

    async def resolve_contract(self, account: Account) -> Contract:
        """
        Upgrade a contract account to a Contract with interface and source when known.

        Raises:
            NotAContractError: the account holds no byte code.
        """
        if not account.is_contract:
            raise NotAContractError(f"address {account.address} is not a contract account")

        key = await self._cache_key(account.address, EntryKind.CONTRACT)
        cached, hit = self._cache.get(key)
        if hit:
            return cached

        network = await self.get_network()
        if network.net_type() == NetType.DEVNET or self.indexer is None:
            contract = Contract(self, account.address, account.code)
        else:
            source, interface = await self.indexer.get_source_code(account.address)
            contract = Contract(self, account.address, account.code, interface=interface, source=source)

        log.debug("[SERVICE] Contract %s resolved (interface=%s)", short_hex(account.address),
                  contract.has_interface)
        return self._cache.get_or_set(key, contract, ttl=settings.CACHE_CONTRACT_TTL_SECONDS)

    async def get_contract(self, address: str) -> Contract:
        account = await self.resolve_account(address)
        return await self.resolve_contract(account)

    def get_signer(self, private_key: str) -> Signer:
        """Build a signer for a private key. Signers never enter the cache."""
        return Signer(self, private_key)

    # ------------------------------------------------------------------ #
    # Transactions
    # ------------------------------------------------------------------ #

    @staticmethod
    def _sender_of(signer: MixedChainSigner, fields: TxFields) -> Optional[str]:
        try:
            return signer.sender(fields)
        except UnsupportedError:
            return fields.get("from")

    async def transactions_by_block(self, block: Block) -> List[Transaction]:
        """Transactions of a block with senders recovered from their signatures."""
        identity = await self.node.get_chain_identity()
        return [
            Transaction.from_block(fields, block, self._sender_of(identity.signer, fields))
            for fields in block.transactions
        ]

    async def _blocks_desc(self, count: int) -> List[Block]:
        height = await self.get_block_height()
        blocks: List[Block] = []
        for numbers in _chunks(_block_range_desc(height, count), settings.HISTORY_BATCH_SIZE):
            blocks.extend(await self.node.batch_blocks_by_number(numbers))
        return blocks

    async def get_latest_transactions(self, n: int) -> List[Transaction]:
        """Transactions of the last `n` blocks, newest block first."""
        if n <= 0:
            raise InvalidArgumentError(f"block count must be positive, got {n}")
        transactions: List[Transaction] = []
        for block in await self._blocks_desc(n):
            transactions.extend(await self.transactions_by_block(block))
        return transactions

    async def get_transaction_history(self, address: str) -> List[Transaction]:
        address = to_address(address)
        network = await self.get_network()
        if network.net_type() == NetType.DEVNET:
            return await self._history_by_traversal(address)
        if self.indexer is not None:
            return await self.indexer.account_tx_list(address)
        if self.node.provider_type == PROVIDER_ALCHEMY:
            return await self._history_by_asset_transfers(address)
        raise UnsupportedError(f"no transaction history source for network {network.name}")

    async def _history_by_traversal(self, address: str) -> List[Transaction]:
        height = await self.get_block_height()
        max_transactions = settings.DEVNET_HISTORY_MAX_TRANSACTIONS
        found: List[Transaction] = []
        seen = set()

        numbers = _block_range_desc(height, settings.DEVNET_HISTORY_MAX_BLOCKS)
        for chunk in _chunks(numbers, settings.HISTORY_BATCH_SIZE):
            for block in await self.node.batch_blocks_by_number(chunk):
                for tx in await self.transactions_by_block(block):
                    if tx.hash in seen or not tx.involves(address):
                        continue
                    seen.add(tx.hash)
                    found.append(tx)
                    if len(found) >= max_transactions:
                        log.debug("[SERVICE] History of %s capped at %d transactions", short_hex(address),
                                  max_transactions)
                        return found
        return found

    async def _history_by_asset_transfers(self, address: str) -> List[Transaction]:
        base: Dict[str, Any] = {
            "category": ["external"],
            "order": "desc",
            "withMetadata": True,
            "maxCount": hex(settings.ALCHEMY_TRANSFERS_MAX_COUNT),
        }
        outgoing = await self.node.get_asset_transfers({**base, "fromAddress": address})
        incoming = await self.node.get_asset_transfers({**base, "toAddress": address})

        timestamps: Dict[str, Optional[int]] = {}
        for transfer in list(outgoing.get("transfers") or []) + list(incoming.get("transfers") or []):
            tx_hash = as_hex(transfer["hash"])
            if tx_hash not in timestamps:
                metadata = transfer.get("metadata") or {}
                timestamps[tx_hash] = _parse_block_timestamp(metadata.get("blockTimestamp"))
        if not timestamps:
            return []

        identity = await self.node.get_chain_identity()
        transactions = [
            Transaction.from_node(fields, self._sender_of(identity.signer, fields), timestamps.get(fields["hash"]))
            for fields in await self.node.batch_transactions_by_hash(list(timestamps))
        ]
        transactions.sort(key=lambda tx: tx.block_number or 0, reverse=True)
        return transactions

    # ------------------------------------------------------------------ #
    # Calls and submissions
    # ------------------------------------------------------------------ #

    async def call_contract(self, contract: Contract, method: str, *args: Any) -> Tuple[Any, ...]:
        return await contract.call(method, *args)

    async def submit_transfer(self, signer: Signer, to: str, amount: int) -> str:
        """Transfer `amount` wei with a plain 21000-gas transaction; returns the hash."""
        to = to_address(to)
        if amount < 0:
            raise InvalidArgumentError(f"amount must not be negative, got {amount}")
        tx_hash = await self.node.send_transaction(TransactionRequest(
            private_key=signer.private_key,
            to=to,
            value=amount,
            gas_limit=TRANSFER_GAS_LIMIT,
        ))
        signer.clear_cache()
        log.info("[SERVICE] Transfer %s → %s submitted: %s", short_hex(signer.address), short_hex(to),
                 short_hex(tx_hash))
        return tx_hash

    async def submit_contract_call(self, signer: Signer, contract: Contract, method: str, *args: Any) -> str:
        """Submit a state-changing call to `contract.method(*args)`; returns the hash."""
        if contract.interface is None:
            raise UnsupportedError(f"contract {contract.address} has no known interface")
        data = contract.interface.encode_call(method, *args)
        gas_limit = await self.node.estimate_gas(contract.address, signer.address, data)
        tx_hash = await self.node.send_transaction(TransactionRequest(
            private_key=signer.private_key,
            to=contract.address,
            data=data,
            gas_limit=gas_limit,
        ))
        signer.clear_cache()
        log.info("[SERVICE] Call %s.%s submitted: %s", short_hex(contract.address), method, short_hex(tx_hash))
        return tx_hash
