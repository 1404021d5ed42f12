from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple

from etherdash.core.utils.conv import as_address, as_bytes, as_hex, as_int, short_hex

DEVNET_CHAIN_IDS = frozenset({1337, 31337})
MAINNET_NAME = "Ethereum Mainnet"

TxFields = Dict[str, Any]


class NetType(str, Enum):
    MAINNET = "mainnet"
    TESTNET = "testnet"
    DEVNET = "devnet"
    UNKNOWN = "unknown"


class AccountType(str, Enum):
    WALLET = "Wallet"
    CONTRACT = "Contract"


class TransactionSource(str, Enum):
    """Where the fields of a Transaction came from."""
    BLOCK = "block"
    NODE = "node"
    INDEXER = "indexer"


@dataclass(frozen=True)
class Network:
    name: str
    title: str
    chain_id: int

    def net_type(self) -> NetType:
        """
        Classify the network.

        - Mainnet: the public Ethereum network
        - Testnet: a public network for testing (title mentions "Testnet")
        - Devnet: a local development network (Hardhat, Ganache, Geth --dev)
        """
        if self.name == MAINNET_NAME:
            return NetType.MAINNET
        if "Testnet" in self.title:
            return NetType.TESTNET
        if self.chain_id in DEVNET_CHAIN_IDS:
            return NetType.DEVNET
        return NetType.UNKNOWN

    @staticmethod
    def unknown(chain_id: int) -> "Network":
        return Network(name="Unknown", title="Unknown", chain_id=chain_id)


@dataclass(frozen=True)
class BlockHeader:
    """A new-head notification. `hash` is None when produced by height polling."""
    number: int
    hash: Optional[str] = None


@dataclass(frozen=True)
class Block:
    number: int
    hash: str
    timestamp: int
    transactions: Tuple[TxFields, ...] = ()
    base_fee_per_gas: Optional[int] = None

    def __str__(self) -> str:
        return f"[block #{self.number} hash={short_hex(self.hash)} txns={len(self.transactions)}]"


@dataclass(frozen=True)
class Transaction:
    """Immutable view over a ledger transaction, whatever its source."""
    source: TransactionSource
    block_number: Optional[int]
    hash: str
    sender: Optional[str]
    to: Optional[str]
    value: int
    input: bytes = b""
    timestamp: Optional[int] = None
    nonce: Optional[int] = None
    gas: Optional[int] = None
    gas_price: Optional[int] = None

    @property
    def is_contract_creation(self) -> bool:
        return self.to is None

    def involves(self, address: str) -> bool:
        """True if the address is the sender or the receiver of this transaction."""
        target = address.lower()
        if self.sender is not None and self.sender.lower() == target:
            return True
        return self.to is not None and self.to.lower() == target

    @staticmethod
    def from_block(tx: Mapping[str, Any], block: Block, sender: Optional[str]) -> "Transaction":
        """Build a transaction embedded in a fetched block; sender is recovered by the caller."""
        return Transaction(
            source=TransactionSource.BLOCK,
            block_number=block.number,
            hash=tx["hash"],
            sender=sender,
            to=tx.get("to"),
            value=tx.get("value", 0),
            input=tx.get("input", b""),
            timestamp=block.timestamp,
            nonce=tx.get("nonce"),
            gas=tx.get("gas"),
            gas_price=tx.get("gasPrice") if tx.get("gasPrice") is not None else tx.get("maxFeePerGas"),
        )

    @staticmethod
    def from_node(tx: Mapping[str, Any], sender: Optional[str], timestamp: Optional[int] = None) -> "Transaction":
        """Build a transaction fetched directly by hash (no enclosing block at hand)."""
        return Transaction(
            source=TransactionSource.NODE,
            block_number=tx.get("blockNumber"),
            hash=tx["hash"],
            sender=sender,
            to=tx.get("to"),
            value=tx.get("value", 0),
            input=tx.get("input", b""),
            timestamp=timestamp,
            nonce=tx.get("nonce"),
            gas=tx.get("gas"),
            gas_price=tx.get("gasPrice") if tx.get("gasPrice") is not None else tx.get("maxFeePerGas"),
        )


@dataclass(frozen=True)
class ChainData:
    """Chain-wide metrics published on each tick; a value that failed to load is None."""
    price: Optional[Decimal] = None
    gas_price: Optional[int] = None


@dataclass(frozen=True)
class TransactionRequest:
    """A transaction to be signed and submitted by the node client."""
    private_key: str
    to: Optional[str]
    value: int = 0
    data: bytes = b""
    gas_limit: Optional[int] = None
    gas_price: Optional[int] = None


_QUANTITY_FIELDS = (
    "blockNumber",
    "chainId",
    "gas",
    "gasPrice",
    "maxFeePerGas",
    "maxPriorityFeePerGas",
    "maxFeePerBlobGas",
    "nonce",
    "transactionIndex",
    "type",
    "v",
    "r",
    "s",
    "value",
    "yParity",
)


def decode_transaction_fields(raw: Mapping[str, Any]) -> TxFields:
    """
    Normalize a transaction object as returned by a node (raw JSON or web3 AttributeDict).

    Quantities become ints, `input` becomes bytes, addresses are checksummed and `hash` is a
    lowercase hex string. Raises KeyError, TypeError or ValueError on undecodable input.
    """
    fields: TxFields = {"hash": as_hex(raw["hash"])}
    for key in _QUANTITY_FIELDS:
        value = raw.get(key)
        if value is not None:
            fields[key] = as_int(value)
    fields.setdefault("type", 0)
    fields.setdefault("value", 0)
    fields["input"] = as_bytes(raw.get("input", raw.get("data")))
    fields["to"] = as_address(raw.get("to"))
    fields["from"] = as_address(raw.get("from"))
    if raw.get("accessList") is not None:
        fields["accessList"] = [
            {
                "address": as_address(entry["address"]),
                "storageKeys": [as_hex(key) for key in entry.get("storageKeys", [])],
            }
            for entry in raw["accessList"]
        ]
    if raw.get("blobVersionedHashes") is not None:
        fields["blobVersionedHashes"] = [as_hex(h) for h in raw["blobVersionedHashes"]]
    return fields


def decode_block(raw: Mapping[str, Any]) -> Block:
    """Normalize a block object returned with full transaction objects."""
    transactions = []
    for tx in raw.get("transactions") or []:
        # Blocks fetched without full transactions only carry hashes.
        if isinstance(tx, (str, bytes, bytearray)):
            continue
        transactions.append(decode_transaction_fields(tx))
    base_fee = raw.get("baseFeePerGas")
    return Block(
        number=as_int(raw["number"]),
        hash=as_hex(raw["hash"]),
        timestamp=as_int(raw["timestamp"]),
        transactions=tuple(transactions),
        base_fee_per_gas=as_int(base_fee) if base_fee is not None else None,
    )


def decode_header(raw: Mapping[str, Any]) -> BlockHeader:
    return BlockHeader(number=as_int(raw["number"]), hash=as_hex(raw["hash"]))
