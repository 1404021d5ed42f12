from __future__ import annotations

"""
Chain-id aware transaction signers.

- ChainSigner computes canonical signing hashes (legacy/EIP-155, EIP-2930, EIP-1559, EIP-4844),
  recovers senders from v/r/s with eth-keys and signs with eth-account.
- MixedChainSigner serves transaction streams whose items were minted under different chain ids.
"""

import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

import rlp
from eth_account import Account as EthAccount
from eth_account.datastructures import SignedTransaction
from eth_keys import keys
from eth_keys.exceptions import BadSignature, ValidationError
from eth_utils import keccak, to_bytes

from etherdash.core.errors import MalformedResponseError, UnsupportedError
from etherdash.logging.logger import get_logger

log = get_logger(__name__)

HOMESTEAD_V_VALUES = (27, 28)
EIP155_V_OFFSET = 35

LEGACY_TX_TYPE = 0
ACCESS_LIST_TX_TYPE = 1
DYNAMIC_FEE_TX_TYPE = 2
BLOB_TX_TYPE = 3
SUPPORTED_TX_TYPES = frozenset({LEGACY_TX_TYPE, ACCESS_LIST_TX_TYPE, DYNAMIC_FEE_TX_TYPE, BLOB_TX_TYPE})


def _address_bytes(address: Optional[str]) -> bytes:
    return to_bytes(hexstr=address) if address else b""


def _hash_bytes(value: Any) -> bytes:
    return bytes(value) if isinstance(value, (bytes, bytearray)) else to_bytes(hexstr=value)


def _access_list_payload(tx: Mapping[str, Any]) -> List[List[Any]]:
    return [
        [_address_bytes(entry["address"]), [_hash_bytes(key) for key in entry.get("storageKeys", [])]]
        for entry in tx.get("accessList") or []
    ]


def transaction_chain_id(tx: Mapping[str, Any]) -> Optional[int]:
    """
    Return the chain id a transaction was signed for.

    Typed transactions carry it explicitly; legacy ones encode it in `v` (EIP-155).
    Pre-EIP-155 legacy transactions return None.
    """
    tx_type = tx.get("type", LEGACY_TX_TYPE)
    if tx_type not in SUPPORTED_TX_TYPES:
        raise UnsupportedError(f"transaction type {tx_type} is not supported")
    if tx_type != LEGACY_TX_TYPE:
        chain_id = tx.get("chainId")
        if chain_id is None:
            raise MalformedResponseError(f"typed transaction {tx.get('hash')} has no chainId")
        return int(chain_id)

    v = tx.get("v")
    if v is None:
        raise MalformedResponseError(f"transaction {tx.get('hash')} has no signature")
    if v in HOMESTEAD_V_VALUES:
        return None
    if v >= EIP155_V_OFFSET:
        return (v - EIP155_V_OFFSET) // 2
    raise MalformedResponseError(f"transaction {tx.get('hash')} has invalid v={v}")


def raw_transaction_bytes(signed: SignedTransaction) -> bytes:
    """Serialized payload ready for eth_sendRawTransaction."""
    return bytes(signed.raw_transaction)


class ChainSigner:
    """Signer bound to one chain id (None for pre-EIP-155 homestead transactions)."""

    def __init__(self, chain_id: Optional[int]) -> None:
        self.chain_id = chain_id

    def __repr__(self) -> str:
        return f"ChainSigner(chain_id={self.chain_id})"

    def signing_hash(self, tx: Mapping[str, Any]) -> bytes:
        """Return the keccak hash that the transaction's signature commits to."""
        tx_type = tx.get("type", LEGACY_TX_TYPE)
        try:
            to = _address_bytes(tx.get("to"))
            data = bytes(tx.get("input", b""))
            value = tx.get("value", 0)

            if tx_type == LEGACY_TX_TYPE:
                fields: List[Any] = [tx["nonce"], tx["gasPrice"], tx["gas"], to, value, data]
                if self.chain_id is not None:
                    fields += [self.chain_id, 0, 0]
                return keccak(rlp.encode(fields))

            if self.chain_id is None:
                raise UnsupportedError(f"typed transaction (type={tx_type}) requires a chain id")

            access_list = _access_list_payload(tx)
            if tx_type == ACCESS_LIST_TX_TYPE:
                payload = [self.chain_id, tx["nonce"], tx["gasPrice"], tx["gas"], to, value, data, access_list]
            elif tx_type == DYNAMIC_FEE_TX_TYPE:
                payload = [
                    self.chain_id, tx["nonce"], tx["maxPriorityFeePerGas"], tx["maxFeePerGas"],
                    tx["gas"], to, value, data, access_list,
                ]
            elif tx_type == BLOB_TX_TYPE:
                payload = [
                    self.chain_id, tx["nonce"], tx["maxPriorityFeePerGas"], tx["maxFeePerGas"],
                    tx["gas"], to, value, data, access_list,
                    tx["maxFeePerBlobGas"], [_hash_bytes(h) for h in tx.get("blobVersionedHashes") or []],
                ]
            else:
                raise UnsupportedError(f"transaction type {tx_type} is not supported")
        except (KeyError, TypeError, ValueError) as exc:
            raise MalformedResponseError(f"transaction {tx.get('hash')} is missing signing fields: {exc}") from exc

        return keccak(bytes([tx_type]) + rlp.encode(payload))

    def _recovery_id(self, tx: Mapping[str, Any]) -> int:
        if tx.get("type", LEGACY_TX_TYPE) != LEGACY_TX_TYPE:
            y_parity = tx.get("yParity")
            return int(y_parity if y_parity is not None else tx["v"])
        v = int(tx["v"])
        if self.chain_id is None:
            return v - HOMESTEAD_V_VALUES[0]
        return v - EIP155_V_OFFSET - 2 * self.chain_id

    def sender(self, tx: Mapping[str, Any]) -> str:
        """
        Recover the checksum address that signed the transaction.

        Raises:
            MalformedResponseError: the signature is invalid or was made for another chain.
            UnsupportedError: the transaction type is unknown to this signer.
        """
        tx_chain_id = transaction_chain_id(tx)
        if tx_chain_id != self.chain_id:
            raise MalformedResponseError(
                f"invalid chain id for signer: have {tx_chain_id}, want {self.chain_id}"
            )

        message_hash = self.signing_hash(tx)
        try:
            signature = keys.Signature(vrs=(self._recovery_id(tx), int(tx["r"]), int(tx["s"])))
            public_key = signature.recover_public_key_from_msg_hash(message_hash)
        except (BadSignature, ValidationError, KeyError, ValueError) as exc:
            raise MalformedResponseError(f"cannot recover sender of {tx.get('hash')}: {exc}") from exc
        return public_key.to_checksum_address()

    def sign(self, tx: Mapping[str, Any], private_key: str) -> SignedTransaction:
        """Sign an unsigned transaction dict for this signer's chain."""
        if self.chain_id is None:
            raise UnsupportedError("refusing to sign a transaction without replay protection")
        payload = dict(tx)
        payload["chainId"] = self.chain_id
        return EthAccount.sign_transaction(payload, private_key)


class MixedChainSigner:
    """
    Signer for data streams that mix chain ids.

    One ChainSigner per chain id is built the first time a transaction bearing that id is seen.
    New transactions are always signed for `default_chain_id`.
    """

    def __init__(self, default_chain_id: int) -> None:
        self.default_chain_id = default_chain_id
        self._signers: Dict[Optional[int], ChainSigner] = {}
        self._lock = threading.Lock()

    def _signer_for(self, chain_id: Optional[int]) -> ChainSigner:
        with self._lock:
            signer = self._signers.get(chain_id)
            if signer is None:
                signer = ChainSigner(chain_id)
                self._signers[chain_id] = signer
                log.debug("[SIGNER] Built signer for chain_id=%s", chain_id)
            return signer

    def signing_hash(self, tx: Mapping[str, Any]) -> bytes:
        return self._signer_for(transaction_chain_id(tx)).signing_hash(tx)

    def sender(self, tx: Mapping[str, Any]) -> str:
        return self._signer_for(transaction_chain_id(tx)).sender(tx)

    def sign(self, tx: Mapping[str, Any], private_key: str) -> SignedTransaction:
        return self._signer_for(self.default_chain_id).sign(tx, private_key)


@dataclass
class ChainIdentity:
    """Chain id of a connection and the signer used for everything it signs or recovers."""
    chain_id: int
    signer: MixedChainSigner = field(repr=False)
