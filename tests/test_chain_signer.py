import pytest
import rlp
from eth_account import Account as EthAccount
from eth_keys import keys
from eth_utils import keccak

from conftest import ALICE, ALICE_KEY, BOB, BOB_KEY, CAROL, GWEI, TOKEN, signed_fields
from etherdash.core.errors import MalformedResponseError, UnsupportedError
from etherdash.core.onchain.chain_signer import (
    BLOB_TX_TYPE,
    ChainSigner,
    MixedChainSigner,
    raw_transaction_bytes,
    transaction_chain_id,
)
from etherdash.core.structures.structures import decode_transaction_fields
from etherdash.core.utils.conv import as_hex

STORAGE_KEY = "0x" + "00" * 31 + "01"
BLOB_HASH = "0x01" + "ab" * 31


def _private_key(private_key: str) -> keys.PrivateKey:
    return keys.PrivateKey(bytes.fromhex(private_key[2:]))


def test_legacy_eip155_sender_is_recovered():
    fields = signed_fields(ALICE_KEY, chain_id=1)
    assert transaction_chain_id(fields) == 1
    assert ChainSigner(1).sender(fields) == ALICE


def test_dynamic_fee_sender_is_recovered():
    fields = signed_fields(BOB_KEY, chain_id=5, tx_type=2)
    assert transaction_chain_id(fields) == 5
    assert ChainSigner(5).sender(fields) == BOB


def test_sender_rejects_transaction_from_other_chain():
    fields = signed_fields(ALICE_KEY, chain_id=1)
    with pytest.raises(MalformedResponseError):
        ChainSigner(5).sender(fields)


def test_unknown_transaction_type_is_unsupported():
    fields = signed_fields(ALICE_KEY, chain_id=10)
    fields["type"] = 0x7E
    with pytest.raises(UnsupportedError):
        MixedChainSigner(10).sender(fields)


def test_tampered_signature_recovers_another_address():
    fields = signed_fields(ALICE_KEY, chain_id=1)
    fields["value"] = fields["value"] + 1
    assert ChainSigner(1).sender(fields) != ALICE


def test_mixed_signer_handles_several_chain_ids_in_one_stream():
    signer = MixedChainSigner(default_chain_id=1)
    stream = [
        signed_fields(ALICE_KEY, chain_id=1),
        signed_fields(BOB_KEY, chain_id=5, tx_type=2),
        signed_fields(BOB_KEY, chain_id=1, nonce=3),
    ]

    senders = [signer.sender(tx) for tx in stream]

    assert senders == [ALICE, BOB, BOB]
    assert sorted(signer._signers) == [1, 5]


def test_mixed_signer_signs_for_its_default_chain():
    signer = MixedChainSigner(default_chain_id=5)
    tx = {"nonce": 0, "to": CAROL, "value": 1, "gas": 21000, "gasPrice": GWEI, "data": b""}

    signed = signer.sign(tx, ALICE_KEY)

    assert signed.v in (5 * 2 + 35, 5 * 2 + 36)
    assert EthAccount.recover_transaction(raw_transaction_bytes(signed)) == ALICE


def test_homestead_signer_refuses_to_sign():
    with pytest.raises(UnsupportedError):
        ChainSigner(None).sign({"nonce": 0, "to": CAROL, "value": 0, "gas": 21000, "gasPrice": GWEI}, ALICE_KEY)


def test_homestead_sender_is_recovered():
    unsigned = [2, GWEI, 21000, bytes.fromhex(CAROL[2:]), 1, b""]
    signature = _private_key(BOB_KEY).sign_msg_hash(keccak(rlp.encode(unsigned)))
    v = signature.v + 27
    raw = {
        "hash": as_hex(keccak(rlp.encode(unsigned + [v, signature.r, signature.s]))),
        "type": "0x0",
        "nonce": "0x2",
        "gasPrice": hex(GWEI),
        "gas": hex(21000),
        "to": CAROL.lower(),
        "value": "0x1",
        "input": "0x",
        "v": hex(v),
        "r": hex(signature.r),
        "s": hex(signature.s),
    }
    fields = decode_transaction_fields(raw)
    signer = MixedChainSigner(default_chain_id=1)

    assert transaction_chain_id(fields) is None
    assert signer.sender(fields) == BOB
    assert list(signer._signers) == [None]


def test_access_list_sender_is_recovered():
    signed = EthAccount.sign_transaction({
        "type": 1,
        "chainId": 1,
        "nonce": 3,
        "gasPrice": GWEI,
        "gas": 50_000,
        "to": TOKEN,
        "value": 0,
        "data": bytes.fromhex("a9059cbb"),
        "accessList": [{"address": TOKEN, "storageKeys": [STORAGE_KEY]}],
    }, ALICE_KEY)
    raw = {
        "hash": as_hex(signed.hash),
        "type": "0x1",
        "chainId": "0x1",
        "nonce": "0x3",
        "gasPrice": hex(GWEI),
        "gas": hex(50_000),
        "to": TOKEN.lower(),
        "value": "0x0",
        "input": "0xa9059cbb",
        "accessList": [{"address": TOKEN.lower(), "storageKeys": [STORAGE_KEY]}],
        "v": hex(signed.v),
        "yParity": hex(signed.v),
        "r": hex(signed.r),
        "s": hex(signed.s),
    }

    fields = decode_transaction_fields(raw)

    assert fields["accessList"] == [{"address": TOKEN, "storageKeys": [STORAGE_KEY]}]
    assert MixedChainSigner(default_chain_id=1).sender(fields) == ALICE


def test_blob_sender_is_recovered():
    payload = [
        1, 0, GWEI, 2 * GWEI, 21000, bytes.fromhex(CAROL[2:]), 0, b"", [],
        GWEI, [bytes.fromhex(BLOB_HASH[2:])],
    ]
    signature = _private_key(ALICE_KEY).sign_msg_hash(keccak(bytes([BLOB_TX_TYPE]) + rlp.encode(payload)))
    raw = {
        "hash": "0x" + "5b" * 32,
        "type": "0x3",
        "chainId": "0x1",
        "nonce": "0x0",
        "maxPriorityFeePerGas": hex(GWEI),
        "maxFeePerGas": hex(2 * GWEI),
        "maxFeePerBlobGas": hex(GWEI),
        "gas": hex(21000),
        "to": CAROL.lower(),
        "value": "0x0",
        "input": "0x",
        "accessList": [],
        "blobVersionedHashes": [BLOB_HASH],
        "v": hex(signature.v),
        "yParity": hex(signature.v),
        "r": hex(signature.r),
        "s": hex(signature.s),
    }

    fields = decode_transaction_fields(raw)

    assert fields["maxFeePerBlobGas"] == GWEI
    assert fields["blobVersionedHashes"] == [BLOB_HASH]
    assert MixedChainSigner(default_chain_id=1).sender(fields) == ALICE
