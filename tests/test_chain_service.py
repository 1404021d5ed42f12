import asyncio
from decimal import Decimal

import pytest

from conftest import (
    ALICE,
    ALICE_KEY,
    BOB,
    BOB_KEY,
    CAROL,
    ERC20_ABI_JSON,
    TOKEN,
    FakeIndexer,
    FakeNode,
    make_block,
    signed_fields,
)
from etherdash.core.errors import (
    InvalidArgumentError,
    NodeUnavailableError,
    NotAContractError,
    UnsupportedError,
)
from etherdash.core.onchain.contract_interface import ContractInterface
from etherdash.core.services.cache import ObjectCache
from etherdash.core.services.chain_service import TRANSFER_GAS_LIMIT, ChainService
from etherdash.core.services.networks import NetworkRegistry
from etherdash.core.structures.structures import AccountType, Network, Transaction, TransactionSource

REGISTRY = NetworkRegistry([
    Network(name="Ethereum Mainnet", title="", chain_id=1),
    Network(name="Goerli", title="Ethereum Testnet Goerli", chain_id=5),
    Network(name="Hardhat", title="", chain_id=31337),
])


def _service(node: FakeNode, indexer=None, cache=None) -> ChainService:
    return ChainService(node, REGISTRY, indexer=indexer, cache=cache)


def _devnet_chain():
    t1 = signed_fields(ALICE_KEY, chain_id=31337, to=CAROL, nonce=0)
    t2 = signed_fields(BOB_KEY, chain_id=31337, to=ALICE, nonce=0, tx_type=2)
    t3 = signed_fields(BOB_KEY, chain_id=31337, to=CAROL, nonce=1)
    blocks = [
        make_block(1),
        make_block(2, t1),
        make_block(3),
        make_block(4, t2),
        make_block(5, t3),
    ]
    return FakeNode(chain_id=31337, blocks=blocks), (t1, t2, t3)


def test_network_is_looked_up_by_chain_id():
    assert asyncio.run(_service(FakeNode(chain_id=5)).get_network()).name == "Goerli"
    unknown = asyncio.run(_service(FakeNode(chain_id=424242)).get_network())
    assert (unknown.name, unknown.chain_id) == ("Unknown", 424242)


def test_resolve_account_twice_returns_cached_object():
    node = FakeNode()
    service = _service(node)

    first = asyncio.run(service.resolve_account(ALICE.lower()))
    second = asyncio.run(service.resolve_account(ALICE))

    assert first is second
    assert first.address == ALICE
    assert node.code_calls == 1


def test_accounts_are_classified_by_code():
    node = FakeNode()
    node.codes[TOKEN] = bytes.fromhex("6080604052")
    service = _service(node)

    wallet = asyncio.run(service.resolve_account(ALICE))
    contract = asyncio.run(service.resolve_account(TOKEN))

    assert wallet.type == AccountType.WALLET and not wallet.is_contract
    assert contract.type == AccountType.CONTRACT and contract.is_contract


def test_cache_never_serves_another_chains_account():
    cache = ObjectCache()
    mainnet = _service(FakeNode(chain_id=1), cache=cache)
    goerli = _service(FakeNode(chain_id=5), cache=cache)

    a = asyncio.run(mainnet.resolve_account(ALICE))
    b = asyncio.run(goerli.resolve_account(ALICE))

    assert a is not b


def test_resurfaced_account_reads_a_fresh_balance():
    node = FakeNode()
    node.balances[ALICE] = 100
    service = _service(node)

    async def scenario():
        account = await service.resolve_account(ALICE)
        first = await account.get_balance()
        node.balances[ALICE] = 250
        cached = await account.get_balance()
        await service.resolve_account(ALICE)
        fresh = await account.get_balance()
        return first, cached, fresh

    assert asyncio.run(scenario()) == (100, 100, 250)
    assert node.balance_calls == 2


def test_forced_balance_failure_zeroes_the_cache_and_raises():
    node = FakeNode()
    node.balances[ALICE] = 100
    service = _service(node)

    async def scenario():
        account = await service.resolve_account(ALICE)
        await account.get_balance()
        node.balances[ALICE] = NodeUnavailableError("down")
        with pytest.raises(NodeUnavailableError):
            await account.get_balance_force()
        return account

    account = asyncio.run(scenario())
    assert account.cached_balance == 0


def test_wallet_cannot_become_a_contract():
    service = _service(FakeNode())
    account = asyncio.run(service.resolve_account(ALICE))
    with pytest.raises(NotAContractError):
        asyncio.run(account.as_contract())


def test_devnet_contract_is_a_skeleton():
    node = FakeNode(chain_id=31337)
    node.codes[TOKEN] = b"\x60\x80"
    indexer = FakeIndexer()

    contract = asyncio.run(_service(node, indexer=indexer).get_contract(TOKEN))

    assert contract.interface is None
    assert indexer.source_calls == 0


def test_verified_contract_gets_interface_and_is_cached():
    node = FakeNode(chain_id=1)
    node.codes[TOKEN] = b"\x60\x80"
    indexer = FakeIndexer(source=("contract Token {}", ContractInterface.from_json(ERC20_ABI_JSON)))
    service = _service(node, indexer=indexer)

    first = asyncio.run(service.get_contract(TOKEN))
    second = asyncio.run(service.get_contract(TOKEN))

    assert first is second
    assert first.source == "contract Token {}"
    assert "balanceOf" in first.interface.methods
    assert indexer.source_calls == 1


def test_contract_call_checks_the_interface():
    node = FakeNode(chain_id=31337)
    node.codes[TOKEN] = b"\x60\x80"
    service = _service(node)

    async def scenario():
        contract = await service.get_contract(TOKEN)
        with pytest.raises(UnsupportedError):
            await service.call_contract(contract, "balanceOf", ALICE)
        contract.import_interface(ERC20_ABI_JSON)
        with pytest.raises(InvalidArgumentError):
            await contract.call("transfer", BOB, 1)
        with pytest.raises(InvalidArgumentError):
            await contract.call("mint", BOB, 1)
        return await service.call_contract(contract, "balanceOf", ALICE)

    assert asyncio.run(scenario()) == (42,)
    assert node.contract_calls == [(TOKEN, "balanceOf", (ALICE,))]


def test_devnet_history_keeps_only_related_transactions():
    node, (t1, t2, t3) = _devnet_chain()

    history = asyncio.run(_service(node).get_transaction_history(ALICE))

    assert [tx.hash for tx in history] == [t2["hash"], t1["hash"]]
    assert history[0].sender == BOB and history[0].to == ALICE
    assert history[1].sender == ALICE
    assert all(tx.source == TransactionSource.BLOCK for tx in history)
    assert t3["hash"] not in {tx.hash for tx in history}


def test_devnet_history_stops_at_transaction_cap(monkeypatch):
    node, (t1, t2, _) = _devnet_chain()
    from etherdash.configuration.config import settings
    monkeypatch.setattr(settings, "DEVNET_HISTORY_MAX_TRANSACTIONS", 1)
    monkeypatch.setattr(settings, "HISTORY_BATCH_SIZE", 2)

    history = asyncio.run(_service(node).get_transaction_history(ALICE))

    assert [tx.hash for tx in history] == [t2["hash"]]
    assert node.batches == [[5, 4]]


def test_latest_transactions_are_newest_block_first():
    node, (t1, t2, t3) = _devnet_chain()

    txs = asyncio.run(_service(node).get_latest_transactions(4))

    assert [tx.hash for tx in txs] == [t3["hash"], t2["hash"], t1["hash"]]
    assert [tx.block_number for tx in txs] == [5, 4, 2]


def test_unsupported_transaction_type_falls_back_to_reported_sender():
    deposit = signed_fields(ALICE_KEY, chain_id=10)
    deposit["type"] = 0x7E
    deposit["from"] = BOB
    node = FakeNode(chain_id=10, blocks=[make_block(1, deposit)])

    txs = asyncio.run(_service(node).transactions_by_block(node.blocks[1]))

    assert txs[0].sender == BOB


def test_history_uses_the_indexer_outside_devnet():
    indexed = Transaction(source=TransactionSource.INDEXER, block_number=9, hash="0x01", sender=ALICE, to=BOB,
                          value=1)
    indexer = FakeIndexer(transactions=[indexed])

    history = asyncio.run(_service(FakeNode(chain_id=1), indexer=indexer).get_transaction_history(ALICE))

    assert history == [indexed]
    assert indexer.history_calls == 1


def test_history_without_any_source_is_unsupported():
    with pytest.raises(UnsupportedError):
        asyncio.run(_service(FakeNode(chain_id=1)).get_transaction_history(ALICE))


def test_history_falls_back_to_alchemy_transfers():
    out_tx = signed_fields(ALICE_KEY, chain_id=1, to=BOB, nonce=7)
    out_tx["blockNumber"] = 20
    in_tx = signed_fields(BOB_KEY, chain_id=1, to=ALICE, nonce=2, tx_type=2)
    in_tx["blockNumber"] = 30
    node = FakeNode(chain_id=1, provider_type="alchemy")
    node.transactions = {out_tx["hash"]: out_tx, in_tx["hash"]: in_tx}
    node.transfers = {
        "from": {"transfers": [
            {"hash": out_tx["hash"], "metadata": {"blockTimestamp": "2024-01-01T00:00:00.000Z"}},
        ]},
        "to": {"transfers": [
            {"hash": in_tx["hash"], "metadata": {"blockTimestamp": "2024-01-02T00:00:00.000Z"}},
            {"hash": out_tx["hash"], "metadata": {"blockTimestamp": "2024-01-01T00:00:00.000Z"}},
        ]},
    }

    history = asyncio.run(_service(node).get_transaction_history(ALICE))

    assert [tx.hash for tx in history] == [in_tx["hash"], out_tx["hash"]]
    assert history[0].timestamp == 1704153600
    assert history[1].sender == ALICE
    assert all(query["maxCount"] == "0x14" for query in node.transfer_queries)


def test_signer_is_derived_and_never_cached():
    cache = ObjectCache()
    service = _service(FakeNode(), cache=cache)

    signer = service.get_signer(ALICE_KEY)

    assert signer.address == ALICE
    assert signer.type == AccountType.WALLET
    assert len(cache) == 0
    for bad_key in ("0x1234", "not-a-key"):
        with pytest.raises(InvalidArgumentError):
            service.get_signer(bad_key)


def test_transfer_submits_a_plain_value_transaction():
    node = FakeNode()
    service = _service(node)
    signer = service.get_signer(ALICE_KEY)

    tx_hash = asyncio.run(signer.transfer_to(BOB.lower(), 10 ** 18))

    request = node.sent[0]
    assert tx_hash == "0x" + "ab" * 32
    assert (request.to, request.value, request.gas_limit) == (BOB, 10 ** 18, TRANSFER_GAS_LIMIT)
    assert request.private_key == ALICE_KEY


def test_contract_call_transaction_estimates_gas():
    node = FakeNode()
    node.codes[TOKEN] = b"\x60\x80"
    service = _service(node)

    async def scenario():
        contract = await service.get_contract(TOKEN)
        contract.import_interface(ERC20_ABI_JSON)
        return await service.get_signer(ALICE_KEY).call_contract(contract, "transfer", BOB, 5)

    asyncio.run(scenario())

    request = node.sent[0]
    assert request.to == TOKEN
    assert request.gas_limit == 55_000
    assert request.data[:4] == bytes.fromhex("a9059cbb")
    assert node.estimates[0]["from"] == ALICE


def test_eth_price_needs_an_indexer():
    with pytest.raises(UnsupportedError):
        asyncio.run(_service(FakeNode(chain_id=1)).get_eth_price())
    indexer = FakeIndexer(price=Decimal("3120.55"))
    assert asyncio.run(_service(FakeNode(chain_id=1), indexer=indexer).get_eth_price()) == Decimal("3120.55")
