from __future__ import annotations

from typing import Any, Dict, List, Optional

from eth_account import Account as EthAccount

from etherdash.core.onchain.chain_signer import ChainIdentity, MixedChainSigner
from etherdash.core.structures.structures import Block, TransactionRequest
from etherdash.core.utils.conv import as_hex

# Well-known development keys (Hardhat / Anvil default accounts 0 and 1)
ALICE_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
ALICE = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
BOB_KEY = "0x59c6995e998f97a5a0044966f0945389dc9e86dae88c7a8412f4603b6b78690d"
BOB = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"
CAROL = "0x3C44CdDdB6a900fa2b585dd299e03d12FA4293BC"
TOKEN = "0x5FbDB2315678afecb367f032d93F642f64180aa3"

GWEI = 10 ** 9

ERC20_ABI_JSON = """[
  {"type": "function", "name": "balanceOf", "stateMutability": "view",
   "inputs": [{"name": "owner", "type": "address"}], "outputs": [{"name": "", "type": "uint256"}]},
  {"type": "function", "name": "symbol", "stateMutability": "view",
   "inputs": [], "outputs": [{"name": "", "type": "string"}]},
  {"type": "function", "name": "transfer", "stateMutability": "nonpayable",
   "inputs": [{"name": "to", "type": "address"}, {"name": "amount", "type": "uint256"}],
   "outputs": [{"name": "", "type": "bool"}]},
  {"type": "event", "name": "Transfer", "anonymous": false,
   "inputs": [{"name": "from", "type": "address", "indexed": true},
              {"name": "to", "type": "address", "indexed": true},
              {"name": "value", "type": "uint256", "indexed": false}]}
]"""


def signed_fields(
        private_key: str,
        chain_id: int,
        to: Optional[str] = CAROL,
        value: int = 1,
        nonce: int = 0,
        tx_type: int = 0,
        data: bytes = b"",
) -> Dict[str, Any]:
    """Sign a transaction and return it as normalized node transaction fields."""
    tx: Dict[str, Any] = {"nonce": nonce, "to": to, "value": value, "gas": 21000, "data": data, "chainId": chain_id}
    if tx_type == 2:
        tx.update({"type": 2, "maxFeePerGas": 2 * GWEI, "maxPriorityFeePerGas": GWEI})
    else:
        tx["gasPrice"] = GWEI
    signed = EthAccount.sign_transaction(tx, private_key)

    fields: Dict[str, Any] = {
        "hash": as_hex(signed.hash),
        "type": tx_type,
        "nonce": nonce,
        "gas": 21000,
        "to": to,
        "value": value,
        "input": data,
        "v": signed.v,
        "r": signed.r,
        "s": signed.s,
        "from": EthAccount.from_key(private_key).address,
    }
    if tx_type == 2:
        fields.update({
            "chainId": chain_id,
            "maxFeePerGas": 2 * GWEI,
            "maxPriorityFeePerGas": GWEI,
            "accessList": [],
            "yParity": signed.v,
        })
    else:
        fields["gasPrice"] = GWEI
    return fields


def make_block(number: int, *transactions: Dict[str, Any]) -> Block:
    return Block(
        number=number,
        hash="0x" + f"{number:064x}",
        timestamp=1_700_000_000 + number * 12,
        transactions=tuple(transactions),
    )


class FakeNode:
    """In-memory stand-in for NodeClient used by service-level tests."""

    def __init__(
            self,
            chain_id: int = 31337,
            blocks: Optional[List[Block]] = None,
            provider_type: str = "local",
    ) -> None:
        self.identity = ChainIdentity(chain_id=chain_id, signer=MixedChainSigner(chain_id))
        self.provider_type = provider_type
        self.supports_subscriptions = False
        self.blocks: Dict[int, Block] = {b.number: b for b in blocks or []}
        self.codes: Dict[str, bytes] = {}
        self.balances: Dict[str, Any] = {}
        self.gas_price: Any = 20 * GWEI
        self.transactions: Dict[str, Dict[str, Any]] = {}
        self.transfers: Dict[str, Dict[str, Any]] = {}

        self.code_calls = 0
        self.balance_calls = 0
        self.batches: List[List[int]] = []
        self.sent: List[TransactionRequest] = []
        self.estimates: List[Dict[str, Any]] = []
        self.contract_calls: List[tuple] = []
        self.transfer_queries: List[Dict[str, Any]] = []

    async def get_chain_identity(self) -> ChainIdentity:
        return self.identity

    async def get_code(self, address: str) -> bytes:
        self.code_calls += 1
        return self.codes.get(address, b"")

    async def get_balance(self, address: str) -> int:
        self.balance_calls += 1
        balance = self.balances.get(address, 0)
        if isinstance(balance, BaseException):
            raise balance
        return balance

    async def get_block_height(self) -> int:
        return max(self.blocks) if self.blocks else 0

    async def get_gas_price(self) -> int:
        if isinstance(self.gas_price, BaseException):
            raise self.gas_price
        return self.gas_price

    async def get_block_by_number(self, number: int) -> Block:
        return self.blocks[number]

    async def get_block_by_hash(self, block_hash: str) -> Block:
        return next(b for b in self.blocks.values() if b.hash == block_hash)

    async def batch_blocks_by_number(self, numbers) -> List[Block]:
        self.batches.append(list(numbers))
        return [self.blocks[n] for n in numbers]

    async def batch_transactions_by_hash(self, hashes) -> List[Dict[str, Any]]:
        return [self.transactions[h] for h in hashes]

    async def get_asset_transfers(self, params: Dict[str, Any]) -> Dict[str, Any]:
        self.transfer_queries.append(params)
        direction = "from" if "fromAddress" in params else "to"
        return self.transfers.get(direction, {"transfers": []})

    async def estimate_gas(self, to, sender, data=b"", value=0) -> int:
        self.estimates.append({"to": to, "from": sender, "data": data, "value": value})
        return 55_000

    async def send_transaction(self, request: TransactionRequest) -> str:
        self.sent.append(request)
        return "0x" + "ab" * 32

    async def call_contract(self, address, interface, method, *args):
        self.contract_calls.append((address, method, args))
        return (42,)


class FakeIndexer:
    def __init__(self, transactions=None, source=("", None), price=None) -> None:
        self.transactions = transactions or []
        self.source = source
        self.price = price
        self.source_calls = 0
        self.history_calls = 0

    async def account_tx_list(self, address: str):
        self.history_calls += 1
        return list(self.transactions)

    async def get_source_code(self, address: str):
        self.source_calls += 1
        return self.source

    async def eth_price(self):
        if isinstance(self.price, BaseException):
            raise self.price
        return self.price

    async def close(self) -> None:
        return None
