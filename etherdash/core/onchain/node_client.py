from __future__ import annotations

"""
Remote node client on top of web3.AsyncWeb3.

- ws:// and wss:// endpoints use WebSocketProvider (push subscriptions available).
- Other endpoints use AsyncHTTPProvider.
- Every request runs under a deadline; library failures are mapped onto etherdash.core.errors.
- Batched reads share one round-trip and fail as a whole (strict policy).
"""

import asyncio
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

import aiohttp
from eth_account import Account as EthAccount
from eth_keys.exceptions import ValidationError
from web3 import AsyncHTTPProvider, AsyncWeb3, WebSocketProvider
from web3.exceptions import BlockNotFound, ProviderConnectionError, TransactionNotFound, Web3RPCError
from websockets.exceptions import WebSocketException

from etherdash.configuration.config import settings
from etherdash.core.errors import (
    ChainError,
    InvalidArgumentError,
    MalformedResponseError,
    NodeUnavailableError,
    NotFoundError,
    RequestRejectedError,
    RequestTimeoutError,
    TransportError,
    UnsupportedError,
)
from etherdash.core.onchain.chain_signer import ChainIdentity, MixedChainSigner, raw_transaction_bytes
from etherdash.core.onchain.contract_interface import ContractInterface
from etherdash.core.structures.structures import (
    Block,
    BlockHeader,
    TransactionRequest,
    TxFields,
    decode_block,
    decode_header,
    decode_transaction_fields,
)
from etherdash.core.utils.conv import as_bytes, as_hex, as_int, short_hex
from etherdash.logging.logger import get_logger

log = get_logger(__name__)

T = TypeVar("T")

PROVIDER_LOCAL = "local"
PROVIDER_ALCHEMY = "alchemy"

DEFAULT_PRIORITY_FEE_WEI = 1_000_000_000
WEBSOCKET_SCHEMES = ("ws://", "wss://")


def _is_websocket(endpoint: str) -> bool:
    return endpoint.lower().startswith(WEBSOCKET_SCHEMES)


class NewHeadsSubscription:
    """
    Push feed of block headers over an `eth_subscribe("newHeads")` subscription.

    Iterate with `async for header in subscription`; call `unsubscribe()` to release it.
    """

    def __init__(self, client: "NodeClient", subscription_id: str) -> None:
        self._client = client
        self.subscription_id = subscription_id
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> AsyncIterator[BlockHeader]:
        return self._headers()

    async def _headers(self) -> AsyncIterator[BlockHeader]:
        w3 = self._client.w3
        try:
            async for message in w3.socket.process_subscriptions():
                if self._closed:
                    return
                if message.get("subscription") != self.subscription_id:
                    continue
                try:
                    yield decode_header(message["result"])
                except (KeyError, TypeError, ValueError) as exc:
                    raise MalformedResponseError(f"undecodable newHeads notification: {exc}") from exc
        except (ProviderConnectionError, WebSocketException, OSError) as exc:
            raise NodeUnavailableError(f"newHeads subscription lost: {exc}") from exc

    async def unsubscribe(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._client._call("eth_unsubscribe", self._client.w3.eth.unsubscribe(self.subscription_id))
        except (TransportError, RequestRejectedError) as exc:
            log.debug("[NODE] Unsubscribe %s failed: %s", self.subscription_id, exc)


class NodeClient:
    """
    Client bound to a single JSON-RPC endpoint.

    The chain identity (chain id + signer) is resolved lazily, at most once, and reused for all
    signing until `invalidate_chain_identity()` is called.
    """

    def __init__(
            self,
            endpoint: str,
            provider_type: Optional[str] = None,
            timeout: Optional[float] = None,
            w3: Optional[AsyncWeb3] = None,
    ) -> None:
        self.endpoint = endpoint
        self.provider_type = (provider_type or settings.NODE_PROVIDER).lower()
        self.timeout = float(timeout if timeout is not None else settings.NODE_TIMEOUT_SECONDS)
        self.is_websocket = _is_websocket(endpoint)
        self._w3: Optional[AsyncWeb3] = w3
        self._owns_provider = w3 is None
        self._identity: Optional[ChainIdentity] = None
        self._identity_lock = asyncio.Lock()

    @property
    def w3(self) -> AsyncWeb3:
        if self._w3 is None:
            raise NodeUnavailableError(f"not connected to {self.endpoint}")
        return self._w3

    @property
    def supports_subscriptions(self) -> bool:
        return self.is_websocket

    async def connect(self) -> None:
        """Open the connection to the endpoint. Calling it twice is a no-op."""
        if self._w3 is not None:
            return
        if self.is_websocket:
            w3 = AsyncWeb3(WebSocketProvider(self.endpoint, request_timeout=self.timeout))
            await self._call("connect", w3.provider.connect())
        else:
            w3 = AsyncWeb3(AsyncHTTPProvider(
                self.endpoint,
                request_kwargs={"timeout": aiohttp.ClientTimeout(total=self.timeout)},
            ))
        self._w3 = w3
        self._owns_provider = True
        log.info("[NODE] Connected to %s provider (%s)", self.provider_type,
                 "websocket" if self.is_websocket else "http")

    async def close(self) -> None:
        """Release the connection; the client may be connected again afterwards."""
        w3, self._w3 = self._w3, None
        self._identity = None
        if w3 is None or not self._owns_provider:
            return
        try:
            await w3.provider.disconnect()
        except (ProviderConnectionError, WebSocketException, aiohttp.ClientError, OSError) as exc:
            log.debug("[NODE] Disconnect raised: %s", exc)
        log.info("[NODE] Connection closed")

    async def _call(self, label: str, awaitable: Awaitable[T]) -> T:
        """Await a request under the client deadline and translate library errors."""
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except ChainError:
            raise
        except asyncio.TimeoutError as exc:
            raise RequestTimeoutError(f"{label}: no response within {self.timeout:.0f}s") from exc
        except (BlockNotFound, TransactionNotFound) as exc:
            raise NotFoundError(f"{label}: {exc}") from exc
        except Web3RPCError as exc:
            raise RequestRejectedError(f"{label}: {exc}") from exc
        except (ProviderConnectionError, aiohttp.ClientError, WebSocketException, OSError) as exc:
            raise NodeUnavailableError(f"{label}: {exc}") from exc
        except (KeyError, TypeError, ValueError) as exc:
            raise MalformedResponseError(f"{label}: {exc}") from exc

    @staticmethod
    def _decode(label: str, decoder: Callable[[Any], T], raw: Any) -> T:
        try:
            return decoder(raw)
        except (KeyError, TypeError, ValueError) as exc:
            raise MalformedResponseError(f"{label}: undecodable result: {exc}") from exc

    # ------------------------------------------------------------------ #
    # Chain identity
    # ------------------------------------------------------------------ #

    async def get_chain_id(self) -> int:
        chain_id = await self._call("eth_chainId", self.w3.eth.chain_id)
        return self._decode("eth_chainId", as_int, chain_id)

    async def get_chain_identity(self) -> ChainIdentity:
        if self._identity is not None:
            return self._identity
        async with self._identity_lock:
            if self._identity is None:
                chain_id = await self.get_chain_id()
                self._identity = ChainIdentity(chain_id=chain_id, signer=MixedChainSigner(chain_id))
                log.info("[NODE] Chain identity resolved: chain_id=%d", chain_id)
            return self._identity

    def invalidate_chain_identity(self) -> None:
        self._identity = None

    # ------------------------------------------------------------------ #
    # Single reads
    # ------------------------------------------------------------------ #

    async def get_code(self, address: str) -> bytes:
        code = await self._call("eth_getCode", self.w3.eth.get_code(address))
        return self._decode("eth_getCode", as_bytes, code)

    async def get_balance(self, address: str) -> int:
        balance = await self._call("eth_getBalance", self.w3.eth.get_balance(address))
        return self._decode("eth_getBalance", as_int, balance)

    async def get_block_height(self) -> int:
        height = await self._call("eth_blockNumber", self.w3.eth.block_number)
        return self._decode("eth_blockNumber", as_int, height)

    async def get_gas_price(self) -> int:
        price = await self._call("eth_gasPrice", self.w3.eth.gas_price)
        return self._decode("eth_gasPrice", as_int, price)

    async def get_block_by_hash(self, block_hash: str) -> Block:
        raw = await self._call("eth_getBlockByHash", self.w3.eth.get_block(block_hash, full_transactions=True))
        if raw is None:
            raise NotFoundError(f"block {block_hash} not found")
        return self._decode("eth_getBlockByHash", decode_block, raw)

    async def get_block_by_number(self, number: int) -> Block:
        raw = await self._call("eth_getBlockByNumber", self.w3.eth.get_block(number, full_transactions=True))
        if raw is None:
            raise NotFoundError(f"block #{number} not found")
        return self._decode("eth_getBlockByNumber", decode_block, raw)

    async def subscribe_new_heads(self) -> NewHeadsSubscription:
        if not self.is_websocket:
            raise UnsupportedError("newHeads subscriptions require a websocket endpoint")
        subscription_id = await self._call("eth_subscribe", self.w3.eth.subscribe("newHeads"))
        log.debug("[NODE] Subscribed to newHeads id=%s", subscription_id)
        return NewHeadsSubscription(self, subscription_id)

    # ------------------------------------------------------------------ #
    # Batched reads
    # ------------------------------------------------------------------ #

    async def _batch(self, method: str, params: Sequence[List[Any]], decoder: Callable[[Any], T]) -> List[T]:
        if not params:
            return []
        requests: List[Tuple[str, List[Any]]] = [(method, p) for p in params]
        responses = await self._call(method, self.w3.provider.make_batch_request(requests))
        # A single error object instead of a list means the whole batch was refused.
        if isinstance(responses, dict):
            error = responses.get("error")
            raise RequestRejectedError(f"{method} batch rejected: {error}")
        if not isinstance(responses, list) or len(responses) != len(requests):
            raise MalformedResponseError(f"{method} batch: expected {len(requests)} responses")

        decoded: List[T] = []
        for index, response in enumerate(responses):
            if not isinstance(response, dict):
                raise MalformedResponseError(f"{method} batch slot {index}: not a JSON-RPC response")
            if response.get("error") is not None:
                raise RequestRejectedError(f"{method} batch slot {index}: {response['error']}")
            result = response.get("result")
            if result is None:
                raise NotFoundError(f"{method} batch slot {index}: {params[index][0]} not found")
            try:
                decoded.append(decoder(result))
            except (KeyError, TypeError, ValueError) as exc:
                raise MalformedResponseError(f"{method} batch slot {index}: {exc}") from exc
        return decoded

    async def batch_transactions_by_hash(self, hashes: Sequence[str]) -> List[TxFields]:
        return await self._batch("eth_getTransactionByHash", [[h] for h in hashes], decode_transaction_fields)

    async def batch_blocks_by_number(self, numbers: Sequence[int]) -> List[Block]:
        return await self._batch("eth_getBlockByNumber", [[hex(n), True] for n in numbers], decode_block)

    # ------------------------------------------------------------------ #
    # Calls and submissions
    # ------------------------------------------------------------------ #

    async def estimate_gas(self, to: Optional[str], sender: str, data: bytes = b"", value: int = 0) -> int:
        params: Dict[str, Any] = {"from": sender, "data": data, "value": value}
        if to is not None:
            params["to"] = to
        gas = await self._call("eth_estimateGas", self.w3.eth.estimate_gas(params))
        return self._decode("eth_estimateGas", as_int, gas)

    async def call_contract(self, address: str, interface: ContractInterface, method: str, *args: Any) -> Tuple[Any, ...]:
        data = interface.encode_call(method, *args)
        output = await self._call("eth_call", self.w3.eth.call({"to": address, "data": data}, "latest"))
        return interface.decode_output(method, as_bytes(output))

    async def _fill_fees(self, tx: Dict[str, Any], gas_price: Optional[int]) -> None:
        if gas_price is not None:
            tx["gasPrice"] = gas_price
            return

        latest = await self._call("eth_getBlockByNumber", self.w3.eth.get_block("latest"))
        base_fee = latest.get("baseFeePerGas") if latest is not None else None
        if base_fee is None:
            tx["gasPrice"] = await self.get_gas_price()
            return

        try:
            priority = as_int(await self._call("eth_maxPriorityFeePerGas", self.w3.eth.max_priority_fee))
        except RequestRejectedError as exc:
            log.debug("[NODE] eth_maxPriorityFeePerGas unavailable (%s), using 1 gwei", exc)
            priority = DEFAULT_PRIORITY_FEE_WEI
        tx["type"] = 2
        tx["maxPriorityFeePerGas"] = priority
        tx["maxFeePerGas"] = as_int(base_fee) * 2 + priority

    async def send_transaction(self, request: TransactionRequest) -> str:
        """
        Sign and submit a transaction. Returns the hex hash once the node accepted it in its
        mempool; inclusion in a block is not awaited.
        """
        identity = await self.get_chain_identity()
        try:
            sender = EthAccount.from_key(request.private_key).address
        except (TypeError, ValueError, ValidationError) as exc:
            raise InvalidArgumentError("invalid private key") from exc

        nonce = await self._call(
            "eth_getTransactionCount", self.w3.eth.get_transaction_count(sender, "pending"))
        tx: Dict[str, Any] = {"nonce": as_int(nonce), "value": request.value, "data": request.data}
        if request.to is not None:
            tx["to"] = request.to

        if request.gas_limit is not None:
            tx["gas"] = request.gas_limit
        else:
            tx["gas"] = await self.estimate_gas(request.to, sender, request.data, request.value)
        await self._fill_fees(tx, request.gas_price)

        signed = identity.signer.sign(tx, request.private_key)
        tx_hash = await self._call("eth_sendRawTransaction", self.w3.eth.send_raw_transaction(
            raw_transaction_bytes(signed)))
        hex_hash = as_hex(tx_hash)
        log.info("[NODE] Broadcasted transaction %s from %s nonce=%s", short_hex(hex_hash), short_hex(sender),
                 tx["nonce"])
        return hex_hash

    # ------------------------------------------------------------------ #
    # Vendor APIs
    # ------------------------------------------------------------------ #

    async def get_asset_transfers(self, params: Dict[str, Any]) -> Dict[str, Any]:
        """Call `alchemy_getAssetTransfers`; only available on Alchemy endpoints."""
        if self.provider_type != PROVIDER_ALCHEMY:
            raise UnsupportedError("alchemy_getAssetTransfers requires the alchemy provider")
        response = await self._call(
            "alchemy_getAssetTransfers", self.w3.provider.make_request("alchemy_getAssetTransfers", [params]))
        if response.get("error") is not None:
            raise RequestRejectedError(f"alchemy_getAssetTransfers: {response['error']}")
        result = response.get("result")
        if not isinstance(result, dict):
            raise MalformedResponseError("alchemy_getAssetTransfers: result is not an object")
        return result
