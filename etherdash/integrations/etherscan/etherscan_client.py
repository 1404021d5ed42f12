from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

import httpx
from pydantic import ValidationError

from etherdash.configuration.config import settings
from etherdash.core.errors import (
    InvalidArgumentError,
    MalformedResponseError,
    NodeUnavailableError,
    RequestRejectedError,
    RequestTimeoutError,
    TransportError,
)
from etherdash.core.onchain.contract_interface import ContractInterface
from etherdash.core.structures.structures import Transaction
from etherdash.core.utils.conv import short_hex
from etherdash.integrations.etherscan.etherscan_structures import (
    NO_TRANSACTIONS_FOUND,
    EtherscanEnvelope,
    EtherscanEthPrice,
    EtherscanSourceEntry,
    transaction_from_json,
)
from etherdash.logging.logger import get_logger

log = get_logger(__name__)

TXLIST_PAGE_SIZE = 100


class EtherscanClient:
    """
    Etherscan API client: account history (indexer), verified contract sources and ether price.

    One httpx.AsyncClient is shared by all requests until `close()`. With a chain id set, every
    request carries `chainid` as the unified V2 endpoint requires.
    """

    def __init__(
            self,
            endpoint: str,
            api_key: str,
            chain_id: Optional[int] = None,
            timeout: Optional[float] = None,
            http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.endpoint = endpoint
        self.chain_id = chain_id
        self._api_key = api_key
        self._timeout = float(timeout if timeout is not None else settings.ETHERSCAN_TIMEOUT_SECONDS)
        self._client = http_client or httpx.AsyncClient(timeout=self._timeout)
        self._owns_client = http_client is None

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(self, params: Dict[str, str]) -> Any:
        """Perform a GET on the API endpoint and return the envelope's `result`."""
        query = {"apikey": self._api_key, **params}
        if self.chain_id is not None:
            query["chainid"] = str(self.chain_id)
        label = f"{params.get('module')}/{params.get('action')}"
        try:
            response = await self._client.get(self.endpoint, params=query)
        except httpx.TimeoutException as exc:
            raise RequestTimeoutError(f"[ETHERSCAN] {label}: no response within {self._timeout:.0f}s") from exc
        except httpx.HTTPError as exc:
            raise NodeUnavailableError(f"[ETHERSCAN] {label}: {exc}") from exc

        if response.status_code != 200:
            log.error("[ETHERSCAN] HTTP status is not OK for %s: status=%d body=%s", label, response.status_code,
                      response.text[:200])
            raise TransportError(f"[ETHERSCAN] {label}: HTTP {response.status_code}")

        try:
            envelope = EtherscanEnvelope.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise MalformedResponseError(f"[ETHERSCAN] {label}: undecodable response: {exc}") from exc

        if not envelope.ok:
            message = envelope.result if isinstance(envelope.result, str) else envelope.message
            log.warning("[ETHERSCAN] API status is not OK for %s, message is '%s'", label, message)
            if isinstance(envelope.result, str) and envelope.result != NO_TRANSACTIONS_FOUND:
                raise RequestRejectedError(f"[ETHERSCAN] {label}: {envelope.result}")
        return envelope.result

    async def account_tx_list(self, address: str) -> List[Transaction]:
        """Return the latest transactions of an address, newest first."""
        result = await self._request({
            "module": "account",
            "action": "txlist",
            "address": address,
            "startblock": "0",
            "endblock": "99999999",
            "sort": "desc",
            "page": "1",
            "offset": str(TXLIST_PAGE_SIZE),
        })
        if result is None or result == NO_TRANSACTIONS_FOUND:
            return []
        if not isinstance(result, list):
            raise MalformedResponseError("[ETHERSCAN] account/txlist: result is not a list")
        try:
            transactions = [transaction_from_json(row) for row in result]
        except (KeyError, TypeError, ValueError) as exc:
            raise MalformedResponseError(f"[ETHERSCAN] account/txlist: undecodable row: {exc}") from exc
        log.debug("[ETHERSCAN] %d transactions for %s", len(transactions), short_hex(address))
        return transactions

    async def get_source_code(self, address: str) -> Tuple[str, Optional[ContractInterface]]:
        """
        Return the verified source and interface of a contract.

        Unverified contracts yield `("", None)`.
        """
        result = await self._request({"module": "contract", "action": "getsourcecode", "address": address})
        if not isinstance(result, list) or not result:
            raise MalformedResponseError("[ETHERSCAN] contract/getsourcecode: result is not a non-empty list")
        try:
            entry = EtherscanSourceEntry.model_validate(result[0])
        except ValidationError as exc:
            raise MalformedResponseError(f"[ETHERSCAN] contract/getsourcecode: {exc}") from exc

        if not entry.source_code:
            log.debug("[ETHERSCAN] Source of %s is not verified", short_hex(address))
            return "", None

        try:
            interface = ContractInterface.from_json(entry.abi)
        except InvalidArgumentError as exc:
            raise MalformedResponseError(f"[ETHERSCAN] contract/getsourcecode: invalid ABI: {exc}") from exc
        log.debug("[ETHERSCAN] Verified source of %s (%s)", short_hex(address), entry.contract_name or "?")
        return entry.source_code, interface

    async def eth_price(self) -> Decimal:
        """Return the price of one ether in USD."""
        result = await self._request({"module": "stats", "action": "ethprice"})
        try:
            return EtherscanEthPrice.model_validate(result).usd()
        except (ValueError, ValidationError) as exc:
            raise MalformedResponseError(f"[ETHERSCAN] stats/ethprice: {exc}") from exc
