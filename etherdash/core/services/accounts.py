from __future__ import annotations

from typing import TYPE_CHECKING, Any, List, Optional, Tuple

from eth_account import Account as EthAccount
from eth_keys.exceptions import ValidationError

from etherdash.core.errors import ChainError, InvalidArgumentError, UnsupportedError
from etherdash.core.onchain.contract_interface import ContractInterface
from etherdash.core.structures.structures import AccountType, Transaction
from etherdash.core.utils.conv import short_hex
from etherdash.logging.logger import get_logger

if TYPE_CHECKING:
    from etherdash.core.services.chain_service import ChainService

log = get_logger(__name__)


class Account:
    """
    An address on the connected network.

    The type is fixed by the byte code seen at resolution: empty code is a Wallet,
    anything else a Contract. The balance is cached until `clear_cache()` is called.
    """

    def __init__(self, service: "ChainService", address: str, code: bytes = b"") -> None:
        self._service = service
        self.address = address
        self.code = bytes(code)
        self._balance: Optional[int] = None

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.address}, {self.type.value})"

    @property
    def type(self) -> AccountType:
        return AccountType.WALLET if len(self.code) == 0 else AccountType.CONTRACT

    @property
    def is_contract(self) -> bool:
        return self.type == AccountType.CONTRACT

    @property
    def cached_balance(self) -> Optional[int]:
        return self._balance

    async def get_balance(self) -> int:
        """Return the cached balance in wei, fetching it on first access."""
        if self._balance is not None:
            return self._balance
        return await self.get_balance_force()

    async def get_balance_force(self) -> int:
        """Fetch the balance from the node. On failure the cached balance becomes 0 and the error is raised."""
        try:
            balance = await self._service.node.get_balance(self.address)
        except ChainError:
            self._balance = 0
            raise
        self._balance = balance
        return balance

    def clear_cache(self) -> None:
        self._balance = None

    async def get_transactions(self) -> List[Transaction]:
        return await self._service.get_transaction_history(self.address)

    async def as_contract(self) -> "Contract":
        return await self._service.resolve_contract(self)


class Contract(Account):
    """A contract account with an optional interface schema and verified source."""

    def __init__(
            self,
            service: "ChainService",
            address: str,
            code: bytes,
            interface: Optional[ContractInterface] = None,
            source: str = "",
    ) -> None:
        super().__init__(service, address, code)
        self.interface = interface
        self.source = source

    @property
    def has_interface(self) -> bool:
        return self.interface is not None

    def import_interface(self, abi_json: str) -> None:
        """Replace the interface schema with one parsed from ABI JSON (manual override)."""
        self.interface = ContractInterface.from_json(abi_json)
        log.debug("[SERVICE] Imported interface for %s (%d methods)", short_hex(self.address),
                  len(self.interface.methods))

    async def call(self, method: str, *args: Any) -> Tuple[Any, ...]:
        """
        Invoke a read-only method.

        Raises:
            UnsupportedError: the contract has no interface schema.
            InvalidArgumentError: the method is unknown or not constant.
        """
        if self.interface is None:
            raise UnsupportedError(f"contract {self.address} has no known interface")
        if not self.interface.is_constant(method):
            raise InvalidArgumentError(f"method {method} is not a constant method")
        log.debug("[SERVICE] Calling %s.%s", short_hex(self.address), method)
        return await self._service.node.call_contract(self.address, self.interface, method, *args)


class Signer(Account):
    """A wallet controlled by a held private key. Never cached and never persisted."""

    def __init__(self, service: "ChainService", private_key: str) -> None:
        try:
            address = EthAccount.from_key(private_key).address
        except (TypeError, ValueError, ValidationError) as exc:
            raise InvalidArgumentError("invalid private key") from exc
        super().__init__(service, address, b"")
        self._private_key = private_key

    @property
    def private_key(self) -> str:
        return self._private_key

    async def transfer_to(self, to: str, amount: int) -> str:
        """Send `amount` wei to `to`; returns the transaction hash."""
        return await self._service.submit_transfer(self, to, amount)

    async def call_contract(self, contract: Contract, method: str, *args: Any) -> str:
        """Submit a state-changing contract call; returns the transaction hash."""
        return await self._service.submit_contract_call(self, contract, method, *args)
