from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from etherdash.core.structures.structures import Transaction, TransactionSource
from etherdash.core.utils.conv import as_address, as_bytes, as_hex

STATUS_OK = "1"
STATUS_NOTOK = "0"
NO_TRANSACTIONS_FOUND = "No transactions found"


class EtherscanEnvelope(BaseModel):
    """Common `{status, message, result}` wrapper of every Etherscan response."""
    status: str = STATUS_OK
    message: str = ""
    result: Any = None

    @property
    def ok(self) -> bool:
        return self.status != STATUS_NOTOK


class EtherscanSourceEntry(BaseModel):
    source_code: str = Field(default="", alias="SourceCode")
    abi: str = Field(default="", alias="ABI")
    contract_name: str = Field(default="", alias="ContractName")


class EtherscanEthPrice(BaseModel):
    ethbtc: str = ""
    ethusd: str

    def usd(self) -> Decimal:
        try:
            return Decimal(self.ethusd)
        except InvalidOperation as exc:
            raise ValueError(f"invalid ethusd value {self.ethusd!r}") from exc


def _optional_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    return int(value)


def transaction_from_json(payload: Dict[str, Any]) -> Transaction:
    """
    Convert a `txlist` row into a Transaction.

    Numeric fields are decimal strings; `to` is empty for contract creations.
    Raises KeyError or ValueError on undecodable rows.
    """
    return Transaction(
        source=TransactionSource.INDEXER,
        block_number=_optional_int(payload.get("blockNumber")),
        hash=as_hex(payload["hash"]),
        sender=as_address(payload.get("from")),
        to=as_address(payload.get("to")),
        value=int(payload.get("value") or 0),
        input=as_bytes(payload.get("input") or ""),
        timestamp=_optional_int(payload.get("timeStamp")),
        nonce=_optional_int(payload.get("nonce")),
        gas=_optional_int(payload.get("gas")),
        gas_price=_optional_int(payload.get("gasPrice")),
    )

