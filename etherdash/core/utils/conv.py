from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Union

from eth_utils import is_address, to_bytes, to_checksum_address
from web3 import Web3

from etherdash.core.errors import InvalidArgumentError

Number = Union[int, float, str, Decimal]

_TRUE_LITERALS = {"1", "t", "true"}
_FALSE_LITERALS = {"0", "f", "false"}


def has_0x_prefix(value: str) -> bool:
    return len(value) >= 2 and value[0] == "0" and value[1] in ("x", "X")


def trim_0x(value: str) -> str:
    """Remove a leading '0x' if any."""
    return value[2:] if has_0x_prefix(value) else value


def as_int(value: Any) -> int:
    """
    Convert a JSON-RPC quantity into an int.

    Accepts ints, big-endian bytes, hex strings ('0x1a') and decimal strings ('26').
    """
    if isinstance(value, bool):
        raise TypeError("booleans are not quantities")
    if isinstance(value, int):
        return value
    if isinstance(value, (bytes, bytearray)):
        return int.from_bytes(value, "big")
    if isinstance(value, str):
        text = value.strip()
        if has_0x_prefix(text):
            return int(text, 16) if len(text) > 2 else 0
        return int(text, 10)
    raise TypeError(f"cannot convert {type(value).__name__} to int")


def as_bytes(value: Any) -> bytes:
    """Convert hex strings or byte-like values into bytes. None becomes b''."""
    if value is None:
        return b""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, str):
        return to_bytes(hexstr=value) if trim_0x(value) else b""
    raise TypeError(f"cannot convert {type(value).__name__} to bytes")


def as_hex(value: Any) -> str:
    """Render a hash-like value as a lowercase 0x-prefixed hex string."""
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    if isinstance(value, str):
        return "0x" + trim_0x(value).lower()
    raise TypeError(f"cannot convert {type(value).__name__} to hex")


def as_address(value: Any) -> Optional[str]:
    """Return the checksum form of an address, None for empty values."""
    if value is None:
        return None
    if isinstance(value, (bytes, bytearray)):
        if len(value) == 0:
            return None
        return to_checksum_address(bytes(value))
    if isinstance(value, str):
        if not trim_0x(value):
            return None
        return to_checksum_address(value)
    raise TypeError(f"cannot convert {type(value).__name__} to address")


def to_address(value: str) -> str:
    """Validate an operator-supplied address and return its checksum form."""
    if not isinstance(value, str) or not is_address(value.strip()):
        raise InvalidArgumentError(f"invalid address: {value!r}")
    return to_checksum_address(value.strip())


def to_ether(wei: int) -> Decimal:
    """Convert a value in wei to ether."""
    return Decimal(Web3.from_wei(int(wei), "ether"))


def to_gwei(wei: int) -> Decimal:
    """Convert a value in wei to gwei."""
    return Decimal(Web3.from_wei(int(wei), "gwei"))


def from_ether(amount: Number) -> int:
    """Convert an amount of ether into wei."""
    try:
        return int(Web3.to_wei(Decimal(str(amount)), "ether"))
    except (InvalidOperation, ValueError) as exc:
        raise InvalidArgumentError(f"invalid ether amount: {amount!r}") from exc


def short_hex(value: Optional[str], size: int = 6) -> str:
    """Shorten an address or hash for log lines."""
    if not value:
        return "--"
    if len(value) <= 2 + 2 * size:
        return value
    return f"{value[:2 + size]}…{value[-size:]}"


def parse_argument(abi_type: str, text: str) -> Any:
    """
    Parse an operator-typed argument into the Python value expected by eth-abi.

    Supported types: string, bool, address, int<N>, uint<N>, bytes and bytes<N>.

    Raises:
        InvalidArgumentError: the text does not fit the type, or the type is unsupported.
    """
    raw = text.strip()

    if abi_type == "string":
        return text

    if abi_type == "bool":
        lowered = raw.lower()
        if lowered in _TRUE_LITERALS:
            return True
        if lowered in _FALSE_LITERALS:
            return False
        raise InvalidArgumentError(f"cannot parse {text!r} as bool")

    if abi_type == "address":
        if not is_address(raw):
            raise InvalidArgumentError(f"cannot parse {text!r} as address")
        return to_checksum_address(raw)

    if abi_type.startswith("int") or abi_type.startswith("uint"):
        try:
            number = int(raw, 10)
        except ValueError as exc:
            raise InvalidArgumentError(f"cannot parse {text!r} as {abi_type}") from exc
        if abi_type.startswith("uint") and number < 0:
            raise InvalidArgumentError(f"cannot parse {text!r} as {abi_type}")
        return number

    if abi_type.startswith("bytes"):
        try:
            value = as_bytes(raw)
        except ValueError as exc:
            raise InvalidArgumentError(f"cannot parse {text!r} as {abi_type}") from exc
        size = abi_type[len("bytes"):]
        if size and len(value) > int(size):
            raise InvalidArgumentError(f"{text!r} does not fit in {abi_type}")
        return value

    raise InvalidArgumentError(f"unsupported argument type {abi_type}")
