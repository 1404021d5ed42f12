from __future__ import annotations

"""
Contract interface schema (ABI) built on eth-abi / eth-utils.

Only functions are indexed: the dashboard lists them, parses operator arguments for their
inputs and encodes / decodes read-only calls.
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Sequence, Tuple

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError, EncodingError
from eth_utils import collapse_if_tuple, function_abi_to_4byte_selector

from etherdash.core.errors import InvalidArgumentError, MalformedResponseError
from etherdash.core.utils.conv import parse_argument

CONSTANT_MUTABILITIES = frozenset({"view", "pure"})


@dataclass(frozen=True)
class ContractMethod:
    name: str
    input_types: Tuple[str, ...]
    output_types: Tuple[str, ...]
    constant: bool
    selector: bytes

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(self.input_types)})"

    @staticmethod
    def from_abi(entry: Dict[str, Any]) -> "ContractMethod":
        mutability = entry.get("stateMutability")
        constant = bool(entry.get("constant")) or mutability in CONSTANT_MUTABILITIES
        return ContractMethod(
            name=entry["name"],
            input_types=tuple(collapse_if_tuple(arg) for arg in entry.get("inputs", [])),
            output_types=tuple(collapse_if_tuple(arg) for arg in entry.get("outputs", [])),
            constant=constant,
            selector=function_abi_to_4byte_selector(entry),
        )


class ContractInterface:
    """Parsed ABI exposing the methods of a contract by name."""

    def __init__(self, abi: Sequence[Dict[str, Any]]) -> None:
        self.abi: List[Dict[str, Any]] = list(abi)
        self._methods: Dict[str, ContractMethod] = {}
        for entry in self.abi:
            if entry.get("type", "function") != "function" or "name" not in entry:
                continue
            method = ContractMethod.from_abi(entry)
            # Overloads: the first declaration keeps the bare name.
            self._methods.setdefault(method.name, method)

    @staticmethod
    def from_json(text: str) -> "ContractInterface":
        """
        Parse an ABI JSON document.

        Raises:
            InvalidArgumentError: the text is not a JSON array of ABI entries.
        """
        try:
            abi = json.loads(text)
        except (TypeError, ValueError) as exc:
            raise InvalidArgumentError(f"invalid ABI JSON: {exc}") from exc
        if not isinstance(abi, list) or not all(isinstance(entry, dict) for entry in abi):
            raise InvalidArgumentError("ABI JSON must be an array of objects")
        try:
            return ContractInterface(abi)
        except (KeyError, TypeError, ValueError) as exc:
            raise InvalidArgumentError(f"invalid ABI entry: {exc}") from exc

    @property
    def methods(self) -> Dict[str, ContractMethod]:
        return dict(self._methods)

    def method(self, name: str) -> ContractMethod:
        method = self._methods.get(name)
        if method is None:
            raise InvalidArgumentError(f"method {name} not found in contract interface")
        return method

    def is_constant(self, name: str) -> bool:
        return self.method(name).constant

    def parse_arguments(self, name: str, texts: Sequence[str]) -> List[Any]:
        """Turn operator text into values for the method's input types."""
        method = self.method(name)
        if len(texts) != len(method.input_types):
            raise InvalidArgumentError(
                f"{method.signature} takes {len(method.input_types)} arguments, got {len(texts)}"
            )
        return [parse_argument(abi_type, text) for abi_type, text in zip(method.input_types, texts)]

    def encode_call(self, name: str, *args: Any) -> bytes:
        method = self.method(name)
        if len(args) != len(method.input_types):
            raise InvalidArgumentError(
                f"{method.signature} takes {len(method.input_types)} arguments, got {len(args)}"
            )
        try:
            return method.selector + encode(list(method.input_types), list(args))
        except (EncodingError, TypeError, ValueError) as exc:
            raise InvalidArgumentError(f"cannot encode arguments for {method.signature}: {exc}") from exc

    def decode_output(self, name: str, data: bytes) -> Tuple[Any, ...]:
        method = self.method(name)
        if not method.output_types:
            return ()
        try:
            return tuple(decode(list(method.output_types), bytes(data)))
        except (DecodingError, TypeError, ValueError) as exc:
            raise MalformedResponseError(f"cannot decode output of {method.signature}: {exc}") from exc
