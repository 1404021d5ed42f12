from __future__ import annotations


class ChainError(Exception):
    """Base class for every error raised by the chain access core."""


class TransportError(ChainError):
    """The remote service could not be reached in time; the caller may retry."""


class NodeUnavailableError(TransportError):
    """Connection to the remote node or service failed."""


class RequestTimeoutError(TransportError):
    """A request did not complete before its deadline."""


class MalformedResponseError(ChainError):
    """A response could not be decoded; indicates a protocol mismatch."""


class NotFoundError(ChainError):
    """The requested block, transaction or entity does not exist."""


class NotAContractError(NotFoundError):
    """The address holds no byte code."""


class UnsupportedError(ChainError):
    """The operation is not available with the active provider or network."""


class RequestRejectedError(ChainError):
    """The remote service answered with an error for this request."""


class InvalidArgumentError(ChainError, ValueError):
    """The caller supplied an argument the core cannot use."""


class AlreadyStartedError(ChainError):
    """A one-shot component was started twice."""
