"""Errors raised while talking to the upstream chain node."""

from __future__ import annotations


class ChainError(RuntimeError):
    """Base class for every failure originating from the chain connection."""


class ChainConnectionError(ChainError):
    """Raised when the websocket cannot be opened or has gone away."""

    @classmethod
    def connect_failed(cls, url: str, detail: str) -> ChainConnectionError:
        """Return an error for a failed websocket handshake."""
        return cls(f"failed to connect to {url}: {detail}")

    @classmethod
    def closed(cls) -> ChainConnectionError:
        """Return an error for requests issued on a closed connection."""
        return cls("chain connection is closed")

    @classmethod
    def lost(cls, detail: str) -> ChainConnectionError:
        """Return an error for a connection that dropped without being closed."""
        return cls(f"chain connection lost: {detail}")


class ChainRPCError(ChainError):
    """Raised when the node answers a JSON-RPC request with an error object."""

    def __init__(self, message: str, *, code: int | None = None) -> None:
        """Initialise with a message and the optional JSON-RPC error code."""
        self.code = code
        super().__init__(message)

    @classmethod
    def from_payload(cls, method: str, code: int, message: str) -> ChainRPCError:
        """Return an error for a JSON-RPC ``error`` member."""
        return cls(f"{method} failed with code {code}: {message}", code=code)


class ChainSubscriptionError(ChainError):
    """Raised when ``eth_subscribe`` is rejected by the node."""

    @classmethod
    def rejected(cls, kind: str, detail: str) -> ChainSubscriptionError:
        """Return an error for a refused subscription."""
        return cls(f"subscription to {kind} rejected: {detail}")


class ChainResponseShapeError(ChainError):
    """Raised when a node payload does not have the expected shape."""

    @classmethod
    def missing(cls, field: str) -> ChainResponseShapeError:
        """Return an error for a missing or null field."""
        return cls(f"chain response missing expected field: {field}")

    @classmethod
    def invalid(cls, what: str, detail: str) -> ChainResponseShapeError:
        """Return an error for a payload that failed to decode."""
        return cls(f"malformed {what}: {detail}")


class TransactionNotFoundError(ChainError):
    """Raised when the node no longer knows a pending transaction hash."""

    @classmethod
    def for_hash(cls, tx_hash: str) -> TransactionNotFoundError:
        """Return an error naming the unresolved hash."""
        return cls(f"transaction {tx_hash} not found")
