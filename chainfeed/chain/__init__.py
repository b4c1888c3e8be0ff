"""Upstream chain node access: records, errors, and the websocket client."""

from __future__ import annotations

from .client import ChainConnection, WebSocketChainClient
from .errors import (
    ChainConnectionError,
    ChainError,
    ChainResponseShapeError,
    ChainRPCError,
    ChainSubscriptionError,
    TransactionNotFoundError,
)
from .models import (
    AccessListEntry,
    BlockHeader,
    Transaction,
    block_header_from_payload,
    parse_quantity,
    transaction_from_payload,
)

__all__ = [
    "AccessListEntry",
    "BlockHeader",
    "ChainConnection",
    "ChainConnectionError",
    "ChainError",
    "ChainRPCError",
    "ChainResponseShapeError",
    "ChainSubscriptionError",
    "Transaction",
    "TransactionNotFoundError",
    "WebSocketChainClient",
    "block_header_from_payload",
    "parse_quantity",
    "transaction_from_payload",
]
