"""Producers that turn upstream chain feeds into bus events."""

from __future__ import annotations

from .blocks import (
    BLOCK_PRODUCER_NAME,
    BlockProducer,
    new_block_from_header,
    stream_new_blocks,
)
from .models import ProducerResult
from .pending import (
    DEFAULT_MAX_IN_FLIGHT,
    PENDING_PRODUCER_NAME,
    PendingTransactionProducer,
    stream_pending_transactions,
)

__all__ = [
    "BLOCK_PRODUCER_NAME",
    "DEFAULT_MAX_IN_FLIGHT",
    "PENDING_PRODUCER_NAME",
    "BlockProducer",
    "PendingTransactionProducer",
    "ProducerResult",
    "new_block_from_header",
    "stream_new_blocks",
    "stream_pending_transactions",
]
