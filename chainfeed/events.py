"""Normalized events published on the bus.

``Event`` is a tagged union: every consumer receives either a
:class:`NewBlock` or a :class:`NewPendingTx` and is expected to handle both,
typically with ``match``:

>>> def describe(event: Event) -> str:
...     match event:
...         case NewBlock(block_number=number):
...             return f"block {number}"
...         case NewPendingTx(tx=tx):
...             return f"tx {tx.hash}"

Events are frozen structs. The bus hands the same instance to every
subscriber, which is safe because nobody can mutate it.
"""

from __future__ import annotations

import msgspec

from chainfeed.chain.models import Transaction  # noqa: TC001 - msgspec needs it


class NewBlock(msgspec.Struct, kw_only=True, frozen=True, tag="block"):
    """Fee-relevant snapshot of a freshly sealed block.

    Attributes
    ----------
    block_number
        Number of the block the snapshot describes.
    base_fee
        The block's own base fee per gas.
    next_base_fee
        Forecast base fee of the following block, fixed at ingestion time.

    """

    block_number: int
    base_fee: int
    next_base_fee: int


class NewPendingTx(msgspec.Struct, kw_only=True, frozen=True, tag="pending_tx"):
    """A pending transaction observed in the mempool.

    Attributes
    ----------
    added_block
        Block that later included the transaction. Always ``None`` when the
        producer emits the event; see :func:`mark_included`.
    tx
        The transaction body as resolved from the node.

    """

    tx: Transaction
    added_block: int | None = None


type Event = NewBlock | NewPendingTx

_ENCODER = msgspec.json.Encoder()
_DECODER = msgspec.json.Decoder(NewBlock | NewPendingTx)


def mark_included(event: NewPendingTx, block_number: int) -> NewPendingTx:
    """Return a copy of ``event`` recording the block that included it."""
    return msgspec.structs.replace(event, added_block=block_number)


def encode_event(event: Event) -> bytes:
    """Serialize an event to tagged JSON (``{"type": "block", ...}``)."""
    return _ENCODER.encode(event)


def decode_event(data: bytes | str) -> Event:
    """Parse tagged JSON produced by :func:`encode_event`.

    Raises
    ------
    msgspec.ValidationError
        If the payload does not describe a known event variant.

    """
    return _DECODER.decode(data)


__all__ = [
    "Event",
    "NewBlock",
    "NewPendingTx",
    "decode_event",
    "encode_event",
    "mark_included",
]
