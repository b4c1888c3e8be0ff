"""Block producer: new block headers to :class:`NewBlock` events."""

from __future__ import annotations

import typing as typ

from chainfeed.bus.errors import NoSubscribersError
from chainfeed.events import NewBlock
from chainfeed.fees import calculate_next_block_base_fee
from chainfeed.observability import PipelineEventLogger

from .models import ProducerResult

if typ.TYPE_CHECKING:
    from chainfeed.bus.channel import EventBus
    from chainfeed.chain.client import ChainConnection
    from chainfeed.chain.models import BlockHeader
    from chainfeed.events import Event

BLOCK_PRODUCER_NAME = "producer.blocks"


def new_block_from_header(header: BlockHeader) -> NewBlock | None:
    """Build a :class:`NewBlock` for ``header``, or ``None`` if it has no number."""
    if header.number is None:
        return None
    base_fee = header.base_fee_per_gas or 0
    return NewBlock(
        block_number=header.number,
        base_fee=base_fee,
        next_base_fee=calculate_next_block_base_fee(
            header.gas_used, header.gas_limit, base_fee
        ),
    )


class BlockProducer:
    """Publish a :class:`NewBlock` for every numbered header from the node."""

    def __init__(
        self,
        connection: ChainConnection,
        bus: EventBus[Event],
        *,
        event_logger: PipelineEventLogger | None = None,
    ) -> None:
        """Bind the producer to a chain connection and the event bus."""
        self._connection = connection
        self._bus = bus
        self._event_logger = event_logger or PipelineEventLogger()

    async def run(self) -> ProducerResult:
        """Stream headers until the upstream subscription ends.

        Raises
        ------
        ChainError
            If the header subscription cannot be established. The producer
            does not retry.

        """
        headers = await self._connection.subscribe_new_heads()
        self._event_logger.log_producer_subscribed(BLOCK_PRODUCER_NAME)

        result = ProducerResult(producer=BLOCK_PRODUCER_NAME)
        async for header in headers:
            block = new_block_from_header(header)
            if block is None:
                result.dropped += 1
                continue
            try:
                self._bus.send(block)
            except NoSubscribersError:
                result.undelivered += 1
            else:
                result.published += 1
        return result


async def stream_new_blocks(
    connection: ChainConnection, bus: EventBus[Event]
) -> ProducerResult:
    """Run a :class:`BlockProducer` with default settings."""
    return await BlockProducer(connection, bus).run()
