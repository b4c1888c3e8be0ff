"""Pending-transaction producer: mempool hashes to :class:`NewPendingTx` events.

The node announces bare hashes; each one is resolved with a separate
``eth_getTransactionByHash`` call. Resolutions run concurrently but never
more than ``max_in_flight`` at once: once the limit is reached the producer
stops pulling hashes from the feed until a slot frees up. Events are
published in completion order, not announcement order.
"""

from __future__ import annotations

import asyncio
import typing as typ

from chainfeed.bus.errors import NoSubscribersError
from chainfeed.chain.errors import ChainError
from chainfeed.events import NewPendingTx
from chainfeed.observability import PipelineEventLogger

from .models import ProducerResult

if typ.TYPE_CHECKING:
    from chainfeed.bus.channel import EventBus
    from chainfeed.chain.client import ChainConnection
    from chainfeed.events import Event

PENDING_PRODUCER_NAME = "producer.pending_transactions"
DEFAULT_MAX_IN_FLIGHT = 256


class PendingTransactionProducer:
    """Resolve announced transaction hashes and publish the bodies."""

    def __init__(
        self,
        connection: ChainConnection,
        bus: EventBus[Event],
        *,
        max_in_flight: int = DEFAULT_MAX_IN_FLIGHT,
        event_logger: PipelineEventLogger | None = None,
    ) -> None:
        """Bind the producer to a chain connection and the event bus."""
        if max_in_flight < 1:
            msg = f"max_in_flight must be positive, got {max_in_flight}"
            raise ValueError(msg)
        self._connection = connection
        self._bus = bus
        self._max_in_flight = max_in_flight
        self._event_logger = event_logger or PipelineEventLogger()

    @property
    def max_in_flight(self) -> int:
        """Return the resolution concurrency limit."""
        return self._max_in_flight

    async def run(self) -> ProducerResult:
        """Stream pending transactions until the upstream feed ends.

        Resolution failures raised as :class:`ChainError` drop the single
        transaction and the stream continues. Any other exception from a
        resolution task is a defect and terminates the producer.

        Raises
        ------
        ChainError
            If the pending-transaction subscription cannot be established.

        """
        hashes = await self._connection.subscribe_pending_transactions()
        self._event_logger.log_producer_subscribed(PENDING_PRODUCER_NAME)

        result = ProducerResult(producer=PENDING_PRODUCER_NAME)
        slots = asyncio.Semaphore(self._max_in_flight)
        in_flight: set[asyncio.Task[None]] = set()
        defects: list[BaseException] = []
        runner = asyncio.current_task()

        def _on_done(task: asyncio.Task[None]) -> None:
            in_flight.discard(task)
            if task.cancelled() or task.exception() is None:
                return
            defects.append(typ.cast("BaseException", task.exception()))
            # Interrupt run() even while it is parked on a quiet feed.
            if len(defects) == 1 and runner is not None:
                runner.cancel()

        try:
            async for tx_hash in hashes:
                await slots.acquire()
                task = asyncio.create_task(
                    self._resolve_and_publish(tx_hash, slots, result)
                )
                in_flight.add(task)
                task.add_done_callback(_on_done)
            if in_flight:
                await asyncio.gather(*in_flight)
        except asyncio.CancelledError:
            self._cancel_all(in_flight)
            if defects and runner is not None and runner.uncancel() == 0:
                raise defects[0] from None
            raise
        except BaseException:
            self._cancel_all(in_flight)
            raise
        if defects:
            raise defects[0]
        return result

    @staticmethod
    def _cancel_all(tasks: set[asyncio.Task[None]]) -> None:
        for task in list(tasks):
            task.cancel()

    async def _resolve_and_publish(
        self,
        tx_hash: str,
        slots: asyncio.Semaphore,
        result: ProducerResult,
    ) -> None:
        try:
            tx = await self._connection.get_transaction(tx_hash)
        except ChainError as exc:
            result.dropped += 1
            self._event_logger.log_item_dropped(PENDING_PRODUCER_NAME, tx_hash, exc)
            return
        finally:
            slots.release()

        try:
            self._bus.send(NewPendingTx(tx=tx))
        except NoSubscribersError:
            result.undelivered += 1
        else:
            result.published += 1


async def stream_pending_transactions(
    connection: ChainConnection, bus: EventBus[Event]
) -> ProducerResult:
    """Run a :class:`PendingTransactionProducer` with default settings."""
    return await PendingTransactionProducer(connection, bus).run()
