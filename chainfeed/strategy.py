"""Consumer contract for strategies reading the event bus.

A strategy implements :class:`EventConsumer` and is driven by
:func:`consume_events` inside its own supervised task. Lag is absorbed
locally: the consumer is told how many events it lost and keeps reading.
An exception raised by ``handle`` ends only that consumer's task.
"""

from __future__ import annotations

import dataclasses
import typing as typ

from chainfeed.bus.errors import BusClosedError, LaggedError
from chainfeed.events import NewBlock, NewPendingTx
from chainfeed.logging import get_logger, log_info
from chainfeed.observability import PipelineEventLogger

if typ.TYPE_CHECKING:
    from chainfeed.bus.channel import Subscription
    from chainfeed.events import Event

logger = get_logger(__name__)

LOGGING_STRATEGY_NAME = "strategy.logging"


@typ.runtime_checkable
class EventConsumer(typ.Protocol):
    """Anything that can react to bus events.

    Examples
    --------
    >>> isinstance(LoggingStrategy(), EventConsumer)
    True

    """

    async def handle(self, event: Event) -> None:
        """React to one event; both variants must be handled."""
        ...


@dataclasses.dataclass(slots=True)
class ConsumerResult:
    """Counters describing one consumer run."""

    consumer: str
    received: int = 0
    skipped: int = 0


async def consume_events(
    subscription: Subscription[Event],
    consumer: EventConsumer,
    *,
    name: str,
    event_logger: PipelineEventLogger | None = None,
) -> ConsumerResult:
    """Feed every event from ``subscription`` to ``consumer`` until the bus closes.

    Parameters
    ----------
    subscription
        Subscription created before the producers started, so no early
        event is missed. It is detached when this coroutine returns.
    consumer
        Strategy receiving the events.
    name
        Consumer name used in log events and the returned result.
    event_logger
        Destination for lag events.

    Returns
    -------
    ConsumerResult
        Number of events handled and events lost to lag.

    """
    events = event_logger or PipelineEventLogger()
    result = ConsumerResult(consumer=name)
    with subscription:
        while True:
            try:
                event = await subscription.recv()
            except LaggedError as exc:
                result.skipped += exc.skipped
                events.log_consumer_lagged(name, exc.skipped)
                continue
            except BusClosedError:
                return result
            result.received += 1
            await consumer.handle(event)


class LoggingStrategy:
    """Reference strategy: log every event and take no action."""

    async def handle(self, event: Event) -> None:
        """Log the event at INFO."""
        match event:
            case NewBlock():
                log_info(logger, "New block: %r", event)
            case NewPendingTx():
                log_info(logger, "New pending tx: %r", event)
            case _:
                typ.assert_never(event)


async def run_logging_strategy(
    subscription: Subscription[Event],
    *,
    event_logger: PipelineEventLogger | None = None,
) -> ConsumerResult:
    """Drive :class:`LoggingStrategy` from ``subscription``."""
    return await consume_events(
        subscription,
        LoggingStrategy(),
        name=LOGGING_STRATEGY_NAME,
        event_logger=event_logger,
    )
