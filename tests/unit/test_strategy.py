"""Unit tests for consumers reading the event bus."""

from __future__ import annotations

import asyncio

import pytest

from chainfeed.bus import EventBus
from chainfeed.events import Event, NewBlock, NewPendingTx
from chainfeed.strategy import (
    LOGGING_STRATEGY_NAME,
    EventConsumer,
    LoggingStrategy,
    consume_events,
    run_logging_strategy,
)
from tests.helpers.fake_chain import make_transaction, tx_hash_for
from tests.helpers.femtologging_capture import capture_femto_logs


class _RecordingConsumer:
    """Consumer that remembers what it was given."""

    def __init__(self, *, fail_on: int | None = None) -> None:
        self.events: list[Event] = []
        self.fail_on = fail_on

    async def handle(self, event: Event) -> None:
        if isinstance(event, NewBlock) and event.block_number == self.fail_on:
            msg = f"cannot handle block {event.block_number}"
            raise RuntimeError(msg)
        self.events.append(event)

    def block_numbers(self) -> list[int]:
        return [
            event.block_number for event in self.events if isinstance(event, NewBlock)
        ]


def _block(number: int) -> NewBlock:
    return NewBlock(block_number=number, base_fee=1, next_base_fee=1)


@pytest.mark.asyncio
async def test_consumer_receives_events_until_the_bus_closes() -> None:
    """consume_events forwards every event and returns once drained."""
    bus: EventBus[Event] = EventBus(capacity=8)
    consumer = _RecordingConsumer()
    sub = bus.subscribe()
    for number in range(3):
        bus.send(_block(number))
    bus.close()

    result = await consume_events(sub, consumer, name="recorder")

    assert consumer.block_numbers() == [0, 1, 2]
    assert (result.consumer, result.received, result.skipped) == ("recorder", 3, 0)
    assert bus.receiver_count == 0, "Subscription should detach on return"


@pytest.mark.asyncio
async def test_lag_is_counted_and_reading_continues() -> None:
    """A lagging consumer records the loss and resumes at the oldest event."""
    bus: EventBus[Event] = EventBus(capacity=2)
    consumer = _RecordingConsumer()
    sub = bus.subscribe()
    for number in range(5):
        bus.send(_block(number))
    bus.close()

    with capture_femto_logs("chainfeed.observability") as capture:
        result = await consume_events(sub, consumer, name="slow")
        record = capture.wait_for_message("pipeline.consumer.lagged")

    assert result.skipped == 3, f"Expected 3 skipped, got {result!r}"
    assert consumer.block_numbers() == [3, 4], "Reading resumes at the oldest event"
    assert "consumer=slow" in record.message
    assert "skipped=3" in record.message


@pytest.mark.asyncio
async def test_handler_error_propagates_and_detaches() -> None:
    """A failing handler ends the consumer without affecting the bus."""
    bus: EventBus[Event] = EventBus(capacity=8)
    other = bus.subscribe()
    sub = bus.subscribe()
    bus.send(_block(7))

    with pytest.raises(RuntimeError, match="cannot handle block 7"):
        await consume_events(sub, _RecordingConsumer(fail_on=7), name="fragile")

    assert bus.receiver_count == 1, "Only the failed consumer should detach"
    assert bus.send(_block(8)) == 1, "Remaining subscriber still receives events"
    assert other.try_recv() == _block(7)


@pytest.mark.asyncio
async def test_logging_strategy_logs_both_variants() -> None:
    """The reference strategy logs each event at INFO."""
    bus: EventBus[Event] = EventBus(capacity=8)
    sub = bus.subscribe()
    bus.send(_block(42))
    bus.send(NewPendingTx(tx=make_transaction(tx_hash_for(9))))
    bus.close()

    with capture_femto_logs("chainfeed.strategy") as capture:
        result = await run_logging_strategy(sub)
        capture.wait_for_count(2)

    assert result.consumer == LOGGING_STRATEGY_NAME
    assert result.received == 2
    levels = {record.level for record in capture.records}
    assert levels == {"INFO"}, f"Unexpected levels {levels}"
    assert capture.records[0].message.startswith("New block: NewBlock(")
    assert capture.records[1].message.startswith("New pending tx: NewPendingTx(")


@pytest.mark.asyncio
async def test_consumer_waits_for_events_published_later() -> None:
    """A consumer started before the producers sees their first events."""
    bus: EventBus[Event] = EventBus(capacity=8)
    consumer = _RecordingConsumer()
    task = asyncio.create_task(consume_events(bus.subscribe(), consumer, name="early"))
    await asyncio.sleep(0)

    bus.send(_block(1))
    bus.close()
    result = await asyncio.wait_for(task, timeout=1)

    assert result.received == 1


def test_logging_strategy_satisfies_consumer_protocol() -> None:
    """LoggingStrategy can be used wherever an EventConsumer is expected."""
    assert isinstance(LoggingStrategy(), EventConsumer)
