"""Chainfeed runtime entrypoint.

Wires the pipeline together: one chain connection, one event bus, the
block and pending-transaction producers, and the logging strategy, all run
as supervised asyncio tasks until the upstream feeds end.

Configuration is driven by environment variables (see
:meth:`chainfeed.config.ChainFeedConfig.from_env`):

- ``CHAINFEED_WSS_URL``: Websocket endpoint of the node (required)
- ``CHAINFEED_LOG_LEVEL``: Log level (default ``INFO``)
- ``CHAINFEED_BUS_CAPACITY``: Event bus window (default ``512``)
- ``CHAINFEED_MAX_IN_FLIGHT``: Concurrent transaction lookups (default ``256``)
- ``CHAINFEED_CONNECT_TIMEOUT_S``: Handshake timeout (default ``10``)

Run the pipeline directly with ``python -m chainfeed.runtime``.
"""

from __future__ import annotations

import asyncio
import typing as typ

from chainfeed.bus.channel import EventBus
from chainfeed.chain.client import ChainConnection, WebSocketChainClient
from chainfeed.chain.errors import ChainConnectionError
from chainfeed.config import ChainFeedConfig, ChainFeedConfigError
from chainfeed.logging import (
    configure_logging,
    get_logger,
    log_error,
    log_info,
    log_warning,
)
from chainfeed.observability import PipelineEventLogger
from chainfeed.strategy import LOGGING_STRATEGY_NAME, run_logging_strategy
from chainfeed.streams.blocks import BLOCK_PRODUCER_NAME, BlockProducer
from chainfeed.streams.pending import (
    PENDING_PRODUCER_NAME,
    PendingTransactionProducer,
)
from chainfeed.supervisor import TaskOutcome, TaskRole, TaskSupervisor

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from chainfeed.events import Event

__all__ = ["main", "run_pipeline"]

logger = get_logger(__name__)


class ClosableChainConnection(ChainConnection, typ.Protocol):
    """A chain connection the runtime owns and must close on exit."""

    async def close(self) -> None:
        """Release the underlying transport."""
        ...


class ChainConnector(typ.Protocol):
    """Factory that opens a chain connection for ``url``."""

    def __call__(
        self, url: str, *, open_timeout: float
    ) -> cabc.Awaitable[ClosableChainConnection]:
        """Open the connection."""
        ...


async def run_pipeline(
    config: ChainFeedConfig,
    *,
    connect: ChainConnector = WebSocketChainClient.connect,
) -> list[TaskOutcome]:
    """Run producers and the logging strategy until every task has exited.

    Parameters
    ----------
    config
        Validated runtime configuration.
    connect
        Connection factory; tests pass a fake in place of the websocket
        client.

    Returns
    -------
    list[TaskOutcome]
        One outcome per supervised task, in the order the tasks exited.

    Raises
    ------
    ChainConnectionError
        If the initial connection to the node cannot be established.

    """
    connection = await connect(config.wss_url, open_timeout=config.connect_timeout_s)
    log_info(logger, "Connected to chain node at %s", config.wss_url)

    event_logger = PipelineEventLogger()
    bus: EventBus[Event] = EventBus(config.bus_capacity)
    # Subscribe before any producer runs so the first events are not lost.
    strategy_subscription = bus.subscribe()

    supervisor = TaskSupervisor(
        event_logger=event_logger, on_producers_finished=bus.close
    )
    supervisor.spawn(
        LOGGING_STRATEGY_NAME,
        run_logging_strategy(strategy_subscription, event_logger=event_logger),
        role=TaskRole.CONSUMER,
    )
    supervisor.spawn(
        BLOCK_PRODUCER_NAME,
        BlockProducer(connection, bus, event_logger=event_logger).run(),
        role=TaskRole.PRODUCER,
    )
    supervisor.spawn(
        PENDING_PRODUCER_NAME,
        PendingTransactionProducer(
            connection,
            bus,
            max_in_flight=config.max_in_flight,
            event_logger=event_logger,
        ).run(),
        role=TaskRole.PRODUCER,
    )

    try:
        outcomes = await supervisor.join_all()
    finally:
        await connection.close()
    log_info(logger, "Pipeline stopped after %d task exits", len(outcomes))
    return outcomes


def main() -> None:
    """Start the chainfeed pipeline from environment configuration.

    Exits with status 1 when configuration is invalid or the node cannot be
    reached.
    """
    try:
        config = ChainFeedConfig.from_env()
    except ChainFeedConfigError as exc:
        # Validation failures need no traceback
        log_error(logger, "Invalid chainfeed configuration: %s", exc)
        raise SystemExit(1) from exc

    normalized_level, invalid_level = configure_logging(config.log_level)
    if invalid_level:
        log_warning(
            logger,
            "Invalid CHAINFEED_LOG_LEVEL %r, falling back to %s",
            config.log_level,
            normalized_level,
        )

    log_info(
        logger,
        "Starting chainfeed (bus_capacity=%d, max_in_flight=%d, log_level=%s)",
        config.bus_capacity,
        config.max_in_flight,
        normalized_level,
    )

    try:
        asyncio.run(run_pipeline(config))
    except ChainConnectionError as exc:
        log_error(logger, "Could not connect to chain node: %s", exc)
        raise SystemExit(1) from exc


if __name__ == "__main__":
    main()
