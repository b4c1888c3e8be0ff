"""Structured log events for pipeline task lifecycle and delivery health.

Every event is a single ``key=value`` line prefixed with its
:class:`PipelineEventType`, emitted through femtologging so log aggregators
can parse task exits, dropped items, and consumer lag without extra
instrumentation.
"""

from __future__ import annotations

import enum
import typing as typ

from chainfeed.bus.errors import BusError
from chainfeed.chain.errors import (
    ChainConnectionError,
    ChainResponseShapeError,
    ChainRPCError,
    ChainSubscriptionError,
    TransactionNotFoundError,
)
from chainfeed.config import ChainFeedConfigError
from chainfeed.logging import get_logger, log_debug, log_error, log_info, log_warning

if typ.TYPE_CHECKING:
    import datetime as dt

logger = get_logger(__name__)


class PipelineEventType(enum.StrEnum):
    """Structured log event types for the ingestion pipeline."""

    TASK_STARTED = "pipeline.task.started"
    TASK_COMPLETED = "pipeline.task.completed"
    TASK_FAILED = "pipeline.task.failed"
    PRODUCER_SUBSCRIBED = "pipeline.producer.subscribed"
    ITEM_DROPPED = "pipeline.producer.item_dropped"
    CONSUMER_LAGGED = "pipeline.consumer.lagged"


class ErrorCategory(enum.StrEnum):
    """Categories used to route task failures in alerts."""

    CONNECTION = "connection"
    SUBSCRIPTION = "subscription"
    NOT_FOUND = "not_found"
    RPC = "rpc"
    SCHEMA_DRIFT = "schema_drift"
    CONFIGURATION = "configuration"
    BUS = "bus"
    UNKNOWN = "unknown"


_EXCEPTION_CATEGORY_MAP: tuple[tuple[type[BaseException], ErrorCategory], ...] = (
    (ChainConnectionError, ErrorCategory.CONNECTION),
    (ChainSubscriptionError, ErrorCategory.SUBSCRIPTION),
    (TransactionNotFoundError, ErrorCategory.NOT_FOUND),
    (ChainRPCError, ErrorCategory.RPC),
    (ChainResponseShapeError, ErrorCategory.SCHEMA_DRIFT),
    (ChainFeedConfigError, ErrorCategory.CONFIGURATION),
    (BusError, ErrorCategory.BUS),
)


def categorize_error(exc: BaseException) -> ErrorCategory:
    """Categorize an exception for alerting purposes."""
    for exc_type, category in _EXCEPTION_CATEGORY_MAP:
        if isinstance(exc, exc_type):
            return category
    return ErrorCategory.UNKNOWN


class PipelineEventLogger:
    """Emit structured pipeline events via femtologging.

    Task lifecycle events are INFO, lag is WARNING, task failures are ERROR.
    Per-item drops are DEBUG because a busy mempool produces them
    continuously.
    """

    def log_task_started(self, name: str, role: str) -> None:
        """Log that a supervised task was spawned."""
        log_info(
            logger,
            "[%s] task=%s role=%s",
            PipelineEventType.TASK_STARTED,
            name,
            role,
        )

    def log_task_completed(
        self,
        name: str,
        role: str,
        result: object,
        duration: dt.timedelta,
    ) -> None:
        """Log a task that returned normally, including its result summary."""
        log_info(
            logger,
            "[%s] task=%s role=%s duration_seconds=%.3f result=%r",
            PipelineEventType.TASK_COMPLETED,
            name,
            role,
            duration.total_seconds(),
            result,
        )

    def log_task_failed(
        self,
        name: str,
        role: str,
        error: BaseException,
        duration: dt.timedelta,
    ) -> None:
        """Log a task that terminated with an exception."""
        log_error(
            logger,
            "[%s] task=%s role=%s duration_seconds=%.3f "
            "error_type=%s error_category=%s error_message=%s",
            PipelineEventType.TASK_FAILED,
            name,
            role,
            duration.total_seconds(),
            type(error).__name__,
            categorize_error(error),
            str(error),
            exc_info=error,
        )

    def log_producer_subscribed(self, producer: str) -> None:
        """Log a successfully established upstream subscription."""
        log_info(
            logger,
            "[%s] producer=%s",
            PipelineEventType.PRODUCER_SUBSCRIBED,
            producer,
        )

    def log_item_dropped(self, producer: str, item: str, error: BaseException) -> None:
        """Log an upstream item that could not be turned into an event."""
        log_debug(
            logger,
            "[%s] producer=%s item=%s error_category=%s error_message=%s",
            PipelineEventType.ITEM_DROPPED,
            producer,
            item,
            categorize_error(error),
            str(error),
        )

    def log_consumer_lagged(self, consumer: str, skipped: int) -> None:
        """Log messages a consumer lost by falling behind the bus window."""
        log_warning(
            logger,
            "[%s] consumer=%s skipped=%d",
            PipelineEventType.CONSUMER_LAGGED,
            consumer,
            skipped,
        )
