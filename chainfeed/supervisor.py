"""Supervision of the producer and consumer tasks.

The supervisor starts each component as a named asyncio task and waits on
the whole set, recording how each one ended. It never restarts anything: a
producer whose subscription failed stays down and the rest of the pipeline
keeps running with that source silent.
"""

from __future__ import annotations

import asyncio
import dataclasses
import datetime as dt
import enum
import time
import typing as typ

from chainfeed.observability import PipelineEventLogger

if typ.TYPE_CHECKING:
    import collections.abc as cabc


class TaskRole(enum.StrEnum):
    """Which side of the bus a supervised task sits on."""

    PRODUCER = "producer"
    CONSUMER = "consumer"


@dataclasses.dataclass(frozen=True, slots=True)
class TaskOutcome:
    """How a supervised task ended.

    Exactly one of ``result`` and ``error`` is meaningful: ``error`` is set
    when the task raised or was cancelled, otherwise ``result`` holds the
    returned value.
    """

    name: str
    role: TaskRole
    result: object
    error: BaseException | None
    duration: dt.timedelta

    @property
    def succeeded(self) -> bool:
        """Return whether the task returned without raising."""
        return self.error is None


@dataclasses.dataclass(frozen=True, slots=True)
class _TaskInfo:
    name: str
    role: TaskRole
    started: float


class TaskSupervisor:
    """Spawn pipeline tasks and collect their outcomes."""

    def __init__(
        self,
        *,
        event_logger: PipelineEventLogger | None = None,
        on_producers_finished: cabc.Callable[[], None] | None = None,
    ) -> None:
        """Create an empty supervisor.

        Parameters
        ----------
        event_logger
            Destination for task lifecycle events.
        on_producers_finished
            Called once, after every producer task has ended. The runtime
            uses it to close the bus so consumers can drain and return.

        """
        self._event_logger = event_logger or PipelineEventLogger()
        self._on_producers_finished = on_producers_finished
        self._producers_finished_signalled = False
        self._tasks: dict[asyncio.Task[typ.Any], _TaskInfo] = {}

    def spawn(
        self,
        name: str,
        coro: cabc.Coroutine[typ.Any, typ.Any, object],
        *,
        role: TaskRole,
    ) -> asyncio.Task[object]:
        """Schedule ``coro`` as a supervised task named ``name``."""
        task = asyncio.create_task(coro, name=name)
        self._tasks[task] = _TaskInfo(name=name, role=role, started=time.monotonic())
        self._event_logger.log_task_started(name, role)
        return task

    async def join_all(self) -> list[TaskOutcome]:
        """Wait for every supervised task and return outcomes in exit order."""
        outcomes: list[TaskOutcome] = []
        pending = set(self._tasks)
        self._check_producers_finished()
        while pending:
            done, pending = await asyncio.wait(
                pending, return_when=asyncio.FIRST_COMPLETED
            )
            for task in done:
                outcomes.append(self._record(task))
            self._check_producers_finished()
        return outcomes

    def _record(self, task: asyncio.Task[typ.Any]) -> TaskOutcome:
        info = self._tasks[task]
        duration = dt.timedelta(seconds=time.monotonic() - info.started)
        if task.cancelled():
            error: BaseException | None = asyncio.CancelledError()
            result = None
        else:
            error = task.exception()
            result = None if error is not None else task.result()

        if error is None:
            self._event_logger.log_task_completed(
                info.name, info.role, result, duration
            )
        else:
            self._event_logger.log_task_failed(info.name, info.role, error, duration)
        return TaskOutcome(
            name=info.name,
            role=info.role,
            result=result,
            error=error,
            duration=duration,
        )

    def _check_producers_finished(self) -> None:
        if self._producers_finished_signalled or self._on_producers_finished is None:
            return
        producers = [
            task for task, info in self._tasks.items() if info.role is TaskRole.PRODUCER
        ]
        if all(task.done() for task in producers):
            self._producers_finished_signalled = True
            self._on_producers_finished()
