"""Bounded broadcast channel connecting producers to consumers.

The bus keeps the most recent ``capacity`` messages in a ring buffer indexed
by a global sequence number. Each :class:`Subscription` owns a cursor into
that sequence, so subscribers read independently and at their own pace.

Delivery is at-most-once and best effort:

- ``send`` never waits. With no subscribers the message is dropped and
  :class:`NoSubscribersError` is raised.
- A subscription that falls more than ``capacity`` messages behind gets a
  :class:`LaggedError` on its next ``recv`` and resumes from the oldest
  message still retained.
- New subscriptions start at the current tail and see no history.

All methods must be called from the event loop thread; the bus relies on
asyncio's single-threaded scheduling instead of locks.

Examples
--------
>>> bus: EventBus[int] = EventBus(capacity=2)
>>> sub = bus.subscribe()
>>> for n in range(3):
...     _ = bus.send(n)
>>> sub.try_recv()
Traceback (most recent call last):
    ...
chainfeed.bus.errors.LaggedError: subscription lagged by 1 messages
>>> sub.try_recv()
1

"""

from __future__ import annotations

import asyncio
import collections
import typing as typ

from .errors import BusClosedError, EmptyError, LaggedError, NoSubscribersError

if typ.TYPE_CHECKING:
    import types

DEFAULT_CAPACITY = 512

_EMPTY: typ.Final = object()


class EventBus[T]:
    """Broadcast channel with a fixed retention window."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        """Create a bus retaining at most ``capacity`` messages."""
        if capacity < 1:
            msg = f"capacity must be positive, got {capacity}"
            raise ValueError(msg)
        self._capacity = capacity
        self._buffer: collections.deque[T] = collections.deque(maxlen=capacity)
        self._next_seq = 0
        self._receivers = 0
        self._closed = False
        self._wakeup = asyncio.Event()

    @property
    def capacity(self) -> int:
        """Return the size of the retention window."""
        return self._capacity

    @property
    def receiver_count(self) -> int:
        """Return the number of attached subscriptions."""
        return self._receivers

    @property
    def closed(self) -> bool:
        """Return whether :meth:`close` has been called."""
        return self._closed

    def send(self, message: T) -> int:
        """Publish ``message`` to every attached subscription.

        Returns
        -------
        int
            Number of subscriptions that will observe the message.

        Raises
        ------
        NoSubscribersError
            If nothing is subscribed; the message is discarded.
        BusClosedError
            If the bus has been closed.

        """
        if self._closed:
            raise BusClosedError
        if self._receivers == 0:
            raise NoSubscribersError
        self._buffer.append(message)
        self._next_seq += 1
        self._notify()
        return self._receivers

    def subscribe(self) -> Subscription[T]:
        """Attach a new subscription positioned after the latest message."""
        if self._closed:
            raise BusClosedError
        self._receivers += 1
        return Subscription(self, self._next_seq)

    def close(self) -> None:
        """Stop accepting messages and wake every waiting subscription.

        Subscriptions still drain whatever is retained before ``recv`` raises
        :class:`BusClosedError`.
        """
        if self._closed:
            return
        self._closed = True
        self._notify()

    def _notify(self) -> None:
        wakeup, self._wakeup = self._wakeup, asyncio.Event()
        wakeup.set()

    def _detach(self) -> None:
        self._receivers -= 1
        # A detached receiver may be parked in recv().
        self._notify()


class Subscription[T]:
    """A consumer's cursor into an :class:`EventBus`.

    Obtain instances from :meth:`EventBus.subscribe`. Supports ``async for``
    (ending when the bus is closed and drained) and ``with`` (detaching on
    exit).
    """

    def __init__(self, bus: EventBus[T], cursor: int) -> None:
        """Bind the subscription to ``bus`` starting at sequence ``cursor``."""
        self._bus = bus
        self._cursor = cursor
        self._detached = False

    @property
    def pending(self) -> int:
        """Return how many retained messages this subscription has not read."""
        bus = self._bus
        oldest = bus._next_seq - len(bus._buffer)  # noqa: SLF001
        return bus._next_seq - max(self._cursor, oldest)  # noqa: SLF001

    def try_recv(self) -> T:
        """Return the next message without waiting.

        Raises
        ------
        LaggedError
            If messages were overwritten before this subscription read them.
        EmptyError
            If no message is waiting.
        BusClosedError
            If the bus is closed and drained, or the subscription detached.

        """
        message = self._poll()
        if message is _EMPTY:
            raise EmptyError
        return typ.cast("T", message)

    async def recv(self) -> T:
        """Wait for and return the next message.

        Raises
        ------
        LaggedError
            If messages were overwritten before this subscription read them.
            The cursor now points at the oldest retained message.
        BusClosedError
            If the bus is closed and drained, or the subscription detached.

        """
        while True:
            wakeup = self._bus._wakeup  # noqa: SLF001
            message = self._poll()
            if message is not _EMPTY:
                return typ.cast("T", message)
            await wakeup.wait()

    def close(self) -> None:
        """Detach from the bus; later receives raise :class:`BusClosedError`."""
        if not self._detached:
            self._detached = True
            self._bus._detach()  # noqa: SLF001

    def _poll(self) -> object:
        if self._detached:
            raise BusClosedError
        bus = self._bus
        end = bus._next_seq  # noqa: SLF001
        oldest = end - len(bus._buffer)  # noqa: SLF001
        if self._cursor < oldest:
            skipped = oldest - self._cursor
            self._cursor = oldest
            raise LaggedError(skipped)
        if self._cursor < end:
            message = bus._buffer[self._cursor - oldest]  # noqa: SLF001
            self._cursor += 1
            return message
        if bus.closed:
            raise BusClosedError
        return _EMPTY

    def __enter__(self) -> Subscription[T]:
        """Return the subscription itself."""
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: types.TracebackType | None,
    ) -> None:
        """Detach from the bus."""
        self.close()

    def __aiter__(self) -> Subscription[T]:
        """Return the subscription as its own async iterator."""
        return self

    async def __anext__(self) -> T:
        """Return the next message, stopping once the bus is closed."""
        try:
            return await self.recv()
        except BusClosedError:
            raise StopAsyncIteration from None
