"""Chain connection protocol and its websocket JSON-RPC implementation."""

from __future__ import annotations

import asyncio
import collections.abc as cabc
import dataclasses
import itertools
import typing as typ

import msgspec
from websockets.asyncio.client import connect as websocket_connect
from websockets.exceptions import WebSocketException

from chainfeed.logging import get_logger, log_debug, log_exception, log_warning

from .errors import (
    ChainConnectionError,
    ChainResponseShapeError,
    ChainRPCError,
    ChainSubscriptionError,
    TransactionNotFoundError,
)
from .models import (
    BlockHeader,
    Transaction,
    block_header_from_payload,
    transaction_from_payload,
)

logger = get_logger(__name__)


class ChainConnection(typ.Protocol):
    """Interface the producers use to read from a chain node.

    Each ``subscribe_*`` coroutine establishes the subscription before it
    returns, so a refused subscription surfaces as an exception from the
    ``await`` rather than from the first iteration.
    """

    async def subscribe_new_heads(self) -> cabc.AsyncIterator[BlockHeader]:
        """Subscribe to new block headers."""
        ...

    async def subscribe_pending_transactions(self) -> cabc.AsyncIterator[str]:
        """Subscribe to the hashes of transactions entering the mempool."""
        ...

    async def get_transaction(self, tx_hash: str) -> Transaction:
        """Resolve a transaction hash into its full body."""
        ...


class _WebSocket(typ.Protocol):
    """The subset of a websockets client connection the client relies on."""

    async def send(self, message: str) -> None: ...

    async def close(self) -> None: ...

    def __aiter__(self) -> cabc.AsyncIterator[str | bytes]: ...


class _RpcErrorObject(msgspec.Struct):
    code: int
    message: str


class _SubscriptionParams(msgspec.Struct):
    subscription: str
    result: typ.Any = None


class _RpcMessage(msgspec.Struct):
    id: int | None = None
    result: typ.Any = None
    error: _RpcErrorObject | None = None
    method: str | None = None
    params: _SubscriptionParams | None = None


@dataclasses.dataclass(slots=True)
class _PendingRequest:
    method: str
    future: asyncio.Future[typ.Any]
    subscription: asyncio.Queue[object] | None = None


_STREAM_CLOSED = object()


async def _iter_notifications(
    queue: asyncio.Queue[object],
) -> cabc.AsyncIterator[object]:
    while True:
        item = await queue.get()
        if item is _STREAM_CLOSED:
            return
        if isinstance(item, ChainConnectionError):
            raise item
        yield item


class WebSocketChainClient:
    """JSON-RPC 2.0 client multiplexed over one websocket connection.

    A single reader task owns the socket's receive side. Responses are
    matched to callers by request id and ``eth_subscription`` notifications
    are routed by subscription id, so any number of subscriptions and
    requests can share the connection concurrently.
    """

    def __init__(self, websocket: _WebSocket) -> None:
        """Wrap an already-open websocket connection."""
        self._ws = websocket
        self._ids = itertools.count(1)
        self._pending: dict[int, _PendingRequest] = {}
        self._subscriptions: dict[str, asyncio.Queue[object]] = {}
        self._reader: asyncio.Task[None] | None = None
        self._closed = False

    @classmethod
    async def connect(
        cls, url: str, *, open_timeout: float = 10.0
    ) -> WebSocketChainClient:
        """Open a websocket to ``url`` and start the reader task.

        Raises
        ------
        ChainConnectionError
            If the handshake fails or times out.

        """
        try:
            websocket = await websocket_connect(
                url, open_timeout=open_timeout, max_size=None
            )
        except (OSError, TimeoutError, WebSocketException) as exc:
            raise ChainConnectionError.connect_failed(url, str(exc)) from exc
        client = cls(typ.cast("_WebSocket", websocket))
        client.start()
        return client

    @property
    def closed(self) -> bool:
        """Return whether the connection has stopped serving requests."""
        return self._closed

    def start(self) -> None:
        """Start the reader task if it is not running yet."""
        if self._reader is None:
            self._reader = asyncio.create_task(
                self._read_loop(), name="chainfeed.chain.reader"
            )

    async def close(self) -> None:
        """Close the websocket and wait for the reader to finish."""
        self._closed = True
        await self._ws.close()
        if self._reader is not None:
            await self._reader

    async def subscribe_new_heads(self) -> cabc.AsyncIterator[BlockHeader]:
        """Subscribe to ``newHeads`` and yield decoded headers."""
        queue = await self._subscribe("newHeads")
        return self._iter_headers(queue)

    async def subscribe_pending_transactions(self) -> cabc.AsyncIterator[str]:
        """Subscribe to ``newPendingTransactions`` and yield hashes."""
        queue = await self._subscribe("newPendingTransactions")
        return self._iter_hashes(queue)

    async def get_transaction(self, tx_hash: str) -> Transaction:
        """Fetch a transaction body with ``eth_getTransactionByHash``.

        Raises
        ------
        TransactionNotFoundError
            If the node returns ``null`` for the hash.
        ChainRPCError
            If the node answers with a JSON-RPC error.
        ChainResponseShapeError
            If the transaction object cannot be decoded.

        """
        result = await self._request("eth_getTransactionByHash", [tx_hash])
        if result is None:
            raise TransactionNotFoundError.for_hash(tx_hash)
        return transaction_from_payload(result)

    async def _subscribe(self, kind: str) -> asyncio.Queue[object]:
        queue: asyncio.Queue[object] = asyncio.Queue()
        try:
            await self._request("eth_subscribe", [kind], subscription=queue)
        except ChainRPCError as exc:
            raise ChainSubscriptionError.rejected(kind, str(exc)) from exc
        return queue

    async def _request(
        self,
        method: str,
        params: list[object],
        *,
        subscription: asyncio.Queue[object] | None = None,
    ) -> typ.Any:  # noqa: ANN401 - JSON-RPC results are untyped
        if self._closed:
            raise ChainConnectionError.closed()

        request_id = next(self._ids)
        future: asyncio.Future[typ.Any] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = _PendingRequest(method, future, subscription)
        frame = msgspec.json.encode(
            {"jsonrpc": "2.0", "id": request_id, "method": method, "params": params}
        )
        try:
            await self._ws.send(frame.decode("utf-8"))
            return await future
        except (OSError, WebSocketException) as exc:
            raise ChainConnectionError(f"{method} failed: {exc}") from exc
        finally:
            self._pending.pop(request_id, None)

    async def _read_loop(self) -> None:
        lost: ChainConnectionError | None = None
        try:
            async for frame in self._ws:
                self._dispatch(frame)
        except WebSocketException as exc:
            lost = ChainConnectionError.lost(str(exc))
            log_exception(logger, "Chain connection closed abnormally", exc)
        else:
            if not self._closed:
                lost = ChainConnectionError.lost("closed by the node")
                log_warning(logger, "Chain connection closed by the node")
        finally:
            self._closed = True
            self._shutdown_waiters(lost)

    def _dispatch(self, frame: str | bytes) -> None:
        try:
            message = msgspec.json.decode(frame, type=_RpcMessage)
        except (msgspec.DecodeError, msgspec.ValidationError) as exc:
            log_warning(logger, "Discarding undecodable JSON-RPC frame: %s", exc)
            return

        if message.id is not None:
            self._resolve(message)
        elif message.method == "eth_subscription" and message.params is not None:
            queue = self._subscriptions.get(message.params.subscription)
            if queue is None:
                log_debug(
                    logger,
                    "Notification for unknown subscription %s",
                    message.params.subscription,
                )
                return
            queue.put_nowait(message.params.result)

    def _resolve(self, message: _RpcMessage) -> None:
        pending = self._pending.pop(typ.cast("int", message.id), None)
        if pending is None or pending.future.done():
            return

        if message.error is not None:
            pending.future.set_exception(
                ChainRPCError.from_payload(
                    pending.method, message.error.code, message.error.message
                )
            )
            return

        if pending.subscription is not None:
            # Register before waking the caller so early notifications queue up.
            if not isinstance(message.result, str):
                pending.future.set_exception(
                    ChainResponseShapeError.missing("subscription id")
                )
                return
            self._subscriptions[message.result] = pending.subscription

        pending.future.set_result(message.result)

    def _shutdown_waiters(self, lost: ChainConnectionError | None) -> None:
        # Streams end quietly only when close() was requested.
        for pending in self._pending.values():
            if not pending.future.done():
                pending.future.set_exception(lost or ChainConnectionError.closed())
        self._pending.clear()
        for queue in self._subscriptions.values():
            queue.put_nowait(_STREAM_CLOSED if lost is None else lost)

    async def _iter_headers(
        self, queue: asyncio.Queue[object]
    ) -> cabc.AsyncIterator[BlockHeader]:
        async for payload in _iter_notifications(queue):
            try:
                yield block_header_from_payload(payload)
            except ChainResponseShapeError as exc:
                log_warning(logger, "Skipping malformed block header: %s", exc)

    async def _iter_hashes(
        self, queue: asyncio.Queue[object]
    ) -> cabc.AsyncIterator[str]:
        async for payload in _iter_notifications(queue):
            if isinstance(payload, str):
                yield payload
            elif isinstance(payload, dict) and isinstance(payload.get("hash"), str):
                yield payload["hash"]
            else:
                log_warning(
                    logger, "Skipping malformed pending transaction: %r", payload
                )
