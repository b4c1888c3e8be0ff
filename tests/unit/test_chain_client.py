"""Unit tests for the websocket JSON-RPC chain client."""

from __future__ import annotations

import asyncio
import typing as typ

import pytest
from websockets.exceptions import WebSocketException

from chainfeed.chain import (
    ChainConnectionError,
    ChainRPCError,
    ChainSubscriptionError,
    TransactionNotFoundError,
    WebSocketChainClient,
)
from tests.helpers.fake_chain import FakeWebSocket
from tests.helpers.femtologging_capture import capture_femto_logs
from tests.helpers.rpc_payloads import HEADER_PAYLOAD, TX_PAYLOAD

if typ.TYPE_CHECKING:
    import collections.abc as cabc

HEADS_ID = "0x9ce59a13059e417087c02d3236a0b1cc"
PENDING_ID = "0x2f2d7c7a1b5e4e57a4e1c1d6a1f0e9b2"


def _notification(subscription: str, result: object) -> dict[str, object]:
    return {
        "jsonrpc": "2.0",
        "method": "eth_subscription",
        "params": {"subscription": subscription, "result": result},
    }


def _reply(request: dict[str, typ.Any], result: object) -> dict[str, object]:
    return {"jsonrpc": "2.0", "id": request["id"], "result": result}


def _node(
    *,
    heads: cabc.Sequence[object] = (),
    pending: cabc.Sequence[object] = (),
    transactions: dict[str, object] | None = None,
) -> cabc.Callable[[dict[str, typ.Any]], list[object]]:
    """Build a responder emulating a node with scripted notifications."""
    known = transactions or {}

    def respond(request: dict[str, typ.Any]) -> list[object]:
        method, params = request["method"], request["params"]
        if method == "eth_subscribe" and params == ["newHeads"]:
            return [
                _reply(request, HEADS_ID),
                *(_notification(HEADS_ID, item) for item in heads),
            ]
        if method == "eth_subscribe" and params == ["newPendingTransactions"]:
            return [
                _reply(request, PENDING_ID),
                *(_notification(PENDING_ID, item) for item in pending),
            ]
        if method == "eth_getTransactionByHash":
            return [_reply(request, known.get(params[0]))]
        return [
            {
                "jsonrpc": "2.0",
                "id": request["id"],
                "error": {"code": -32601, "message": "method not found"},
            }
        ]

    return respond


async def _collect[T](stream: cabc.AsyncIterator[T], count: int) -> list[T]:
    items: list[T] = []
    async for item in stream:
        items.append(item)
        if len(items) == count:
            break
    return items


@pytest.fixture
def started() -> cabc.Callable[[FakeWebSocket], WebSocketChainClient]:
    """Return a factory wrapping a fake socket in a running client."""

    def factory(websocket: FakeWebSocket) -> WebSocketChainClient:
        client = WebSocketChainClient(websocket)
        client.start()
        return client

    return factory


class TestSubscriptions:
    """Tests for eth_subscribe streams."""

    @pytest.mark.asyncio
    async def test_new_heads_are_decoded(
        self, started: cabc.Callable[[FakeWebSocket], WebSocketChainClient]
    ) -> None:
        """Header notifications become BlockHeader records."""
        malformed = {**HEADER_PAYLOAD, "gasUsed": "lots"}
        second = {**HEADER_PAYLOAD, "number": "0x121eac1"}
        ws = FakeWebSocket(_node(heads=[HEADER_PAYLOAD, malformed, second]))
        client = started(ws)

        headers = await client.subscribe_new_heads()
        received = await asyncio.wait_for(_collect(headers, 2), timeout=1)

        assert [header.number for header in received] == [19_000_000, 19_000_001], (
            "Malformed headers should be skipped"
        )
        assert ws.sent[0]["method"] == "eth_subscribe"
        assert ws.sent[0]["jsonrpc"] == "2.0"
        await client.close()

    @pytest.mark.asyncio
    async def test_pending_hashes_accept_bare_and_full_forms(
        self, started: cabc.Callable[[FakeWebSocket], WebSocketChainClient]
    ) -> None:
        """Hashes arrive as strings or as objects carrying a hash."""
        ws = FakeWebSocket(
            _node(pending=["0xaa", {"hash": "0xbb"}, 7, {"nonce": "0x1"}, "0xcc"])
        )
        client = started(ws)

        hashes = await client.subscribe_pending_transactions()
        received = await asyncio.wait_for(_collect(hashes, 3), timeout=1)

        assert received == ["0xaa", "0xbb", "0xcc"], f"Unexpected hashes {received}"
        await client.close()

    @pytest.mark.asyncio
    async def test_rejected_subscription_raises(
        self, started: cabc.Callable[[FakeWebSocket], WebSocketChainClient]
    ) -> None:
        """An error reply to eth_subscribe is a subscription failure."""

        def refuse(request: dict[str, typ.Any]) -> list[object]:
            return [
                {
                    "jsonrpc": "2.0",
                    "id": request["id"],
                    "error": {"code": -32000, "message": "unsupported"},
                }
            ]

        client = started(FakeWebSocket(refuse))

        with pytest.raises(ChainSubscriptionError, match="newPendingTransactions"):
            await client.subscribe_pending_transactions()
        await client.close()

    @pytest.mark.asyncio
    async def test_dropped_socket_fails_the_streams(
        self, started: cabc.Callable[[FakeWebSocket], WebSocketChainClient]
    ) -> None:
        """An abnormal disconnect raises from the iterator after queued items."""
        ws = FakeWebSocket(_node(heads=[HEADER_PAYLOAD]))
        client = started(ws)
        headers = await client.subscribe_new_heads()

        with capture_femto_logs("chainfeed.chain.client") as capture:
            ws.fail(WebSocketException("connection reset"))
            first = await asyncio.wait_for(anext(headers), timeout=1)
            with pytest.raises(ChainConnectionError, match="connection lost"):
                await asyncio.wait_for(anext(headers), timeout=1)
            record = capture.wait_for_message("closed abnormally")

        assert first.number == 0x121EAC0
        assert record.level == "ERROR"
        assert client.closed

    @pytest.mark.asyncio
    async def test_node_side_close_fails_the_streams(
        self, started: cabc.Callable[[FakeWebSocket], WebSocketChainClient]
    ) -> None:
        """A close the client did not ask for is still a lost connection."""
        ws = FakeWebSocket(_node())
        client = started(ws)
        hashes = await client.subscribe_pending_transactions()

        await ws.close()

        with pytest.raises(ChainConnectionError, match="closed by the node"):
            await asyncio.wait_for(anext(hashes), timeout=1)

    @pytest.mark.asyncio
    async def test_client_close_ends_the_streams(
        self, started: cabc.Callable[[FakeWebSocket], WebSocketChainClient]
    ) -> None:
        """Closing the client ends subscription iterators without an error."""
        ws = FakeWebSocket(_node(pending=["0x01"]))
        client = started(ws)
        hashes = await client.subscribe_pending_transactions()

        await client.close()
        received = await asyncio.wait_for(_collect(hashes, 10), timeout=1)

        assert received == ["0x01"]


class TestRequests:
    """Tests for request/response calls."""

    @pytest.mark.asyncio
    async def test_get_transaction(
        self, started: cabc.Callable[[FakeWebSocket], WebSocketChainClient]
    ) -> None:
        """A transaction object is decoded into a Transaction."""
        tx_hash = typ.cast("str", TX_PAYLOAD["hash"])
        ws = FakeWebSocket(_node(transactions={tx_hash: TX_PAYLOAD}))
        client = started(ws)

        tx = await client.get_transaction(tx_hash)

        assert tx.hash == tx_hash
        assert tx.nonce == 42
        assert ws.sent[0]["params"] == [tx_hash]
        await client.close()

    @pytest.mark.asyncio
    async def test_unknown_transaction_raises_not_found(
        self, started: cabc.Callable[[FakeWebSocket], WebSocketChainClient]
    ) -> None:
        """A ``null`` result means the node no longer knows the hash."""
        client = started(FakeWebSocket(_node()))

        with pytest.raises(TransactionNotFoundError, match="0xdead"):
            await client.get_transaction("0xdead")
        await client.close()

    @pytest.mark.asyncio
    async def test_rpc_error_carries_code(
        self, started: cabc.Callable[[FakeWebSocket], WebSocketChainClient]
    ) -> None:
        """JSON-RPC error objects surface as ChainRPCError."""

        def busy(request: dict[str, typ.Any]) -> list[object]:
            return [
                {
                    "jsonrpc": "2.0",
                    "id": request["id"],
                    "error": {"code": -32005, "message": "rate limited"},
                }
            ]

        client = started(FakeWebSocket(busy))

        with pytest.raises(ChainRPCError, match="rate limited") as excinfo:
            await client.get_transaction("0x01")
        assert excinfo.value.code == -32005
        await client.close()

    @pytest.mark.asyncio
    async def test_concurrent_requests_are_matched_by_id(
        self, started: cabc.Callable[[FakeWebSocket], WebSocketChainClient]
    ) -> None:
        """Replies arriving out of order reach the right callers."""
        waiting: list[dict[str, typ.Any]] = []
        def reply_in_reverse(request: dict[str, typ.Any]) -> list[object]:
            waiting.append(request)
            if len(waiting) < 2:
                return []
            return [
                _reply(queued, {**TX_PAYLOAD, "hash": queued["params"][0]})
                for queued in reversed(waiting)
            ]

        ws = FakeWebSocket(reply_in_reverse)
        client = started(ws)

        first, second = await asyncio.wait_for(
            asyncio.gather(
                client.get_transaction("0x01"), client.get_transaction("0x02")
            ),
            timeout=1,
        )

        assert (first.hash, second.hash) == ("0x01", "0x02")
        await client.close()

    @pytest.mark.asyncio
    async def test_outstanding_request_fails_when_connection_drops(
        self, started: cabc.Callable[[FakeWebSocket], WebSocketChainClient]
    ) -> None:
        """In-flight requests fail with ChainConnectionError on disconnect."""
        ws = FakeWebSocket(lambda _request: [])
        client = started(ws)
        request = asyncio.create_task(client.get_transaction("0x01"))
        await asyncio.sleep(0)

        ws.fail(WebSocketException("connection reset"))

        with pytest.raises(ChainConnectionError, match="connection lost"):
            await asyncio.wait_for(request, timeout=1)

    @pytest.mark.asyncio
    async def test_request_after_close_fails_fast(
        self, started: cabc.Callable[[FakeWebSocket], WebSocketChainClient]
    ) -> None:
        """A closed client refuses new requests without touching the socket."""
        ws = FakeWebSocket(_node())
        client = started(ws)
        await client.close()

        with pytest.raises(ChainConnectionError, match="closed"):
            await client.get_transaction("0x01")
        assert ws.sent == []

    @pytest.mark.asyncio
    async def test_undecodable_frames_are_skipped(
        self, started: cabc.Callable[[FakeWebSocket], WebSocketChainClient]
    ) -> None:
        """Garbage frames do not break the reader."""
        tx_hash = typ.cast("str", TX_PAYLOAD["hash"])
        ws = FakeWebSocket(_node(transactions={tx_hash: TX_PAYLOAD}))
        client = started(ws)
        ws.feed("not json")

        tx = await asyncio.wait_for(client.get_transaction(tx_hash), timeout=1)

        assert tx.hash == tx_hash
        await client.close()


class TestConnect:
    """Tests for WebSocketChainClient.connect."""

    @pytest.mark.asyncio
    async def test_handshake_failure_is_a_connection_error(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Network errors during the handshake become ChainConnectionError."""

        async def refuse(*_args: object, **_kwargs: object) -> FakeWebSocket:
            msg = "connection refused"
            raise OSError(msg)

        monkeypatch.setattr("chainfeed.chain.client.websocket_connect", refuse)

        with pytest.raises(ChainConnectionError, match="wss://node.invalid/ws"):
            await WebSocketChainClient.connect("wss://node.invalid/ws", open_timeout=1)

    @pytest.mark.asyncio
    async def test_connect_starts_the_reader(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """A successful handshake yields a running client."""
        ws = FakeWebSocket(_node())
        captured: dict[str, object] = {}

        async def accept(url: str, **kwargs: object) -> FakeWebSocket:
            captured.update(kwargs, url=url)
            return ws

        monkeypatch.setattr("chainfeed.chain.client.websocket_connect", accept)

        client = await WebSocketChainClient.connect(
            "ws://127.0.0.1:8546", open_timeout=3
        )

        with pytest.raises(TransactionNotFoundError):
            await asyncio.wait_for(client.get_transaction("0x01"), timeout=1)
        assert captured["open_timeout"] == 3
        assert captured["url"] == "ws://127.0.0.1:8546"
        await client.close()
        assert ws.closed
