"""
Unit tests for connector/ws_client.py -- frame decoding, backoff and the
feed state machine.
"""

import asyncio
import json
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from parity_arb.connector.ws_client import (
    BookEvent,
    FeedIngestor,
    FeedState,
    LastTradePriceEvent,
    PriceChangeEvent,
    PriceUpdate,
    ReconnectBackoff,
    UnknownEvent,
    decode_frame,
    to_price_update,
)


D = Decimal


def book_frame(asset_id="tok1", bids=None, asks=None):
    return {
        "event_type": "book",
        "asset_id": asset_id,
        "market": "0xm1",
        "bids": bids if bids is not None else [{"price": "0.38", "size": "10"}],
        "asks": asks if asks is not None else [{"price": "0.42", "size": "5"}, {"price": "0.40", "size": "7"}],
        "timestamp": "1700000000000",
    }


class FakeWebSocket:
    """Minimal websocket: records sends, yields queued frames, then ends."""

    def __init__(self, frames=(), hold_open=False):
        self.sent = []
        self.closed = False
        self._frames = list(frames)
        self._hold_open = hold_open

    async def send(self, message):
        self.sent.append(message)

    async def close(self):
        self.closed = True

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for frame in self._frames:
            yield frame
        if self._hold_open:
            await asyncio.Event().wait()


# ---------------------------------------------------------------------------
# ReconnectBackoff
# ---------------------------------------------------------------------------

class TestReconnectBackoff:
    def test_doubling_sequence_capped(self):
        backoff = ReconnectBackoff()
        delays = [backoff.next_delay() for _ in range(8)]
        assert delays == [1, 2, 4, 8, 16, 32, 60, 60]

    def test_reset(self):
        backoff = ReconnectBackoff()
        for _ in range(4):
            backoff.next_delay()
        backoff.reset()
        assert backoff.next_delay() == 1


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------

class TestDecodeFrame:
    def test_single_object(self):
        events = decode_frame(json.dumps(book_frame()))
        assert len(events) == 1
        event = events[0]
        assert isinstance(event, BookEvent)
        assert event.best_bid == D("0.38")
        assert event.best_ask == D("0.40")

    def test_array_of_events(self):
        frame = [
            book_frame("tok1"),
            {"event_type": "price_change", "asset_id": "tok2", "price_changes": [{"price": "0.5"}]},
            {"event_type": "last_trade_price", "asset_id": "tok3", "price": "0.61"},
        ]
        events = decode_frame(json.dumps(frame))
        assert [type(e) for e in events] == [BookEvent, PriceChangeEvent, LastTradePriceEvent]
        assert events[2].price == D("0.61")

    def test_non_json_ignored(self):
        assert decode_frame("PONG") == []

    def test_unknown_event_type(self):
        events = decode_frame(json.dumps({"event_type": "something_new"}))
        assert events == [UnknownEvent(event_type="something_new")]

    def test_malformed_item_skipped(self):
        bad = book_frame("bad", asks=[{"price": "oops", "size": "1"}])
        events = decode_frame(json.dumps([bad, book_frame("good"), 42]))
        assert [e.asset_id for e in events] == ["good"]


class TestToPriceUpdate:
    def test_book_event_forwarded(self):
        event = decode_frame(json.dumps(book_frame()))[0]
        assert to_price_update(event) == PriceUpdate("tok1", D("0.38"), D("0.40"))

    def test_one_sided_book_forwarded(self):
        event = decode_frame(json.dumps(book_frame(bids=[])))[0]
        assert to_price_update(event) == PriceUpdate("tok1", None, D("0.40"))

    def test_empty_book_not_forwarded(self):
        event = decode_frame(json.dumps(book_frame(bids=[], asks=[])))[0]
        assert to_price_update(event) is None

    def test_other_events_not_forwarded(self):
        assert to_price_update(LastTradePriceEvent("tok1", D("0.5"))) is None
        assert to_price_update(UnknownEvent("x")) is None


# ---------------------------------------------------------------------------
# FeedIngestor
# ---------------------------------------------------------------------------

class TestFeedIngestor:
    @pytest.mark.asyncio
    async def test_connect_subscribes_and_streams(self):
        ws = FakeWebSocket([json.dumps(book_frame("tok1"))])
        feed = FeedIngestor(ws_url="wss://test", connect=AsyncMock(return_value=ws))
        assert feed.state is FeedState.DISCONNECTED

        handle = await feed.connect(["tok2", "tok1", "tok1"])
        assert feed.state is FeedState.STREAMING
        assert json.loads(ws.sent[0]) == {"type": "market", "assets_ids": ["tok1", "tok2"]}

        updates = [update async for update in handle]
        await handle.close()

        assert updates == [PriceUpdate("tok1", D("0.38"), D("0.40"))]
        assert feed.state is FeedState.DISCONNECTED
        assert ws.closed

    @pytest.mark.asyncio
    async def test_connect_requires_tokens(self):
        feed = FeedIngestor(connect=AsyncMock())
        with pytest.raises(ValueError):
            await feed.connect([])
        assert feed.state is FeedState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_connect_failure_returns_to_disconnected(self):
        feed = FeedIngestor(connect=AsyncMock(side_effect=OSError("refused")))
        with pytest.raises(OSError):
            await feed.connect(["tok1"])
        assert feed.state is FeedState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_invalid_transition_raises(self):
        feed = FeedIngestor(connect=AsyncMock(return_value=FakeWebSocket(hold_open=True)))
        handle = await feed.connect(["tok1"])
        with pytest.raises(RuntimeError):
            await feed.connect(["tok1"])
        await handle.close()

    @pytest.mark.asyncio
    async def test_run_reconnects_with_backoff(self):
        sockets = [
            FakeWebSocket([json.dumps(book_frame("tok1"))]),
            FakeWebSocket([json.dumps(book_frame("tok1", asks=[{"price": "0.45", "size": "1"}]))]),
        ]
        connect = AsyncMock(side_effect=[OSError("down"), OSError("down"), sockets[0], sockets[1]])
        delays = []
        received = []
        reconnected = AsyncMock()

        async def fake_sleep(delay):
            delays.append(delay)
            if len(delays) == 4:
                await feed.stop()

        async def on_update(update):
            received.append(update.best_ask)

        feed = FeedIngestor(connect=connect, sleep=fake_sleep)
        await feed.run(lambda: {"tok1"}, on_update, on_reconnect=reconnected)

        # Two failures back off 1, 2; a successful connection resets to 1
        assert delays == [1, 2, 1, 1]
        assert received == [D("0.40"), D("0.45")]
        assert reconnected.await_count == 4

    @pytest.mark.asyncio
    async def test_run_consults_token_provider_each_attempt(self):
        connect = AsyncMock(side_effect=[FakeWebSocket(), FakeWebSocket()])
        tokens = iter([{"a"}, {"a", "b"}])
        subscribed = []

        async def fake_sleep(delay):
            if len(subscribed) == 2:
                await feed.stop()

        def provider():
            current = next(tokens)
            subscribed.append(sorted(current))
            return current

        feed = FeedIngestor(connect=connect, sleep=fake_sleep)
        await feed.run(provider, AsyncMock())

        assert subscribed == [["a"], ["a", "b"]]

    @pytest.mark.asyncio
    async def test_restart_drops_connection(self):
        ws = FakeWebSocket(hold_open=True)
        feed = FeedIngestor(connect=AsyncMock(return_value=ws))
        handle = await feed.connect(["tok1"])

        await feed.restart()

        assert [u async for u in handle] == []
        assert ws.closed
        assert feed.state is FeedState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_connect_again_after_immediate_restart(self):
        # The reader task never gets a step before restart() cancels it
        first, second = FakeWebSocket(hold_open=True), FakeWebSocket([json.dumps(book_frame("tok1"))])
        feed = FeedIngestor(connect=AsyncMock(side_effect=[first, second]))

        await feed.connect(["tok1"])
        await feed.restart()
        handle = await feed.connect(["tok1"])

        assert feed.state is FeedState.STREAMING
        assert [u.best_ask async for u in handle] == [D("0.40")]
        await handle.close()
        assert feed.state is FeedState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_stale_handle_close_keeps_new_connection(self):
        feed = FeedIngestor(connect=AsyncMock(side_effect=[FakeWebSocket(hold_open=True), FakeWebSocket(hold_open=True)]))

        old = await feed.connect(["tok1"])
        await old.close()
        new = await feed.connect(["tok1"])
        await old.close()

        assert feed.state is FeedState.STREAMING
        await new.close()
        assert feed.state is FeedState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_logs_connect_and_disconnect(self):
        logger = MagicMock()
        connect = AsyncMock(side_effect=[FakeWebSocket()])

        async def fake_sleep(delay):
            await feed.stop()

        feed = FeedIngestor(ws_url="wss://test", connect=connect, sleep=fake_sleep, logger=logger)
        await feed.run(lambda: {"tok1"}, AsyncMock())

        logger.ws_connected.assert_called_once_with("wss://test", 1)
        assert logger.ws_disconnected.call_args.kwargs["retry_in"] == 1
