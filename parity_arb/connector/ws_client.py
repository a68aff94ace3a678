"""
WebSocket feed for real-time Polymarket prices.

The connection lifecycle is an explicit state machine:

    DISCONNECTED -> CONNECTING -> SUBSCRIBED -> STREAMING -> DISCONNECTED

Reconnection is unbounded with exponential backoff (1s doubling, capped at
60s) and resets after every successful transition to STREAMING.
"""

import asyncio
import json
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Iterable, Optional, Union, TYPE_CHECKING

import websockets
from websockets.exceptions import ConnectionClosed

from ..orderbook.book import parse_levels

if TYPE_CHECKING:
    from ..monitor import Logger


class FeedState(Enum):
    """Connection states."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    SUBSCRIBED = "subscribed"
    STREAMING = "streaming"


ALLOWED_TRANSITIONS = {
    FeedState.DISCONNECTED: {FeedState.CONNECTING},
    FeedState.CONNECTING: {FeedState.SUBSCRIBED, FeedState.DISCONNECTED},
    FeedState.SUBSCRIBED: {FeedState.STREAMING, FeedState.DISCONNECTED},
    FeedState.STREAMING: {FeedState.DISCONNECTED},
}


class ReconnectBackoff:
    """Doubling delay with a cap: 1, 2, 4, ... 60, 60."""

    def __init__(self, initial: float = 1.0, maximum: float = 60.0, factor: float = 2.0):
        self.initial = initial
        self.maximum = maximum
        self.factor = factor
        self._current = initial

    def next_delay(self) -> float:
        """Delay to wait now; advances the sequence."""
        delay = self._current
        self._current = min(self._current * self.factor, self.maximum)
        return delay

    def reset(self) -> None:
        self._current = self.initial

    @property
    def current(self) -> float:
        return self._current


# === Feed events ===

class FeedEventType(Enum):
    """Known event_type discriminators."""
    BOOK = "book"
    PRICE_CHANGE = "price_change"
    LAST_TRADE_PRICE = "last_trade_price"
    TICK_SIZE_CHANGE = "tick_size_change"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class BookEvent:
    """Full book for one asset."""
    asset_id: str
    market: str
    bids: tuple[tuple[Decimal, Decimal], ...]
    asks: tuple[tuple[Decimal, Decimal], ...]
    timestamp: str = ""
    kind: FeedEventType = FeedEventType.BOOK

    @property
    def best_bid(self) -> Optional[Decimal]:
        return max((price for price, _ in self.bids), default=None)

    @property
    def best_ask(self) -> Optional[Decimal]:
        return min((price for price, _ in self.asks), default=None)


@dataclass(frozen=True)
class PriceChangeEvent:
    asset_id: str
    market: str
    changes: tuple[dict, ...]
    kind: FeedEventType = FeedEventType.PRICE_CHANGE


@dataclass(frozen=True)
class LastTradePriceEvent:
    asset_id: str
    price: Optional[Decimal]
    kind: FeedEventType = FeedEventType.LAST_TRADE_PRICE


@dataclass(frozen=True)
class TickSizeChangeEvent:
    asset_id: str
    tick_size: Optional[Decimal]
    kind: FeedEventType = FeedEventType.TICK_SIZE_CHANGE


@dataclass(frozen=True)
class UnknownEvent:
    event_type: str
    kind: FeedEventType = FeedEventType.UNKNOWN


FeedEvent = Union[BookEvent, PriceChangeEvent, LastTradePriceEvent, TickSizeChangeEvent, UnknownEvent]


@dataclass(frozen=True)
class PriceUpdate:
    """Top-of-book change for one token."""
    token_id: str
    best_bid: Optional[Decimal] = None
    best_ask: Optional[Decimal] = None


def _optional_decimal(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    return Decimal(str(value))


def parse_event(data: dict[str, Any]) -> FeedEvent:
    """
    Map one JSON object onto its event variant.

    Raises ValueError/InvalidOperation on malformed fields.
    """
    event_type = str(data.get("event_type", ""))
    asset_id = str(data.get("asset_id", ""))

    if event_type == FeedEventType.BOOK.value:
        return BookEvent(
            asset_id=asset_id,
            market=str(data.get("market", "")),
            bids=tuple(parse_levels(data.get("bids") or data.get("buys"))),
            asks=tuple(parse_levels(data.get("asks") or data.get("sells"))),
            timestamp=str(data.get("timestamp", "")),
        )
    if event_type == FeedEventType.PRICE_CHANGE.value:
        changes = data.get("price_changes") or data.get("changes") or []
        return PriceChangeEvent(
            asset_id=asset_id,
            market=str(data.get("market", "")),
            changes=tuple(c for c in changes if isinstance(c, dict)),
        )
    if event_type == FeedEventType.LAST_TRADE_PRICE.value:
        return LastTradePriceEvent(asset_id=asset_id, price=_optional_decimal(data.get("price")))
    if event_type == FeedEventType.TICK_SIZE_CHANGE.value:
        return TickSizeChangeEvent(
            asset_id=asset_id,
            tick_size=_optional_decimal(data.get("new_tick_size") or data.get("tick_size")),
        )
    return UnknownEvent(event_type=event_type)


def decode_frame(raw: Union[str, bytes]) -> list[FeedEvent]:
    """
    Decode one frame permissively.

    A frame is a single event object or an array of them. Non-JSON frames
    and malformed events are skipped, never raised.
    """
    try:
        payload = json.loads(raw)
    except (TypeError, ValueError):
        return []

    items: Iterable[Any] = payload if isinstance(payload, list) else [payload]
    events = []
    for item in items:
        if not isinstance(item, dict):
            continue
        try:
            events.append(parse_event(item))
        except (ValueError, TypeError, InvalidOperation):
            continue
    return events


def to_price_update(event: FeedEvent) -> Optional[PriceUpdate]:
    """Forwardable update for an event, or None if the event is not forwarded."""
    if not isinstance(event, BookEvent):
        return None
    best_bid, best_ask = event.best_bid, event.best_ask
    if best_bid is None and best_ask is None:
        return None
    return PriceUpdate(token_id=event.asset_id, best_bid=best_bid, best_ask=best_ask)


# === Connection ===

_CLOSED = object()


class FeedHandle:
    """
    Consumer side of one live connection.

    Async-iterates PriceUpdates until the connection ends. ``finish`` runs
    exactly once per connection, from the reader or from ``close()``,
    whichever comes first; a reader cancelled before its first step never
    reaches its own cleanup.
    """

    def __init__(
        self,
        ws: Any,
        on_finished: Callable[["FeedHandle", str], None],
        queue_size: int = 1000,
    ):
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self.reader: Optional[asyncio.Task] = None
        self._ws = ws
        self._on_finished = on_finished
        self._finished = False

    def __aiter__(self) -> AsyncIterator[PriceUpdate]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[PriceUpdate]:
        while True:
            item = await self.queue.get()
            if item is _CLOSED:
                return
            yield item

    def finish(self, reason: str) -> None:
        """Report the close and wake the consumer."""
        if self._finished:
            return
        self._finished = True
        self._on_finished(self, reason)
        # Never block the close marker behind a full queue
        while True:
            try:
                self.queue.put_nowait(_CLOSED)
                break
            except asyncio.QueueFull:
                self.queue.get_nowait()

    async def close(self) -> None:
        if self.reader is not None:
            self.reader.cancel()
            try:
                await self.reader
            except asyncio.CancelledError:
                pass
        self.finish("closed")
        await self._ws.close()


class FeedIngestor:
    """Live market feed with an explicit reconnect state machine."""

    def __init__(
        self,
        ws_url: str = "wss://ws-subscriptions-clob.polymarket.com/ws/market",
        ping_interval: int = 30,
        backoff: Optional[ReconnectBackoff] = None,
        logger: Optional["Logger"] = None,
        queue_size: int = 1000,
        connect: Optional[Callable[..., Awaitable[Any]]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.ws_url = ws_url
        self.ping_interval = ping_interval
        self.backoff = backoff or ReconnectBackoff()
        self.logger = logger
        self.queue_size = queue_size
        self._connect = connect or websockets.connect
        self._sleep = sleep

        self._state = FeedState.DISCONNECTED
        self._running = False
        self._handle: Optional[FeedHandle] = None
        self._last_close_reason = ""

    @property
    def state(self) -> FeedState:
        return self._state

    def _transition(self, new_state: FeedState) -> None:
        if new_state not in ALLOWED_TRANSITIONS[self._state]:
            raise RuntimeError(f"Invalid feed transition {self._state.value} -> {new_state.value}")
        if self.logger:
            self.logger.debug("feed_state", old=self._state.value, new=new_state.value)
        self._state = new_state

    async def connect(self, token_ids: Iterable[str]) -> FeedHandle:
        """Open the socket, subscribe to every token, and start streaming."""
        token_ids = sorted(set(token_ids))
        if not token_ids:
            raise ValueError("No token IDs to subscribe to")

        self._transition(FeedState.CONNECTING)
        self._last_close_reason = ""
        try:
            ws = await self._connect(
                self.ws_url,
                ping_interval=self.ping_interval,
                ping_timeout=self.ping_interval * 2,
            )
        except BaseException:
            self._transition(FeedState.DISCONNECTED)
            raise

        try:
            await ws.send(json.dumps({"type": "market", "assets_ids": token_ids}))
            self._transition(FeedState.SUBSCRIBED)
        except BaseException:
            self._transition(FeedState.DISCONNECTED)
            await ws.close()
            raise

        handle = FeedHandle(ws, self._on_handle_finished, queue_size=self.queue_size)
        self._handle = handle
        self._transition(FeedState.STREAMING)
        handle.reader = asyncio.create_task(self._read_loop(ws, handle))
        self.backoff.reset()

        if self.logger:
            self.logger.ws_connected(self.ws_url, len(token_ids))
        return handle

    def _on_handle_finished(self, handle: FeedHandle, reason: str) -> None:
        # A stale handle must not disturb a newer connection
        if handle is not self._handle:
            return
        if self._state is FeedState.STREAMING:
            self._transition(FeedState.DISCONNECTED)
        self._last_close_reason = reason

    async def _read_loop(self, ws: Any, handle: FeedHandle) -> None:
        """Decode frames into the handle's queue until the connection ends."""
        reason = "stream_ended"
        try:
            async for message in ws:
                for event in decode_frame(message):
                    update = to_price_update(event)
                    if update is not None:
                        await handle.queue.put(update)
                    elif self.logger and event.kind is not FeedEventType.BOOK:
                        self.logger.debug("ws_event_dropped", kind=event.kind.value)
        except ConnectionClosed as e:
            reason = f"closed: {e}"
        except asyncio.CancelledError:
            reason = "cancelled"
            raise
        except Exception as e:
            reason = f"error: {e}"
        finally:
            handle.finish(reason)

    async def run(
        self,
        token_provider: Callable[[], Iterable[str]],
        on_update: Callable[[PriceUpdate], Awaitable[Any]],
        on_reconnect: Optional[Callable[[], Awaitable[None]]] = None,
    ) -> None:
        """
        Stream forever, reconnecting after every failure.

        ``token_provider`` is consulted before each connection attempt so a
        refreshed registry is picked up on reconnect.
        """
        self._running = True
        while self._running:
            reason = "stream_ended"
            try:
                handle = await self.connect(token_provider())
                try:
                    async for update in handle:
                        await on_update(update)
                finally:
                    await handle.close()
                reason = self._last_close_reason or reason
            except asyncio.CancelledError:
                raise
            except Exception as e:
                reason = f"{type(e).__name__}: {e}"

            if not self._running:
                break

            delay = self.backoff.next_delay()
            if self.logger:
                self.logger.ws_disconnected(reason=reason, retry_in=delay)
            if on_reconnect is not None:
                await on_reconnect()
            await self._sleep(delay)

    async def restart(self) -> None:
        """Drop the live connection; run() reconnects with fresh tokens."""
        if self._handle is not None:
            await self._handle.close()

    async def stop(self) -> None:
        """Stop reconnecting and close the live connection."""
        self._running = False
        if self._handle is not None:
            await self._handle.close()
            self._handle = None
