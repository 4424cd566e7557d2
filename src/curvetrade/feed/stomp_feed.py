"""STOMP 1.2 trade feed over a raw WebSocket.

Connects to the backend's STOMP endpoint, subscribes with client ack,
ACKs each MESSAGE after its handler ran, and keeps heart-beats flowing.
On connection loss it waits `reconnect_delay` seconds, reconnects and
re-sends every live SUBSCRIBE. Messages redelivered across a reconnect are
left to the handlers' dedup.
"""

import asyncio
import contextlib
import itertools
from dataclasses import dataclass
from urllib.parse import urlparse

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from curvetrade.config import FeedSettings
from curvetrade.exceptions import FeedParseError
from curvetrade.feed.client import MessageHandler, TradeFeed
from curvetrade.feed.stomp import HEARTBEAT, Frame, decode_frame, encode_frame
from curvetrade.logging import get_logger

logger = get_logger(__name__)


@dataclass
class _Subscription:
    topic: str
    handler: MessageHandler


def negotiate_heartbeat(client_ms: int, server_header: str | None) -> float:
    """Return the client send interval in seconds (0 disables heart-beats).

    Per STOMP 1.2 the client sends every max(cx, sy) ms when both sides are
    non-zero, where sy is the server's "want to receive" value.
    """
    if client_ms <= 0 or not server_header:
        return 0.0
    try:
        _, server_wants = (int(part) for part in server_header.split(",", 1))
    except ValueError:
        return 0.0
    if server_wants <= 0:
        return 0.0
    return max(client_ms, server_wants) / 1000.0


class StompTradeFeed(TradeFeed):
    """Trade feed speaking STOMP over `websockets`.

    Args:
        settings: Feed endpoint, heart-beat and reconnect configuration.
        connect: WebSocket connect factory (injectable for tests).
    """

    def __init__(self, settings: FeedSettings, connect=websockets.connect) -> None:
        super().__init__()
        self._settings = settings
        self._connect = connect
        self._subscriptions: dict[str, _Subscription] = {}
        self._ids = itertools.count(1)
        self._ws = None
        self._task: asyncio.Task | None = None
        self._heartbeat_task: asyncio.Task | None = None
        self._stop_event = asyncio.Event()
        self._send_lock = asyncio.Lock()
        self._hook_tasks: set[asyncio.Task] = set()

    @property
    def connected(self) -> bool:
        return self._ws is not None

    @property
    def subscriptions(self) -> dict[str, str]:
        """Subscription id -> topic."""
        return {sub_id: sub.topic for sub_id, sub in self._subscriptions.items()}

    # ──────────────────────────────────────────────
    # Lifecycle
    # ──────────────────────────────────────────────

    async def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run(), name="stomp-trade-feed")
        logger.info("feed_started", url=self._settings.url)

    async def stop(self) -> None:
        self._stop_event.set()
        ws = self._ws
        if ws is not None:
            with contextlib.suppress(ConnectionClosed, OSError):
                await self._send(encode_frame("DISCONNECT", {"receipt": "disconnect"}))
            await ws.close()
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        for task in list(self._hook_tasks):
            task.cancel()
        logger.info("feed_stopped")

    # ──────────────────────────────────────────────
    # Subscriptions
    # ──────────────────────────────────────────────

    async def subscribe(self, topic: str, handler: MessageHandler) -> str:
        sub_id = f"sub-{next(self._ids)}"
        self._subscriptions[sub_id] = _Subscription(topic=topic, handler=handler)
        if self.connected:
            with contextlib.suppress(ConnectionClosed):
                await self._send_subscribe(sub_id, topic)
        logger.info("feed_subscribed", subscription_id=sub_id, topic=topic)
        return sub_id

    async def unsubscribe(self, subscription_id: str) -> None:
        sub = self._subscriptions.pop(subscription_id, None)
        if sub is None:
            return
        if self.connected:
            with contextlib.suppress(ConnectionClosed):
                await self._send(encode_frame("UNSUBSCRIBE", {"id": subscription_id}))
        logger.info("feed_unsubscribed", subscription_id=subscription_id, topic=sub.topic)

    async def _send_subscribe(self, sub_id: str, topic: str) -> None:
        await self._send(
            encode_frame("SUBSCRIBE", {"id": sub_id, "destination": topic, "ack": "client"})
        )

    async def _send(self, payload: str) -> None:
        ws = self._ws
        if ws is None:
            return
        async with self._send_lock:
            await ws.send(payload)

    # ──────────────────────────────────────────────
    # Connection loop
    # ──────────────────────────────────────────────

    async def _run(self) -> None:
        has_connected = False
        while not self._stop_event.is_set():
            was_up = False
            try:
                async with self._connect(
                    self._settings.url,
                    open_timeout=self._settings.connect_timeout,
                ) as ws:
                    interval = await self._handshake(ws)
                    self._ws = ws
                    was_up = True
                    logger.info("feed_connected", url=self._settings.url, heartbeat_s=interval)

                    for sub_id, sub in list(self._subscriptions.items()):
                        await self._send_subscribe(sub_id, sub.topic)
                    if interval:
                        self._heartbeat_task = asyncio.create_task(self._heartbeat(interval))
                    if has_connected:
                        # Hooks may refetch history; the read loop must not wait on them
                        self._spawn_hook_task(self._notify_reconnect())
                    has_connected = True

                    async for raw in ws:
                        await self._handle_raw(raw)
            except (WebSocketException, OSError, asyncio.TimeoutError, FeedParseError) as exc:
                logger.warning("feed_connection_lost", error=str(exc))
            finally:
                self._ws = None
                if self._heartbeat_task is not None:
                    self._heartbeat_task.cancel()
                    self._heartbeat_task = None

            if self._stop_event.is_set():
                break
            if was_up:
                await self._notify_disconnect()
            logger.info("feed_reconnecting", delay_s=self._settings.reconnect_delay)
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(
                    self._stop_event.wait(), timeout=self._settings.reconnect_delay
                )

    def _spawn_hook_task(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._hook_tasks.add(task)
        task.add_done_callback(self._hook_task_done)

    def _hook_task_done(self, task: asyncio.Task) -> None:
        self._hook_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("feed_hook_task_failed", error=str(task.exception()))

    async def _handshake(self, ws) -> float:
        host = urlparse(self._settings.url).hostname or "localhost"
        hb = self._settings.heartbeat_ms
        await ws.send(
            encode_frame(
                "CONNECT",
                {"accept-version": "1.2", "host": host, "heart-beat": f"{hb},{hb}"},
            )
        )
        while True:
            frame = decode_frame(await ws.recv())
            if frame is not None:
                break
        if frame.command == "ERROR":
            raise FeedParseError(f"STOMP connect rejected: {frame.headers.get('message', frame.body)}")
        if frame.command != "CONNECTED":
            raise FeedParseError(f"expected CONNECTED, got {frame.command}")
        return negotiate_heartbeat(hb, frame.headers.get("heart-beat"))

    async def _heartbeat(self, interval: float) -> None:
        with contextlib.suppress(ConnectionClosed):
            while True:
                await asyncio.sleep(interval)
                await self._send(HEARTBEAT)

    async def _handle_raw(self, raw: str | bytes) -> None:
        try:
            frame = decode_frame(raw)
        except FeedParseError as exc:
            logger.warning("feed_frame_dropped", error=str(exc))
            return
        if frame is None:
            return
        if frame.command == "MESSAGE":
            await self._dispatch(frame)
        elif frame.command == "ERROR":
            raise FeedParseError(f"STOMP error: {frame.headers.get('message', frame.body)}")

    async def _dispatch(self, frame: Frame) -> None:
        sub_id = frame.headers.get("subscription", "")
        sub = self._subscriptions.get(sub_id)
        if sub is None:
            logger.debug("feed_message_unrouted", subscription_id=sub_id)
        else:
            try:
                sub.handler(frame.body)
            except Exception:
                logger.exception("feed_handler_failed", subscription_id=sub_id, topic=sub.topic)

        ack_id = frame.headers.get("ack") or frame.headers.get("message-id")
        if ack_id:
            await self._send(encode_frame("ACK", {"id": ack_id}))
