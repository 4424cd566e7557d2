"""Tests for the STOMP codec and StompTradeFeed.

The feed runs against scripted in-memory sockets so connect, subscribe,
ACK, reconnect and re-subscribe can be checked without a broker.
"""

import asyncio

import pytest

from curvetrade.config import FeedSettings
from curvetrade.exceptions import FeedParseError
from curvetrade.feed.stomp import decode_frame, encode_frame
from curvetrade.feed.stomp_feed import StompTradeFeed, negotiate_heartbeat


class TestCodec:
    def test_encode_layout(self) -> None:
        raw = encode_frame("SEND", {"destination": "/queue/a"}, body="hi")
        assert raw == "SEND\ndestination:/queue/a\ncontent-length:2\n\nhi\x00"

    def test_header_escaping(self) -> None:
        raw = encode_frame("SEND", {"note": "a:b\nc\\d"})
        assert "note:a\\cb\\nc\\\\d" in raw

        frame = decode_frame(raw)
        assert frame.headers["note"] == "a:b\nc\\d"

    def test_connect_headers_not_escaped(self) -> None:
        raw = encode_frame("CONNECT", {"host": "a:b"})
        assert "host:a:b" in raw

    @pytest.mark.parametrize("beat", ["\n", "\r\n", b"\n", ""])
    def test_heartbeat_decodes_to_none(self, beat) -> None:
        assert decode_frame(beat) is None

    def test_leading_heartbeats_skipped(self) -> None:
        frame = decode_frame("\n\nMESSAGE\nsubscription:sub-1\n\n{}\x00")
        assert frame.command == "MESSAGE"
        assert frame.body == "{}"

    def test_content_length_allows_nul_in_body(self) -> None:
        frame = decode_frame(b"MESSAGE\ncontent-length:3\n\na\x00b\x00")
        assert frame.body == "a\x00b"

    def test_repeated_header_first_wins(self) -> None:
        frame = decode_frame("MESSAGE\nfoo:1\nfoo:2\n\n\x00")
        assert frame.headers["foo"] == "1"

    def test_crlf_line_endings(self) -> None:
        frame = decode_frame("CONNECTED\r\nversion:1.2\r\n\r\n\x00")
        assert frame.command == "CONNECTED"
        assert frame.headers["version"] == "1.2"

    @pytest.mark.parametrize(
        "raw",
        [
            "MESSAGE\nfoo:bar\n\nbody",  # no NUL
            "MESSAGE\nfoo:bar",  # no blank line
            "MESSAGE\nfoo\n\n\x00",  # header without colon
            "MESSAGE\nfoo:\\x\n\n\x00",  # bad escape
            "MESSAGE\ncontent-length:9\n\nab\x00",  # short body
            b"\xff\xfe",
        ],
    )
    def test_malformed(self, raw) -> None:
        with pytest.raises(FeedParseError):
            decode_frame(raw)


class TestHeartbeatNegotiation:
    def test_uses_larger_interval(self) -> None:
        assert negotiate_heartbeat(4000, "0,10000") == 10.0
        assert negotiate_heartbeat(4000, "0,1000") == 4.0

    @pytest.mark.parametrize(
        "client_ms,header", [(0, "1000,1000"), (4000, "1000,0"), (4000, None), (4000, "junk")]
    )
    def test_disabled(self, client_ms, header) -> None:
        assert negotiate_heartbeat(client_ms, header) == 0.0


class ScriptedSocket:
    """WebSocket stand-in replaying queued frames; None ends the connection."""

    def __init__(self, incoming: list) -> None:
        self.sent: list[str] = []
        self._queue: asyncio.Queue = asyncio.Queue()
        for item in incoming:
            self._queue.put_nowait(item)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc) -> bool:
        return False

    async def send(self, data: str) -> None:
        self.sent.append(data)

    async def recv(self) -> str:
        return await self._queue.get()

    def __aiter__(self):
        return self

    async def __anext__(self) -> str:
        item = await self._queue.get()
        if item is None:
            raise StopAsyncIteration
        return item

    async def close(self) -> None:
        self._queue.put_nowait(None)

    def commands(self) -> list[str]:
        return [decode_frame(raw).command for raw in self.sent if decode_frame(raw)]


CONNECTED = encode_frame("CONNECTED", {"version": "1.2", "heart-beat": "0,0"})


async def _wait_for(condition, timeout: float = 2.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not condition():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.005)


@pytest.mark.asyncio
async def test_feed_delivers_acks_and_resubscribes_after_reconnect() -> None:
    message = encode_frame(
        "MESSAGE",
        {"subscription": "sub-1", "message-id": "m-1", "ack": "a-1", "destination": "/topic/trades/a"},
        body='{"txHash": "0x1"}',
    )
    first = ScriptedSocket([CONNECTED, message, None])
    second = ScriptedSocket([CONNECTED])
    sockets = [first, second]

    def connect(url, open_timeout=None):
        if not sockets:
            raise OSError("no more sockets")
        return sockets.pop(0)

    feed = StompTradeFeed(FeedSettings(reconnect_delay=0.01, heartbeat_ms=0), connect=connect)
    received: list[str] = []
    disconnects: list[int] = []
    reconnects: list[int] = []

    async def on_disconnect() -> None:
        disconnects.append(1)

    async def on_reconnect() -> None:
        reconnects.append(1)

    feed.on_disconnect(on_disconnect)
    feed.on_reconnect(on_reconnect)
    sub_id = await feed.subscribe("/topic/trades/a", received.append)

    await feed.start()
    await _wait_for(lambda: reconnects)

    assert sub_id == "sub-1"
    assert received == ['{"txHash": "0x1"}']
    assert first.commands() == ["CONNECT", "SUBSCRIBE", "ACK"]
    subscribe = decode_frame(first.sent[1])
    assert subscribe.headers == {"id": "sub-1", "destination": "/topic/trades/a", "ack": "client"}
    assert decode_frame(first.sent[2]).headers["id"] == "a-1"
    assert disconnects == [1]
    assert second.commands() == ["CONNECT", "SUBSCRIBE"]
    assert feed.connected

    await feed.stop()

    assert "DISCONNECT" in second.commands()
    assert not feed.connected


@pytest.mark.asyncio
async def test_unsubscribe_sends_frame_when_connected() -> None:
    socket = ScriptedSocket([CONNECTED])
    feed = StompTradeFeed(FeedSettings(heartbeat_ms=0), connect=lambda url, open_timeout=None: socket)

    await feed.start()
    await _wait_for(lambda: feed.connected)
    sub_id = await feed.subscribe("/topic/trades/b", lambda body: None)
    await feed.unsubscribe(sub_id)
    await feed.unsubscribe("sub-unknown")

    assert socket.commands() == ["CONNECT", "SUBSCRIBE", "UNSUBSCRIBE"]
    assert feed.subscriptions == {}

    await feed.stop()


@pytest.mark.asyncio
async def test_handler_error_is_contained_and_message_acked() -> None:
    message = encode_frame("MESSAGE", {"subscription": "sub-1", "ack": "a-1"}, body="x")
    socket = ScriptedSocket([CONNECTED, message])
    feed = StompTradeFeed(FeedSettings(heartbeat_ms=0), connect=lambda url, open_timeout=None: socket)

    def broken(body: str) -> None:
        raise RuntimeError("boom")

    await feed.subscribe("/topic/trades/c", broken)
    await feed.start()
    await _wait_for(lambda: "ACK" in socket.commands())

    assert feed.connected
    await feed.stop()


@pytest.mark.asyncio
async def test_slow_reconnect_hook_does_not_block_dispatch() -> None:
    message = encode_frame("MESSAGE", {"subscription": "sub-1", "ack": "a-2"}, body="after")
    first = ScriptedSocket([CONNECTED, None])
    second = ScriptedSocket([CONNECTED, message])
    sockets = [first, second]

    def connect(url, open_timeout=None):
        if not sockets:
            raise OSError("no more sockets")
        return sockets.pop(0)

    feed = StompTradeFeed(FeedSettings(reconnect_delay=0.01, heartbeat_ms=0), connect=connect)
    release = asyncio.Event()
    hook_started: list[int] = []

    async def slow_history_refetch() -> None:
        hook_started.append(1)
        await release.wait()

    feed.on_reconnect(slow_history_refetch)
    received: list[str] = []
    await feed.subscribe("/topic/trades/a", received.append)

    await feed.start()
    await _wait_for(lambda: received and hook_started)

    assert received == ["after"]
    assert not release.is_set()
    assert "ACK" in second.commands()

    release.set()
    await feed.stop()
