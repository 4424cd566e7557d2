"""Live trade feed: STOMP codec, feed interface and WebSocket transport."""

from curvetrade.feed.client import TradeFeed
from curvetrade.feed.stomp import Frame, decode_frame, encode_frame
from curvetrade.feed.stomp_feed import StompTradeFeed

__all__ = [
    "Frame",
    "StompTradeFeed",
    "TradeFeed",
    "decode_frame",
    "encode_frame",
]
