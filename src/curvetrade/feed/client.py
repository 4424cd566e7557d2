"""Abstract live trade feed.

The controller depends only on this interface; the STOMP transport lives
in StompTradeFeed. Delivery is at-least-once, so handlers must tolerate
redelivered messages.
"""

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable

from curvetrade.logging import get_logger

logger = get_logger(__name__)

MessageHandler = Callable[[str], None]
ConnectionHook = Callable[[], Awaitable[None]]


class TradeFeed(ABC):
    """Topic-based subscription feed with connection lifecycle hooks."""

    def __init__(self) -> None:
        self._disconnect_hooks: list[ConnectionHook] = []
        self._reconnect_hooks: list[ConnectionHook] = []

    @abstractmethod
    async def start(self) -> None:
        """Begin connecting in the background."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Disconnect and stop reconnecting."""
        ...

    @abstractmethod
    async def subscribe(self, topic: str, handler: MessageHandler) -> str:
        """Register a handler for a topic. Returns the subscription id.

        Subscriptions survive reconnects.
        """
        ...

    @abstractmethod
    async def unsubscribe(self, subscription_id: str) -> None:
        """Drop a subscription. Unknown ids are ignored."""
        ...

    @property
    @abstractmethod
    def connected(self) -> bool:
        ...

    def on_disconnect(self, hook: ConnectionHook) -> None:
        self._disconnect_hooks.append(hook)

    def on_reconnect(self, hook: ConnectionHook) -> None:
        self._reconnect_hooks.append(hook)

    async def _fire(self, hooks: list[ConnectionHook], event: str) -> None:
        for hook in list(hooks):
            try:
                await hook()
            except Exception:
                logger.exception("feed_hook_failed", hook_event=event)

    async def _notify_disconnect(self) -> None:
        await self._fire(self._disconnect_hooks, "disconnect")

    async def _notify_reconnect(self) -> None:
        await self._fire(self._reconnect_hooks, "reconnect")
