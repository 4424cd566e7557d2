"""Chart data controller for one (artist, timeframe) selection at a time.

Owns the live subscription, the history fetch, the aggregator and the
merged series, and publishes the series to listeners on every change.

State machine:
    IDLE -> LOADING -> SUBSCRIBED <-> RECONNECTING
    any active state -> ERROR / LOADING (reselect) / IDLE (close)

Every selection bumps a generation counter. Async results and feed
messages carry the generation they were started under and are dropped if
the selection has moved on, so a slow history fetch for an old artist can
never overwrite the current chart.

History is refetched on a fixed interval while a selection is active, so
the chart heals from missed trades and from a failed load even when the
feed never drops.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from curvetrade.config import ChartSettings, FeedSettings
from curvetrade.exceptions import InvalidTransitionError, TransportError
from curvetrade.logging import bind_selection, clear_selection, get_logger
from curvetrade.market_data.aggregator import CandleAggregator
from curvetrade.market_data.merger import HistoryMerger
from curvetrade.models import Candle, Timeframe

if TYPE_CHECKING:
    from curvetrade.backend.client import BackendClient
    from curvetrade.feed.client import TradeFeed

logger = get_logger(__name__)

SeriesListener = Callable[[list[Candle]], None]


class ControllerState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    SUBSCRIBED = "subscribed"
    RECONNECTING = "reconnecting"
    ERROR = "error"


_TRANSITIONS: dict[ControllerState, frozenset[ControllerState]] = {
    ControllerState.IDLE: frozenset({ControllerState.LOADING}),
    ControllerState.LOADING: frozenset(
        {
            ControllerState.SUBSCRIBED,
            ControllerState.ERROR,
            ControllerState.LOADING,
            ControllerState.IDLE,
        }
    ),
    ControllerState.SUBSCRIBED: frozenset(
        {
            ControllerState.RECONNECTING,
            ControllerState.LOADING,
            ControllerState.IDLE,
            ControllerState.ERROR,
        }
    ),
    ControllerState.RECONNECTING: frozenset(
        {
            ControllerState.SUBSCRIBED,
            ControllerState.ERROR,
            ControllerState.LOADING,
            ControllerState.IDLE,
        }
    ),
    ControllerState.ERROR: frozenset(
        {ControllerState.LOADING, ControllerState.RECONNECTING, ControllerState.IDLE}
    ),
}


@dataclass(frozen=True)
class Selection:
    artist_id: str
    timeframe: Timeframe


class MarketDataController:
    """Keeps the merged candle series for the selected artist and timeframe.

    Args:
        feed: Live trade feed.
        backend: Backend client for candle history.
        feed_settings: Topic template.
        chart_settings: Realtime window, dedup window and history refresh interval.
        clock: Returns epoch seconds; injectable for tests.
    """

    def __init__(
        self,
        feed: TradeFeed,
        backend: BackendClient,
        feed_settings: FeedSettings,
        chart_settings: ChartSettings,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._feed = feed
        self._backend = backend
        self._topic_template = feed_settings.topic_template
        self._aggregator = CandleAggregator(dedup_window=chart_settings.dedup_window)
        self._merger = HistoryMerger(realtime_window_hours=chart_settings.realtime_window_hours)
        self._clock = clock
        self._refresh_seconds = chart_settings.history_refresh_seconds
        self._refresh_task: asyncio.Task | None = None

        self._state = ControllerState.IDLE
        self._selection: Selection | None = None
        self._generation = 0
        self._subscription_id: str | None = None
        self._historical: list[Candle] = []
        self._series: list[Candle] = []
        self._listeners: list[SeriesListener] = []
        self.last_error: str | None = None

        feed.on_disconnect(self.handle_disconnect)
        feed.on_reconnect(self.handle_reconnect)

    # ──────────────────────────────────────────────
    # Properties
    # ──────────────────────────────────────────────

    @property
    def state(self) -> ControllerState:
        return self._state

    @property
    def selection(self) -> Selection | None:
        return self._selection

    @property
    def series(self) -> list[Candle]:
        return list(self._series)

    @property
    def generation(self) -> int:
        return self._generation

    # ──────────────────────────────────────────────
    # Listeners
    # ──────────────────────────────────────────────

    def add_listener(self, callback: SeriesListener) -> Callable[[], None]:
        """Register a series listener. Returns a callable that removes it."""
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def _publish(self) -> None:
        snapshot = list(self._series)
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("series_listener_failed")

    # ──────────────────────────────────────────────
    # State machine
    # ──────────────────────────────────────────────

    def _transition(self, target: ControllerState) -> None:
        if target not in _TRANSITIONS[self._state]:
            raise InvalidTransitionError(f"{self._state.value} -> {target.value}")
        logger.info(
            "controller_state_changed",
            from_state=self._state.value,
            to_state=target.value,
            generation=self._generation,
        )
        self._state = target

    # ──────────────────────────────────────────────
    # Selection
    # ──────────────────────────────────────────────

    async def select(self, artist_id: str, timeframe: Timeframe | str) -> None:
        """Switch the chart to a new artist/timeframe.

        The live subscription is opened before the history request so no
        trade is missed while history loads.

        Raises:
            ValueError: If the timeframe is not recognized.
        """
        if isinstance(timeframe, str):
            timeframe = Timeframe.from_value(timeframe)
        if not artist_id:
            raise ValueError("artist_id is required")

        await self._teardown()
        self._generation += 1
        generation = self._generation
        self._selection = Selection(artist_id=artist_id, timeframe=timeframe)
        bind_selection(artist_id, timeframe.value)
        self._aggregator.reset(timeframe)
        self._historical = []
        self._series = []
        self.last_error = None
        self._transition(ControllerState.LOADING)

        topic = self._topic_template.format(artist_id=artist_id)
        subscription_id = await self._feed.subscribe(
            topic, lambda body: self.handle_trade(body, generation)
        )
        if generation != self._generation:
            await self._feed.unsubscribe(subscription_id)
            return
        self._subscription_id = subscription_id

        await self._load_history(generation)
        if generation == self._generation and self._refresh_seconds > 0:
            self._refresh_task = asyncio.create_task(self._refresh_loop(generation))

    async def _load_history(self, generation: int, heal: bool = False) -> None:
        selection = self._selection
        try:
            history = await self._backend.fetch_candles(selection.artist_id, selection.timeframe)
        except TransportError as exc:
            if generation != self._generation:
                return
            self.last_error = str(exc)
            logger.error(
                "history_fetch_failed",
                artist_id=selection.artist_id,
                timeframe=selection.timeframe.value,
                error=str(exc),
            )
            self._transition(ControllerState.ERROR)
            self._publish()
            return

        if generation != self._generation:
            logger.debug("stale_history_ignored", generation=generation, current=self._generation)
            return

        self._apply_history(history, heal)
        if self._state is not ControllerState.SUBSCRIBED:
            self._transition(ControllerState.SUBSCRIBED)
        self._publish()

    def _apply_history(self, history: list[Candle], heal: bool = False) -> None:
        """Seed the realtime window from history and re-merge.

        On first load, buckets already built from live trades win over the
        snapshot. After a reconnect (heal) the snapshot replaces them, since
        the live buckets may be missing trades sent while disconnected.
        """
        timeframe = self._selection.timeframe
        cutoff = self._merger.cutoff(self._clock(), timeframe)
        live_buckets = set() if heal else {c.bucket_start for c in self._aggregator.series(timeframe)}
        self._aggregator.seed(
            timeframe,
            (c for c in history if c.bucket_start >= cutoff and c.bucket_start not in live_buckets),
        )
        self._historical = history
        self._remerge()
        logger.info(
            "history_applied",
            artist_id=self._selection.artist_id,
            timeframe=timeframe.value,
            history_candles=len(history),
            series_candles=len(self._series),
        )

    def _remerge(self) -> None:
        timeframe = self._selection.timeframe
        cutoff = self._merger.cutoff(self._clock(), timeframe)
        self._series = self._merger.merge(
            self._historical, self._aggregator.series(timeframe), cutoff
        )

    # ──────────────────────────────────────────────
    # Feed callbacks
    # ──────────────────────────────────────────────

    def handle_trade(self, raw: Any, generation: int | None = None) -> Candle | None:
        """Fold one feed message into the current selection and publish.

        Messages tagged with an old generation, or arriving with no active
        selection, are ignored.
        """
        if self._state is ControllerState.IDLE or self._selection is None:
            return None
        if generation is not None and generation != self._generation:
            logger.debug("stale_trade_ignored", generation=generation, current=self._generation)
            return None

        candle = self._aggregator.ingest_message(raw, self._selection.timeframe)
        if candle is None:
            return None
        self._remerge()
        self._publish()
        return candle

    async def handle_disconnect(self) -> None:
        # A disconnect while LOADING is left to the in-flight history load
        if self._state is ControllerState.SUBSCRIBED:
            self._transition(ControllerState.RECONNECTING)
            self._publish()

    async def handle_reconnect(self) -> None:
        """Refetch history after a reconnect to heal trades missed while down."""
        if self._selection is None or self._state not in (
            ControllerState.RECONNECTING,
            ControllerState.ERROR,
        ):
            return
        generation = self._generation
        if self._state is ControllerState.ERROR:
            self._transition(ControllerState.RECONNECTING)
        await self._load_history(generation, heal=True)

    async def _refresh_loop(self, generation: int) -> None:
        """Refetch history every history_refresh_seconds for one selection.

        Heals buckets the live feed got wrong without a disconnect, and
        leaves ERROR once the backend answers again.
        """
        while generation == self._generation:
            await asyncio.sleep(self._refresh_seconds)
            if generation != self._generation:
                break
            if self._state is ControllerState.ERROR:
                self._transition(ControllerState.LOADING)
            elif self._state is not ControllerState.SUBSCRIBED:
                # A reconnect or first load owns the fetch
                continue
            try:
                await self._load_history(generation, heal=True)
            except Exception:
                logger.error("history_refresh_error", generation=generation, exc_info=True)

    # ──────────────────────────────────────────────
    # Teardown
    # ──────────────────────────────────────────────

    async def _teardown(self) -> None:
        if self._refresh_task is not None:
            self._refresh_task.cancel()
            try:
                await self._refresh_task
            except asyncio.CancelledError:
                pass
            self._refresh_task = None
        if self._subscription_id is not None:
            await self._feed.unsubscribe(self._subscription_id)
            self._subscription_id = None
        if self._selection is not None:
            self._aggregator.reset(self._selection.timeframe)

    async def close(self) -> None:
        """Drop the subscription and all chart state."""
        await self._teardown()
        self._generation += 1
        self._selection = None
        self._historical = []
        self._series = []
        clear_selection()
        if self._state is not ControllerState.IDLE:
            self._transition(ControllerState.IDLE)
        self._publish()
