"""Merge backend candle history with the live aggregator's candles.

History is authoritative before the cutoff, live candles from the cutoff
on. When both hold the same bucket the live one wins.
"""

import time
from collections.abc import Iterable

from curvetrade.models import Candle, Timeframe


class HistoryMerger:
    """Combines historical and live candle series at a realtime cutoff.

    Args:
        realtime_window_hours: How far back the live aggregator is trusted.
    """

    def __init__(self, realtime_window_hours: int = 2) -> None:
        self._window_seconds = realtime_window_hours * 3600

    def cutoff(self, now: float | None = None, timeframe: Timeframe | None = None) -> int:
        """Return now - realtime window, aligned to the timeframe bucket if given."""
        ts = int(now if now is not None else time.time())
        cutoff = ts - self._window_seconds
        if timeframe is not None:
            cutoff = timeframe.bucket_start(cutoff)
        return cutoff

    def merge(
        self,
        historical: Iterable[Candle],
        live: Iterable[Candle],
        cutoff_epoch: int,
    ) -> list[Candle]:
        """Return one series, strictly increasing by bucket, with no duplicates."""
        merged: dict[int, Candle] = {}
        for candle in historical:
            if candle.bucket_start < cutoff_epoch:
                merged[candle.bucket_start] = candle
        for candle in live:
            if candle.bucket_start >= cutoff_epoch:
                merged[candle.bucket_start] = candle
        return [merged[key] for key in sorted(merged)]
