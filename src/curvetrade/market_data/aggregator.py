"""Live OHLCV aggregation from the trade stream.

Folds TradeEvents into one candle per (timeframe, bucket). The feed is
at-least-once, so each timeframe remembers the tx hashes it has applied in
a bounded FIFO window and ignores repeats.

Runs inside the feed's message callback: no I/O, no awaits, and malformed
messages are dropped with a log line instead of raised.
"""

from collections import OrderedDict
from collections.abc import Iterable
from dataclasses import replace
from typing import Any

from curvetrade.exceptions import FeedParseError
from curvetrade.logging import get_logger
from curvetrade.market_data.parsing import parse_trade_message
from curvetrade.models import Candle, Timeframe, TradeEvent

logger = get_logger(__name__)


class _AppliedHashes:
    """Insertion-ordered set that forgets its oldest entries past capacity."""

    def __init__(self, capacity: int) -> None:
        self._capacity = capacity
        self._hashes: OrderedDict[str, None] = OrderedDict()

    def __contains__(self, tx_hash: str) -> bool:
        return tx_hash in self._hashes

    def __len__(self) -> int:
        return len(self._hashes)

    def add(self, tx_hash: str) -> None:
        self._hashes[tx_hash] = None
        while len(self._hashes) > self._capacity:
            self._hashes.popitem(last=False)


class CandleAggregator:
    """Builds candles per timeframe from individual trades.

    Args:
        dedup_window: Number of tx hashes remembered per timeframe. Must
            cover at least the redelivery span of a feed reconnect.
    """

    def __init__(self, dedup_window: int = 4096) -> None:
        if dedup_window <= 0:
            raise ValueError("dedup_window must be positive")
        self._dedup_window = dedup_window
        self._candles: dict[Timeframe, dict[int, Candle]] = {}
        self._applied: dict[Timeframe, _AppliedHashes] = {}

    def _buckets(self, timeframe: Timeframe) -> dict[int, Candle]:
        return self._candles.setdefault(timeframe, {})

    def _hashes(self, timeframe: Timeframe) -> _AppliedHashes:
        if timeframe not in self._applied:
            self._applied[timeframe] = _AppliedHashes(self._dedup_window)
        return self._applied[timeframe]

    def ingest(self, event: TradeEvent, timeframe: Timeframe) -> Candle:
        """Apply one trade to its bucket and return the bucket's candle.

        A tx hash already applied to this timeframe leaves the candle as it is.
        """
        buckets = self._buckets(timeframe)
        applied = self._hashes(timeframe)
        bucket_start = timeframe.bucket_start(event.timestamp)

        if event.tx_hash in applied:
            logger.debug(
                "duplicate_trade_ignored",
                tx_hash=event.tx_hash,
                timeframe=timeframe.value,
            )
            existing = buckets.get(bucket_start)
            if existing is not None:
                return existing
            # Bucket was reset or seeded away; the hash still counts as applied
            return self._single_trade_candle(event, bucket_start)

        current = buckets.get(bucket_start)
        if current is None:
            candle = self._single_trade_candle(event, bucket_start)
        else:
            candle = replace(
                current,
                high=max(current.high, event.price_usd),
                low=min(current.low, event.price_usd),
                close=event.price_usd,
                volume=current.volume + event.amount,
                last_side=event.side,
            )

        buckets[bucket_start] = candle
        applied.add(event.tx_hash)
        return candle

    def ingest_message(self, raw: Any, timeframe: Timeframe) -> Candle | None:
        """Parse and ingest a raw feed message. Malformed messages return None."""
        try:
            event = parse_trade_message(raw)
        except FeedParseError as exc:
            logger.warning(
                "trade_message_dropped",
                timeframe=timeframe.value,
                error=str(exc),
            )
            return None
        return self.ingest(event, timeframe)

    def seed(self, timeframe: Timeframe, candles: Iterable[Candle]) -> None:
        """Load backend candles as the starting point for their buckets.

        Seeded buckets replace whatever the aggregator built for them; the
        applied-hash window is kept so redelivered trades stay ignored.
        """
        buckets = self._buckets(timeframe)
        for candle in candles:
            buckets[candle.bucket_start] = candle

    def series(self, timeframe: Timeframe) -> list[Candle]:
        """Return the timeframe's candles ordered by bucket start."""
        buckets = self._candles.get(timeframe, {})
        return [buckets[key] for key in sorted(buckets)]

    def reset(self, timeframe: Timeframe) -> None:
        """Forget all candles and applied hashes for a timeframe."""
        self._candles.pop(timeframe, None)
        self._applied.pop(timeframe, None)
        logger.debug("aggregator_reset", timeframe=timeframe.value)

    def applied_count(self, timeframe: Timeframe) -> int:
        """Number of tx hashes currently remembered for a timeframe."""
        applied = self._applied.get(timeframe)
        return len(applied) if applied is not None else 0

    @staticmethod
    def _single_trade_candle(event: TradeEvent, bucket_start: int) -> Candle:
        return Candle(
            bucket_start=bucket_start,
            open=event.price_usd,
            high=event.price_usd,
            low=event.price_usd,
            close=event.price_usd,
            volume=event.amount,
            last_side=event.side,
        )
