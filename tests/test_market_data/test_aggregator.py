"""Tests for CandleAggregator -- trade folding, dedup and malformed input."""

import json
from decimal import Decimal

import pytest

from curvetrade.market_data.aggregator import CandleAggregator
from curvetrade.models import Candle, Timeframe, TradeEvent, TradeSide

FIVE_MIN = Timeframe.FIVE_MINUTES


def _trade(
    tx_hash: str = "0xaaa",
    timestamp: int = 1_700_000_000,
    price: str = "0.002",
    amount: str = "100",
    side: TradeSide = TradeSide.BUY,
) -> TradeEvent:
    return TradeEvent(
        tx_hash=tx_hash,
        timestamp=timestamp,
        price_usd=Decimal(price),
        amount=Decimal(amount),
        side=side,
    )


@pytest.fixture()
def aggregator() -> CandleAggregator:
    return CandleAggregator(dedup_window=16)


class TestIngest:
    def test_first_trade_opens_bucket(self, aggregator) -> None:
        candle = aggregator.ingest(_trade(), FIVE_MIN)

        assert candle.bucket_start == 1_699_999_800
        assert candle.open == candle.high == candle.low == candle.close == Decimal("0.002")
        assert candle.volume == Decimal("100")
        assert candle.last_side is TradeSide.BUY

    def test_second_trade_updates_bucket(self, aggregator) -> None:
        aggregator.ingest(_trade(), FIVE_MIN)
        candle = aggregator.ingest(
            _trade(tx_hash="0xbbb", timestamp=1_700_000_060, price="0.0025", amount="50",
                   side=TradeSide.SELL),
            FIVE_MIN,
        )

        assert candle.open == Decimal("0.002")
        assert candle.high == Decimal("0.0025")
        assert candle.low == Decimal("0.002")
        assert candle.close == Decimal("0.0025")
        assert candle.volume == Decimal("150")
        assert candle.last_side is TradeSide.SELL
        assert len(aggregator.series(FIVE_MIN)) == 1

    def test_lower_price_moves_low(self, aggregator) -> None:
        aggregator.ingest(_trade(), FIVE_MIN)
        candle = aggregator.ingest(_trade(tx_hash="0xbbb", price="0.001"), FIVE_MIN)

        assert candle.low == Decimal("0.001")
        assert candle.high == Decimal("0.002")
        assert candle.close == Decimal("0.001")

    def test_bucket_boundary_starts_new_candle(self, aggregator) -> None:
        aggregator.ingest(_trade(timestamp=1_700_000_099), FIVE_MIN)
        aggregator.ingest(_trade(tx_hash="0xbbb", timestamp=1_700_000_100), FIVE_MIN)

        series = aggregator.series(FIVE_MIN)
        assert [c.bucket_start for c in series] == [1_699_999_800, 1_700_000_100]

    def test_timeframes_are_independent(self, aggregator) -> None:
        aggregator.ingest(_trade(), FIVE_MIN)
        aggregator.ingest(_trade(), Timeframe.ONE_HOUR)

        assert aggregator.series(Timeframe.ONE_HOUR)[0].bucket_start == 1_699_999_200
        assert aggregator.applied_count(FIVE_MIN) == 1
        assert aggregator.applied_count(Timeframe.ONE_HOUR) == 1

    def test_invariant_holds_over_many_trades(self, aggregator) -> None:
        prices = ["0.002", "0.004", "0.001", "0.003", "0.0015"]
        for i, price in enumerate(prices):
            candle = aggregator.ingest(_trade(tx_hash=f"0x{i}", price=price), FIVE_MIN)
            assert candle.low <= min(candle.open, candle.close)
            assert candle.high >= max(candle.open, candle.close)
        assert candle.low == Decimal("0.001")
        assert candle.high == Decimal("0.004")


class TestDedup:
    def test_redelivered_trade_is_ignored(self, aggregator) -> None:
        first = aggregator.ingest(_trade(), FIVE_MIN)
        again = aggregator.ingest(_trade(), FIVE_MIN)

        assert again == first
        assert aggregator.series(FIVE_MIN)[0].volume == Decimal("100")

    def test_redelivery_after_seed_is_ignored(self, aggregator) -> None:
        aggregator.ingest(_trade(), FIVE_MIN)
        snapshot = Candle(
            bucket_start=1_699_999_800,
            open=Decimal("0.002"),
            high=Decimal("0.002"),
            low=Decimal("0.002"),
            close=Decimal("0.002"),
            volume=Decimal("100"),
        )
        aggregator.seed(FIVE_MIN, [snapshot])

        aggregator.ingest(_trade(), FIVE_MIN)

        assert aggregator.series(FIVE_MIN) == [snapshot]

    def test_window_forgets_oldest_hash(self) -> None:
        aggregator = CandleAggregator(dedup_window=2)
        for tx in ("0x1", "0x2", "0x3"):
            aggregator.ingest(_trade(tx_hash=tx, amount="1"), FIVE_MIN)

        aggregator.ingest(_trade(tx_hash="0x1", amount="1"), FIVE_MIN)

        assert aggregator.applied_count(FIVE_MIN) == 2
        assert aggregator.series(FIVE_MIN)[0].volume == Decimal("4")

    def test_reset_clears_candles_and_hashes(self, aggregator) -> None:
        aggregator.ingest(_trade(), FIVE_MIN)
        aggregator.reset(FIVE_MIN)

        assert aggregator.series(FIVE_MIN) == []
        assert aggregator.applied_count(FIVE_MIN) == 0
        aggregator.ingest(_trade(), FIVE_MIN)
        assert aggregator.series(FIVE_MIN)[0].volume == Decimal("100")

    def test_rejects_non_positive_window(self) -> None:
        with pytest.raises(ValueError):
            CandleAggregator(dedup_window=0)


class TestIngestMessage:
    def test_json_message(self, aggregator) -> None:
        raw = json.dumps({
            "txHash": "0xABC",
            "timestamp": 1_700_000_000_000,
            "priceInUsd": "0.002",
            "amount": 100,
            "eventType": "buy",
        })

        candle = aggregator.ingest_message(raw, FIVE_MIN)

        assert candle is not None
        assert candle.bucket_start == 1_699_999_800
        assert candle.last_side is TradeSide.BUY

    @pytest.mark.parametrize(
        "raw",
        [
            "not json",
            b"[1, 2, 3]",
            {"txHash": "0x1", "timestamp": 1_700_000_000, "priceInUsd": "0", "amount": 1, "eventType": "BUY"},
            {"txHash": "0x1", "timestamp": 1_700_000_000, "priceInUsd": "NaN", "amount": 1, "eventType": "BUY"},
            {"txHash": "0x1", "timestamp": 1_700_000_000, "priceInUsd": "1", "amount": -1, "eventType": "BUY"},
            {"txHash": "", "timestamp": 1_700_000_000, "priceInUsd": "1", "amount": 1, "eventType": "BUY"},
            {"txHash": "0x1", "timestamp": 1_700_000_000, "priceInUsd": "1", "amount": 1, "eventType": "HOLD"},
            {"txHash": "0x1", "priceInUsd": "1", "amount": 1, "eventType": "BUY"},
            '{"txHash": "0x1", "timestamp": [1e30, 1, 1], "priceInUsd": "1", "amount": 1, "eventType": "BUY"}',
            '{"txHash": "0x1", "timestamp": [Infinity], "priceInUsd": "1", "amount": 1, "eventType": "BUY"}',
        ],
    )
    def test_malformed_message_dropped(self, aggregator, raw) -> None:
        assert aggregator.ingest_message(raw, FIVE_MIN) is None
        assert aggregator.series(FIVE_MIN) == []
