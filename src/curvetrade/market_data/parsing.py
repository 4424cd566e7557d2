"""Wire-format parsing for live trade messages and backend candle rows.

Every parser raises FeedParseError on bad input; callers decide whether to
drop (the live feed, the history fetch) or propagate.
"""

import json
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

from curvetrade.exceptions import FeedParseError
from curvetrade.models import Candle, Timeframe, TradeEvent, TradeSide

# Epoch values above this are milliseconds (10**11 s is the year 5138)
_MS_THRESHOLD = 10**11


def parse_decimal(value: Any, field: str) -> Decimal:
    """Parse a finite Decimal from a JSON number or numeric string."""
    if value is None or isinstance(value, bool):
        raise FeedParseError(f"{field} is missing or not numeric: {value!r}")
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise FeedParseError(f"{field} is not numeric: {value!r}") from exc
    if not result.is_finite():
        raise FeedParseError(f"{field} is not finite: {value!r}")
    return result


def parse_timestamp(value: Any) -> int:
    """Parse a timestamp into epoch seconds.

    Accepts epoch seconds or milliseconds, ISO-8601 strings (naive means
    UTC) and the backend's [year, month, day, hour, minute, second, nanos?]
    arrays.
    """
    if value is None or isinstance(value, bool):
        raise FeedParseError(f"timestamp is missing: {value!r}")

    if isinstance(value, (list, tuple)):
        try:
            parts = [int(p) for p in value[:6]]
            parts += [0] * (6 - len(parts))
            dt = datetime(*parts, tzinfo=timezone.utc)
        except (TypeError, ValueError, OverflowError) as exc:
            raise FeedParseError(f"timestamp array is invalid: {value!r}") from exc
        return _epoch_from_datetime(dt, value)

    if isinstance(value, (int, float, Decimal)):
        return _epoch_from_number(Decimal(str(value)), value)

    if isinstance(value, str):
        text = value.strip()
        try:
            return _epoch_from_number(Decimal(text), value)
        except InvalidOperation:
            pass
        try:
            dt = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except (ValueError, OverflowError) as exc:
            raise FeedParseError(f"timestamp is unparseable: {value!r}") from exc
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return _epoch_from_datetime(dt, value)

    raise FeedParseError(f"timestamp has unsupported type: {value!r}")


def _epoch_from_datetime(dt: datetime, raw: Any) -> int:
    # Pre-1970 dates are rejected like negative epoch numbers
    try:
        epoch = int(dt.timestamp())
    except (ValueError, OverflowError, OSError) as exc:
        raise FeedParseError(f"timestamp is out of range: {raw!r}") from exc
    if epoch < 0:
        raise FeedParseError(f"timestamp is out of range: {raw!r}")
    return epoch


def _epoch_from_number(number: Decimal, raw: Any) -> int:
    if not number.is_finite() or number < 0:
        raise FeedParseError(f"timestamp is out of range: {raw!r}")
    if number > _MS_THRESHOLD:
        number = number / 1000
    return int(number)


def _parse_side(value: Any) -> TradeSide:
    try:
        return TradeSide(str(value).upper())
    except ValueError as exc:
        raise FeedParseError(f"eventType must be BUY or SELL: {value!r}") from exc


def _load(raw: Any) -> dict:
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="replace")
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise FeedParseError(f"message is not JSON: {exc}") from exc
    if not isinstance(raw, dict):
        raise FeedParseError(f"message is not an object: {type(raw).__name__}")
    return raw


def parse_trade_message(raw: Any) -> TradeEvent:
    """Turn a live feed message ({txHash, timestamp, priceInUsd, amount, eventType}) into a TradeEvent."""
    data = _load(raw)

    tx_hash = data.get("txHash")
    if not isinstance(tx_hash, str) or not tx_hash.strip():
        raise FeedParseError(f"txHash is missing: {tx_hash!r}")

    price = parse_decimal(data.get("priceInUsd"), "priceInUsd")
    if price <= 0:
        raise FeedParseError(f"priceInUsd must be positive: {price}")

    amount = parse_decimal(data.get("amount"), "amount")
    if amount < 0:
        raise FeedParseError(f"amount must not be negative: {amount}")

    return TradeEvent(
        tx_hash=tx_hash.strip().lower(),
        timestamp=parse_timestamp(data.get("timestamp")),
        price_usd=price,
        amount=amount,
        side=_parse_side(data.get("eventType")),
    )


def parse_candle_row(row: Any, timeframe: Timeframe) -> Candle:
    """Turn one backend candle row into a Candle aligned to the timeframe bucket."""
    data = _load(row)
    timestamp = parse_timestamp(data.get("timestamp"))

    last_side = None
    if data.get("lastEventType") is not None:
        last_side = _parse_side(data["lastEventType"])

    try:
        return Candle(
            bucket_start=timeframe.bucket_start(timestamp),
            open=parse_decimal(data.get("open"), "open"),
            high=parse_decimal(data.get("high"), "high"),
            low=parse_decimal(data.get("low"), "low"),
            close=parse_decimal(data.get("close"), "close"),
            volume=parse_decimal(data.get("volume") or 0, "volume"),
            last_side=last_side,
        )
    except ValueError as exc:
        raise FeedParseError(str(exc)) from exc
