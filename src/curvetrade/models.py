"""Shared data models for curve quoting and the candle pipeline.

CRITICAL: All monetary values use Decimal or integer wei. Never use float for
prices, quantities, or fees.

Fixed-point conventions follow the curve contract:
  - token and ETH amounts carry 18 decimals (wei)
  - USD prices and the daily sell limit are integers scaled by 10**8
"""

import time
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum

WEI = 10**18
PRICE_SCALE = 10**8
BPS = 10_000


class TradeSide(str, Enum):
    """Trade direction, spelled the way the feed and backend spell it."""

    BUY = "BUY"
    SELL = "SELL"


class CapReason(str, Enum):
    """Which cap bound a trade."""

    CURVE_SUPPLY = "curve_supply"
    HOLDING_LIMIT = "holding_limit"
    BALANCE = "balance"
    DAILY_LIMIT = "daily_limit"
    DAILY_TOKEN_CAP = "daily_token_cap"


class Timeframe(str, Enum):
    """Chart timeframes, valued as the backend's candle endpoint names them."""

    ONE_MINUTE = "1m"
    FIVE_MINUTES = "5m"
    FIFTEEN_MINUTES = "15m"
    THIRTY_MINUTES = "30m"
    ONE_HOUR = "1H"
    FOUR_HOURS = "4H"
    ONE_DAY = "1D"
    ONE_WEEK = "1W"

    @property
    def seconds(self) -> int:
        return _TIMEFRAME_SECONDS[self]

    def bucket_start(self, timestamp: int) -> int:
        """Floor an epoch-seconds timestamp to the start of its bucket."""
        return (timestamp // self.seconds) * self.seconds

    @classmethod
    def from_value(cls, value: "str | Timeframe") -> "Timeframe":
        """Case-insensitive lookup ("1h" and "1H" are the same timeframe)."""
        if isinstance(value, Timeframe):
            return value
        for timeframe in cls:
            if timeframe.value.lower() == str(value).lower():
                return timeframe
        raise ValueError(f"Unknown timeframe value: {value}")


_TIMEFRAME_SECONDS = {
    Timeframe.ONE_MINUTE: 60,
    Timeframe.FIVE_MINUTES: 300,
    Timeframe.FIFTEEN_MINUTES: 900,
    Timeframe.THIRTY_MINUTES: 1800,
    Timeframe.ONE_HOUR: 3600,
    Timeframe.FOUR_HOURS: 14400,
    Timeframe.ONE_DAY: 86400,
    Timeframe.ONE_WEEK: 604800,
}


@dataclass(frozen=True)
class OnCurveState:
    """Snapshot of the contract reads behind one quote attempt.

    Never reused across quotes: a stale snapshot would corrupt the caps.
    """

    tokens_in_curve: int  # wei
    user_balance: int  # wei
    price_micro_usd: int  # USD * 10**8
    eth_usd_micro: int  # USD * 10**8
    buy_fee_bps: int
    daily_sell_limit_usd_micro: int  # USD * 10**8
    last_sell_time: int  # epoch seconds, 0 if never sold
    contract_eth_balance: int  # wei
    fetched_at: float = field(default_factory=time.time)

    @property
    def price_usd(self) -> Decimal:
        return Decimal(self.price_micro_usd) / PRICE_SCALE

    @property
    def eth_usd(self) -> Decimal:
        return Decimal(self.eth_usd_micro) / PRICE_SCALE


@dataclass(frozen=True)
class Quote:
    """A validated, capped trade ready for exactly one submission attempt.

    For buys token_amount is tokens out and eth_amount the ETH to send;
    for sells token_amount is tokens in and eth_amount the gross ETH
    returned before the sell fee. min_bound is minTokensOut for buys and
    minEthOut for sells.
    """

    side: TradeSide
    user: str
    usd_amount: Decimal
    slippage_pct: Decimal
    token_amount: int  # wei
    eth_amount: int  # wei
    fee_wei: int
    payout_wei: int
    min_bound: int
    price_usd: Decimal
    usd_value: Decimal
    capped: bool = False
    cap_reason: CapReason | None = None
    price_degraded: bool = False
    eth_before_fee: Decimal | None = None
    eth_after_fee: Decimal | None = None
    quote_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    quoted_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        """JSON-ready view; integers stay exact as strings."""
        return {
            "quote_id": self.quote_id,
            "side": self.side.value,
            "user": self.user,
            "usd_amount": str(self.usd_amount),
            "slippage_pct": str(self.slippage_pct),
            "token_amount": str(self.token_amount),
            "eth_amount": str(self.eth_amount),
            "fee_wei": str(self.fee_wei),
            "payout_wei": str(self.payout_wei),
            "min_bound": str(self.min_bound),
            "price_usd": str(self.price_usd),
            "usd_value": str(self.usd_value),
            "capped": self.capped,
            "cap_reason": self.cap_reason.value if self.cap_reason else None,
            "price_degraded": self.price_degraded,
            "quoted_at": self.quoted_at,
        }


@dataclass(frozen=True)
class DailyLimitState:
    """Realized daily volume (backend) against the on-chain daily limit."""

    used_usd_micro: int
    limit_usd_micro: int
    window_start_epoch: int

    @property
    def remaining_usd_micro(self) -> int:
        return max(self.limit_usd_micro - self.used_usd_micro, 0)


@dataclass(frozen=True)
class TradeEvent:
    """One trade from the live feed. tx_hash is its identity."""

    tx_hash: str
    timestamp: int  # epoch seconds
    price_usd: Decimal
    amount: Decimal
    side: TradeSide


@dataclass(frozen=True)
class Candle:
    """OHLCV bucket keyed by (timeframe, bucket_start).

    Rejects construction when low/high do not bracket open and close.
    """

    bucket_start: int  # epoch seconds
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal
    volume: Decimal
    last_side: TradeSide | None = None

    def __post_init__(self) -> None:
        if self.low > min(self.open, self.close) or self.high < max(
            self.open, self.close
        ):
            raise ValueError(
                f"Candle at {self.bucket_start} violates low <= open/close <= high"
            )

    def to_dict(self) -> dict:
        return {
            "time": self.bucket_start,
            "open": str(self.open),
            "high": str(self.high),
            "low": str(self.low),
            "close": str(self.close),
            "volume": str(self.volume),
            "last_side": self.last_side.value if self.last_side else None,
        }
