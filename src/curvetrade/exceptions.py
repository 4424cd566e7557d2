"""Error taxonomy for quoting, limits, the candle pipeline and submission.

QuoteEngine and LimitGuard return QuoteError instances instead of raising
them, so every failure reaches the UI as a specific message. The submission
path and the transport clients raise them.
"""

from __future__ import annotations

from curvetrade.models import CapReason


class CurveTradeError(Exception):
    """Base exception for all curvetrade errors."""

    code = "error"
    retryable = False

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.__class__.__doc__ or self.code)

    @property
    def message(self) -> str:
        return str(self.args[0]) if self.args else ""

    def to_dict(self) -> dict:
        """JSON-ready description for the UI layer."""
        return {
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
        }


class QuoteError(CurveTradeError):
    """A quote or limit check that cannot produce a submittable trade."""


class InvalidInputError(QuoteError):
    """Amount or slippage rejected before any network call."""

    code = "invalid_input"


class ZeroPriceError(QuoteError):
    """Curve price is unavailable and no estimate could be derived."""

    code = "zero_price"


class CapExceededError(QuoteError):
    """A curve, holding, balance or daily cap prevents the trade."""

    code = "cap_exceeded"

    def __init__(
        self,
        reason: CapReason,
        message: str = "",
        *,
        used: int | None = None,
        attempted: int | None = None,
        limit: int | None = None,
    ) -> None:
        super().__init__(message or f"Cap exceeded: {reason.value}")
        self.reason = reason
        self.used = used
        self.attempted = attempted
        self.limit = limit

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["reason"] = self.reason.value
        for key in ("used", "attempted", "limit"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        return data


class DailyLimitRevertedError(CapExceededError):
    """The chain rejected a trade the advisory off-chain daily total allowed.

    The off-chain running total was stale; the caller may re-quote.
    """

    code = "daily_limit_reverted"
    retryable = True

    def __init__(self, message: str = "") -> None:
        super().__init__(CapReason.DAILY_LIMIT, message or "Exceeds daily USD limit")


class CooldownActiveError(QuoteError):
    """The wallet sold within the cooldown window."""

    code = "cooldown_active"

    def __init__(self, remaining_seconds: int, message: str = "") -> None:
        super().__init__(
            message or f"Sell cooldown active, {remaining_seconds}s remaining"
        )
        self.remaining_seconds = remaining_seconds

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["remaining_seconds"] = self.remaining_seconds
        return data


class InsufficientLiquidityError(QuoteError):
    """The contract holds less ETH than the computed payout."""

    code = "insufficient_liquidity"


class StaleQuoteError(QuoteError):
    """On-chain state moved between quote and submission."""

    code = "stale_quote"
    retryable = True


class TransportError(QuoteError):
    """RPC, REST or WebSocket failure after the client's retries ran out."""

    code = "transport_error"
    retryable = True


class FeedParseError(CurveTradeError):
    """A live feed message could not be turned into a trade event."""

    code = "feed_parse_error"


class SubmissionRevertedError(CurveTradeError):
    """The chain reverted a submission for a reason outside the known caps."""

    code = "submission_reverted"


class ContractRevert(CurveTradeError):
    """Raw revert raised by the contract client; the submitter classifies it."""

    code = "contract_revert"


class InvalidTransitionError(CurveTradeError):
    """MarketDataController was asked for a state change it does not allow."""

    code = "invalid_transition"
