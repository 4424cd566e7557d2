"""Trade submission: re-validate a quote, size gas, send, classify reverts.

Each quote is single-use. The quote id is claimed before any network
call, so a double-clicked submit cannot send two transactions for the same
quote even when the first one is still in flight.
"""

import time
from collections import OrderedDict
from dataclasses import dataclass, field
from decimal import Decimal

from curvetrade.chain.contract import CurveContract
from curvetrade.exceptions import (
    CapExceededError,
    ContractRevert,
    CooldownActiveError,
    CurveTradeError,
    DailyLimitRevertedError,
    InsufficientLiquidityError,
    StaleQuoteError,
    SubmissionRevertedError,
    TransportError,
)
from curvetrade.logging import get_logger, quote_context
from curvetrade.models import CapReason, Quote, TradeSide
from curvetrade.quote.engine import QuoteEngine
from curvetrade.risk.limit_guard import LimitGuard

logger = get_logger(__name__)

GAS_MULTIPLIER = Decimal("1.5")
FALLBACK_GAS = 700_000
MIN_SELL_GAS = 700_000


@dataclass(frozen=True)
class SubmissionResult:
    """A mined, successful trade transaction."""

    quote_id: str
    side: TradeSide
    tx_hash: str
    gas_limit: int
    token_amount: int
    eth_amount: int
    submitted_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {
            "quote_id": self.quote_id,
            "side": self.side.value,
            "tx_hash": self.tx_hash,
            "gas_limit": self.gas_limit,
            "token_amount": str(self.token_amount),
            "eth_amount": str(self.eth_amount),
            "submitted_at": self.submitted_at,
        }


class TradeSubmitter:
    """Sends quoted trades to the curve contract.

    Args:
        contract: Curve contract write surface.
        engine: Quote engine used for pre-submission re-validation.
        limit_guard: Used to read the remaining cooldown after a revert.
        max_tracked_quotes: How many consumed quote ids are remembered.
    """

    def __init__(
        self,
        contract: CurveContract,
        engine: QuoteEngine,
        limit_guard: LimitGuard,
        max_tracked_quotes: int = 10_000,
    ) -> None:
        self._contract = contract
        self._engine = engine
        self._limit_guard = limit_guard
        self._max_tracked = max_tracked_quotes
        self._consumed: OrderedDict[str, float] = OrderedDict()

    def _claim(self, quote_id: str) -> None:
        if quote_id in self._consumed:
            raise StaleQuoteError(f"Quote {quote_id} was already submitted; request a new quote")
        self._consumed[quote_id] = time.time()
        while len(self._consumed) > self._max_tracked:
            self._consumed.popitem(last=False)

    async def submit(self, quote: Quote) -> SubmissionResult:
        """Re-validate and send a quote.

        Raises:
            StaleQuoteError: Quote reused, or the curve moved past its bounds.
            QuoteError: Any failure from re-validation or a classified revert.
            SubmissionRevertedError: A revert with an unrecognized reason.
            TransportError: RPC failure while sending.
        """
        with quote_context(quote.quote_id, quote.side.value):
            return await self._submit(quote)

    async def _submit(self, quote: Quote) -> SubmissionResult:
        self._claim(quote.quote_id)

        error = await self._engine.revalidate(quote)
        if error is not None:
            logger.info(
                "submission_rejected_on_revalidate",
                code=error.code,
                error=error.message,
            )
            raise error

        gas_limit = await self.gas_limit(quote)
        try:
            if quote.side is TradeSide.BUY:
                tx_hash = await self._contract.buy(
                    quote.min_bound, quote.eth_amount, quote.user, gas_limit
                )
            else:
                tx_hash = await self._contract.sell(
                    quote.token_amount, quote.min_bound, quote.user, gas_limit
                )
        except ContractRevert as exc:
            raise await self.classify_revert(exc.message, quote.user) from exc

        logger.info(
            "trade_submitted",
            user=quote.user,
            tx_hash=tx_hash,
            gas_limit=gas_limit,
            token_amount=quote.token_amount,
            eth_amount=quote.eth_amount,
        )
        return SubmissionResult(
            quote_id=quote.quote_id,
            side=quote.side,
            tx_hash=tx_hash,
            gas_limit=gas_limit,
            token_amount=quote.token_amount,
            eth_amount=quote.eth_amount,
        )

    async def gas_limit(self, quote: Quote) -> int:
        """Estimated gas x 1.5, or the fallback when estimation fails.

        Sells never go below MIN_SELL_GAS: the sell path touches the daily
        accounting storage and estimates often come in short.
        """
        try:
            if quote.side is TradeSide.BUY:
                estimate = await self._contract.estimate_buy_gas(
                    quote.min_bound, quote.eth_amount, quote.user
                )
            else:
                estimate = await self._contract.estimate_sell_gas(
                    quote.token_amount, quote.min_bound, quote.user
                )
            gas = int(Decimal(estimate) * GAS_MULTIPLIER)
        except (ContractRevert, TransportError) as exc:
            logger.warning(
                "gas_estimate_failed_using_fallback",
                side=quote.side.value,
                fallback=FALLBACK_GAS,
                error=str(exc),
            )
            gas = FALLBACK_GAS
        if quote.side is TradeSide.SELL:
            gas = max(gas, MIN_SELL_GAS)
        return gas

    async def classify_revert(self, message: str, user: str) -> CurveTradeError:
        """Map a contract revert reason to a specific error."""
        lowered = message.lower()
        error: CurveTradeError
        if "cooldown" in lowered:
            try:
                remaining = await self._limit_guard.cooldown_remaining(user)
            except TransportError:
                remaining = 0
            error = CooldownActiveError(remaining)
        elif "exceeds daily usd limit" in lowered:
            error = DailyLimitRevertedError(message)
        elif "daily token cap" in lowered:
            error = CapExceededError(CapReason.DAILY_TOKEN_CAP, message)
        elif "not enough eth" in lowered:
            error = InsufficientLiquidityError(message)
        elif "slippage" in lowered:
            error = StaleQuoteError(message)
        else:
            error = SubmissionRevertedError(message)
        logger.warning("submission_reverted", user=user, revert=message, code=error.code)
        return error
