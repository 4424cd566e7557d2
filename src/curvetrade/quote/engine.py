"""Trade-safety quoting against the bonding curve.

All calculations use Decimal and integer wei -- no float conversions.

Buy flow:
1. Validate amount/slippage before touching the network
2. Snapshot on-chain state (degraded curve-progress price if the contract
   reports zero)
3. USD -> ETH, grossed up for BUY_FEE, -> tokens via getTokensForEth
4. Cap to remaining curve supply, then to the 5% holding limit; a capped
   amount is re-priced with getEthNeededForBuy
5. Slippage floor, fee, daily-limit check

Sell flow prices with the marginal price (ETH for exactly one token) since
the average curve price overstates proceeds near the top of the curve.

The engine never raises: every failure comes back as a QuoteError so the
UI can show a specific message.
"""

from __future__ import annotations

from decimal import ROUND_FLOOR, Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any

from curvetrade.config import CurveSettings
from curvetrade.exceptions import (
    CapExceededError,
    ContractRevert,
    InsufficientLiquidityError,
    InvalidInputError,
    QuoteError,
    StaleQuoteError,
    TransportError,
    ZeroPriceError,
)
from curvetrade.logging import get_logger
from curvetrade.models import BPS, WEI, CapReason, OnCurveState, Quote, TradeSide

if TYPE_CHECKING:
    from curvetrade.chain.contract import CurveContract
    from curvetrade.risk.limit_guard import LimitGuard

logger = get_logger(__name__)

_HUNDRED = Decimal("100")


def _floor(value: Decimal) -> int:
    return int(value.to_integral_value(rounding=ROUND_FLOOR))


def _to_decimal(value: Any) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    return result if result.is_finite() else None


def validate_inputs(usd_amount: Any, slippage_pct: Any) -> tuple[Decimal, Decimal] | InvalidInputError:
    """Parse and check a trade request's amount and slippage."""
    usd = _to_decimal(usd_amount)
    if usd is None or usd <= 0:
        return InvalidInputError(f"Invalid dollar amount: {usd_amount}")
    slippage = _to_decimal(slippage_pct)
    if slippage is None or slippage < 0 or slippage > _HUNDRED:
        return InvalidInputError(f"Invalid slippage: {slippage_pct}")
    return usd, slippage


class QuoteEngine:
    """Computes buy and sell quotes for one curve contract.

    Args:
        contract: Curve contract read surface.
        limit_guard: Daily-limit and cooldown checks.
        settings: Curve constants (supply, target FDV, holding cap).
    """

    def __init__(
        self,
        contract: CurveContract,
        limit_guard: LimitGuard,
        settings: CurveSettings,
    ) -> None:
        self._contract = contract
        self._limit_guard = limit_guard
        self._settings = settings

    @property
    def max_holding_wei(self) -> int:
        return self._settings.total_supply * WEI * self._settings.max_holding_bps // BPS

    def degraded_price(self, tokens_in_curve: int) -> Decimal:
        """Curve-progress price estimate used when the contract reports zero."""
        total_supply = Decimal(self._settings.total_supply)
        progress = Decimal(tokens_in_curve) / WEI / total_supply
        return progress * self._settings.target_fdv_usd / total_supply

    # ──────────────────────────────────────────────
    # Public methods
    # ──────────────────────────────────────────────

    async def quote_buy(self, usd_amount: Any, slippage_pct: Any, user: str) -> Quote | QuoteError:
        """Quote spending `usd_amount` dollars on the curve."""
        parsed = validate_inputs(usd_amount, slippage_pct)
        if isinstance(parsed, InvalidInputError):
            return parsed
        usd, slippage = parsed
        try:
            return await self._quote_buy(usd, slippage, user)
        except TransportError as exc:
            logger.warning("buy_quote_transport_error", user=user, error=str(exc))
            return exc
        except ContractRevert as exc:
            logger.warning("buy_quote_read_reverted", user=user, error=exc.message)
            return InvalidInputError(f"Curve rejected the quote: {exc.message}")

    async def quote_sell(self, usd_amount: Any, slippage_pct: Any, user: str) -> Quote | QuoteError:
        """Quote selling roughly `usd_amount` dollars worth of tokens."""
        parsed = validate_inputs(usd_amount, slippage_pct)
        if isinstance(parsed, InvalidInputError):
            return parsed
        usd, slippage = parsed
        try:
            return await self._quote_sell(usd, slippage, user)
        except TransportError as exc:
            logger.warning("sell_quote_transport_error", user=user, error=str(exc))
            return exc
        except ContractRevert as exc:
            logger.warning("sell_quote_read_reverted", user=user, error=exc.message)
            return InvalidInputError(f"Curve rejected the quote: {exc.message}")

    async def revalidate(self, quote: Quote) -> QuoteError | None:
        """Re-check a quote against fresh state right before submission.

        Returns:
            None if the quote still holds, StaleQuoteError if the chain moved
            past its bounds, or the fresh quote's own error.
        """
        if quote.side is TradeSide.BUY:
            fresh = await self.quote_buy(quote.usd_amount, quote.slippage_pct, quote.user)
        else:
            fresh = await self.quote_sell(quote.usd_amount, quote.slippage_pct, quote.user)

        if isinstance(fresh, QuoteError):
            return fresh

        if fresh.capped != quote.capped or fresh.cap_reason != quote.cap_reason:
            return StaleQuoteError(
                f"Cap status changed since quote ({quote.cap_reason} -> {fresh.cap_reason})"
            )

        if quote.side is TradeSide.BUY:
            if quote.capped:
                tokens_now = fresh.token_amount
            else:
                try:
                    tokens_now = await self._contract.get_tokens_for_eth(quote.eth_amount)
                except (TransportError, ContractRevert) as exc:
                    return TransportError(f"Revalidation read failed: {exc}")
            if tokens_now < quote.min_bound:
                return StaleQuoteError(
                    f"Curve moved: {tokens_now} tokens now below minimum {quote.min_bound}"
                )
        else:
            if fresh.token_amount != quote.token_amount:
                return StaleQuoteError("Sell amount changed since quote")
            if fresh.payout_wei < quote.min_bound:
                return StaleQuoteError(
                    f"Curve moved: payout {fresh.payout_wei} now below minimum {quote.min_bound}"
                )
        return None

    # ──────────────────────────────────────────────
    # Internal quote computation
    # ──────────────────────────────────────────────

    async def _quote_buy(self, usd: Decimal, slippage: Decimal, user: str) -> Quote | QuoteError:
        state = await self._contract.snapshot(user)

        price_usd, degraded = self._resolve_price(state)
        if price_usd <= 0:
            return ZeroPriceError("Price is zero, cannot buy")
        eth_usd = state.eth_usd
        if eth_usd <= 0:
            return ZeroPriceError("ETH/USD price is zero, cannot buy")
        if state.buy_fee_bps >= BPS:
            return InvalidInputError(f"Buy fee of {state.buy_fee_bps} bps leaves nothing to buy")

        if state.tokens_in_curve <= 0:
            return CapExceededError(
                CapReason.CURVE_SUPPLY, "Curve has no tokens left to sell", limit=0
            )
        headroom = self.max_holding_wei - state.user_balance
        if headroom <= 0:
            return CapExceededError(
                CapReason.HOLDING_LIMIT,
                "Wallet already holds the maximum 5% of supply",
                used=state.user_balance,
                limit=self.max_holding_wei,
            )

        eth_before_fee = usd / eth_usd
        eth_after_fee = eth_before_fee * BPS / (BPS - state.buy_fee_bps)
        eth_in_wei = _floor(eth_after_fee * WEI)

        tokens_out = await self._contract.get_tokens_for_eth(eth_in_wei)
        eth_amount = eth_in_wei

        cap_reason: CapReason | None = None
        if tokens_out > state.tokens_in_curve:
            tokens_out = state.tokens_in_curve
            cap_reason = CapReason.CURVE_SUPPLY
        if tokens_out > headroom:
            tokens_out = headroom
            cap_reason = CapReason.HOLDING_LIMIT

        if cap_reason is not None:
            # Exact cost of the capped amount; the pre-cap ETH figure no longer applies
            eth_amount = await self._contract.get_eth_needed_for_buy(tokens_out)
            logger.info(
                "buy_quote_capped",
                user=user,
                reason=cap_reason.value,
                tokens_out=tokens_out,
                eth_amount=eth_amount,
            )

        if tokens_out <= 0:
            return InvalidInputError(f"${usd} buys no tokens at the current price")

        min_tokens_out = _floor(Decimal(tokens_out) * (_HUNDRED - slippage) / _HUNDRED)
        fee_wei = eth_amount * state.buy_fee_bps // BPS
        usd_value = Decimal(eth_amount) / WEI * eth_usd

        limit_error = await self._limit_guard.check_daily_limit(
            usd_value,
            user,
            limit_usd_micro=state.daily_sell_limit_usd_micro,
            strict=False,
        )
        if limit_error is not None:
            return limit_error

        logger.debug(
            "buy_quote",
            user=user,
            usd=str(usd),
            price_usd=str(price_usd),
            tokens_out=tokens_out,
            min_tokens_out=min_tokens_out,
            eth_amount=eth_amount,
        )
        return Quote(
            side=TradeSide.BUY,
            user=user,
            usd_amount=usd,
            slippage_pct=slippage,
            token_amount=tokens_out,
            eth_amount=eth_amount,
            fee_wei=fee_wei,
            payout_wei=eth_amount,
            min_bound=min_tokens_out,
            price_usd=price_usd,
            usd_value=usd_value,
            capped=cap_reason is not None,
            cap_reason=cap_reason,
            price_degraded=degraded,
            eth_before_fee=eth_before_fee,
            eth_after_fee=eth_after_fee,
        )

    async def _quote_sell(self, usd: Decimal, slippage: Decimal, user: str) -> Quote | QuoteError:
        cooldown_error = await self._limit_guard.check_cooldown(user)
        if cooldown_error is not None:
            return cooldown_error

        state = await self._contract.snapshot(user)
        if state.price_micro_usd <= 0 or state.eth_usd_micro <= 0:
            return ZeroPriceError("Cannot sell: price is zero")
        eth_usd = state.eth_usd

        eth_for_one = await self._contract.get_eth_for_tokens(WEI)
        marginal_usd = Decimal(eth_for_one) / WEI * eth_usd
        if marginal_usd <= 0:
            return ZeroPriceError("Cannot sell: marginal price is zero")

        balance_whole = state.user_balance // WEI
        if balance_whole <= 0:
            return CapExceededError(
                CapReason.BALANCE, "Not enough shares to sell", used=state.user_balance
            )

        whole_tokens = _floor(usd / marginal_usd)
        cap_reason: CapReason | None = None
        if whole_tokens > balance_whole:
            whole_tokens = balance_whole
            cap_reason = CapReason.BALANCE
        if whole_tokens <= 0:
            return InvalidInputError(
                f"${usd} is below the price of one share (${marginal_usd:.8f})"
            )

        tokens_in = whole_tokens * WEI
        eth_out = await self._contract.get_eth_for_tokens(tokens_in)
        fee_bps = await self._contract.calculate_sell_fee(tokens_in)
        fee_wei = eth_out * fee_bps // BPS
        if fee_wei > eth_out:
            return InsufficientLiquidityError("Fee exceeds return")
        payout_wei = eth_out - fee_wei

        if state.contract_eth_balance < payout_wei:
            return InsufficientLiquidityError(
                f"Insufficient contract ETH: holds {state.contract_eth_balance}, "
                f"payout needs {payout_wei}"
            )

        min_eth_out = _floor(Decimal(payout_wei) * (_HUNDRED - slippage) / _HUNDRED)
        usd_value = Decimal(payout_wei) / WEI * eth_usd

        limit_error = await self._limit_guard.check_daily_limit(
            usd_value,
            user,
            limit_usd_micro=state.daily_sell_limit_usd_micro,
            strict=True,
        )
        if limit_error is not None:
            return limit_error

        logger.debug(
            "sell_quote",
            user=user,
            usd=str(usd),
            marginal_price_usd=str(marginal_usd),
            tokens_in=tokens_in,
            payout_wei=payout_wei,
            min_eth_out=min_eth_out,
        )
        return Quote(
            side=TradeSide.SELL,
            user=user,
            usd_amount=usd,
            slippage_pct=slippage,
            token_amount=tokens_in,
            eth_amount=eth_out,
            fee_wei=fee_wei,
            payout_wei=payout_wei,
            min_bound=min_eth_out,
            price_usd=marginal_usd,
            usd_value=usd_value,
            capped=cap_reason is not None,
            cap_reason=cap_reason,
        )

    def _resolve_price(self, state: OnCurveState) -> tuple[Decimal, bool]:
        """Return (price_usd, degraded). Degraded only when the contract reports zero."""
        price = state.price_usd
        if price == 0 and state.tokens_in_curve > 0:
            price = self.degraded_price(state.tokens_in_curve)
            logger.warning(
                "zero_price_curve_estimate",
                tokens_in_curve=state.tokens_in_curve,
                estimated_price_usd=str(price),
            )
            return price, True
        return price, False
