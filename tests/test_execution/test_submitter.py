"""Tests for TradeSubmitter -- single-use quotes, gas sizing, revert classification."""

import time

import pytest

from curvetrade.exceptions import (
    CapExceededError,
    CooldownActiveError,
    DailyLimitRevertedError,
    InsufficientLiquidityError,
    StaleQuoteError,
    SubmissionRevertedError,
)
from curvetrade.execution.submitter import FALLBACK_GAS, MIN_SELL_GAS, TradeSubmitter
from curvetrade.models import WEI, CapReason, TradeSide


@pytest.fixture()
def submitter(contract, engine, limit_guard) -> TradeSubmitter:
    return TradeSubmitter(contract, engine, limit_guard)


class TestSubmit:
    @pytest.mark.asyncio
    async def test_buy_sends_min_tokens_and_value(self, submitter, engine, contract, user) -> None:
        quote = await engine.quote_buy("50", "1", user)

        result = await submitter.submit(quote)

        assert result.side is TradeSide.BUY
        assert result.tx_hash.startswith("0x")
        assert result.gas_limit == 300_000
        assert contract.sent == [("buy", quote.min_bound, quote.eth_amount, user, 300_000)]

    @pytest.mark.asyncio
    async def test_sell_sends_tokens_and_min_eth(self, submitter, engine, contract, user) -> None:
        contract.user_balance = 10_000 * WEI
        quote = await engine.quote_sell("10", "1", user)

        result = await submitter.submit(quote)

        assert result.gas_limit == MIN_SELL_GAS
        assert contract.sent == [("sell", quote.token_amount, quote.min_bound, user, MIN_SELL_GAS)]

    @pytest.mark.asyncio
    async def test_quote_is_single_use(self, submitter, engine, contract, user) -> None:
        quote = await engine.quote_buy("50", "1", user)
        await submitter.submit(quote)

        with pytest.raises(StaleQuoteError):
            await submitter.submit(quote)
        assert len(contract.sent) == 1

    @pytest.mark.asyncio
    async def test_failed_submission_still_consumes_quote(self, submitter, engine, contract, user) -> None:
        quote = await engine.quote_buy("50", "1", user)
        contract.revert_message = "Something odd"

        with pytest.raises(SubmissionRevertedError):
            await submitter.submit(quote)
        contract.revert_message = None
        with pytest.raises(StaleQuoteError):
            await submitter.submit(quote)

    @pytest.mark.asyncio
    async def test_revalidation_failure_raised(self, submitter, engine, contract, user) -> None:
        quote = await engine.quote_buy("50", "1", user)
        contract.wei_per_token *= 2

        with pytest.raises(StaleQuoteError):
            await submitter.submit(quote)
        assert contract.sent == []


class TestGas:
    @pytest.mark.asyncio
    async def test_estimate_failure_uses_fallback(self, submitter, engine, contract, user) -> None:
        quote = await engine.quote_buy("50", "1", user)
        contract.gas_estimate = None

        assert await submitter.gas_limit(quote) == FALLBACK_GAS

    @pytest.mark.asyncio
    async def test_large_sell_estimate_kept(self, submitter, engine, contract, user) -> None:
        contract.user_balance = 10_000 * WEI
        quote = await engine.quote_sell("10", "1", user)
        contract.gas_estimate = 1_000_000

        assert await submitter.gas_limit(quote) == 1_500_000


class TestRevertClassification:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "message,expected",
        [
            ("Exceeds daily USD limit", DailyLimitRevertedError),
            ("Daily token cap reached", CapExceededError),
            ("Not enough ETH in contract", InsufficientLiquidityError),
            ("Slippage", StaleQuoteError),
            ("Ownable: caller is not the owner", SubmissionRevertedError),
        ],
    )
    async def test_known_reasons(self, submitter, user, message, expected) -> None:
        error = await submitter.classify_revert(message, user)

        assert type(error) is expected
        assert message in error.message or error.code == "daily_limit_reverted"

    @pytest.mark.asyncio
    async def test_daily_limit_revert_is_retryable(self, submitter, user) -> None:
        error = await submitter.classify_revert("Exceeds daily USD limit", user)

        assert error.retryable
        assert error.reason is CapReason.DAILY_LIMIT

    @pytest.mark.asyncio
    async def test_daily_token_cap_reason(self, submitter, user) -> None:
        error = await submitter.classify_revert("Daily token cap", user)
        assert error.reason is CapReason.DAILY_TOKEN_CAP

    @pytest.mark.asyncio
    async def test_cooldown_reads_fresh_remaining(self, submitter, contract, user) -> None:
        contract.last_sell = int(time.time()) - 600

        error = await submitter.classify_revert("Cooldown active", user)

        assert isinstance(error, CooldownActiveError)
        assert 2990 <= error.remaining_seconds <= 3000

    @pytest.mark.asyncio
    async def test_sell_revert_raised_from_submit(self, submitter, engine, contract, user) -> None:
        contract.user_balance = 10_000 * WEI
        quote = await engine.quote_sell("10", "1", user)
        contract.revert_message = "Exceeds daily USD limit"

        with pytest.raises(DailyLimitRevertedError):
            await submitter.submit(quote)
