"""Tests for LimitGuard -- daily USD volume limit and the sell cooldown."""

from decimal import Decimal

import pytest

from curvetrade.exceptions import CapExceededError, CooldownActiveError, TransportError
from curvetrade.models import PRICE_SCALE, CapReason
from curvetrade.risk.limit_guard import to_usd_micro

NOW = 1_700_000_000


class TestCooldown:
    @pytest.mark.asyncio
    async def test_half_window_remaining(self, limit_guard, contract, user) -> None:
        """Sold 30 minutes ago with a one-hour cooldown."""
        contract.last_sell = NOW - 1800

        error = await limit_guard.check_cooldown(user, now=NOW)

        assert isinstance(error, CooldownActiveError)
        assert error.remaining_seconds == 1800
        assert error.to_dict()["remaining_seconds"] == 1800

    @pytest.mark.asyncio
    async def test_never_sold(self, limit_guard, user) -> None:
        assert await limit_guard.check_cooldown(user, now=NOW) is None
        assert await limit_guard.cooldown_remaining(user, now=NOW) == 0

    @pytest.mark.asyncio
    async def test_window_elapsed(self, limit_guard, contract, user) -> None:
        contract.last_sell = NOW - 3600
        assert await limit_guard.check_cooldown(user, now=NOW) is None

    @pytest.mark.asyncio
    async def test_rpc_failure_returned(self, limit_guard, contract, user) -> None:
        async def _fail(address: str) -> int:
            raise TransportError("rpc down")

        contract.last_sell_time = _fail

        error = await limit_guard.check_cooldown(user, now=NOW)

        assert isinstance(error, TransportError)


class TestDailyLimit:
    @pytest.mark.asyncio
    async def test_within_limit(self, limit_guard, backend, user) -> None:
        backend.fetch_used_volume_usd.return_value = Decimal("9000")
        assert await limit_guard.check_daily_limit(Decimal("1000"), user) is None

    @pytest.mark.asyncio
    async def test_exceeds_limit(self, limit_guard, backend, user) -> None:
        backend.fetch_used_volume_usd.return_value = Decimal("9000")

        error = await limit_guard.check_daily_limit(Decimal("1000.01"), user)

        assert isinstance(error, CapExceededError)
        assert error.reason is CapReason.DAILY_LIMIT
        assert error.used == 9000 * PRICE_SCALE
        assert error.attempted == 100_001 * 10**6
        assert error.limit == 10_000 * PRICE_SCALE
        assert error.to_dict()["reason"] == "daily_limit"

    @pytest.mark.asyncio
    async def test_uses_supplied_limit(self, limit_guard, contract, user) -> None:
        contract.daily_limit_micro = 0  # would reject everything if read

        error = await limit_guard.check_daily_limit(
            Decimal("5"), user, limit_usd_micro=10 * PRICE_SCALE
        )

        assert error is None

    @pytest.mark.asyncio
    async def test_strict_fails_when_backend_down(self, limit_guard, backend, user) -> None:
        backend.fetch_used_volume_usd.side_effect = TransportError("backend down")

        error = await limit_guard.check_daily_limit(Decimal("5"), user, strict=True)

        assert isinstance(error, TransportError)

    @pytest.mark.asyncio
    async def test_lenient_assumes_zero_volume(self, limit_guard, backend, user) -> None:
        backend.fetch_used_volume_usd.side_effect = TransportError("backend down")

        ok = await limit_guard.check_daily_limit(Decimal("5"), user, strict=False)
        too_big = await limit_guard.check_daily_limit(Decimal("10001"), user, strict=False)

        assert ok is None
        assert isinstance(too_big, CapExceededError)

    @pytest.mark.asyncio
    async def test_daily_limit_state(self, limit_guard, backend, user) -> None:
        backend.fetch_used_volume_usd.return_value = Decimal("2500.5")

        state = await limit_guard.daily_limit_state(user, now=NOW + 3600)

        assert state.used_usd_micro == 250_050_000_000
        assert state.remaining_usd_micro == 10_000 * PRICE_SCALE - 250_050_000_000
        assert state.window_start_epoch == 1_699_920_000


def test_to_usd_micro_rounds_down() -> None:
    assert to_usd_micro(Decimal("1.123456789")) == 112_345_678
    assert to_usd_micro(Decimal("0")) == 0
