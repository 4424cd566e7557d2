"""Pre-trade limit checks: daily USD volume cap and the sell cooldown.

The daily limit has two sources. The limit itself is read from the
contract, which is the final arbiter; the wallet's realized volume comes
from the backend aggregate and is advisory. A trade that passes here can
still revert on-chain when that total was stale; the submitter reports
such reverts as a retryable DailyLimitRevertedError.

Checks return an error instance (or None) instead of raising.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from decimal import ROUND_FLOOR, Decimal
from typing import TYPE_CHECKING

from curvetrade.config import CurveSettings
from curvetrade.exceptions import CapExceededError, CooldownActiveError, TransportError
from curvetrade.logging import get_logger
from curvetrade.models import PRICE_SCALE, CapReason, DailyLimitState

if TYPE_CHECKING:
    from curvetrade.backend.client import BackendClient
    from curvetrade.chain.contract import CurveContract

logger = get_logger(__name__)


def to_usd_micro(value: Decimal) -> int:
    """Convert USD to the contract's USD * 10**8 integers, rounding down."""
    return int((value * PRICE_SCALE).to_integral_value(rounding=ROUND_FLOOR))


def _utc_day_start(now: float) -> int:
    day = datetime.fromtimestamp(now, tz=timezone.utc).replace(
        hour=0, minute=0, second=0, microsecond=0
    )
    return int(day.timestamp())


class LimitGuard:
    """Daily-volume and cooldown guard for one curve contract.

    Args:
        contract: Curve contract (limit and lastSellTime reads).
        backend: Backend client (realized daily volume).
        settings: Curve settings carrying the cooldown length.
    """

    def __init__(
        self,
        contract: CurveContract,
        backend: BackendClient,
        settings: CurveSettings,
    ) -> None:
        self._contract = contract
        self._backend = backend
        self._cooldown_seconds = settings.cooldown_seconds

    async def daily_limit_state(
        self,
        user: str,
        limit_usd_micro: int | None = None,
        now: float | None = None,
    ) -> DailyLimitState:
        """Combine the backend's realized volume with the on-chain limit.

        Raises:
            TransportError: If either source is unreachable.
        """
        if limit_usd_micro is None:
            limit_usd_micro = await self._contract.daily_sell_limit_usd()
        used_usd = await self._backend.fetch_used_volume_usd(user)
        return DailyLimitState(
            used_usd_micro=to_usd_micro(used_usd),
            limit_usd_micro=limit_usd_micro,
            window_start_epoch=_utc_day_start(now if now is not None else time.time()),
        )

    async def check_daily_limit(
        self,
        side_total_usd: Decimal,
        user: str,
        *,
        limit_usd_micro: int | None = None,
        strict: bool = True,
    ) -> CapExceededError | TransportError | None:
        """Check that today's volume plus this trade stays within the limit.

        Args:
            side_total_usd: USD value of the candidate trade.
            user: Wallet address.
            limit_usd_micro: Limit already read from the contract, if any.
            strict: When False an unreachable backend counts as zero volume
                (the chain still enforces the limit); when True it fails.

        Returns:
            None if the trade fits, otherwise the error to show.
        """
        try:
            if limit_usd_micro is None:
                limit_usd_micro = await self._contract.daily_sell_limit_usd()
            used_usd = await self._backend.fetch_used_volume_usd(user)
        except TransportError as exc:
            if strict or limit_usd_micro is None:
                return exc
            logger.warning("daily_volume_unavailable_assuming_zero", user=user, error=str(exc))
            used_usd = Decimal("0")

        used = to_usd_micro(used_usd)
        attempted = to_usd_micro(side_total_usd)

        if used + attempted > limit_usd_micro:
            logger.info(
                "daily_limit_exceeded",
                user=user,
                used_usd_micro=used,
                attempted_usd_micro=attempted,
                limit_usd_micro=limit_usd_micro,
            )
            return CapExceededError(
                CapReason.DAILY_LIMIT,
                f"Exceeds daily trade limit (used ${Decimal(used) / PRICE_SCALE:.2f}, "
                f"trying ${Decimal(attempted) / PRICE_SCALE:.2f}, "
                f"limit ${Decimal(limit_usd_micro) / PRICE_SCALE:.2f})",
                used=used,
                attempted=attempted,
                limit=limit_usd_micro,
            )
        return None

    async def cooldown_remaining(self, user: str, now: float | None = None) -> int:
        """Seconds until the wallet may sell again (0 when it may sell now).

        Raises:
            TransportError: If lastSellTime cannot be read.
        """
        last_sell = await self._contract.last_sell_time(user)
        if last_sell <= 0:
            return 0
        current = int(now if now is not None else time.time())
        return max(last_sell + self._cooldown_seconds - current, 0)

    async def check_cooldown(
        self, user: str, now: float | None = None
    ) -> CooldownActiveError | TransportError | None:
        """Fail with the remaining seconds while the sell cooldown runs."""
        try:
            remaining = await self.cooldown_remaining(user, now)
        except TransportError as exc:
            return exc
        if remaining > 0:
            return CooldownActiveError(remaining)
        return None
