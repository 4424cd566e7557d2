"""Shared test fixtures for the curve trade service."""

from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from curvetrade.backend.client import BackendClient
from curvetrade.chain.contract import CurveContract
from curvetrade.config import (
    AppSettings,
    BackendSettings,
    ChartSettings,
    CurveSettings,
    FeedSettings,
)
from curvetrade.exceptions import ContractRevert
from curvetrade.models import PRICE_SCALE, WEI
from curvetrade.quote.engine import QuoteEngine
from curvetrade.risk.limit_guard import LimitGuard

USER = "0x1111111111111111111111111111111111111111"

# $0.002 per token at $3500/ETH
WEI_PER_TOKEN = 571_428_571_428


class FakeCurveContract(CurveContract):
    """In-memory curve with a flat price per token.

    Attributes are plain integers in contract units so tests can move the
    chain state between calls.
    """

    def __init__(self) -> None:
        self.tokens_in_curve_wei = 500_000_000 * WEI
        self.user_balance = 0
        self.price_micro_usd = 200_000  # $0.002
        self.eth_usd_micro = 3500 * PRICE_SCALE
        self.buy_fee = 200
        self.sell_fee = 300
        self.daily_limit_micro = 10_000 * PRICE_SCALE
        self.last_sell = 0
        self.eth_balance = 100 * WEI
        self.wei_per_token = WEI_PER_TOKEN
        self.gas_estimate: int | None = 200_000
        self.revert_message: str | None = None
        self.sent: list[tuple] = []

    async def tokens_in_curve(self) -> int:
        return self.tokens_in_curve_wei

    async def balance_of(self, address: str) -> int:
        return self.user_balance

    async def get_current_price_micro_usd(self) -> int:
        return self.price_micro_usd

    async def get_eth_usd_price(self) -> int:
        return self.eth_usd_micro

    async def buy_fee_bps(self) -> int:
        return self.buy_fee

    async def calculate_sell_fee(self, tokens: int) -> int:
        return self.sell_fee

    async def get_tokens_for_eth(self, wei_in: int) -> int:
        return wei_in * WEI // self.wei_per_token

    async def get_eth_for_tokens(self, tokens_in: int) -> int:
        return tokens_in * self.wei_per_token // WEI

    async def get_eth_needed_for_buy(self, tokens: int) -> int:
        return -(-tokens * self.wei_per_token // WEI)

    async def daily_sell_limit_usd(self) -> int:
        return self.daily_limit_micro

    async def last_sell_time(self, address: str) -> int:
        return self.last_sell

    async def contract_eth_balance(self) -> int:
        return self.eth_balance

    async def estimate_buy_gas(self, min_tokens_out: int, value: int, sender: str) -> int:
        if self.gas_estimate is None:
            raise ContractRevert("execution reverted")
        return self.gas_estimate

    async def estimate_sell_gas(self, tokens_in: int, min_eth_out: int, sender: str) -> int:
        if self.gas_estimate is None:
            raise ContractRevert("execution reverted")
        return self.gas_estimate

    async def buy(self, min_tokens_out: int, value: int, sender: str, gas: int) -> str:
        if self.revert_message is not None:
            raise ContractRevert(self.revert_message)
        self.sent.append(("buy", min_tokens_out, value, sender, gas))
        return "0x" + "ab" * 32

    async def sell(self, tokens_in: int, min_eth_out: int, sender: str, gas: int) -> str:
        if self.revert_message is not None:
            raise ContractRevert(self.revert_message)
        self.sent.append(("sell", tokens_in, min_eth_out, sender, gas))
        return "0x" + "cd" * 32


@pytest.fixture
def mock_settings() -> AppSettings:
    """Return AppSettings with test defaults."""
    return AppSettings(
        log_level="DEBUG",
        backend=BackendSettings(base_url="http://backend.test", max_attempts=2, backoff_base=0.0),
        feed=FeedSettings(url="ws://feed.test/ws/websocket", reconnect_delay=0.01),
        chart=ChartSettings(),
    )


@pytest.fixture
def user() -> str:
    return USER


@pytest.fixture
def curve_settings() -> CurveSettings:
    return CurveSettings()


@pytest.fixture
def contract() -> FakeCurveContract:
    return FakeCurveContract()


@pytest.fixture
def backend() -> AsyncMock:
    client = AsyncMock(spec=BackendClient)
    client.fetch_used_volume_usd.return_value = Decimal("0")
    client.fetch_candles.return_value = []
    return client


@pytest.fixture
def limit_guard(
    contract: FakeCurveContract, backend: AsyncMock, curve_settings: CurveSettings
) -> LimitGuard:
    return LimitGuard(contract, backend, curve_settings)


@pytest.fixture
def engine(
    contract: FakeCurveContract, limit_guard: LimitGuard, curve_settings: CurveSettings
) -> QuoteEngine:
    return QuoteEngine(contract, limit_guard, curve_settings)
