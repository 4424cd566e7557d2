"""Abstract bonding-curve contract interface.

Defines the read/write surface the quoting and submission code depends on,
keeping web3-specific details isolated in the concrete implementation.
Every read returns the contract's raw integer (wei, bps, or USD * 10**8).
"""

import asyncio
from abc import ABC, abstractmethod

from curvetrade.models import OnCurveState


class CurveContract(ABC):
    """Abstract base class for one artist token's bonding-curve contract."""

    @abstractmethod
    async def tokens_in_curve(self) -> int:
        """Remaining tokens the curve can still sell (wei)."""
        ...

    @abstractmethod
    async def balance_of(self, address: str) -> int:
        """Token balance of a wallet (wei)."""
        ...

    @abstractmethod
    async def get_current_price_micro_usd(self) -> int:
        """Current curve price, USD * 10**8."""
        ...

    @abstractmethod
    async def get_eth_usd_price(self) -> int:
        """Oracle ETH/USD price, 8-decimal fixed point."""
        ...

    @abstractmethod
    async def buy_fee_bps(self) -> int:
        """Flat buy fee in basis points."""
        ...

    @abstractmethod
    async def calculate_sell_fee(self, tokens: int) -> int:
        """Sell fee in basis points for selling `tokens` wei."""
        ...

    @abstractmethod
    async def get_tokens_for_eth(self, wei_in: int) -> int:
        """Tokens (wei) the curve returns for `wei_in` ETH."""
        ...

    @abstractmethod
    async def get_eth_for_tokens(self, tokens_in: int) -> int:
        """Gross ETH (wei) the curve returns for selling `tokens_in`."""
        ...

    @abstractmethod
    async def get_eth_needed_for_buy(self, tokens: int) -> int:
        """Exact ETH (wei) needed to buy `tokens` wei."""
        ...

    @abstractmethod
    async def daily_sell_limit_usd(self) -> int:
        """Per-wallet daily limit, USD * 10**8."""
        ...

    @abstractmethod
    async def last_sell_time(self, address: str) -> int:
        """Epoch seconds of the wallet's last sell, 0 if it never sold."""
        ...

    @abstractmethod
    async def contract_eth_balance(self) -> int:
        """ETH (wei) held by the contract, the ceiling for any payout."""
        ...

    @abstractmethod
    async def estimate_buy_gas(self, min_tokens_out: int, value: int, sender: str) -> int:
        """Gas estimate for buy(min_tokens_out) with `value` wei attached."""
        ...

    @abstractmethod
    async def estimate_sell_gas(self, tokens_in: int, min_eth_out: int, sender: str) -> int:
        """Gas estimate for sell(tokens_in, min_eth_out)."""
        ...

    @abstractmethod
    async def buy(self, min_tokens_out: int, value: int, sender: str, gas: int) -> str:
        """Send buy(min_tokens_out) and return the transaction hash.

        Raises ContractRevert with the revert reason when the chain rejects it.
        """
        ...

    @abstractmethod
    async def sell(self, tokens_in: int, min_eth_out: int, sender: str, gas: int) -> str:
        """Send sell(tokens_in, min_eth_out) and return the transaction hash.

        Raises ContractRevert with the revert reason when the chain rejects it.
        """
        ...

    async def snapshot(self, user: str) -> OnCurveState:
        """Read every value a quote needs, concurrently, into one snapshot."""
        (
            tokens_in_curve,
            user_balance,
            price_micro,
            eth_usd,
            buy_fee,
            daily_limit,
            last_sell,
            eth_balance,
        ) = await asyncio.gather(
            self.tokens_in_curve(),
            self.balance_of(user),
            self.get_current_price_micro_usd(),
            self.get_eth_usd_price(),
            self.buy_fee_bps(),
            self.daily_sell_limit_usd(),
            self.last_sell_time(user),
            self.contract_eth_balance(),
        )
        return OnCurveState(
            tokens_in_curve=tokens_in_curve,
            user_balance=user_balance,
            price_micro_usd=price_micro,
            eth_usd_micro=eth_usd,
            buy_fee_bps=buy_fee,
            daily_sell_limit_usd_micro=daily_limit,
            last_sell_time=last_sell,
            contract_eth_balance=eth_balance,
        )
