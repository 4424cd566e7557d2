"""Bonding-curve contract client via web3.

Blocking web3 calls run in the default executor so the rest of the client
stays async. Reads are retried with exponential backoff; a read that still
fails surfaces as TransportError. Reverts are never retried.
"""

import asyncio
from collections.abc import Callable
from typing import Any

from web3 import Web3
from web3.exceptions import ContractLogicError, Web3Exception

from curvetrade.chain.contract import CurveContract
from curvetrade.config import ChainSettings
from curvetrade.exceptions import ContractRevert, TransportError
from curvetrade.logging import get_logger

logger = get_logger(__name__)


def _view(name: str, inputs: list[tuple[str, str]] | None = None) -> dict:
    return {
        "name": name,
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": n, "type": t} for n, t in (inputs or [])],
        "outputs": [{"name": "", "type": "uint256"}],
    }


CURVE_ABI = [
    _view("tokensInCurve"),
    _view("balanceOf", [("account", "address")]),
    _view("getCurrentPriceMicroUSD"),
    _view("getEthUsdPrice"),
    _view("BUY_FEE"),
    _view("calculateSellFee", [("tokenAmount", "uint256")]),
    _view("getTokensForEth", [("ethAmount", "uint256")]),
    _view("getEthForTokens", [("tokenAmount", "uint256")]),
    _view("getEthNeededForBuy", [("tokenAmount", "uint256")]),
    _view("dailySellLimitUsd"),
    _view("lastSellTime", [("account", "address")]),
    {
        "name": "buy",
        "type": "function",
        "stateMutability": "payable",
        "inputs": [{"name": "minTokensOut", "type": "uint256"}],
        "outputs": [],
    },
    {
        "name": "sell",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "tokenAmount", "type": "uint256"},
            {"name": "minEthOut", "type": "uint256"},
        ],
        "outputs": [],
    },
]


class Web3CurveContract(CurveContract):
    """Concrete curve contract client over a JSON-RPC HTTP provider."""

    def __init__(
        self,
        settings: ChainSettings,
        contract_address: str,
        web3: Web3 | None = None,
    ) -> None:
        self._settings = settings
        self._w3 = web3 or Web3(
            Web3.HTTPProvider(
                settings.rpc_url,
                request_kwargs={"timeout": settings.request_timeout},
            )
        )
        self._address = Web3.to_checksum_address(contract_address)
        self._contract = self._w3.eth.contract(address=self._address, abi=CURVE_ABI)

    @property
    def address(self) -> str:
        return self._address

    async def _run(self, fn: Callable[[], Any]) -> Any:
        return await asyncio.get_running_loop().run_in_executor(None, fn)

    async def _read(self, label: str, fn: Callable[[], Any]) -> Any:
        """Run a read with exponential backoff, raising TransportError at the end."""
        last_error: Exception | None = None
        for attempt in range(self._settings.max_retries):
            try:
                return await self._run(fn)
            except ContractLogicError as exc:
                raise ContractRevert(_revert_message(exc)) from exc
            except (Web3Exception, OSError) as exc:
                last_error = exc
                logger.warning(
                    "chain_read_retry",
                    call=label,
                    attempt=attempt + 1,
                    max_retries=self._settings.max_retries,
                    error=str(exc),
                )
                if attempt < self._settings.max_retries - 1:
                    await asyncio.sleep(self._settings.retry_base_delay * 2**attempt)
        raise TransportError(f"{label} failed: {last_error}") from last_error

    async def _call(self, name: str, *args: Any) -> int:
        fn = getattr(self._contract.functions, name)
        return int(await self._read(name, lambda: fn(*args).call()))

    async def tokens_in_curve(self) -> int:
        return await self._call("tokensInCurve")

    async def balance_of(self, address: str) -> int:
        return await self._call("balanceOf", Web3.to_checksum_address(address))

    async def get_current_price_micro_usd(self) -> int:
        return await self._call("getCurrentPriceMicroUSD")

    async def get_eth_usd_price(self) -> int:
        return await self._call("getEthUsdPrice")

    async def buy_fee_bps(self) -> int:
        return await self._call("BUY_FEE")

    async def calculate_sell_fee(self, tokens: int) -> int:
        return await self._call("calculateSellFee", tokens)

    async def get_tokens_for_eth(self, wei_in: int) -> int:
        return await self._call("getTokensForEth", wei_in)

    async def get_eth_for_tokens(self, tokens_in: int) -> int:
        return await self._call("getEthForTokens", tokens_in)

    async def get_eth_needed_for_buy(self, tokens: int) -> int:
        return await self._call("getEthNeededForBuy", tokens)

    async def daily_sell_limit_usd(self) -> int:
        return await self._call("dailySellLimitUsd")

    async def last_sell_time(self, address: str) -> int:
        return await self._call("lastSellTime", Web3.to_checksum_address(address))

    async def contract_eth_balance(self) -> int:
        return int(
            await self._read(
                "getBalance", lambda: self._w3.eth.get_balance(self._address)
            )
        )

    async def estimate_buy_gas(self, min_tokens_out: int, value: int, sender: str) -> int:
        tx = {"from": Web3.to_checksum_address(sender), "value": value}
        return int(
            await self._read(
                "estimate_buy",
                lambda: self._contract.functions.buy(min_tokens_out).estimate_gas(tx),
            )
        )

    async def estimate_sell_gas(self, tokens_in: int, min_eth_out: int, sender: str) -> int:
        tx = {"from": Web3.to_checksum_address(sender)}
        return int(
            await self._read(
                "estimate_sell",
                lambda: self._contract.functions.sell(tokens_in, min_eth_out).estimate_gas(tx),
            )
        )

    async def buy(self, min_tokens_out: int, value: int, sender: str, gas: int) -> str:
        tx = {"from": Web3.to_checksum_address(sender), "value": value, "gas": gas}
        logger.info("sending_buy", min_tokens_out=min_tokens_out, value=value, gas=gas)
        return await self._transact(
            lambda: self._contract.functions.buy(min_tokens_out).transact(tx)
        )

    async def sell(self, tokens_in: int, min_eth_out: int, sender: str, gas: int) -> str:
        tx = {"from": Web3.to_checksum_address(sender), "gas": gas}
        logger.info("sending_sell", tokens_in=tokens_in, min_eth_out=min_eth_out, gas=gas)
        return await self._transact(
            lambda: self._contract.functions.sell(tokens_in, min_eth_out).transact(tx)
        )

    async def _transact(self, send: Callable[[], Any]) -> str:
        """Send once (never retried) and wait for a successful receipt."""
        try:
            tx_hash = await self._run(send)
            receipt = await self._run(
                lambda: self._w3.eth.wait_for_transaction_receipt(tx_hash)
            )
        except ContractLogicError as exc:
            raise ContractRevert(_revert_message(exc)) from exc
        except (Web3Exception, OSError) as exc:
            raise TransportError(f"transaction failed: {exc}") from exc

        if receipt.get("status") == 0:
            raise ContractRevert("transaction reverted")
        return Web3.to_hex(tx_hash)


def _revert_message(exc: ContractLogicError) -> str:
    message = getattr(exc, "message", None) or str(exc)
    return message.removeprefix("execution reverted: ")
