"""Bonding-curve contract layer -- read/write call surface via web3."""

from curvetrade.chain.contract import CurveContract
from curvetrade.chain.web3_contract import Web3CurveContract

__all__ = ["CurveContract", "Web3CurveContract"]
