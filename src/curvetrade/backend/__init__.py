"""Backend REST layer -- candle history and realized volume via httpx."""

from curvetrade.backend.client import BackendClient

__all__ = ["BackendClient"]
