"""Market data layer -- live candle aggregation, history merge, and the chart controller."""

from curvetrade.market_data.aggregator import CandleAggregator
from curvetrade.market_data.controller import ControllerState, MarketDataController, Selection
from curvetrade.market_data.merger import HistoryMerger

__all__ = [
    "CandleAggregator",
    "ControllerState",
    "HistoryMerger",
    "MarketDataController",
    "Selection",
]
