"""Market data layer -- spot price sources, cached cross rates, and candle aggregation."""

from rfq.market_data.candles import TIMEFRAME_SECONDS, CandleAggregator
from rfq.market_data.price_source import (
    CoinGeckoPriceSource,
    ExchangePriceSource,
    PriceSource,
    build_price_source,
)
from rfq.market_data.rate_oracle import RateOracle

__all__ = [
    "TIMEFRAME_SECONDS",
    "CandleAggregator",
    "CoinGeckoPriceSource",
    "ExchangePriceSource",
    "PriceSource",
    "RateOracle",
    "build_price_source",
]
