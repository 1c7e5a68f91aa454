"""Cached spot exchange rates between two currencies.

Rates are derived as price(from) / price(to), both quoted against the
price source's reference unit. A fresh sample is reused for the cache TTL.
When the source fails, the last known rate (however stale) is served with
a warning; a rate is never invented.
"""

import asyncio
import time
from collections.abc import Callable
from decimal import Decimal

from rfq.config import PriceSettings
from rfq.exceptions import RateUnavailable
from rfq.logging import get_logger
from rfq.market_data.price_source import PriceSource
from rfq.models import RatePoint

logger = get_logger(__name__)


class RateOracle:
    """Spot rate cache in front of a PriceSource.

    Args:
        price_source: Where reference prices come from.
        settings: Coin id mapping and cache TTL.
        clock: Returns the current unix time; injectable for tests.
    """

    def __init__(
        self,
        price_source: PriceSource,
        settings: PriceSettings | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._source = price_source
        self._settings = settings or PriceSettings()
        self._clock = clock
        self._cache: dict[tuple[str, str], tuple[Decimal, float]] = {}

    def _coin_id(self, currency: str) -> str | None:
        return self._settings.coin_ids.get(currency.upper())

    async def get_rate(self, from_currency: str, to_currency: str) -> Decimal:
        """Return the from->to rate, fetching if the cached sample is older than the TTL.

        Raises:
            RateUnavailable: The source failed and no rate was ever cached.
        """
        key = (from_currency.upper(), to_currency.upper())
        cached = self._cache.get(key)
        now = self._clock()

        if cached is not None and now - cached[1] < self._settings.cache_ttl_seconds:
            return cached[0]

        try:
            rate = await self._fetch_rate(*key)
        except Exception as exc:
            if cached is not None:
                logger.warning(
                    "stale_rate_served",
                    pair=f"{key[0]}/{key[1]}",
                    rate=str(cached[0]),
                    age_seconds=round(now - cached[1], 1),
                    error=str(exc),
                )
                return cached[0]
            logger.error("rate_unavailable", pair=f"{key[0]}/{key[1]}", error=str(exc))
            raise RateUnavailable(
                f"No rate available for {key[0]}/{key[1]}",
                pair=f"{key[0]}/{key[1]}",
            ) from exc

        self._cache[key] = (rate, now)
        logger.debug("rate_fetched", pair=f"{key[0]}/{key[1]}", rate=str(rate))
        return rate

    async def _fetch_rate(self, from_currency: str, to_currency: str) -> Decimal:
        from_id = self._coin_id(from_currency)
        to_id = self._coin_id(to_currency)
        if from_id is None or to_id is None:
            raise ValueError(f"No coin id configured for {from_currency} or {to_currency}")

        prices = await self._source.lookup([from_id, to_id])
        from_price = prices.get(from_id)
        to_price = prices.get(to_id)
        if not from_price or not to_price:
            raise ValueError("Price data not available")
        return from_price / to_price

    async def get_history(
        self,
        from_currency: str,
        to_currency: str,
        days: str = "1",
        interval: str = "auto",
    ) -> list[RatePoint]:
        """Cross-rate history for charting. Returns [] on any failure.

        Both legs are fetched concurrently; only timestamps present in both
        series survive.
        """
        from_id = self._coin_id(from_currency)
        to_id = self._coin_id(to_currency)
        if from_id is None or to_id is None:
            logger.warning(
                "history_unknown_currency",
                from_currency=from_currency,
                to_currency=to_currency,
            )
            return []

        try:
            from_series, to_series = await asyncio.gather(
                self._source.history(from_id, days, interval),
                self._source.history(to_id, days, interval),
            )
        except Exception as exc:
            logger.warning(
                "history_fetch_failed",
                pair=f"{from_currency}/{to_currency}",
                error=str(exc),
            )
            return []

        to_prices = dict(to_series)
        points: list[RatePoint] = []
        for ts_ms, from_price in from_series:
            to_price = to_prices.get(ts_ms)
            if not to_price:
                continue
            points.append(RatePoint(time=ts_ms // 1000, rate=from_price / to_price))
        return points

    def clear_cache(self) -> None:
        """Drop every cached rate."""
        self._cache.clear()
        logger.info("rate_cache_cleared")
