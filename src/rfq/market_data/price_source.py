"""Spot price sources.

Each source prices individual coins against a common reference unit (USD
by default). The RateOracle derives cross rates from two such prices, so
sources never need to know about currency pairs.
"""

import asyncio
from abc import ABC, abstractmethod
from decimal import Decimal

import ccxt.async_support as ccxt_async
import httpx

from rfq.config import PriceSettings
from rfq.logging import get_logger

logger = get_logger(__name__)


class PriceSource(ABC):
    """Abstract price lookup against a reference unit."""

    @abstractmethod
    async def lookup(self, coin_ids: list[str]) -> dict[str, Decimal]:
        """Return the current reference price for each requested coin id.

        Coins the source cannot price are omitted from the result.
        """
        ...

    @abstractmethod
    async def history(
        self, coin_id: str, days: str = "1", interval: str = "auto"
    ) -> list[tuple[int, Decimal]]:
        """Return ``(timestamp_ms, price)`` samples, oldest first."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release network resources."""
        ...


class CoinGeckoPriceSource(PriceSource):
    """CoinGecko public/pro API over httpx."""

    def __init__(
        self,
        settings: PriceSettings,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings
        headers: dict[str, str] = {}
        api_key = settings.coingecko_api_key.get_secret_value()
        if api_key:
            headers["x-cg-pro-api-key"] = api_key
        self._http = client or httpx.AsyncClient(
            base_url=settings.coingecko_base_url,
            timeout=settings.request_timeout,
            headers=headers,
        )

    async def lookup(self, coin_ids: list[str]) -> dict[str, Decimal]:
        resp = await self._http.get(
            "/simple/price",
            params={"ids": ",".join(coin_ids), "vs_currencies": "usd"},
        )
        resp.raise_for_status()
        payload = resp.json()

        prices: dict[str, Decimal] = {}
        for coin_id in coin_ids:
            usd = (payload.get(coin_id) or {}).get("usd")
            if usd:
                prices[coin_id] = Decimal(str(usd))
        return prices

    async def history(
        self, coin_id: str, days: str = "1", interval: str = "auto"
    ) -> list[tuple[int, Decimal]]:
        params = {"vs_currency": "usd", "days": days}
        if interval and interval != "auto":
            params["interval"] = interval
        resp = await self._http.get(f"/coins/{coin_id}/market_chart", params=params)
        resp.raise_for_status()

        points: list[tuple[int, Decimal]] = []
        for row in resp.json().get("prices") or []:
            if len(row) < 2 or row[1] is None:
                continue
            points.append((int(row[0]), Decimal(str(row[1]))))
        return points

    async def close(self) -> None:
        await self._http.aclose()


# CoinGecko-style intervals -> ccxt timeframes
_OHLCV_TIMEFRAMES = {"auto": "1h", "hourly": "1h", "daily": "1d", "5m": "5m", "1h": "1h", "1d": "1d"}


class ExchangePriceSource(PriceSource):
    """Prices coins from a centralized exchange ticker via ccxt async.

    Coin ids are treated as exchange base symbols (e.g. ``EURC``); each is
    priced against ``settings.reference_asset``. The reference asset itself
    prices at exactly 1.
    """

    def __init__(
        self,
        settings: PriceSettings,
        exchange: ccxt_async.Exchange | None = None,
    ) -> None:
        self._settings = settings
        self._reference = settings.reference_asset
        self._exchange = exchange or getattr(ccxt_async, settings.exchange_id)(
            {"enableRateLimit": True}
        )

    def _symbol(self, coin_id: str) -> str:
        return f"{coin_id}/{self._reference}"

    async def lookup(self, coin_ids: list[str]) -> dict[str, Decimal]:
        prices: dict[str, Decimal] = {}
        to_fetch = [c for c in coin_ids if c != self._reference]
        if self._reference in coin_ids:
            prices[self._reference] = Decimal("1")

        tickers = await asyncio.gather(
            *(self._exchange.fetch_ticker(self._symbol(c)) for c in to_fetch),
            return_exceptions=True,
        )
        for coin_id, ticker in zip(to_fetch, tickers):
            if isinstance(ticker, Exception):
                logger.warning(
                    "exchange_ticker_failed",
                    symbol=self._symbol(coin_id),
                    error=str(ticker),
                )
                continue
            last = ticker.get("last") or ticker.get("close")
            if last:
                prices[coin_id] = Decimal(str(last))
        return prices

    async def history(
        self, coin_id: str, days: str = "1", interval: str = "auto"
    ) -> list[tuple[int, Decimal]]:
        if coin_id == self._reference:
            raise ValueError("Reference asset has no price history of its own")

        timeframe = _OHLCV_TIMEFRAMES.get(interval, "1h")
        since_ms = self._exchange.milliseconds() - int(float(days) * 86_400_000)
        rows = await self._exchange.fetch_ohlcv(
            self._symbol(coin_id), timeframe=timeframe, since=since_ms
        )
        return [(int(r[0]), Decimal(str(r[4]))) for r in rows if r[4] is not None]

    async def close(self) -> None:
        await self._exchange.close()


def build_price_source(settings: PriceSettings) -> PriceSource:
    """Instantiate the configured price source."""
    if settings.source == "exchange":
        return ExchangePriceSource(settings)
    return CoinGeckoPriceSource(settings)
