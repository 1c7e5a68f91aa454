"""OHLC candles built from periodic spot-rate samples.

One rate sample is taken per cadence tick (5 minutes by default, plus an
immediate tick at start) and folded into an independent series for each
timeframe. High and low therefore track sampled extrema only, not true
intra-bucket extremes.
"""

import asyncio
import time
from collections import deque
from collections.abc import Callable
from decimal import Decimal

from rfq.config import PriceSettings
from rfq.logging import get_logger
from rfq.market_data.rate_oracle import RateOracle
from rfq.models import Candle

logger = get_logger(__name__)

TIMEFRAME_SECONDS: dict[str, int] = {
    "5m": 5 * 60,
    "15m": 15 * 60,
    "30m": 30 * 60,
    "1h": 60 * 60,
    "4h": 4 * 60 * 60,
    "1d": 24 * 60 * 60,
}


def bucket_start(timestamp: float, width: int) -> int:
    """Round a timestamp down to the start of its bucket."""
    return int(timestamp // width) * width


class CandleAggregator:
    """Maintains bounded candle series per timeframe for one currency pair.

    Args:
        oracle: Rate source sampled on each tick.
        from_currency: Base currency of the charted pair.
        to_currency: Quote currency of the charted pair.
        settings: Sampling cadence and series bound.
        clock: Returns the current unix time; injectable for tests.
    """

    def __init__(
        self,
        oracle: RateOracle,
        from_currency: str = "USDC",
        to_currency: str = "EURC",
        settings: PriceSettings | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._oracle = oracle
        self._from = from_currency
        self._to = to_currency
        self._settings = settings or PriceSettings()
        self._clock = clock
        self._series: dict[str, deque[Candle]] = {
            tf: deque(maxlen=self._settings.max_candles) for tf in TIMEFRAME_SECONDS
        }
        self._task: asyncio.Task | None = None  # type: ignore[type-arg]

    @property
    def pair(self) -> str:
        return f"{self._from}-{self._to}"

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Begin sampling in the background. A second call is a no-op."""
        if self.is_running:
            logger.warning("candle_aggregator_already_running")
            return
        self._task = asyncio.create_task(self._sample_loop())
        logger.info(
            "candle_aggregator_started",
            pair=self.pair,
            interval=self._settings.candle_interval_seconds,
        )

    async def stop(self) -> None:
        """Cancel the sampling task. Safe to call repeatedly."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("candle_aggregator_stopped")

    async def _sample_loop(self) -> None:
        while True:
            await self.tick()
            await asyncio.sleep(self._settings.candle_interval_seconds)

    async def tick(self) -> None:
        """Sample the rate once and fold it into every timeframe."""
        try:
            rate = await self._oracle.get_rate(self._from, self._to)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.warning("candle_tick_failed", pair=self.pair, exc_info=True)
            return

        now = self._clock()
        for timeframe in TIMEFRAME_SECONDS:
            self.update(timeframe, now, rate)

    def update(self, timeframe: str, timestamp: float, rate: Decimal) -> Candle:
        """Fold one sample into a timeframe's series and return the touched candle."""
        width = TIMEFRAME_SECONDS[timeframe]
        start = bucket_start(timestamp, width)
        series = self._series[timeframe]
        last = series[-1] if series else None

        if last is None or last.time != start:
            candle = Candle(time=start, open=rate, high=rate, low=rate, close=rate)
            series.append(candle)  # deque(maxlen) evicts the oldest bucket
            return candle

        last.high = max(last.high, rate)
        last.low = min(last.low, rate)
        last.close = rate
        return last

    def get_candles(self, timeframe: str, limit: int = 200) -> list[Candle]:
        """Return the newest ``limit`` candles, oldest first. ``limit <= 0`` returns all."""
        if timeframe not in self._series:
            raise KeyError(timeframe)
        candles = list(self._series[timeframe])
        if limit <= 0:
            return candles
        return candles[-limit:]
