"""Tests for RateOracle: TTL cache, stale fallback, and cross-rate history."""

from decimal import Decimal

import pytest

from rfq.config import PriceSettings
from rfq.exceptions import RateUnavailable
from rfq.market_data.rate_oracle import RateOracle
from tests.fakes import FakeClock, FixedPriceSource


@pytest.fixture
def oracle(price_source: FixedPriceSource, clock: FakeClock) -> RateOracle:
    return RateOracle(price_source, PriceSettings(cache_ttl_seconds=60), clock=clock)


class TestGetRate:
    @pytest.mark.asyncio
    async def test_rate_is_from_price_over_to_price(self, oracle: RateOracle) -> None:
        rate = await oracle.get_rate("EURC", "USDC")
        assert rate == Decimal("1.087")

    @pytest.mark.asyncio
    async def test_currency_codes_are_case_insensitive(self, oracle: RateOracle) -> None:
        assert await oracle.get_rate("eurc", "usdc") == Decimal("1.087")

    @pytest.mark.asyncio
    async def test_cached_within_ttl(
        self, oracle: RateOracle, price_source: FixedPriceSource, clock: FakeClock
    ) -> None:
        first = await oracle.get_rate("USDC", "EURC")
        price_source.prices["euro-coin"] = Decimal("2")
        clock.advance(59)
        second = await oracle.get_rate("USDC", "EURC")

        assert first == second
        assert price_source.lookups == 1

    @pytest.mark.asyncio
    async def test_refetched_after_ttl(
        self, oracle: RateOracle, price_source: FixedPriceSource, clock: FakeClock
    ) -> None:
        await oracle.get_rate("USDC", "EURC")
        price_source.prices["euro-coin"] = Decimal("2")
        clock.advance(61)

        assert await oracle.get_rate("USDC", "EURC") == Decimal("0.5")
        assert price_source.lookups == 2

    @pytest.mark.asyncio
    async def test_stale_rate_served_on_failure(
        self, oracle: RateOracle, price_source: FixedPriceSource, clock: FakeClock
    ) -> None:
        cached = await oracle.get_rate("USDC", "EURC")
        price_source.fail = True
        clock.advance(3600)

        assert await oracle.get_rate("USDC", "EURC") == cached

    @pytest.mark.asyncio
    async def test_unavailable_when_never_cached(
        self, oracle: RateOracle, price_source: FixedPriceSource
    ) -> None:
        price_source.fail = True
        with pytest.raises(RateUnavailable):
            await oracle.get_rate("USDC", "EURC")

    @pytest.mark.asyncio
    async def test_missing_price_is_unavailable(self, clock: FakeClock) -> None:
        source = FixedPriceSource({"usd-coin": Decimal("1")})
        oracle = RateOracle(source, PriceSettings(), clock=clock)
        with pytest.raises(RateUnavailable):
            await oracle.get_rate("USDC", "EURC")

    @pytest.mark.asyncio
    async def test_unknown_currency_is_unavailable(self, oracle: RateOracle) -> None:
        with pytest.raises(RateUnavailable):
            await oracle.get_rate("USDC", "JPY")

    @pytest.mark.asyncio
    async def test_clear_cache_forces_refetch(
        self, oracle: RateOracle, price_source: FixedPriceSource
    ) -> None:
        await oracle.get_rate("USDC", "EURC")
        oracle.clear_cache()
        await oracle.get_rate("USDC", "EURC")
        assert price_source.lookups == 2


class TestGetHistory:
    @pytest.mark.asyncio
    async def test_divides_pointwise_on_shared_timestamps(
        self, oracle: RateOracle, price_source: FixedPriceSource
    ) -> None:
        price_source.series = {
            "euro-coin": [(1_000, Decimal("1.10")), (2_000, Decimal("1.20")), (3_000, Decimal("1.30"))],
            "usd-coin": [(1_000, Decimal("1.00")), (3_000, Decimal("1.30"))],
        }

        points = await oracle.get_history("EURC", "USDC")

        assert [p.time for p in points] == [1, 3]
        assert points[0].rate == Decimal("1.10")
        assert points[1].rate == Decimal("1")

    @pytest.mark.asyncio
    async def test_failure_returns_empty(
        self, oracle: RateOracle, price_source: FixedPriceSource
    ) -> None:
        price_source.fail = True
        assert await oracle.get_history("EURC", "USDC") == []

    @pytest.mark.asyncio
    async def test_unknown_currency_returns_empty(self, oracle: RateOracle) -> None:
        assert await oracle.get_history("EURC", "GBP") == []
