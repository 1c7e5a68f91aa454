"""Maker pricing strategies."""

import random
from decimal import Decimal


class RandomVarianceStrategy:
    """Perturbs the oracle rate by a uniform random percentage.

    With ``pct=1.0`` the adjusted rate lies within +/-1% of the oracle rate,
    so independent agents quote slightly different prices.
    """

    def __init__(self, pct: Decimal = Decimal("1.0"), rng: random.Random | None = None) -> None:
        self._pct = Decimal(pct)
        self._rng = rng or random.Random()

    @property
    def pct(self) -> Decimal:
        return self._pct

    def adjust(self, rate: Decimal) -> Decimal:
        variance = Decimal(str(self._rng.uniform(-float(self._pct), float(self._pct))))
        return rate * (1 + variance / 100)
