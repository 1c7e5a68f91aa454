"""Shared data models for the RFQ desk.

CRITICAL: All monetary values and rates use Decimal. Never use float for
amounts or rates. Integer base units appear only at the ledger boundary.
"""

import time
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum


class Tenor(str, Enum):
    """Named settlement delay category."""

    INSTANT = "instant"
    HOURLY = "hourly"
    DAILY = "daily"


TENOR_OFFSETS: dict[Tenor, int] = {
    Tenor.INSTANT: 2 * 60,
    Tenor.HOURLY: 60 * 60,
    Tenor.DAILY: 24 * 60 * 60,
}


def settlement_time_for(tenor: Tenor | str, now: float | None = None) -> int:
    """Absolute settlement timestamp (unix seconds) for a tenor.

    Takers signing the trade message must derive the same value, so
    callers should compute it once and pass it along explicitly.
    """
    if now is None:
        now = time.time()
    return int(now) + TENOR_OFFSETS[Tenor(tenor)]


class TradeStatus(str, Enum):
    """Local, advisory trade status. The ledger is authoritative."""

    PENDING = "pending"
    FUNDED = "funded"
    SETTLED = "settled"
    FAILED = "failed"


class FundingRole(str, Enum):
    """Which side of a trade is funding escrow."""

    TAKER = "taker"
    MAKER = "maker"


@dataclass(frozen=True)
class RFQ:
    """A taker's request to exchange a fixed source amount. Immutable."""

    id: str
    from_currency: str
    from_amount: Decimal
    to_currency: str
    tenor: Tenor
    taker_address: str
    created_at: float

    def age(self, now: float) -> float:
        return now - self.created_at


@dataclass
class Quote:
    """A maker's priced response to an RFQ. Only ``selected`` ever changes."""

    id: str
    rfq_id: str
    maker_address: str
    from_currency: str
    to_currency: str
    from_amount: Decimal
    to_amount: Decimal
    rate: Decimal
    expiry: int  # unix seconds
    selected: bool = False
    created_at: float = field(default_factory=time.time)


@dataclass
class Trade:
    """Local mirror of a ledger trade created at quote acceptance."""

    id: str
    onchain_id: int
    rfq_id: str
    quote_id: str
    taker_address: str
    maker_address: str
    from_currency: str
    to_currency: str
    from_amount: Decimal
    to_amount: Decimal
    settlement_time: int
    status: TradeStatus = TradeStatus.PENDING
    tx_hash: str | None = None
    taker_funded: bool | None = None
    maker_funded: bool | None = None
    settled: bool | None = None


@dataclass
class Candle:
    """OHLC summary of sampled rates over one time bucket."""

    time: int  # bucket start, unix seconds
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal


@dataclass(frozen=True)
class RatePoint:
    """One point of a derived cross-rate history."""

    time: int  # unix seconds
    rate: Decimal


def trade_key(onchain_id: int) -> str:
    """Public trade id for a ledger trade counter value."""
    return f"trade_{onchain_id}"


def parse_trade_key(trade_id: str) -> int:
    """Inverse of :func:`trade_key`; accepts a bare integer too."""
    raw = trade_id.removeprefix("trade_")
    if not raw.isdigit():
        raise ValueError(f"Malformed trade id: {trade_id}")
    return int(raw)
