"""Ledger-side type definitions and unit conversion.

The settlement contract stores token amounts as integers in base units
(6 decimals for USDC/EURC). Conversion to and from Decimal happens only
here, at the ledger boundary.
"""

from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal
from enum import IntEnum

from rfq.models import TradeStatus


class LedgerTradeState(IntEnum):
    """Trade state enum as stored by the settlement contract."""

    CREATED = 0
    FUNDED_BY_TAKER = 1
    FUNDED_BY_MAKER = 2
    FUNDED_BOTH = 3
    SETTLED = 4
    CANCELLED = 5
    EXPIRED = 6


@dataclass(frozen=True)
class TradeTerms:
    """Everything both parties sign and the contract records at creation."""

    taker: str
    maker: str
    from_token: str
    to_token: str
    from_amount: int
    to_amount: int
    settlement_time: int
    quote_id: bytes  # bytes32


@dataclass(frozen=True)
class LedgerTrade:
    """Authoritative trade snapshot read from the contract."""

    trade_id: int
    taker: str
    maker: str
    from_token: str
    to_token: str
    from_amount: int
    to_amount: int
    settlement_time: int
    quote_id: bytes
    state: LedgerTradeState
    taker_balance: int
    maker_balance: int

    @property
    def settled(self) -> bool:
        return self.state == LedgerTradeState.SETTLED

    @property
    def taker_funded(self) -> bool:
        return self.settled or self.taker_balance >= self.from_amount

    @property
    def maker_funded(self) -> bool:
        return self.settled or self.maker_balance >= self.to_amount

    @property
    def fully_funded(self) -> bool:
        return self.taker_balance >= self.from_amount and self.maker_balance >= self.to_amount

    def involves(self, address: str) -> bool:
        addr = address.lower()
        return self.taker.lower() == addr or self.maker.lower() == addr

    def display_status(self) -> TradeStatus:
        """settled, funded (either side has funded), pending, or failed if cancelled/expired."""
        if self.settled:
            return TradeStatus.SETTLED
        if self.state in (LedgerTradeState.CANCELLED, LedgerTradeState.EXPIRED):
            return TradeStatus.FAILED
        if self.state in (
            LedgerTradeState.FUNDED_BY_TAKER,
            LedgerTradeState.FUNDED_BY_MAKER,
            LedgerTradeState.FUNDED_BOTH,
        ):
            return TradeStatus.FUNDED
        return TradeStatus.PENDING

    @classmethod
    def from_tuple(cls, trade_id: int, raw: list | tuple) -> "LedgerTrade":
        """Build from the ``getTrade`` return tuple.

        Layout: taker, maker, fromToken, toToken, fromAmount, toAmount,
        settlementTime, quoteId, state, takerBalance, makerBalance.
        """
        if len(raw) < 11:
            raise ValueError(f"Invalid trade data for trade {trade_id}: {len(raw)} fields")
        return cls(
            trade_id=trade_id,
            taker=str(raw[0]),
            maker=str(raw[1]),
            from_token=str(raw[2]),
            to_token=str(raw[3]),
            from_amount=int(raw[4]),
            to_amount=int(raw[5]),
            settlement_time=int(raw[6]),
            quote_id=bytes(raw[7]),
            state=LedgerTradeState(int(raw[8])),
            taker_balance=int(raw[9]),
            maker_balance=int(raw[10]),
        )


class TokenRegistry:
    """Currency code <-> token address mapping with base-unit conversion."""

    def __init__(self, addresses: dict[str, str], decimals: int = 6) -> None:
        self._by_currency = {c.upper(): a for c, a in addresses.items()}
        self._by_address = {a.lower(): c.upper() for c, a in addresses.items()}
        self._scale = Decimal(10) ** decimals
        self._quantum = Decimal(1).scaleb(-decimals)

    def address_of(self, currency: str) -> str:
        try:
            return self._by_currency[currency.upper()]
        except KeyError:
            raise ValueError(f"Unknown currency: {currency}") from None

    def currency_of(self, address: str) -> str:
        return self._by_address.get(address.lower(), address)

    def to_base_units(self, amount: Decimal) -> int:
        """Decimal token amount -> integer base units, truncating extra precision."""
        return int((amount * self._scale).to_integral_value(rounding=ROUND_DOWN))

    def from_base_units(self, units: int) -> Decimal:
        return (Decimal(units) / self._scale).quantize(self._quantum)

    def quantize(self, amount: Decimal) -> Decimal:
        """Round an amount down to the token's smallest representable unit."""
        return amount.quantize(self._quantum, rounding=ROUND_DOWN)
