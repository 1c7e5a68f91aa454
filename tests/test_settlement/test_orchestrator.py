"""Tests for SettlementOrchestrator.

Tests verify:
- Trade creation fixes the settlement time and signs as the resolved maker
- Malformed taker signatures and unknown makers fail before any ledger call
- A rejected acceptance leaves no local trade and no selected quote behind
- Funding and timing gates are each independently required for settlement
- User trade views reconcile from the ledger and fall back to local state
- End-to-end: USDC 5 -> EURC, best of two quotes, funded, settled
"""

from decimal import Decimal

import pytest
import structlog

from rfq.config import RFQSettings
from rfq.exceptions import (
    AlreadySettled,
    InvalidSignature,
    LedgerError,
    MakerKeyMismatch,
    MakerKeyNotFound,
    NotFullyFunded,
    QuoteNotAcceptable,
    QuoteNotFound,
    SettlementTimeNotReached,
    TradeNotFound,
    ValidationError,
)
from rfq.ledger.eip712 import TradeDomain
from rfq.ledger.identities import KeyRing, account_from_key
from rfq.ledger.types import LedgerTradeState, TokenRegistry
from rfq.models import TradeStatus
from rfq.negotiation.quote_book import QuoteBook
from rfq.negotiation.registry import RequestRegistry
from rfq.settlement.orchestrator import SettlementOrchestrator
from tests.fakes import BOT_KEYS, MAKER, OPERATOR, TAKER, FakeClock, FakeLedger

TAKER_SIG = "0x" + "ab" * 65
OTHER_MAKER = account_from_key(BOT_KEYS[0])


@pytest.fixture
def quote_book(clock: FakeClock) -> QuoteBook:
    return QuoteBook(clock=clock)


@pytest.fixture
def registry(quote_book: QuoteBook, clock: FakeClock) -> RequestRegistry:
    return RequestRegistry(quote_book, RFQSettings(), clock=clock)


@pytest.fixture
def orchestrator(
    registry: RequestRegistry,
    quote_book: QuoteBook,
    ledger: FakeLedger,
    key_ring: KeyRing,
    tokens: TokenRegistry,
    domain: TradeDomain,
    clock: FakeClock,
) -> SettlementOrchestrator:
    key_ring.add(OTHER_MAKER)
    return SettlementOrchestrator(
        registry=registry,
        quote_book=quote_book,
        ledger=ledger,
        keys=key_ring,
        tokens=tokens,
        domain=domain,
        operator=OPERATOR,
        clock=clock,
    )


def _selected(quote_book: QuoteBook, rfq_id: str) -> list[str]:
    return [q.id for q in quote_book.list(rfq_id) if q.selected]


def _rfq_with_quotes(
    registry: RequestRegistry, quote_book: QuoteBook, clock: FakeClock, tenor: str = "instant"
) -> tuple[str, str, str]:
    """USDC 5 -> EURC with quotes of 4.60 (MAKER) and 4.55 (OTHER_MAKER)."""
    rfq_id = registry.create("USDC", "5", "EURC", tenor, TAKER.address)
    expiry = int(clock.now) + 300
    best = quote_book.add(
        rfq_id, MAKER.address, "USDC", "EURC", Decimal("5"), Decimal("4.60"), Decimal("0.92"), expiry
    )
    other = quote_book.add(
        rfq_id, OTHER_MAKER.address, "USDC", "EURC", Decimal("5"), Decimal("4.55"), Decimal("0.91"), expiry
    )
    return rfq_id, best, other


class TestCreateTrade:
    @pytest.mark.asyncio
    async def test_creates_pending_trade(
        self,
        orchestrator: SettlementOrchestrator,
        registry: RequestRegistry,
        quote_book: QuoteBook,
        ledger: FakeLedger,
        clock: FakeClock,
    ) -> None:
        rfq_id, best, _ = _rfq_with_quotes(registry, quote_book, clock, tenor="hourly")

        trade = await orchestrator.accept_quote(rfq_id, best, TAKER.address, TAKER_SIG)

        assert trade.id == "trade_1"
        assert trade.status is TradeStatus.PENDING
        assert trade.settlement_time == int(clock.now) + 3600
        assert orchestrator.get_local("trade_1") is trade
        assert quote_book.get(rfq_id, best).selected

        _, signer, terms = ledger.calls[0]
        assert signer == MAKER.address
        assert terms.from_amount == 5_000_000
        assert terms.to_amount == 4_600_000

    @pytest.mark.asyncio
    async def test_explicit_settlement_time_is_used(
        self,
        orchestrator: SettlementOrchestrator,
        registry: RequestRegistry,
        quote_book: QuoteBook,
        clock: FakeClock,
    ) -> None:
        rfq_id, best, _ = _rfq_with_quotes(registry, quote_book, clock)
        trade = await orchestrator.accept_quote(
            rfq_id, best, TAKER.address, TAKER_SIG, settlement_time=1_800_000_000
        )
        assert trade.settlement_time == 1_800_000_000

    @pytest.mark.asyncio
    @pytest.mark.parametrize("bad_time", [0, -5, "soon", 1.5, -60.0, float("nan"), float("inf"), True])
    async def test_invalid_settlement_time(
        self,
        orchestrator: SettlementOrchestrator,
        registry: RequestRegistry,
        quote_book: QuoteBook,
        ledger: FakeLedger,
        clock: FakeClock,
        bad_time,
    ) -> None:
        rfq_id, best, _ = _rfq_with_quotes(registry, quote_book, clock)
        quote = quote_book.get(rfq_id, best)
        with pytest.raises(ValidationError):
            await orchestrator.create_trade(
                rfq_id, quote, TAKER.address, TAKER_SIG, settlement_time=bad_time
            )
        assert ledger.calls == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("signature", ["", "abcd", "0x1234", "ab" * 65])
    async def test_malformed_signature_rejected_before_ledger(
        self,
        orchestrator: SettlementOrchestrator,
        registry: RequestRegistry,
        quote_book: QuoteBook,
        ledger: FakeLedger,
        clock: FakeClock,
        signature: str,
    ) -> None:
        rfq_id, best, _ = _rfq_with_quotes(registry, quote_book, clock)
        quote = quote_book.get(rfq_id, best)
        with pytest.raises(InvalidSignature):
            await orchestrator.create_trade(rfq_id, quote, TAKER.address, signature)
        assert ledger.calls == []

    @pytest.mark.asyncio
    async def test_rejected_acceptance_leaves_selection_untouched(
        self,
        orchestrator: SettlementOrchestrator,
        registry: RequestRegistry,
        quote_book: QuoteBook,
        ledger: FakeLedger,
        clock: FakeClock,
    ) -> None:
        rfq_id, best, other = _rfq_with_quotes(registry, quote_book, clock)

        with pytest.raises(InvalidSignature):
            await orchestrator.accept_quote(rfq_id, other, TAKER.address, "0x1234")
        assert _selected(quote_book, rfq_id) == []
        assert orchestrator.all_trades() == []
        assert ledger.calls == []

        await orchestrator.accept_quote(rfq_id, best, TAKER.address, TAKER_SIG)
        assert _selected(quote_book, rfq_id) == [best]

        ledger.fail_create = True
        with pytest.raises(LedgerError):
            await orchestrator.accept_quote(rfq_id, other, TAKER.address, TAKER_SIG)
        assert _selected(quote_book, rfq_id) == [best]
        assert [t.quote_id for t in orchestrator.all_trades()] == [best]

    @pytest.mark.asyncio
    async def test_integral_float_settlement_time_accepted(
        self,
        orchestrator: SettlementOrchestrator,
        registry: RequestRegistry,
        quote_book: QuoteBook,
        ledger: FakeLedger,
        clock: FakeClock,
    ) -> None:
        rfq_id, best, _ = _rfq_with_quotes(registry, quote_book, clock)

        trade = await orchestrator.accept_quote(
            rfq_id, best, TAKER.address, TAKER_SIG, settlement_time=1.70000012e9
        )

        assert trade.settlement_time == 1_700_000_120
        assert isinstance(trade.settlement_time, int)
        assert ledger.calls[0][2].settlement_time == 1_700_000_120

    @pytest.mark.asyncio
    async def test_unknown_maker_without_default_key(
        self,
        registry: RequestRegistry,
        quote_book: QuoteBook,
        ledger: FakeLedger,
        tokens: TokenRegistry,
        domain: TradeDomain,
        clock: FakeClock,
    ) -> None:
        orchestrator = SettlementOrchestrator(
            registry, quote_book, ledger, KeyRing(), tokens, domain, clock=clock
        )
        rfq_id, best, _ = _rfq_with_quotes(registry, quote_book, clock)
        with pytest.raises(MakerKeyNotFound):
            await orchestrator.accept_quote(rfq_id, best, TAKER.address, TAKER_SIG)
        assert ledger.calls == []
        assert _selected(quote_book, rfq_id) == []

    @pytest.mark.asyncio
    async def test_default_key_for_other_maker_is_mismatch(
        self,
        orchestrator: SettlementOrchestrator,
        registry: RequestRegistry,
        quote_book: QuoteBook,
        ledger: FakeLedger,
        clock: FakeClock,
    ) -> None:
        rfq_id = registry.create("USDC", "5", "EURC", "instant", TAKER.address)
        stranger = account_from_key(BOT_KEYS[1]).address
        quote_id = quote_book.add(
            rfq_id, stranger, "USDC", "EURC", Decimal("5"), Decimal("4.7"), Decimal("0.94"), int(clock.now) + 300
        )
        with pytest.raises(MakerKeyMismatch):
            await orchestrator.accept_quote(rfq_id, quote_id, TAKER.address, TAKER_SIG)
        assert ledger.calls == []
        assert _selected(quote_book, rfq_id) == []

    @pytest.mark.asyncio
    async def test_ledger_failure_stores_nothing(
        self,
        orchestrator: SettlementOrchestrator,
        registry: RequestRegistry,
        quote_book: QuoteBook,
        ledger: FakeLedger,
        clock: FakeClock,
    ) -> None:
        rfq_id, best, _ = _rfq_with_quotes(registry, quote_book, clock)
        ledger.fail_create = True
        with pytest.raises(LedgerError):
            await orchestrator.accept_quote(rfq_id, best, TAKER.address, TAKER_SIG)
        assert orchestrator.all_trades() == []
        assert _selected(quote_book, rfq_id) == []

    @pytest.mark.asyncio
    async def test_expired_quote_not_acceptable(
        self,
        orchestrator: SettlementOrchestrator,
        registry: RequestRegistry,
        quote_book: QuoteBook,
        clock: FakeClock,
    ) -> None:
        rfq_id, best, _ = _rfq_with_quotes(registry, quote_book, clock)
        clock.advance(301)
        with pytest.raises(QuoteNotAcceptable):
            await orchestrator.accept_quote(rfq_id, best, TAKER.address, TAKER_SIG)

    @pytest.mark.asyncio
    async def test_unknown_quote(
        self,
        orchestrator: SettlementOrchestrator,
        registry: RequestRegistry,
        quote_book: QuoteBook,
        clock: FakeClock,
    ) -> None:
        rfq_id, _, _ = _rfq_with_quotes(registry, quote_book, clock)
        with pytest.raises(QuoteNotFound):
            await orchestrator.accept_quote(rfq_id, "quote_missing", TAKER.address, TAKER_SIG)


class TestReadiness:
    @pytest.fixture
    def accept_trade(
        self,
        orchestrator: SettlementOrchestrator,
        registry: RequestRegistry,
        quote_book: QuoteBook,
        clock: FakeClock,
    ):
        async def _accept() -> str:
            rfq_id, best, _ = _rfq_with_quotes(registry, quote_book, clock)
            trade = await orchestrator.accept_quote(rfq_id, best, TAKER.address, TAKER_SIG)
            return trade.id

        return _accept

    @pytest.mark.asyncio
    async def test_unfunded_trade_not_ready_even_after_time(
        self, orchestrator: SettlementOrchestrator, accept_trade, clock: FakeClock
    ) -> None:
        trade_id = await accept_trade()
        clock.advance(3600)
        with pytest.raises(NotFullyFunded) as exc_info:
            await orchestrator.check_readiness(trade_id)
        assert exc_info.value.details["taker_funded"] is False
        assert exc_info.value.details["maker_funded"] is False

    @pytest.mark.asyncio
    async def test_half_funded_trade_not_ready(
        self, orchestrator: SettlementOrchestrator, accept_trade, clock: FakeClock
    ) -> None:
        trade_id = await accept_trade()
        await orchestrator.fund(trade_id, TAKER.address, "taker")
        clock.advance(3600)
        with pytest.raises(NotFullyFunded) as exc_info:
            await orchestrator.check_readiness(trade_id)
        assert exc_info.value.details["taker_funded"] is True

    @pytest.mark.asyncio
    async def test_funded_trade_waits_for_settlement_time(
        self, orchestrator: SettlementOrchestrator, accept_trade, clock: FakeClock
    ) -> None:
        trade_id = await accept_trade()
        await orchestrator.fund(trade_id, TAKER.address, "taker")
        await orchestrator.fund(trade_id, MAKER.address, "maker")

        clock.advance(119)
        with pytest.raises(SettlementTimeNotReached) as exc_info:
            await orchestrator.settle(trade_id)
        assert exc_info.value.details["time_remaining"] == 1

        clock.advance(1)
        ledger_trade = await orchestrator.check_readiness(trade_id)
        assert ledger_trade.fully_funded

    @pytest.mark.asyncio
    async def test_unknown_trade(self, orchestrator: SettlementOrchestrator) -> None:
        with pytest.raises(TradeNotFound):
            await orchestrator.check_readiness("trade_42")
        with pytest.raises(TradeNotFound):
            await orchestrator.check_readiness("not-a-trade")


class TestFunding:
    @pytest.mark.asyncio
    async def test_wrong_party_rejected(
        self,
        orchestrator: SettlementOrchestrator,
        registry: RequestRegistry,
        quote_book: QuoteBook,
        clock: FakeClock,
    ) -> None:
        rfq_id, best, _ = _rfq_with_quotes(registry, quote_book, clock)
        trade = await orchestrator.accept_quote(rfq_id, best, TAKER.address, TAKER_SIG)
        with pytest.raises(ValidationError):
            await orchestrator.fund(trade.id, MAKER.address, "taker")
        with pytest.raises(ValidationError):
            await orchestrator.fund(trade.id, TAKER.address, "broker")

    @pytest.mark.asyncio
    async def test_taker_funding_approves_and_marks_funded(
        self,
        orchestrator: SettlementOrchestrator,
        registry: RequestRegistry,
        quote_book: QuoteBook,
        ledger: FakeLedger,
        clock: FakeClock,
    ) -> None:
        rfq_id, best, _ = _rfq_with_quotes(registry, quote_book, clock)
        trade = await orchestrator.accept_quote(rfq_id, best, TAKER.address, TAKER_SIG)

        tx_hash = await orchestrator.fund(trade.id, TAKER.address.lower(), "taker")

        assert tx_hash.startswith("0x")
        assert ledger.call_names()[-2:] == ["approve", "fund_trade"]
        assert ledger.trades[1].state is LedgerTradeState.FUNDED_BY_TAKER
        assert orchestrator.get_local(trade.id).status is TradeStatus.FUNDED


class TestViews:
    @pytest.mark.asyncio
    async def test_trades_for_user_reconciles_from_ledger(
        self,
        orchestrator: SettlementOrchestrator,
        registry: RequestRegistry,
        quote_book: QuoteBook,
        clock: FakeClock,
    ) -> None:
        for _ in range(2):
            rfq_id, best, _ = _rfq_with_quotes(registry, quote_book, clock)
            await orchestrator.accept_quote(rfq_id, best, TAKER.address, TAKER_SIG)
        await orchestrator.fund("trade_1", TAKER.address, "taker")

        trades = await orchestrator.trades_for_user(MAKER.address.lower())

        assert [t.id for t in trades] == ["trade_2", "trade_1"]
        assert trades[1].status is TradeStatus.FUNDED
        assert trades[1].taker_funded is True
        assert trades[1].maker_funded is False
        assert trades[1].from_currency == "USDC"
        assert trades[1].to_amount == Decimal("4.6")
        assert await orchestrator.trades_for_user(OPERATOR.address) == []

    @pytest.mark.asyncio
    async def test_trades_for_user_falls_back_to_local(
        self,
        orchestrator: SettlementOrchestrator,
        registry: RequestRegistry,
        quote_book: QuoteBook,
        ledger: FakeLedger,
        clock: FakeClock,
    ) -> None:
        rfq_id, best, _ = _rfq_with_quotes(registry, quote_book, clock)
        await orchestrator.accept_quote(rfq_id, best, TAKER.address, TAKER_SIG)
        ledger.fail_reads = True

        trades = await orchestrator.trades_for_user(TAKER.address)

        assert [t.id for t in trades] == ["trade_1"]
        assert trades[0].taker_funded is None

    @pytest.mark.asyncio
    async def test_ready_for_settlement_uses_local_status(
        self,
        orchestrator: SettlementOrchestrator,
        registry: RequestRegistry,
        quote_book: QuoteBook,
        clock: FakeClock,
    ) -> None:
        rfq_id, best, _ = _rfq_with_quotes(registry, quote_book, clock)
        trade = await orchestrator.accept_quote(rfq_id, best, TAKER.address, TAKER_SIG)
        assert orchestrator.ready_for_settlement() == []

        orchestrator.update_status(trade.id, TradeStatus.FUNDED)
        assert orchestrator.ready_for_settlement() == []

        clock.advance(120)
        assert orchestrator.ready_for_settlement() == [trade]

    def test_update_status_unknown_trade(self, orchestrator: SettlementOrchestrator) -> None:
        with pytest.raises(TradeNotFound):
            orchestrator.update_status("trade_9", TradeStatus.FUNDED)

    @pytest.mark.asyncio
    async def test_settled_trade_is_terminal(
        self,
        orchestrator: SettlementOrchestrator,
        registry: RequestRegistry,
        quote_book: QuoteBook,
        clock: FakeClock,
    ) -> None:
        rfq_id, best, _ = _rfq_with_quotes(registry, quote_book, clock)
        trade = await orchestrator.accept_quote(rfq_id, best, TAKER.address, TAKER_SIG)
        orchestrator.update_status(trade.id, TradeStatus.SETTLED, "0xabc")

        with pytest.raises(ValidationError):
            orchestrator.update_status(trade.id, TradeStatus.FUNDED)
        assert trade.tx_hash == "0xabc"


@pytest.mark.asyncio
async def test_end_to_end_best_quote_funded_and_settled(
    orchestrator: SettlementOrchestrator,
    registry: RequestRegistry,
    quote_book: QuoteBook,
    ledger: FakeLedger,
    clock: FakeClock,
) -> None:
    rfq_id, best_id, _ = _rfq_with_quotes(registry, quote_book, clock)

    best = quote_book.best(rfq_id)
    assert best.id == best_id
    assert best.to_amount == Decimal("4.60")

    trade = await orchestrator.accept_quote(rfq_id, best.id, TAKER.address, TAKER_SIG)
    assert trade.settlement_time == int(clock.now) + 120

    await orchestrator.fund(trade.id, TAKER.address, "taker")
    await orchestrator.fund(trade.id, MAKER.address, "maker")
    assert ledger.trades[1].state is LedgerTradeState.FUNDED_BOTH

    with pytest.raises(SettlementTimeNotReached):
        await orchestrator.settle(trade.id)

    clock.advance(120)
    tx_hash = await orchestrator.settle(trade.id)

    assert ledger.calls[-1] == ("settle", OPERATOR.address, 1)
    assert ledger.trades[1].state is LedgerTradeState.SETTLED
    local = orchestrator.get_local(trade.id)
    assert local.status is TradeStatus.SETTLED
    assert local.tx_hash == tx_hash

    view = await orchestrator.get_trade_view(trade.id)
    assert view.status is TradeStatus.SETTLED
    assert view.rfq_id == rfq_id

    with pytest.raises(AlreadySettled):
        await orchestrator.settle(trade.id)


class ContextRecordingLedger(FakeLedger):
    """FakeLedger that records the bound log context at each write."""

    def __init__(self, clock: FakeClock) -> None:
        super().__init__(clock)
        self.contexts: dict[str, dict] = {}

    async def create_trade(self, signer, terms, taker_signature, maker_signature):
        self.contexts["create_trade"] = structlog.contextvars.get_contextvars()
        return await super().create_trade(signer, terms, taker_signature, maker_signature)

    async def fund_trade(self, signer, trade_id: int, amount: int) -> str:
        self.contexts["fund_trade"] = structlog.contextvars.get_contextvars()
        return await super().fund_trade(signer, trade_id, amount)

    async def settle(self, signer, trade_id: int) -> str:
        self.contexts["settle"] = structlog.contextvars.get_contextvars()
        return await super().settle(signer, trade_id)


@pytest.mark.asyncio
async def test_ledger_writes_carry_trade_log_context(
    registry: RequestRegistry,
    quote_book: QuoteBook,
    key_ring: KeyRing,
    tokens: TokenRegistry,
    domain: TradeDomain,
    clock: FakeClock,
) -> None:
    ledger = ContextRecordingLedger(clock)
    orchestrator = SettlementOrchestrator(
        registry, quote_book, ledger, key_ring, tokens, domain, operator=OPERATOR, clock=clock
    )
    rfq_id, best, _ = _rfq_with_quotes(registry, quote_book, clock)

    trade = await orchestrator.accept_quote(rfq_id, best, TAKER.address, TAKER_SIG)
    await orchestrator.fund(trade.id, TAKER.address, "taker")
    await orchestrator.fund(trade.id, MAKER.address, "maker")
    clock.advance(120)
    await orchestrator.settle(trade.id)

    assert ledger.contexts["create_trade"] == {"rfq_id": rfq_id, "quote_id": best}
    assert ledger.contexts["fund_trade"] == {"trade_id": trade.id, "role": "maker"}
    assert ledger.contexts["settle"] == {"trade_id": trade.id}
    # Nothing stays bound once the calls return
    assert structlog.contextvars.get_contextvars() == {}
