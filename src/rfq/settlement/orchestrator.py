"""Settlement orchestrator -- trade creation, funding, and timed settlement.

The ledger contract is the source of truth for funding and settlement.
This module keeps a local, advisory mirror of the trades it created
(pending -> funded -> settled, or failed) and re-reads the ledger before
every decision that depends on trade state.

Trade creation sequence:
  1. Fix the settlement time (caller supplied or derived from the tenor).
  2. Reject a malformed taker signature before touching the ledger.
  3. Resolve the maker's signing identity from the key ring.
  4. Build the EIP-712 trade message and sign it as the maker.
  5. Submit both signatures; nothing is stored locally unless this succeeds.
  6. Mark the accepted quote selected.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from decimal import Decimal
from typing import TYPE_CHECKING

from rfq.exceptions import (
    AlreadySettled,
    InvalidSignature,
    NotFullyFunded,
    QuoteNotAcceptable,
    SettlementTimeNotReached,
    SigningKeyError,
    TradeNotFound,
    ValidationError,
)
from rfq.ledger.client import LedgerClient
from rfq.ledger.eip712 import (
    TradeDomain,
    is_well_formed_signature,
    quote_id_hash,
    sign_trade,
)
from rfq.ledger.identities import KeyRing
from rfq.ledger.types import LedgerTrade, TokenRegistry, TradeTerms
from rfq.logging import get_logger, log_context
from rfq.models import (
    FundingRole,
    Quote,
    Tenor,
    Trade,
    TradeStatus,
    parse_trade_key,
    settlement_time_for,
    trade_key,
)
from rfq.negotiation.quote_book import QuoteBook, validate_for_acceptance
from rfq.negotiation.registry import RequestRegistry

if TYPE_CHECKING:
    from eth_account.signers.local import LocalAccount

logger = get_logger(__name__)

# Local status transitions. FAILED is reachable from any non-terminal state.
_TRANSITIONS: dict[TradeStatus, set[TradeStatus]] = {
    TradeStatus.PENDING: {TradeStatus.FUNDED, TradeStatus.SETTLED, TradeStatus.FAILED},
    TradeStatus.FUNDED: {TradeStatus.FUNDED, TradeStatus.SETTLED, TradeStatus.FAILED},
    TradeStatus.SETTLED: set(),
    TradeStatus.FAILED: set(),
}


class SettlementOrchestrator:
    """Drives trades from quote acceptance through ledger settlement.

    Args:
        registry: RFQ lookup for acceptance.
        quote_book: Quote lookup and selection for acceptance.
        ledger: Settlement contract client.
        keys: Signing identities for makers, dev takers and the operator.
        tokens: Currency/token mapping and base-unit conversion.
        domain: EIP-712 domain shared with the taker's wallet.
        operator: Account that signs ``settle`` calls. Falls back to the
            key ring's default identity when not given.
        clock: Returns the current unix time; injectable for tests.
    """

    def __init__(
        self,
        registry: RequestRegistry,
        quote_book: QuoteBook,
        ledger: LedgerClient,
        keys: KeyRing,
        tokens: TokenRegistry,
        domain: TradeDomain,
        operator: LocalAccount | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._registry = registry
        self._quote_book = quote_book
        self._ledger = ledger
        self._keys = keys
        self._tokens = tokens
        self._domain = domain
        self._operator = operator
        self._clock = clock
        self._trades: dict[str, Trade] = {}

    # ── Trade creation ────────────────────────────

    async def accept_quote(
        self,
        rfq_id: str,
        quote_id: str,
        taker_address: str,
        taker_signature: str,
        settlement_time: int | None = None,
    ) -> Trade:
        """Accept a quote and create the corresponding ledger trade.

        Raises:
            RFQNotFound / QuoteNotFound: Unknown RFQ or quote.
            QuoteNotAcceptable: Expired or no longer matching its RFQ.
            plus everything :meth:`create_trade` raises.
        """
        if not quote_id or not taker_address or not taker_signature:
            raise ValidationError("quoteId, takerAddress, and takerSig required")

        rfq = self._registry.require(rfq_id)
        quote = self._quote_book.get(rfq_id, quote_id)
        if not validate_for_acceptance(quote, rfq, self._clock()):
            raise QuoteNotAcceptable(
                f"Quote {quote_id} is expired or no longer matches RFQ {rfq_id}",
                rfq_id=rfq_id,
                quote_id=quote_id,
                expiry=quote.expiry,
            )

        with log_context(rfq_id=rfq_id, quote_id=quote_id):
            trade = await self.create_trade(
                rfq_id,
                quote,
                taker_address,
                taker_signature,
                rfq.tenor,
                settlement_time,
            )
        # Only a trade the ledger accepted marks its quote selected
        self._quote_book.select(rfq_id, quote_id)
        return trade

    async def create_trade(
        self,
        rfq_id: str,
        quote: Quote,
        taker_address: str,
        taker_signature: str,
        tenor: Tenor | str = Tenor.INSTANT,
        settlement_time: int | None = None,
    ) -> Trade:
        """Create a trade on the ledger from an accepted quote.

        Raises:
            ValidationError: Non-positive or non-integral settlement time.
            InvalidSignature: Taker signature is not 0x-prefixed 65-byte hex.
            MakerKeyNotFound / MakerKeyMismatch: Maker cannot be signed for.
            LedgerError: Creation failed; no local trade is recorded.
        """
        final_settlement_time = self._resolve_settlement_time(tenor, settlement_time)

        if not is_well_formed_signature(taker_signature):
            raise InvalidSignature(
                "Valid taker signature required (0x-prefixed 65-byte hex)",
                quote_id=quote.id,
            )

        maker_account = self._keys.resolve_maker(quote.maker_address)

        terms = TradeTerms(
            taker=taker_address,
            maker=quote.maker_address,
            from_token=self._tokens.address_of(quote.from_currency),
            to_token=self._tokens.address_of(quote.to_currency),
            from_amount=self._tokens.to_base_units(quote.from_amount),
            to_amount=self._tokens.to_base_units(quote.to_amount),
            settlement_time=final_settlement_time,
            quote_id=quote_id_hash(quote.id),
        )
        maker_signature = sign_trade(maker_account, self._domain, terms)

        onchain_id, tx_hash = await self._ledger.create_trade(
            maker_account, terms, taker_signature, maker_signature
        )

        trade = Trade(
            id=trade_key(onchain_id),
            onchain_id=onchain_id,
            rfq_id=rfq_id,
            quote_id=quote.id,
            taker_address=taker_address,
            maker_address=quote.maker_address,
            from_currency=quote.from_currency,
            to_currency=quote.to_currency,
            from_amount=quote.from_amount,
            to_amount=quote.to_amount,
            settlement_time=final_settlement_time,
            status=TradeStatus.PENDING,
            tx_hash=tx_hash,
        )
        self._trades[trade.id] = trade

        logger.info(
            "trade_created",
            trade_id=trade.id,
            rfq_id=rfq_id,
            quote_id=quote.id,
            maker=quote.maker_address,
            settlement_time=final_settlement_time,
            tx_hash=tx_hash,
        )
        return trade

    def _resolve_settlement_time(self, tenor: Tenor | str, settlement_time: object) -> int:
        """Caller-supplied settlement time, or the tenor's offset from now.

        JSON numbers may arrive as floats; integral values are accepted.
        """
        if settlement_time is None:
            return settlement_time_for(tenor, self._clock())
        valid = (
            isinstance(settlement_time, (int, float))
            and not isinstance(settlement_time, bool)
            and (not isinstance(settlement_time, float) or settlement_time.is_integer())
            and settlement_time > 0
        )
        if not valid:
            raise ValidationError(
                f"Invalid settlementTime: {settlement_time}",
                settlement_time=str(settlement_time),
            )
        return int(settlement_time)

    # ── Funding ───────────────────────────────────

    async def fund(self, trade_id: str, user_address: str, role: FundingRole | str) -> str:
        """Escrow one side of a trade using a server-held signing key.

        The taker funds ``from_amount`` of the source token; the maker funds
        ``to_amount`` of the destination token. Returns the funding tx hash.

        Raises:
            ValidationError: Missing address or unknown role, or the address
                is not the trade's party for that role.
            TradeNotFound: The ledger has no such trade.
            SigningKeyError: No key is configured for the address.
            LedgerError: Approval or funding failed.
        """
        if not user_address or not role:
            raise ValidationError("userAddress and role required")
        try:
            role = FundingRole(role)
        except ValueError as exc:
            raise ValidationError(f'Invalid role "{role}". Must be "taker" or "maker"') from exc

        with log_context(trade_id=trade_id, role=role.value):
            ledger_trade = await self._read_ledger_trade(trade_id)
            if role is FundingRole.TAKER:
                party, token, amount = ledger_trade.taker, ledger_trade.from_token, ledger_trade.from_amount
            else:
                party, token, amount = ledger_trade.maker, ledger_trade.to_token, ledger_trade.to_amount

            if party.lower() != user_address.lower():
                raise ValidationError(
                    f"{user_address} is not the {role.value} of {trade_id}",
                    trade_id=trade_id,
                    role=role.value,
                )

            signer = self._keys.require(user_address)

            allowance = await self._ledger.allowance(token, signer.address)
            if allowance < amount:
                logger.info(
                    "token_approval_required",
                    trade_id=trade_id,
                    role=role.value,
                    allowance=allowance,
                    required=amount,
                )
                await self._ledger.approve(signer, token, amount)

            tx_hash = await self._ledger.fund_trade(signer, ledger_trade.trade_id, amount)
            self._update_if_local(trade_id, TradeStatus.FUNDED, tx_hash)

            logger.info("trade_funded", trade_id=trade_id, role=role.value, tx_hash=tx_hash)
            return tx_hash

    # ── Settlement ────────────────────────────────

    async def check_readiness(self, trade_id: str) -> LedgerTrade:
        """Re-read the ledger and verify the trade can be settled now.

        Raises:
            TradeNotFound: The ledger has no such trade.
            AlreadySettled: The ledger reports the trade settled.
            NotFullyFunded: Either escrow balance is below its amount.
            SettlementTimeNotReached: The settlement time is in the future.
        """
        trade = await self._read_ledger_trade(trade_id)

        if trade.settled:
            raise AlreadySettled(f"Trade {trade_id} already settled", trade_id=trade_id)

        if not trade.fully_funded:
            raise NotFullyFunded(
                "Trade not ready for settlement: both parties must fund before settlement",
                trade_id=trade_id,
                taker_funded=trade.taker_funded,
                maker_funded=trade.maker_funded,
            )

        now = int(self._clock())
        if now < trade.settlement_time:
            remaining = trade.settlement_time - now
            raise SettlementTimeNotReached(
                f"Settlement time not reached. Wait {remaining // 60}m {remaining % 60}s",
                trade_id=trade_id,
                settlement_time=trade.settlement_time,
                current_time=now,
                time_remaining=remaining,
            )
        return trade

    async def settle(self, trade_id: str) -> str:
        """Settle a ready trade on the ledger. Returns the settlement tx hash."""
        with log_context(trade_id=trade_id):
            trade = await self.check_readiness(trade_id)

            signer = self._operator or self._keys.default
            if signer is None:
                raise SigningKeyError("No settlement operator key configured")

            tx_hash = await self._ledger.settle(signer, trade.trade_id)
            self._update_if_local(trade_id, TradeStatus.SETTLED, tx_hash)

            logger.info("trade_settled", trade_id=trade_id, tx_hash=tx_hash)
            return tx_hash

    # ── Views ─────────────────────────────────────

    async def _read_ledger_trade(self, trade_id: str) -> LedgerTrade:
        try:
            onchain_id = parse_trade_key(trade_id)
        except ValueError as exc:
            raise TradeNotFound(f"Trade not found: {trade_id}", trade_id=trade_id) from exc
        trade = await self._ledger.get_trade(onchain_id)
        # Unknown ids read back as an all-zero struct rather than reverting
        if int(trade.taker, 16) == 0:
            raise TradeNotFound(f"Trade not found on ledger: {trade_id}", trade_id=trade_id)
        return trade

    def _view_from_ledger(self, ledger_trade: LedgerTrade) -> Trade:
        """Trade view derived from ledger state, enriched from the local mirror."""
        key = trade_key(ledger_trade.trade_id)
        local = self._trades.get(key)
        return Trade(
            id=key,
            onchain_id=ledger_trade.trade_id,
            rfq_id=local.rfq_id if local else "",
            quote_id=local.quote_id if local else "",
            taker_address=ledger_trade.taker,
            maker_address=ledger_trade.maker,
            from_currency=self._tokens.currency_of(ledger_trade.from_token),
            to_currency=self._tokens.currency_of(ledger_trade.to_token),
            from_amount=self._tokens.from_base_units(ledger_trade.from_amount),
            to_amount=self._tokens.from_base_units(ledger_trade.to_amount),
            settlement_time=ledger_trade.settlement_time,
            status=ledger_trade.display_status(),
            tx_hash=local.tx_hash if local else None,
            taker_funded=ledger_trade.taker_funded,
            maker_funded=ledger_trade.maker_funded,
            settled=ledger_trade.settled,
        )

    async def get_trade_view(self, trade_id: str) -> Trade:
        """Authoritative view of one trade as the ledger reports it."""
        return self._view_from_ledger(await self._read_ledger_trade(trade_id))

    async def trades_for_user(self, address: str) -> list[Trade]:
        """Trades where the address is taker or maker, newest first.

        Reconciled from the ledger; if the ledger cannot be enumerated the
        local mirror is used instead.
        """
        if not address:
            raise ValidationError("userAddress query parameter required")

        try:
            ledger_trades = await self._ledger.all_trades()
            trades = [self._view_from_ledger(t) for t in ledger_trades if t.involves(address)]
        except Exception as e:
            logger.warning("ledger_enumeration_failed", address=address, error=str(e))
            addr = address.lower()
            trades = [
                t
                for t in self._trades.values()
                if t.taker_address.lower() == addr or t.maker_address.lower() == addr
            ]
        return sorted(trades, key=lambda t: t.onchain_id, reverse=True)

    def ready_for_settlement(self) -> list[Trade]:
        """Local trades marked funded whose settlement time has passed."""
        now = int(self._clock())
        return [
            t
            for t in self._trades.values()
            if t.status == TradeStatus.FUNDED and now >= t.settlement_time
        ]

    def get_local(self, trade_id: str) -> Trade | None:
        return self._trades.get(trade_id)

    def all_trades(self) -> list[Trade]:
        """Every locally created trade, newest first."""
        return sorted(self._trades.values(), key=lambda t: t.onchain_id, reverse=True)

    def update_status(self, trade_id: str, status: TradeStatus, tx_hash: str | None = None) -> Trade:
        """Advance a local trade's status.

        Raises:
            TradeNotFound: The trade is not in the local mirror.
            ValidationError: The transition is not allowed.
        """
        trade = self._trades.get(trade_id)
        if trade is None:
            raise TradeNotFound(f"Trade not found: {trade_id}", trade_id=trade_id)

        status = TradeStatus(status)
        if status not in _TRANSITIONS[trade.status]:
            raise ValidationError(
                f"Cannot move trade {trade_id} from {trade.status.value} to {status.value}",
                trade_id=trade_id,
            )
        trade.status = status
        if tx_hash:
            trade.tx_hash = tx_hash
        logger.info("trade_status_updated", trade_id=trade_id, status=status.value)
        return trade

    def _update_if_local(self, trade_id: str, status: TradeStatus, tx_hash: str) -> None:
        """Mirror a ledger-confirmed change locally, if the trade was created here."""
        if trade_id not in self._trades:
            logger.debug("trade_not_local", trade_id=trade_id, status=status.value)
            return
        try:
            self.update_status(trade_id, status, tx_hash)
        except ValidationError as e:
            logger.warning("local_status_not_updated", trade_id=trade_id, error=e.message)

    def total_volume(self) -> Decimal:
        """Sum of source amounts across locally created trades."""
        return sum((t.from_amount for t in self._trades.values()), Decimal("0"))
