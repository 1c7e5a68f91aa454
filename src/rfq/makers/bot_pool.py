"""Automated maker agents -- quote pending RFQs and fund the maker leg.

Two independent background loops share the agent set:

  1. QUOTE (every 3s): for each pending RFQ and each agent that has not
     yet quoted it, price at the oracle rate adjusted by the agent's
     strategy and submit a quote valid for 5 minutes.
  2. AUTO-FUND (every 10s): for each ledger trade where an agent is the
     maker and only the taker has funded, approve the token if needed and
     escrow the maker's destination amount.

Failures in either loop are logged and retried on the next tick; they
never stop the pool.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from eth_account.signers.local import LocalAccount

from rfq.config import MakerSettings, RFQSettings
from rfq.exceptions import ValidationError
from rfq.ledger.client import LedgerClient
from rfq.ledger.identities import account_from_key
from rfq.ledger.types import LedgerTrade, LedgerTradeState, TokenRegistry
from rfq.logging import get_logger
from rfq.makers.attempts import AttemptTracker
from rfq.makers.strategy import RandomVarianceStrategy
from rfq.market_data.rate_oracle import RateOracle
from rfq.models import RFQ, Quote
from rfq.negotiation.quote_book import QuoteBook
from rfq.negotiation.registry import RequestRegistry

logger = get_logger(__name__)


@dataclass
class MakerAgent:
    """One automated maker: a signing identity plus a pricing strategy."""

    id: str
    account: LocalAccount
    strategy: RandomVarianceStrategy

    @property
    def address(self) -> str:
        return self.account.address


def build_agents(settings: MakerSettings) -> list[MakerAgent]:
    """One agent per usable configured key, numbered in configuration order.

    Invalid keys are skipped (with a warning from key normalization).
    """
    agents: list[MakerAgent] = []
    for index, secret in enumerate(settings.bot_private_keys, start=1):
        account = account_from_key(secret.get_secret_value())
        if account is None:
            logger.warning("maker_agent_skipped", agent_id=f"bot{index}")
            continue
        agents.append(
            MakerAgent(
                id=f"bot{index}",
                account=account,
                strategy=RandomVarianceStrategy(settings.variance_pct),
            )
        )
    return agents


class MakerBotPool:
    """Runs the quoting and auto-fund loops for a set of maker agents.

    Args:
        registry: Source of pending RFQs.
        quote_book: Where quotes are submitted.
        oracle: Reference rate for pricing.
        ledger: Trade enumeration and maker funding.
        tokens: Currency/token mapping and amount quantization.
        agents: Maker identities. An empty pool never starts its loops.
        settings: Loop cadences, variance and attempt marker capacity.
        rfq_settings: Quote validity period.
        clock: Returns the current unix time; injectable for tests.
    """

    def __init__(
        self,
        registry: RequestRegistry,
        quote_book: QuoteBook,
        oracle: RateOracle,
        ledger: LedgerClient,
        tokens: TokenRegistry,
        agents: list[MakerAgent] | None = None,
        settings: MakerSettings | None = None,
        rfq_settings: RFQSettings | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._registry = registry
        self._quote_book = quote_book
        self._oracle = oracle
        self._ledger = ledger
        self._tokens = tokens
        self._agents = list(agents or [])
        self._settings = settings or MakerSettings()
        self._rfq_settings = rfq_settings or RFQSettings()
        self._clock = clock
        self._attempts = AttemptTracker(self._settings.max_attempt_markers)
        self._quote_task: asyncio.Task | None = None  # type: ignore[type-arg]
        self._fund_task: asyncio.Task | None = None  # type: ignore[type-arg]

    @property
    def agents(self) -> list[MakerAgent]:
        return list(self._agents)

    @property
    def is_running(self) -> bool:
        return any(t is not None and not t.done() for t in (self._quote_task, self._fund_task))

    def agent_for(self, address: str) -> MakerAgent | None:
        addr = address.lower()
        for agent in self._agents:
            if agent.address.lower() == addr:
                return agent
        return None

    # ── Lifecycle ─────────────────────────────────

    async def start(self) -> None:
        """Start both loops. No agents, or already running, is a logged no-op."""
        if not self._agents:
            logger.warning("maker_pool_no_agents")
            return
        if self.is_running:
            logger.warning("maker_pool_already_running")
            return
        self._quote_task = asyncio.create_task(self._quote_loop())
        self._fund_task = asyncio.create_task(self._fund_loop())
        logger.info(
            "maker_pool_started",
            agents=[f"{a.id}:{a.address}" for a in self._agents],
            quote_interval=self._settings.quote_poll_interval,
            fund_interval=self._settings.fund_poll_interval,
        )

    async def stop(self) -> None:
        """Cancel both loops. Safe to call repeatedly."""
        tasks = [t for t in (self._quote_task, self._fund_task) if t is not None]
        if not tasks:
            return
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._quote_task = None
        self._fund_task = None
        logger.info("maker_pool_stopped")

    async def _quote_loop(self) -> None:
        while True:
            try:
                await self.quote_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.warning("maker_quote_poll_error", exc_info=True)
            await asyncio.sleep(self._settings.quote_poll_interval)

    async def _fund_loop(self) -> None:
        while True:
            try:
                await self.fund_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.warning("maker_fund_poll_error", exc_info=True)
            await asyncio.sleep(self._settings.fund_poll_interval)

    # ── Quoting ───────────────────────────────────

    async def quote_once(self) -> int:
        """Run one quoting pass. Returns the number of quotes submitted."""
        self._attempts.evict_expired(self._clock())
        submitted = 0

        for rfq in self._registry.list_pending():
            for agent in self._agents:
                if self._quote_book.has_quote_from(rfq.id, agent.address):
                    continue
                if self._attempts.is_marked(rfq.id, agent.id):
                    continue

                self._attempts.mark(rfq.id, agent.id, self._registry.negotiation_deadline(rfq))
                try:
                    quote_id = await self._quote_with_strategy(agent, rfq)
                except Exception as e:
                    self._attempts.clear(rfq.id, agent.id)
                    logger.warning(
                        "maker_quote_failed",
                        agent_id=agent.id,
                        rfq_id=rfq.id,
                        error=str(e),
                    )
                    continue

                submitted += 1
                logger.info(
                    "maker_quote_submitted",
                    agent_id=agent.id,
                    rfq_id=rfq.id,
                    quote_id=quote_id,
                )
        return submitted

    async def _quote_with_strategy(self, agent: MakerAgent, rfq: RFQ) -> str:
        market_rate = await self._oracle.get_rate(rfq.from_currency, rfq.to_currency)
        adjusted = agent.strategy.adjust(market_rate)
        return self._submit(rfq, agent.address, rfq.from_amount * adjusted, adjusted)

    def _submit(self, rfq: RFQ, maker_address: str, to_amount: Decimal, rate: Decimal) -> str:
        return self._quote_book.add(
            rfq_id=rfq.id,
            maker_address=maker_address,
            from_currency=rfq.from_currency,
            to_currency=rfq.to_currency,
            from_amount=rfq.from_amount,
            to_amount=self._tokens.quantize(to_amount),
            rate=rate,
            expiry=int(self._clock()) + self._rfq_settings.quote_ttl_seconds,
        )

    async def submit_manual_quote(
        self,
        rfq_id: str,
        maker_address: str,
        to_amount: Decimal | str | None = None,
    ) -> Quote:
        """Submit a quote on behalf of an arbitrary maker address.

        Without ``to_amount`` the quote is priced at the unadjusted oracle rate.

        Raises:
            RFQNotFound: Unknown RFQ.
            ValidationError: Missing maker address or a non-positive amount.
            RateUnavailable: No rate could be obtained.
        """
        rfq = self._registry.require(rfq_id)
        if not maker_address:
            raise ValidationError("makerAddress is required")

        if to_amount is None:
            rate = await self._oracle.get_rate(rfq.from_currency, rfq.to_currency)
            amount = rfq.from_amount * rate
        else:
            try:
                amount = Decimal(str(to_amount))
            except InvalidOperation as exc:
                raise ValidationError(f"Invalid toAmount: {to_amount}") from exc
            if not amount.is_finite() or amount <= 0:
                raise ValidationError(f"Invalid toAmount: {to_amount}")
            rate = amount / rfq.from_amount

        quote_id = self._submit(rfq, maker_address, amount, rate)
        return self._quote_book.get(rfq_id, quote_id)

    # ── Auto-funding ──────────────────────────────

    async def fund_once(self) -> int:
        """Run one auto-fund pass. Returns the number of trades funded."""
        funded = 0
        for trade in await self._ledger.all_trades():
            agent = self.agent_for(trade.maker)
            if agent is None or trade.state != LedgerTradeState.FUNDED_BY_TAKER:
                continue
            try:
                await self._fund_maker_side(agent, trade)
            except Exception as e:
                logger.warning(
                    "maker_auto_fund_failed",
                    agent_id=agent.id,
                    trade_id=trade.trade_id,
                    error=str(e),
                )
                continue
            funded += 1
        return funded

    async def _fund_maker_side(self, agent: MakerAgent, trade: LedgerTrade) -> None:
        allowance = await self._ledger.allowance(trade.to_token, agent.address)
        if allowance < trade.to_amount:
            logger.info(
                "maker_approving_token",
                agent_id=agent.id,
                token=trade.to_token,
                allowance=allowance,
                required=trade.to_amount,
            )
            await self._ledger.approve(agent.account, trade.to_token, trade.to_amount)

        tx_hash = await self._ledger.fund_trade(agent.account, trade.trade_id, trade.to_amount)
        logger.info(
            "maker_auto_funded",
            agent_id=agent.id,
            trade_id=trade.trade_id,
            amount=str(self._tokens.from_base_units(trade.to_amount)),
            tx_hash=tx_hash,
        )

    def get_status(self) -> dict:
        return {
            "running": self.is_running,
            "agents": [{"id": a.id, "address": a.address} for a in self._agents],
            "attempt_markers": len(self._attempts),
        }
