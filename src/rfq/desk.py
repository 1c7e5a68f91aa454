"""The desk -- one owning value for every long-lived component.

Built once at process start from AppSettings. Component wiring order:
1. PriceSource (CoinGecko over httpx, or exchange tickers over ccxt)
2. RateOracle (TTL cache with stale fallback)
3. CandleAggregator (5-minute sampling of the configured pair)
4. QuoteBook, then RequestRegistry (opens a quote collection per RFQ)
5. TokenRegistry and KeyRing (ledger amounts and signing identities)
6. LedgerClient (Web3LedgerClient unless one is injected)
7. MakerBotPool (quoting and auto-fund loops)
8. SettlementOrchestrator
"""

from __future__ import annotations

import time
from collections.abc import Callable

from rfq.config import AppSettings
from rfq.ledger.client import LedgerClient
from rfq.ledger.eip712 import TradeDomain
from rfq.ledger.identities import KeyRing, account_from_key
from rfq.ledger.types import TokenRegistry
from rfq.logging import get_logger
from rfq.makers.bot_pool import MakerAgent, MakerBotPool, build_agents
from rfq.market_data.candles import CandleAggregator
from rfq.market_data.price_source import PriceSource, build_price_source
from rfq.market_data.rate_oracle import RateOracle
from rfq.negotiation.quote_book import QuoteBook
from rfq.negotiation.registry import RequestRegistry
from rfq.settlement.orchestrator import SettlementOrchestrator

logger = get_logger(__name__)


class Desk:
    """Owns and starts/stops every component of the RFQ desk.

    Args:
        settings: Application-wide settings.
        price_source: Injected price source; built from settings if omitted.
        ledger: Injected ledger client; a Web3LedgerClient if omitted.
        agents: Injected maker agents; derived from configured keys if omitted.
        clock: Shared time source for every component.
    """

    def __init__(
        self,
        settings: AppSettings,
        price_source: PriceSource | None = None,
        ledger: LedgerClient | None = None,
        agents: list[MakerAgent] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings
        self._started_at: float | None = None
        self._clock = clock

        self.price_source = price_source or build_price_source(settings.price)
        self.oracle = RateOracle(self.price_source, settings.price, clock=clock)
        self.candles = CandleAggregator(
            self.oracle,
            settings.rfq.base_currency,
            settings.rfq.quote_currency,
            settings.price,
            clock=clock,
        )

        self.quote_book = QuoteBook(settings.rfq.allow_duplicate_maker_quotes, clock=clock)
        self.registry = RequestRegistry(self.quote_book, settings.rfq, clock=clock)

        self.tokens = TokenRegistry(
            settings.ledger.token_addresses, settings.ledger.token_decimals
        )
        if agents is None:
            agents = build_agents(settings.maker)
        self.keys = KeyRing(
            [
                settings.ledger.taker_private_key.get_secret_value(),
                settings.ledger.operator_private_key.get_secret_value(),
            ],
            default_key=settings.maker.default_private_key.get_secret_value(),
        )
        for agent in agents:
            self.keys.add(agent.account)

        if ledger is None:
            from rfq.ledger.web3_client import Web3LedgerClient

            ledger = Web3LedgerClient(settings.ledger)
        self.ledger = ledger

        self.makers = MakerBotPool(
            registry=self.registry,
            quote_book=self.quote_book,
            oracle=self.oracle,
            ledger=self.ledger,
            tokens=self.tokens,
            agents=agents,
            settings=settings.maker,
            rfq_settings=settings.rfq,
            clock=clock,
        )

        self.settlement = SettlementOrchestrator(
            registry=self.registry,
            quote_book=self.quote_book,
            ledger=self.ledger,
            keys=self.keys,
            tokens=self.tokens,
            domain=TradeDomain(
                name=settings.ledger.domain_name,
                version=settings.ledger.domain_version,
                chain_id=settings.ledger.chain_id,
                verifying_contract=self.ledger.contract_address,
            ),
            operator=account_from_key(settings.ledger.operator_private_key.get_secret_value()),
            clock=clock,
        )

    @property
    def is_running(self) -> bool:
        return self._started_at is not None

    async def start(self) -> None:
        """Start candle sampling and the maker loops. Idempotent."""
        if self.is_running:
            logger.warning("desk_already_running")
            return
        self._started_at = self._clock()
        await self.candles.start()
        await self.makers.start()
        logger.info(
            "desk_started",
            pair=f"{self.settings.rfq.base_currency}/{self.settings.rfq.quote_currency}",
            agents=len(self.makers.agents),
            ledger=self.ledger.contract_address,
        )

    async def stop(self) -> None:
        """Stop every loop and release client connections. Idempotent."""
        if not self.is_running:
            return
        self._started_at = None
        await self.makers.stop()
        await self.candles.stop()
        for name, closer in (("price_source", self.price_source.close), ("ledger", self.ledger.close)):
            try:
                await closer()
            except Exception as e:
                logger.warning("client_close_failed", client=name, error=str(e))
        logger.info("desk_stopped")

    def get_status(self) -> dict:
        """Health snapshot for the status endpoint."""
        uptime = self._clock() - self._started_at if self._started_at is not None else 0.0
        return {
            "running": self.is_running,
            "uptime_seconds": round(uptime, 1),
            "pending_rfqs": len(self.registry.list_pending()),
            "trades": len(self.settlement.all_trades()),
            "volume": str(self.settlement.total_volume()),
            "candles_running": self.candles.is_running,
            "makers": self.makers.get_status(),
        }
