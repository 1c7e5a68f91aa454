"""Shared test fixtures for the RFQ desk."""

import pytest

from rfq.config import AppSettings, LedgerSettings, MakerSettings, PriceSettings, RFQSettings
from rfq.ledger.eip712 import TradeDomain
from rfq.ledger.identities import KeyRing
from rfq.ledger.types import TokenRegistry
from tests.fakes import (
    CONTRACT,
    EURC,
    MAKER_KEY,
    OPERATOR_KEY,
    TAKER_KEY,
    USDC,
    FakeClock,
    FakeLedger,
    FixedPriceSource,
)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def ledger(clock: FakeClock) -> FakeLedger:
    return FakeLedger(clock)


@pytest.fixture
def price_source() -> FixedPriceSource:
    return FixedPriceSource()


@pytest.fixture
def tokens() -> TokenRegistry:
    return TokenRegistry({"USDC": USDC, "EURC": EURC}, decimals=6)


@pytest.fixture
def domain() -> TradeDomain:
    return TradeDomain(
        name="Arc FX Settlement",
        version="1",
        chain_id=5042002,
        verifying_contract=CONTRACT,
    )


@pytest.fixture
def key_ring() -> KeyRing:
    return KeyRing([TAKER_KEY, OPERATOR_KEY], default_key=MAKER_KEY)


@pytest.fixture
def rfq_settings() -> RFQSettings:
    return RFQSettings()


@pytest.fixture
def mock_settings() -> AppSettings:
    """AppSettings with deterministic keys and no network-facing secrets."""
    return AppSettings(
        log_level="DEBUG",
        price=PriceSettings(),
        rfq=RFQSettings(),
        maker=MakerSettings(
            default_private_key=MAKER_KEY,  # type: ignore[arg-type]
            bot_private_keys=[],
        ),
        ledger=LedgerSettings(
            contract_address=CONTRACT,
            taker_private_key=TAKER_KEY,  # type: ignore[arg-type]
            operator_private_key=OPERATOR_KEY,  # type: ignore[arg-type]
        ),
    )
