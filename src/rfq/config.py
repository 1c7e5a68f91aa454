"""Configuration system using pydantic-settings with environment variable loading."""

from decimal import Decimal
from typing import Literal

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class PriceSettings(BaseSettings):
    """Spot price source and candle sampling settings."""

    model_config = SettingsConfigDict(env_prefix="PRICE_")

    source: Literal["coingecko", "exchange"] = "coingecko"
    coingecko_base_url: str = "https://api.coingecko.com/api/v3"
    coingecko_api_key: SecretStr = SecretStr("")
    request_timeout: float = 10.0
    exchange_id: str = "kraken"  # ccxt exchange id when source == "exchange"
    reference_asset: str = "USD"  # common quote for both legs on the exchange
    coin_ids: dict[str, str] = {"USDC": "usd-coin", "EURC": "euro-coin"}
    cache_ttl_seconds: float = 60.0
    candle_interval_seconds: float = 300.0  # 5 minute sampling cadence
    max_candles: int = 200


class RFQSettings(BaseSettings):
    """Negotiation window and quote collection parameters."""

    model_config = SettingsConfigDict(env_prefix="RFQ_")

    base_currency: str = "USDC"
    quote_currency: str = "EURC"
    negotiation_window_seconds: float = 300.0
    max_quotes_per_rfq: int = 10
    quote_ttl_seconds: int = 300
    max_from_amount: Decimal | None = Decimal("10")  # USDC -> EURC cap, None disables
    allow_duplicate_maker_quotes: bool = True


class MakerSettings(BaseSettings):
    """Automated maker agents."""

    model_config = SettingsConfigDict(env_prefix="MAKER_")

    bot_private_keys: list[SecretStr] = []
    default_private_key: SecretStr = SecretStr("")  # fallback signing identity
    variance_pct: Decimal = Decimal("1.0")  # +/- percent applied to oracle rate
    quote_poll_interval: float = 3.0
    fund_poll_interval: float = 10.0
    max_attempt_markers: int = 1000


class LedgerSettings(BaseSettings):
    """Settlement contract connection and EIP-712 domain."""

    model_config = SettingsConfigDict(env_prefix="LEDGER_")

    rpc_url: str = "https://rpc.testnet.arc.network"
    chain_id: int = 5042002
    contract_address: str = "0x0000000000000000000000000000000000000000"
    domain_name: str = "Arc FX Settlement"
    domain_version: str = "1"
    token_addresses: dict[str, str] = {
        "USDC": "0x3600000000000000000000000000000000000000",
        "EURC": "0x89B50855Aa3bE2F677cD6303Cec089B5F319D72a",
    }
    token_decimals: int = 6
    request_timeout: float = 30.0
    receipt_timeout: float = 120.0
    operator_private_key: SecretStr = SecretStr("")  # signs settle() calls
    taker_private_key: SecretStr = SecretStr("")  # dev only: server-side taker funding


class ApiSettings(BaseSettings):
    """REST server configuration."""

    model_config = SettingsConfigDict(env_prefix="API_")

    host: str = "0.0.0.0"
    port: int = 3001
    enabled: bool = True


class AppSettings(BaseSettings):
    """Root application settings, composing all sub-settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )

    log_level: str = "INFO"
    price: PriceSettings = PriceSettings()
    rfq: RFQSettings = RFQSettings()
    maker: MakerSettings = MakerSettings()
    ledger: LedgerSettings = LedgerSettings()
    api: ApiSettings = ApiSettings()
