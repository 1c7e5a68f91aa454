"""Ledger layer -- settlement contract client, EIP-712 trade message, and signing identities."""

from rfq.ledger.client import LedgerClient
from rfq.ledger.eip712 import TradeDomain, quote_id_hash, sign_trade
from rfq.ledger.identities import KeyRing
from rfq.ledger.types import LedgerTrade, LedgerTradeState, TokenRegistry, TradeTerms
from rfq.ledger.web3_client import Web3LedgerClient

__all__ = [
    "KeyRing",
    "LedgerClient",
    "LedgerTrade",
    "LedgerTradeState",
    "TokenRegistry",
    "TradeDomain",
    "TradeTerms",
    "Web3LedgerClient",
    "quote_id_hash",
    "sign_trade",
]
