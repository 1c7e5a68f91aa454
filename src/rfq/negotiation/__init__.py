"""Negotiation layer -- RFQ registry and per-RFQ quote books."""

from rfq.negotiation.quote_book import QuoteBook, validate_for_acceptance
from rfq.negotiation.registry import RequestRegistry

__all__ = ["QuoteBook", "RequestRegistry", "validate_for_acceptance"]
