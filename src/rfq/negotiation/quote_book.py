"""Per-RFQ quote collections, best-quote selection, and acceptance checks.

Quotes are append-only: nothing is deleted when an RFQ's negotiation
window closes, and only the ``selected`` flag is ever mutated.
"""

from __future__ import annotations

import time
import uuid
from collections.abc import Callable
from decimal import Decimal
from typing import TYPE_CHECKING

from rfq.exceptions import DuplicateQuote, QuoteNotFound, RFQNotFound
from rfq.logging import get_logger
from rfq.models import Quote

if TYPE_CHECKING:
    from rfq.models import RFQ

logger = get_logger(__name__)


def _new_quote_id(now: float) -> str:
    return f"quote_{int(now * 1000)}_{uuid.uuid4().hex[:9]}"


class QuoteBook:
    """In-memory quote store keyed by RFQ id.

    Args:
        allow_duplicate_maker_quotes: When False, a maker may hold at most
            one quote per RFQ and a second submission raises DuplicateQuote.
        clock: Returns the current unix time; injectable for tests.
    """

    def __init__(
        self,
        allow_duplicate_maker_quotes: bool = True,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._allow_duplicates = allow_duplicate_maker_quotes
        self._clock = clock
        self._quotes: dict[str, list[Quote]] = {}

    def open(self, rfq_id: str) -> None:
        """Create an empty collection for a new RFQ."""
        self._quotes.setdefault(rfq_id, [])

    def add(
        self,
        rfq_id: str,
        maker_address: str,
        from_currency: str,
        to_currency: str,
        from_amount: Decimal,
        to_amount: Decimal,
        rate: Decimal,
        expiry: int,
    ) -> str:
        """Append a quote to an RFQ's collection and return its id.

        Raises:
            RFQNotFound: The RFQ was never opened.
            DuplicateQuote: The maker already quoted and duplicates are disabled.
        """
        quotes = self._quotes.get(rfq_id)
        if quotes is None:
            raise RFQNotFound(f"RFQ not found: {rfq_id}", rfq_id=rfq_id)

        if not self._allow_duplicates and self.has_quote_from(rfq_id, maker_address):
            raise DuplicateQuote(
                f"Maker {maker_address} already quoted RFQ {rfq_id}",
                rfq_id=rfq_id,
                maker_address=maker_address,
            )

        now = self._clock()
        quote = Quote(
            id=_new_quote_id(now),
            rfq_id=rfq_id,
            maker_address=maker_address,
            from_currency=from_currency,
            to_currency=to_currency,
            from_amount=from_amount,
            to_amount=to_amount,
            rate=rate,
            expiry=expiry,
            created_at=now,
        )
        quotes.append(quote)
        logger.info(
            "quote_added",
            quote_id=quote.id,
            rfq_id=rfq_id,
            maker=maker_address,
            to_amount=str(to_amount),
        )
        return quote.id

    def list(self, rfq_id: str) -> list[Quote]:
        """All quotes for an RFQ in insertion order (empty if unknown)."""
        return list(self._quotes.get(rfq_id, []))

    def count(self, rfq_id: str) -> int:
        return len(self._quotes.get(rfq_id, []))

    def get(self, rfq_id: str, quote_id: str) -> Quote:
        """Look up one quote of an RFQ.

        Raises:
            QuoteNotFound: No such quote in this RFQ's collection.
        """
        for quote in self._quotes.get(rfq_id, []):
            if quote.id == quote_id:
                return quote
        raise QuoteNotFound(f"Quote not found: {quote_id}", rfq_id=rfq_id, quote_id=quote_id)

    def has_quote_from(self, rfq_id: str, maker_address: str) -> bool:
        maker = maker_address.lower()
        return any(q.maker_address.lower() == maker for q in self._quotes.get(rfq_id, []))

    def best(self, rfq_id: str) -> Quote | None:
        """Quote with the highest destination amount; earliest wins ties.

        Expiry is deliberately not considered here; use
        :func:`validate_for_acceptance` before accepting.
        """
        quotes = self._quotes.get(rfq_id)
        if not quotes:
            return None
        # sorted() is stable, so equal amounts keep insertion order
        return sorted(quotes, key=lambda q: q.to_amount, reverse=True)[0]

    def select(self, rfq_id: str, quote_id: str) -> Quote:
        """Mark one quote selected and clear the flag on its siblings."""
        chosen = self.get(rfq_id, quote_id)
        for quote in self._quotes[rfq_id]:
            quote.selected = quote is chosen
        logger.info("quote_selected", rfq_id=rfq_id, quote_id=quote_id)
        return chosen


def validate_for_acceptance(quote: Quote, rfq: RFQ, now: float | None = None) -> bool:
    """Whether a quote may still be accepted against its RFQ.

    Rejects quotes past their expiry and quotes whose currency pair or
    source amount no longer match the RFQ exactly.
    """
    if now is None:
        now = time.time()
    if quote.expiry < now:
        return False
    if quote.from_currency != rfq.from_currency or quote.to_currency != rfq.to_currency:
        return False
    if quote.from_amount != rfq.from_amount:
        return False
    return True
