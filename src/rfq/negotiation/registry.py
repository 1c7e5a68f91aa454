"""Request-for-quote registry.

RFQs are immutable once created. They leave the pending feed by attrition:
after the negotiation window elapses, or once the quote cap is reached.
There is no explicit "closed" state and expired RFQs remain readable.
"""

import time
import uuid
from collections.abc import Callable
from decimal import Decimal, InvalidOperation

from rfq.config import RFQSettings
from rfq.exceptions import RFQNotFound, ValidationError
from rfq.logging import get_logger
from rfq.models import RFQ, Tenor
from rfq.negotiation.quote_book import QuoteBook

logger = get_logger(__name__)


def _new_rfq_id(now: float) -> str:
    return f"rfq_{int(now * 1000)}_{uuid.uuid4().hex[:9]}"


class RequestRegistry:
    """In-memory RFQ store feeding the maker agents.

    Args:
        quote_book: Receives an empty collection for each new RFQ and is
            consulted for quote counts when building the pending feed.
        settings: Supported pair, negotiation window, quote cap, size limit.
        clock: Returns the current unix time; injectable for tests.
    """

    def __init__(
        self,
        quote_book: QuoteBook,
        settings: RFQSettings | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._quote_book = quote_book
        self._settings = settings or RFQSettings()
        self._clock = clock
        self._rfqs: dict[str, RFQ] = {}

    def create(
        self,
        from_currency: str,
        from_amount: Decimal | str,
        to_currency: str,
        tenor: Tenor | str,
        taker_address: str,
    ) -> str:
        """Validate and store a new RFQ, returning its id.

        Raises:
            ValidationError: Missing fields, non-positive or unparseable
                amount, unsupported pair or tenor, or amount over the cap.
        """
        if not from_currency or not to_currency or not taker_address or not tenor:
            raise ValidationError("Invalid RFQ request: from, to, tenor and takerAddress required")

        from_currency = from_currency.upper()
        to_currency = to_currency.upper()
        supported = {self._settings.base_currency, self._settings.quote_currency}
        if {from_currency, to_currency} != supported:
            raise ValidationError(
                f"Unsupported currency pair {from_currency}/{to_currency}",
                supported=sorted(supported),
            )

        try:
            amount = Decimal(str(from_amount))
        except InvalidOperation as exc:
            raise ValidationError(f"Invalid amount: {from_amount}") from exc
        if not amount.is_finite() or amount <= 0:
            raise ValidationError(f"Invalid amount: {from_amount}")

        limit = self._settings.max_from_amount
        if (
            limit is not None
            and from_currency == self._settings.base_currency
            and amount >= limit
        ):
            raise ValidationError(
                f"{from_currency} to {to_currency} trades are limited to less than "
                f"{limit} {from_currency}",
                limit=str(limit),
            )

        try:
            tenor = Tenor(tenor)
        except ValueError as exc:
            raise ValidationError(f"Invalid tenor: {tenor}") from exc

        now = self._clock()
        rfq = RFQ(
            id=_new_rfq_id(now),
            from_currency=from_currency,
            from_amount=amount,
            to_currency=to_currency,
            tenor=tenor,
            taker_address=taker_address,
            created_at=now,
        )
        self._rfqs[rfq.id] = rfq
        self._quote_book.open(rfq.id)

        logger.info(
            "rfq_created",
            rfq_id=rfq.id,
            pair=f"{from_currency}/{to_currency}",
            amount=str(amount),
            tenor=tenor.value,
        )
        return rfq.id

    def get(self, rfq_id: str) -> RFQ | None:
        return self._rfqs.get(rfq_id)

    def require(self, rfq_id: str) -> RFQ:
        rfq = self._rfqs.get(rfq_id)
        if rfq is None:
            raise RFQNotFound(f"RFQ not found: {rfq_id}", rfq_id=rfq_id)
        return rfq

    def is_negotiable(self, rfq: RFQ, now: float | None = None) -> bool:
        """Younger than the negotiation window and below the quote cap."""
        if now is None:
            now = self._clock()
        if rfq.age(now) > self._settings.negotiation_window_seconds:
            return False
        return self._quote_book.count(rfq.id) < self._settings.max_quotes_per_rfq

    def negotiation_deadline(self, rfq: RFQ) -> float:
        return rfq.created_at + self._settings.negotiation_window_seconds

    def list_pending(self) -> list[RFQ]:
        """Negotiable RFQs, newest first. This is the feed makers poll."""
        now = self._clock()
        pending = [rfq for rfq in self._rfqs.values() if self.is_negotiable(rfq, now)]
        return sorted(pending, key=lambda r: r.created_at, reverse=True)
