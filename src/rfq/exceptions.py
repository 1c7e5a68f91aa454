"""Custom exceptions for the RFQ desk.

Every error raised across negotiation, pricing, ledger and settlement
lives here so the REST layer can map each family to a status code
without importing service modules.
"""


class RFQDeskError(Exception):
    """Base exception for all desk errors."""

    def __init__(self, message: str = "", **details: object) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


# ── Validation (400) ──────────────────────────────


class ValidationError(RFQDeskError):
    """Raised for malformed or missing request fields, before any side effect."""


class InvalidSignature(ValidationError):
    """Raised when a taker signature is missing or not a 65-byte hex string."""


class DuplicateQuote(ValidationError):
    """Raised when a maker quotes the same RFQ twice and duplicates are disabled."""


class QuoteNotAcceptable(ValidationError):
    """Raised when a quote has expired or no longer matches its RFQ."""


# ── Not found (404) ───────────────────────────────


class NotFoundError(RFQDeskError):
    """Raised when an RFQ, quote or trade does not exist."""


class RFQNotFound(NotFoundError):
    """Raised for an unknown RFQ id."""


class QuoteNotFound(NotFoundError):
    """Raised for an unknown quote id."""


class TradeNotFound(NotFoundError):
    """Raised for an unknown trade id, locally or on the ledger."""


# ── Upstream (502) ────────────────────────────────


class UpstreamError(RFQDeskError):
    """Raised when the price source or the ledger fails."""


class RateUnavailable(UpstreamError):
    """Raised when no rate can be fetched and nothing was ever cached."""


class LedgerError(UpstreamError):
    """Raised when a ledger read or write fails. Never retried by the desk."""


# ── Signing identities (500) ──────────────────────


class SigningKeyError(RFQDeskError):
    """Raised when no usable signing identity is configured."""


class MakerKeyNotFound(SigningKeyError):
    """Raised when no configured key derives the requested maker address."""


class MakerKeyMismatch(SigningKeyError):
    """Raised when a resolved key derives a different address than requested."""


# ── Settlement readiness (409) ────────────────────


class SettlementNotReady(RFQDeskError):
    """Raised when the ledger state does not yet permit settlement."""


class AlreadySettled(SettlementNotReady):
    """Raised when the ledger reports the trade as already settled."""


class NotFullyFunded(SettlementNotReady):
    """Raised when either escrow balance is below its committed amount."""


class SettlementTimeNotReached(SettlementNotReady):
    """Raised when the settlement time lies in the future."""
