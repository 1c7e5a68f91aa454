"""Signing identities derived from configured private keys.

Each maker agent's address is derived deterministically from its key.
The key ring resolves an address back to the account that can sign for
it, falling back to a single default identity.
"""

import re

from eth_account import Account
from eth_account.signers.local import LocalAccount

from rfq.exceptions import MakerKeyMismatch, MakerKeyNotFound, SigningKeyError
from rfq.logging import get_logger

logger = get_logger(__name__)

_KEY_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")


def normalize_private_key(key: str | None) -> str | None:
    """Trim, add a 0x prefix, and validate 64 hex characters. None if unusable."""
    if not key:
        return None
    trimmed = key.strip()
    if not trimmed:
        return None
    normalized = trimmed if trimmed.startswith("0x") else f"0x{trimmed}"
    if not _KEY_RE.match(normalized):
        logger.warning("invalid_private_key_format", prefix=normalized[:6])
        return None
    return normalized


def account_from_key(key: str | None) -> LocalAccount | None:
    normalized = normalize_private_key(key)
    if normalized is None:
        return None
    return Account.from_key(normalized)


class KeyRing:
    """Address -> signing account lookup over configured keys.

    Args:
        keys: Explicit identities (maker agents, dev taker, operator).
        default_key: Fallback identity used when no explicit key matches.
    """

    def __init__(self, keys: list[str] | None = None, default_key: str | None = None) -> None:
        self._accounts: dict[str, LocalAccount] = {}
        for key in keys or []:
            account = account_from_key(key)
            if account is not None:
                self._accounts[account.address.lower()] = account
        self._default = account_from_key(default_key)

    @property
    def default(self) -> LocalAccount | None:
        return self._default

    def add(self, account: LocalAccount) -> None:
        self._accounts[account.address.lower()] = account

    def find(self, address: str) -> LocalAccount | None:
        """Exact match among explicit identities, then the default."""
        account = self._accounts.get(address.lower())
        if account is not None:
            return account
        if self._default is not None and self._default.address.lower() == address.lower():
            return self._default
        return None

    def resolve_maker(self, maker_address: str) -> LocalAccount:
        """Signing account for a maker address.

        Raises:
            MakerKeyNotFound: No explicit identity matches and no default is set.
            MakerKeyMismatch: Only the default is available and it derives a
                different address.
        """
        account = self._accounts.get(maker_address.lower()) or self._default
        if account is None:
            raise MakerKeyNotFound(
                f"Maker private key not found for address {maker_address}",
                maker_address=maker_address,
            )
        if account.address.lower() != maker_address.lower():
            raise MakerKeyMismatch(
                f"Private key does not match maker address. "
                f"Expected {maker_address}, got {account.address}",
                expected=maker_address,
                actual=account.address,
            )
        return account

    def require(self, address: str) -> LocalAccount:
        """Signing account for any configured address."""
        account = self.find(address)
        if account is None:
            raise SigningKeyError(f"No signing key configured for {address}", address=address)
        return account
