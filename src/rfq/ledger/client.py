"""Abstract ledger client interface.

Defines the contract for the settlement ledger. Negotiation, maker and
settlement code depend only on this interface; the concrete web3
implementation lives in ``web3_client``.

Write operations take the signing account explicitly, since takers,
makers and the settlement operator each sign their own transactions.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from rfq.ledger.types import LedgerTrade, TradeTerms
from rfq.logging import get_logger

if TYPE_CHECKING:
    from eth_account.signers.local import LocalAccount

logger = get_logger(__name__)


class LedgerClient(ABC):
    """Abstract base class for settlement ledger clients."""

    @property
    @abstractmethod
    def contract_address(self) -> str:
        """Settlement contract address (EIP-712 verifying contract and token spender)."""
        ...

    @abstractmethod
    async def create_trade(
        self,
        signer: LocalAccount,
        terms: TradeTerms,
        taker_signature: str,
        maker_signature: str,
    ) -> tuple[int, str]:
        """Create a trade and wait for inclusion.

        Returns:
            Tuple of (on-chain trade id, transaction hash).

        Raises:
            LedgerError: The call reverted or the node failed.
        """
        ...

    @abstractmethod
    async def fund_trade(self, signer: LocalAccount, trade_id: int, amount: int) -> str:
        """Move ``amount`` of the signer's side token into escrow. Returns tx hash."""
        ...

    @abstractmethod
    async def settle(self, signer: LocalAccount, trade_id: int) -> str:
        """Release both escrowed amounts to their counterparties. Returns tx hash."""
        ...

    @abstractmethod
    async def get_trade(self, trade_id: int) -> LedgerTrade:
        """Read one trade. Raises LedgerError if it cannot be read."""
        ...

    @abstractmethod
    async def trade_counter(self) -> int:
        """Next trade id to be assigned. Ids start at 1."""
        ...

    @abstractmethod
    async def allowance(self, token: str, owner: str) -> int:
        """ERC-20 allowance granted by ``owner`` to the settlement contract."""
        ...

    @abstractmethod
    async def approve(self, signer: LocalAccount, token: str, amount: int) -> str:
        """Approve the settlement contract to spend ``amount``. Returns tx hash."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release transport resources."""
        ...

    async def all_trades(self) -> list[LedgerTrade]:
        """Every readable trade from 1 up to the counter.

        Individual unreadable trades are skipped; a failure to read the
        counter itself propagates.
        """
        counter = await self.trade_counter()
        trades: list[LedgerTrade] = []
        for trade_id in range(1, counter):
            try:
                trades.append(await self.get_trade(trade_id))
            except Exception as e:
                logger.debug("ledger_trade_unreadable", trade_id=trade_id, error=str(e))
        return trades
