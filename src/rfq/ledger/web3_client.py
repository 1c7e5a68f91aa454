"""Settlement contract client implementation via web3.py async.

Wraps ``AsyncWeb3`` with locally signed transactions, receipt waiting,
trade-id extraction from the creation event, and uniform error wrapping.
Every failure surfaces as LedgerError; nothing is retried here because
financial writes are not idempotent.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from web3 import AsyncWeb3, Web3

from rfq.config import LedgerSettings
from rfq.exceptions import LedgerError
from rfq.ledger.client import LedgerClient
from rfq.ledger.types import LedgerTrade, TradeTerms
from rfq.logging import get_logger

if TYPE_CHECKING:
    from eth_account.signers.local import LocalAccount

logger = get_logger(__name__)

SETTLEMENT_ABI: list[dict[str, Any]] = [
    {
        "type": "function",
        "name": "createTrade",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "taker", "type": "address"},
            {"name": "maker", "type": "address"},
            {"name": "fromToken", "type": "address"},
            {"name": "toToken", "type": "address"},
            {"name": "fromAmount", "type": "uint256"},
            {"name": "toAmount", "type": "uint256"},
            {"name": "settlementTime", "type": "uint256"},
            {"name": "quoteId", "type": "bytes32"},
            {"name": "takerSig", "type": "bytes"},
            {"name": "makerSig", "type": "bytes"},
        ],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "function",
        "name": "fundTrade",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "tradeId", "type": "uint256"},
            {"name": "amountToFund", "type": "uint256"},
        ],
        "outputs": [],
    },
    {
        "type": "function",
        "name": "settle",
        "stateMutability": "nonpayable",
        "inputs": [{"name": "tradeId", "type": "uint256"}],
        "outputs": [],
    },
    {
        "type": "function",
        "name": "getTrade",
        "stateMutability": "view",
        "inputs": [{"name": "tradeId", "type": "uint256"}],
        "outputs": [
            {"name": "taker", "type": "address"},
            {"name": "maker", "type": "address"},
            {"name": "fromToken", "type": "address"},
            {"name": "toToken", "type": "address"},
            {"name": "fromAmount", "type": "uint256"},
            {"name": "toAmount", "type": "uint256"},
            {"name": "settlementTime", "type": "uint256"},
            {"name": "quoteId", "type": "bytes32"},
            {"name": "state", "type": "uint8"},
            {"name": "takerBalance", "type": "uint256"},
            {"name": "makerBalance", "type": "uint256"},
        ],
    },
    {
        "type": "function",
        "name": "tradeCounter",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint256"}],
    },
]

ERC20_ABI: list[dict[str, Any]] = [
    {
        "type": "function",
        "name": "approve",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "spender", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "type": "function",
        "name": "allowance",
        "stateMutability": "view",
        "inputs": [
            {"name": "owner", "type": "address"},
            {"name": "spender", "type": "address"},
        ],
        "outputs": [{"name": "", "type": "uint256"}],
    },
]


class Web3LedgerClient(LedgerClient):
    """Concrete settlement ledger client over JSON-RPC."""

    def __init__(self, settings: LedgerSettings, w3: AsyncWeb3 | None = None) -> None:
        self._settings = settings
        self._w3 = w3 or AsyncWeb3(
            AsyncWeb3.AsyncHTTPProvider(
                settings.rpc_url,
                request_kwargs={"timeout": settings.request_timeout},
            )
        )
        self._address = Web3.to_checksum_address(settings.contract_address)
        self._contract = self._w3.eth.contract(address=self._address, abi=SETTLEMENT_ABI)

    @property
    def contract_address(self) -> str:
        return self._address

    def _token(self, token: str) -> Any:
        return self._w3.eth.contract(address=Web3.to_checksum_address(token), abi=ERC20_ABI)

    async def _transact(self, signer: LocalAccount, call: Any, label: str) -> dict:
        """Build, sign, send, and wait for a contract call. Returns the receipt."""
        try:
            nonce = await self._w3.eth.get_transaction_count(signer.address, "pending")
            tx = await call.build_transaction(
                {
                    "from": signer.address,
                    "nonce": nonce,
                    "chainId": self._settings.chain_id,
                }
            )
            signed = signer.sign_transaction(tx)
            tx_hash = await self._w3.eth.send_raw_transaction(signed.raw_transaction)
            receipt = await self._w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self._settings.receipt_timeout
            )
        except Exception as e:
            logger.error("ledger_write_failed", operation=label, error=str(e))
            raise LedgerError(f"{label} failed: {e}", operation=label) from e

        if receipt.get("status") == 0:
            hex_hash = Web3.to_hex(tx_hash)
            logger.error("ledger_write_reverted", operation=label, tx_hash=hex_hash)
            raise LedgerError(f"{label} reverted", operation=label, tx_hash=hex_hash)

        logger.info("ledger_write_confirmed", operation=label, tx_hash=Web3.to_hex(tx_hash))
        return dict(receipt)

    async def create_trade(
        self,
        signer: LocalAccount,
        terms: TradeTerms,
        taker_signature: str,
        maker_signature: str,
    ) -> tuple[int, str]:
        call = self._contract.functions.createTrade(
            Web3.to_checksum_address(terms.taker),
            Web3.to_checksum_address(terms.maker),
            Web3.to_checksum_address(terms.from_token),
            Web3.to_checksum_address(terms.to_token),
            terms.from_amount,
            terms.to_amount,
            terms.settlement_time,
            terms.quote_id,
            Web3.to_bytes(hexstr=taker_signature),
            Web3.to_bytes(hexstr=maker_signature),
        )
        receipt = await self._transact(signer, call, "createTrade")
        tx_hash = Web3.to_hex(receipt["transactionHash"])

        trade_id = self._trade_id_from_logs(receipt.get("logs") or [])
        if trade_id is None:
            logger.warning("trade_created_event_missing", tx_hash=tx_hash)
            trade_id = await self.trade_counter() - 1
        return trade_id, tx_hash

    def _trade_id_from_logs(self, logs: list) -> int | None:
        """TradeCreated carries the trade id as its first indexed topic."""
        for log in logs:
            if str(log.get("address", "")).lower() != self._address.lower():
                continue
            topics = log.get("topics") or []
            if len(topics) >= 2:
                return int.from_bytes(bytes(topics[1]), "big")
        return None

    async def fund_trade(self, signer: LocalAccount, trade_id: int, amount: int) -> str:
        call = self._contract.functions.fundTrade(trade_id, amount)
        receipt = await self._transact(signer, call, "fundTrade")
        return Web3.to_hex(receipt["transactionHash"])

    async def settle(self, signer: LocalAccount, trade_id: int) -> str:
        call = self._contract.functions.settle(trade_id)
        receipt = await self._transact(signer, call, "settle")
        return Web3.to_hex(receipt["transactionHash"])

    async def get_trade(self, trade_id: int) -> LedgerTrade:
        try:
            raw = await self._contract.functions.getTrade(trade_id).call()
            return LedgerTrade.from_tuple(trade_id, raw)
        except Exception as e:
            raise LedgerError(f"getTrade({trade_id}) failed: {e}", trade_id=trade_id) from e

    async def trade_counter(self) -> int:
        try:
            return int(await self._contract.functions.tradeCounter().call())
        except Exception as e:
            raise LedgerError(f"tradeCounter failed: {e}") from e

    async def allowance(self, token: str, owner: str) -> int:
        try:
            return int(
                await self._token(token)
                .functions.allowance(Web3.to_checksum_address(owner), self._address)
                .call()
            )
        except Exception as e:
            raise LedgerError(f"allowance failed: {e}", token=token) from e

    async def approve(self, signer: LocalAccount, token: str, amount: int) -> str:
        call = self._token(token).functions.approve(self._address, amount)
        receipt = await self._transact(signer, call, "approve")
        return Web3.to_hex(receipt["transactionHash"])

    async def close(self) -> None:
        provider = self._w3.provider
        disconnect = getattr(provider, "disconnect", None)
        if disconnect is not None:
            await disconnect()
