"""EIP-712 typed trade message shared by taker and maker signatures.

The taker signs the same structure in their own wallet; the field order,
types and domain below must match the settlement contract exactly or
``createTrade`` reverts with a signature mismatch.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from eth_account.messages import encode_typed_data
from web3 import Web3

from rfq.ledger.types import TradeTerms

if TYPE_CHECKING:
    from eth_account.signers.local import LocalAccount

_SIGNATURE_RE = re.compile(r"^0x[0-9a-fA-F]{130}$")

TRADE_TYPES: dict[str, list[dict[str, str]]] = {
    "EIP712Domain": [
        {"name": "name", "type": "string"},
        {"name": "version", "type": "string"},
        {"name": "chainId", "type": "uint256"},
        {"name": "verifyingContract", "type": "address"},
    ],
    "Trade": [
        {"name": "taker", "type": "address"},
        {"name": "maker", "type": "address"},
        {"name": "fromToken", "type": "address"},
        {"name": "toToken", "type": "address"},
        {"name": "fromAmount", "type": "uint256"},
        {"name": "toAmount", "type": "uint256"},
        {"name": "settlementTime", "type": "uint256"},
        {"name": "quoteId", "type": "bytes32"},
    ],
}


@dataclass(frozen=True)
class TradeDomain:
    """EIP-712 domain separating this contract deployment."""

    name: str
    version: str
    chain_id: int
    verifying_contract: str

    def as_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "chainId": self.chain_id,
            "verifyingContract": Web3.to_checksum_address(self.verifying_contract),
        }


def quote_id_hash(quote_id: str) -> bytes:
    """bytes32 quote identifier: keccak256 of the quote id's UTF-8 bytes."""
    return bytes(Web3.keccak(text=quote_id))


def is_well_formed_signature(signature: str | None) -> bool:
    """A 65-byte, 0x-prefixed hex signature."""
    return bool(signature) and bool(_SIGNATURE_RE.match(signature))


def build_typed_data(domain: TradeDomain, terms: TradeTerms) -> dict[str, Any]:
    """Full EIP-712 payload for a trade, as both wallets sign it."""
    return {
        "types": TRADE_TYPES,
        "primaryType": "Trade",
        "domain": domain.as_dict(),
        "message": {
            "taker": Web3.to_checksum_address(terms.taker),
            "maker": Web3.to_checksum_address(terms.maker),
            "fromToken": Web3.to_checksum_address(terms.from_token),
            "toToken": Web3.to_checksum_address(terms.to_token),
            "fromAmount": terms.from_amount,
            "toAmount": terms.to_amount,
            "settlementTime": terms.settlement_time,
            "quoteId": terms.quote_id,
        },
    }


def sign_trade(account: LocalAccount, domain: TradeDomain, terms: TradeTerms) -> str:
    """Sign the trade message locally and return a 0x-prefixed signature."""
    signable = encode_typed_data(full_message=build_typed_data(domain, terms))
    signed = account.sign_message(signable)
    return "0x" + bytes(signed.signature).hex()
