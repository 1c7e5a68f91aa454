"""Settlement layer -- trade creation, funding, and ledger-verified settlement."""

from rfq.settlement.orchestrator import SettlementOrchestrator

__all__ = ["SettlementOrchestrator"]
