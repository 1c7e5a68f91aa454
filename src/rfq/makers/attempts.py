"""Bounded record of (RFQ, agent) pairs an agent has already tried to quote.

Markers stop the quoting loop from re-pricing an RFQ while a submission is
in flight, or after it failed in a way that should not be retried. Each
marker expires when its RFQ's negotiation window closes, and the tracker
never holds more than ``capacity`` markers; the oldest go first.
"""

from collections import OrderedDict


class AttemptTracker:
    """Expiring, capacity-bounded set of quote attempt markers.

    Args:
        capacity: Maximum number of markers retained.
    """

    def __init__(self, capacity: int = 1000) -> None:
        self._capacity = capacity
        # (rfq_id, agent_id) -> expires_at, in insertion order
        self._markers: OrderedDict[tuple[str, str], float] = OrderedDict()

    def __len__(self) -> int:
        return len(self._markers)

    def __contains__(self, key: tuple[str, str]) -> bool:
        return key in self._markers

    def mark(self, rfq_id: str, agent_id: str, expires_at: float) -> None:
        key = (rfq_id, agent_id)
        self._markers[key] = expires_at
        self._markers.move_to_end(key)
        while len(self._markers) > self._capacity:
            self._markers.popitem(last=False)

    def clear(self, rfq_id: str, agent_id: str) -> None:
        self._markers.pop((rfq_id, agent_id), None)

    def is_marked(self, rfq_id: str, agent_id: str) -> bool:
        return (rfq_id, agent_id) in self._markers

    def evict_expired(self, now: float) -> int:
        """Drop markers whose RFQ window has closed. Returns how many were removed."""
        expired = [key for key, expires_at in self._markers.items() if expires_at <= now]
        for key in expired:
            del self._markers[key]
        return len(expired)
