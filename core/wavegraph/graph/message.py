"""
Message - the unit of data flowing along edges.

A message carries an opaque payload plus provenance:
- origin_node: the node (or join group) that produced it
- sequence: per-run monotonically increasing number assigned by the executor
- wave: lineage id grouping messages descended from one root invocation or
  one loop iteration; joins only pair inputs of the same wave
"""

from dataclasses import dataclass, field, replace
from typing import Any

ENTRY = "__entry__"


@dataclass(frozen=True)
class Message:
    """Payload plus provenance. Immutable once created."""

    payload: Any
    origin_node: str = ENTRY
    sequence: int = 0
    wave: int = 0

    @classmethod
    def seed(cls, payload: Any) -> "Message":
        """Build the initial message of a run."""
        return cls(payload=payload, origin_node=ENTRY, sequence=0, wave=0)

    def next_wave(self) -> "Message":
        """Return a copy that opens the next lineage (wave + 1)."""
        return replace(self, wave=self.wave + 1)

    def with_payload(self, payload: Any) -> "Message":
        """Return a copy carrying a different payload, same provenance."""
        return replace(self, payload=payload)


@dataclass(frozen=True)
class NodeFailure:
    """
    Typed failure a capability may return instead of raising.

    Treated exactly like a raised exception: the executor records it and
    applies the run's failure policy.
    """

    error: str
    details: dict[str, Any] = field(default_factory=dict)
