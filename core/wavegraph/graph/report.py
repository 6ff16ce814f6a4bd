"""
Execution Report - the outcome of one run.

The report is assembled by the executor and is read-only afterwards:
- records: every invocation in execution order (sequence 1..n)
- last_result_by_node: last record per node. This is plain overwrite
  semantics (a node visited in a loop keeps only its latest record); true
  multi-producer aggregation is the job of joins.
- incomplete_joins / failures / error: terminal markers
"""

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from wavegraph.errors import TraversalError
from wavegraph.graph.join import IncompleteJoin
from wavegraph.graph.message import Message


class RunStatus(StrEnum):
    """How a run ended."""

    COMPLETED = "completed"  # Queue drained
    CYCLE_LIMIT_REACHED = "cycle_limit_reached"  # max_steps hit with work still queued
    CANCELLED = "cancelled"  # Stop requested by on_record or request_stop()
    FAILED = "failed"  # Fatal traversal error


class FailureKind(StrEnum):
    CAPABILITY = "capability"
    PREDICATE = "predicate"
    MERGE = "merge"
    IGNORED_CONTRIBUTION = "ignored_contribution"


@dataclass(frozen=True)
class ExecutionRecord:
    """One node invocation. Append-only, never mutated."""

    node: str
    input: Message
    sequence: int
    output: Message | None = None
    error: str | None = None
    started_at: datetime = field(default_factory=datetime.now)
    latency_ms: int = 0
    run_id: str = ""

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class FailureMarker:
    """A non-record failure observation (quarantined or fatal)."""

    kind: FailureKind
    node: str
    error: str
    sequence: int
    edge_id: str | None = None
    group: str | None = None


@dataclass(frozen=True)
class ExecutionReport:
    """Result of GraphExecutor.run()."""

    run_id: str
    graph_id: str
    entry_node: str
    status: RunStatus
    records: tuple[ExecutionRecord, ...] = ()
    last_result_by_node: Mapping[str, ExecutionRecord] = field(default_factory=dict)
    incomplete_joins: tuple[IncompleteJoin, ...] = ()
    failures: tuple[FailureMarker, ...] = ()
    error: TraversalError | None = None
    pending: tuple[tuple[str, Message], ...] = ()
    started_at: datetime = field(default_factory=datetime.now)
    finished_at: datetime = field(default_factory=datetime.now)

    @property
    def steps(self) -> int:
        return len(self.records)

    @property
    def path(self) -> list[str]:
        """Node names in invocation order."""
        return [r.node for r in self.records]

    @property
    def succeeded(self) -> bool:
        """True when the run was not aborted by a fatal error."""
        return self.status != RunStatus.FAILED

    @property
    def cycle_limit_reached(self) -> bool:
        return self.status == RunStatus.CYCLE_LIMIT_REACHED

    @property
    def duration_ms(self) -> int:
        return int((self.finished_at - self.started_at).total_seconds() * 1000)

    def records_for(self, node: str) -> list[ExecutionRecord]:
        """All records of ``node``, in order."""
        return [r for r in self.records if r.node == node]

    def outputs_for(self, node: str) -> list[Any]:
        """Payloads of ``node``'s successful invocations, in order."""
        return [r.output.payload for r in self.records_for(node) if r.output is not None]

    def has_converged(
        self,
        node: str,
        is_similar: Callable[[Any, Any], bool],
        window: int = 2,
    ) -> bool:
        """
        True if the last ``window`` outputs of ``node`` are pairwise similar
        in succession (e.g. a writer/reviewer loop settling down).
        """
        if window < 2:
            raise ValueError("window must be at least 2")
        outputs = self.outputs_for(node)
        if len(outputs) < window:
            return False
        tail = outputs[-window:]
        return all(is_similar(a, b) for a, b in zip(tail, tail[1:], strict=False))

    def raise_for_status(self) -> None:
        """Raise the fatal error of a failed run; no-op otherwise."""
        if self.status == RunStatus.FAILED and self.error is not None:
            raise self.error

    def summary(self) -> dict[str, Any]:
        """Compact, JSON-friendly overview (for logging and debugging)."""
        return {
            "run_id": self.run_id,
            "graph_id": self.graph_id,
            "status": self.status.value,
            "steps": self.steps,
            "path": self.path,
            "failed_nodes": [r.node for r in self.records if not r.succeeded],
            "incomplete_joins": [
                {"group": j.group, "wave": j.wave, "missing": list(j.missing_sources)}
                for j in self.incomplete_joins
            ],
            "failures": [f.kind.value for f in self.failures],
            "error": str(self.error) if self.error else None,
            "pending": len(self.pending),
            "duration_ms": self.duration_ms,
        }
