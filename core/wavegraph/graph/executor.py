"""
Graph Executor - queue-driven traversal of a Graph.

The executor:
1. Seeds a FIFO work queue with (entry_node, initial message)
2. Dequeues one item at a time, resolves the node (lazily) and invokes it
3. Appends an ExecutionRecord and calls the on_record hook
4. Reads the node's outgoing edges from the LIVE graph, evaluates predicates,
   routes join edges into the JoinBarrier and enqueues everything else
5. Stops when the queue drains, max_steps is exhausted, a stop is requested,
   or a fatal error occurs, and returns an ExecutionReport

There is no cycle detection: feedback loops are bounded by max_steps (and,
optionally, by an on_record hook that decides the loop has converged).
Nothing is retried; retry is a new run.
"""

import asyncio
import inspect
import logging
import threading
import time
import uuid
from collections import deque
from collections.abc import Callable
from contextvars import ContextVar
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import StrEnum
from types import MappingProxyType
from typing import Any

from wavegraph.config import (
    get_default_failure_policy,
    get_default_max_concurrency,
    get_default_max_steps,
)
from wavegraph.errors import (
    CapabilityFailure,
    MergeFailure,
    PredicateFailure,
    TraversalError,
    UnknownJoinError,
    UnknownNodeError,
)
from wavegraph.graph.catalog import CapabilityCatalog
from wavegraph.graph.edge import Edge, GraphSpec
from wavegraph.graph.join import JoinBarrier
from wavegraph.graph.message import Message, NodeFailure
from wavegraph.graph.node import NodeProtocol
from wavegraph.graph.report import (
    ExecutionRecord,
    ExecutionReport,
    FailureKind,
    FailureMarker,
    RunStatus,
)
from wavegraph.graph.store import Graph
from wavegraph.observability.logging import get_trace_context, trace_context

RecordHook = Callable[[ExecutionRecord], Any]

# Run id of the run whose step is executing in the current task or thread
_current_run_id: ContextVar[str | None] = ContextVar("wavegraph_current_run", default=None)


class FailurePolicy(StrEnum):
    """What a capability or predicate failure does to the run."""

    FAIL_FAST = "fail_fast"  # Abort the run, report truncated at the failure
    QUARANTINE = "quarantine"  # Record it, skip the node's edges, keep going


def _default_failure_policy() -> FailurePolicy:
    return FailurePolicy(get_default_failure_policy())


@dataclass
class RunOptions:
    """
    Options for a single run.

    max_steps is mandatory in spirit: it defaults to the configured cap and
    can never be None or non-positive, so every run is bounded.
    on_record receives each ExecutionRecord; returning True stops the run.
    A hook with start_run/finish_run methods (see hooks.RunScopedHook) is told
    when each run begins and ends, so the same options can be reused.
    """

    max_steps: int = field(default_factory=get_default_max_steps)
    on_record: RecordHook | None = None
    failure_policy: FailurePolicy = field(default_factory=_default_failure_policy)

    # Optional fan-out dispatch: invoke up to max_concurrency queued items at
    # once, then apply their results in dequeue order.
    parallel: bool = False
    max_concurrency: int = field(default_factory=get_default_max_concurrency)

    def __post_init__(self) -> None:
        if (
            self.max_steps is None
            or isinstance(self.max_steps, bool)
            or not isinstance(self.max_steps, int)
            or self.max_steps <= 0
        ):
            raise ValueError(
                f"max_steps must be a positive integer (unbounded runs are not "
                f"supported), got {self.max_steps!r}"
            )
        self.failure_policy = FailurePolicy(self.failure_policy)
        if self.max_concurrency < 1:
            raise ValueError(f"max_concurrency must be >= 1, got {self.max_concurrency}")


@dataclass
class _Invocation:
    """Raw outcome of calling one capability, before it is applied."""

    node: str
    message: Message
    payload: Any = None
    wave: int = 0
    error: str | None = None
    exception: BaseException | None = None
    started_at: datetime = field(default_factory=datetime.now)
    latency_ms: int = 0


@dataclass
class _RunState:
    """Mutable state owned by exactly one run."""

    run_id: str
    options: RunOptions
    queue: deque[tuple[str, Message]] = field(default_factory=deque)
    barrier: JoinBarrier = field(default_factory=JoinBarrier)
    records: list[ExecutionRecord] = field(default_factory=list)
    last_result: dict[str, ExecutionRecord] = field(default_factory=dict)
    failures: list[FailureMarker] = field(default_factory=list)
    discarded: list[tuple[str, Message]] = field(default_factory=list)
    status: RunStatus | None = None
    error: TraversalError | None = None
    stop_requested: threading.Event = field(default_factory=threading.Event)
    _message_seq: int = 0

    def next_message_sequence(self) -> int:
        self._message_seq += 1
        return self._message_seq

    @property
    def fail_fast(self) -> bool:
        return self.options.failure_policy == FailurePolicy.FAIL_FAST

    def abort(self, error: TraversalError) -> None:
        self.error = error
        self.status = RunStatus.FAILED


class GraphExecutor:
    """
    Runs graphs.

    Example:
        executor = GraphExecutor()
        report = await executor.run(
            graph,
            entry_node="draft",
            initial_payload={"topic": "tides"},
            options=RunOptions(max_steps=20, failure_policy=FailurePolicy.QUARANTINE),
        )
        report.raise_for_status()
    """

    def __init__(self, default_options: RunOptions | None = None):
        """
        Initialize the executor.

        Args:
            default_options: Options used when run() is called without any
        """
        self.default_options = default_options
        self.logger = logging.getLogger(__name__)
        self._active_runs: dict[str, _RunState] = {}
        self._runs_lock = threading.Lock()

    def request_stop(self, run_id: str | None = None) -> None:
        """
        Request a graceful stop.

        The targeted run stops at its next step boundary and returns a
        CANCELLED report. Safe to call from any thread.

        Args:
            run_id: Run to stop. When omitted, a call made from inside a run
                on this executor (a capability or on_record hook) stops that
                run only; a call from outside stops every active run.
        """
        with self._runs_lock:
            if run_id is None and _current_run_id.get() in self._active_runs:
                run_id = _current_run_id.get()
            if run_id is None:
                targets = list(self._active_runs.values())
            else:
                targets = [self._active_runs[run_id]] if run_id in self._active_runs else []

        if not targets:
            self.logger.debug("⏹ Stop requested but no matching run is active")
            return
        for state in targets:
            state.stop_requested.set()
            self.logger.info(
                f"⏹ Stop requested for run {state.run_id[:8]} - will stop at next step boundary"
            )

    async def run(
        self,
        graph: Graph,
        entry_node: str,
        initial_payload: Any = None,
        options: RunOptions | None = None,
    ) -> ExecutionReport:
        """
        Execute ``graph`` starting at ``entry_node``.

        Args:
            graph: The graph (may be mutated by capabilities during the run)
            entry_node: Name of the first node to invoke
            initial_payload: Payload of the seed message
            options: Run options (falls back to the executor defaults)

        Returns:
            ExecutionReport; fatal errors are in report.error
        """
        options = options or self.default_options or RunOptions()

        state = _RunState(run_id=uuid.uuid4().hex, options=options)
        state.queue.append((entry_node, Message.seed(initial_payload)))
        started_at = datetime.now()

        with self._runs_lock:
            self._active_runs[state.run_id] = state
        run_token = _current_run_id.set(state.run_id)
        token = trace_context.set(
            {**get_trace_context(), "run_id": state.run_id, "graph_id": graph.id}
        )
        hook = options.on_record
        try:
            self.logger.info(f"🚀 Starting run of graph '{graph.id}'")
            self.logger.info(
                f"   Entry node: {entry_node}, max_steps: {options.max_steps}, "
                f"policy: {options.failure_policy.value}, parallel: {options.parallel}"
            )
            if hasattr(hook, "start_run"):
                hook.start_run(state.run_id)
            await self._drain(graph, state)
        finally:
            if hasattr(hook, "finish_run"):
                hook.finish_run(state.run_id)
            trace_context.reset(token)
            _current_run_id.reset(run_token)
            with self._runs_lock:
                self._active_runs.pop(state.run_id, None)

        if state.status is None:
            state.status = RunStatus.CYCLE_LIMIT_REACHED if state.queue else RunStatus.COMPLETED

        report = ExecutionReport(
            run_id=state.run_id,
            graph_id=graph.id,
            entry_node=entry_node,
            status=state.status,
            records=tuple(state.records),
            last_result_by_node=MappingProxyType(dict(state.last_result)),
            incomplete_joins=tuple(state.barrier.pending()),
            failures=tuple(state.failures),
            error=state.error,
            pending=tuple(state.discarded) + tuple(state.queue),
            started_at=started_at,
            finished_at=datetime.now(),
        )
        self._log_outcome(report)
        return report

    async def run_spec(
        self,
        spec: GraphSpec,
        catalog: CapabilityCatalog,
        initial_payload: Any = None,
        options: RunOptions | None = None,
    ) -> ExecutionReport:
        """
        Build a graph from a declarative GraphSpec and run it from its entry node.

        Without explicit options the run is capped at ``spec.max_steps``; the
        remaining options come from the executor defaults or configuration.

        Raises:
            InvalidGraphError: if the spec cannot be built
        """
        graph = Graph.from_spec(spec, catalog)
        if options is None:
            base = self.default_options or RunOptions()
            options = replace(base, max_steps=spec.max_steps)
        return await self.run(graph, spec.entry_node, initial_payload, options)

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    async def _drain(self, graph: Graph, state: _RunState) -> None:
        options = state.options

        while state.queue:
            if state.stop_requested.is_set():
                self.logger.info("⏹ Stop detected - stopping at step boundary")
                state.status = RunStatus.CANCELLED
                return

            remaining = options.max_steps - len(state.records)
            if remaining <= 0:
                self.logger.warning(
                    f"⟳ Step limit reached ({options.max_steps}) with "
                    f"{len(state.queue)} work item(s) still queued"
                )
                return

            width = min(options.max_concurrency, remaining) if options.parallel else 1
            batch, unknown = self._take_batch(graph, state, width)

            invocations = await self._invoke_batch(batch, parallel=options.parallel)

            for index, invocation in enumerate(invocations):
                if await self._apply(graph, invocation, state):
                    unapplied = invocations[index + 1 :]
                    state.discarded.extend((inv.node, inv.message) for inv in unapplied)
                    if unknown is not None:
                        state.discarded.append(unknown)
                    return

            if unknown is not None:
                name = unknown[0]
                self.logger.error(f"   ✗ Node not found: {name}")
                state.discarded.append(unknown)
                state.abort(UnknownNodeError(name))
                return

    def _take_batch(
        self,
        graph: Graph,
        state: _RunState,
        width: int,
    ) -> tuple[list[tuple[str, NodeProtocol, Message]], tuple[str, Message] | None]:
        """
        Dequeue up to ``width`` items, resolving each node lazily.

        The batch ends at the first unresolvable node, whose work item is
        returned separately so earlier items still apply in order.
        """
        batch: list[tuple[str, NodeProtocol, Message]] = []
        while state.queue and len(batch) < width:
            name, message = state.queue.popleft()
            impl = graph.get_node(name)
            if impl is None:
                return batch, (name, message)
            batch.append((name, impl, message))
        return batch, None

    # ------------------------------------------------------------------
    # Invocation
    # ------------------------------------------------------------------

    async def _invoke_batch(
        self,
        batch: list[tuple[str, NodeProtocol, Message]],
        parallel: bool,
    ) -> list[_Invocation]:
        if not parallel or len(batch) <= 1:
            return [await self._invoke(name, impl, msg, offload=False) for name, impl, msg in batch]

        self.logger.info(f"   ⑂ Dispatching {len(batch)} work items concurrently")
        return list(
            await asyncio.gather(
                *(self._invoke(name, impl, msg, offload=True) for name, impl, msg in batch)
            )
        )

    async def _invoke(
        self,
        name: str,
        impl: NodeProtocol,
        message: Message,
        offload: bool,
    ) -> _Invocation:
        """Call one capability and capture its outcome. Never raises Exception."""
        token = trace_context.set({**get_trace_context(), "node_id": name, "wave": message.wave})
        invocation = _Invocation(node=name, message=message, wave=message.wave)
        start = time.perf_counter()
        try:
            if offload and not impl.is_async:
                result = await asyncio.to_thread(impl.process, message)
            else:
                result = impl.process(message)
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            invocation.error = f"{type(e).__name__}: {e}"
            invocation.exception = e
        else:
            if isinstance(result, NodeFailure):
                invocation.error = result.error
            elif isinstance(result, Message):
                invocation.payload = result.payload
                invocation.wave = result.wave
            else:
                invocation.payload = result
        finally:
            invocation.latency_ms = int((time.perf_counter() - start) * 1000)
            trace_context.reset(token)
        return invocation

    # ------------------------------------------------------------------
    # Applying results
    # ------------------------------------------------------------------

    async def _apply(self, graph: Graph, invocation: _Invocation, state: _RunState) -> bool:
        """
        Record one invocation and route its output.

        Returns:
            True if the run must stop (fatal error or stop requested)
        """
        name = invocation.node
        output = None
        if invocation.error is None:
            output = Message(
                payload=invocation.payload,
                origin_node=name,
                sequence=state.next_message_sequence(),
                wave=invocation.wave,
            )

        record = ExecutionRecord(
            node=name,
            input=invocation.message,
            sequence=len(state.records) + 1,
            output=output,
            error=invocation.error,
            started_at=invocation.started_at,
            latency_ms=invocation.latency_ms,
            run_id=state.run_id,
        )
        state.records.append(record)
        state.last_result[name] = record

        self.logger.info(
            f"▶ Step {record.sequence}: {name} (wave {invocation.message.wave})",
            extra={"node_id": name, "sequence": record.sequence, "latency_ms": record.latency_ms},
        )

        failure: CapabilityFailure | None = None
        if invocation.error is not None:
            failure = CapabilityFailure(name, invocation.error)
            failure.__cause__ = invocation.exception
            state.failures.append(
                FailureMarker(
                    kind=FailureKind.CAPABILITY,
                    node=name,
                    error=invocation.error,
                    sequence=record.sequence,
                )
            )
            self.logger.error(f"   ✗ Failed: {invocation.error}")
        else:
            self.logger.debug(f"   ✓ Success (latency: {record.latency_ms}ms)")

        stop = await self._notify(state.options.on_record, record)

        if failure is not None and state.fail_fast:
            state.abort(failure)
            return True
        if stop or state.stop_requested.is_set():
            self.logger.info(f"⏹ Stop requested after step {record.sequence}")
            state.status = RunStatus.CANCELLED
            return True
        if failure is not None:
            self.logger.warning(f"   ⊘ Quarantined '{name}': outgoing edges skipped")
            return False

        return self._route(graph, name, output, state)

    @staticmethod
    async def _notify(hook: RecordHook | None, record: ExecutionRecord) -> bool:
        if hook is None:
            return False
        result = hook(record)
        if inspect.isawaitable(result):
            result = await result
        return result is True

    def _route(self, graph: Graph, name: str, output: Message, state: _RunState) -> bool:
        """Follow the live outgoing edges of ``name``. Returns True on a fatal error."""
        for edge in graph.edges_from(name):
            try:
                taken = edge.allows(output)
            except Exception as e:
                error = PredicateFailure(name, edge.id, f"{type(e).__name__}: {e}")
                error.__cause__ = e
                state.failures.append(
                    FailureMarker(
                        kind=FailureKind.PREDICATE,
                        node=name,
                        error=error.error,
                        sequence=len(state.records),
                        edge_id=edge.id,
                    )
                )
                self.logger.error(
                    f"   ✗ Predicate on '{edge.id}' failed: {error.error}",
                    extra={"edge_id": edge.id},
                )
                if state.fail_fast:
                    state.abort(error)
                    return True
                continue

            if not taken:
                self.logger.debug(f"   ↛ Edge '{edge.id}' not taken")
                continue

            message = output.next_wave() if edge.advance_wave else output
            if edge.join_group is not None:
                if self._contribute(graph, edge, message, state):
                    return True
                continue

            self.logger.debug(f"   → {edge.target}")
            state.queue.append((edge.target, message))

        return False

    def _contribute(self, graph: Graph, edge: Edge, message: Message, state: _RunState) -> bool:
        """Hand a join edge's message to the barrier. Returns True on a fatal error."""
        group = edge.join_group
        join = graph.get_join(group)
        if join is None:
            self.logger.error(f"   ✗ Join group not found: {group}")
            state.abort(UnknownJoinError(group, node=edge.source))
            return True

        try:
            contributions = state.barrier.contribute(join, edge.source, message)
        except ValueError as e:
            state.failures.append(
                FailureMarker(
                    kind=FailureKind.IGNORED_CONTRIBUTION,
                    node=edge.source,
                    error=str(e),
                    sequence=len(state.records),
                    edge_id=edge.id,
                    group=group,
                )
            )
            self.logger.warning(f"   ⚠ Ignored join contribution: {e}", extra={"group": group})
            return False

        if contributions is None:
            return False

        try:
            payload = join.merge_contributions(contributions)
        except Exception as e:
            error = MergeFailure(group, join.target, f"{type(e).__name__}: {e}")
            error.__cause__ = e
            state.failures.append(
                FailureMarker(
                    kind=FailureKind.MERGE,
                    node=join.target,
                    error=error.error,
                    sequence=len(state.records),
                    group=group,
                )
            )
            self.logger.error(f"   ✗ Merge for join '{group}' failed: {error.error}")
            if state.fail_fast:
                state.abort(error)
                return True
            return False

        merged = Message(
            payload=payload,
            origin_node=group,
            sequence=state.next_message_sequence(),
            wave=message.wave,
        )
        self.logger.info(
            f"   ⑃ Join '{group}' complete for wave {message.wave}: firing {join.target}",
            extra={"group": group, "wave": message.wave},
        )
        state.queue.append((join.target, merged))
        return False

    def _log_outcome(self, report: ExecutionReport) -> None:
        if report.status == RunStatus.FAILED:
            self.logger.error(f"✗ Run failed after {report.steps} steps: {report.error}")
        elif report.status == RunStatus.CYCLE_LIMIT_REACHED:
            self.logger.warning(f"⟳ Run stopped at step limit ({report.steps} steps)")
        elif report.status == RunStatus.CANCELLED:
            self.logger.info(f"⏹ Run cancelled after {report.steps} steps")
        else:
            self.logger.info(f"✓ Run complete: {report.steps} steps")
        self.logger.info(f"   Path: {' → '.join(report.path)}")
        for incomplete in report.incomplete_joins:
            self.logger.warning(
                f"   ⧗ Incomplete join '{incomplete.group}' (wave {incomplete.wave}): "
                f"missing {list(incomplete.missing_sources)}"
            )


def run_graph(
    graph: Graph,
    entry_node: str,
    initial_payload: Any = None,
    options: RunOptions | None = None,
) -> ExecutionReport:
    """Synchronous convenience wrapper around GraphExecutor.run()."""
    return asyncio.run(GraphExecutor().run(graph, entry_node, initial_payload, options))
