"""Graph structures: Nodes, Edges, Joins, and queue-driven execution."""

from wavegraph.graph.catalog import CapabilityCatalog
from wavegraph.graph.edge import Edge, EdgeSpec, GraphSpec, JoinSpecModel, load_graph_spec
from wavegraph.graph.executor import FailurePolicy, GraphExecutor, RunOptions, run_graph
from wavegraph.graph.hooks import (
    ConvergenceHook,
    RunScopedHook,
    StopAfterHook,
    stop_after,
    stop_on_convergence,
)
from wavegraph.graph.join import IncompleteJoin, JoinBarrier, JoinSpec, default_merge
from wavegraph.graph.message import ENTRY, Message, NodeFailure
from wavegraph.graph.node import FunctionNode, NodeProtocol, as_capability
from wavegraph.graph.report import (
    ExecutionRecord,
    ExecutionReport,
    FailureKind,
    FailureMarker,
    RunStatus,
)
from wavegraph.graph.store import Graph

__all__ = [
    # Message
    "Message",
    "NodeFailure",
    "ENTRY",
    # Node
    "NodeProtocol",
    "FunctionNode",
    "as_capability",
    # Edge / definitions
    "Edge",
    "EdgeSpec",
    "JoinSpecModel",
    "GraphSpec",
    "load_graph_spec",
    "CapabilityCatalog",
    # Store
    "Graph",
    # Join
    "JoinSpec",
    "JoinBarrier",
    "IncompleteJoin",
    "default_merge",
    # Executor
    "GraphExecutor",
    "RunOptions",
    "FailurePolicy",
    "run_graph",
    # Report
    "ExecutionRecord",
    "ExecutionReport",
    "FailureMarker",
    "FailureKind",
    "RunStatus",
    # Hooks
    "RunScopedHook",
    "ConvergenceHook",
    "StopAfterHook",
    "stop_on_convergence",
    "stop_after",
]
