"""wavegraph: a queue-driven workflow graph engine."""

from wavegraph.errors import (
    CapabilityFailure,
    DuplicateNodeError,
    GraphDefinitionError,
    InvalidGraphError,
    MergeFailure,
    PredicateFailure,
    TraversalError,
    UnknownJoinError,
    UnknownNodeError,
    WorkflowError,
)
from wavegraph.graph import (
    CapabilityCatalog,
    ExecutionRecord,
    ExecutionReport,
    FailurePolicy,
    Graph,
    GraphExecutor,
    GraphSpec,
    JoinSpec,
    Message,
    NodeFailure,
    NodeProtocol,
    RunOptions,
    RunStatus,
    run_graph,
)

__all__ = [
    "Graph",
    "GraphExecutor",
    "RunOptions",
    "FailurePolicy",
    "RunStatus",
    "Message",
    "NodeFailure",
    "NodeProtocol",
    "JoinSpec",
    "GraphSpec",
    "CapabilityCatalog",
    "ExecutionRecord",
    "ExecutionReport",
    "run_graph",
    "WorkflowError",
    "GraphDefinitionError",
    "DuplicateNodeError",
    "InvalidGraphError",
    "TraversalError",
    "UnknownNodeError",
    "UnknownJoinError",
    "CapabilityFailure",
    "PredicateFailure",
    "MergeFailure",
]
