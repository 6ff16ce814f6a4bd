"""
Error types raised by graph construction and graph execution.

Two families:
- GraphDefinitionError: structural problems, raised immediately to the caller
  of the registration / definition API.
- TraversalError: problems discovered while a run is draining its queue.
  These are recorded in the ExecutionReport; fatal ones also stop the run.
"""


class WorkflowError(Exception):
    """Base class for wavegraph errors."""


# ---------------------------------------------------------------------------
# Definition-time errors
# ---------------------------------------------------------------------------


class GraphDefinitionError(WorkflowError, ValueError):
    """Raised when a graph definition is structurally invalid."""


class DuplicateNodeError(GraphDefinitionError):
    """Raised when a node name is registered twice."""

    def __init__(self, name: str):
        super().__init__(f"Node '{name}' is already registered")
        self.name = name


class InvalidGraphError(GraphDefinitionError):
    """Raised when a declarative GraphSpec fails validation."""

    def __init__(self, graph_id: str, problems: list[str]):
        super().__init__(f"Invalid graph '{graph_id}': {'; '.join(problems)}")
        self.graph_id = graph_id
        self.problems = list(problems)


# ---------------------------------------------------------------------------
# Traversal-time errors
# ---------------------------------------------------------------------------


class TraversalError(WorkflowError, RuntimeError):
    """Base class for errors discovered during a run."""

    def __init__(self, message: str, node: str | None = None):
        super().__init__(message)
        self.node = node


class UnknownNodeError(TraversalError):
    """Raised when a work item names a node that is not registered."""

    def __init__(self, name: str):
        super().__init__(f"Node not found: '{name}'", node=name)


class UnknownJoinError(TraversalError):
    """Raised when an edge routes into a join group with no JoinSpec."""

    def __init__(self, group: str, node: str | None = None):
        super().__init__(f"Join group not found: '{group}'", node=node)
        self.group = group


class CapabilityFailure(TraversalError):
    """A node capability raised or returned a NodeFailure."""

    def __init__(self, node: str, error: str):
        super().__init__(f"Node '{node}' failed: {error}", node=node)
        self.error = error


class PredicateFailure(TraversalError):
    """A routing predicate raised instead of returning a boolean."""

    def __init__(self, node: str, edge_id: str, error: str):
        super().__init__(f"Predicate on edge '{edge_id}' failed: {error}", node=node)
        self.edge_id = edge_id
        self.error = error


class MergeFailure(TraversalError):
    """A join's merge function raised."""

    def __init__(self, group: str, node: str, error: str):
        super().__init__(f"Merge for join '{group}' failed: {error}", node=node)
        self.group = group
        self.error = error
