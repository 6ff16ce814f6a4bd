"""
Edge Protocol - How nodes connect in a graph.

Edges define:
1. Source and target nodes
2. An optional routing predicate (pure Message -> bool)
3. An optional join group (the message feeds a JoinBarrier instead of the
   target directly)
4. Whether traversal opens a new wave (loop-back edges)

Two representations live here:
- Edge: the runtime record stored in a Graph, carrying real callables.
- EdgeSpec / JoinSpecModel / GraphSpec: pydantic models for the declarative
  graph definition format, where predicates, merges and capabilities are
  referenced by id and resolved through a CapabilityCatalog.
"""

import json
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from wavegraph.config import DEFAULT_MAX_STEPS
from wavegraph.graph.message import Message

Predicate = Callable[[Message], Any]


@dataclass(frozen=True)
class Edge:
    """A directed link stored in the graph. Never mutated after registration."""

    id: str
    source: str
    target: str
    index: int
    predicate: Predicate | None = None
    predicate_id: str | None = None
    join_group: str | None = None
    advance_wave: bool = False

    @property
    def is_join(self) -> bool:
        return self.join_group is not None

    def allows(self, message: Message) -> bool:
        """
        Evaluate the routing predicate against a node's output.

        Edges without a predicate are always taken. Exceptions raised by the
        predicate propagate to the caller, which classifies them.
        """
        if self.predicate is None:
            return True
        return bool(self.predicate(message))


# ---------------------------------------------------------------------------
# Declarative definitions
# ---------------------------------------------------------------------------


class EdgeSpec(BaseModel):
    """
    Specification for an edge between nodes.

    Examples:
        # Plain chain link
        EdgeSpec(source="draft", target="review")

        # Predicate-routed branch
        EdgeSpec(source="review", target="draft", predicate="needs_revision",
                 advance_wave=True)

        # Join input
        EdgeSpec(source="expert_a", target="aggregate", join_group="experts")
    """

    source: str = Field(description="Source node name")
    target: str = Field(description="Target node name")
    predicate: str | None = Field(default=None, description="Predicate id in the catalog")
    join_group: str | None = Field(default=None, description="Join group this edge feeds")
    advance_wave: bool = Field(default=False, description="Deliver the message with wave + 1")
    id: str | None = None
    description: str = ""

    model_config = {"extra": "forbid"}


class JoinSpecModel(BaseModel):
    """Specification for a join: fire target once every source contributed in a wave."""

    group: str
    target: str
    required_sources: list[str] = Field(min_length=1)
    merge: str | None = Field(default=None, description="Merge function id in the catalog")

    model_config = {"extra": "forbid"}

    @field_validator("required_sources")
    @classmethod
    def check_unique_sources(cls, value: list[str]) -> list[str]:
        if len(set(value)) != len(value):
            raise ValueError("required_sources must not contain duplicates")
        return value


class GraphSpec(BaseModel):
    """
    Complete declarative description of a graph.

    Example:
        GraphSpec(
            id="experts",
            entry_node="split",
            nodes={"split": "split", "a": "expert", "b": "expert", "agg": "aggregate"},
            edges=[
                EdgeSpec(source="split", target="a"),
                EdgeSpec(source="split", target="b"),
            ],
            joins=[JoinSpecModel(group="g", target="agg", required_sources=["a", "b"])],
        )
    """

    id: str
    entry_node: str = Field(description="Node the run is seeded at")
    nodes: dict[str, str] = Field(
        default_factory=dict, description="Node name -> capability id (ordered)"
    )
    edges: list[EdgeSpec] = Field(default_factory=list, description="Edges in registration order")
    joins: list[JoinSpecModel] = Field(default_factory=list)
    max_steps: int = Field(default=DEFAULT_MAX_STEPS, gt=0)
    description: str = ""

    model_config = {"extra": "forbid"}

    @model_validator(mode="after")
    def check_unique_join_groups(self) -> "GraphSpec":
        groups = [j.group for j in self.joins]
        if len(set(groups)) != len(groups):
            raise ValueError("join groups must be unique")
        return self

    def get_join(self, group: str) -> JoinSpecModel | None:
        for join in self.joins:
            if join.group == group:
                return join
        return None

    def get_outgoing_edges(self, node: str) -> list[EdgeSpec]:
        """Edges leaving a node, in registration order."""
        return [e for e in self.edges if e.source == node]

    def edge_ids(self) -> list[str]:
        """Ids of all edges, using the graph's default naming where unset."""
        return [e.id or f"{e.source}->{e.target}#{i}" for i, e in enumerate(self.edges)]

    def validate(self) -> list[str]:
        """
        Validate the graph structure. Returns a list of problems (empty if valid).

        Only contradictions are problems here. Endpoints that are not declared
        yet and unreachable nodes are legal for graphs that grow at run time;
        see warnings().
        """
        errors = []

        if self.entry_node not in self.nodes:
            errors.append(f"Entry node '{self.entry_node}' not found")

        for edge_id, edge in zip(self.edge_ids(), self.edges, strict=True):
            if edge.join_group is None:
                continue
            join = self.get_join(edge.join_group)
            if join is None:
                errors.append(f"Edge '{edge_id}' references missing join '{edge.join_group}'")
                continue
            if edge.target != join.target:
                errors.append(
                    f"Edge '{edge_id}' targets '{edge.target}' but join "
                    f"'{join.group}' fires '{join.target}'"
                )
            if edge.source not in join.required_sources:
                errors.append(
                    f"Edge '{edge_id}' feeds join '{join.group}' from '{edge.source}', "
                    f"which is not one of its required sources {join.required_sources}"
                )

        return errors

    def warnings(self) -> list[str]:
        """
        Structural oddities that do not stop the graph from being built.

        Covers edge and join endpoints missing from ``nodes`` (they fail
        lazily with UnknownNodeError if still missing when reached) and
        nodes that no edge reaches from the entry node.
        """
        warnings = []

        for edge_id, edge in zip(self.edge_ids(), self.edges, strict=True):
            if edge.source not in self.nodes:
                warnings.append(f"Edge '{edge_id}' references undeclared source '{edge.source}'")
            if edge.target not in self.nodes:
                warnings.append(f"Edge '{edge_id}' references undeclared target '{edge.target}'")

        for join in self.joins:
            if join.target not in self.nodes:
                warnings.append(f"Join '{join.group}' references undeclared target '{join.target}'")
            for source in join.required_sources:
                if source not in self.nodes:
                    warnings.append(f"Join '{join.group}' references undeclared source '{source}'")

        # Unreachable nodes
        reachable: set[str] = set()
        to_visit = [self.entry_node]
        while to_visit:
            current = to_visit.pop()
            if current in reachable:
                continue
            reachable.add(current)
            for edge in self.get_outgoing_edges(current):
                if edge.join_group is not None:
                    join = self.get_join(edge.join_group)
                    to_visit.append(join.target if join else edge.target)
                else:
                    to_visit.append(edge.target)

        for name in self.nodes:
            if name not in reachable:
                warnings.append(f"Node '{name}' is unreachable from entry")

        return warnings


def load_graph_spec(path: str | Path) -> GraphSpec:
    """Load a GraphSpec from a JSON file."""
    data: dict[str, Any] = json.loads(Path(path).read_text(encoding="utf-8"))
    return GraphSpec.model_validate(data)
