"""
Graph Store - the shared arena of nodes, edges and joins.

The store is read by the executor on every step and may be written by node
capabilities while a run is in progress (dynamic expansion). All access goes
through one re-entrant lock; edges are append-only and readers receive
copies, so a reader never observes a torn edge list and a mutation can never
invalidate an iteration in progress.

Endpoint existence is NOT checked when an edge is added: an orchestrator may
register a specialist node and the edge to it in either order. The executor
validates lazily when it dequeues a work item.
"""

import logging
import threading
from typing import Any

from wavegraph.config import DEFAULT_MAX_STEPS
from wavegraph.errors import DuplicateNodeError, GraphDefinitionError, InvalidGraphError
from wavegraph.graph.catalog import CapabilityCatalog
from wavegraph.graph.edge import Edge, EdgeSpec, GraphSpec, JoinSpecModel, Predicate
from wavegraph.graph.join import JoinSpec
from wavegraph.graph.node import NodeProtocol, as_capability

logger = logging.getLogger(__name__)


def _callable_id(func: Any) -> str:
    return getattr(func, "__qualname__", None) or type(func).__name__


class Graph:
    """
    Mutable directed graph of named processing nodes.

    Example:
        graph = Graph("review-loop")
        graph.register_node("draft", write_draft)
        graph.register_node("review", review_draft)
        graph.add_edge("draft", "review")
        graph.add_edge("review", "draft", predicate=needs_work, advance_wave=True)
    """

    def __init__(self, graph_id: str = "graph", description: str = ""):
        self.id = graph_id
        self.description = description
        self._nodes: dict[str, NodeProtocol] = {}
        self._capability_ids: dict[str, str] = {}
        self._edges: list[Edge] = []
        self._edge_ids: set[str] = set()
        self._outgoing: dict[str, list[Edge]] = {}
        self._joins: dict[str, JoinSpec] = {}
        self._lock = threading.RLock()

    # --- node registry ----------------------------------------------------

    def register_node(
        self,
        name: str,
        capability: Any,
        *,
        capability_id: str | None = None,
    ) -> NodeProtocol:
        """
        Register a node under a unique, immutable name.

        Args:
            name: Node name
            capability: NodeProtocol instance or callable taking a Message
            capability_id: Id used when exporting to a GraphSpec (defaults to name)

        Raises:
            DuplicateNodeError: if ``name`` is already registered
        """
        impl = as_capability(capability)
        with self._lock:
            if name in self._nodes:
                raise DuplicateNodeError(name)
            self._nodes[name] = impl
            self._capability_ids[name] = capability_id or name
        logger.debug(f"Registered node '{name}'")
        return impl

    def get_node(self, name: str) -> NodeProtocol | None:
        with self._lock:
            return self._nodes.get(name)

    def has_node(self, name: str) -> bool:
        with self._lock:
            return name in self._nodes

    @property
    def node_names(self) -> list[str]:
        """Registered node names in registration order."""
        with self._lock:
            return list(self._nodes)

    # --- edges ------------------------------------------------------------

    def add_edge(
        self,
        source: str,
        target: str,
        *,
        predicate: Predicate | None = None,
        predicate_id: str | None = None,
        join_group: str | None = None,
        advance_wave: bool = False,
        edge_id: str | None = None,
    ) -> Edge:
        """
        Append an edge. Visible to the very next edges_from() call.

        Args:
            source: Source node name (need not be registered yet)
            target: Target node name (need not be registered yet)
            predicate: Optional pure Message -> bool routing guard
            predicate_id: Catalog id of the predicate, for export
            join_group: Route the output into this join group's barrier
            advance_wave: Deliver the message with wave + 1 (loop-back edges)
            edge_id: Explicit id; defaults to "{source}->{target}#{index}"
        """
        with self._lock:
            index = len(self._edges)
            eid = edge_id or f"{source}->{target}#{index}"
            if eid in self._edge_ids:
                raise GraphDefinitionError(f"Duplicate edge id: '{eid}'")
            edge = Edge(
                id=eid,
                source=source,
                target=target,
                index=index,
                predicate=predicate,
                predicate_id=predicate_id,
                join_group=join_group,
                advance_wave=advance_wave,
            )
            self._edges.append(edge)
            self._edge_ids.add(eid)
            self._outgoing.setdefault(source, []).append(edge)
        logger.debug(f"Added edge '{eid}'")
        return edge

    def edges_from(self, name: str) -> list[Edge]:
        """Current outgoing edges of ``name``, in registration order (a copy)."""
        with self._lock:
            return list(self._outgoing.get(name, ()))

    def edges(self) -> list[Edge]:
        """All edges in registration order (a copy)."""
        with self._lock:
            return list(self._edges)

    # --- joins ------------------------------------------------------------

    def add_join(self, join: JoinSpec, *, wire: bool = True) -> JoinSpec:
        """
        Register a join group.

        With ``wire=True`` one join edge is added from every required source
        to the join target, in required_sources order.
        """
        with self._lock:
            if join.group in self._joins:
                raise GraphDefinitionError(f"Duplicate join group: '{join.group}'")
            self._joins[join.group] = join
            if wire:
                for source in join.required_sources:
                    self.add_edge(source, join.target, join_group=join.group)
        logger.debug(f"Registered join '{join.group}' -> '{join.target}'")
        return join

    def get_join(self, group: str) -> JoinSpec | None:
        with self._lock:
            return self._joins.get(group)

    def joins(self) -> list[JoinSpec]:
        with self._lock:
            return list(self._joins.values())

    # --- declarative form -------------------------------------------------

    def to_spec(self, entry_node: str, max_steps: int = DEFAULT_MAX_STEPS) -> GraphSpec:
        """Export the current structure as a declarative GraphSpec."""
        with self._lock:
            edges = [
                EdgeSpec(
                    id=edge.id,
                    source=edge.source,
                    target=edge.target,
                    predicate=edge.predicate_id
                    or (_callable_id(edge.predicate) if edge.predicate else None),
                    join_group=edge.join_group,
                    advance_wave=edge.advance_wave,
                )
                for edge in self._edges
            ]
            joins = [
                JoinSpecModel(
                    group=join.group,
                    target=join.target,
                    required_sources=list(join.required_sources),
                    merge=join.merge_id or (_callable_id(join.merge) if join.merge else None),
                )
                for join in self._joins.values()
            ]
            return GraphSpec(
                id=self.id,
                entry_node=entry_node,
                nodes=dict(self._capability_ids),
                edges=edges,
                joins=joins,
                max_steps=max_steps,
                description=self.description,
            )

    @classmethod
    def from_spec(cls, spec: GraphSpec, catalog: CapabilityCatalog) -> "Graph":
        """
        Build a Graph from a declarative GraphSpec.

        Raises:
            InvalidGraphError: if ``spec`` is structurally invalid or names
                ids the catalog cannot resolve
        """
        problems = spec.validate()
        problems += catalog.missing_ids(
            capabilities=list(dict.fromkeys(spec.nodes.values())),
            predicates=[e.predicate for e in spec.edges if e.predicate],
            merges=[j.merge for j in spec.joins if j.merge],
        )
        if problems:
            raise InvalidGraphError(spec.id, problems)
        for warning in spec.warnings():
            logger.warning(f"Graph '{spec.id}': {warning}")

        graph = cls(spec.id, description=spec.description)
        for name, cap_id in spec.nodes.items():
            graph.register_node(name, catalog.capability(cap_id), capability_id=cap_id)
        for join in spec.joins:
            graph.add_join(
                JoinSpec(
                    group=join.group,
                    target=join.target,
                    required_sources=tuple(join.required_sources),
                    merge=catalog.merge(join.merge) if join.merge else None,
                    merge_id=join.merge,
                ),
                wire=False,
            )
        for edge_id, edge in zip(spec.edge_ids(), spec.edges, strict=True):
            graph.add_edge(
                edge.source,
                edge.target,
                predicate=catalog.predicate(edge.predicate) if edge.predicate else None,
                predicate_id=edge.predicate,
                join_group=edge.join_group,
                advance_wave=edge.advance_wave,
                edge_id=edge_id,
            )
        logger.info(
            f"Built graph '{spec.id}' with {len(spec.nodes)} nodes, "
            f"{len(spec.edges)} edges, {len(spec.joins)} joins"
        )
        return graph
