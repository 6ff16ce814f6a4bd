"""
Tests for the Graph store (node registry, edge set, joins).

Covers:
- Unique node names (DuplicateNodeError)
- Lazy endpoint validation on add_edge
- edges_from ordering, copy-on-read and live visibility
- Join registration and wiring
- Concurrent append / read
"""

import threading

import pytest

from wavegraph.errors import DuplicateNodeError, GraphDefinitionError
from wavegraph.graph.join import JoinSpec
from wavegraph.graph.message import Message
from wavegraph.graph.node import FunctionNode, NodeProtocol
from wavegraph.graph.store import Graph


class EchoNode(NodeProtocol):
    def process(self, message: Message):
        return message.payload


# ---------------------------------------------------------------------------
# Node registry
# ---------------------------------------------------------------------------


def test_register_node_accepts_protocol_and_callable():
    graph = Graph("g")
    node = EchoNode()

    assert graph.register_node("echo", node) is node
    wrapped = graph.register_node("upper", lambda m: m.payload.upper())

    assert isinstance(wrapped, FunctionNode)
    assert graph.node_names == ["echo", "upper"]
    assert graph.has_node("upper")
    assert graph.get_node("missing") is None


def test_register_node_rejects_duplicate_name():
    graph = Graph("g")
    graph.register_node("a", EchoNode())

    with pytest.raises(DuplicateNodeError) as exc_info:
        graph.register_node("a", EchoNode())

    assert exc_info.value.name == "a"
    # Original registration is untouched
    assert isinstance(graph.get_node("a"), EchoNode)


def test_register_node_rejects_non_callable():
    graph = Graph("g")
    with pytest.raises(TypeError):
        graph.register_node("bad", 42)


# ---------------------------------------------------------------------------
# Edges
# ---------------------------------------------------------------------------


def test_add_edge_does_not_require_registered_endpoints():
    graph = Graph("g")
    edge = graph.add_edge("not-yet", "also-not-yet")

    assert edge.source == "not-yet"
    assert edge.id == "not-yet->also-not-yet#0"
    assert graph.edges_from("not-yet") == [edge]


def test_edges_from_keeps_registration_order():
    graph = Graph("g")
    first = graph.add_edge("a", "b")
    graph.add_edge("c", "d")
    second = graph.add_edge("a", "e")

    assert graph.edges_from("a") == [first, second]
    assert [e.index for e in graph.edges()] == [0, 1, 2]


def test_edges_from_returns_copy_that_sees_later_appends_on_next_call():
    graph = Graph("g")
    graph.add_edge("a", "b")

    snapshot = graph.edges_from("a")
    graph.add_edge("a", "c")

    assert len(snapshot) == 1
    assert [e.target for e in graph.edges_from("a")] == ["b", "c"]


def test_duplicate_edge_id_rejected():
    graph = Graph("g")
    graph.add_edge("a", "b", edge_id="link")
    with pytest.raises(GraphDefinitionError):
        graph.add_edge("a", "c", edge_id="link")


def test_edge_predicate_evaluation():
    graph = Graph("g")
    edge = graph.add_edge("a", "b", predicate=lambda m: m.payload > 3)

    assert edge.allows(Message(payload=5)) is True
    assert edge.allows(Message(payload=1)) is False
    assert graph.add_edge("a", "c").allows(Message(payload=None)) is True


# ---------------------------------------------------------------------------
# Joins
# ---------------------------------------------------------------------------


def test_add_join_wires_one_edge_per_source():
    graph = Graph("g")
    join = JoinSpec(group="experts", target="agg", required_sources=("y", "z"))

    graph.add_join(join)

    assert graph.get_join("experts") is join
    wired = [(e.source, e.target, e.join_group) for e in graph.edges()]
    assert wired == [("y", "agg", "experts"), ("z", "agg", "experts")]


def test_add_join_without_wiring():
    graph = Graph("g")
    graph.add_join(JoinSpec(group="g1", target="t", required_sources=("a",)), wire=False)

    assert graph.edges() == []
    assert len(graph.joins()) == 1


def test_add_join_rejects_duplicate_group():
    graph = Graph("g")
    graph.add_join(JoinSpec(group="g1", target="t", required_sources=("a",)))
    with pytest.raises(GraphDefinitionError):
        graph.add_join(JoinSpec(group="g1", target="u", required_sources=("b",)))


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------


def test_concurrent_appends_and_reads_never_tear():
    graph = Graph("g")
    errors: list[str] = []

    def writer(offset: int) -> None:
        for i in range(200):
            graph.add_edge("hub", f"t{offset}-{i}")

    def reader() -> None:
        for _ in range(200):
            edges = graph.edges_from("hub")
            indices = [e.index for e in edges]
            if indices != sorted(indices):
                errors.append("out of order")

    threads = [threading.Thread(target=writer, args=(n,)) for n in range(4)]
    threads += [threading.Thread(target=reader) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    edges = graph.edges_from("hub")
    assert not errors
    assert len(edges) == 800
    assert len({e.id for e in edges}) == 800
