"""
Tests for graphs that grow while they run.

A capability may register nodes and edges on the graph it is running in;
the executor reads outgoing edges from the live store on every step, so the
additions take effect immediately.
"""

import pytest

from wavegraph.errors import UnknownNodeError
from wavegraph.graph.executor import GraphExecutor, RunOptions
from wavegraph.graph.message import Message
from wavegraph.graph.node import NodeProtocol
from wavegraph.graph.report import RunStatus
from wavegraph.graph.store import Graph


class Orchestrator(NodeProtocol):
    """Spawns one specialist per requested topic."""

    def __init__(self, graph: Graph, edge_first: bool = False):
        self.graph = graph
        self.edge_first = edge_first

    def process(self, message: Message):
        for topic in message.payload:
            name = f"specialist-{topic}"
            if self.edge_first:
                self.graph.add_edge("orchestrator", name)
                self.graph.register_node(name, lambda m, t=topic: f"{t} handled")
            else:
                self.graph.register_node(name, lambda m, t=topic: f"{t} handled")
                self.graph.add_edge("orchestrator", name)
        return "planned"


@pytest.mark.asyncio
@pytest.mark.parametrize("edge_first", [False, True])
async def test_node_and_edge_added_mid_run_are_traversed(edge_first):
    graph = Graph("dynamic")
    graph.register_node("orchestrator", Orchestrator(graph, edge_first=edge_first))

    report = await GraphExecutor().run(
        graph, "orchestrator", ["billing", "legal"], RunOptions(max_steps=10)
    )

    assert report.status == RunStatus.COMPLETED
    assert report.path == ["orchestrator", "specialist-billing", "specialist-legal"]
    assert report.last_result_by_node["specialist-legal"].output.payload == "legal handled"
    assert graph.node_names == ["orchestrator", "specialist-billing", "specialist-legal"]


@pytest.mark.asyncio
async def test_edge_added_from_downstream_node_is_followed():
    graph = Graph("rewire")

    def first(message):
        graph.add_edge("second", "third")
        return "first"

    graph.register_node("first", first)
    graph.register_node("second", lambda m: "second")
    graph.register_node("third", lambda m: "third")
    graph.add_edge("first", "second")

    report = await GraphExecutor().run(graph, "first", None, RunOptions(max_steps=10))

    assert report.path == ["first", "second", "third"]


@pytest.mark.asyncio
async def test_edge_to_node_never_registered_fails_lazily():
    graph = Graph("dangling")

    def planner(message):
        graph.add_edge("planner", "ghost")
        return "planned"

    graph.register_node("planner", planner)

    report = await GraphExecutor().run(graph, "planner", None, RunOptions(max_steps=10))

    assert report.status == RunStatus.FAILED
    assert isinstance(report.error, UnknownNodeError)
    assert report.error.node == "ghost"
    assert report.path == ["planner"]
