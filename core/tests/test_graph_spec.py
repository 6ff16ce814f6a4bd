"""
Tests for declarative graph definitions.

Covers:
- GraphSpec.validate() problem reporting and GraphSpec.warnings()
- Pydantic-level validation of JoinSpecModel / GraphSpec
- CapabilityCatalog registration and lookup
- Graph.from_spec() + execution, GraphExecutor.run_spec(), and Graph.to_spec() export
- load_graph_spec() from a JSON file
"""

import json

import pytest
from pydantic import ValidationError

from wavegraph.errors import GraphDefinitionError, InvalidGraphError
from wavegraph.graph.catalog import CapabilityCatalog
from wavegraph.graph.edge import EdgeSpec, GraphSpec, JoinSpecModel, load_graph_spec
from wavegraph.graph.executor import GraphExecutor, RunOptions
from wavegraph.graph.report import RunStatus
from wavegraph.graph.store import Graph

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def catalog() -> CapabilityCatalog:
    catalog = CapabilityCatalog()

    @catalog.capability_fn("split")
    def split(message):
        return 5

    @catalog.capability_fn("expert")
    def expert(message):
        return message.payload + 1

    catalog.register_capability("identity", lambda m: m.payload)
    catalog.register_predicate("positive", lambda m: m.payload > 0)

    @catalog.merge_fn("sum")
    def total(parts):
        return sum(m.payload for m in parts.values())

    return catalog


def experts_spec(**overrides) -> GraphSpec:
    data = {
        "id": "experts",
        "entry_node": "split",
        "nodes": {"split": "split", "a": "expert", "b": "expert", "agg": "identity"},
        "edges": [
            {"source": "split", "target": "a", "predicate": "positive"},
            {"source": "split", "target": "b"},
            {"source": "a", "target": "agg", "join_group": "g"},
            {"source": "b", "target": "agg", "join_group": "g"},
        ],
        "joins": [{"group": "g", "target": "agg", "required_sources": ["a", "b"], "merge": "sum"}],
        "max_steps": 20,
    }
    data.update(overrides)
    return GraphSpec.model_validate(data)


# ---------------------------------------------------------------------------
# 1. validate()
# ---------------------------------------------------------------------------


def test_valid_spec_has_no_problems():
    assert experts_spec().validate() == []


def test_missing_entry_node():
    problems = experts_spec(entry_node="nope").validate()
    assert "Entry node 'nope' not found" in problems


def test_edge_with_undeclared_endpoints_is_a_warning():
    spec = experts_spec()
    spec.edges.append(EdgeSpec(source="agg", target="ghost"))
    spec.edges.append(EdgeSpec(source="phantom", target="a"))

    assert spec.validate() == []
    assert spec.warnings() == [
        "Edge 'agg->ghost#4' references undeclared target 'ghost'",
        "Edge 'phantom->a#5' references undeclared source 'phantom'",
    ]


def test_edge_with_unknown_join_group():
    spec = experts_spec()
    spec.edges.append(EdgeSpec(source="a", target="agg", join_group="other"))

    assert any("missing join 'other'" in p for p in spec.validate())


def test_join_edge_target_must_match_join():
    spec = experts_spec()
    spec.edges[2] = EdgeSpec(source="a", target="b", join_group="g")

    assert any("but join 'g' fires 'agg'" in p for p in spec.validate())


def test_join_edge_source_must_be_required():
    spec = experts_spec()
    spec.edges.append(EdgeSpec(source="split", target="agg", join_group="g"))

    assert any("not one of its required sources" in p for p in spec.validate())


def test_join_with_undeclared_nodes_is_a_warning():
    spec = experts_spec(
        joins=[{"group": "g", "target": "sink", "required_sources": ["a", "c"]}],
    )

    warnings = spec.warnings()

    assert "Join 'g' references undeclared target 'sink'" in warnings
    assert "Join 'g' references undeclared source 'c'" in warnings


def test_unreachable_node():
    nodes = {"split": "split", "a": "expert", "b": "expert", "agg": "identity"}
    spec = experts_spec(nodes={**nodes, "lost": "identity"})

    assert spec.validate() == []
    assert spec.warnings() == ["Node 'lost' is unreachable from entry"]


def test_model_level_validation():
    with pytest.raises(ValidationError):
        JoinSpecModel(group="g", target="t", required_sources=[])
    with pytest.raises(ValidationError):
        JoinSpecModel(group="g", target="t", required_sources=["a", "a"])
    with pytest.raises(ValidationError):
        experts_spec(
            joins=[
                {"group": "g", "target": "agg", "required_sources": ["a"]},
                {"group": "g", "target": "agg", "required_sources": ["b"]},
            ]
        )
    with pytest.raises(ValidationError):
        experts_spec(max_steps=0)
    with pytest.raises(ValidationError):
        EdgeSpec(source="a", target="b", weight=3)


def test_edge_ids_default_to_graph_naming():
    spec = experts_spec()
    spec.edges[1] = EdgeSpec(source="split", target="b", id="to-b")

    assert spec.edge_ids() == ["split->a#0", "to-b", "a->agg#2", "b->agg#3"]


# ---------------------------------------------------------------------------
# 2. CapabilityCatalog
# ---------------------------------------------------------------------------


def test_catalog_rejects_duplicates_and_unknown_ids(catalog):
    with pytest.raises(GraphDefinitionError):
        catalog.register_capability("split", lambda m: None)
    with pytest.raises(GraphDefinitionError, match="Unknown predicate id: 'missing'"):
        catalog.predicate("missing")
    with pytest.raises(GraphDefinitionError):
        catalog.merge("missing")
    with pytest.raises(TypeError):
        catalog.register_capability("bad", "not callable")

    assert catalog.missing_ids(["split", "x"], ["positive"], ["y"]) == [
        "Unknown capability id: 'x'",
        "Unknown merge id: 'y'",
    ]


# ---------------------------------------------------------------------------
# 3. Building and running
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_from_spec_builds_runnable_graph(catalog):
    spec = experts_spec()
    graph = Graph.from_spec(spec, catalog)

    report = await GraphExecutor().run(
        graph, spec.entry_node, None, RunOptions(max_steps=spec.max_steps)
    )

    assert report.status == RunStatus.COMPLETED
    assert report.path == ["split", "a", "b", "agg"]
    assert report.last_result_by_node["agg"].output.payload == 12
    assert graph.get_join("g").merge_id == "sum"


def test_from_spec_reports_unresolvable_ids(catalog):
    spec = experts_spec(
        nodes={"split": "split", "a": "expert", "b": "mystery", "agg": "identity"}
    )
    spec.edges[0] = EdgeSpec(source="split", target="a", predicate="unknown")

    with pytest.raises(InvalidGraphError) as exc_info:
        Graph.from_spec(spec, catalog)

    assert "Unknown capability id: 'mystery'" in exc_info.value.problems
    assert "Unknown predicate id: 'unknown'" in exc_info.value.problems


def test_from_spec_rejects_structural_problems(catalog):
    with pytest.raises(InvalidGraphError) as exc_info:
        Graph.from_spec(experts_spec(entry_node="nope"), catalog)

    assert exc_info.value.graph_id == "experts"
    assert "Entry node 'nope' not found" in exc_info.value.problems


def test_to_spec_round_trips_structure(catalog):
    spec = experts_spec()

    exported = Graph.from_spec(spec, catalog).to_spec("split", max_steps=spec.max_steps)

    assert exported.nodes == spec.nodes
    assert exported.edge_ids() == spec.edge_ids()
    assert [
        (e.source, e.target, e.predicate, e.join_group, e.advance_wave) for e in exported.edges
    ] == [(e.source, e.target, e.predicate, e.join_group, e.advance_wave) for e in spec.edges]
    assert exported.joins == spec.joins
    assert exported.validate() == []


@pytest.mark.asyncio
async def test_to_spec_round_trips_graph_that_expands_at_run_time(catalog, caplog):
    graph = Graph("router")
    graph.register_node("a", catalog.capability("identity"), capability_id="identity")
    graph.add_edge("a", "specialist")

    spec = graph.to_spec("a")

    assert spec.validate() == []
    assert spec.warnings() == ["Edge 'a->specialist#0' references undeclared target 'specialist'"]

    with caplog.at_level("WARNING", logger="wavegraph.graph.store"):
        rebuilt = Graph.from_spec(spec, catalog)
    assert "undeclared target 'specialist'" in caplog.text

    rebuilt.register_node("specialist", catalog.capability("expert"), capability_id="expert")
    report = await GraphExecutor().run(rebuilt, "a", 1, RunOptions(max_steps=5))

    assert report.status == RunStatus.COMPLETED
    assert report.path == ["a", "specialist"]
    assert report.last_result_by_node["specialist"].output.payload == 2


@pytest.mark.asyncio
async def test_run_spec_uses_entry_node_and_step_cap(catalog):
    report = await GraphExecutor().run_spec(experts_spec(), catalog)

    assert report.status == RunStatus.COMPLETED
    assert report.entry_node == "split"
    assert report.last_result_by_node["agg"].output.payload == 12

    capped = await GraphExecutor().run_spec(experts_spec(max_steps=2), catalog)

    assert capped.status == RunStatus.CYCLE_LIMIT_REACHED
    assert capped.path == ["split", "a"]
    assert [name for name, _ in capped.pending] == ["b"]


@pytest.mark.asyncio
async def test_run_spec_explicit_options_win(catalog):
    report = await GraphExecutor().run_spec(
        experts_spec(max_steps=2), catalog, options=RunOptions(max_steps=10)
    )

    assert report.status == RunStatus.COMPLETED
    assert report.path == ["split", "a", "b", "agg"]


@pytest.mark.asyncio
async def test_run_spec_rejects_invalid_spec(catalog):
    with pytest.raises(InvalidGraphError):
        await GraphExecutor().run_spec(experts_spec(entry_node="nope"), catalog)


def test_to_spec_names_inline_callables():
    graph = Graph("inline")
    graph.register_node("a", lambda m: m.payload)
    graph.register_node("b", lambda m: m.payload)

    def is_ready(message):
        return True

    graph.add_edge("a", "b", predicate=is_ready)

    spec = graph.to_spec("a")

    assert spec.edges[0].predicate.endswith("is_ready")
    assert spec.nodes == {"a": "a", "b": "b"}


def test_load_graph_spec_from_json(tmp_path, catalog):
    path = tmp_path / "experts.json"
    path.write_text(json.dumps(experts_spec().model_dump()), encoding="utf-8")

    loaded = load_graph_spec(path)

    assert loaded == experts_spec()
    assert Graph.from_spec(loaded, catalog).node_names == ["split", "a", "b", "agg"]
