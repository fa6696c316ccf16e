import pytest

from texgraph.graph import Graph, GraphEdge, GraphNode, GraphStore, NodeSource, merge_graph, restrict_graph
from texgraph.graph.types import EntityType, RelationType, edge_key, label_to_id


def _node(node_id, **kwargs):
    kwargs.setdefault("type", EntityType.DEFINITION)
    kwargs.setdefault("title", node_id)
    return GraphNode(id=node_id, **kwargs)


def _edge(source, target, chunk="c0", **kwargs):
    kwargs.setdefault("type", RelationType.DEPENDS_ON)
    return GraphEdge(source=source, target=target, meta={"chunkId": chunk}, **kwargs)


def test_merge_is_idempotent():
    existing = Graph(nodes=[_node("a", meta={"k": 1})], edges=[])
    batch = Graph(
        nodes=[_node("a", content="body", meta={"j": 2}), _node("b")],
        edges=[_edge("b", "a")],
    )

    once = merge_graph(existing, batch)
    twice = merge_graph(existing, once)

    assert twice == once


def test_merge_overrides_fields_and_merges_meta():
    existing = Graph(nodes=[_node("a", content="old", meta={"chunkId": "c0", "keep": True})])
    incoming = Graph(nodes=[_node("a", title="New title", meta={"chunkId": "c1"})])

    (merged,) = merge_graph(existing, incoming).nodes

    assert merged.title == "New title"
    assert merged.content == "old"
    assert merged.meta == {"chunkId": "c1", "keep": True}


def test_edges_are_keyed_by_chunk():
    store = GraphStore()
    store.merge([_node("a"), _node("b")], [_edge("a", "b", "c0"), _edge("a", "b", "c0", evidence="quote")])
    store.merge(edges=[_edge("a", "b", "c1")])

    assert store.edge_count == 2
    edges = {edge_key(e): e for e in store.snapshot().edges}
    assert edges[("a", "DependsOn", "b", "c0")].evidence == "quote"


def test_self_loop_edges_are_rejected():
    with pytest.raises(ValueError):
        GraphEdge(type=RelationType.USES, source="a", target="a")


def test_update_node_patches_fields_and_merges_meta():
    store = GraphStore()
    store.merge([_node("a", content="x^2", meta={"chunkId": "c0"})])

    assert store.update_node("a", {"content": "x^{2}", "id": "other", "meta": {"originalContent": "x^2"}})

    node = store.get("a")
    assert node.id == "a"
    assert node.content == "x^{2}"
    assert node.meta == {"chunkId": "c0", "originalContent": "x^2"}
    assert "other" not in store


def test_update_nodes_ignores_unknown_ids():
    store = GraphStore()
    store.merge([_node("a"), _node("b")])

    updated = store.update_nodes([("a", {"title": "A"}), ("missing", {"title": "M"}), ("b", {"title": "B"})])

    assert updated == 2
    assert [n.title for n in store.snapshot().nodes] == ["A", "B"]


def test_snapshot_is_not_affected_by_later_merges():
    store = GraphStore()
    store.merge([_node("a")])
    snapshot = store.snapshot()

    store.merge([_node("b"), _node("a", title="changed")])

    assert [n.id for n in snapshot.nodes] == ["a"]
    assert snapshot.nodes[0].title == "a"


def test_replace_and_clear():
    store = GraphStore(Graph(nodes=[_node("a")]))
    store.replace(Graph(nodes=[_node("b")], edges=[]))

    assert "a" not in store and "b" in store
    store.clear()
    assert len(store) == 0


def test_node_source_uses_camel_case_aliases():
    source = NodeSource.model_validate({"file": "f.tex", "latexLabel": "def:x", "sectionPath": ["f.tex", "S"]})

    assert source.latex_label == "def:x"
    assert source.model_dump(by_alias=True)["sectionPath"] == ["f.tex", "S"]


def test_label_to_id_strips_type_prefixes():
    assert label_to_id("def:x") == "tex:x"
    assert label_to_id("thm:main-result") == "tex:main-result"
    assert label_to_id("custom:x") == "tex:custom:x"
    assert label_to_id("plain") == "tex:plain"


def test_label_to_id_keeps_the_full_label_when_the_short_id_is_taken():
    claimed = {"tex:1": "thm:1"}

    assert label_to_id("thm:1", claimed) == "tex:1"
    assert label_to_id("eq:1", claimed) == "tex:eq:1"
    assert label_to_id("def:2", claimed) == "tex:2"


def test_restrict_graph_keeps_selected_types_only():
    graph = Graph(
        nodes=[
            GraphNode(id="d", type=EntityType.DEFINITION, title="D"),
            GraphNode(id="n", type=EntityType.NOTATION, title="N"),
            GraphNode(id="t", type=EntityType.THEOREM, title="T"),
        ],
        edges=[
            GraphEdge(type=RelationType.DEPENDS_ON, source="t", target="d"),
            GraphEdge(type=RelationType.PROVES, source="t", target="n"),
        ],
    )

    only_theorems = restrict_graph(graph, [EntityType.THEOREM], [RelationType.PROVES])
    assert [n.id for n in only_theorems.nodes] == ["t"]
    assert only_theorems.edges == []

    with_definitions = restrict_graph(graph, [EntityType.THEOREM, EntityType.DEFINITION], [RelationType.PROVES])
    assert [n.id for n in with_definitions.nodes] == ["d", "n", "t"]
    assert [(e.source, e.target) for e in with_definitions.edges] == [("t", "n")]
