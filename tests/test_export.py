import json

import pytest

from texgraph.graph import Graph, GraphEdge, GraphNode, NodeSource, export_graph_json, import_graph_json
from texgraph.graph.types import EntityType, RelationType


def _graph():
    return Graph(
        nodes=[
            GraphNode(
                id="tex:x",
                type=EntityType.DEFINITION,
                title="Compact set",
                content="Every open cover has a finite subcover.",
                source=NodeSource(file="a.tex", latex_label="def:x", section_path=["a.tex", "Basics"]),
                meta={"chunkId": "chunk:a.tex:0"},
            ),
            GraphNode(id="tex:y", type=EntityType.THEOREM, title="Closed subsets"),
        ],
        edges=[GraphEdge(type=RelationType.DEPENDS_ON, source="tex:y", target="tex:x", meta={"chunkId": "chunk:a.tex:1"})],
    )


def test_export_uses_versioned_camel_case_document(tmp_path):
    path = tmp_path / "out" / "graph.json"

    text = export_graph_json(_graph(), path)

    doc = json.loads(path.read_text(encoding="utf-8"))
    assert doc == json.loads(text)
    assert doc["version"] == 1
    source = doc["graph"]["nodes"][0]["source"]
    assert source["latexLabel"] == "def:x"
    assert source["sectionPath"] == ["a.tex", "Basics"]
    assert doc["graph"]["edges"][0]["type"] == "DependsOn"


def test_import_accepts_exported_and_bare_documents():
    graph = _graph()
    exported = export_graph_json(graph)

    assert import_graph_json(exported) == graph
    assert import_graph_json(json.loads(exported)["graph"]) == graph


@pytest.mark.parametrize(
    "payload",
    [
        "not json",
        "[]",
        '{"nodes": []}',
        '{"graph": {"nodes": [{"id": "a"}], "edges": []}}',
        '{"nodes": [], "edges": [{"type": "Uses", "source": "a", "target": "a"}]}',
    ],
)
def test_import_rejects_invalid_documents(payload):
    with pytest.raises(ValueError):
        import_graph_json(payload)
