"""
Mutable, mergeable graph store.

Nodes are upserted by id and edges by (source, type, target, chunkId). On a
collision incoming fields override existing ones, except `meta`, which is
shallow-merged so provenance keys survive later patches.
"""

import logging
from typing import Any, Iterable, Optional

from .types import BASE_CONCEPT_TYPES, EntityType, Graph, GraphEdge, GraphNode, edge_key

logger = logging.getLogger(__name__)


def _merge_meta(prev: dict, incoming: Optional[dict]) -> dict:
    merged = dict(prev or {})
    merged.update(incoming or {})
    return merged


def merge_node(prev: GraphNode, incoming: GraphNode) -> GraphNode:
    """Shallow-override `prev` with the fields `incoming` actually carries."""
    update = {
        name: getattr(incoming, name)
        for name in ("type", "title", "content", "source")
        if getattr(incoming, name) is not None
    }
    update["meta"] = _merge_meta(prev.meta, incoming.meta)
    return prev.model_copy(update=update)


def merge_edge(prev: GraphEdge, incoming: GraphEdge) -> GraphEdge:
    update = {
        name: getattr(incoming, name)
        for name in ("id", "evidence")
        if getattr(incoming, name) is not None
    }
    update["meta"] = _merge_meta(prev.meta, incoming.meta)
    return prev.model_copy(update=update)


def merge_nodes(existing: Iterable[GraphNode], incoming: Iterable[GraphNode]) -> list[GraphNode]:
    by_id: dict[str, GraphNode] = {n.id: n for n in existing}
    for node in incoming:
        prev = by_id.get(node.id)
        by_id[node.id] = merge_node(prev, node) if prev else node
    return list(by_id.values())


def merge_edges(existing: Iterable[GraphEdge], incoming: Iterable[GraphEdge]) -> list[GraphEdge]:
    by_key = {edge_key(e): e for e in existing}
    for edge in incoming:
        key = edge_key(edge)
        prev = by_key.get(key)
        by_key[key] = merge_edge(prev, edge) if prev else edge
    return list(by_key.values())


def merge_graph(existing: Graph, incoming: Graph) -> Graph:
    """Pure upsert of `incoming` into `existing`; idempotent for a fixed batch."""
    return Graph(
        nodes=merge_nodes(existing.nodes, incoming.nodes),
        edges=merge_edges(existing.edges, incoming.edges),
    )


def restrict_graph(graph: Graph, entity_types: Iterable, relation_types: Iterable) -> Graph:
    """
    Keep only nodes and edges of the selected types.

    Notation and Construction ride along with Definition since they cannot be
    selected on their own. Edges touching a dropped node go too.
    """
    allowed = set(entity_types)
    if EntityType.DEFINITION in allowed:
        allowed |= BASE_CONCEPT_TYPES
    relations = set(relation_types)
    nodes = [n for n in graph.nodes if n.type in allowed]
    kept = {n.id for n in nodes}
    edges = [e for e in graph.edges if e.type in relations and e.source in kept and e.target in kept]
    return Graph(nodes=nodes, edges=edges)


def apply_patch(node: GraphNode, patch: dict[str, Any]) -> GraphNode:
    # identity is never patched
    update = {k: v for k, v in patch.items() if k not in ("id", "meta")}
    update["meta"] = _merge_meta(node.meta, patch.get("meta"))
    return GraphNode.model_validate({**node.model_dump(), **update})


class GraphStore:
    """
    The single owner of the pipeline's graph.

    Only the orchestrator's commit step mutates it; everybody else works on the
    immutable `Graph` returned by `snapshot()`.
    """

    def __init__(self, graph: Optional[Graph] = None):
        self._nodes: dict[str, GraphNode] = {}
        self._edges: dict[tuple[str, str, str, str], GraphEdge] = {}
        if graph is not None:
            self.merge(graph.nodes, graph.edges)

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, node_id: str) -> bool:
        return node_id in self._nodes

    @property
    def node_count(self) -> int:
        return len(self._nodes)

    @property
    def edge_count(self) -> int:
        return len(self._edges)

    def get(self, node_id: str) -> Optional[GraphNode]:
        return self._nodes.get(node_id)

    def snapshot(self) -> Graph:
        return Graph(nodes=list(self._nodes.values()), edges=list(self._edges.values()))

    def merge(
        self,
        nodes: Iterable[GraphNode] = (),
        edges: Iterable[GraphEdge] = (),
    ) -> None:
        for node in nodes:
            prev = self._nodes.get(node.id)
            self._nodes[node.id] = merge_node(prev, node) if prev else node
        for edge in edges:
            key = edge_key(edge)
            prev = self._edges.get(key)
            self._edges[key] = merge_edge(prev, edge) if prev else edge

    def replace(self, graph: Graph) -> None:
        """Swap the whole contents (used by the namespace freeze and pruning)."""
        self._nodes = {}
        self._edges = {}
        self.merge(graph.nodes, graph.edges)

    def update_node(self, node_id: str, patch: dict[str, Any]) -> bool:
        """Apply a field patch to an existing node; unknown ids are ignored."""
        node = self._nodes.get(node_id)
        if node is None:
            logger.debug(f"update_node: no node {node_id}")
            return False
        self._nodes[node_id] = apply_patch(node, patch)
        return True

    def update_nodes(self, updates: Iterable[tuple[str, dict[str, Any]]]) -> int:
        updated = 0
        for node_id, patch in updates:
            if self.update_node(node_id, patch):
                updated += 1
        return updated

    def clear(self) -> None:
        self._nodes = {}
        self._edges = {}
