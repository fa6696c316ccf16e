"""
Graph model, store, pruning and export.
"""

from .types import (
    ALL_ENTITY_TYPES,
    ALL_RELATION_TYPES,
    BASE_CONCEPT_TYPES,
    EntityType,
    ExtractionResult,
    Graph,
    GraphEdge,
    GraphNode,
    NodeSource,
    RelationType,
    SchemaSelection,
    edge_key,
    label_key,
    label_to_id,
)
from .store import GraphStore, merge_graph, restrict_graph
from .prune import PruneStats, prune_graph
from .export import export_graph_json, import_graph_json, push_to_neo4j

__all__ = [
    "ALL_ENTITY_TYPES",
    "ALL_RELATION_TYPES",
    "BASE_CONCEPT_TYPES",
    "EntityType",
    "ExtractionResult",
    "Graph",
    "GraphEdge",
    "GraphNode",
    "NodeSource",
    "RelationType",
    "SchemaSelection",
    "edge_key",
    "label_key",
    "label_to_id",
    "GraphStore",
    "merge_graph",
    "restrict_graph",
    "PruneStats",
    "prune_graph",
    "export_graph_json",
    "import_graph_json",
    "push_to_neo4j",
]
