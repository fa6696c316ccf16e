"""
Graph data model shared by every pipeline stage.

Nodes and edges are immutable pydantic models; merges always build new
instances, so a `Graph` handed out as a snapshot never changes underneath its
reader. JSON uses the camelCase field names (`latexLabel`, `sectionPath`).
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class EntityType(str, Enum):
    THEOREM = "Theorem"
    LEMMA = "Lemma"
    COROLLARY = "Corollary"
    DEFINITION = "Definition"
    FORMULA = "Formula"
    EXAMPLE = "Example"
    EXERCISE = "Exercise"
    AXIOM = "Axiom"
    PROPOSITION = "Proposition"
    CONCLUSION = "Conclusion"
    # Only produced while building the concept universe (phase 1).
    NOTATION = "Notation"
    CONSTRUCTION = "Construction"


class RelationType(str, Enum):
    PROVES = "Proves"
    DEPENDS_ON = "DependsOn"
    DERIVED_FROM = "DerivedFrom"
    CONTAINS = "Contains"
    EQUIVALENT_TO = "EquivalentTo"
    APPLIES_TO = "AppliesTo"
    USES = "Uses"
    ASSISTS_IN = "AssistsIn"


# User-selectable vocabularies (Notation/Construction stay internal).
ALL_ENTITY_TYPES = [
    EntityType.THEOREM,
    EntityType.LEMMA,
    EntityType.COROLLARY,
    EntityType.DEFINITION,
    EntityType.FORMULA,
    EntityType.EXAMPLE,
    EntityType.EXERCISE,
    EntityType.AXIOM,
    EntityType.PROPOSITION,
    EntityType.CONCLUSION,
]
ALL_RELATION_TYPES = list(RelationType)

BASE_CONCEPT_TYPES = frozenset(
    {EntityType.DEFINITION, EntityType.NOTATION, EntityType.CONSTRUCTION}
)

LABEL_ID_PREFIX = "tex:"
LABEL_KEY_PREFIX = "label:"

# Conventional type prefixes (def:x, thm:y, eq:z) are dropped from the id
# unless another label already owns the shorter form.
LABEL_TYPE_PREFIXES = frozenset(
    {"def", "defn", "thm", "lem", "cor", "prop", "eq", "eqn", "ax", "ex", "exer", "conc", "not", "cons"}
)


def label_to_id(label: str, claimed: Optional[dict[str, str]] = None) -> str:
    """
    Canonical node id for an explicit LaTeX label: def:x -> tex:x.

    `claimed` maps ids already in use to the raw label that took them. When
    the short id belongs to a different label the full label is kept, so
    thm:1 and eq:1 become tex:1 and tex:eq:1.
    """
    label = label.strip()
    prefix, sep, rest = label.partition(":")
    stem = rest if sep and rest and prefix.lower() in LABEL_TYPE_PREFIXES else label
    short = f"{LABEL_ID_PREFIX}{stem}"
    if claimed:
        owner = claimed.get(short)
        if owner is not None and owner != label:
            return f"{LABEL_ID_PREFIX}{label}"
    return short


def label_key(label: str) -> str:
    """Identity key of a raw label; two nodes share it only if their labels are equal."""
    return f"{LABEL_KEY_PREFIX}{label.strip()}"


class NodeSource(BaseModel):
    """Where a node was found in the corpus."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    file: Optional[str] = None
    latex_label: Optional[str] = Field(default=None, alias="latexLabel")
    section_path: Optional[list[str]] = Field(default=None, alias="sectionPath")


class GraphNode(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    type: EntityType
    title: str
    content: Optional[str] = None
    source: Optional[NodeSource] = None
    meta: dict[str, Any] = Field(default_factory=dict)

    @property
    def label(self) -> Optional[str]:
        if self.source is None or not self.source.latex_label:
            return None
        label = self.source.latex_label.strip()
        return label or None


class GraphEdge(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: Optional[str] = None
    type: RelationType
    source: str
    target: str
    evidence: Optional[str] = None
    meta: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _reject_self_loop(self):
        if self.source == self.target:
            raise ValueError(f"self-loop edge rejected: {self.source} -{self.type.value}-> {self.target}")
        return self

    @property
    def chunk_id(self) -> str:
        return str(self.meta.get("chunkId") or "")


def edge_key(edge: GraphEdge) -> tuple[str, str, str, str]:
    """Dedup key for edges: (source, type, target, chunkId)."""
    return (edge.source, edge.type.value, edge.target, edge.chunk_id)


class Graph(BaseModel):
    """A point-in-time view of the graph (nodes in insertion order)."""

    nodes: list[GraphNode] = Field(default_factory=list)
    edges: list[GraphEdge] = Field(default_factory=list)

    def node_ids(self) -> set[str]:
        return {n.id for n in self.nodes}

    def get_node(self, node_id: str) -> Optional[GraphNode]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None


class ExtractionResult(BaseModel):
    """Transient per-chunk output of an extractor."""

    nodes: list[GraphNode] = Field(default_factory=list)
    edges: list[GraphEdge] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class SchemaSelection(BaseModel):
    """Entity/relation vocabularies the user enabled, plus free-text guidance."""

    entity_types: list[EntityType] = Field(default_factory=lambda: list(ALL_ENTITY_TYPES))
    relation_types: list[RelationType] = Field(default_factory=lambda: list(ALL_RELATION_TYPES))
    notes: str = ""
