"""
Conservative identity unification (namespace freezing).

Two node ids are merged only when
- they carry the same explicit LaTeX label (joined through a `label:<raw>`
  key; the class also receives the label's `tex:` id, which stays unique per
  raw label), or
- both are base concepts (Definition / Notation / Construction) joined by an
  oracle-asserted EquivalentTo edge.

Title or content similarity is never used: a missed merge is cheaper than a
false one. Each class is represented by a label-derived id when it has one,
otherwise by its first-seen id.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from ..graph.store import merge_edges, merge_node
from ..graph.types import (
    BASE_CONCEPT_TYPES,
    ExtractionResult,
    Graph,
    GraphEdge,
    GraphNode,
    LABEL_ID_PREFIX,
    LABEL_KEY_PREFIX,
    RelationType,
    label_key,
    label_to_id,
)
from ..llm import ExtractionOracle, SamplingParams
from .oracle import parse_json_object

logger = logging.getLogger(__name__)

AliasMap = dict[str, str]

ALIGN_MIN_CONFIDENCE = 0.88


class UnionFind:
    """Union-find over string ids, stored as indices into an arena."""

    def __init__(self):
        self._index: dict[str, int] = {}
        self._ids: list[str] = []
        self._parent: list[int] = []
        self._preferred: list[bool] = []

    def __contains__(self, node_id: str) -> bool:
        return node_id in self._index

    def add(self, node_id: str, preferred: bool = False) -> int:
        idx = self._index.get(node_id)
        if idx is None:
            idx = len(self._ids)
            self._index[node_id] = idx
            self._ids.append(node_id)
            self._parent.append(idx)
            self._preferred.append(preferred)
        elif preferred:
            self._preferred[idx] = True
        return idx

    def _root(self, idx: int) -> int:
        while self._parent[idx] != idx:
            self._parent[idx] = self._parent[self._parent[idx]]
            idx = self._parent[idx]
        return idx

    def _rank(self, idx: int) -> tuple[int, int]:
        # preferred (label-derived) first, then first-seen
        return (0 if self._preferred[idx] else 1, idx)

    def union(self, a: str, b: str) -> None:
        ra, rb = self._root(self.add(a)), self._root(self.add(b))
        if ra == rb:
            return
        if self._rank(rb) < self._rank(ra):
            ra, rb = rb, ra
        self._parent[rb] = ra

    def find(self, node_id: str) -> str:
        return self._ids[self._root(self._index[node_id])]

    def ids(self) -> list[str]:
        return list(self._ids)


@dataclass
class FreezeResult:
    graph: Graph
    alias_map: AliasMap = field(default_factory=dict)

    @property
    def merged_count(self) -> int:
        return sum(
            1 for alias, canonical in self.alias_map.items()
            if alias != canonical and not alias.startswith(LABEL_KEY_PREFIX)
        )


def _longer(prev: Optional[str], incoming: Optional[str]) -> Optional[str]:
    if incoming is None:
        return prev
    if prev is None or len(incoming) > len(prev):
        return incoming
    return prev


def _fold(prev: GraphNode, incoming: GraphNode) -> GraphNode:
    """Field-by-field fold: longer title/content wins, source/meta shallow-merged."""
    source = prev.source
    if incoming.source is not None:
        merged = prev.source.model_dump(exclude_none=True) if prev.source else {}
        merged.update(incoming.source.model_dump(exclude_none=True))
        source = type(incoming.source).model_validate(merged)
    return prev.model_copy(
        update={
            "title": _longer(prev.title, incoming.title),
            "content": _longer(prev.content, incoming.content),
            "source": source,
            "meta": {**prev.meta, **incoming.meta},
        }
    )


def _remap_edges(edges, resolve) -> list[GraphEdge]:
    remapped = []
    for edge in edges:
        source, target = resolve(edge.source), resolve(edge.target)
        if source == target:
            continue
        if (source, target) != (edge.source, edge.target):
            edge = edge.model_copy(update={"source": source, "target": target})
        remapped.append(edge)
    return merge_edges([], remapped)


def _claimed_label_ids(nodes) -> dict[str, str]:
    """Ids already spoken for by existing `tex:` nodes, mapped to their raw label."""
    claimed = {}
    for node in nodes:
        if node.id.startswith(LABEL_ID_PREFIX):
            # an unlabeled tex: id is owned by nobody else
            claimed.setdefault(node.id, node.label.strip() if node.label else node.id)
    return claimed


def freeze_namespace(graph: Graph) -> FreezeResult:
    """Canonicalize duplicate concept identities across the whole graph."""
    uf = UnionFind()
    by_id = {}
    claimed = _claimed_label_ids(graph.nodes)
    label_ids: dict[str, str] = {}
    for node in graph.nodes:
        uf.add(node.id, preferred=node.id.startswith(LABEL_ID_PREFIX))
        by_id[node.id] = node
        if node.label:
            raw = node.label.strip()
            label_id = label_ids.get(raw)
            if label_id is None:
                label_id = label_to_id(raw, claimed)
                claimed.setdefault(label_id, raw)
                label_ids[raw] = label_id
            key = label_key(raw)
            uf.add(label_id, preferred=True)
            uf.union(label_id, key)
            uf.union(node.id, key)

    for edge in graph.edges:
        if edge.type != RelationType.EQUIVALENT_TO:
            continue
        a, b = by_id.get(edge.source), by_id.get(edge.target)
        if a and b and a.type in BASE_CONCEPT_TYPES and b.type in BASE_CONCEPT_TYPES:
            uf.union(a.id, b.id)

    alias_map: AliasMap = {node_id: uf.find(node_id) for node_id in uf.ids()}

    merged: dict[str, GraphNode] = {}
    for node in graph.nodes:
        canonical = alias_map[node.id]
        prev = merged.get(canonical)
        if prev is None:
            merged[canonical] = node if node.id == canonical else node.model_copy(update={"id": canonical})
        else:
            merged[canonical] = _fold(prev, node)

    for canonical, node in merged.items():
        aliases = sorted(a for a, c in alias_map.items() if c == canonical and a != canonical and a in by_id)
        if aliases:
            merged[canonical] = node.model_copy(update={"meta": {**node.meta, "aliases": aliases}})

    edges = _remap_edges(graph.edges, lambda x: alias_map.get(x, x))
    result = FreezeResult(graph=Graph(nodes=list(merged.values()), edges=edges), alias_map=alias_map)
    logger.info(
        f"Namespace frozen: {len(graph.nodes)} -> {len(result.graph.nodes)} nodes, "
        f"{len(graph.edges)} -> {len(edges)} edges"
    )
    return result


def _label_canonical(raw: str, alias_map: AliasMap) -> str:
    key = label_key(raw)
    canonical = alias_map.get(key)
    if canonical is None:
        # a label first seen after the freeze; every id in the map is taken
        taken = {c: c for c in alias_map.values()}
        canonical = label_to_id(raw, taken)
        alias_map[key] = canonical
        alias_map.setdefault(canonical, canonical)
    return canonical


def apply_alias_mapping(result: ExtractionResult, alias_map: AliasMap) -> ExtractionResult:
    """
    Rewrite a post-freeze extraction result onto canonical ids.

    A node is canonicalized through its own label first, then through a direct
    alias lookup; edges follow the same rewrite. Labels the map has not seen
    yet are registered in `alias_map` so later results agree on their ids.
    """
    local: dict[str, str] = {}
    nodes: dict[str, GraphNode] = {}
    for node in result.nodes:
        if node.label:
            canonical = _label_canonical(node.label.strip(), alias_map)
        else:
            canonical = alias_map.get(node.id, node.id)
        local[node.id] = canonical
        if canonical != node.id:
            node = node.model_copy(update={"id": canonical})
        prev = nodes.get(canonical)
        nodes[canonical] = merge_node(prev, node) if prev else node

    def resolve(node_id: str) -> str:
        return local.get(node_id) or alias_map.get(node_id, node_id)

    return ExtractionResult(
        nodes=list(nodes.values()),
        edges=_remap_edges(result.edges, resolve),
        warnings=list(result.warnings),
    )


ALIGN_PROMPT_TEMPLATE = """You are a VERY conservative mathematical concept aligner. Within the batch of
candidate concepts below, find aliases that are certainly the SAME mathematical
concept and map each alias to a canonical id.

Principles:
- Prefer not merging over a wrong merge. If unsure, output nothing for that pair.
- Merge only the same object / definition / notation convention. Related, similar
  or same-field concepts must never be merged.
- canonical must be one of the card ids in this batch.
- Give a confidence in 0..1 for each mapping; do not output mappings below {threshold}.

Cards:
{cards}

Output strict JSON only:
{{"decisions": [{{"alias": "id", "canonical": "id", "confidence": 0.0, "reason": "optional"}}]}}"""


def _card(node: GraphNode) -> str:
    evidence = " ".join((node.content or "").split())[:180]
    section = " / ".join((node.source.section_path or [])[-2:]) if node.source else ""
    return (
        f"- id: {node.id}\n  type: {node.type.value}\n  title: {node.title}\n"
        f"  section: {section}\n  evidence: {evidence or '(none)'}"
    )


async def align_concepts_with_oracle(
    oracle: ExtractionOracle,
    graph: Graph,
    batch_size: int = 80,
    sampling: Optional[SamplingParams] = None,
) -> list[GraphEdge]:
    """
    Ask the oracle which unlabeled base concepts are the same concept.

    Returns:
        EquivalentTo edges (alias -> canonical) for confident, in-batch decisions;
        `freeze_namespace` turns them into merges
    """
    candidates = [
        n for n in graph.nodes
        if n.type in BASE_CONCEPT_TYPES and not n.label and not n.id.startswith(LABEL_ID_PREFIX)
    ]
    batch_size = max(20, min(120, int(batch_size)))
    sampling = sampling or SamplingParams(temperature=0.0, top_p=1.0, max_tokens=2000)

    edges = []
    for i in range(0, len(candidates), batch_size):
        batch = candidates[i:i + batch_size]
        batch_ids = {n.id for n in batch}
        prompt = ALIGN_PROMPT_TEMPLATE.format(
            threshold=ALIGN_MIN_CONFIDENCE,
            cards="\n".join(_card(n) for n in batch),
        )
        data = parse_json_object(await oracle.invoke(prompt, sampling))
        decisions = data.get("decisions") if isinstance(data.get("decisions"), list) else []
        for d in decisions:
            if not isinstance(d, dict):
                continue
            alias, canonical = d.get("alias"), d.get("canonical")
            confidence = d.get("confidence") if isinstance(d.get("confidence"), (int, float)) else 0
            if not (isinstance(alias, str) and isinstance(canonical, str)):
                continue
            alias, canonical = alias.strip(), canonical.strip()
            if not alias or alias == canonical or confidence < ALIGN_MIN_CONFIDENCE:
                continue
            if alias not in batch_ids or canonical not in batch_ids:
                continue
            reason = d.get("reason") if isinstance(d.get("reason"), str) else None
            edges.append(
                GraphEdge(
                    type=RelationType.EQUIVALENT_TO,
                    source=alias,
                    target=canonical,
                    evidence=reason,
                    meta={"aligned": True, "confidence": confidence},
                )
            )
    logger.info(f"Concept alignment: {len(candidates)} candidates, {len(edges)} equivalences")
    return edges


__all__ = [
    "AliasMap",
    "FreezeResult",
    "UnionFind",
    "align_concepts_with_oracle",
    "apply_alias_mapping",
    "freeze_namespace",
]
