"""
Deterministic, pattern-based extraction used when no oracle is configured.

Per chunk it emits:
- a section anchor node (type Conclusion) that Contains everything else
- one node per theorem-like / example / exercise environment
- one Formula node per display-math block (skipping unlabeled formulas that
  sit inside an example or exercise)
- DependsOn / DerivedFrom edges for references that resolve through the
  label table, which is updated in place as labeled nodes are found
"""

import re
from typing import Optional

from ..graph.store import merge_node
from ..graph.types import (
    EntityType,
    ExtractionResult,
    GraphEdge,
    GraphNode,
    NodeSource,
    RelationType,
    edge_key,
    label_to_id,
)
from ..latex.chunker import LatexChunk
from .grounding import example_spans, first_label, inside_spans

ENV_TYPES = {
    "theorem": EntityType.THEOREM,
    "lemma": EntityType.LEMMA,
    "corollary": EntityType.COROLLARY,
    "definition": EntityType.DEFINITION,
    "axiom": EntityType.AXIOM,
    "proposition": EntityType.PROPOSITION,
    "conclusion": EntityType.CONCLUSION,
    "example": EntityType.EXAMPLE,
    "exercise": EntityType.EXERCISE,
}

ENV_RE = re.compile(
    r"\\begin\{(%s)\}([\s\S]*?)\\end\{\1\}" % "|".join(ENV_TYPES),
    re.IGNORECASE,
)
ENV_TITLE_RE = re.compile(r"\\begin\{[a-zA-Z*]+\}\s*\[([^\]]+)\]")
SOLUTION_RE = re.compile(r"\\begin\{(solution|answer)\}([\s\S]*?)\\end\{\1\}", re.IGNORECASE)
TRAILING_SOLUTION_RE = re.compile(r"\s*\\begin\{(solution|answer)\}([\s\S]*?)\\end\{\1\}", re.IGNORECASE)

FORMULA_PATTERNS = [
    re.compile(r"\\begin\{(?:equation|align|gather|multline)\*?\}([\s\S]*?)\\end\{(?:equation|align|gather|multline)\*?\}", re.IGNORECASE),
    re.compile(r"\$\$([\s\S]*?)\$\$"),
    re.compile(r"\\\[([\s\S]*?)\\\]"),
]

REF_RE = re.compile(r"\\(?:eqref|ref|autoref|cref|Cref)\{([^}]+)\}")
DERIVED_RE = re.compile(r"derived\s+from\s+(\\(?:eq)?ref\{([^}]+)\})", re.IGNORECASE)


def _refs(text: str) -> list[str]:
    seen: dict[str, None] = {}
    for m in REF_RE.finditer(text):
        for ref in m.group(1).split(","):
            ref = ref.strip()
            if ref:
                seen[ref] = None
    return list(seen)


def _own_label(body: str) -> Optional[str]:
    """The environment's own label, ignoring labels of nested display math."""
    outer = body
    for pattern in FORMULA_PATTERNS:
        outer = pattern.sub(" ", outer)
    return first_label(outer)


def _label_node_id(label: str, labels: dict[str, str]) -> str:
    if label in labels:
        return labels[label]
    claimed = {node_id: raw for raw, node_id in labels.items()}
    return label_to_id(label, claimed)


def _source(chunk: LatexChunk, label: Optional[str]) -> NodeSource:
    return NodeSource(file=chunk.file, latex_label=label, section_path=list(chunk.section_path))


def _split_solutions(body: str) -> tuple[str, dict[str, str]]:
    """Pull nested solution/answer blocks out of an example body into meta fields."""
    meta: dict[str, str] = {}

    def take(m):
        meta[m.group(1).lower()] = m.group(2).strip()
        return ""

    statement = SOLUTION_RE.sub(take, body).strip()
    return statement, meta


def _extract_environments(chunk, selected, labels, bodies) -> list[GraphNode]:
    out = []
    idx = 0
    text = chunk.text
    for m in ENV_RE.finditer(text):
        env = m.group(1).lower()
        etype = ENV_TYPES[env]
        if etype not in selected:
            continue
        body = m.group(2).strip()
        label = _own_label(body)
        title_match = ENV_TITLE_RE.match(m.group(0))
        title = title_match.group(1).strip() if title_match else f"{etype.value} {idx + 1}"
        node_id = _label_node_id(label, labels) if label else f"{chunk.id}:{env}:{idx}"
        idx += 1

        content = body
        meta = {"chunkId": chunk.id}
        if etype in (EntityType.EXAMPLE, EntityType.EXERCISE):
            content, solutions = _split_solutions(body)
            trailing = TRAILING_SOLUTION_RE.match(text, m.end())
            if trailing:
                solutions.setdefault(trailing.group(1).lower(), trailing.group(2).strip())
            meta.update(solutions)

        out.append(
            GraphNode(
                id=node_id,
                type=etype,
                title=title,
                content=content,
                source=_source(chunk, label),
                meta=meta,
            )
        )
        bodies[node_id] = body
        if label:
            labels[label] = node_id
    return out


def _extract_formulas(chunk, labels, bodies) -> list[GraphNode]:
    out = []
    idx = 0
    spans = example_spans(chunk.text)
    for pattern in FORMULA_PATTERNS:
        for m in pattern.finditer(chunk.text):
            body = m.group(1).strip()
            if not body:
                continue
            label = first_label(body)
            if not label and inside_spans(m.start(), spans):
                continue
            if label:
                node_id = _label_node_id(label, labels)
                title = f"Formula ({label})"
            else:
                node_id = f"{chunk.id}:formula:{idx}"
                idx += 1
                title = f"Formula {idx}"
            out.append(
                GraphNode(
                    id=node_id,
                    type=EntityType.FORMULA,
                    title=title,
                    content=body,
                    source=_source(chunk, label),
                    meta={"chunkId": chunk.id},
                )
            )
            bodies[node_id] = body
            if label:
                labels[label] = node_id
    return out


def _dedupe(nodes: list[GraphNode], edges: list[GraphEdge]) -> ExtractionResult:
    by_id: dict[str, GraphNode] = {}
    for node in nodes:
        prev = by_id.get(node.id)
        by_id[node.id] = merge_node(prev, node) if prev else node
    by_key = {edge_key(e): e for e in edges}
    return ExtractionResult(nodes=list(by_id.values()), edges=list(by_key.values()))


def extract_from_chunk(
    chunk: LatexChunk,
    selected_entities,
    selected_relations,
    known_label_to_node_id: dict[str, str],
) -> ExtractionResult:
    """
    Extract nodes and edges from one chunk with regular expressions.

    Args:
        chunk: The chunk to read
        selected_entities: Entity types to emit
        selected_relations: Relation types to emit
        known_label_to_node_id: Label table from earlier chunks; updated in place

    Returns:
        ExtractionResult with deduplicated nodes and edges (no warnings)
    """
    selected = set(selected_entities)
    relations = set(selected_relations)
    labels = known_label_to_node_id
    bodies: dict[str, str] = {}
    nodes: list[GraphNode] = []
    edges: list[GraphEdge] = []

    section_id = f"sec:{' / '.join(chunk.section_path)}"
    has_section = EntityType.CONCLUSION in selected
    if has_section:
        nodes.append(
            GraphNode(
                id=section_id,
                type=EntityType.CONCLUSION,
                title=" / ".join(chunk.section_path[1:]) or chunk.title,
                content="",
                source=NodeSource(file=chunk.file, section_path=list(chunk.section_path)),
                meta={"chunkId": chunk.id, "role": "section"},
            )
        )

    nodes.extend(_extract_environments(chunk, selected, labels, bodies))
    if EntityType.FORMULA in selected:
        nodes.extend(_extract_formulas(chunk, labels, bodies))

    members = [n for n in nodes if n.id != section_id]

    if has_section and RelationType.CONTAINS in relations:
        for node in members:
            edges.append(
                GraphEdge(type=RelationType.CONTAINS, source=section_id, target=node.id, meta={"chunkId": chunk.id})
            )

    if RelationType.DEPENDS_ON in relations:
        for node in members:
            for ref in _refs(bodies.get(node.id, "")):
                target = labels.get(ref)
                if target and target != node.id:
                    edges.append(
                        GraphEdge(
                            type=RelationType.DEPENDS_ON,
                            source=node.id,
                            target=target,
                            evidence=f"reference: {ref}",
                            meta={"chunkId": chunk.id},
                        )
                    )

    if RelationType.DERIVED_FROM in relations:
        for node in members:
            for m in DERIVED_RE.finditer(bodies.get(node.id, "")):
                target = labels.get(m.group(2).strip())
                if target and target != node.id:
                    edges.append(
                        GraphEdge(
                            type=RelationType.DERIVED_FROM,
                            source=node.id,
                            target=target,
                            evidence=m.group(0),
                            meta={"chunkId": chunk.id},
                        )
                    )

    return _dedupe(nodes, edges)
