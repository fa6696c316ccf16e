"""
Oracle extraction adapter.

One chunk in, one ExtractionResult out:
1. build the prompt from the chunk, a relevance-ranked graph summary and the
   optional concept registry
2. await the oracle (the only suspension point; failures propagate)
3. recover a JSON object from the raw text and normalize it, silently dropping
   entries that miss required fields
4. complete truncated content from the chunk text
5. reject ungrounded candidates, and edges that touch them, with warnings
"""

import json
import logging
from typing import Any, Optional

from pydantic import ValidationError

from ..graph.store import apply_patch, merge_node
from ..graph.types import (
    EntityType,
    ExtractionResult,
    Graph,
    GraphEdge,
    GraphNode,
    NodeSource,
    RelationType,
    edge_key,
)
from ..latex.chunker import LatexChunk
from ..llm import ExtractionOracle, OracleError, SamplingParams
from .completion import complete_from_chunk
from .grounding import ground_candidates
from .prompt import build_extraction_prompt
from .summary import summarize_graph_for_chunk

logger = logging.getLogger(__name__)


def _strip_wrappers(raw_text: str) -> str:
    text = raw_text.strip()

    # Remove any thinking tags if they somehow appeared
    if "<think>" in text:
        think_end = text.find("</think>")
        if think_end != -1:
            text = text[think_end + len("</think>"):].strip()

    # Clean up common formatting issues
    if text.startswith("```json"):
        text = text[7:]
    if text.startswith("```"):
        text = text[3:]
    if text.endswith("```"):
        text = text[:-3]
    return text.strip()


def _first_json_object(text: str) -> Optional[str]:
    """The first balanced {...} span, ignoring braces inside JSON strings."""
    start = text.find("{")
    if start == -1:
        return None
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        c = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif c == "\\":
                escaped = True
            elif c == '"':
                in_string = False
            continue
        if c == '"':
            in_string = True
        elif c == "{":
            depth += 1
        elif c == "}":
            depth -= 1
            if depth == 0:
                return text[start:i + 1]
    return None


def parse_json_object(raw_text: str) -> dict:
    """
    Recover the extraction object from raw oracle text.

    Raises:
        OracleError: when no JSON object can be parsed
    """
    text = _strip_wrappers(raw_text)
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        candidate = _first_json_object(text)
        if candidate is None:
            raise OracleError(f"no JSON object in oracle output; first 200 chars: {raw_text[:200]}")
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError as e:
            raise OracleError(f"JSON parse error: {e}; first 200 chars: {raw_text[:200]}")
    if not isinstance(parsed, dict):
        raise OracleError(f"oracle output is a {type(parsed).__name__}, expected an object")
    return parsed


def _node_source(raw: Any, chunk: LatexChunk) -> NodeSource:
    data = raw if isinstance(raw, dict) else {}
    label = data.get("latexLabel", data.get("latex_label"))
    if not isinstance(label, str) or not label.strip() or label.strip().lower() == "null":
        label = None
    path = data.get("sectionPath", data.get("section_path"))
    if not isinstance(path, list) or not all(isinstance(p, str) for p in path):
        path = list(chunk.section_path)
    file = data.get("file") if isinstance(data.get("file"), str) else chunk.file
    return NodeSource(file=file, latex_label=label.strip() if label else None, section_path=path)


def _normalize_node(raw: Any, chunk: LatexChunk) -> Optional[GraphNode]:
    if not isinstance(raw, dict):
        return None
    node_id, ntype, title = raw.get("id"), raw.get("type"), raw.get("title")
    if not (isinstance(node_id, str) and node_id.strip() and isinstance(ntype, str) and isinstance(title, str)):
        return None
    try:
        etype = EntityType(ntype)
    except ValueError:
        return None
    meta = dict(raw["meta"]) if isinstance(raw.get("meta"), dict) else {}
    meta["chunkId"] = chunk.id
    content = raw.get("content")
    return GraphNode(
        id=node_id.strip(),
        type=etype,
        title=title.strip(),
        content=content if isinstance(content, str) else None,
        source=_node_source(raw.get("source"), chunk),
        meta=meta,
    )


def _normalize_edge(raw: Any, chunk: LatexChunk) -> Optional[GraphEdge]:
    if not isinstance(raw, dict):
        return None
    rtype, source, target = raw.get("type"), raw.get("source"), raw.get("target")
    if not (isinstance(rtype, str) and isinstance(source, str) and isinstance(target, str)):
        return None
    source, target = source.strip(), target.strip()
    if not source or not target or source == target:
        return None
    try:
        relation = RelationType(rtype)
    except ValueError:
        return None
    meta = dict(raw["meta"]) if isinstance(raw.get("meta"), dict) else {}
    meta["chunkId"] = chunk.id
    evidence = raw.get("evidence")
    try:
        return GraphEdge(
            type=relation,
            source=source,
            target=target,
            evidence=evidence if isinstance(evidence, str) else None,
            meta=meta,
        )
    except ValidationError:
        return None


def normalize_result(
    data: dict,
    chunk: LatexChunk,
    selected_entities,
    selected_relations,
) -> ExtractionResult:
    """Typed, deduplicated nodes/edges restricted to the selected vocabularies."""
    allowed_entities = set(selected_entities)
    allowed_relations = set(selected_relations)
    raw_nodes = data.get("nodes") if isinstance(data.get("nodes"), list) else []
    raw_edges = data.get("edges") if isinstance(data.get("edges"), list) else []
    warnings = []

    nodes: dict[str, GraphNode] = {}
    for raw in raw_nodes:
        node = _normalize_node(raw, chunk)
        if node is None:
            continue
        if node.type not in allowed_entities:
            warnings.append(f"{chunk.id}: dropped {node.type.value} '{node.title}' (type not selected)")
            continue
        prev = nodes.get(node.id)
        nodes[node.id] = merge_node(prev, node) if prev else node

    edges: dict[tuple, GraphEdge] = {}
    for raw in raw_edges:
        edge = _normalize_edge(raw, chunk)
        if edge is None or edge.type not in allowed_relations:
            continue
        edges[edge_key(edge)] = edge

    return ExtractionResult(nodes=list(nodes.values()), edges=list(edges.values()), warnings=warnings)


async def extract_via_oracle(
    oracle: ExtractionOracle,
    chunk: LatexChunk,
    selected_entities,
    selected_relations,
    graph: Graph,
    phase: Optional[int] = None,
    frozen: bool = False,
    concept_registry: Optional[str] = None,
    user_notes: Optional[str] = None,
    sampling: Optional[SamplingParams] = None,
) -> ExtractionResult:
    """
    Extract one chunk through the oracle.

    Args:
        oracle: The extraction oracle
        chunk: Chunk to extract
        selected_entities: Allowed entity types
        selected_relations: Allowed relation types
        graph: Read-only snapshot of the graph so far
        phase: 1 (base concepts), 2 (everything else) or None
        frozen: Whether the concept namespace has been frozen
        concept_registry: Summary of known base concepts
        user_notes: Free-text user guidance
        sampling: Sampling parameters (defaults from settings)

    Returns:
        ExtractionResult with grounding warnings

    Raises:
        Whatever the oracle raises, and OracleError for unparseable output
    """
    prompt = build_extraction_prompt(
        chunk=chunk,
        selected_entities=selected_entities,
        selected_relations=selected_relations,
        graph_summary=summarize_graph_for_chunk(graph, chunk),
        user_notes=user_notes,
        phase=phase,
        frozen=frozen,
        concept_registry=concept_registry,
    )
    raw_text = await oracle.invoke(prompt, sampling or SamplingParams.from_settings())
    result = normalize_result(parse_json_object(raw_text), chunk, selected_entities, selected_relations)

    patches = dict(complete_from_chunk(result.nodes, chunk.text))
    nodes = [apply_patch(n, patches[n.id]) if n.id in patches else n for n in result.nodes]

    kept, rejections = ground_candidates(nodes, chunk.id, chunk.text)
    dropped_ids = {n.id for n in nodes} - {n.id for n in kept}
    edges = [e for e in result.edges if e.source not in dropped_ids and e.target not in dropped_ids]

    warnings = result.warnings + rejections
    dropped_edges = len(result.edges) - len(edges)
    if dropped_edges:
        warnings.append(f"{chunk.id}: dropped {dropped_edges} edge(s) referencing rejected nodes")

    logger.debug(
        f"{chunk.id}: {len(kept)} nodes, {len(edges)} edges, "
        f"{len(patches)} completed, {len(rejections)} rejected"
    )
    return ExtractionResult(nodes=kept, edges=edges, warnings=warnings)
