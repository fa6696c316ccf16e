"""
Compact, chunk-relevant views of the graph for oracle prompts.
"""

import re

from ..graph.types import BASE_CONCEPT_TYPES, Graph, GraphNode
from ..latex.chunker import LatexChunk

WORD_RE = re.compile(r"[A-Za-z][A-Za-z\-]{3,}|[\u4e00-\u9fff]{2,}")
REF_RE = re.compile(r"\\(?:eqref|ref|autoref|cref|Cref|label)\{([^}]+)\}")


def _truncate(s: str, n: int) -> str:
    if len(s) <= n:
        return s
    return s[: n - 1] + "…"


def _node_line(node: GraphNode) -> str:
    label = f" label={node.label}" if node.label else ""
    return f"- {node.id} | {node.type.value} | {_truncate(node.title, 80)}{label}"


def _relevance(node: GraphNode, chunk: LatexChunk, chunk_refs: set[str], chunk_words: set[str]) -> int:
    score = 0
    if node.label and node.label in chunk_refs:
        score += 5
    if node.id in chunk.text:
        score += 3
    path = node.source.section_path if node.source else None
    if path and list(path) == list(chunk.section_path):
        score += 2
    title_words = {w.lower() for w in WORD_RE.findall(node.title or "")}
    score += min(3, len(title_words & chunk_words))
    return score


def summarize_graph_for_chunk(
    graph: Graph,
    chunk: LatexChunk,
    max_nodes: int = 160,
    max_edges: int = 80,
) -> str:
    """
    Summarize the nodes and edges most relevant to `chunk`.

    Nodes are ranked by label overlap, literal id mention, section-path match
    and title keyword overlap; the remaining budget is backfilled with the
    earliest-inserted nodes so the output is deterministic.
    """
    chunk_refs = {r.strip() for m in REF_RE.finditer(chunk.text) for r in m.group(1).split(",")}
    chunk_words = {w.lower() for w in WORD_RE.findall(chunk.text)}

    scored = []
    for order, node in enumerate(graph.nodes):
        score = _relevance(node, chunk, chunk_refs, chunk_words)
        if score > 0:
            scored.append((-score, order, node))
    scored.sort(key=lambda t: (t[0], t[1]))

    chosen = [node for _, _, node in scored[:max_nodes]]
    chosen_ids = {n.id for n in chosen}
    for node in graph.nodes:
        if len(chosen) >= max_nodes:
            break
        if node.id not in chosen_ids:
            chosen.append(node)
            chosen_ids.add(node.id)

    edges = [e for e in graph.edges if e.source in chosen_ids or e.target in chosen_ids][:max_edges]

    lines = [f"nodes({len(graph.nodes)}) showing {len(chosen)}:"]
    lines.extend(_node_line(n) for n in chosen)
    lines.append("")
    lines.append(f"edges({len(graph.edges)}) showing {len(edges)}:")
    lines.extend(f"- ({e.type.value}) {e.source} -> {e.target}" for e in edges)
    return "\n".join(lines).strip()


def summarize_concept_registry(graph: Graph, max_items: int = 200) -> str:
    """List the base concepts (definitions, notations, constructions) seen so far."""
    concepts = [n for n in graph.nodes if n.type in BASE_CONCEPT_TYPES][:max_items]
    return "\n".join(_node_line(n) for n in concepts)
