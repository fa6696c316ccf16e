"""
Post-hoc cleanliness pass over a merged graph.

Only unlabeled Formula nodes that take part in no "important" relation are
candidates; of those, generic template formulas, exercise-indexed symbols and
short display-math fragments are dropped together with their edges.
"""

import re
from dataclasses import dataclass, field

from .types import Graph, GraphEdge, GraphNode, LABEL_ID_PREFIX, EntityType, RelationType

# Contains is structural and does not make a node important.
IMPORTANT_RELATIONS = frozenset(
    {
        RelationType.PROVES,
        RelationType.DEPENDS_ON,
        RelationType.DERIVED_FROM,
        RelationType.EQUIVALENT_TO,
        RelationType.USES,
        RelationType.ASSISTS_IN,
        RelationType.APPLIES_TO,
    }
)

MIN_FORMULA_LENGTH = 120

_TEMPLATE_PATTERNS = [
    # P(X = x) = p(x)
    re.compile(r"P\s*\(\s*[A-Za-z]\\?[_A-Za-z0-9]*\s*=\s*[A-Za-z0-9_{}\\]+\s*\)\s*=\s*p\s*\("),
    re.compile(r"P\\left\(\s*[A-Za-z]\\?[_A-Za-z0-9]*\s*=\s*[A-Za-z0-9_{}\\]+\s*\\right\)\s*=\s*p\\left\("),
    # f_X(x), f(x)
    re.compile(r"\bf_?[A-Za-z]\s*\(\s*[A-Za-z]\s*\)"),
    # p_X(x), p(x)
    re.compile(r"p_?[A-Za-z]\s*\(\s*[A-Za-z]\s*\)"),
]


@dataclass
class PruneStats:
    dropped_node_ids: list[str] = field(default_factory=list)
    dropped_edge_count: int = 0


def looks_like_template_formula(text: str) -> bool:
    t = re.sub(r"\s+", " ", text or "").strip()
    if not t:
        return False
    if any(p.search(t) for p in _TEMPLATE_PATTERNS):
        return True
    # -\infty < x < \infty style domain statements
    return "\\infty" in t and re.search(r"-\s*\\infty", t) is not None and re.search(r"<\s*[A-Za-z]", t) is not None


def looks_problem_indexed(text: str) -> bool:
    """Omega_5, E_{7}, A_12: symbols that almost always belong to one exercise."""
    t = re.sub(r"\s+", "", text or "")
    if not t:
        return False
    if re.search(r"\\Omega_\{?\d+\}?", t):
        return True
    return re.search(r"[A-Za-z]_\{?\d+\}?", t) is not None and len(t) <= 25


def _important_degree(edges: list[GraphEdge]) -> dict[str, int]:
    degree: dict[str, int] = {}
    for edge in edges:
        if edge.type not in IMPORTANT_RELATIONS:
            continue
        degree[edge.source] = degree.get(edge.source, 0) + 1
        degree[edge.target] = degree.get(edge.target, 0) + 1
    return degree


def should_drop(node: GraphNode, important_degree: dict[str, int]) -> bool:
    if node.type != EntityType.FORMULA:
        return False
    if node.label or node.id.startswith(LABEL_ID_PREFIX):
        return False
    if important_degree.get(node.id, 0) > 0:
        return False

    title = (node.title or "").strip()
    content = (node.content or "").strip()
    if looks_like_template_formula(content) or looks_like_template_formula(title):
        return True
    if looks_problem_indexed(content) or looks_problem_indexed(title):
        return True
    return len(content) < MIN_FORMULA_LENGTH


def prune_graph(graph: Graph) -> tuple[Graph, PruneStats]:
    """Return the pruned graph and what was removed."""
    stats = PruneStats()
    degree = _important_degree(graph.edges)

    kept_nodes = []
    for node in graph.nodes:
        if should_drop(node, degree):
            stats.dropped_node_ids.append(node.id)
        else:
            kept_nodes.append(node)

    kept_ids = {n.id for n in kept_nodes}
    kept_edges = []
    for edge in graph.edges:
        if edge.source not in kept_ids or edge.target not in kept_ids:
            stats.dropped_edge_count += 1
            continue
        kept_edges.append(edge)

    return Graph(nodes=kept_nodes, edges=kept_edges), stats
