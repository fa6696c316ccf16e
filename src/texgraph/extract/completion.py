"""
Recover full source text for oracle nodes whose content was cut short.

The oracle is trusted for type, title and identity but not for completeness:
labeled nodes with short or elided content are re-sliced from the chunk
around their label, and elided unlabeled content is recovered from the text
on both sides of the ellipsis.
"""

import re
from typing import Any, Optional

from ..graph.types import EntityType, GraphNode, LABEL_ID_PREFIX, label_to_id
from .grounding import LABEL_RE, looks_narrative

ELLIPSIS_MARKERS = ("...", "…", "略")
MIN_COMPLETE_LENGTH = 20
LABEL_WINDOW = 4000
MAX_RECOVERED_LENGTH = 60000

THEOREM_LIKE_ENVS = (
    "theorem",
    "lemma",
    "corollary",
    "definition",
    "example",
    "exercise",
    "axiom",
    "proposition",
    "conclusion",
)
MATH_ENVS = (
    "equation",
    "equation*",
    "align",
    "align*",
    "gather",
    "gather*",
    "multline",
    "multline*",
)


def contains_ellipsis(s: str) -> bool:
    return any(marker in s for marker in ELLIPSIS_MARKERS)


def _node_label(node: GraphNode, chunk_text: str) -> Optional[str]:
    """The node's own label, or the chunk label its `tex:` id was derived from."""
    if node.label:
        return node.label
    if not node.id.startswith(LABEL_ID_PREFIX):
        return None
    labels = [m.group(1).strip() for m in LABEL_RE.finditer(chunk_text)]
    for raw in labels:
        if f"{LABEL_ID_PREFIX}{raw}" == node.id:
            return raw
    for raw in labels:
        if label_to_id(raw) == node.id:
            return raw
    return None


def extract_block_by_label(chunk_text: str, label: str) -> Optional[str]:
    """Body of the environment carrying `\\label{label}`, or a window around it."""
    label_re = re.compile(r"\\label\{%s\}" % re.escape(label))
    for env in THEOREM_LIKE_ENVS + MATH_ENVS:
        env_re = re.compile(
            r"\\begin\{%s\}([\s\S]*?)\\end\{%s\}" % (re.escape(env), re.escape(env)),
            re.IGNORECASE,
        )
        for m in env_re.finditer(chunk_text):
            body = m.group(1).strip()
            if label_re.search(body):
                return body

    idx = chunk_text.find(f"\\label{{{label}}}")
    if idx >= 0:
        start = max(0, idx - LABEL_WINDOW)
        end = min(len(chunk_text), idx + LABEL_WINDOW)
        return chunk_text[start:end].strip()
    return None


def recover_by_prefix_suffix(chunk_text: str, content: str) -> Optional[str]:
    marker = "…" if "…" in content else "..."
    parts = content.split(marker)
    if len(parts) < 2:
        return None
    prefix = parts[0].strip()
    suffix = parts[-1].strip()
    if len(prefix) < 10 or len(suffix) < 10:
        return None

    start = chunk_text.find(prefix)
    if start < 0:
        return None
    end = chunk_text.find(suffix, start + len(prefix))
    if end < 0:
        return None
    recovered = chunk_text[start:end + len(suffix)].strip()
    if len(recovered) > MAX_RECOVERED_LENGTH:
        return None
    return recovered


def _normalized_title(node: GraphNode, label: str) -> str:
    title = (node.title or "").strip()
    if node.type == EntityType.FORMULA and (looks_narrative(title) or label not in title):
        return f"Formula ({label})"
    return node.title


def complete_from_chunk(nodes: list[GraphNode], chunk_text: str) -> list[tuple[str, dict[str, Any]]]:
    """
    Compute content patches for nodes that need completion.

    Returns:
        (node id, patch) pairs in the same shape `GraphStore.update_nodes` takes
    """
    updates = []
    for node in nodes:
        label = _node_label(node, chunk_text)
        content = (node.content or "").strip()
        needs_completion = not content or len(content) < MIN_COMPLETE_LENGTH or contains_ellipsis(content)

        if label and needs_completion:
            full = extract_block_by_label(chunk_text, label)
            if full:
                updates.append(
                    (node.id, {"content": full, "title": _normalized_title(node, label), "meta": {"completed": True}})
                )
                continue

        if not label and contains_ellipsis(content):
            recovered = recover_by_prefix_suffix(chunk_text, content)
            if recovered:
                updates.append((node.id, {"content": recovered, "meta": {"completed": True}}))
    return updates
