"""
Candidate validity checks shared by both extraction paths.

The local extractor uses the label and example-span helpers to decide what to
emit; the oracle adapter additionally runs `ground_candidates`, which rejects
nodes that cannot be traced back to the chunk text.
"""

import re
from typing import Optional

from ..graph.types import EntityType, GraphNode

LABEL_RE = re.compile(r"\\label\{([^}]+)\}")

MATH_ENVS = (
    "equation",
    "align",
    "gather",
    "multline",
    "eqnarray",
    "displaymath",
    "math",
    "aligned",
    "cases",
    "split",
)

_MATH_ENV_RE = re.compile(r"\\begin\{(?:%s)\*?\}" % "|".join(MATH_ENVS))
_MATH_DELIM_RE = re.compile(r"\$|\\\[|\\\(")
_MATH_CMD_RE = re.compile(
    r"\\(?:frac|dfrac|sum|int|iint|oint|prod|lim|sqrt|partial|nabla|infty|cdot|times|"
    r"le|leq|ge|geq|neq|approx|equiv|in|notin|subset|subseteq|cup|cap|forall|exists|to|mapsto|"
    r"alpha|beta|gamma|delta|epsilon|varepsilon|theta|lambda|mu|sigma|omega|pi|phi|psi|"
    r"Gamma|Delta|Theta|Lambda|Sigma|Omega|Phi|Psi|mathbb|mathcal|mathrm|operatorname|"
    r"binom|det|log|ln|exp|sin|cos|tan|max|min|sup|inf)(?![a-zA-Z])"
)
_MATH_OP_RE = re.compile(r"[=<>^_]")

_EXAMPLE_ENV_RE = re.compile(r"\\begin\{(example|exercise)\}([\s\S]*?)\\end\{\1\}", re.IGNORECASE)

_GENERIC_TITLE_RE = re.compile(
    r"^(?:formula|equation|expression|definition|theorem|lemma|corollary|proposition|example|"
    r"exercise|axiom|conclusion|result|statement|notation|construction|concept|remark|note)s?"
    r"(?:\s*[#(]?\s*\d+\s*\)?)?$",
    re.IGNORECASE,
)
_CJK_RE = re.compile(r"[\u4e00-\u9fff]")
_MATHY_TITLE_RE = re.compile(r"[()\\=$_^]")

TRIVIAL_CONTENT_LENGTH = 30


def first_label(text: str) -> Optional[str]:
    m = LABEL_RE.search(text or "")
    return m.group(1).strip() if m else None


def looks_like_math(text: str) -> bool:
    """True when the text carries a math environment, delimiter, command or operator."""
    t = text or ""
    return bool(
        _MATH_ENV_RE.search(t)
        or _MATH_DELIM_RE.search(t)
        or _MATH_CMD_RE.search(t)
        or _MATH_OP_RE.search(t)
    )


def example_spans(text: str) -> list[tuple[int, int]]:
    """Character ranges covered by example/exercise environments."""
    return [(m.start(), m.end()) for m in _EXAMPLE_ENV_RE.finditer(text)]


def inside_spans(pos: int, spans: list[tuple[int, int]]) -> bool:
    return any(start <= pos < end for start, end in spans)


def _squash(s: str) -> str:
    return re.sub(r"\s+", " ", s or "").strip()


def looks_narrative(title: str) -> bool:
    """A sentence-like title: prose without any math-ish characters."""
    t = _squash(title)
    if not t or _MATHY_TITLE_RE.search(t):
        return False
    if len(_CJK_RE.findall(t)) >= 8:
        return True
    words = t.split(" ")
    if len(words) >= 6:
        return True
    return len(words) >= 4 and t[-1] in ".!?。！？"


def is_generic_title(title: str) -> bool:
    t = _squash(title)
    return len(t) < 3 or _GENERIC_TITLE_RE.match(t) is not None


def rejection_reason(node: GraphNode, chunk_text: str) -> Optional[str]:
    """Why an oracle-produced candidate is not grounded in the chunk, or None."""
    label = node.label
    content = (node.content or "").strip()

    if node.type == EntityType.FORMULA and not label and not looks_like_math(content):
        return "formula content does not look like mathematics"

    grounded_by_label = label is not None and f"\\label{{{label}}}" in chunk_text
    if not grounded_by_label and looks_narrative(node.title):
        if _squash(node.title) not in _squash(chunk_text):
            return "narrative title not found in source"

    if not label and is_generic_title(node.title) and len(content) < TRIVIAL_CONTENT_LENGTH:
        return "trivial generic node"

    return None


def ground_candidates(nodes: list[GraphNode], chunk_id: str, chunk_text: str) -> tuple[list[GraphNode], list[str]]:
    """Split candidates into grounded nodes and human-readable rejection warnings."""
    kept: list[GraphNode] = []
    warnings: list[str] = []
    for node in nodes:
        reason = rejection_reason(node, chunk_text)
        if reason:
            warnings.append(f"{chunk_id}: dropped {node.type.value} '{node.title}' ({reason})")
            continue
        kept.append(node)
    return kept, warnings
