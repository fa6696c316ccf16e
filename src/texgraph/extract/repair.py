"""
Oracle-assisted LaTeX repair for node content that does not render.

The repaired text replaces `content`; the pre-repair text is kept in
`meta.originalContent` so the edit can always be undone.
"""

import logging
from typing import Optional

from ..graph.store import GraphStore
from ..llm import ExtractionOracle, OracleError, SamplingParams
from .oracle import parse_json_object

logger = logging.getLogger(__name__)

REPAIR_PROMPT_TEMPLATE = """You are a LaTeX/KaTeX repair assistant. Make the minimal changes needed
for the LaTeX below to render in KaTeX, without changing its mathematical meaning.

Rules:
- Output JSON only: {{"content": "..."}}
- Keep the original text and structure; only fix syntax or replace commands KaTeX
  does not support.
- Never add explanations or new content.

Original LaTeX:
{original}"""


async def repair_latex(
    oracle: ExtractionOracle,
    original: str,
    sampling: Optional[SamplingParams] = None,
) -> str:
    """
    Ask the oracle for a minimally rewritten, renderable form of `original`.

    Raises:
        OracleError: when the oracle answer carries no usable content
    """
    prompt = REPAIR_PROMPT_TEMPLATE.format(original=original)
    sampling = sampling or SamplingParams(temperature=0.0, top_p=1.0, max_tokens=4000)
    data = parse_json_object(await oracle.invoke(prompt, sampling))
    content = data.get("content")
    if not isinstance(content, str) or not content.strip():
        raise OracleError("repair response has no content")
    return content


def apply_repaired_content(store: GraphStore, node_id: str, repaired: str) -> bool:
    node = store.get(node_id)
    if node is None:
        return False
    # keep the first original across repeated repairs
    original = node.meta.get("originalContent", node.content)
    return store.update_node(
        node_id,
        {"content": repaired, "meta": {"originalContent": original, "repaired": True}},
    )


def restore_original_content(store: GraphStore, node_id: str) -> bool:
    """Swap the pre-repair content back in. No-op for unrepaired nodes."""
    node = store.get(node_id)
    if node is None or "originalContent" not in node.meta:
        return False
    logger.debug(f"Restoring original content of {node_id}")
    return store.update_node(
        node_id,
        {"content": node.meta["originalContent"], "meta": {"repaired": False}},
    )
