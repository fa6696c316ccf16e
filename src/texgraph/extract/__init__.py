"""
Candidate extraction from LaTeX chunks.

Modules:
- heuristic: pattern-based local extractor
- oracle: oracle-backed extractor (prompt, normalization, completion, grounding)
- unify: namespace freezing and alias mapping
- repair: oracle-assisted LaTeX repair
"""

from .heuristic import extract_from_chunk
from .oracle import extract_via_oracle, normalize_result, parse_json_object
from .summary import summarize_concept_registry, summarize_graph_for_chunk
from .unify import (
    AliasMap,
    FreezeResult,
    align_concepts_with_oracle,
    apply_alias_mapping,
    freeze_namespace,
)
from .repair import apply_repaired_content, repair_latex, restore_original_content

__all__ = [
    "extract_from_chunk",
    "extract_via_oracle",
    "normalize_result",
    "parse_json_object",
    "summarize_concept_registry",
    "summarize_graph_for_chunk",
    "AliasMap",
    "FreezeResult",
    "align_concepts_with_oracle",
    "apply_alias_mapping",
    "freeze_namespace",
    "apply_repaired_content",
    "repair_latex",
    "restore_original_content",
]
