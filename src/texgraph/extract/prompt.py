"""
Extraction prompt for the oracle.
"""

from typing import Optional

from ..latex.chunker import LatexChunk

SYSTEM_PROMPT = """You are an expert at extracting mathematical knowledge graphs from LaTeX.
You always respond with valid JSON only, no markdown, no explanations."""

PHASE1_RULES = """## Phase 1 - Sequential (build the universe)
- Extract ONLY base concepts: definitions, notations and basic constructions.
- Names must be stable and reusable. Reuse existing ids from the concept registry
  and the graph summary; never create several ids for the same concept.
"""

PHASE2_RULES = """## Phase 2 - Extract the rest
- Extract every other entity and relation. Connect to base concepts by
  referencing their existing ids.
"""

FROZEN_RULE = """- The namespace is FROZEN: if a concept already appears in the registry or the
  summary you MUST reuse its id. Do not create synonymous nodes.
"""

USER_PROMPT_TEMPLATE = """Extract entities and relations from the LaTeX fragment below.

## Entity types (use only these)
{entity_types}

## Relation types (use only these)
{relation_types}

{phase_rules}{registry}## Goals
- Identify theorems, lemmas, corollaries, definitions, formulas, examples, exercises,
  axioms, propositions and conclusions (name, number, label, key formula).
- Relations: proves, depends on, derived from, contains, equivalent to, applies to,
  uses, assists in.
- Link across fragments through \\label / \\ref / \\eqref.

## Constraints (do not invent content)
- Only extract what is explicitly present in the fragment (environments, formula
  blocks, explicit statements). Never complete from general knowledge.
- Formula nodes must come from explicit math blocks (equation/align/\\[ \\]/$$ $$).
  Never turn a natural-language sentence into a Formula.
- Titles must be short and traceable: prefer numbers, labels or environment titles.
  Do not write summarizing titles.
- Never abbreviate: no "...", "…" or similar placeholders. Keep the original LaTeX
  in content as completely as the fragment allows.
- An example or exercise and its solution/answer belong to ONE node; do not create
  separate nodes for solutions.
- Do not split trivial sub-nodes out of examples or exercises unless they carry
  their own label that is referenced elsewhere.

## Existing graph summary (for cross-fragment linking)
{graph_summary}

{user_notes}## Fragment context
- chunk_id: {chunk_id}
- file: {file}
- section_path: {section_path}
- title: {title}

## LaTeX fragment
{text}

## Output format
Return one JSON object:
{{"nodes": [{{"id": "stable unique id; prefer tex:<label>, otherwise chunk:<chunkId>:<type>:<idx>", "type": "EntityType", "title": "short title", "content": "original LaTeX, complete", "source": {{"file": "...", "latexLabel": "label or null", "sectionPath": ["..."]}}, "meta": {{"chunkId": "...", "confidence": 0.0}}}}], "edges": [{{"type": "RelationType", "source": "node id", "target": "node id", "evidence": "short quote", "meta": {{"chunkId": "...", "confidence": 0.0}}}}]}}

Rules:
- Output JSON only.
- nodes[].type must be an entity type above; edges[].type must be a relation type above.
- Edge endpoints must be ids from nodes or ids already in the graph summary. Do not
  re-create an existing node unless you add title/content/source to it.

If nothing found: {{"nodes": [], "edges": []}}"""


def build_extraction_prompt(
    chunk: LatexChunk,
    selected_entities,
    selected_relations,
    graph_summary: str,
    user_notes: Optional[str] = None,
    phase: Optional[int] = None,
    frozen: bool = False,
    concept_registry: Optional[str] = None,
) -> str:
    """Build the user prompt for one chunk."""
    if phase == 1:
        phase_rules = PHASE1_RULES + "\n"
    elif phase == 2:
        phase_rules = PHASE2_RULES + (FROZEN_RULE if frozen else "") + "\n"
    else:
        phase_rules = ""

    registry = (concept_registry or "").strip()
    registry_block = f"## Concept registry (global, reuse these ids)\n{registry}\n\n" if registry else ""
    notes = (user_notes or "").strip()
    notes_block = f"## User guidance\n{notes}\n\n" if notes else ""

    return USER_PROMPT_TEMPLATE.format(
        entity_types="\n".join(f"- {t.value}" for t in selected_entities),
        relation_types="\n".join(f"- {t.value}" for t in selected_relations),
        phase_rules=phase_rules,
        registry=registry_block,
        graph_summary=graph_summary,
        user_notes=notes_block,
        chunk_id=chunk.id,
        file=chunk.file,
        section_path=" / ".join(chunk.section_path),
        title=chunk.title,
        text=chunk.text,
    )
