"""
texgraph - incremental LaTeX to knowledge-graph extraction.

Subpackages:
- config: settings from environment / .env
- latex: comment stripping and section-aware segmentation
- extract: local and oracle extractors, identity unification, LaTeX repair
- graph: data model, mergeable store, pruning, export
- llm: extraction oracle client
- cache: graph snapshot stores
- ingestion: reading .tex sources
- process: the pipeline orchestrator
"""

__version__ = "0.1.0"
