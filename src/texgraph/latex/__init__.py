"""
LaTeX normalization and segmentation.

Modules:
- comments: best-effort comment stripping
- chunker: section-aware chunking with sliding-window overflow splitting
"""

from .comments import strip_latex_comments
from .chunker import (
    ChunkPreview,
    Granularity,
    LatexChunk,
    SourceFile,
    approx_token_spans,
    preview_chunk_titles,
    segment,
)

__all__ = [
    "strip_latex_comments",
    "ChunkPreview",
    "Granularity",
    "LatexChunk",
    "SourceFile",
    "approx_token_spans",
    "preview_chunk_titles",
    "segment",
]
