"""
Section-aware LaTeX segmentation.

Files are processed in path order. Each file keeps a heading stack built from
the sectioning commands, and consecutive lines that resolve to the same
heading at the requested granularity form one chunk. When the requested level
is missing under the current heading, the nearest shallower heading is used
instead, so under-structured documents coarsen rather than fail.

Chunks larger than `max_tokens` (approximate tokens) are split afterwards with
a 50%-overlap sliding window; smaller chunks are never touched.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from .comments import strip_latex_comments


class Granularity(str, Enum):
    FILE = "file"
    CHAPTER = "chapter"
    SECTION = "section"
    SUBSECTION = "subsection"
    SUBSUBSECTION = "subsubsection"
    PARAGRAPH = "paragraph"


GRANULARITY_LEVEL = {
    Granularity.FILE: 0,
    Granularity.CHAPTER: 1,
    Granularity.SECTION: 2,
    Granularity.SUBSECTION: 3,
    Granularity.SUBSUBSECTION: 4,
    Granularity.PARAGRAPH: 5,
}

HEADING_LEVEL = {
    "chapter": 1,
    "section": 2,
    "subsection": 3,
    "subsubsection": 4,
    "paragraph": 5,
    "subparagraph": 5,
}

HEADING_RE = re.compile(
    r"^\\(chapter|section|subsection|subsubsection|paragraph|subparagraph)\*?\{(.+?)\}\s*$"
)

# LaTeX commands, word/number runs, single CJK characters, any other
# non-space character.
TOKEN_RE = re.compile(r"\\[a-zA-Z]+|[a-zA-Z0-9_]+|[\u4e00-\u9fff]|[^\s]")


@dataclass(frozen=True)
class SourceFile:
    """A plain-text LaTeX file supplied by the document source."""
    path: str
    content: str


class LatexChunk(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    file: str
    title: str
    section_path: list[str] = Field(alias="sectionPath")
    text: str


@dataclass
class ChunkPreview:
    total_chunks: int
    preview_titles: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class _Heading:
    level: int
    title: str


def _as_source(f: Union[SourceFile, dict]) -> SourceFile:
    if isinstance(f, SourceFile):
        return f
    return SourceFile(path=f["path"], content=f["content"])


def _normalize_title(s: str) -> str:
    return re.sub(r"\s+", " ", s).strip()


def _push_heading(stack: list[_Heading], level: int, title: str) -> list[_Heading]:
    nxt = list(stack)
    while nxt and nxt[-1].level >= level:
        nxt.pop()
    nxt.append(_Heading(level, title))
    return nxt


def _granularity_key(file: str, stack: list[_Heading], desired: int) -> tuple[str, str, list[str]]:
    """Return (bucket key, chunk title, section path) for the current position."""
    if desired == 0:
        return f"file:{file}", file, [file]

    chosen = next((h for h in stack if h.level == desired), None)
    if chosen is None:
        for h in reversed(stack):
            if h.level < desired:
                chosen = h
                break

    chosen_level = chosen.level if chosen else 0
    title = chosen.title if chosen else file
    path = [file] + [h.title for h in stack if h.level <= chosen_level]
    key = f"g:{file}:{chosen_level}:{' / '.join(path[1:])}"
    return key, title, path


def _segment_file(source: SourceFile, desired: int, chunks: list[LatexChunk]) -> None:
    lines = strip_latex_comments(source.content).split("\n")
    stack: list[_Heading] = []
    buf: list[str] = []
    current_key: Optional[str] = None
    current_title = source.path
    current_path = [source.path]

    def flush():
        nonlocal buf
        text = "\n".join(buf).strip()
        buf = []
        if not text:
            return
        chunks.append(
            LatexChunk(
                id=f"chunk:{source.path}:{len(chunks)}",
                file=source.path,
                title=current_title,
                section_path=list(current_path),
                text=text,
            )
        )

    for line in lines:
        m = HEADING_RE.match(line)
        if m:
            stack = _push_heading(stack, HEADING_LEVEL[m.group(1).lower()], _normalize_title(m.group(2)))
        key, title, path = _granularity_key(source.path, stack, desired)
        if current_key is not None and key != current_key:
            flush()
        current_key, current_title, current_path = key, title, path
        buf.append(line)
    flush()


def approx_token_spans(text: str) -> list[tuple[int, int]]:
    """(start, end) offsets of approximate tokens, preserving the source text."""
    return [(m.start(), m.end()) for m in TOKEN_RE.finditer(text) if m.end() > m.start()]


def split_oversize(chunks: list[LatexChunk], max_tokens: int) -> list[LatexChunk]:
    out: list[LatexChunk] = []
    stride = max(1, max_tokens // 2)
    for chunk in chunks:
        spans = approx_token_spans(chunk.text)
        if len(spans) <= max_tokens:
            out.append(chunk)
            continue
        w = 0
        for start in range(0, len(spans), stride):
            end = min(len(spans), start + max_tokens)
            text = chunk.text[spans[start][0]:spans[end - 1][1]].strip()
            if text:
                out.append(chunk.model_copy(update={"id": f"{chunk.id}:w{w}", "text": text}))
                w += 1
            if end >= len(spans):
                break
    return out


def segment(
    files: Iterable[Union[SourceFile, dict]],
    granularity: Union[Granularity, str] = Granularity.SECTION,
    max_tokens: Optional[int] = None,
) -> list[LatexChunk]:
    """
    Split LaTeX files into ordered chunks.

    Args:
        files: SourceFile objects (or dicts with 'path' and 'content')
        granularity: Heading level that delimits chunks
        max_tokens: Approximate token limit that triggers window splitting

    Returns:
        Chunks in file-path order, then document order
    """
    desired = GRANULARITY_LEVEL[Granularity(granularity)]
    sources = sorted((_as_source(f) for f in files), key=lambda s: s.path)

    chunks: list[LatexChunk] = []
    for source in sources:
        _segment_file(source, desired, chunks)

    if max_tokens is None or max_tokens <= 0:
        return chunks
    return split_oversize(chunks, int(max_tokens))


def preview_chunk_titles(
    files: Iterable[Union[SourceFile, dict]],
    granularity: Union[Granularity, str] = Granularity.SECTION,
    max_preview: int = 10,
) -> ChunkPreview:
    """Chunk count plus the first few distinct human-readable chunk titles."""
    chunks = segment(files, granularity)
    titles: list[str] = []
    seen = set()
    for chunk in chunks:
        title = " / ".join(chunk.section_path[1:]) or chunk.title
        if title not in seen:
            seen.add(title)
            titles.append(title)
        if len(titles) >= max_preview:
            break
    return ChunkPreview(total_chunks=len(chunks), preview_titles=titles)
