import asyncio
import json
import re

import pytest

from texgraph.graph.store import GraphStore
from texgraph.latex.chunker import LatexChunk

EMPTY_RESULT = '{"nodes": [], "edges": []}'

_CHUNK_ID_RE = re.compile(r"^- chunk_id: (.+)$", re.MULTILINE)


def make_chunk(idx: int, text: str, file: str = "t.tex") -> LatexChunk:
    return LatexChunk(
        id=f"chunk:{file}:{idx}",
        file=file,
        title=f"Part {idx}",
        section_path=[file, f"Part {idx}"],
        text=text,
    )


class ScriptedOracle:
    """
    Test oracle answering from a script keyed by (phase, chunk id) or chunk id.

    Responses may be strings, dicts (sent as JSON) or exceptions (raised).
    """

    def __init__(self, responses=None, delays=None, default=EMPTY_RESULT):
        self.responses = responses or {}
        self.delays = delays or {}
        self.default = default
        self.calls = []
        self.completed = []
        self.prompts = []
        self.active = 0
        self.max_active = 0

    @staticmethod
    def phase_of(prompt: str):
        if "## Phase 1" in prompt:
            return 1
        if "## Phase 2" in prompt:
            return 2
        return None

    @staticmethod
    def chunk_id_of(prompt: str):
        m = _CHUNK_ID_RE.search(prompt)
        return m.group(1).strip() if m else None

    def _lookup(self, table, phase, chunk_id, default):
        if (phase, chunk_id) in table:
            return table[(phase, chunk_id)]
        return table.get(chunk_id, default)

    async def invoke(self, prompt, sampling):
        phase, chunk_id = self.phase_of(prompt), self.chunk_id_of(prompt)
        self.calls.append((phase, chunk_id))
        self.prompts.append(prompt)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            delay = self._lookup(self.delays, phase, chunk_id, 0)
            if delay:
                await asyncio.sleep(delay)
            response = self._lookup(self.responses, phase, chunk_id, self.default)
            self.completed.append((phase, chunk_id))
            if isinstance(response, Exception):
                raise response
            return response if isinstance(response, str) else json.dumps(response)
        finally:
            self.active -= 1


class RecordingStore(GraphStore):
    """GraphStore that remembers the node ids of every merge, in order."""

    def __init__(self, graph=None):
        self.merged_ids = []
        super().__init__(graph)

    def merge(self, nodes=(), edges=()):
        nodes = list(nodes)
        self.merged_ids.extend(n.id for n in nodes)
        super().merge(nodes, edges)


@pytest.fixture
def two_chunk_document():
    """A definition in one section and a theorem referencing it in the next."""
    return (
        "\\section{Basics}\n"
        "\\begin{definition}\\label{def:x}\n"
        "A set $X$ is compact if every open cover has a finite subcover.\n"
        "\\end{definition}\n"
        "\\section{Results}\n"
        "\\begin{theorem}\\label{thm:y}\n"
        "Uses \\ref{def:x}: every closed subset of a compact space is compact.\n"
        "\\end{theorem}\n"
    )
