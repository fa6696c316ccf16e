"""
Extraction pipeline orchestrator.

Local mode extracts chunks one by one with the pattern-based extractor.
Oracle mode runs two phases:
1. sequential base-concept extraction, each prompt seeing the concepts
   committed so far, followed by the namespace freeze
2. bounded-concurrency extraction of everything else, committed strictly in
   chunk order through the alias map produced by the freeze

Only the commit step mutates the graph store; extractors get snapshots.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional

from ..config import settings
from ..extract import (
    AliasMap,
    align_concepts_with_oracle,
    apply_alias_mapping,
    extract_from_chunk,
    extract_via_oracle,
    freeze_namespace,
    summarize_concept_registry,
)
from ..graph.store import GraphStore, restrict_graph
from ..graph.types import EntityType, ExtractionResult, RelationType, SchemaSelection
from ..latex.chunker import LatexChunk, segment
from ..llm import ExtractionOracle, SamplingParams

logger = logging.getLogger(__name__)

PHASE1_ENTITIES = [EntityType.DEFINITION, EntityType.NOTATION, EntityType.CONSTRUCTION]
PHASE1_RELATIONS = [RelationType.EQUIVALENT_TO, RelationType.DEPENDS_ON]

MIN_CONCURRENCY = 1
MAX_CONCURRENCY = 32


class PipelineStatus(str, Enum):
    IDLE = "idle"
    CHUNKING = "chunking"
    EXTRACTING = "extracting"
    DONE = "done"
    STOPPED = "stopped"
    ERROR = "error"


TERMINAL_STATUSES = frozenset({PipelineStatus.DONE, PipelineStatus.STOPPED, PipelineStatus.ERROR})


@dataclass
class ProcessingState:
    status: PipelineStatus = PipelineStatus.IDLE
    total_chunks: int = 0
    done_chunks: int = 0
    current_chunk_title: Optional[str] = None
    message: str = ""
    error: Optional[str] = None
    warnings: list[str] = field(default_factory=list)


class CancelToken:
    """Cooperative cancellation flag shared by one pipeline run."""

    def __init__(self):
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class PipelineCancelled(Exception):
    """Raised inside a run once the cancel token has been observed."""


def clamp_concurrency(value: int) -> int:
    return max(MIN_CONCURRENCY, min(MAX_CONCURRENCY, int(value)))


def _done_message(mode: str, warnings: list[str]) -> str:
    message = f"Done ({mode})"
    if warnings:
        message += f". {len(warnings)} warning(s): " + "; ".join(warnings[:3])
    return message


class PipelineOrchestrator:
    """
    Drives segmentation and extraction into a GraphStore.

    Args:
        store: Graph store to merge into (a fresh one by default)
        oracle: Extraction oracle; None selects local mode
        snapshot_store: Optional snapshot store for periodic saves
        schema: Selected entity / relation types and user notes
        concurrency: Phase-2 in-flight bound (clamped to 1..32)
        granularity: Segmentation granularity
        max_tokens: Chunk token limit (0 disables window splitting)
        sampling: Oracle sampling parameters
        user_notes: Free-text guidance added to oracle prompts
        align_concepts: Run oracle-assisted concept alignment before the freeze
        snapshot_every: Committed oracle calls between snapshots
        poll_interval: Seconds between polls of the ordered-commit loop
    """

    def __init__(
        self,
        store: Optional[GraphStore] = None,
        oracle: Optional[ExtractionOracle] = None,
        snapshot_store=None,
        schema: Optional[SchemaSelection] = None,
        concurrency: Optional[int] = None,
        granularity: Optional[str] = None,
        max_tokens: Optional[int] = None,
        sampling: Optional[SamplingParams] = None,
        user_notes: Optional[str] = None,
        align_concepts: Optional[bool] = None,
        snapshot_every: Optional[int] = None,
        poll_interval: Optional[float] = None,
    ):
        self.store = store if store is not None else GraphStore()
        self.oracle = oracle
        self.snapshot_store = snapshot_store
        self.schema = schema or SchemaSelection()
        self.concurrency = clamp_concurrency(concurrency if concurrency is not None else settings.llm_parallelism)
        self.granularity = granularity or settings.chunk_granularity
        self.max_tokens = max_tokens if max_tokens is not None else settings.chunk_max_tokens
        self.sampling = sampling
        self.user_notes = user_notes if user_notes is not None else (self.schema.notes or settings.user_notes)
        self.align_concepts = align_concepts if align_concepts is not None else settings.align_concepts
        self.snapshot_every = snapshot_every if snapshot_every is not None else settings.snapshot_every
        self.poll_interval = poll_interval if poll_interval is not None else settings.commit_poll_interval

        self.state = ProcessingState()
        self.token = CancelToken()
        self.chunks: list[LatexChunk] = []
        self.alias_map: AliasMap = {}
        self._oracle_calls = 0
        self._snapshot_tasks: set[asyncio.Task] = set()

    @property
    def mode(self) -> str:
        return "local" if self.oracle is None else "oracle"

    # ===========================================
    # Lifecycle
    # ===========================================

    def _reset(self) -> None:
        self.state = ProcessingState()
        self.token = CancelToken()
        self.chunks = []
        self.alias_map = {}
        self._oracle_calls = 0

    def cancel(self) -> None:
        """Request a cooperative stop; in-flight oracle calls are aborted and drained."""
        if self.state.status in TERMINAL_STATUSES:
            return
        logger.info("Cancellation requested")
        self.token.cancel()
        if self.state.status == PipelineStatus.IDLE:
            self.state.status = PipelineStatus.STOPPED
            self.state.message = "Stopped"

    async def start(self, files: Iterable) -> ProcessingState:
        """
        Segment the files and run extraction over the resulting chunks.

        Raises:
            ValueError: If no files are given
        """
        files = list(files)
        if not files:
            raise ValueError("No LaTeX files to process")

        self._reset()
        self.state.status = PipelineStatus.CHUNKING
        self.state.message = "Chunking"
        logger.info(f"Chunking {len(files)} file(s) at {self.granularity} granularity")
        try:
            chunks = segment(files, self.granularity, self.max_tokens)
        except Exception as e:
            logger.error(f"Chunking failed: {e}")
            self.state.status = PipelineStatus.ERROR
            self.state.error = str(e)
            self.state.message = f"Error: {e}"
            return self.state

        if self.token.cancelled:
            self.state.status = PipelineStatus.STOPPED
            self.state.message = "Stopped"
            return self.state
        return await self.run(chunks)

    async def run(self, chunks: Iterable[LatexChunk]) -> ProcessingState:
        """Extract a fixed chunk sequence into the store."""
        if self.state.status != PipelineStatus.CHUNKING:
            self._reset()
        self.chunks = list(chunks)
        n = len(self.chunks)

        self.state.status = PipelineStatus.EXTRACTING
        self.state.total_chunks = n if self.oracle is None else 2 * n
        self.state.done_chunks = 0
        logger.info(f"Extracting {n} chunk(s) in {self.mode} mode")

        try:
            if self.oracle is None:
                await self._run_local()
            else:
                await self._run_oracle()
            self.state.status = PipelineStatus.DONE
            self.state.current_chunk_title = None
            self.state.message = _done_message(self.mode, self.state.warnings)
            logger.info(self.state.message)
        except Exception as e:
            if isinstance(e, PipelineCancelled) or self.token.cancelled:
                self.state.status = PipelineStatus.STOPPED
                self.state.message = "Stopped"
                logger.info(f"Pipeline stopped after {self.state.done_chunks}/{self.state.total_chunks}")
            else:
                logger.exception(f"Pipeline failed: {e}")
                self.state.status = PipelineStatus.ERROR
                self.state.error = str(e)
                self.state.message = f"Error: {e}"
        finally:
            await self._drain_snapshots()
        return self.state

    # ===========================================
    # Shared steps
    # ===========================================

    def _check_cancelled(self) -> None:
        if self.token.cancelled:
            raise PipelineCancelled()

    def _commit(self, result: ExtractionResult) -> None:
        self.store.merge(result.nodes, result.edges)
        self.state.warnings.extend(result.warnings)
        self.state.done_chunks += 1

    def _progress(self, label: str, chunk: LatexChunk) -> None:
        self.state.current_chunk_title = chunk.title
        self.state.message = f"{label}: {chunk.title}"
        logger.info(f"[{self.state.done_chunks + 1}/{self.state.total_chunks}] {label}: {chunk.title}")

    async def _guarded(self, chunk: LatexChunk, coro) -> ExtractionResult:
        """Turn a failed extraction into an empty result plus a warning."""
        try:
            return await coro
        except (PipelineCancelled, asyncio.CancelledError):
            raise
        except Exception as e:
            logger.warning(f"{chunk.id}: extraction failed: {e}")
            return ExtractionResult(warnings=[f"{chunk.id}: extraction failed: {e}"])

    async def _cancellable(self, coro):
        """Await `coro` as a task, aborting and draining it once cancellation is requested."""
        task = asyncio.create_task(coro)
        while not task.done():
            if self.token.cancelled:
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
                raise PipelineCancelled()
            await asyncio.wait({task}, timeout=self.poll_interval)
        return task.result()

    # ===========================================
    # Snapshots
    # ===========================================

    def _count_oracle_call(self) -> None:
        self._oracle_calls += 1
        if self.snapshot_store is None or self.snapshot_every <= 0:
            return
        if self._oracle_calls % self.snapshot_every == 0:
            metadata = {"note": f"auto ({self._oracle_calls} calls)", "calls": self._oracle_calls}
            task = asyncio.create_task(self._save_snapshot(self.store.snapshot(), metadata))
            self._snapshot_tasks.add(task)
            task.add_done_callback(self._snapshot_tasks.discard)

    async def _save_snapshot(self, graph, metadata: dict) -> None:
        try:
            snapshot_id = await asyncio.to_thread(self.snapshot_store.save, graph, metadata)
            logger.debug(f"Snapshot {snapshot_id} saved")
        except Exception as e:
            logger.warning(f"Snapshot save failed: {e}")

    async def _drain_snapshots(self) -> None:
        if self._snapshot_tasks:
            await asyncio.gather(*list(self._snapshot_tasks), return_exceptions=True)

    # ===========================================
    # Local mode
    # ===========================================

    def _seed_labels(self) -> dict[str, str]:
        labels = {}
        for node in self.store.snapshot().nodes:
            if node.label:
                labels.setdefault(node.label, node.id)
        return labels

    async def _run_local(self) -> None:
        labels = self._seed_labels()
        for chunk in self.chunks:
            self._check_cancelled()
            self._progress("Extracting", chunk)
            try:
                result = extract_from_chunk(
                    chunk,
                    self.schema.entity_types,
                    self.schema.relation_types,
                    labels,
                )
            except Exception as e:
                logger.warning(f"{chunk.id}: local extraction failed: {e}")
                result = ExtractionResult(warnings=[f"{chunk.id}: extraction failed: {e}"])
            self._check_cancelled()
            self._commit(result)
            # let cancel() callers and snapshot tasks run between chunks
            await asyncio.sleep(0)

    # ===========================================
    # Oracle mode
    # ===========================================

    async def _run_oracle(self) -> None:
        await self._run_phase1()
        self._check_cancelled()
        if self.align_concepts:
            await self._align()
        self._check_cancelled()
        self._freeze()
        await self._run_phase2()
        self._restrict_to_schema()

    async def _run_phase1(self) -> None:
        logger.info("Phase 1: base concepts (sequential)")
        for chunk in self.chunks:
            self._check_cancelled()
            self._progress("Phase 1", chunk)
            graph = self.store.snapshot()
            result = await self._cancellable(
                self._guarded(
                    chunk,
                    extract_via_oracle(
                        self.oracle,
                        chunk,
                        PHASE1_ENTITIES,
                        PHASE1_RELATIONS,
                        graph,
                        phase=1,
                        frozen=False,
                        concept_registry=summarize_concept_registry(graph),
                        user_notes=self.user_notes,
                        sampling=self.sampling,
                    ),
                )
            )
            self._check_cancelled()
            self._commit(result)
            self._count_oracle_call()

    async def _align(self) -> None:
        self.state.message = "Aligning concepts"
        try:
            edges = await self._cancellable(align_concepts_with_oracle(self.oracle, self.store.snapshot()))
        except PipelineCancelled:
            raise
        except Exception as e:
            logger.warning(f"Concept alignment failed: {e}")
            self.state.warnings.append(f"concept alignment failed: {e}")
            return
        self.store.merge(edges=edges)

    def _freeze(self) -> None:
        self.state.message = "Freezing namespace"
        frozen = freeze_namespace(self.store.snapshot())
        self.store.replace(frozen.graph)
        self.alias_map = frozen.alias_map
        logger.info(f"Namespace frozen: {frozen.merged_count} alias(es) merged")

    def _restrict_to_schema(self) -> None:
        # phase-1 base concepts are extracted whatever the selection
        graph = self.store.snapshot()
        restricted = restrict_graph(graph, self.schema.entity_types, self.schema.relation_types)
        dropped = len(graph.nodes) - len(restricted.nodes)
        if dropped or len(graph.edges) != len(restricted.edges):
            self.store.replace(restricted)
            logger.info(
                f"Dropped {dropped} node(s) and {len(graph.edges) - len(restricted.edges)} edge(s) "
                f"outside the selected types"
            )

    def _dispatch_phase2(self, chunk: LatexChunk) -> asyncio.Task:
        graph = self.store.snapshot()
        return asyncio.create_task(
            self._guarded(
                chunk,
                extract_via_oracle(
                    self.oracle,
                    chunk,
                    self.schema.entity_types,
                    self.schema.relation_types,
                    graph,
                    phase=2,
                    frozen=True,
                    concept_registry=summarize_concept_registry(graph),
                    user_notes=self.user_notes,
                    sampling=self.sampling,
                ),
            )
        )

    async def _run_phase2(self) -> None:
        logger.info(f"Phase 2: remaining entities (concurrency {self.concurrency})")
        n = len(self.chunks)
        in_flight: dict[int, asyncio.Task] = {}
        pending: dict[int, ExtractionResult] = {}
        next_dispatch = 0
        next_commit = 0
        try:
            while next_commit < n:
                self._check_cancelled()
                while next_dispatch < n and len(in_flight) < self.concurrency:
                    in_flight[next_dispatch] = self._dispatch_phase2(self.chunks[next_dispatch])
                    next_dispatch += 1

                for idx in [i for i, t in in_flight.items() if t.done()]:
                    pending[idx] = in_flight.pop(idx).result()

                if next_commit in pending:
                    chunk = self.chunks[next_commit]
                    self._check_cancelled()
                    self._progress("Phase 2", chunk)
                    result = apply_alias_mapping(pending.pop(next_commit), self.alias_map)
                    self._commit(result)
                    self._count_oracle_call()
                    next_commit += 1
                    continue

                await asyncio.sleep(self.poll_interval)
        finally:
            if in_flight:
                for task in in_flight.values():
                    task.cancel()
                await asyncio.gather(*in_flight.values(), return_exceptions=True)


__all__ = [
    "CancelToken",
    "PipelineCancelled",
    "PipelineOrchestrator",
    "PipelineStatus",
    "ProcessingState",
    "clamp_concurrency",
]
