import asyncio

import pytest

from texgraph.cache import MemorySnapshotStore
from texgraph.graph import GraphStore
from texgraph.graph.types import EntityType, RelationType, SchemaSelection
from texgraph.latex import SourceFile
from texgraph.llm import OracleError
from texgraph.process import PipelineOrchestrator, PipelineStatus, clamp_concurrency

from conftest import RecordingStore, ScriptedOracle, make_chunk


def _theorem_chunks(n):
    return [
        make_chunk(i, f"\\begin{{theorem}}\\label{{thm:c{i}}}Statement {i} holds for every n.\\end{{theorem}}")
        for i in range(n)
    ]


def _theorem_response(i):
    return {
        "nodes": [
            {
                "id": f"tex:c{i}",
                "type": "Theorem",
                "title": f"Theorem {i}",
                "content": f"Statement {i} holds for every n.",
                "source": {"latexLabel": f"thm:c{i}"},
            }
        ],
        "edges": [],
    }


def _orchestrator(oracle=None, **kwargs):
    kwargs.setdefault("poll_interval", 0.001)
    kwargs.setdefault("concurrency", 4)
    return PipelineOrchestrator(oracle=oracle, **kwargs)


def test_local_mode_end_to_end(two_chunk_document):
    orchestrator = _orchestrator()

    state = asyncio.run(orchestrator.start([SourceFile("doc.tex", two_chunk_document)]))

    assert state.status == PipelineStatus.DONE
    assert state.message == "Done (local)"
    assert (state.done_chunks, state.total_chunks) == (2, 2)
    store = orchestrator.store
    assert store.get("tex:x").type == EntityType.DEFINITION
    assert store.get("tex:y").type == EntityType.THEOREM
    depends = [(e.source, e.target) for e in store.snapshot().edges if e.type == RelationType.DEPENDS_ON]
    assert depends == [("tex:y", "tex:x")]


def test_local_mode_resolves_labels_already_in_the_store():
    store = GraphStore()
    first = _orchestrator(store=store)
    asyncio.run(first.run([make_chunk(0, "\\begin{definition}\\label{def:x}Base.\\end{definition}")]))

    second = _orchestrator(store=store)
    asyncio.run(second.run([make_chunk(1, "\\begin{lemma}\\label{lem:z}By \\ref{def:x}.\\end{lemma}")]))

    assert ("tex:z", "tex:x") in [(e.source, e.target) for e in store.snapshot().edges]


def test_start_rejects_empty_input():
    with pytest.raises(ValueError):
        asyncio.run(_orchestrator().start([]))


def test_oracle_mode_counts_two_units_per_chunk():
    chunks = _theorem_chunks(3)
    oracle = ScriptedOracle(responses={(2, c.id): _theorem_response(i) for i, c in enumerate(chunks)})
    orchestrator = _orchestrator(oracle)

    state = asyncio.run(orchestrator.run(chunks))

    assert state.status == PipelineStatus.DONE
    assert state.message == "Done (oracle)"
    assert (state.done_chunks, state.total_chunks) == (6, 6)
    assert [p for p, _ in oracle.calls] == [1, 1, 1, 2, 2, 2]
    assert [n.id for n in orchestrator.store.snapshot().nodes] == ["tex:c0", "tex:c1", "tex:c2"]


def test_phase_two_commits_in_chunk_order_despite_latency():
    chunks = _theorem_chunks(4)
    oracle = ScriptedOracle(
        responses={(2, c.id): _theorem_response(i) for i, c in enumerate(chunks)},
        delays={(2, c.id): 0.02 * (len(chunks) - i) for i, c in enumerate(chunks)},
    )
    store = RecordingStore()
    orchestrator = _orchestrator(oracle, store=store, concurrency=4)

    state = asyncio.run(orchestrator.run(chunks))

    assert state.status == PipelineStatus.DONE
    finished = [cid for phase, cid in oracle.completed if phase == 2]
    assert finished == [c.id for c in reversed(chunks)]
    committed = [node_id for node_id in store.merged_ids if node_id.startswith("tex:c")]
    assert committed == ["tex:c0", "tex:c1", "tex:c2", "tex:c3"]


def test_phase_two_respects_concurrency_bound():
    chunks = _theorem_chunks(6)
    oracle = ScriptedOracle(delays={(2, c.id): 0.01 for c in chunks})
    orchestrator = _orchestrator(oracle, concurrency=2)

    asyncio.run(orchestrator.run(chunks))

    assert oracle.max_active == 2


def test_phase_one_sees_concepts_committed_earlier():
    chunks = [
        make_chunk(0, "\\begin{definition}\\label{def:m}A monoid is a set with an associative unital operation.\\end{definition}"),
        make_chunk(1, "Monoids are everywhere."),
    ]
    monoid = {
        "nodes": [{"id": "tex:m", "type": "Definition", "title": "Monoid", "content": "A monoid is a set with an associative unital operation.",
                   "source": {"latexLabel": "def:m"}}],
        "edges": [],
    }
    oracle = ScriptedOracle(responses={(1, chunks[0].id): monoid})
    orchestrator = _orchestrator(oracle)

    asyncio.run(orchestrator.run(chunks))

    phase1_prompts = [p for p in oracle.prompts if "## Phase 1" in p]
    assert "tex:m | Definition | Monoid" not in phase1_prompts[0]
    assert "tex:m | Definition | Monoid" in phase1_prompts[1]


def test_phase_two_results_are_rewritten_through_the_alias_map():
    chunks = [make_chunk(0, "\\begin{definition}\\label{def:k}A kernel is the preimage of the identity element.\\end{definition}")]
    phase1 = {
        "nodes": [{"id": "kernel", "type": "Definition", "title": "Kernel", "content": "A kernel is the preimage of the identity element.",
                   "source": {"latexLabel": "def:k"}}],
        "edges": [],
    }
    phase2 = {
        "nodes": [{"id": "kernel-again", "type": "Definition", "title": "Kernel", "content": "A kernel is the preimage of the identity element.",
                   "source": {"latexLabel": "def:k"}}],
        "edges": [],
    }
    oracle = ScriptedOracle(responses={(1, chunks[0].id): phase1, (2, chunks[0].id): phase2})
    orchestrator = _orchestrator(oracle)

    asyncio.run(orchestrator.run(chunks))

    assert orchestrator.alias_map["kernel"] == "tex:k"
    assert [n.id for n in orchestrator.store.snapshot().nodes] == ["tex:k"]


def test_chunk_failure_becomes_a_warning():
    chunks = _theorem_chunks(3)
    responses = {(2, c.id): _theorem_response(i) for i, c in enumerate(chunks)}
    responses[(2, chunks[1].id)] = OracleError("upstream exploded")
    oracle = ScriptedOracle(responses=responses)
    orchestrator = _orchestrator(oracle)

    state = asyncio.run(orchestrator.run(chunks))

    assert state.status == PipelineStatus.DONE
    assert "chunk:t.tex:1: extraction failed: upstream exploded" in state.warnings
    assert state.message.startswith("Done (oracle). 1 warning(s): chunk:t.tex:1")
    assert [n.id for n in orchestrator.store.snapshot().nodes] == ["tex:c0", "tex:c2"]


def test_unparseable_output_becomes_a_warning():
    chunks = _theorem_chunks(1)
    oracle = ScriptedOracle(default="Sorry, I cannot help with that.")

    state = asyncio.run(_orchestrator(oracle).run(chunks))

    assert state.status == PipelineStatus.DONE
    assert len(state.warnings) == 2
    assert all("extraction failed" in w for w in state.warnings)


def test_cancel_during_phase_one_stops_and_drains():
    chunks = _theorem_chunks(5)
    oracle = ScriptedOracle(delays={(1, c.id): 0.05 for c in chunks})
    orchestrator = _orchestrator(oracle)

    async def scenario():
        task = asyncio.create_task(orchestrator.run(chunks))
        await asyncio.sleep(0.12)
        orchestrator.cancel()
        return await task

    state = asyncio.run(scenario())

    assert state.status == PipelineStatus.STOPPED
    assert state.done_chunks < 5
    assert oracle.active == 0
    assert all(phase == 1 for phase, _ in oracle.calls)


def test_cancel_during_phase_two_aborts_in_flight_calls():
    chunks = _theorem_chunks(4)
    oracle = ScriptedOracle(delays={(2, c.id): 5.0 for c in chunks})
    orchestrator = _orchestrator(oracle, concurrency=4)

    async def scenario():
        task = asyncio.create_task(orchestrator.run(chunks))
        while not any(phase == 2 for phase, _ in oracle.calls):
            await asyncio.sleep(0.005)
        orchestrator.cancel()
        return await asyncio.wait_for(task, timeout=2.0)

    state = asyncio.run(scenario())

    assert state.status == PipelineStatus.STOPPED
    assert state.done_chunks == 4
    assert oracle.active == 0
    assert not any(phase == 2 for phase, _ in oracle.completed)


def test_cancel_before_start_is_terminal_until_restart():
    orchestrator = _orchestrator()
    orchestrator.cancel()

    assert orchestrator.state.status == PipelineStatus.STOPPED

    state = asyncio.run(orchestrator.run([make_chunk(0, "\\begin{lemma}A lemma body that is fine.\\end{lemma}")]))
    assert state.status == PipelineStatus.DONE


def test_snapshot_every_ten_oracle_calls():
    chunks = _theorem_chunks(5)
    snapshots = MemorySnapshotStore()
    orchestrator = _orchestrator(ScriptedOracle(), snapshot_store=snapshots, snapshot_every=10)

    state = asyncio.run(orchestrator.run(chunks))

    assert state.status == PipelineStatus.DONE
    (meta,) = snapshots.list()
    assert meta.metadata["calls"] == 10


def test_snapshot_failures_are_swallowed():
    class BrokenSnapshots:
        def save(self, graph, metadata=None):
            raise RuntimeError("database down")

    orchestrator = _orchestrator(ScriptedOracle(), snapshot_store=BrokenSnapshots(), snapshot_every=1)

    state = asyncio.run(orchestrator.run(_theorem_chunks(2)))

    assert state.status == PipelineStatus.DONE
    assert state.warnings == []


def test_unexpected_failure_sets_error_state():
    class BrokenStore(GraphStore):
        def merge(self, nodes=(), edges=()):
            raise RuntimeError("store is read-only")

    orchestrator = _orchestrator(store=BrokenStore())

    state = asyncio.run(orchestrator.run(_theorem_chunks(1)))

    assert state.status == PipelineStatus.ERROR
    assert state.error == "store is read-only"


def test_clamp_concurrency():
    assert clamp_concurrency(0) == 1
    assert clamp_concurrency(8) == 8
    assert clamp_concurrency(100) == 32


def test_base_concepts_outside_the_selection_are_not_kept():
    chunks = [
        make_chunk(
            0,
            "\\begin{definition}\\label{def:m}A monoid is a set with an associative unital operation.\\end{definition}\n"
            "\\begin{theorem}\\label{thm:t}Every monoid has a unique identity element.\\end{theorem}",
        )
    ]
    phase1 = {
        "nodes": [{"id": "tex:m", "type": "Definition", "title": "Monoid", "content": "A monoid is a set with an associative unital operation.",
                   "source": {"latexLabel": "def:m"}}],
        "edges": [],
    }
    phase2 = {
        "nodes": [{"id": "tex:t", "type": "Theorem", "title": "Uniqueness of identity", "content": "Every monoid has a unique identity element.",
                   "source": {"latexLabel": "thm:t"}}],
        "edges": [{"type": "DependsOn", "source": "tex:t", "target": "tex:m"}],
    }
    oracle = ScriptedOracle(responses={(1, chunks[0].id): phase1, (2, chunks[0].id): phase2})
    schema = SchemaSelection(entity_types=[EntityType.THEOREM], relation_types=[RelationType.PROVES])
    orchestrator = _orchestrator(oracle, schema=schema)

    state = asyncio.run(orchestrator.run(chunks))

    assert state.status == PipelineStatus.DONE
    graph = orchestrator.store.snapshot()
    assert [(n.id, n.type) for n in graph.nodes] == [("tex:t", EntityType.THEOREM)]
    assert graph.edges == []
    phase2_prompts = [p for p in oracle.prompts if "## Phase 2" in p]
    assert "tex:m | Definition | Monoid" in phase2_prompts[0]
