#!/usr/bin/env python3
"""
Build a knowledge graph from LaTeX sources.

Usage:
    texgraph notes/ --output graph.json

    # Or with options:
    python -m texgraph.run_pipeline paper.zip --granularity subsection --concurrency 8 --prune
    python -m texgraph.run_pipeline chapter.tex --local --output graph.json --neo4j
"""

import argparse
import asyncio
import logging
import sys

from .cache import MemorySnapshotStore, MongoSnapshotStore
from .config import settings
from .extract.prompt import SYSTEM_PROMPT
from .graph import GraphStore, export_graph_json, import_graph_json, prune_graph, push_to_neo4j
from .ingestion import read_tex_sources
from .latex import Granularity, preview_chunk_titles
from .llm import get_llm_client
from .process import PipelineOrchestrator, PipelineStatus

logger = logging.getLogger(__name__)


async def run(args) -> int:
    bundle = read_tex_sources(args.input)
    for warning in bundle.warnings:
        logger.warning(warning)

    if args.preview:
        preview = preview_chunk_titles(bundle.files, args.granularity)
        print(f"{preview.total_chunks} chunk(s)")
        for title in preview.preview_titles:
            print(f"  {title}")
        return 0

    store = GraphStore()
    if args.resume:
        with open(args.resume, encoding="utf-8") as f:
            store.replace(import_graph_json(f.read()))
        print(f"Resuming from {args.resume}: {store.node_count} nodes, {store.edge_count} edges")

    oracle = None
    if not args.local and settings.use_oracle:
        oracle = get_llm_client(system_prompt=SYSTEM_PROMPT)
    elif not args.local:
        logger.info("No LLM_API_KEY configured, using local extraction")

    snapshot_store = None
    if args.snapshots == "mongo":
        snapshot_store = MongoSnapshotStore()
    elif args.snapshots == "memory":
        snapshot_store = MemorySnapshotStore()

    orchestrator = PipelineOrchestrator(
        store=store,
        oracle=oracle,
        snapshot_store=snapshot_store,
        concurrency=args.concurrency,
        granularity=args.granularity,
        max_tokens=args.max_tokens,
        align_concepts=args.align or None,
    )
    try:
        state = await orchestrator.start(bundle.files)
    finally:
        if oracle is not None:
            await oracle.close()
        if isinstance(snapshot_store, MongoSnapshotStore):
            snapshot_store.close()

    print(state.message)
    if state.status != PipelineStatus.DONE:
        return 1

    graph = store.snapshot()
    if args.prune:
        graph, stats = prune_graph(graph)
        print(f"Pruned {len(stats.dropped_node_ids)} nodes and {stats.dropped_edge_count} edges")

    print(f"\nGraph: {len(graph.nodes)} nodes, {len(graph.edges)} edges")
    if args.output:
        export_graph_json(graph, args.output)
        print(f"Written to {args.output}")
    if args.neo4j:
        counts = push_to_neo4j(graph, clear_existing=args.clear_neo4j)
        print(f"Neo4j: {counts['nodes']} nodes, {counts['relationships']} relationships")
    return 0


def main():
    parser = argparse.ArgumentParser(description='Extract a knowledge graph from LaTeX sources')
    parser.add_argument(
        'input',
        help='A .tex file, a directory or a .zip archive'
    )
    parser.add_argument(
        '--granularity',
        choices=[g.value for g in Granularity],
        default=settings.chunk_granularity,
        help='Heading level that delimits chunks'
    )
    parser.add_argument(
        '--max-tokens',
        type=int,
        default=settings.chunk_max_tokens,
        help='Approximate chunk token limit (0 disables splitting)'
    )
    parser.add_argument(
        '--concurrency',
        type=int,
        default=settings.llm_parallelism,
        help='Concurrent oracle calls in phase 2'
    )
    parser.add_argument(
        '--local',
        action='store_true',
        help='Use the pattern-based extractor even if an API key is configured'
    )
    parser.add_argument(
        '--align',
        action='store_true',
        help='Ask the oracle to align unlabeled base concepts before freezing'
    )
    parser.add_argument(
        '--preview',
        action='store_true',
        help='Only print the chunk count and the first chunk titles'
    )
    parser.add_argument(
        '--resume',
        help='Graph JSON to merge new extractions into'
    )
    parser.add_argument(
        '--output', '-o',
        help='Write the graph as JSON to this path'
    )
    parser.add_argument(
        '--prune',
        action='store_true',
        help='Drop unreferenced template / fragment formulas before export'
    )
    parser.add_argument(
        '--snapshots',
        choices=['none', 'memory', 'mongo'],
        default='none',
        help='Where to save periodic snapshots'
    )
    parser.add_argument(
        '--neo4j',
        action='store_true',
        help='Push the final graph to Neo4j'
    )
    parser.add_argument(
        '--clear-neo4j',
        action='store_true',
        help='Delete existing Entity nodes before pushing'
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format='[%(levelname)s] %(message)s'
    )

    try:
        code = asyncio.run(run(args))
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        code = 2
    sys.exit(code)


if __name__ == '__main__':
    main()
