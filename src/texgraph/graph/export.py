"""
Graph export / import.

JSON documents look like {"version": 1, "graph": {"nodes": [...], "edges": [...]}}
with camelCase source fields. Neo4j export MERGEs one :Entity node per graph
node and one relationship per edge, labelled by relation type.
"""

import json
import logging
from pathlib import Path
from typing import Optional

from neo4j import GraphDatabase
from pydantic import ValidationError

from ..config import settings
from .types import Graph, RelationType

logger = logging.getLogger(__name__)

EXPORT_VERSION = 1
NEO4J_BATCH_SIZE = 500


def graph_to_document(graph: Graph) -> dict:
    return {"version": EXPORT_VERSION, "graph": graph.model_dump(mode="json", by_alias=True)}


def export_graph_json(graph: Graph, path: Optional[str | Path] = None, indent: int = 2) -> str:
    """Serialize the graph; also write it to `path` when given."""
    text = json.dumps(graph_to_document(graph), ensure_ascii=False, indent=indent)
    if path is not None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        logger.info(f"Wrote {len(graph.nodes)} nodes and {len(graph.edges)} edges to {path}")
    return text


def import_graph_json(data: str | dict) -> Graph:
    """
    Parse an exported graph.

    Accepts the versioned document or a bare {"nodes", "edges"} object.

    Raises:
        ValueError: for anything else
    """
    if isinstance(data, str):
        try:
            data = json.loads(data)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid graph JSON: {e}")
    if not isinstance(data, dict):
        raise ValueError("Graph JSON must be an object")

    payload = data.get("graph") if isinstance(data.get("graph"), dict) else data
    if not isinstance(payload.get("nodes"), list) or not isinstance(payload.get("edges"), list):
        raise ValueError("Graph JSON must contain 'nodes' and 'edges' lists")
    try:
        return Graph.model_validate({"nodes": payload["nodes"], "edges": payload["edges"]})
    except ValidationError as e:
        raise ValueError(f"Invalid graph JSON: {e}")


def _node_rows(graph: Graph) -> list[dict]:
    rows = []
    for node in graph.nodes:
        source = node.source
        rows.append({
            "id": node.id,
            "type": node.type.value,
            "title": node.title,
            "content": node.content,
            "file": source.file if source else None,
            "latex_label": source.latex_label if source else None,
            "section_path": source.section_path if source and source.section_path else [],
            "chunk_id": node.meta.get("chunkId"),
        })
    return rows


def push_to_neo4j(
    graph: Graph,
    neo4j_uri: Optional[str] = None,
    neo4j_user: Optional[str] = None,
    neo4j_password: Optional[str] = None,
    clear_existing: bool = False,
) -> dict[str, int]:
    """
    MERGE the graph into Neo4j.

    Returns:
        Counts of nodes and relationships written
    """
    driver = GraphDatabase.driver(
        neo4j_uri or settings.neo4j_uri,
        auth=(neo4j_user or settings.neo4j_user, neo4j_password or settings.neo4j_password),
    )
    nodes_written = 0
    edges_written = 0

    with driver.session() as session:
        session.run("""
            CREATE CONSTRAINT entity_id IF NOT EXISTS
            FOR (e:Entity) REQUIRE e.id IS UNIQUE
        """)

        if clear_existing:
            logger.info("Clearing existing Entity nodes")
            session.run("MATCH (e:Entity) DETACH DELETE e")

        rows = _node_rows(graph)
        for i in range(0, len(rows), NEO4J_BATCH_SIZE):
            batch = rows[i:i + NEO4J_BATCH_SIZE]
            result = session.run("""
                UNWIND $nodes AS n
                MERGE (e:Entity {id: n.id})
                SET e.type = n.type,
                    e.title = n.title,
                    e.content = n.content,
                    e.file = n.file,
                    e.latex_label = n.latex_label,
                    e.section_path = n.section_path,
                    e.chunk_id = n.chunk_id
                RETURN count(e) AS written
            """, nodes=batch)
            nodes_written += result.single()["written"]

        # relationship types cannot be parameterized, so one query per type
        for relation in RelationType:
            edges = [
                {"source": e.source, "target": e.target, "chunk_id": e.chunk_id, "evidence": e.evidence}
                for e in graph.edges
                if e.type == relation
            ]
            for i in range(0, len(edges), NEO4J_BATCH_SIZE):
                batch = edges[i:i + NEO4J_BATCH_SIZE]
                result = session.run(f"""
                    UNWIND $edges AS r
                    MATCH (s:Entity {{id: r.source}})
                    MATCH (t:Entity {{id: r.target}})
                    MERGE (s)-[rel:{relation.value} {{chunk_id: r.chunk_id}}]->(t)
                    SET rel.evidence = r.evidence
                    RETURN count(rel) AS written
                """, edges=batch)
                edges_written += result.single()["written"]

    driver.close()
    logger.info(f"Neo4j: {nodes_written} nodes, {edges_written} relationships written")
    return {"nodes": nodes_written, "relationships": edges_written}
