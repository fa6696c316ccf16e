"""
Snapshot store: periodic copies of the graph taken while extraction runs.

MongoDB backs persistent snapshots; the in-memory store serves local runs
and tests.
"""

import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Optional, Protocol

from pydantic import BaseModel, Field
from pymongo import DESCENDING, MongoClient
from pymongo.collection import Collection

from ..config import settings
from ..graph.types import Graph

logger = logging.getLogger(__name__)


class SnapshotMeta(BaseModel):
    id: str
    created_at: datetime
    node_count: int = 0
    edge_count: int = 0
    note: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class Snapshot(BaseModel):
    meta: SnapshotMeta
    graph: Graph


class SnapshotStore(Protocol):
    def save(self, graph: Graph, metadata: Optional[dict[str, Any]] = None) -> str:
        ...

    def list(self) -> list[SnapshotMeta]:
        ...

    def load(self, snapshot_id: str) -> Optional[Snapshot]:
        ...

    def delete_all(self) -> int:
        ...

    def delete_all_but_latest(self) -> int:
        ...


def new_snapshot_id() -> str:
    return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"


def _snapshot_meta(graph: Graph, metadata: Optional[dict[str, Any]]) -> SnapshotMeta:
    metadata = dict(metadata or {})
    note = metadata.pop("note", None)
    return SnapshotMeta(
        id=new_snapshot_id(),
        created_at=datetime.now(timezone.utc),
        node_count=len(graph.nodes),
        edge_count=len(graph.edges),
        note=note if isinstance(note, str) else None,
        metadata=metadata,
    )


class MemorySnapshotStore:
    """Process-local snapshot store."""

    def __init__(self):
        self._snapshots: list[Snapshot] = []

    def save(self, graph: Graph, metadata: Optional[dict[str, Any]] = None) -> str:
        meta = _snapshot_meta(graph, metadata)
        self._snapshots.append(Snapshot(meta=meta, graph=graph.model_copy(deep=True)))
        return meta.id

    def list(self) -> list[SnapshotMeta]:
        return [s.meta for s in reversed(self._snapshots)]

    def load(self, snapshot_id: str) -> Optional[Snapshot]:
        for snapshot in self._snapshots:
            if snapshot.meta.id == snapshot_id:
                return snapshot
        return None

    def delete_all(self) -> int:
        deleted = len(self._snapshots)
        self._snapshots = []
        return deleted

    def delete_all_but_latest(self) -> int:
        if not self._snapshots:
            return 0
        deleted = len(self._snapshots) - 1
        self._snapshots = self._snapshots[-1:]
        return deleted


class MongoSnapshotStore:
    """Snapshots persisted in a MongoDB collection."""

    def __init__(
        self,
        mongo_uri: Optional[str] = None,
        db_name: Optional[str] = None,
        collection: Optional[str] = None,
    ):
        self.client = MongoClient(mongo_uri or settings.mongodb_uri)
        self.db = self.client[db_name or settings.mongodb_database]
        self.snapshots: Collection = self.db[collection or settings.snapshot_collection]

        self._ensure_indexes()

    def _ensure_indexes(self):
        """Create indexes for efficient querying."""
        self.snapshots.create_index("snapshot_id", unique=True)
        self.snapshots.create_index([("created_at", DESCENDING)])

    def save(self, graph: Graph, metadata: Optional[dict[str, Any]] = None) -> str:
        """Save a snapshot and return its id."""
        meta = _snapshot_meta(graph, metadata)
        doc = {
            "snapshot_id": meta.id,
            "created_at": meta.created_at,
            "node_count": meta.node_count,
            "edge_count": meta.edge_count,
            "note": meta.note,
            "metadata": meta.metadata,
            "graph": graph.model_dump(mode="json", by_alias=True),
        }
        self.snapshots.insert_one(doc)
        logger.debug(f"Saved snapshot {meta.id} ({meta.node_count} nodes, {meta.edge_count} edges)")
        return meta.id

    @staticmethod
    def _meta_from_doc(doc: dict) -> SnapshotMeta:
        return SnapshotMeta(
            id=doc["snapshot_id"],
            created_at=doc["created_at"],
            node_count=doc.get("node_count", 0),
            edge_count=doc.get("edge_count", 0),
            note=doc.get("note"),
            metadata=doc.get("metadata") or {},
        )

    def list(self) -> list[SnapshotMeta]:
        """Snapshot metadata, newest first."""
        cursor = self.snapshots.find({}, {"graph": 0}).sort("created_at", DESCENDING)
        return [self._meta_from_doc(doc) for doc in cursor]

    def load(self, snapshot_id: str) -> Optional[Snapshot]:
        doc = self.snapshots.find_one({"snapshot_id": snapshot_id})
        if doc is None:
            return None
        return Snapshot(meta=self._meta_from_doc(doc), graph=Graph.model_validate(doc["graph"]))

    def delete_all(self) -> int:
        return self.snapshots.delete_many({}).deleted_count

    def delete_all_but_latest(self) -> int:
        latest = self.snapshots.find_one({}, {"snapshot_id": 1}, sort=[("created_at", DESCENDING)])
        if latest is None:
            return 0
        return self.snapshots.delete_many({"snapshot_id": {"$ne": latest["snapshot_id"]}}).deleted_count

    def close(self):
        """Close the MongoDB connection."""
        self.client.close()
