from .snapshots import (
    MemorySnapshotStore,
    MongoSnapshotStore,
    Snapshot,
    SnapshotMeta,
    SnapshotStore,
    new_snapshot_id,
)

__all__ = [
    "MemorySnapshotStore",
    "MongoSnapshotStore",
    "Snapshot",
    "SnapshotMeta",
    "SnapshotStore",
    "new_snapshot_id",
]
