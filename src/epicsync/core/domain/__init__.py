"""
Domain layer - Pure types describing hierarchies, remote identities and events.
"""

from .entities import (
    ConflictRecord,
    EpicHierarchy,
    HierarchyNode,
    MappingEntry,
    RemoteItem,
    SyncBatch,
    WorkItemRef,
)
from .enums import ConflictPolicy, ConflictState, ItemType, NodeOutcome
from .events import (
    ConflictDetected,
    DomainEvent,
    EventBus,
    ItemCreated,
    ItemUpdated,
    NodeFailed,
    SyncCompleted,
    SyncStarted,
)
from .fingerprint import compute_fingerprint, fingerprint_remote


__all__ = [
    "ConflictDetected",
    "ConflictPolicy",
    "ConflictRecord",
    "ConflictState",
    "DomainEvent",
    "EpicHierarchy",
    "EventBus",
    "HierarchyNode",
    "ItemCreated",
    "ItemType",
    "ItemUpdated",
    "MappingEntry",
    "NodeFailed",
    "NodeOutcome",
    "RemoteItem",
    "SyncBatch",
    "SyncCompleted",
    "SyncStarted",
    "WorkItemRef",
    "compute_fingerprint",
    "fingerprint_remote",
]
