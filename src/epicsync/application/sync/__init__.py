"""
Sync module - Projects a local epic hierarchy onto an item tracker.
"""

from .conflict import ConflictResolver, classify
from .mapping import (
    DEFAULT_MAPPING_FILE,
    MappingStore,
    MappingStoreLock,
    import_legacy_mapping,
)
from .orchestrator import SyncOrchestrator
from .report import NodeResult, SyncReport
from .scheduler import BatchScheduler, SchedulerStats, partition_batches
from .shadow import ShadowStore
from .walker import HierarchyWalker, UnitStatus, WorkUnit


__all__ = [
    "DEFAULT_MAPPING_FILE",
    "BatchScheduler",
    "ConflictResolver",
    "HierarchyWalker",
    "MappingStore",
    "MappingStoreLock",
    "NodeResult",
    "SchedulerStats",
    "ShadowStore",
    "SyncOrchestrator",
    "SyncReport",
    "UnitStatus",
    "WorkUnit",
    "classify",
    "import_legacy_mapping",
    "partition_batches",
]
