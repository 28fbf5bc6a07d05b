"""
Hierarchy Walker - Yields the work to do, one depth level at a time.

Levels are computed lazily: the stories level is only built once the
caller asks for it, after the epic level has been processed and its refs
recorded. That is how children see their parents' freshly created refs.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from enum import Enum

from epicsync.core.domain.entities import EpicHierarchy, HierarchyNode, WorkItemRef

from .mapping import MappingStore


class UnitStatus(Enum):
    """Why a node is part of the walk."""

    NEW = "new"
    CHANGED = "changed"
    UNCHANGED = "unchanged"


@dataclass(frozen=True)
class WorkUnit:
    """One node to process, with what the store knows about it."""

    node: HierarchyNode
    parent_ref: WorkItemRef | None
    existing: WorkItemRef | None
    status: UnitStatus

    @property
    def local_id(self) -> str:
        return self.node.local_id

    @property
    def is_new(self) -> bool:
        return self.status is UnitStatus.NEW


class HierarchyWalker:
    """
    Walks an EpicHierarchy parent-before-child against a MappingStore.

    The walker only reads the store; it never creates anything.
    """

    def __init__(
        self,
        hierarchy: EpicHierarchy,
        store: MappingStore,
        include_unchanged: bool = False,
    ):
        """
        Args:
            hierarchy: Validated local hierarchy
            store: Mapping store consulted for existing refs
            include_unchanged: Also yield nodes whose fingerprint matches
        """
        self.hierarchy = hierarchy
        self.store = store
        self.include_unchanged = include_unchanged

    def levels(self) -> Iterator[list[WorkUnit]]:
        """Yield one list of work units per depth level (epics, stories, tasks)."""
        for level in self.hierarchy.levels():
            units = [unit for unit in (self._unit(node) for node in level) if unit is not None]
            if units:
                yield units

    def walk(self) -> Iterator[WorkUnit]:
        """Flatten levels() lazily."""
        for level in self.levels():
            yield from level

    def _unit(self, node: HierarchyNode) -> WorkUnit | None:
        existing = self.store.lookup(node.local_id)
        parent_ref = self.store.lookup(node.parent_id) if node.parent_id else None

        if existing is None:
            status = UnitStatus.NEW
        elif existing.last_synced_fingerprint != node.fingerprint:
            status = UnitStatus.CHANGED
        elif self.include_unchanged:
            status = UnitStatus.UNCHANGED
        else:
            return None

        return WorkUnit(node=node, parent_ref=parent_ref, existing=existing, status=status)
