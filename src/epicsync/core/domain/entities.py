"""
Domain Entities - The local hierarchy and its remote identities.

HierarchyNode and EpicHierarchy describe what the user authored.
WorkItemRef and MappingEntry describe what the tracker knows about it.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any

from epicsync.core.exceptions import HierarchyError

from .enums import ConflictState, ItemType
from .fingerprint import compute_fingerprint


@dataclass
class HierarchyNode:
    """
    One Epic, Story or Task as authored locally.

    The local_id is stable across runs and is the key of the mapping
    store; it never changes when the title does.
    """

    local_id: str
    item_type: ItemType
    title: str
    body: str = ""
    parent_id: str | None = None
    children: list[str] = field(default_factory=list)
    acceptance_criteria: list[str] = field(default_factory=list)
    fields: dict[str, Any] = field(default_factory=dict)
    source_path: str | None = None

    @property
    def fingerprint(self) -> str:
        """Content fingerprint of the synced attributes."""
        return compute_fingerprint(self.title, self.body, self.acceptance_criteria, self.fields)

    @property
    def depth(self) -> int:
        return self.item_type.depth

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "local_id": self.local_id,
            "item_type": self.item_type.value,
            "title": self.title,
            "body": self.body,
            "parent_id": self.parent_id,
            "children": list(self.children),
            "acceptance_criteria": list(self.acceptance_criteria),
            "fields": dict(self.fields),
        }


class EpicHierarchy:
    """
    In-memory snapshot of one epic and its descendants.

    Nodes are kept in document order: the order in which the loader
    added them. Parents must be added before their children.
    """

    def __init__(self, nodes: list[HierarchyNode] | None = None):
        self._nodes: dict[str, HierarchyNode] = {}
        for node in nodes or []:
            self.add(node)

    def add(self, node: HierarchyNode) -> None:
        """Add a node, linking it into its parent's children."""
        if node.local_id in self._nodes:
            raise HierarchyError(f"Duplicate local id: {node.local_id}", path=node.source_path)
        self._nodes[node.local_id] = node
        if node.parent_id is not None:
            parent = self._nodes.get(node.parent_id)
            if parent is not None and node.local_id not in parent.children:
                parent.children.append(node.local_id)

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self) -> Iterator[HierarchyNode]:
        return iter(self._nodes.values())

    def __contains__(self, local_id: object) -> bool:
        return local_id in self._nodes

    @property
    def root(self) -> HierarchyNode:
        """The epic node."""
        for node in self._nodes.values():
            if node.item_type is ItemType.EPIC:
                return node
        raise HierarchyError("Hierarchy has no epic")

    def get(self, local_id: str) -> HierarchyNode | None:
        return self._nodes.get(local_id)

    def parent_of(self, node: HierarchyNode) -> HierarchyNode | None:
        """Return the parent node, or None for the epic."""
        if node.parent_id is None:
            return None
        return self._nodes.get(node.parent_id)

    def children_of(self, node: HierarchyNode) -> list[HierarchyNode]:
        return [self._nodes[child_id] for child_id in node.children if child_id in self._nodes]

    def descendants_of(self, node: HierarchyNode) -> list[HierarchyNode]:
        """All descendants of a node, depth first."""
        result: list[HierarchyNode] = []
        for child in self.children_of(node):
            result.append(child)
            result.extend(self.descendants_of(child))
        return result

    def levels(self) -> list[list[HierarchyNode]]:
        """Nodes grouped by depth (epics, stories, tasks), in document order."""
        grouped: dict[int, list[HierarchyNode]] = {}
        for node in self._nodes.values():
            grouped.setdefault(node.depth, []).append(node)
        return [grouped[depth] for depth in sorted(grouped)]

    def order_of(self, local_id: str) -> int:
        """Document-order index of a node."""
        for index, key in enumerate(self._nodes):
            if key == local_id:
                return index
        raise KeyError(local_id)

    def validate(self) -> None:
        """
        Check the tree structure.

        Raises:
            HierarchyError: On dangling or forward parent references,
                wrong parent types, cycles, or a missing/duplicated epic.
        """
        epics = [n for n in self._nodes.values() if n.item_type is ItemType.EPIC]
        if len(epics) != 1:
            raise HierarchyError(f"Expected exactly one epic, found {len(epics)}")

        seen: set[str] = set()
        for node in self._nodes.values():
            if node.item_type is ItemType.EPIC:
                if node.parent_id is not None:
                    raise HierarchyError(
                        f"Epic {node.local_id} must not have a parent", path=node.source_path
                    )
            else:
                if node.parent_id is None:
                    raise HierarchyError(
                        f"{node.item_type.display_name} {node.local_id} has no parent",
                        path=node.source_path,
                    )
                parent = self._nodes.get(node.parent_id)
                if parent is None:
                    raise HierarchyError(
                        f"{node.local_id} references unknown parent {node.parent_id}",
                        path=node.source_path,
                    )
                if node.parent_id not in seen:
                    raise HierarchyError(
                        f"{node.local_id} appears before its parent {node.parent_id}",
                        path=node.source_path,
                    )
                if parent.item_type is not node.item_type.parent_type:
                    raise HierarchyError(
                        f"{node.local_id}: a {node.item_type.value} cannot be a child "
                        f"of a {parent.item_type.value}",
                        path=node.source_path,
                    )
            self._check_cycle(node)
            seen.add(node.local_id)

    def _check_cycle(self, node: HierarchyNode) -> None:
        visited = {node.local_id}
        current = node
        while current.parent_id is not None:
            if current.parent_id in visited:
                raise HierarchyError(f"Cycle detected at {node.local_id}", path=node.source_path)
            visited.add(current.parent_id)
            parent = self._nodes.get(current.parent_id)
            if parent is None:
                return
            current = parent


@dataclass(frozen=True)
class WorkItemRef:
    """
    Identity of a remote item plus the fingerprints of the last sync.

    remote_fingerprint is the fingerprint of the remote content as it was
    when the engine last wrote or acknowledged it.
    """

    provider: str
    remote_id: str
    remote_url: str
    item_type: ItemType
    last_synced_fingerprint: str = ""
    remote_fingerprint: str = ""

    def with_fingerprints(
        self, local: str | None = None, remote: str | None = None
    ) -> WorkItemRef:
        """Return a copy with updated fingerprints."""
        return replace(
            self,
            last_synced_fingerprint=self.last_synced_fingerprint if local is None else local,
            remote_fingerprint=self.remote_fingerprint if remote is None else remote,
        )


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass(frozen=True)
class MappingEntry:
    """A persisted local-id → remote-ref association."""

    local_id: str
    ref: WorkItemRef
    synced_at: str = field(default_factory=utc_now_iso)

    @property
    def provider(self) -> str:
        return self.ref.provider

    def to_dict(self) -> dict[str, Any]:
        """Serialize using the store's wire names."""
        return {
            "localId": self.local_id,
            "provider": self.ref.provider,
            "remoteId": self.ref.remote_id,
            "remoteUrl": self.ref.remote_url,
            "itemType": self.ref.item_type.value,
            "lastSyncedFingerprint": self.ref.last_synced_fingerprint,
            "remoteFingerprint": self.ref.remote_fingerprint,
            "syncedAt": self.synced_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MappingEntry:
        """
        Deserialize a store entry.

        Raises:
            KeyError, ValueError, TypeError: If the entry is malformed
        """
        if not isinstance(data, dict):
            raise TypeError(f"entry must be an object, got {type(data).__name__}")
        for key in ("localId", "provider", "remoteId", "itemType"):
            if not isinstance(data.get(key), str) or not data[key]:
                raise ValueError(f"entry field {key!r} missing or not a string")

        ref = WorkItemRef(
            provider=data["provider"],
            remote_id=data["remoteId"],
            remote_url=str(data.get("remoteUrl") or ""),
            item_type=ItemType(data["itemType"]),
            last_synced_fingerprint=str(data.get("lastSyncedFingerprint") or ""),
            remote_fingerprint=str(data.get("remoteFingerprint") or ""),
        )
        return cls(
            local_id=data["localId"],
            ref=ref,
            synced_at=str(data.get("syncedAt") or ""),
        )


@dataclass
class SyncBatch:
    """A group of creations dispatched together, at most max_concurrency wide."""

    index: int
    units: list[Any]
    max_concurrency: int

    def __len__(self) -> int:
        return len(self.units)


@dataclass(frozen=True)
class RemoteItem:
    """Current state of a remote item as returned by get_item."""

    ref: WorkItemRef
    title: str
    body: str = ""
    fields: dict[str, Any] = field(default_factory=dict)
    fingerprint: str = ""


@dataclass(frozen=True)
class ConflictRecord:
    """Both sides of a node changed since the last sync."""

    local_id: str
    local_value: str
    remote_value: str
    state: ConflictState
    outcome: str  # local-wins | remote-wins | unresolved

    @property
    def resolved(self) -> bool:
        return self.outcome != "unresolved"

    def to_dict(self) -> dict[str, Any]:
        return {
            "local_id": self.local_id,
            "local_value": self.local_value,
            "remote_value": self.remote_value,
            "state": self.state.value,
            "outcome": self.outcome,
        }
