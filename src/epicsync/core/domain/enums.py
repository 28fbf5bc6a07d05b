"""
Domain enums - Item types, conflict states, policies, and report outcomes.
"""

from __future__ import annotations

from enum import Enum


class ItemType(Enum):
    """Level of a node in the Epic → Story → Task hierarchy."""

    EPIC = "epic"
    STORY = "story"
    TASK = "task"

    @classmethod
    def from_string(cls, value: str) -> ItemType:
        """Parse an item type from loose user or tracker spelling."""
        normalized = value.strip().lower().replace("-", "").replace("_", "").replace(" ", "")

        mapping = {
            "epic": cls.EPIC,
            "story": cls.STORY,
            "userstory": cls.STORY,
            "feature": cls.STORY,
            "task": cls.TASK,
            "subtask": cls.TASK,
        }

        if normalized not in mapping:
            raise ValueError(f"Unknown item type: {value!r}")
        return mapping[normalized]

    @property
    def depth(self) -> int:
        """Depth in the hierarchy (epics are 0)."""
        return {ItemType.EPIC: 0, ItemType.STORY: 1, ItemType.TASK: 2}[self]

    @property
    def parent_type(self) -> ItemType | None:
        """Type a parent of this item must have."""
        return {ItemType.EPIC: None, ItemType.STORY: ItemType.EPIC, ItemType.TASK: ItemType.STORY}[
            self
        ]

    @property
    def child_type(self) -> ItemType | None:
        """Type of this item's children, if it can have any."""
        return {ItemType.EPIC: ItemType.STORY, ItemType.STORY: ItemType.TASK, ItemType.TASK: None}[
            self
        ]

    @property
    def display_name(self) -> str:
        """Human-readable name."""
        return {ItemType.EPIC: "Epic", ItemType.STORY: "User Story", ItemType.TASK: "Task"}[self]


class ConflictState(Enum):
    """Per-node state machine during re-sync."""

    UNCHANGED = "unchanged"
    LOCAL_ONLY = "local-only-change"
    REMOTE_ONLY = "remote-only-change"
    BOTH = "both-changed"


class ConflictPolicy(Enum):
    """How a BOTH-changed conflict is resolved."""

    LOCAL_WINS = "local-wins"
    REMOTE_WINS = "remote-wins"
    MANUAL = "manual"

    @classmethod
    def from_string(cls, value: str) -> ConflictPolicy:
        """Parse a policy name (accepts underscores and case variations)."""
        normalized = value.strip().lower().replace("_", "-")
        for policy in cls:
            if policy.value == normalized:
                return policy
        valid = ", ".join(p.value for p in cls)
        raise ValueError(f"Unknown conflict policy: {value!r} (expected one of: {valid})")


class NodeOutcome(Enum):
    """Outcome reported for every node of a sync run."""

    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    SKIPPED_PARENT_FAILED = "skipped-parent-failed"
    FAILED = "failed"
    CONFLICT = "conflict"

    @property
    def is_failure(self) -> bool:
        """Check if the outcome counts against run success."""
        return self in (NodeOutcome.FAILED, NodeOutcome.SKIPPED_PARENT_FAILED)
