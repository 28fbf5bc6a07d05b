"""
Sync Report - Per-node results and the summary of a sync run.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from epicsync.core.domain.entities import ConflictRecord, WorkItemRef
from epicsync.core.domain.enums import ItemType, NodeOutcome


@dataclass
class NodeResult:
    """
    What happened to one node.

    str() gives the report form: created, updated, unchanged,
    skipped-parent-failed, "failed: <reason>" or "conflict: <outcome>".
    """

    local_id: str
    item_type: ItemType
    outcome: NodeOutcome
    ref: WorkItemRef | None = None
    detail: str = ""
    conflict: ConflictRecord | None = None

    def __str__(self) -> str:
        if self.outcome is NodeOutcome.FAILED:
            return f"failed: {self.detail}" if self.detail else "failed"
        if self.outcome is NodeOutcome.CONFLICT:
            return f"conflict: {self.detail or 'unresolved'}"
        return self.outcome.value

    def to_dict(self) -> dict[str, Any]:
        return {
            "local_id": self.local_id,
            "item_type": self.item_type.value,
            "outcome": str(self),
            "remote_id": self.ref.remote_id if self.ref else None,
            "remote_url": self.ref.remote_url if self.ref else None,
            "detail": self.detail,
        }


@dataclass
class SyncReport:
    """
    Result of a sync run.

    Every node of the hierarchy appears exactly once in results, in
    document order. The run succeeds when no node failed and no conflict
    was left unresolved.

    Attributes:
        dry_run: Whether this was a dry-run (no changes made).
        provider: Provider key the run targeted.
        epic_root: Path of the synced epic.
        results: One NodeResult per node, in document order.
        conflicts: Every both-changed conflict seen, resolved or not.
        cancelled: Whether the run was cancelled before finishing.
    """

    dry_run: bool = False
    provider: str = ""
    epic_root: str = ""
    results: list[NodeResult] = field(default_factory=list)
    conflicts: list[ConflictRecord] = field(default_factory=list)
    cancelled: bool = False

    def _with(self, *outcomes: NodeOutcome) -> list[NodeResult]:
        return [r for r in self.results if r.outcome in outcomes]

    @property
    def created(self) -> list[NodeResult]:
        return self._with(NodeOutcome.CREATED)

    @property
    def updated(self) -> list[NodeResult]:
        return self._with(NodeOutcome.UPDATED)

    @property
    def unchanged(self) -> list[NodeResult]:
        return self._with(NodeOutcome.UNCHANGED)

    @property
    def skipped(self) -> list[NodeResult]:
        return self._with(NodeOutcome.SKIPPED_PARENT_FAILED)

    @property
    def failed(self) -> list[NodeResult]:
        return self._with(NodeOutcome.FAILED)

    @property
    def unresolved(self) -> list[ConflictRecord]:
        return [c for c in self.conflicts if not c.resolved]

    @property
    def success(self) -> bool:
        return not self.failed and not self.skipped and not self.unresolved

    @property
    def exit_code(self) -> int:
        """Process exit code for this report (see cli.exit_codes.ExitCode)."""
        from epicsync.cli.exit_codes import ExitCode

        if self.cancelled:
            return ExitCode.CANCELLED
        if self.failed or self.skipped:
            return ExitCode.PARTIAL_FAILURE
        if self.unresolved:
            return ExitCode.CONFLICTS_UNRESOLVED
        return ExitCode.SUCCESS

    def get(self, local_id: str) -> NodeResult | None:
        for result in self.results:
            if result.local_id == local_id:
                return result
        return None

    def summary(self) -> str:
        """One-line summary."""
        prefix = "[DRY-RUN] " if self.dry_run else ""
        parts = [
            f"{len(self.created)} created",
            f"{len(self.updated)} updated",
            f"{len(self.unchanged)} unchanged",
        ]
        if self.skipped:
            parts.append(f"{len(self.skipped)} skipped")
        if self.failed:
            parts.append(f"{len(self.failed)} failed")
        if self.conflicts:
            parts.append(f"{len(self.unresolved)}/{len(self.conflicts)} conflicts unresolved")
        return prefix + ", ".join(parts)

    def to_dict(self) -> dict[str, Any]:
        return {
            "dry_run": self.dry_run,
            "provider": self.provider,
            "epic_root": self.epic_root,
            "success": self.success,
            "cancelled": self.cancelled,
            "summary": self.summary(),
            "results": [r.to_dict() for r in self.results],
            "conflicts": [c.to_dict() for c in self.conflicts],
        }
