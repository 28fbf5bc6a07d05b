"""
Sync Orchestrator - Coordinates the synchronization of one epic.

This is the main entry point for sync operations. A run loads the mapping
store, loads and validates the local hierarchy, then walks it level by
level: nodes that already have a remote item go through the conflict
resolver, new nodes go through the batch scheduler. Every node ends up in
the report exactly once.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from pathlib import Path

from epicsync.core.domain.entities import EpicHierarchy
from epicsync.core.domain.enums import NodeOutcome
from epicsync.core.domain.events import (
    ConflictDetected,
    EventBus,
    ItemCreated,
    ItemUpdated,
    NodeFailed,
    SyncCompleted,
    SyncStarted,
)
from epicsync.core.ports.config_provider import SyncConfig
from epicsync.core.ports.hierarchy_source import HierarchySourcePort
from epicsync.core.ports.tracker_provider import TrackerProviderPort

from .conflict import PULLED_DETAIL, ConflictResolver
from .mapping import MappingStore
from .report import NodeResult, SyncReport
from .scheduler import CANCELLED_DETAIL, BatchScheduler
from .shadow import DEFAULT_SHADOW_DIR, ShadowStore
from .walker import HierarchyWalker, WorkUnit


__all__ = ["NodeResult", "SyncOrchestrator", "SyncReport"]


class SyncOrchestrator:
    """
    Orchestrates the synchronization between a local epic and a tracker.

    Phases:
    1. Load the mapping store (a corrupt store aborts before any remote call)
    2. Load and validate the local hierarchy
    3. Per depth level: reconcile mapped nodes, create new ones in batches
    4. Publish events and build the report
    """

    def __init__(
        self,
        provider: TrackerProviderPort,
        store: MappingStore,
        source: HierarchySourcePort,
        config: SyncConfig,
        shadow: ShadowStore | None = None,
        event_bus: EventBus | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the orchestrator.

        Args:
            provider: Tracker provider port
            store: Mapping store (not loaded yet)
            source: Local hierarchy loader
            config: Sync configuration
            shadow: Shadow store for pulled remote content
            event_bus: Optional event bus
            sleep: Sleep function used between retries
        """
        self.provider = provider
        self.store = store
        self.source = source
        self.config = config
        self.shadow = shadow or ShadowStore(
            Path(config.shadow_dir) if config.shadow_dir else store.path.parent / DEFAULT_SHADOW_DIR
        )
        self.event_bus = event_bus or EventBus()
        self._sleep = sleep
        self.logger = logging.getLogger("SyncOrchestrator")

    # -------------------------------------------------------------------------
    # Main Entry Points
    # -------------------------------------------------------------------------

    def sync(
        self,
        epic_root: Path | str,
        cancel_event: threading.Event | None = None,
    ) -> SyncReport:
        """
        Sync one epic to the tracker.

        Args:
            epic_root: Epic directory or epic document
            cancel_event: Set to stop dispatching new work

        Returns:
            SyncReport with one result per node

        Raises:
            MappingStoreCorruptError: Before any remote call
            HierarchyError: If the local tree is invalid
            AuthenticationError: Credentials were rejected
            MappingStoreError: A ref could not be persisted
        """
        epic_root = Path(epic_root)
        self.store.load()
        hierarchy = self.source.load(epic_root)

        report = SyncReport(
            dry_run=self.config.dry_run,
            provider=self.provider.name,
            epic_root=str(epic_root),
        )
        self.event_bus.publish(
            SyncStarted(
                epic_root=str(epic_root),
                provider=self.provider.name,
                dry_run=self.config.dry_run,
            )
        )
        self.logger.info(
            f"Syncing {len(hierarchy)} nodes from {epic_root} to {self.provider.name}"
            + (" (dry-run)" if self.config.dry_run else "")
        )

        scheduler = BatchScheduler(
            self.provider,
            self.store,
            max_concurrency=self.config.max_concurrency,
            max_retries=self.config.max_retries,
            initial_delay=self.config.initial_delay,
            max_delay=self.config.max_delay,
            dry_run=self.config.dry_run,
            sleep=self._sleep,
            cancel_event=cancel_event,
        )
        resolver = ConflictResolver(
            self.provider,
            self.store,
            self.shadow,
            policy=self.config.conflict_policy,
            dry_run=self.config.dry_run,
            check_remote=self.config.check_remote,
            retry=scheduler.call_with_retry,
        )

        results = self._run_levels(hierarchy, scheduler, resolver)

        report.results = [results[node.local_id] for node in hierarchy]
        report.conflicts = [r.conflict for r in report.results if r.conflict is not None]
        report.cancelled = scheduler.cancelled

        self.event_bus.publish(
            SyncCompleted(
                epic_root=str(epic_root),
                created=len(report.created),
                updated=len(report.updated),
                unchanged=len(report.unchanged),
                failed=len(report.failed) + len(report.skipped),
                conflicts=len(report.conflicts),
            )
        )
        self.logger.info(report.summary())
        return report

    # -------------------------------------------------------------------------
    # Private Methods
    # -------------------------------------------------------------------------

    def _run_levels(
        self,
        hierarchy: EpicHierarchy,
        scheduler: BatchScheduler,
        resolver: ConflictResolver,
    ) -> dict[str, NodeResult]:
        results: dict[str, NodeResult] = {}
        walker = HierarchyWalker(hierarchy, self.store, include_unchanged=True)

        # Each level is built only after the previous one has been committed
        for level in walker.levels():
            new_units: list[WorkUnit] = []
            for unit in level:
                if unit.is_new:
                    new_units.append(unit)
                    continue
                result = self._reconcile(unit, scheduler, resolver)
                results[unit.local_id] = result
                self._publish(result)

            for result in scheduler.run_level(new_units):
                results[result.local_id] = result
                self._publish(result)

        return results

    def _reconcile(
        self,
        unit: WorkUnit,
        scheduler: BatchScheduler,
        resolver: ConflictResolver,
    ) -> NodeResult:
        node = unit.node
        if scheduler.is_blocked(node.parent_id):
            scheduler.mark_blocked(node.local_id)
            return NodeResult(
                local_id=node.local_id,
                item_type=node.item_type,
                outcome=NodeOutcome.SKIPPED_PARENT_FAILED,
                ref=unit.existing,
                detail=f"parent {node.parent_id} did not sync",
            )
        if scheduler.cancelled:
            scheduler.mark_blocked(node.local_id)
            return NodeResult(
                local_id=node.local_id,
                item_type=node.item_type,
                outcome=NodeOutcome.FAILED,
                ref=unit.existing,
                detail=CANCELLED_DETAIL,
            )

        result = resolver.resolve(node, unit.existing)
        if result.outcome is NodeOutcome.FAILED:
            scheduler.mark_blocked(node.local_id)
        return result

    def _publish(self, result: NodeResult) -> None:
        ref = result.ref
        if result.outcome is NodeOutcome.CREATED:
            self.event_bus.publish(
                ItemCreated(
                    local_id=result.local_id,
                    item_type=result.item_type.value,
                    remote_id=ref.remote_id if ref else None,
                    remote_url=ref.remote_url if ref else None,
                )
            )
        elif result.outcome is NodeOutcome.UPDATED and ref is not None:
            self.event_bus.publish(
                ItemUpdated(
                    local_id=result.local_id,
                    remote_id=ref.remote_id,
                    direction="pull" if result.detail == PULLED_DETAIL else "push",
                )
            )
        elif result.outcome is NodeOutcome.CONFLICT:
            self.event_bus.publish(
                ConflictDetected(
                    local_id=result.local_id,
                    remote_id=ref.remote_id if ref else "",
                    outcome=result.detail,
                )
            )
        elif result.outcome.is_failure:
            self.event_bus.publish(NodeFailed(local_id=result.local_id, reason=str(result)))
