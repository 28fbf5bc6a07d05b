"""
Batch Scheduler - Bounded-concurrency creation of remote items.

Each depth level is split into batches of at most max_concurrency units.
A batch is fanned out over a thread pool and joined before the next batch
starts. Workers only talk to the provider; the coordinating thread is the
only one that writes the mapping store, so a ref is committed as soon as
its creation succeeds and a crash never loses more than the in-flight
batch.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections.abc import Callable, Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Any

from epicsync.core.domain.entities import SyncBatch, WorkItemRef
from epicsync.core.domain.enums import ItemType, NodeOutcome
from epicsync.core.exceptions import (
    AuthenticationError,
    MappingStoreError,
    PermanentError,
    TrackerError,
    TransientError,
)
from epicsync.core.ports.tracker_provider import TrackerProviderPort
from epicsync.core.retry import calculate_delay

from .mapping import MappingStore
from .report import NodeResult
from .walker import WorkUnit


CANCELLED_DETAIL = "cancelled before dispatch"
DRY_RUN_PREFIX = "dry-run:"


def partition_batches(units: Sequence[Any], max_concurrency: int) -> list[SyncBatch]:
    """
    Split units into consecutive batches of at most max_concurrency.

    Args:
        units: Units of one depth level, in document order
        max_concurrency: Batch width (>= 1)

    Returns:
        ceil(len(units) / max_concurrency) batches; only the last may be smaller

    Raises:
        ValueError: If max_concurrency < 1
    """
    if max_concurrency < 1:
        raise ValueError(f"max_concurrency must be >= 1, got {max_concurrency}")

    count = math.ceil(len(units) / max_concurrency)
    return [
        SyncBatch(
            index=i,
            units=list(units[i * max_concurrency : (i + 1) * max_concurrency]),
            max_concurrency=max_concurrency,
        )
        for i in range(count)
    ]


@dataclass
class SchedulerStats:
    """Counters collected while scheduling."""

    batches: int = 0
    dispatched: int = 0
    retries: int = 0
    peak_in_flight: int = 0


@dataclass
class _Outcome:
    """What a worker hands back to the coordinator."""

    ref: WorkItemRef | None = None
    link_error: TrackerError | None = None


class BatchScheduler:
    """
    Creates new remote items level by level with bounded concurrency.

    Units of a level whose parent failed, was skipped or was cancelled in
    this run are never dispatched. The scheduler remembers those ids across
    levels so the whole subtree below a failure is skipped.
    """

    def __init__(
        self,
        provider: TrackerProviderPort,
        store: MappingStore,
        max_concurrency: int = 4,
        max_retries: int = 3,
        initial_delay: float = 1.0,
        max_delay: float = 30.0,
        backoff_factor: float = 2.0,
        jitter: float = 0.1,
        dry_run: bool = False,
        sleep: Callable[[float], None] = time.sleep,
        cancel_event: threading.Event | None = None,
    ):
        """
        Initialize the scheduler.

        Args:
            provider: Tracker provider that performs the creations
            store: Mapping store; written from the calling thread only
            max_concurrency: Maximum number of in-flight provider calls
            max_retries: Retries of a TransientError before giving up
            initial_delay: Backoff delay after the first failure
            max_delay: Backoff ceiling
            backoff_factor: Backoff multiplier per attempt
            jitter: Random jitter fraction applied to each delay
            dry_run: Simulate creations without calling the provider
            sleep: Sleep function (injectable for tests)
            cancel_event: Checked before each batch is dispatched
        """
        if max_concurrency < 1:
            raise ValueError(f"max_concurrency must be >= 1, got {max_concurrency}")

        self.provider = provider
        self.store = store
        self.max_concurrency = max_concurrency
        self.max_retries = max_retries
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.backoff_factor = backoff_factor
        self.jitter = jitter
        self.dry_run = dry_run
        self.cancel_event = cancel_event
        self._sleep = sleep

        self.stats = SchedulerStats()
        self._blocked: set[str] = set()
        self._simulated: dict[str, WorkItemRef] = {}
        self._in_flight = 0
        self._stats_lock = threading.Lock()

        self.logger = logging.getLogger("BatchScheduler")

    # -------------------------------------------------------------------------
    # Run-wide state
    # -------------------------------------------------------------------------

    def is_blocked(self, local_id: str | None) -> bool:
        """Check whether a node failed, was skipped or was cancelled in this run."""
        return local_id is not None and local_id in self._blocked

    def mark_blocked(self, local_id: str) -> None:
        """Record a failure that happened outside the scheduler (e.g. an update)."""
        self._blocked.add(local_id)

    def simulated_ref(self, local_id: str | None) -> WorkItemRef | None:
        """Ref handed out for a node created in dry-run mode."""
        if local_id is None:
            return None
        return self._simulated.get(local_id)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    # -------------------------------------------------------------------------
    # Scheduling
    # -------------------------------------------------------------------------

    def run(self, levels: Iterable[list[WorkUnit]]) -> list[NodeResult]:
        """Process successive depth levels; later levels see earlier failures."""
        results: list[NodeResult] = []
        for units in levels:
            results.extend(self.run_level(units))
        return results

    def run_level(self, units: list[WorkUnit]) -> list[NodeResult]:
        """
        Create every unit of one depth level.

        Returns:
            One NodeResult per unit, in the order the units were given

        Raises:
            AuthenticationError: After the in-flight batch has been joined
            MappingStoreError: If a created ref cannot be persisted; raised
                once the rest of the batch has finished
        """
        results: dict[str, NodeResult] = {}
        ready: list[tuple[WorkUnit, WorkItemRef | None]] = []

        for unit in units:
            node = unit.node
            if self.is_blocked(node.parent_id):
                results[unit.local_id] = self._skip(unit, f"parent {node.parent_id} did not sync")
                continue

            parent_ref = (
                unit.parent_ref
                or self.simulated_ref(node.parent_id)
                or (self.store.lookup(node.parent_id) if node.parent_id else None)
            )
            if node.item_type is not ItemType.EPIC and parent_ref is None:
                results[unit.local_id] = self._skip(unit, f"parent {node.parent_id} has no remote item")
                continue

            ready.append((unit, parent_ref))

        for batch in partition_batches(ready, self.max_concurrency):
            if self.cancelled:
                self.logger.warning(f"Cancelled, {len(batch)} units of batch {batch.index} not dispatched")
                for unit, _ in batch.units:
                    self._blocked.add(unit.local_id)
                    results[unit.local_id] = NodeResult(
                        local_id=unit.local_id,
                        item_type=unit.node.item_type,
                        outcome=NodeOutcome.FAILED,
                        detail=CANCELLED_DETAIL,
                    )
                continue

            self.stats.batches += 1
            if self.dry_run:
                results.update(self._simulate_batch(batch))
            else:
                results.update(self._run_batch(batch))

        return [results[unit.local_id] for unit in units]

    def _run_batch(self, batch: SyncBatch) -> dict[str, NodeResult]:
        self.logger.debug(f"Dispatching batch {batch.index} ({len(batch)} units)")
        results: dict[str, NodeResult] = {}
        auth_error: AuthenticationError | None = None
        store_error: MappingStoreError | None = None

        with ThreadPoolExecutor(
            max_workers=self.max_concurrency, thread_name_prefix="epicsync"
        ) as executor:
            futures = {
                executor.submit(self._create, unit, parent_ref): unit
                for unit, parent_ref in batch.units
            }
            self.stats.dispatched += len(futures)

            for future in as_completed(futures):
                unit = futures[future]
                try:
                    outcome = future.result()
                except AuthenticationError as e:
                    auth_error = auth_error or e
                    results[unit.local_id] = self._fail(unit, str(e))
                    continue
                except TrackerError as e:
                    self.logger.error(f"Failed to create {unit.local_id}: {e}")
                    results[unit.local_id] = self._fail(unit, str(e))
                    continue
                except Exception as e:
                    self.logger.exception(f"Unexpected error creating {unit.local_id}")
                    results[unit.local_id] = self._fail(unit, f"{type(e).__name__}: {e}")
                    continue

                # Commit on success, from this thread only
                try:
                    self.store.record(unit.local_id, outcome.ref)
                except MappingStoreError as e:
                    store_error = store_error or e
                    self.logger.error(
                        f"Created {unit.local_id} as {outcome.ref.remote_id} "
                        f"but could not record it: {e}"
                    )
                    results[unit.local_id] = self._fail(
                        unit, f"created but not recorded: {e}", ref=outcome.ref
                    )
                    continue

                if outcome.link_error is not None:
                    self.logger.error(
                        f"Created {unit.local_id} as {outcome.ref.remote_id} "
                        f"but linking it failed: {outcome.link_error}"
                    )
                    results[unit.local_id] = self._fail(
                        unit, f"created but not linked: {outcome.link_error}", ref=outcome.ref
                    )
                    continue

                self.logger.info(f"Created {unit.local_id} → {outcome.ref.remote_id}")
                results[unit.local_id] = NodeResult(
                    local_id=unit.local_id,
                    item_type=unit.node.item_type,
                    outcome=NodeOutcome.CREATED,
                    ref=outcome.ref,
                )

        if store_error is not None:
            raise store_error
        if auth_error is not None:
            raise auth_error
        return results

    def _simulate_batch(self, batch: SyncBatch) -> dict[str, NodeResult]:
        results: dict[str, NodeResult] = {}
        for unit, _ in batch.units:
            node = unit.node
            ref = WorkItemRef(
                provider=self.provider.name,
                remote_id=f"{DRY_RUN_PREFIX}{node.local_id}",
                remote_url="",
                item_type=node.item_type,
                last_synced_fingerprint=node.fingerprint,
            )
            self._simulated[node.local_id] = ref
            self.logger.info(f"[DRY-RUN] Would create {node.item_type.display_name}: {node.title}")
            results[unit.local_id] = NodeResult(
                local_id=node.local_id,
                item_type=node.item_type,
                outcome=NodeOutcome.CREATED,
                ref=ref,
                detail="dry-run",
            )
        return results

    # -------------------------------------------------------------------------
    # Worker side
    # -------------------------------------------------------------------------

    def _create(self, unit: WorkUnit, parent_ref: WorkItemRef | None) -> _Outcome:
        """Runs on a worker thread. Never touches the store."""
        with self._stats_lock:
            self._in_flight += 1
            self.stats.peak_in_flight = max(self.stats.peak_in_flight, self._in_flight)
        try:
            node = unit.node
            ref = self.call_with_retry(
                unit.local_id,
                "create",
                lambda: self.provider.create_item(node, node.item_type, parent_ref),
            )

            if parent_ref is not None and not self.provider.links_via_body:
                try:
                    self.call_with_retry(
                        unit.local_id,
                        "link",
                        lambda: self.provider.link_parent_child(parent_ref, ref),
                    )
                except AuthenticationError:
                    raise
                except TrackerError as e:
                    return _Outcome(ref=ref, link_error=e)

            return _Outcome(ref=ref)
        finally:
            with self._stats_lock:
                self._in_flight -= 1

    def call_with_retry(self, local_id: str, action: str, call: Callable[[], Any]) -> Any:
        """
        Run a provider call, retrying TransientError with exponential backoff.

        The conflict resolver routes its updates and fetches through here too.

        Raises:
            PermanentError: When the retries are exhausted (cause is the last error)
        """
        attempt = 0
        while True:
            try:
                return call()
            except TransientError as e:
                if attempt >= self.max_retries:
                    raise PermanentError(
                        f"{action} gave up after {attempt + 1} attempts: {e}",
                        item_id=local_id,
                        status_code=e.status_code,
                        cause=e,
                    )
                delay = calculate_delay(
                    attempt,
                    initial_delay=self.initial_delay,
                    max_delay=self.max_delay,
                    backoff_factor=self.backoff_factor,
                    jitter=self.jitter,
                    retry_after=getattr(e, "retry_after", None),
                )
                self.logger.warning(
                    f"Transient error on {action} of {local_id} "
                    f"(attempt {attempt + 1}/{self.max_retries + 1}), retrying in {delay:.2f}s: {e}"
                )
                with self._stats_lock:
                    self.stats.retries += 1
                self._sleep(delay)
                attempt += 1

    # -------------------------------------------------------------------------
    # Results
    # -------------------------------------------------------------------------

    def _skip(self, unit: WorkUnit, reason: str) -> NodeResult:
        self._blocked.add(unit.local_id)
        self.logger.warning(f"Skipping {unit.local_id}: {reason}")
        return NodeResult(
            local_id=unit.local_id,
            item_type=unit.node.item_type,
            outcome=NodeOutcome.SKIPPED_PARENT_FAILED,
            detail=reason,
        )

    def _fail(self, unit: WorkUnit, reason: str, ref: WorkItemRef | None = None) -> NodeResult:
        self._blocked.add(unit.local_id)
        return NodeResult(
            local_id=unit.local_id,
            item_type=unit.node.item_type,
            outcome=NodeOutcome.FAILED,
            ref=ref,
            detail=reason,
        )
