"""
Conflict Resolver - Reconcile nodes that already exist remotely.

Each mapped node is classified from three fingerprints: the current local
one, the current remote one (when fetched) and the pair recorded at the
last sync. The classification and the configured policy alone decide what
happens, so the same inputs always give the same outcome.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from epicsync.core.domain.entities import (
    ConflictRecord,
    HierarchyNode,
    RemoteItem,
    WorkItemRef,
)
from epicsync.core.domain.enums import ConflictPolicy, ConflictState, NodeOutcome
from epicsync.core.exceptions import AuthenticationError, TrackerError
from epicsync.core.ports.tracker_provider import TrackerProviderPort

from .mapping import MappingStore
from .report import NodeResult
from .shadow import ShadowStore


RetryCall = Callable[[str, str, Callable[[], Any]], Any]

UNRESOLVED = "unresolved"
PULLED_DETAIL = "pulled to shadow"
PUSHED_DETAIL = "pushed"


def classify(
    local_fp: str,
    remote_fp: str | None,
    last_local_fp: str,
    last_remote_fp: str,
) -> ConflictState:
    """
    Classify a mapped node.

    A remote fingerprint of None means the remote was not fetched and is
    treated as unchanged. An empty last_remote_fp (entries imported from a
    legacy mapping) has no baseline, so the remote counts as unchanged too.
    """
    local_changed = local_fp != last_local_fp
    remote_changed = bool(last_remote_fp) and remote_fp is not None and remote_fp != last_remote_fp

    if local_changed and remote_changed:
        return ConflictState.BOTH
    if local_changed:
        return ConflictState.LOCAL_ONLY
    if remote_changed:
        return ConflictState.REMOTE_ONLY
    return ConflictState.UNCHANGED


def policy_outcome(policy: ConflictPolicy) -> str:
    """Outcome recorded for a both-changed conflict under a policy."""
    if policy is ConflictPolicy.LOCAL_WINS:
        return ConflictPolicy.LOCAL_WINS.value
    if policy is ConflictPolicy.REMOTE_WINS:
        return ConflictPolicy.REMOTE_WINS.value
    return UNRESOLVED


def update_fields(node: HierarchyNode, parent_ref: WorkItemRef | None) -> dict[str, Any]:
    """Abstract field set pushed by update_item for a node."""
    fields: dict[str, Any] = {
        "title": node.title,
        "body": node.body,
        "acceptance_criteria": list(node.acceptance_criteria),
        **node.fields,
    }
    if parent_ref is not None:
        fields["parent_ref"] = parent_ref
    return fields


class ConflictResolver:
    """
    Applies the per-node state machine to nodes that have a remote item.

    Local authored files are never overwritten; remote content that wins
    goes to the shadow store.
    """

    def __init__(
        self,
        provider: TrackerProviderPort,
        store: MappingStore,
        shadow: ShadowStore,
        policy: ConflictPolicy = ConflictPolicy.MANUAL,
        dry_run: bool = False,
        check_remote: bool = False,
        retry: RetryCall | None = None,
    ):
        """
        Initialize the resolver.

        Args:
            provider: Tracker provider
            store: Mapping store, written from the calling thread
            shadow: Where pulled remote content is written
            policy: Resolution of both-changed conflicts
            dry_run: Classify from local fingerprints only, change nothing
            check_remote: Fetch the remote for locally unchanged nodes too
            retry: Wrapper retrying transient provider errors
        """
        self.provider = provider
        self.store = store
        self.shadow = shadow
        self.policy = policy
        self.dry_run = dry_run
        self.check_remote = check_remote
        self._retry = retry or (lambda local_id, action, call: call())
        self.logger = logging.getLogger("ConflictResolver")

    def resolve(
        self,
        node: HierarchyNode,
        ref: WorkItemRef,
        remote: RemoteItem | None = None,
    ) -> NodeResult:
        """
        Reconcile one mapped node.

        Args:
            node: Local node
            ref: Ref recorded at the last sync
            remote: Current remote state if already known

        Returns:
            NodeResult; a both-changed node carries its ConflictRecord

        Raises:
            AuthenticationError: Credentials were rejected
            MappingStoreError: The store could not be written
        """
        local_fp = node.fingerprint

        if self.dry_run:
            return self._resolve_dry_run(node, ref, local_fp)

        try:
            if remote is None and (local_fp != ref.last_synced_fingerprint or self.check_remote):
                remote = self._retry(node.local_id, "fetch", lambda: self.provider.get_item(ref))

            state = classify(
                local_fp,
                remote.fingerprint if remote is not None else None,
                ref.last_synced_fingerprint,
                ref.remote_fingerprint,
            )
            self.logger.debug(f"{node.local_id}: {state.value}")

            if state is ConflictState.UNCHANGED:
                return self._result(node, NodeOutcome.UNCHANGED, ref)
            if state is ConflictState.LOCAL_ONLY:
                return self._push(node, ref, local_fp, NodeOutcome.UPDATED, PUSHED_DETAIL)
            if state is ConflictState.REMOTE_ONLY:
                return self._pull(node, ref, remote, local_fp, NodeOutcome.UPDATED, PULLED_DETAIL)
            return self._conflict(node, ref, remote, local_fp)

        except AuthenticationError:
            raise
        except TrackerError as e:
            self.logger.error(f"Failed to reconcile {node.local_id}: {e}")
            return self._result(node, NodeOutcome.FAILED, ref, str(e))
        except OSError as e:
            self.logger.error(f"Cannot write remote copy of {node.local_id}: {e}")
            return self._result(node, NodeOutcome.FAILED, ref, f"cannot write shadow copy: {e}")

    # -------------------------------------------------------------------------
    # Private Methods
    # -------------------------------------------------------------------------

    def _resolve_dry_run(self, node: HierarchyNode, ref: WorkItemRef, local_fp: str) -> NodeResult:
        state = classify(local_fp, None, ref.last_synced_fingerprint, ref.remote_fingerprint)
        if state is ConflictState.UNCHANGED:
            return self._result(node, NodeOutcome.UNCHANGED, ref)
        self.logger.info(f"[DRY-RUN] Would update {ref.remote_id} from {node.local_id}")
        return self._result(node, NodeOutcome.UPDATED, ref, "dry-run")

    def _conflict(
        self,
        node: HierarchyNode,
        ref: WorkItemRef,
        remote: RemoteItem,
        local_fp: str,
    ) -> NodeResult:
        outcome = policy_outcome(self.policy)
        record = ConflictRecord(
            local_id=node.local_id,
            local_value=local_fp,
            remote_value=remote.fingerprint,
            state=ConflictState.BOTH,
            outcome=outcome,
        )
        self.logger.warning(f"Conflict on {node.local_id} ({ref.remote_id}): {outcome}")

        if self.policy is ConflictPolicy.LOCAL_WINS:
            result = self._push(node, ref, local_fp, NodeOutcome.CONFLICT, outcome)
        elif self.policy is ConflictPolicy.REMOTE_WINS:
            result = self._pull(node, ref, remote, local_fp, NodeOutcome.CONFLICT, outcome)
        else:
            result = self._result(node, NodeOutcome.CONFLICT, ref, outcome)

        result.conflict = record
        return result

    def _push(
        self,
        node: HierarchyNode,
        ref: WorkItemRef,
        local_fp: str,
        outcome: NodeOutcome,
        detail: str,
    ) -> NodeResult:
        parent_ref = self.store.lookup(node.parent_id) if node.parent_id else None
        fields = update_fields(node, parent_ref)
        updated = self._retry(
            node.local_id, "update", lambda: self.provider.update_item(ref, fields)
        )
        updated = updated.with_fingerprints(local=local_fp)
        self.store.record(node.local_id, updated)
        self.logger.info(f"Updated {ref.remote_id} from {node.local_id}")
        return self._result(node, outcome, updated, detail)

    def _pull(
        self,
        node: HierarchyNode,
        ref: WorkItemRef,
        remote: RemoteItem,
        local_fp: str,
        outcome: NodeOutcome,
        detail: str,
    ) -> NodeResult:
        self.shadow.write(node.local_id, remote)
        # Acknowledge both sides; the local edit stays unpushed until it changes again
        acknowledged = ref.with_fingerprints(local=local_fp, remote=remote.fingerprint)
        self.store.record(node.local_id, acknowledged)
        return self._result(node, outcome, acknowledged, detail)

    @staticmethod
    def _result(
        node: HierarchyNode,
        outcome: NodeOutcome,
        ref: WorkItemRef | None,
        detail: str = "",
    ) -> NodeResult:
        return NodeResult(
            local_id=node.local_id,
            item_type=node.item_type,
            outcome=outcome,
            ref=ref,
            detail=detail,
        )
