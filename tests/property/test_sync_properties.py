"""
Property-based tests for the sync engine.

Properties checked:
- Fingerprint normalization
- Conflict classification
- Batch partitioning
- Hierarchy levels
"""

import math

from hypothesis import given
from hypothesis import strategies as st

from epicsync.application.sync import classify, partition_batches
from epicsync.core.domain.entities import EpicHierarchy, HierarchyNode
from epicsync.core.domain.enums import ConflictState, ItemType
from epicsync.core.domain.fingerprint import (
    FINGERPRINT_PREFIX,
    compute_fingerprint,
    fingerprint_remote,
    normalize_text,
)


text = st.text(alphabet=st.characters(blacklist_categories=("Cs",)), max_size=80)
# Bare carriage returns are line breaks of their own
body_text = st.text(
    alphabet=st.characters(blacklist_categories=("Cs",), blacklist_characters="\r"), max_size=80
)
fingerprints = st.sampled_from(["", "sha256:a", "sha256:b", "sha256:c"])


# =============================================================================
# Fingerprints
# =============================================================================


class TestFingerprintProperties:
    @given(text, text)
    def test_deterministic(self, title, body):
        assert compute_fingerprint(title, body) == compute_fingerprint(title, body)
        assert fingerprint_remote(title, body).startswith(FINGERPRINT_PREFIX)

    @given(text)
    def test_normalize_is_idempotent(self, value):
        once = normalize_text(value)
        assert normalize_text(once) == once

    @given(body_text, st.sampled_from(["\n", "\r\n", "\r"]))
    def test_line_endings_do_not_matter(self, body, newline):
        lines = body.split("\n")
        assert fingerprint_remote("T", newline.join(lines)) == fingerprint_remote("T", body)

    @given(body_text)
    def test_trailing_whitespace_does_not_matter(self, body):
        padded = "\n".join(f"{line}  " for line in body.split("\n")) + "\n\n"
        assert compute_fingerprint("T", padded) == compute_fingerprint("T", body)

    @given(
        st.lists(
            st.text(alphabet="abcdef", min_size=1, max_size=10), min_size=2, max_size=4, unique=True
        )
    )
    def test_criteria_order_matters(self, criteria):
        reordered = criteria[1:] + criteria[:1]
        assert compute_fingerprint("T", "", criteria) != compute_fingerprint("T", "", reordered)


# =============================================================================
# Classification
# =============================================================================


class TestClassifyProperties:
    @given(fingerprints, st.one_of(st.none(), fingerprints), fingerprints, fingerprints)
    def test_same_inputs_same_state(self, local, remote, last_local, last_remote):
        first = classify(local, remote, last_local, last_remote)
        assert classify(local, remote, last_local, last_remote) is first

    @given(fingerprints, fingerprints)
    def test_nothing_changed_is_unchanged(self, local, remote):
        assert classify(local, remote, local, remote) is ConflictState.UNCHANGED

    @given(fingerprints, st.one_of(st.none(), fingerprints), fingerprints, fingerprints)
    def test_local_change_is_never_hidden(self, local, remote, last_local, last_remote):
        state = classify(local, remote, last_local, last_remote)
        if local != last_local:
            assert state in (ConflictState.LOCAL_ONLY, ConflictState.BOTH)
        else:
            assert state in (ConflictState.UNCHANGED, ConflictState.REMOTE_ONLY)

    @given(fingerprints, fingerprints, fingerprints)
    def test_unfetched_remote_is_never_a_conflict(self, local, last_local, last_remote):
        assert classify(local, None, last_local, last_remote) is not ConflictState.BOTH


# =============================================================================
# Batching
# =============================================================================


class TestPartitionProperties:
    @given(st.lists(st.integers(), max_size=60), st.integers(min_value=1, max_value=16))
    def test_partition(self, units, width):
        batches = partition_batches(units, width)

        assert len(batches) == math.ceil(len(units) / width)
        assert [u for batch in batches for u in batch.units] == units
        assert all(len(batch) == width for batch in batches[:-1])
        assert all(1 <= len(batch) <= width for batch in batches)


# =============================================================================
# Hierarchy
# =============================================================================


class TestHierarchyProperties:
    @given(st.lists(st.integers(min_value=0, max_value=5), min_size=1, max_size=6))
    def test_levels_put_parents_first(self, task_counts):
        hierarchy = EpicHierarchy([HierarchyNode("e", ItemType.EPIC, "Epic")])
        for s, count in enumerate(task_counts):
            hierarchy.add(HierarchyNode(f"e/{s}", ItemType.STORY, f"S{s}", parent_id="e"))
            for t in range(count):
                hierarchy.add(
                    HierarchyNode(f"e/{s}/{t}", ItemType.TASK, f"T{t}", parent_id=f"e/{s}")
                )
        hierarchy.validate()

        seen: set[str] = set()
        for level in hierarchy.levels():
            for node in level:
                assert node.parent_id is None or node.parent_id in seen
            seen.update(node.local_id for node in level)
        assert len(seen) == len(hierarchy)
