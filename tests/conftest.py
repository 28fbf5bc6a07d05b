"""
Shared pytest fixtures for the epicsync test suite.

Fixture Categories:
- Domain: the sample "auth" epic, in memory and on disk
- Providers: an in-memory tracker with call counters and failure injection
- Sync: mapping store, shadow store and sync configuration
"""

from __future__ import annotations

import threading
import time
from collections import Counter
from pathlib import Path
from textwrap import dedent
from typing import Any

import pytest

from epicsync.application.sync import MappingStore, ShadowStore
from epicsync.core.domain.entities import (
    EpicHierarchy,
    HierarchyNode,
    RemoteItem,
    WorkItemRef,
)
from epicsync.core.domain.enums import ItemType
from epicsync.core.domain.fingerprint import fingerprint_remote
from epicsync.core.ports.config_provider import SyncConfig
from epicsync.core.ports.tracker_provider import TrackerProviderPort


# =============================================================================
# Fake tracker
# =============================================================================


class FakeProvider(TrackerProviderPort):
    """
    In-memory tracker.

    Remote ids are sequential from 101. Failures are queued per local id
    (create) or per remote id (update, get, link) and raised in order.
    """

    def __init__(self, name: str = "github", links_via_body: bool = True, delay: float = 0.0):
        self._name = name
        self._links_via_body = links_via_body
        self.delay = delay

        self.calls: Counter[str] = Counter()
        self.created: list[str] = []
        self.links: list[tuple[str, str]] = []
        self.updates: list[tuple[str, dict[str, Any]]] = []
        self.closed = False

        self._content: dict[str, tuple[str, str]] = {}
        self._create_failures: dict[str, list[Exception]] = {}
        self._failures: dict[tuple[str, str], list[Exception]] = {}
        self._next_id = 101
        self._lock = threading.Lock()
        self._in_flight = 0
        self.peak_in_flight = 0

    # -- test helpers ---------------------------------------------------------

    def fail_create(self, local_id: str, *errors: Exception) -> None:
        self._create_failures.setdefault(local_id, []).extend(errors)

    def fail(self, method: str, remote_id: str, *errors: Exception) -> None:
        self._failures.setdefault((method, remote_id), []).extend(errors)

    def edit_remote(self, remote_id: str, title: str, body: str = "") -> None:
        """Simulate a human editing the item in the tracker."""
        self._content[remote_id] = (title, body)

    @property
    def total_calls(self) -> int:
        return sum(self.calls.values())

    def _raise_queued(self, queue: list[Exception] | None) -> None:
        if queue:
            raise queue.pop(0)

    # -- TrackerProviderPort --------------------------------------------------

    @property
    def name(self) -> str:
        return self._name

    @property
    def links_via_body(self) -> bool:
        return self._links_via_body

    def test_connection(self) -> bool:
        return True

    def close(self) -> None:
        self.closed = True

    def create_item(
        self,
        node: HierarchyNode,
        item_type: ItemType,
        parent_ref: WorkItemRef | None = None,
    ) -> WorkItemRef:
        with self._lock:
            self.calls["create_item"] += 1
            self._in_flight += 1
            self.peak_in_flight = max(self.peak_in_flight, self._in_flight)
        try:
            if self.delay:
                time.sleep(self.delay)
            with self._lock:
                self._raise_queued(self._create_failures.get(node.local_id))
                remote_id = str(self._next_id)
                self._next_id += 1
                self.created.append(node.local_id)
                self._content[remote_id] = (node.title, node.body)
            return WorkItemRef(
                provider=self.name,
                remote_id=remote_id,
                remote_url=f"https://tracker.test/items/{remote_id}",
                item_type=item_type,
                last_synced_fingerprint=node.fingerprint,
                remote_fingerprint=fingerprint_remote(node.title, node.body),
            )
        finally:
            with self._lock:
                self._in_flight -= 1

    def link_parent_child(self, parent_ref: WorkItemRef, child_ref: WorkItemRef) -> None:
        with self._lock:
            self.calls["link_parent_child"] += 1
            self._raise_queued(self._failures.get(("link", child_ref.remote_id)))
            self.links.append((parent_ref.remote_id, child_ref.remote_id))

    def update_item(self, ref: WorkItemRef, fields: dict[str, Any]) -> WorkItemRef:
        with self._lock:
            self.calls["update_item"] += 1
            self._raise_queued(self._failures.get(("update", ref.remote_id)))
            self.updates.append((ref.remote_id, dict(fields)))
            title, body = fields.get("title", ""), fields.get("body", "")
            self._content[ref.remote_id] = (title, body)
        return ref.with_fingerprints(remote=fingerprint_remote(title, body))

    def get_item(self, ref: WorkItemRef) -> RemoteItem:
        with self._lock:
            self.calls["get_item"] += 1
            self._raise_queued(self._failures.get(("get", ref.remote_id)))
            title, body = self._content.get(ref.remote_id, ("", ""))
        return RemoteItem(
            ref=ref,
            title=title,
            body=body,
            fingerprint=fingerprint_remote(title, body),
        )


@pytest.fixture
def fake_provider() -> FakeProvider:
    """Fake GitHub-like provider (parent link folded into create)."""
    return FakeProvider()


@pytest.fixture
def linking_provider() -> FakeProvider:
    """Fake Azure-like provider that needs link_parent_child calls."""
    return FakeProvider(name="azure_devops", links_via_body=False)


# =============================================================================
# Sample hierarchy
# =============================================================================


AUTH_IDS = [
    "auth",
    "auth/01-login",
    "auth/01-login/1",
    "auth/01-login/2",
    "auth/02-signup",
    "auth/02-signup/1",
    "auth/02-signup/2",
]


def build_auth_hierarchy() -> EpicHierarchy:
    """Epic with two stories of two tasks each (7 nodes)."""
    hierarchy = EpicHierarchy()
    hierarchy.add(HierarchyNode("auth", ItemType.EPIC, "Authentication", "Let users sign in"))
    for story, title in (("01-login", "Login"), ("02-signup", "Signup")):
        story_id = f"auth/{story}"
        hierarchy.add(
            HierarchyNode(
                story_id,
                ItemType.STORY,
                title,
                f"{title} story",
                parent_id="auth",
                acceptance_criteria=[f"{title} works"],
            )
        )
        for number in (1, 2):
            hierarchy.add(
                HierarchyNode(
                    f"{story_id}/{number}",
                    ItemType.TASK,
                    f"{title} task {number}",
                    parent_id=story_id,
                )
            )
    hierarchy.validate()
    return hierarchy


@pytest.fixture
def auth_hierarchy() -> EpicHierarchy:
    return build_auth_hierarchy()


def write_auth_epic(base: Path) -> Path:
    """Write the auth epic as a markdown tree and return its root."""
    root = base / "epics" / "auth"
    (root / "01-login").mkdir(parents=True)
    (root / "02-signup").mkdir(parents=True)

    (root / "epic.md").write_text(
        dedent(
            """\
            ---
            name: Authentication
            status: backlog
            ---

            Let users sign in
            """
        ),
        encoding="utf-8",
    )
    for story, title in (("01-login", "Login"), ("02-signup", "Signup")):
        (root / story / "story.md").write_text(
            dedent(
                f"""\
                # {title}

                {title} story

                ## Acceptance Criteria

                - [ ] {title} works
                """
            ),
            encoding="utf-8",
        )
        for number in (1, 2):
            (root / story / f"{number}.md").write_text(
                f"---\nname: {title} task {number}\n---\n", encoding="utf-8"
            )
    return root


@pytest.fixture
def epic_root(tmp_path: Path) -> Path:
    """The auth epic on disk (epic.md + two story directories)."""
    return write_auth_epic(tmp_path)


# =============================================================================
# Sync plumbing
# =============================================================================


@pytest.fixture
def mapping_path(tmp_path: Path) -> Path:
    return tmp_path / ".epicsync-mapping.json"


@pytest.fixture
def mapping_store(mapping_path: Path) -> MappingStore:
    """Loaded, empty GitHub mapping store."""
    return MappingStore(mapping_path, "github").load()


@pytest.fixture
def shadow_store(tmp_path: Path) -> ShadowStore:
    return ShadowStore(tmp_path / "shadow")


@pytest.fixture
def sync_config() -> SyncConfig:
    """Sync configuration without backoff delays."""
    return SyncConfig(max_concurrency=4, max_retries=3, initial_delay=0.0, max_delay=0.0)


@pytest.fixture
def no_sleep() -> list[float]:
    """Collects requested sleep durations instead of sleeping."""
    return []
