"""
End-to-end tests for SyncOrchestrator against the in-memory tracker.
"""

import threading
from dataclasses import replace

import pytest

from epicsync.adapters.parsers import MarkdownTreeSource
from epicsync.application.sync import MappingStore, SyncOrchestrator
from epicsync.application.sync.conflict import PULLED_DETAIL
from epicsync.cli.exit_codes import ExitCode
from epicsync.core.domain.enums import ConflictPolicy, NodeOutcome
from epicsync.core.domain.events import (
    ConflictDetected,
    ItemCreated,
    ItemUpdated,
    NodeFailed,
    SyncCompleted,
    SyncStarted,
)
from epicsync.core.exceptions import HierarchyError, MappingStoreCorruptError, ValidationError


AUTH_IDS = [
    "auth",
    "auth/01-login",
    "auth/01-login/1",
    "auth/01-login/2",
    "auth/02-signup",
    "auth/02-signup/1",
    "auth/02-signup/2",
]


def _orchestrator(provider, mapping_path, config, **kwargs):
    return SyncOrchestrator(
        provider,
        MappingStore(mapping_path, provider.name),
        MarkdownTreeSource(),
        config,
        sleep=lambda _: None,
        **kwargs,
    )


def _sync(provider, mapping_path, epic_root, config, **kwargs):
    return _orchestrator(provider, mapping_path, config).sync(epic_root, **kwargs)


def _edit_story(epic_root, story, body):
    title = "Login" if story == "01-login" else "Signup"
    (epic_root / story / "story.md").write_text(
        f"# {title}\n\n{body}\n\n## Acceptance Criteria\n\n- [ ] {title} works\n",
        encoding="utf-8",
    )


@pytest.fixture
def synced_once(fake_provider, mapping_path, epic_root, sync_config):
    """The auth epic after one successful sync; provider counters reset."""
    report = _sync(fake_provider, mapping_path, epic_root, sync_config)
    assert report.success
    fake_provider.calls.clear()
    return MappingStore(mapping_path, "github").load()


class TestFirstSync:
    def test_dry_run(self, fake_provider, mapping_path, epic_root, sync_config):
        report = _sync(fake_provider, mapping_path, epic_root, replace(sync_config, dry_run=True))

        assert report.dry_run
        assert len(report.created) == 7
        assert all(r.detail == "dry-run" for r in report.results)
        assert fake_provider.total_calls == 0
        assert not mapping_path.exists()

    def test_creates_everything(self, fake_provider, mapping_path, epic_root, sync_config):
        report = _sync(fake_provider, mapping_path, epic_root, sync_config)

        assert [r.local_id for r in report.results] == AUTH_IDS
        assert [str(r) for r in report.results] == ["created"] * 7
        assert report.exit_code == ExitCode.SUCCESS
        store = MappingStore(mapping_path, "github").load()
        assert len(store) == 7
        assert store.lookup("auth").remote_id == "101"

    def test_story_remote_is_child_of_epic(
        self, linking_provider, mapping_path, epic_root, sync_config
    ):
        _sync(linking_provider, mapping_path, epic_root, sync_config)

        store = MappingStore(mapping_path, "azure_devops").load()
        links = set(linking_provider.links)
        assert (store.lookup("auth").remote_id, store.lookup("auth/01-login").remote_id) in links
        assert (
            store.lookup("auth/02-signup").remote_id,
            store.lookup("auth/02-signup/2").remote_id,
        ) in links

    def test_corrupt_store_aborts_before_any_call(
        self, fake_provider, mapping_path, epic_root, sync_config
    ):
        mapping_path.write_text("{broken")

        with pytest.raises(MappingStoreCorruptError):
            _sync(fake_provider, mapping_path, epic_root, sync_config)

        assert fake_provider.total_calls == 0

    def test_invalid_root(self, fake_provider, mapping_path, tmp_path, sync_config):
        with pytest.raises(HierarchyError):
            _sync(fake_provider, mapping_path, tmp_path / "missing", sync_config)

        assert fake_provider.total_calls == 0


class TestResync:
    def test_rerun_is_a_no_op(self, fake_provider, mapping_path, epic_root, sync_config, synced_once):
        report = _sync(fake_provider, mapping_path, epic_root, sync_config)

        assert [str(r) for r in report.results] == ["unchanged"] * 7
        assert fake_provider.total_calls == 0
        assert MappingStore(mapping_path, "github").load().entries() == synced_once.entries()

    def test_local_edit_is_pushed(
        self, fake_provider, mapping_path, epic_root, sync_config, synced_once
    ):
        _edit_story(epic_root, "01-login", "Login story, now with SSO")

        report = _sync(fake_provider, mapping_path, epic_root, sync_config)

        assert str(report.get("auth/01-login")) == "updated"
        assert len(report.unchanged) == 6
        assert fake_provider.calls["update_item"] == 1
        assert fake_provider.calls["create_item"] == 0
        assert fake_provider.updates[0][0] == synced_once.lookup("auth/01-login").remote_id

    def test_remote_edit_is_pulled(
        self, fake_provider, mapping_path, epic_root, sync_config, synced_once, tmp_path
    ):
        fake_provider.edit_remote(synced_once.lookup("auth").remote_id, "Auth (edited upstream)")

        report = _sync(
            fake_provider, mapping_path, epic_root, replace(sync_config, check_remote=True)
        )

        auth = report.get("auth")
        assert auth.outcome is NodeOutcome.UPDATED
        assert auth.detail == PULLED_DETAIL
        assert fake_provider.calls["get_item"] == 7
        assert fake_provider.calls["update_item"] == 0
        assert (tmp_path / ".epicsync-shadow" / "auth.remote.md").is_file()
        # Authored files are never rewritten
        assert "Authentication" in (epic_root / "epic.md").read_text()

    def test_both_changed_manual(
        self, fake_provider, mapping_path, epic_root, sync_config, synced_once
    ):
        _edit_story(epic_root, "01-login", "Local edit")
        fake_provider.edit_remote(synced_once.lookup("auth/01-login").remote_id, "Remote edit")

        report = _sync(fake_provider, mapping_path, epic_root, sync_config)

        assert str(report.get("auth/01-login")) == "conflict: unresolved"
        assert len(report.unresolved) == 1
        assert report.exit_code == ExitCode.CONFLICTS_UNRESOLVED

    def test_both_changed_local_wins(
        self, fake_provider, mapping_path, epic_root, sync_config, synced_once
    ):
        _edit_story(epic_root, "01-login", "Local edit")
        fake_provider.edit_remote(synced_once.lookup("auth/01-login").remote_id, "Remote edit")
        config = replace(sync_config, conflict_policy=ConflictPolicy.LOCAL_WINS)

        report = _sync(fake_provider, mapping_path, epic_root, config)

        assert str(report.get("auth/01-login")) == "conflict: local-wins"
        assert report.exit_code == ExitCode.SUCCESS

    def test_new_task_is_created_under_existing_story(
        self, fake_provider, mapping_path, epic_root, sync_config, synced_once
    ):
        (epic_root / "01-login" / "3.md").write_text("---\nname: Login task 3\n---\n")

        report = _sync(fake_provider, mapping_path, epic_root, sync_config)

        assert str(report.get("auth/01-login/3")) == "created"
        assert fake_provider.calls["create_item"] == 1
        assert len(report.unchanged) == 7


class TestFailures:
    def test_failed_story_skips_its_tasks(self, fake_provider, mapping_path, epic_root, sync_config):
        fake_provider.fail_create("auth/01-login", ValidationError("rejected"))

        report = _sync(fake_provider, mapping_path, epic_root, sync_config)

        assert str(report.get("auth/01-login")) == "failed: rejected"
        assert str(report.get("auth/01-login/1")) == "skipped-parent-failed"
        assert str(report.get("auth/01-login/2")) == "skipped-parent-failed"
        assert str(report.get("auth/02-signup/2")) == "created"
        assert report.exit_code == ExitCode.PARTIAL_FAILURE

    def test_rerun_after_failure_creates_only_the_rest(
        self, fake_provider, mapping_path, epic_root, sync_config
    ):
        fake_provider.fail_create("auth/01-login", ValidationError("rejected"))
        _sync(fake_provider, mapping_path, epic_root, sync_config)
        fake_provider.calls.clear()

        report = _sync(fake_provider, mapping_path, epic_root, sync_config)

        assert len(report.created) == 3
        assert len(report.unchanged) == 4
        assert fake_provider.calls["create_item"] == 3
        assert report.success

    def test_failed_update_skips_children(
        self, fake_provider, mapping_path, epic_root, sync_config, synced_once
    ):
        _edit_story(epic_root, "01-login", "Local edit")
        (epic_root / "01-login" / "1.md").write_text("---\nname: Login task one\n---\n")
        fake_provider.fail(
            "update", synced_once.lookup("auth/01-login").remote_id, ValidationError("rejected")
        )

        report = _sync(fake_provider, mapping_path, epic_root, sync_config)

        assert report.get("auth/01-login").outcome is NodeOutcome.FAILED
        assert str(report.get("auth/01-login/1")) == "skipped-parent-failed"
        assert fake_provider.calls["update_item"] == 1

    def test_cancelled_run(self, fake_provider, mapping_path, epic_root, sync_config):
        cancel = threading.Event()
        cancel.set()

        report = _sync(fake_provider, mapping_path, epic_root, sync_config, cancel_event=cancel)

        assert report.cancelled
        assert report.exit_code == ExitCode.CANCELLED
        assert str(report.get("auth")) == "failed: cancelled before dispatch"
        assert fake_provider.total_calls == 0


class TestEvents:
    def test_events_published(self, fake_provider, mapping_path, epic_root, sync_config):
        orchestrator = _orchestrator(fake_provider, mapping_path, sync_config)
        orchestrator.sync(epic_root)

        history = orchestrator.event_bus.history
        assert isinstance(history[0], SyncStarted)
        assert isinstance(history[-1], SyncCompleted)
        assert history[-1].created == 7
        assert sum(isinstance(e, ItemCreated) for e in history) == 7

    def test_update_conflict_and_failure_events(
        self, fake_provider, mapping_path, epic_root, sync_config, synced_once
    ):
        _edit_story(epic_root, "01-login", "Local edit")
        _edit_story(epic_root, "02-signup", "Local edit")
        fake_provider.edit_remote(synced_once.lookup("auth/02-signup").remote_id, "Remote edit")
        (epic_root / "01-login" / "1.md").write_text("---\nname: Renamed task\n---\n")
        fake_provider.fail(
            "update", synced_once.lookup("auth/01-login/1").remote_id, ValidationError("rejected")
        )
        orchestrator = _orchestrator(fake_provider, mapping_path, sync_config)

        orchestrator.sync(epic_root)

        history = orchestrator.event_bus.history
        updated = [e for e in history if isinstance(e, ItemUpdated)]
        assert [(e.local_id, e.direction) for e in updated] == [("auth/01-login", "push")]
        conflicts = [e for e in history if isinstance(e, ConflictDetected)]
        assert [(e.local_id, e.outcome) for e in conflicts] == [("auth/02-signup", "unresolved")]
        failed = [e for e in history if isinstance(e, NodeFailed)]
        assert [e.local_id for e in failed] == ["auth/01-login/1"]
