"""
Mapping Store - Durable local-id → remote-ref associations.

The store is the single source of truth for "has this node been created
remotely?". Every record() rewrites the whole file atomically (temp file,
fsync, rename) so a crash leaves either the old or the new version on
disk, never a torn one.

File format:

    {
      "entries": [{"localId": "auth", "provider": "github", ...}],
      "schema_version": 1
    }
"""

from __future__ import annotations

import fcntl
import json
import logging
import os
import tempfile
import threading
from collections.abc import Callable
from pathlib import Path
from typing import IO, Any

from epicsync.core.domain.entities import MappingEntry, WorkItemRef, utc_now_iso
from epicsync.core.domain.enums import ItemType
from epicsync.core.exceptions import (
    MappingStoreCorruptError,
    MappingStoreError,
    MappingStoreLockedError,
)


SCHEMA_VERSION = 1
DEFAULT_MAPPING_FILE = ".epicsync-mapping.json"


def atomic_write_text(path: Path, text: str) -> None:
    """
    Replace a file's content atomically.

    Writes a temp file in the same directory, fsyncs it, renames it over
    the target and fsyncs the directory where the platform allows it.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_name, path)
    except BaseException:
        try:
            os.unlink(temp_name)
        except FileNotFoundError:
            pass
        raise

    try:
        dir_fd = os.open(path.parent, os.O_RDONLY)
    except OSError:
        return
    try:
        os.fsync(dir_fd)
    except OSError:
        pass
    finally:
        os.close(dir_fd)


class MappingStore:
    """
    Persistent mapping of (local_id, provider) to WorkItemRef.

    Entries keep insertion order; an upsert keeps the entry's original
    position. Entries are only ever removed explicitly.
    """

    def __init__(self, path: Path | str, provider: str):
        """
        Initialize the store.

        Args:
            path: Mapping file location
            provider: Default provider key for lookups and records
        """
        self.path = Path(path)
        self.provider = provider
        self._entries: dict[tuple[str, str], MappingEntry] = {}
        self._lock = threading.Lock()
        self.logger = logging.getLogger("MappingStore")

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    def load(self) -> MappingStore:
        """
        Read the store from disk. A missing file is an empty store.

        Raises:
            MappingStoreCorruptError: If the file cannot be trusted
        """
        with self._lock:
            self._entries = {}

            if not self.path.exists():
                self.logger.debug(f"No mapping file at {self.path}, starting empty")
                return self

            try:
                text = self.path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as e:
                raise self._corrupt(str(e), e)

            try:
                data = json.loads(text)
            except json.JSONDecodeError as e:
                raise self._corrupt(f"invalid JSON at line {e.lineno}", e)

            if not isinstance(data, dict):
                raise self._corrupt("root is not an object")

            version = data.get("schema_version")
            if not isinstance(version, int):
                raise self._corrupt("missing schema_version")
            if version > SCHEMA_VERSION:
                raise self._corrupt(
                    f"schema_version {version} is newer than supported ({SCHEMA_VERSION})"
                )

            raw_entries = data.get("entries", [])
            if not isinstance(raw_entries, list):
                raise self._corrupt("entries is not a list")

            for index, raw in enumerate(raw_entries):
                try:
                    entry = MappingEntry.from_dict(raw)
                except (KeyError, ValueError, TypeError) as e:
                    raise self._corrupt(f"entry {index}: {e}", e)

                key = (entry.local_id, entry.provider)
                if key in self._entries:
                    raise self._corrupt(f"duplicate entry for {entry.local_id} ({entry.provider})")
                self._entries[key] = entry

        self.logger.debug(f"Loaded {len(self._entries)} mapping entries from {self.path}")
        return self

    def _corrupt(self, reason: str, cause: Exception | None = None) -> MappingStoreCorruptError:
        return MappingStoreCorruptError(
            f"mapping store unreadable: {self.path}: {reason}", path=self.path, cause=cause
        )

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def lookup(self, local_id: str, provider: str | None = None) -> WorkItemRef | None:
        """Return the remote ref for a node, or None if it was never created."""
        with self._lock:
            entry = self._entries.get((local_id, provider or self.provider))
        return entry.ref if entry else None

    def entries(self) -> list[MappingEntry]:
        """All entries in insertion order."""
        with self._lock:
            return list(self._entries.values())

    all_entries = entries

    def __contains__(self, local_id: object) -> bool:
        with self._lock:
            return (local_id, self.provider) in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def record(self, local_id: str, ref: WorkItemRef) -> MappingEntry:
        """
        Upsert an entry and persist the store atomically.

        Raises:
            MappingStoreError: If the file cannot be written
        """
        entry = MappingEntry(local_id=local_id, ref=ref, synced_at=utc_now_iso())
        with self._lock:
            key = (local_id, ref.provider)
            previous = self._entries.get(key)
            self._entries[key] = entry
            try:
                self._persist()
            except OSError as e:
                if previous is None:
                    del self._entries[key]
                else:
                    self._entries[key] = previous
                raise MappingStoreError(
                    f"Cannot write mapping store {self.path}", path=self.path, cause=e
                )
        return entry

    def remove(self, local_id: str, provider: str | None = None) -> bool:
        """Explicitly remove an entry. Returns True if one was removed."""
        with self._lock:
            key = (local_id, provider or self.provider)
            if key not in self._entries:
                return False
            snapshot = dict(self._entries)
            del self._entries[key]
            try:
                self._persist()
            except OSError as e:
                self._entries = snapshot
                raise MappingStoreError(
                    f"Cannot write mapping store {self.path}", path=self.path, cause=e
                )
        return True

    def import_entries(self, entries: list[MappingEntry]) -> int:
        """Add entries that are not mapped yet; existing entries win."""
        added = 0
        with self._lock:
            for entry in entries:
                key = (entry.local_id, entry.provider)
                if key not in self._entries:
                    self._entries[key] = entry
                    added += 1
            if added:
                try:
                    self._persist()
                except OSError as e:
                    raise MappingStoreError(
                        f"Cannot write mapping store {self.path}", path=self.path, cause=e
                    )
        return added

    def to_dict(self) -> dict[str, Any]:
        return {
            "entries": [entry.to_dict() for entry in self._entries.values()],
            "schema_version": SCHEMA_VERSION,
        }

    def _persist(self) -> None:
        """Write the store. Must be called with lock held."""
        text = json.dumps(self.to_dict(), indent=2, sort_keys=True, ensure_ascii=False) + "\n"
        atomic_write_text(self.path, text)


class MappingStoreLock:
    """
    Advisory, non-blocking lock held for the duration of a sync run.

    Uses fcntl.flock on "<store>.lock". POSIX only.

    Usage:
        with MappingStoreLock(store.path):
            orchestrator.sync(root)
    """

    def __init__(self, store_path: Path | str):
        self.store_path = Path(store_path)
        self.lock_path = self.store_path.with_name(self.store_path.name + ".lock")
        self._fd: IO[str] | None = None
        self.logger = logging.getLogger("MappingStoreLock")

    def acquire(self) -> None:
        """
        Take the lock without waiting.

        Raises:
            MappingStoreLockedError: If another process holds it
        """
        if self._fd is not None:
            return

        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        fd = open(self.lock_path, "a+", encoding="utf-8")
        try:
            fcntl.flock(fd.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError as e:
            fd.close()
            raise MappingStoreLockedError(
                f"Mapping store {self.store_path} is locked by another sync run",
                path=self.store_path,
                cause=e,
            )

        fd.seek(0)
        fd.truncate()
        fd.write(str(os.getpid()))
        fd.flush()
        self._fd = fd
        self.logger.debug(f"Acquired {self.lock_path}")

    def release(self) -> None:
        if self._fd is None:
            return
        try:
            fcntl.flock(self._fd.fileno(), fcntl.LOCK_UN)
        finally:
            self._fd.close()
            self._fd = None
        self.logger.debug(f"Released {self.lock_path}")

    @property
    def held(self) -> bool:
        return self._fd is not None

    def __enter__(self) -> MappingStoreLock:
        self.acquire()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.release()


# =============================================================================
# Legacy import
# =============================================================================


def import_legacy_mapping(
    path: Path | str,
    provider: str,
    item_type_for: Callable[[str], ItemType],
    url_for: Callable[[str], str] | None = None,
) -> list[MappingEntry]:
    """
    Read an old "local_path:issue_number" text mapping.

    Fingerprints are left empty, so the first sync after import treats
    every imported node as locally changed and pushes it once.

    Args:
        path: Legacy mapping file
        provider: Provider key to assign to every entry
        item_type_for: Derives the item type from a local id
        url_for: Derives the remote URL from a remote id

    Raises:
        MappingStoreCorruptError: On malformed lines
    """
    path = Path(path)
    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except (OSError, UnicodeDecodeError) as e:
        raise MappingStoreCorruptError(f"mapping store unreadable: {path}", path=path, cause=e)

    entries: list[MappingEntry] = []
    seen: set[str] = set()
    for number, line in enumerate(lines, start=1):
        line = line.strip()
        if not line or line.startswith("#"):
            continue

        local_path, sep, remote_id = line.rpartition(":")
        local_path, remote_id = local_path.strip(), remote_id.strip().lstrip("#")
        if not sep or not local_path or not remote_id:
            raise MappingStoreCorruptError(
                f"mapping store unreadable: {path}: line {number} is not 'path:id'", path=path
            )

        local_id = _legacy_local_id(local_path)
        if local_id in seen:
            continue
        seen.add(local_id)

        ref = WorkItemRef(
            provider=provider,
            remote_id=remote_id,
            remote_url=url_for(remote_id) if url_for else "",
            item_type=item_type_for(local_id),
        )
        entries.append(MappingEntry(local_id=local_id, ref=ref))

    return entries


def _legacy_local_id(local_path: str) -> str:
    """Turn ".claude/epics/auth/001.md" into "auth/001"."""
    normalized = local_path.replace("\\", "/")
    marker = "epics/"
    if marker in normalized:
        normalized = normalized.split(marker, 1)[1]
    if normalized.endswith("/epic.md"):
        normalized = normalized[: -len("/epic.md")]
    elif normalized.endswith("/story.md"):
        normalized = normalized[: -len("/story.md")]
    elif normalized.endswith(".md"):
        normalized = normalized[: -len(".md")]
    return normalized.strip("/")
