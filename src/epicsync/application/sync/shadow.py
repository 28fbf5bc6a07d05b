"""
Shadow Store - Local copies of remote content that changed upstream.

Remote edits are never written into the authored files. They land next to
them in "<root>/<local_id>.remote.md" so a human can merge them.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml

from epicsync.core.domain.entities import RemoteItem, utc_now_iso

from .mapping import atomic_write_text


DEFAULT_SHADOW_DIR = ".epicsync-shadow"
SHADOW_SUFFIX = ".remote.md"


class ShadowStore:
    """Writes and reads shadow copies of remote items."""

    def __init__(self, root: Path | str):
        self.root = Path(root)
        self.logger = logging.getLogger("ShadowStore")

    def path_for(self, local_id: str) -> Path:
        return self.root / f"{local_id}{SHADOW_SUFFIX}"

    def write(self, local_id: str, remote: RemoteItem) -> Path:
        """
        Write the shadow copy of a remote item, replacing any previous one.

        Returns:
            Path of the shadow file
        """
        meta = {
            "remote_id": remote.ref.remote_id,
            "remote_url": remote.ref.remote_url,
            "item_type": remote.ref.item_type.value,
            "fingerprint": remote.fingerprint,
            "pulled_at": utc_now_iso(),
        }
        frontmatter = yaml.safe_dump(meta, sort_keys=False, allow_unicode=True)
        text = f"---\n{frontmatter}---\n\n# {remote.title}\n"
        if remote.body:
            text += f"\n{remote.body.rstrip()}\n"

        path = self.path_for(local_id)
        atomic_write_text(path, text)
        self.logger.info(f"Wrote remote copy of {local_id} to {path}")
        return path

    def read(self, local_id: str) -> dict[str, Any] | None:
        """
        Read a shadow copy back.

        Returns:
            Frontmatter values plus "title" and "body", or None if absent
        """
        path = self.path_for(local_id)
        if not path.exists():
            return None

        text = path.read_text(encoding="utf-8")
        meta: dict[str, Any] = {}
        body = text
        if text.startswith("---\n"):
            _, raw_meta, body = text.split("---\n", 2)
            meta = yaml.safe_load(raw_meta) or {}

        lines = body.strip("\n").splitlines()
        title = ""
        if lines and lines[0].startswith("# "):
            title = lines[0][2:].strip()
            lines = lines[1:]

        return {**meta, "title": title, "body": "\n".join(lines).strip("\n")}
