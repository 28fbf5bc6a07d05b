"""
Fingerprints - Content hashes used to detect change since the last sync.

Both sides are hashed with the same normalization so that cosmetic
differences (line endings, trailing whitespace, surrounding blank lines)
never register as edits.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Iterable, Mapping
from typing import Any


FINGERPRINT_PREFIX = "sha256:"


def normalize_text(text: str | None) -> str:
    """Normalize line endings and whitespace for hashing."""
    if not text:
        return ""
    lines = text.replace("\r\n", "\n").replace("\r", "\n").split("\n")
    return "\n".join(line.rstrip() for line in lines).strip("\n")


def _digest(payload: Any) -> str:
    canonical = json.dumps(payload, sort_keys=True, ensure_ascii=False, separators=(",", ":"))
    return FINGERPRINT_PREFIX + hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def compute_fingerprint(
    title: str,
    body: str | None = None,
    acceptance_criteria: Iterable[str] = (),
    fields: Mapping[str, Any] | None = None,
) -> str:
    """
    Fingerprint a local node.

    Args:
        title: Node title
        body: Node body text (markdown)
        acceptance_criteria: Ordered acceptance criteria
        fields: Extra tracker-relevant attributes

    Returns:
        "sha256:<hex>" digest
    """
    return _digest(
        {
            "title": normalize_text(title),
            "body": normalize_text(body),
            "acceptance_criteria": [normalize_text(c) for c in acceptance_criteria],
            "fields": dict(sorted((fields or {}).items())),
        }
    )


def fingerprint_remote(title: str | None, body: str | None) -> str:
    """Fingerprint the content of a remote work item as the tracker returns it."""
    return _digest({"title": normalize_text(title), "body": normalize_text(body)})
