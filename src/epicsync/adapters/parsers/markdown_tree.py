"""
Markdown Tree Source - Load an epic from a directory of markdown files.

Expected layout:

    auth/
      epic.md
      01-login/
        story.md
        1.md
        2.md
      02-signup/
        story.md
        1.md

Every file may start with a YAML frontmatter block. A flat epic
directory (numbered files next to epic.md, no story directories) is read
as one story per numbered file.
"""

import logging
import re
from datetime import date, datetime
from pathlib import Path
from typing import Any

import yaml

from epicsync.core.domain.entities import EpicHierarchy, HierarchyNode
from epicsync.core.domain.enums import ItemType
from epicsync.core.exceptions import HierarchyError
from epicsync.core.ports.hierarchy_source import HierarchySourcePort


EPIC_FILE = "epic.md"
STORY_FILE = "story.md"

# Frontmatter keys that describe the node itself rather than tracker fields
IDENTITY_KEYS = frozenset({"id", "name", "title", "acceptance_criteria"})

# Bookkeeping written by other tools; never part of the fingerprint
BOOKKEEPING_KEYS = frozenset(
    {"status", "created", "updated", "github", "depends_on", "parallel", "synced", "progress"}
)

_NUMBERED_RE = re.compile(r"^(\d+)")
_HEADING_RE = re.compile(r"^#\s+(.+?)\s*$", re.MULTILINE)
_SECTION_RE = re.compile(r"^##\s+(.+?)\s*$")
_CRITERION_RE = re.compile(r"^\s*[-*]\s+(?:\[[ xX]\]\s+)?(.+?)\s*$")


def split_frontmatter(text: str, path: Path | None = None) -> tuple[dict[str, Any], str]:
    """
    Split a YAML frontmatter block from a markdown document.

    Returns:
        (frontmatter dict, remaining body)

    Raises:
        HierarchyError: If the frontmatter is not valid YAML mapping
    """
    text = text.replace("\r\n", "\n")
    if not text.startswith("---\n"):
        return {}, text

    end = text.find("\n---", 3)
    if end == -1:
        return {}, text

    raw = text[4:end]
    rest = text[end + 4 :]
    rest = rest.split("\n", 1)[1] if "\n" in rest else ""

    try:
        data = yaml.safe_load(raw) or {}
    except yaml.YAMLError as e:
        raise HierarchyError("Invalid YAML frontmatter", path=path, cause=e)
    if not isinstance(data, dict):
        raise HierarchyError("Frontmatter must be a mapping", path=path)
    return data, rest


def extract_title(body: str) -> tuple[str | None, str]:
    """Pull the first "# " heading out of a body."""
    match = _HEADING_RE.search(body)
    if not match:
        return None, body
    remaining = body[: match.start()] + body[match.end() :]
    return match.group(1), remaining


def extract_acceptance_criteria(body: str) -> tuple[list[str], str]:
    """Pull an "## Acceptance Criteria" list section out of a body."""
    lines = body.split("\n")
    criteria: list[str] = []
    kept: list[str] = []
    in_section = False

    for line in lines:
        section = _SECTION_RE.match(line)
        if section:
            in_section = section.group(1).strip().lower() == "acceptance criteria"
            if in_section:
                continue
        if in_section:
            item = _CRITERION_RE.match(line)
            if item:
                criteria.append(item.group(1))
            elif line.strip():
                kept.append(line)
            continue
        kept.append(line)

    return criteria, "\n".join(kept)


def normalize_labels(value: Any, path: Path | None = None) -> list[str]:
    """
    Coerce a labels value into a list of label names.

    A scalar string is a comma-separated list ("security, auth").

    Raises:
        HierarchyError: If labels is neither a string nor a list of scalars
    """
    if value is None:
        return []
    if isinstance(value, str):
        items: list[Any] = value.split(",")
    elif isinstance(value, (list, tuple)):
        items = list(value)
    else:
        raise HierarchyError("labels must be a string or a list", path=path)

    labels: list[str] = []
    for item in items:
        if isinstance(item, (dict, list, tuple)):
            raise HierarchyError("labels must be a list of names", path=path)
        label = str(item).strip()
        if label and label not in labels:
            labels.append(label)
    return labels


def _jsonable(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def _numbered_key(path: Path) -> tuple[int, str]:
    match = _NUMBERED_RE.match(path.name)
    return (int(match.group(1)) if match else 0, path.name)


class MarkdownTreeSource(HierarchySourcePort):
    """Loads an epic from an epic.md directory tree."""

    def __init__(self) -> None:
        self.logger = logging.getLogger("MarkdownTreeSource")

    @property
    def name(self) -> str:
        return "Markdown"

    def can_load(self, root: Path) -> bool:
        return root.is_dir() and (root / EPIC_FILE).is_file()

    def load(self, root: Path) -> EpicHierarchy:
        root = Path(root)
        if not self.can_load(root):
            raise HierarchyError(f"No {EPIC_FILE} found", path=root)

        epic_id = root.name
        hierarchy = EpicHierarchy()
        hierarchy.add(self._read_node(root / EPIC_FILE, epic_id, ItemType.EPIC, None, root.name))

        story_dirs = sorted(
            (p for p in root.iterdir() if p.is_dir() and (p / STORY_FILE).is_file()),
            key=lambda p: p.name,
        )

        if story_dirs:
            for story_dir in story_dirs:
                story_id = f"{epic_id}/{story_dir.name}"
                hierarchy.add(
                    self._read_node(
                        story_dir / STORY_FILE, story_id, ItemType.STORY, epic_id, story_dir.name
                    )
                )
                for task_file in self._numbered_files(story_dir):
                    hierarchy.add(
                        self._read_node(
                            task_file,
                            f"{story_id}/{task_file.stem}",
                            ItemType.TASK,
                            story_id,
                            task_file.stem,
                        )
                    )
        else:
            for story_file in self._numbered_files(root):
                hierarchy.add(
                    self._read_node(
                        story_file,
                        f"{epic_id}/{story_file.stem}",
                        ItemType.STORY,
                        epic_id,
                        story_file.stem,
                    )
                )

        hierarchy.validate()
        self.logger.debug(f"Loaded {len(hierarchy)} nodes from {root}")
        return hierarchy

    # -------------------------------------------------------------------------
    # Private Methods
    # -------------------------------------------------------------------------

    @staticmethod
    def _numbered_files(directory: Path) -> list[Path]:
        files = [
            p
            for p in directory.iterdir()
            if p.is_file() and p.suffix == ".md" and _NUMBERED_RE.match(p.name)
        ]
        return sorted(files, key=_numbered_key)

    def _read_node(
        self,
        path: Path,
        local_id: str,
        item_type: ItemType,
        parent_id: str | None,
        fallback_title: str,
    ) -> HierarchyNode:
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise HierarchyError(f"Cannot read {path.name}", path=path, cause=e)

        frontmatter, body = split_frontmatter(text, path)

        heading, body = extract_title(body)
        title = frontmatter.get("title") or frontmatter.get("name") or heading or fallback_title

        criteria_value = frontmatter.get("acceptance_criteria")
        if criteria_value is not None:
            if not isinstance(criteria_value, list):
                raise HierarchyError("acceptance_criteria must be a list", path=path)
            criteria = [str(c) for c in criteria_value]
        else:
            criteria, body = extract_acceptance_criteria(body)

        fields = {
            key: _jsonable(value)
            for key, value in frontmatter.items()
            if key not in IDENTITY_KEYS and key not in BOOKKEEPING_KEYS
        }
        if "labels" in fields:
            fields["labels"] = normalize_labels(fields["labels"], path)

        return HierarchyNode(
            local_id=local_id,
            item_type=item_type,
            title=str(title).strip(),
            body=body.strip(),
            parent_id=parent_id,
            acceptance_criteria=criteria,
            fields=fields,
            source_path=str(path),
        )
