"""
Epic Document Source - Load an epic from a single JSON or YAML document.

Example:

    {
      "title": "Authentication",
      "description": "Let users sign in",
      "userStories": [
        {
          "title": "Login",
          "acceptanceCriteria": ["Valid credentials log in"],
          "tasks": [{"title": "Login form", "remainingWork": 4}]
        }
      ]
    }

Local ids are ordinal (auth, auth/story-1, auth/story-1/task-2) unless
an item carries an explicit "id".
"""

import json
import logging
from pathlib import Path
from typing import Any

import yaml

from epicsync.core.domain.entities import EpicHierarchy, HierarchyNode
from epicsync.core.domain.enums import ItemType
from epicsync.core.exceptions import HierarchyError
from epicsync.core.ports.hierarchy_source import HierarchySourcePort

from .markdown_tree import normalize_labels


# Document keys → node field names
FIELD_KEYS = {
    "remainingWork": "remaining_work",
    "remaining_work": "remaining_work",
    "assignedTo": "assigned_to",
    "assigned_to": "assigned_to",
    "labels": "labels",
    "priority": "priority",
}


class EpicDocumentSource(HierarchySourcePort):
    """Loads an epic from a .json, .yaml or .yml document."""

    SUPPORTED_EXTENSIONS = (".json", ".yaml", ".yml")

    def __init__(self) -> None:
        self.logger = logging.getLogger("EpicDocumentSource")

    @property
    def name(self) -> str:
        return "Document"

    def can_load(self, root: Path) -> bool:
        return root.is_file() and root.suffix.lower() in self.SUPPORTED_EXTENSIONS

    def load(self, root: Path) -> EpicHierarchy:
        root = Path(root)
        data = self._read(root)

        epic_id = self._node_id(data, root.stem)
        hierarchy = EpicHierarchy()
        hierarchy.add(self._node(data, epic_id, ItemType.EPIC, None, root))

        stories = data.get("userStories", data.get("stories", [])) or []
        if not isinstance(stories, list):
            raise HierarchyError("userStories must be a list", path=root)

        for s_index, story in enumerate(stories, start=1):
            if not isinstance(story, dict):
                raise HierarchyError(f"Story {s_index} must be a mapping", path=root)
            story_id = self._node_id(story, f"{epic_id}/story-{s_index}")
            hierarchy.add(self._node(story, story_id, ItemType.STORY, epic_id, root))

            tasks = story.get("tasks", []) or []
            if not isinstance(tasks, list):
                raise HierarchyError(f"Tasks of story {s_index} must be a list", path=root)
            for t_index, task in enumerate(tasks, start=1):
                if not isinstance(task, dict):
                    raise HierarchyError(
                        f"Task {t_index} of story {s_index} must be a mapping", path=root
                    )
                task_id = self._node_id(task, f"{story_id}/task-{t_index}")
                hierarchy.add(self._node(task, task_id, ItemType.TASK, story_id, root))

        hierarchy.validate()
        self.logger.debug(f"Loaded {len(hierarchy)} nodes from {root}")
        return hierarchy

    # -------------------------------------------------------------------------
    # Private Methods
    # -------------------------------------------------------------------------

    def _read(self, path: Path) -> dict[str, Any]:
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise HierarchyError(f"Cannot read {path.name}", path=path, cause=e)

        try:
            if path.suffix.lower() == ".json":
                data = json.loads(text)
            else:
                data = yaml.safe_load(text)
        except (json.JSONDecodeError, yaml.YAMLError) as e:
            raise HierarchyError(f"Cannot parse {path.name}", path=path, cause=e)

        if not isinstance(data, dict):
            raise HierarchyError("Epic document must be a mapping", path=path)
        if not data.get("title"):
            raise HierarchyError("Epic document has no title", path=path)
        return data

    @staticmethod
    def _node_id(data: dict[str, Any], default: str) -> str:
        explicit = data.get("id")
        return str(explicit) if explicit not in (None, "") else default

    @staticmethod
    def _node(
        data: dict[str, Any],
        local_id: str,
        item_type: ItemType,
        parent_id: str | None,
        path: Path,
    ) -> HierarchyNode:
        title = data.get("title")
        if not title:
            raise HierarchyError(f"{item_type.display_name} {local_id} has no title", path=path)

        criteria = data.get("acceptanceCriteria", data.get("acceptance_criteria", [])) or []
        if not isinstance(criteria, list):
            raise HierarchyError(f"Acceptance criteria of {local_id} must be a list", path=path)

        fields = {
            FIELD_KEYS[key]: value
            for key, value in data.items()
            if key in FIELD_KEYS and value not in (None, "")
        }
        if "labels" in fields:
            fields["labels"] = normalize_labels(fields["labels"], path)

        return HierarchyNode(
            local_id=local_id,
            item_type=item_type,
            title=str(title).strip(),
            body=str(data.get("description") or "").strip(),
            parent_id=parent_id,
            acceptance_criteria=[str(c) for c in criteria],
            fields=fields,
            source_path=str(path),
        )
