"""
Hierarchy Sources - Load local epics into an EpicHierarchy.

Supported layouts:
- Markdown tree: a directory with epic.md, story directories and task files
- Epic document: a single .json, .yaml or .yml file
"""

from pathlib import Path

from epicsync.core.ports.hierarchy_source import HierarchySourcePort

from .epic_document import EpicDocumentSource
from .markdown_tree import MarkdownTreeSource, split_frontmatter


def detect_source(root: Path) -> HierarchySourcePort | None:
    """Return the first source that can load the given path, if any."""
    for source in (MarkdownTreeSource(), EpicDocumentSource()):
        if source.can_load(Path(root)):
            return source
    return None


__all__ = ["EpicDocumentSource", "MarkdownTreeSource", "detect_source", "split_frontmatter"]
