"""
Hierarchy Source Port - Abstract interface for loading local epics.

Implementations:
- MarkdownTreeSource: epic directory with epic.md, story dirs and task files
- EpicDocumentSource: single JSON/YAML epic document
"""

from abc import ABC, abstractmethod
from pathlib import Path

from epicsync.core.domain.entities import EpicHierarchy
from epicsync.core.exceptions import HierarchyError


__all__ = ["HierarchyError", "HierarchySourcePort"]


class HierarchySourcePort(ABC):
    """Loads a validated EpicHierarchy from local files."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Get the source name (e.g., 'Markdown', 'Document')."""
        ...

    @abstractmethod
    def can_load(self, root: Path) -> bool:
        """Check if this source understands the given path."""
        ...

    @abstractmethod
    def load(self, root: Path) -> EpicHierarchy:
        """
        Load and validate the hierarchy rooted at a path.

        Args:
            root: Epic directory or document

        Returns:
            Validated hierarchy in document order

        Raises:
            HierarchyError: If the files are unreadable or malformed
        """
        ...
