"""
Tracker Provider Port - Abstract interface for item trackers.

Implementations:
- GitHubProvider: GitHub Issues (parent link folded into the issue body)
- AzureDevOpsProvider: Azure DevOps Boards (explicit hierarchy relation)

Every provider exposes the same capability set: create, update, link and
get. The engine never probes for optional methods at runtime.
"""

from abc import ABC, abstractmethod
from typing import Any

from epicsync.core.domain.entities import HierarchyNode, RemoteItem, WorkItemRef
from epicsync.core.domain.enums import ItemType
from epicsync.core.exceptions import (
    AccessDeniedError,
    AuthenticationError,
    PermanentError,
    RateLimitError,
    ResourceNotFoundError,
    TrackerError,
    TransientError,
    ValidationError,
)


__all__ = [
    "AccessDeniedError",
    "AuthenticationError",
    "PermanentError",
    "RateLimitError",
    "ResourceNotFoundError",
    "TrackerError",
    "TrackerProviderPort",
    "TransientError",
    "ValidationError",
]


class TrackerProviderPort(ABC):
    """
    Abstract interface for item tracker providers.

    Providers translate hierarchy nodes into tracker payloads using static
    field-mapping tables and return opaque WorkItemRefs. They raise
    TransientError, PermanentError or AuthenticationError; they never retry.
    """

    # -------------------------------------------------------------------------
    # Identity
    # -------------------------------------------------------------------------

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider key stored in the mapping (e.g. 'github')."""
        ...

    @property
    def links_via_body(self) -> bool:
        """True when create_item already encodes the parent reference."""
        return False

    @abstractmethod
    def test_connection(self) -> bool:
        """Check that the configured credentials work."""
        ...

    def close(self) -> None:
        """Release network resources held by the provider."""
        return None

    # -------------------------------------------------------------------------
    # Write Operations
    # -------------------------------------------------------------------------

    @abstractmethod
    def create_item(
        self,
        node: HierarchyNode,
        item_type: ItemType,
        parent_ref: WorkItemRef | None = None,
    ) -> WorkItemRef:
        """
        Create a remote item for a node.

        Args:
            node: The local node to project
            item_type: Level of the node
            parent_ref: Remote parent, required for stories and tasks

        Returns:
            Reference to the created item, with fingerprints filled in
        """
        ...

    @abstractmethod
    def link_parent_child(self, parent_ref: WorkItemRef, child_ref: WorkItemRef) -> None:
        """Establish the parent → child relation between two remote items."""
        ...

    @abstractmethod
    def update_item(self, ref: WorkItemRef, fields: dict[str, Any]) -> WorkItemRef:
        """
        Push new content to an existing item.

        Args:
            ref: Item to update
            fields: Abstract field names (title, body, acceptance_criteria, ...)

        Returns:
            Updated reference with a fresh remote fingerprint
        """
        ...

    # -------------------------------------------------------------------------
    # Read Operations
    # -------------------------------------------------------------------------

    @abstractmethod
    def get_item(self, ref: WorkItemRef) -> RemoteItem:
        """
        Fetch the current remote state of an item.

        Raises:
            ResourceNotFoundError: If the item no longer exists
        """
        ...
