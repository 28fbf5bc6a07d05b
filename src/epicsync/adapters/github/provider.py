"""
GitHub Provider - Projects hierarchy nodes onto GitHub Issues.

GitHub has no native parent/child relation between issues, so the
hierarchy is expressed with labels and a "Part of #N" back reference in
the child's body. The link is therefore folded into create_item and
link_parent_child has nothing left to do.
"""

import logging
import re
from typing import Any

from epicsync.core.domain.entities import HierarchyNode, RemoteItem, WorkItemRef
from epicsync.core.domain.enums import ItemType
from epicsync.core.domain.fingerprint import fingerprint_remote
from epicsync.core.exceptions import ValidationError
from epicsync.core.ports.config_provider import GitHubConfig
from epicsync.core.ports.tracker_provider import TrackerProviderPort

from .client import GitHubApiClient


# Static field mapping per item type
FIELD_MAP: dict[ItemType, dict[str, Any]] = {
    ItemType.EPIC: {"labels": ["epic"], "title_prefix": "Epic: "},
    ItemType.STORY: {"labels": ["user-story"]},
    ItemType.TASK: {"labels": ["task"]},
}

ACCEPTANCE_HEADING = "## Acceptance Criteria"
BACK_REFERENCE = "Part of #{number}"

_BACK_REFERENCE_RE = re.compile(r"\n*Part of #\d+\s*$")


def render_body(
    body: str,
    acceptance_criteria: list[str] | None = None,
    parent_number: str | None = None,
) -> str:
    """
    Build the GitHub issue body for a node.

    Layout: node body, an acceptance-criteria checklist, then the parent
    back reference as the last line.
    """
    sections = []
    if body and body.strip():
        sections.append(body.strip())
    if acceptance_criteria:
        checklist = "\n".join(f"- [ ] {criterion}" for criterion in acceptance_criteria)
        sections.append(f"{ACCEPTANCE_HEADING}\n\n{checklist}")
    if parent_number:
        sections.append(BACK_REFERENCE.format(number=parent_number))
    return "\n\n".join(sections)


def strip_back_reference(body: str) -> str:
    """Remove a trailing "Part of #N" line."""
    return _BACK_REFERENCE_RE.sub("", body or "")


class GitHubProvider(TrackerProviderPort):
    """TrackerProviderPort implementation for GitHub Issues."""

    def __init__(
        self,
        config: GitHubConfig,
        dry_run: bool = True,
        client: GitHubApiClient | None = None,
    ):
        """
        Initialize the provider.

        Args:
            config: GitHub configuration
            dry_run: If True, the client suppresses writes
            client: Pre-built client (tests inject a mock)
        """
        self.config = config
        self._dry_run = dry_run
        self.logger = logging.getLogger("GitHubProvider")
        self._client = client or GitHubApiClient(
            token=config.token,
            owner=config.owner,
            repo=config.repo,
            base_url=config.base_url,
            dry_run=dry_run,
            requests_per_second=config.requests_per_second,
        )

    # -------------------------------------------------------------------------
    # TrackerProviderPort - Identity
    # -------------------------------------------------------------------------

    @property
    def name(self) -> str:
        return "github"

    @property
    def links_via_body(self) -> bool:
        return True

    @property
    def client(self) -> GitHubApiClient:
        return self._client

    def test_connection(self) -> bool:
        return self._client.test_connection()

    def close(self) -> None:
        self._client.close()

    # -------------------------------------------------------------------------
    # TrackerProviderPort - Write Operations
    # -------------------------------------------------------------------------

    def create_item(
        self,
        node: HierarchyNode,
        item_type: ItemType,
        parent_ref: WorkItemRef | None = None,
    ) -> WorkItemRef:
        parent_number = self._parent_number(parent_ref) if parent_ref else None
        if item_type is not ItemType.EPIC and parent_number is None:
            raise ValidationError(
                f"{item_type.display_name} {node.local_id} needs a parent issue",
                item_id=node.local_id,
            )

        mapping = FIELD_MAP[item_type]
        title = f"{mapping.get('title_prefix', '')}{node.title}"
        body = render_body(node.body, node.acceptance_criteria, parent_number)
        labels = list(mapping["labels"]) + [
            label for label in node.fields.get("labels", []) or [] if label not in mapping["labels"]
        ]
        assignees = self._assignees(node.fields)

        issue = self._client.create_issue(title=title, body=body, labels=labels, assignees=assignees)

        if not issue:
            # Dry-run client returns nothing
            return WorkItemRef(
                provider=self.name,
                remote_id=f"dry-run:{node.local_id}",
                remote_url="",
                item_type=item_type,
                last_synced_fingerprint=node.fingerprint,
                remote_fingerprint=fingerprint_remote(title, body),
            )

        self.logger.info(f"Created issue #{issue['number']} for {node.local_id}")
        return WorkItemRef(
            provider=self.name,
            remote_id=str(issue["number"]),
            remote_url=issue.get("html_url", ""),
            item_type=item_type,
            last_synced_fingerprint=node.fingerprint,
            remote_fingerprint=fingerprint_remote(
                issue.get("title", title), issue.get("body", body)
            ),
        )

    def link_parent_child(self, parent_ref: WorkItemRef, child_ref: WorkItemRef) -> None:
        """Nothing to do: the child body already carries "Part of #N"."""
        self._parent_number(parent_ref)
        self.logger.debug(f"#{child_ref.remote_id} linked to #{parent_ref.remote_id} via body")

    def update_item(self, ref: WorkItemRef, fields: dict[str, Any]) -> WorkItemRef:
        """
        Push new content to an issue.

        Recognized keys: title, body, acceptance_criteria, labels,
        assigned_to, parent_ref. Other keys have no GitHub counterpart
        and are ignored.
        """
        payload: dict[str, Any] = {}
        mapping = FIELD_MAP[ref.item_type]

        if "title" in fields:
            payload["title"] = f"{mapping.get('title_prefix', '')}{fields['title']}"

        if "body" in fields or "acceptance_criteria" in fields:
            parent_ref = fields.get("parent_ref")
            parent_number = self._parent_number(parent_ref) if parent_ref else None
            payload["body"] = render_body(
                fields.get("body", ""), fields.get("acceptance_criteria"), parent_number
            )

        if "labels" in fields:
            payload["labels"] = list(mapping["labels"]) + [
                label for label in fields["labels"] or [] if label not in mapping["labels"]
            ]

        assignees = self._assignees(fields)
        if assignees:
            payload["assignees"] = assignees

        if not payload:
            return ref

        issue = self._client.update_issue(ref.remote_id, **payload)
        if not issue:
            return ref.with_fingerprints(
                remote=fingerprint_remote(payload.get("title"), payload.get("body"))
            )

        self.logger.info(f"Updated issue #{ref.remote_id}")
        return ref.with_fingerprints(
            remote=fingerprint_remote(issue.get("title"), issue.get("body"))
        )

    # -------------------------------------------------------------------------
    # TrackerProviderPort - Read Operations
    # -------------------------------------------------------------------------

    def get_item(self, ref: WorkItemRef) -> RemoteItem:
        issue = self._client.get_issue(ref.remote_id)
        raw_title = issue.get("title") or ""
        raw_body = issue.get("body") or ""

        prefix = FIELD_MAP[ref.item_type].get("title_prefix", "")
        title = raw_title[len(prefix) :] if prefix and raw_title.startswith(prefix) else raw_title

        return RemoteItem(
            ref=ref,
            title=title,
            body=strip_back_reference(raw_body),
            fields={
                "state": issue.get("state"),
                "labels": [label.get("name") for label in issue.get("labels", [])],
            },
            fingerprint=fingerprint_remote(raw_title, raw_body),
        )

    # -------------------------------------------------------------------------
    # Private Methods
    # -------------------------------------------------------------------------

    def _parent_number(self, parent_ref: WorkItemRef) -> str:
        if parent_ref.provider != self.name or not parent_ref.remote_id.isdigit():
            raise ValidationError(
                f"Cannot reference {parent_ref.provider} item {parent_ref.remote_id} "
                "from a GitHub issue body",
                item_id=parent_ref.remote_id,
            )
        return parent_ref.remote_id

    @staticmethod
    def _assignees(fields: dict[str, Any]) -> list[str]:
        assigned = fields.get("assigned_to")
        if not assigned:
            return []
        if isinstance(assigned, str):
            return [assigned.lstrip("@")]
        return [str(a).lstrip("@") for a in assigned]
