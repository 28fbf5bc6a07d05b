"""
Azure DevOps Provider - Projects hierarchy nodes onto Azure Boards work items.

Work items are created with a JSON Patch document. The parent link is a
separate System.LinkTypes.Hierarchy-Reverse relation added afterwards,
so links_via_body is False and the scheduler calls link_parent_child.
"""

import html
import logging
import re
from typing import Any

from epicsync.core.domain.entities import HierarchyNode, RemoteItem, WorkItemRef
from epicsync.core.domain.enums import ItemType
from epicsync.core.domain.fingerprint import fingerprint_remote
from epicsync.core.exceptions import ValidationError
from epicsync.core.ports.config_provider import AzureDevOpsConfig
from epicsync.core.ports.tracker_provider import TrackerProviderPort

from .client import AzureDevOpsApiClient


TITLE_FIELD = "System.Title"
DESCRIPTION_FIELD = "System.Description"
TAGS_FIELD = "System.Tags"

COMMON_FIELDS: dict[str, str] = {
    "title": TITLE_FIELD,
    "body": DESCRIPTION_FIELD,
    "assigned_to": "System.AssignedTo",
}

# Abstract keys each work-item type accepts; anything else is not sent
FIELD_MAP: dict[ItemType, dict[str, Any]] = {
    ItemType.EPIC: {"type": "Epic", "fields": {**COMMON_FIELDS}},
    ItemType.STORY: {
        "type": "User Story",
        "fields": {
            **COMMON_FIELDS,
            "acceptance_criteria": "Microsoft.VSTS.Common.AcceptanceCriteria",
        },
    },
    ItemType.TASK: {
        "type": "Task",
        "fields": {
            **COMMON_FIELDS,
            "remaining_work": "Microsoft.VSTS.Scheduling.RemainingWork",
        },
    },
}

PARENT_RELATION = "System.LinkTypes.Hierarchy-Reverse"
TAG_PREFIX = "epicsync"

_TAG_RE = re.compile(r"<[^>]+>")


def markdown_to_html(text: str) -> str:
    """Render markdown paragraphs as simple escaped HTML paragraphs."""
    if not text or not text.strip():
        return ""
    paragraphs = [p.strip() for p in re.split(r"\n\s*\n", text.strip()) if p.strip()]
    return "".join(
        "<p>" + "<br/>".join(html.escape(line) for line in p.splitlines()) + "</p>"
        for p in paragraphs
    )


def html_to_text(value: str | None) -> str:
    """Best-effort reverse of markdown_to_html for shadow copies."""
    if not value:
        return ""
    text = value.replace("<br/>", "\n").replace("<br>", "\n")
    text = text.replace("</p>", "\n\n").replace("</h3>", "\n").replace("</li>", "\n")
    text = text.replace("<li>", "- ")
    return html.unescape(_TAG_RE.sub("", text)).strip()


def criteria_to_html(criteria: list[str]) -> str:
    """Render acceptance criteria as an HTML bullet list."""
    if not criteria:
        return ""
    return "<ul>" + "".join(f"<li>{html.escape(c)}</li>" for c in criteria) + "</ul>"


def render_description(body: str, criteria: list[str], item_type: ItemType) -> str:
    """HTML description; criteria are appended when the type has no field for them."""
    description = markdown_to_html(body or "")
    if criteria and "acceptance_criteria" not in FIELD_MAP[item_type]["fields"]:
        description += "<h3>Acceptance Criteria</h3>" + criteria_to_html(list(criteria))
    return description


class AzureDevOpsProvider(TrackerProviderPort):
    """TrackerProviderPort implementation for Azure DevOps Boards."""

    def __init__(
        self,
        config: AzureDevOpsConfig,
        dry_run: bool = True,
        client: AzureDevOpsApiClient | None = None,
    ):
        self.config = config
        self._dry_run = dry_run
        self.logger = logging.getLogger("AzureDevOpsProvider")
        self._client = client or AzureDevOpsApiClient(
            organization=config.organization,
            project=config.project,
            pat=config.pat,
            base_url=config.base_url,
            dry_run=dry_run,
            requests_per_second=config.requests_per_second,
        )

    # -------------------------------------------------------------------------
    # TrackerProviderPort - Identity
    # -------------------------------------------------------------------------

    @property
    def name(self) -> str:
        return "azure_devops"

    @property
    def client(self) -> AzureDevOpsApiClient:
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
        work_item_type = FIELD_MAP[item_type]["type"]

        values = {
            "title": node.title,
            "body": node.body,
            "acceptance_criteria": node.acceptance_criteria,
            **node.fields,
        }
        operations = self._build_operations(values, item_type)
        work_item = self._client.create_work_item(work_item_type, operations)

        title = node.title
        description = render_description(node.body, node.acceptance_criteria, item_type)

        if not work_item:
            return WorkItemRef(
                provider=self.name,
                remote_id=f"dry-run:{node.local_id}",
                remote_url="",
                item_type=item_type,
                last_synced_fingerprint=node.fingerprint,
                remote_fingerprint=fingerprint_remote(title, description),
            )

        work_item_id = str(work_item["id"])
        fields = work_item.get("fields", {})
        self.logger.info(f"Created {work_item_type} {work_item_id} for {node.local_id}")

        return WorkItemRef(
            provider=self.name,
            remote_id=work_item_id,
            remote_url=self._client.work_item_url(work_item_id),
            item_type=item_type,
            last_synced_fingerprint=node.fingerprint,
            remote_fingerprint=fingerprint_remote(
                fields.get(TITLE_FIELD, title),
                fields.get(DESCRIPTION_FIELD, description),
            ),
        )

    def link_parent_child(self, parent_ref: WorkItemRef, child_ref: WorkItemRef) -> None:
        if parent_ref.provider != self.name:
            raise ValidationError(
                f"Cannot link to {parent_ref.provider} item {parent_ref.remote_id}",
                item_id=child_ref.remote_id,
            )
        self._client.add_relation(
            child_ref.remote_id,
            PARENT_RELATION,
            self._client.work_item_api_url(parent_ref.remote_id),
        )
        self.logger.debug(f"Linked {child_ref.remote_id} under {parent_ref.remote_id}")

    def update_item(self, ref: WorkItemRef, fields: dict[str, Any]) -> WorkItemRef:
        """
        Push new content to a work item.

        Abstract keys are translated through the FIELD_MAP entry of the
        item type; keys the type has no field for are ignored.
        """
        operations = self._build_operations(fields, ref.item_type, op="replace", tags=False)
        if not operations:
            return ref

        work_item = self._client.update_work_item(ref.remote_id, operations)
        if not work_item:
            return ref.with_fingerprints(
                remote=fingerprint_remote(
                    fields.get("title"),
                    render_description(
                        fields.get("body", ""), fields.get("acceptance_criteria") or [], ref.item_type
                    ),
                )
            )

        updated = work_item.get("fields", {})
        self.logger.info(f"Updated work item {ref.remote_id}")
        return ref.with_fingerprints(
            remote=fingerprint_remote(updated.get(TITLE_FIELD), updated.get(DESCRIPTION_FIELD))
        )

    # -------------------------------------------------------------------------
    # TrackerProviderPort - Read Operations
    # -------------------------------------------------------------------------

    def get_item(self, ref: WorkItemRef) -> RemoteItem:
        work_item = self._client.get_work_item(ref.remote_id)
        fields = work_item.get("fields", {})
        raw_title = fields.get(TITLE_FIELD) or ""
        raw_description = fields.get(DESCRIPTION_FIELD) or ""

        return RemoteItem(
            ref=ref,
            title=raw_title,
            body=html_to_text(raw_description),
            fields={
                "state": fields.get("System.State"),
                "work_item_type": fields.get("System.WorkItemType"),
                "parent": fields.get("System.Parent"),
            },
            fingerprint=fingerprint_remote(raw_title, raw_description),
        )

    # -------------------------------------------------------------------------
    # Private Methods
    # -------------------------------------------------------------------------

    def _build_operations(
        self,
        values: dict[str, Any],
        item_type: ItemType,
        op: str = "add",
        tags: bool = True,
    ) -> list[dict[str, Any]]:
        allowed: dict[str, str] = FIELD_MAP[item_type]["fields"]
        operations: list[dict[str, Any]] = []

        for key, value in values.items():
            field_name = allowed.get(key)
            if field_name is None:
                continue
            if key == "body":
                value = render_description(value, values.get("acceptance_criteria") or [], item_type)
            elif key == "acceptance_criteria":
                if not value and op == "add":
                    continue
                value = criteria_to_html(list(value or []))
            elif value is None:
                continue
            operations.append({"op": op, "path": f"/fields/{field_name}", "value": value})

        if tags:
            extra_tags = values.get("labels") or []
            tag_values = [TAG_PREFIX, FIELD_MAP[item_type]["type"].replace(" ", ""), *extra_tags]
            operations.append(
                {"op": op, "path": f"/fields/{TAGS_FIELD}", "value": ";".join(tag_values)}
            )

        return operations
