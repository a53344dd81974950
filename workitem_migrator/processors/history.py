"""Attach the source work item's revision history to the target as a file."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from workitem_migrator.constants import STEP_HISTORY, UPDATES_PAGE_SIZE
from workitem_migrator.core.pipeline import Processor
from workitem_migrator.processors.attachments import upload_attachment
from workitem_migrator.types import PatchOperation
from workitem_migrator.utils import work_items
from workitem_migrator.utils.logging import log_with_context
from workitem_migrator.utils.patch import attachment_add, relation_remove

if TYPE_CHECKING:
    from workitem_migrator.core.config import MigrationConfig
    from workitem_migrator.core.scheduler import BatchContext
    from workitem_migrator.core.state import MigrationRecord

HISTORY_COMMENT = "Source work item history"


def history_file_name(source_id: int, fmt: str) -> str:
    return f"{source_id}_history.{fmt}"


def render_history(updates: list[dict[str, Any]], fmt: str) -> bytes:
    """Serialize updates as pretty JSON or a plain-text change log."""
    if fmt == "json":
        return json.dumps(updates, indent=2, default=str).encode("utf-8")

    lines = []
    for update in updates:
        revised_by = (update.get("revisedBy") or {}).get("displayName", "unknown")
        lines.append(
            f"Rev {update.get('rev', '?')} by {revised_by} on {update.get('revisedDate', '')}"
        )
        for name, change in sorted((update.get("fields") or {}).items()):
            old = change.get("oldValue", "") if isinstance(change, dict) else ""
            new = change.get("newValue", "") if isinstance(change, dict) else change
            lines.append(f"    {name}: {old} -> {new}")
        for relation in (update.get("relations") or {}).get("added", []):
            lines.append(f"    + {relation.get('rel')} {relation.get('url')}")
        for relation in (update.get("relations") or {}).get("removed", []):
            lines.append(f"    - {relation.get('rel')} {relation.get('url')}")
        lines.append("")
    return "\n".join(lines).encode("utf-8")


class HistoryProcessor(Processor):
    """Upload up to ``move_history_limit`` updates as one attachment."""

    name = STEP_HISTORY
    run_order = 30

    @classmethod
    def is_enabled(cls, config: MigrationConfig) -> bool:
        return config.move_history

    def fetch_updates(self, source_id: int) -> list[dict[str, Any]]:
        limit = self.ctx.config.move_history_limit
        updates: list[dict[str, Any]] = []
        while len(updates) < limit:
            top = min(UPDATES_PAGE_SIZE, limit - len(updates))
            skip = len(updates)
            page = self.ctx.call(
                lambda: self.ctx.source.get_updates(source_id, top=top, skip=skip),
                f"read updates of {source_id}",
                source_id=source_id,
            )
            if not page:
                break
            updates.extend(page)
            if len(page) < top:
                break
        return updates[:limit]

    def process(
        self, batch: BatchContext, record: MigrationRecord
    ) -> list[PatchOperation]:
        fmt = self.ctx.config.history_attachment_format
        updates = self.fetch_updates(record.source_id)
        if not updates:
            return []

        content = render_history(updates, fmt)
        file_name = history_file_name(record.source_id, fmt)
        cleared = record.source_id in batch.cleared

        operations: list[PatchOperation] = []
        index, existing = work_items.find_attachment(record.target_item, file_name)
        if existing is not None:
            if work_items.attachment_size(existing) == len(content):
                if cleared:
                    operations.append(
                        attachment_add(
                            existing["url"], file_name, len(content), HISTORY_COMMENT
                        )
                    )
                return operations
            if not cleared:
                operations.append(relation_remove(index))
            log_with_context(
                logging.DEBUG,
                f"Replacing history attachment of work item {record.source_id}",
                source_id=record.source_id,
            )

        reference = upload_attachment(self.ctx, content, file_name, record.source_id)
        if reference is None:
            return []
        operations.append(
            attachment_add(reference["url"], file_name, len(content), HISTORY_COMMENT)
        )
        return operations
