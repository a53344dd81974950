"""Copy attached files from the source work item to the target."""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Optional

from workitem_migrator.constants import (
    ATTACHMENT_URL_PATTERN,
    RELATION_ATTRIBUTE_COMMENT,
    STEP_ATTACHMENTS,
)
from workitem_migrator.core.pipeline import Processor
from workitem_migrator.types import AttachmentReference, FailureReason, PatchOperation
from workitem_migrator.utils import work_items
from workitem_migrator.utils.logging import log_with_context
from workitem_migrator.utils.patch import attachment_add

if TYPE_CHECKING:
    from workitem_migrator.core.config import MigrationConfig
    from workitem_migrator.core.context import MigrationContext
    from workitem_migrator.core.scheduler import BatchContext
    from workitem_migrator.core.state import MigrationRecord

_ATTACHMENT_ID_RE = re.compile(ATTACHMENT_URL_PATTERN)


def attachment_id_from_url(url: str) -> Optional[str]:
    match = _ATTACHMENT_ID_RE.search(url or "")
    return match.group("guid") if match else None


def download_attachment(
    ctx: MigrationContext, url: str, source_id: int
) -> Optional[bytes]:
    """Download from the source; on failure flag the record and return None."""
    try:
        return ctx.call(
            lambda: ctx.source.get_attachment(url),
            f"download attachment {url}",
            source_id=source_id,
        )
    except Exception as e:
        ctx.store.add_failure(source_id, FailureReason.ATTACHMENT_DOWNLOAD_ERROR)
        log_with_context(
            logging.ERROR,
            f"Failed to download attachment {url} of work item {source_id}: {e}",
            source_id=source_id,
        )
        return None


def upload_attachment(
    ctx: MigrationContext, data: bytes, file_name: str, source_id: int
) -> Optional[AttachmentReference]:
    """Upload to the target; on failure flag the record and return None."""
    chunk_size = ctx.config.attachment_upload_chunk_size
    try:
        return ctx.call(
            lambda: ctx.target.upload_attachment(data, file_name, chunk_size),
            f"upload attachment {file_name}",
            source_id=source_id,
        )
    except Exception as e:
        ctx.store.add_failure(source_id, FailureReason.ATTACHMENT_UPLOAD_ERROR)
        log_with_context(
            logging.ERROR,
            f"Failed to upload attachment {file_name} of work item {source_id}: {e}",
            source_id=source_id,
        )
        return None


class AttachmentsProcessor(Processor):
    """Re-create every source attachment the target does not have yet."""

    name = STEP_ATTACHMENTS
    run_order = 10

    @classmethod
    def is_enabled(cls, config: MigrationConfig) -> bool:
        return config.move_attachments

    def process(
        self, batch: BatchContext, record: MigrationRecord
    ) -> list[PatchOperation]:
        operations: list[PatchOperation] = []
        target = None if record.source_id in batch.cleared else record.target_item

        for _, relation in work_items.attachments(record.source_item):
            name = work_items.attachment_name(relation)
            size = work_items.attachment_size(relation)
            comment = (relation.get("attributes") or {}).get(
                RELATION_ATTRIBUTE_COMMENT, ""
            )

            _, existing = work_items.find_attachment(record.target_item, name, size)
            if existing is not None:
                if target is None:
                    # Relation is being cleared; re-attach the uploaded copy
                    operations.append(
                        attachment_add(existing["url"], name, size, comment)
                    )
                continue

            if size > self.ctx.config.max_attachment_size:
                log_with_context(
                    logging.WARNING,
                    f"Skipping attachment {name} ({size} bytes) of work item "
                    f"{record.source_id}: larger than max_attachment_size",
                    source_id=record.source_id,
                )
                continue

            data = download_attachment(self.ctx, relation["url"], record.source_id)
            if data is None:
                continue
            reference = upload_attachment(self.ctx, data, name, record.source_id)
            if reference is None:
                continue
            operations.append(attachment_add(reference["url"], name, len(data), comment))

        return operations
