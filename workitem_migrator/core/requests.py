"""
Phase 1 write requests: core fields of created and updated work items.

Source fields are copied after applying the configured mappings,
substitutions, replacements and identity mappings. Project-scoped paths are
moved to the target project and inline images in HTML fields are re-hosted
on the target.
"""

from __future__ import annotations

import logging
import re
from typing import Any

from workitem_migrator.constants import (
    FIELD_AREA_PATH,
    FIELD_HISTORY,
    FIELD_ITERATION_PATH,
    FIELD_TEAM_PROJECT,
    FIELD_WORK_ITEM_TYPE,
    HTML_FIELDS,
    JSON_PATCH_CONTENT_TYPE,
    READ_ONLY_FIELDS,
)
from workitem_migrator.core.context import MigrationContext
from workitem_migrator.core.scheduler import BatchContext
from workitem_migrator.core.state import MigrationRecord, SourceLinkMarker
from workitem_migrator.processors.attachments import (
    attachment_id_from_url,
    download_attachment,
    upload_attachment,
)
from workitem_migrator.types import BatchRequest, MigrationAction, PatchOperation
from workitem_migrator.utils import work_items
from workitem_migrator.utils.logging import log_with_context
from workitem_migrator.utils.patch import (
    field_operation,
    hyperlink_add,
    hyperlink_replace,
    temporary_id_operation,
)

SKIPPED_FIELDS = READ_ONLY_FIELDS | {FIELD_HISTORY}
SKIPPED_FIELD_PREFIXES = ("WEF_",)


def replace_leading_project(path: str, source_project: str, target_project: str) -> str | None:
    """Swap the project segment of an area/iteration path; None if it has none."""
    if not path:
        return None
    head, sep, tail = path.partition("\\")
    if head.lower() != source_project.lower():
        return None
    return f"{target_project}{sep}{tail}" if sep else target_project


class Phase1RequestBuilder:
    """Builds the batched create/update requests for one batch."""

    def __init__(self, ctx: MigrationContext) -> None:
        self.ctx = ctx
        self.config = ctx.config
        account = re.escape(ctx.source.account)
        self._inline_image_re = re.compile(
            account + r"/[^\"'\s<>]*?_apis/wit/attachments/[0-9a-fA-F-]{36}[^\"'\s<>]*",
            re.IGNORECASE,
        )

    # ------------------------------------------------------------------
    # Inline images
    # ------------------------------------------------------------------

    def inline_image_urls(self, record: MigrationRecord) -> set[str]:
        found: set[str] = set()
        for name, value in work_items.fields(record.source_item).items():
            if name in HTML_FIELDS and isinstance(value, str):
                found.update(self._inline_image_re.findall(value))
        return found

    def preprocess(self, batch: BatchContext) -> None:
        """Re-host every inline image referenced by the batch's HTML fields."""
        for record in batch.records:
            for url in sorted(self.inline_image_urls(record)):
                if url in batch.inline_images:
                    continue
                data = download_attachment(self.ctx, url, record.source_id)
                if data is None:
                    continue
                file_name = self._file_name(url)
                reference = upload_attachment(self.ctx, data, file_name, record.source_id)
                if reference is None:
                    continue
                batch.inline_images[url] = self._target_image_url(url, reference["id"])

    @staticmethod
    def _file_name(url: str) -> str:
        match = re.search(r"[?&]fileName=([^&#]+)", url, re.IGNORECASE)
        if match:
            return match.group(1)
        return f"{attachment_id_from_url(url) or 'image'}.png"

    def _target_image_url(self, source_url: str, attachment_id: str) -> str:
        url = source_url.replace(self.ctx.source.account, self.ctx.target.account, 1)
        old_id = attachment_id_from_url(source_url)
        return url.replace(old_id, attachment_id, 1) if old_id else url

    # ------------------------------------------------------------------
    # Fields
    # ------------------------------------------------------------------

    def _target_field(self, name: str, value: Any) -> tuple[str, Any]:
        target_name = name
        for mapping in self.config.field_mappings:
            if mapping.source == name:
                target_name = mapping.target
        for substitution in self.config.field_substitutions:
            if substitution.field == name:
                value = substitution.value
        for replacement in self.config.field_replacements:
            if replacement.field == name and value is not None:
                value = re.sub(replacement.pattern, replacement.replacement, str(value))
        return target_name, value

    def _identity(self, value: Any) -> Any:
        mapped = self.config.identity_map.get(work_items.identity_name(value))
        return value if mapped is None else mapped

    def _project_scoped(self, name: str, value: Any) -> Any:
        source_project = self.ctx.source.project
        target_project = self.ctx.target.project
        if name == FIELD_TEAM_PROJECT:
            return target_project
        default = (
            self.config.default_area_path
            if name == FIELD_AREA_PATH
            else self.config.default_iteration_path
        ) or target_project
        replaced = replace_leading_project(str(value or ""), source_project, target_project)
        if replaced is None:
            log_with_context(
                logging.DEBUG,
                f"{name} '{value}' is not under project {source_project}; using '{default}'",
            )
            return default
        return replaced

    def _html(self, value: str, batch: BatchContext) -> str:
        for source_url, target_url in batch.inline_images.items():
            value = value.replace(source_url, target_url)
        return value

    def field_operations(
        self, batch: BatchContext, record: MigrationRecord, include_type: bool = True
    ) -> list[PatchOperation]:
        values: dict[str, Any] = {}
        mapped: set[str] = set()

        for name, value in work_items.fields(record.source_item).items():
            if name in SKIPPED_FIELDS or name.startswith(SKIPPED_FIELD_PREFIXES):
                continue
            if name == FIELD_WORK_ITEM_TYPE and not include_type:
                continue
            target_name, target_value = self._target_field(name, value)
            if name in self.ctx.identity_fields:
                target_value = self._identity(target_value)
            # A mapped value wins over the source field of the same name
            if target_name in mapped:
                continue
            if target_name != name:
                mapped.add(target_name)
            values[target_name] = target_value

        operations: list[PatchOperation] = []
        for target_name, target_value in values.items():
            if target_name in (FIELD_TEAM_PROJECT, FIELD_AREA_PATH, FIELD_ITERATION_PATH):
                target_value = self._project_scoped(target_name, target_value)
            elif target_name in HTML_FIELDS and isinstance(target_value, str):
                target_value = self._html(target_value, batch)
            operations.append(field_operation(target_name, target_value))
        return operations

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def _marker_comment(self, record: MigrationRecord) -> str:
        return SourceLinkMarker(rev=record.source_rev or 0).to_comment()

    def build(
        self, batch: BatchContext, record: MigrationRecord, temporary_id: int
    ) -> BatchRequest:
        headers = {"Content-Type": JSON_PATCH_CONTENT_TYPE}

        if record.action == MigrationAction.CREATE:
            body = self.field_operations(batch, record)
            body.append(temporary_id_operation(temporary_id))
            body.append(hyperlink_add(record.source_url, self._marker_comment(record)))
            work_item_type = work_items.fields(record.source_item).get(
                FIELD_WORK_ITEM_TYPE, ""
            )
            return {
                "method": "PATCH",
                "uri": self.ctx.target.create_batch_uri(work_item_type),
                "headers": headers,
                "body": body,
            }

        body = self.field_operations(batch, record, include_type=False)
        index, relation = work_items.find_hyperlink(record.target_item, record.source_url)
        if relation is None:
            body.append(hyperlink_add(record.source_url, self._marker_comment(record)))
        else:
            body.append(
                hyperlink_replace(index, record.source_url, self._marker_comment(record))
            )
        return {
            "method": "PATCH",
            "uri": self.ctx.target.update_batch_uri(record.target_id),
            "headers": headers,
            "body": body,
        }

    def build_batch(self, batch: BatchContext) -> list[tuple[int, BatchRequest]]:
        """Requests for every record of ``batch`` that has not failed."""
        requests = []
        temporary_id = -1
        for record in batch.records:
            current = self.ctx.store.get(record.source_id)
            if current is None or current.has_failure:
                log_with_context(
                    logging.WARNING,
                    f"Skipping work item {record.source_id}: failed during preprocessing",
                    source_id=record.source_id,
                )
                continue
            requests.append((record.source_id, self.build(batch, record, temporary_id)))
            temporary_id -= 1
        return requests
