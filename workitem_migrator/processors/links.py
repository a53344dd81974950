"""Re-create work item links between migrated work items."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING

from workitem_migrator.constants import RELATION_ATTRIBUTE_COMMENT, STEP_LINKS
from workitem_migrator.core.pipeline import Processor
from workitem_migrator.core.scheduler import partition
from workitem_migrator.types import PatchOperation
from workitem_migrator.utils import work_items
from workitem_migrator.utils.logging import log_with_context
from workitem_migrator.utils.patch import relation_add

if TYPE_CHECKING:
    from workitem_migrator.core.config import MigrationConfig
    from workitem_migrator.core.scheduler import BatchContext
    from workitem_migrator.core.state import MigrationRecord


class LinksProcessor(Processor):
    """Point each source link at the target counterpart of the linked item."""

    name = STEP_LINKS
    run_order = 40

    @classmethod
    def is_enabled(cls, config: MigrationConfig) -> bool:
        return config.move_links

    def linked_source_ids(self, record: MigrationRecord) -> list[int]:
        ids = []
        for relation in work_items.relations(record.source_item):
            if relation.get("rel") not in self.ctx.link_relation_types:
                continue
            linked_id = work_items.work_item_id_from_url(relation.get("url", ""))
            if linked_id is not None:
                ids.append(linked_id)
        return ids

    def preprocess(self, batch: BatchContext) -> None:
        """Resolve target ids for linked items that are not yet known."""
        unknown = sorted(
            {
                linked_id
                for record in batch.records
                for linked_id in self.linked_source_ids(record)
                if linked_id not in self.ctx.source_to_target
            }
        )
        if not unknown:
            return

        chunks = partition(unknown, self.ctx.config.batch_size)
        with ThreadPoolExecutor(
            max_workers=self.ctx.config.link_parallelism, thread_name_prefix="links"
        ) as executor:
            for resolved in executor.map(self._resolve, chunks):
                for source_id, target_id in resolved.items():
                    self.ctx.source_to_target.add(source_id, target_id)
                    batch.linked_targets[source_id] = target_id

    def _resolve(self, source_ids: list[int]) -> dict[int, int]:
        urls = {self.ctx.source.work_item_url(i): i for i in source_ids}
        result = self.ctx.call(
            lambda: self.ctx.target.query_artifact_uris(list(urls)),
            f"resolve {len(urls)} linked work item(s)",
        )
        resolved = {}
        for url, references in result.items():
            source_id = next(
                (sid for u, sid in urls.items() if work_items.same_url(u, url)), None
            )
            if source_id is None or not references:
                continue
            if len(references) > 1:
                log_with_context(
                    logging.WARNING,
                    f"Linked work item {source_id} has {len(references)} copies on "
                    "the target; its links are skipped",
                    source_id=source_id,
                )
                continue
            resolved[source_id] = references[0]["id"]
        return resolved

    def process(
        self, batch: BatchContext, record: MigrationRecord
    ) -> list[PatchOperation]:
        cleared = record.source_id in batch.cleared
        operations: list[PatchOperation] = []
        for relation in work_items.relations(record.source_item):
            rel = relation.get("rel")
            if rel not in self.ctx.link_relation_types:
                continue
            linked_id = work_items.work_item_id_from_url(relation.get("url", ""))
            if linked_id is None:
                continue
            target_id = batch.linked_targets.get(linked_id) or self.ctx.source_to_target.get(
                linked_id
            )
            if target_id is None:
                log_with_context(
                    logging.DEBUG,
                    f"Skipping {rel} link from {record.source_id} to {linked_id}: "
                    "linked work item has not been migrated",
                    source_id=record.source_id,
                )
                continue

            url = self.ctx.target.work_item_url(target_id)
            if not cleared and work_items.has_relation(record.target_item, rel, url):
                continue
            comment = (relation.get("attributes") or {}).get(RELATION_ATTRIBUTE_COMMENT)
            attributes = {RELATION_ATTRIBUTE_COMMENT: comment} if comment else None
            operations.append(relation_add(rel, url, attributes))
        return operations
