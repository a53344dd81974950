"""Remove the target's relations before the other steps re-add them."""

from __future__ import annotations

from typing import TYPE_CHECKING

from workitem_migrator.constants import RELATION_HYPERLINK, STEP_CLEAR_RELATIONS
from workitem_migrator.core.pipeline import Processor
from workitem_migrator.types import PatchOperation
from workitem_migrator.utils import work_items
from workitem_migrator.utils.patch import relation_remove

if TYPE_CHECKING:
    from workitem_migrator.core.config import MigrationConfig
    from workitem_migrator.core.scheduler import BatchContext
    from workitem_migrator.core.state import MigrationRecord


class ClearRelationsProcessor(Processor):
    """Drop every relation except the back-link to the source work item."""

    name = STEP_CLEAR_RELATIONS
    run_order = 0
    tracked = False

    @classmethod
    def is_enabled(cls, config: MigrationConfig) -> bool:
        return config.clear_relations

    def process(
        self, batch: BatchContext, record: MigrationRecord
    ) -> list[PatchOperation]:
        removable = [
            index
            for index, relation in enumerate(work_items.relations(record.target_item))
            if not (
                relation.get("rel") == RELATION_HYPERLINK
                and work_items.same_url(relation.get("url", ""), record.source_url)
            )
        ]
        if not removable:
            return []
        batch.cleared.add(record.source_id)
        return [relation_remove(index) for index in reversed(removable)]
