"""Tag work items once they have been moved."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from workitem_migrator.constants import (
    FIELD_TAGS,
    STEP_SOURCE_POST_MOVE_TAG,
    STEP_TARGET_POST_MOVE_TAG,
)
from workitem_migrator.core.pipeline import Processor
from workitem_migrator.types import PatchOperation, WorkItem
from workitem_migrator.utils import work_items
from workitem_migrator.utils.patch import field_operation

if TYPE_CHECKING:
    from workitem_migrator.core.config import MigrationConfig
    from workitem_migrator.core.scheduler import BatchContext
    from workitem_migrator.core.state import MigrationRecord


def tag_operation(item: Optional[WorkItem], tag: str) -> list[PatchOperation]:
    """Operation appending ``tag`` to the item's tags, or nothing if present."""
    existing = work_items.fields(item).get(FIELD_TAGS)
    if tag.lower() in (t.lower() for t in work_items.split_tags(existing)):
        return []
    value = f"{existing}; {tag}" if existing else tag
    return [field_operation(FIELD_TAGS, value)]


class TargetPostMoveTagProcessor(Processor):
    name = STEP_TARGET_POST_MOVE_TAG
    run_order = 50

    @classmethod
    def is_enabled(cls, config: MigrationConfig) -> bool:
        return bool(config.target_post_move_tag)

    def process(
        self, batch: BatchContext, record: MigrationRecord
    ) -> list[PatchOperation]:
        return tag_operation(record.target_item, self.ctx.config.target_post_move_tag)


class SourcePostMoveTagProcessor(Processor):
    """Tags the source work item so later query runs can exclude it."""

    name = STEP_SOURCE_POST_MOVE_TAG
    run_order = 10
    tracked = False

    @classmethod
    def is_enabled(cls, config: MigrationConfig) -> bool:
        return bool(config.source_post_move_tag)

    def process(
        self, batch: BatchContext, record: MigrationRecord
    ) -> list[PatchOperation]:
        return tag_operation(record.source_item, self.ctx.config.source_post_move_tag)
