"""Copy discussion comments to the target."""

from __future__ import annotations

from typing import TYPE_CHECKING

from workitem_migrator.constants import STEP_COMMENTS
from workitem_migrator.core.pipeline import Processor
from workitem_migrator.types import PatchOperation
from workitem_migrator.utils.patch import comment_add

if TYPE_CHECKING:
    from workitem_migrator.core.config import MigrationConfig
    from workitem_migrator.core.scheduler import BatchContext
    from workitem_migrator.core.state import MigrationRecord


class CommentsProcessor(Processor):
    """Add each source comment whose text the target does not already carry."""

    name = STEP_COMMENTS
    run_order = 20

    @classmethod
    def is_enabled(cls, config: MigrationConfig) -> bool:
        return config.move_comments

    def process(
        self, batch: BatchContext, record: MigrationRecord
    ) -> list[PatchOperation]:
        source_comments = self.ctx.call(
            lambda: self.ctx.source.get_comments(record.source_id),
            f"read comments of {record.source_id}",
            source_id=record.source_id,
        )
        if not source_comments:
            return []

        existing = {
            comment.get("text")
            for comment in self.ctx.call(
                lambda: self.ctx.target.get_comments(record.target_id),
                f"read comments of target {record.target_id}",
                source_id=record.source_id,
            )
        }
        ordered = sorted(source_comments, key=lambda c: c.get("id", 0))
        return [
            comment_add(comment["text"])
            for comment in ordered
            if comment.get("text") and comment["text"] not in existing
        ]
