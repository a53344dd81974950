"""Write the back-link marker that lets later runs detect what is done."""

from __future__ import annotations

from typing import TYPE_CHECKING

from workitem_migrator.constants import STEP_SOURCE_LINK
from workitem_migrator.core.pipeline import Processor
from workitem_migrator.core.state import SourceLinkMarker
from workitem_migrator.types import PatchOperation
from workitem_migrator.utils import work_items
from workitem_migrator.utils.patch import hyperlink_add, hyperlink_replace

if TYPE_CHECKING:
    from workitem_migrator.core.scheduler import BatchContext
    from workitem_migrator.core.state import MigrationRecord


class SourceLinkProcessor(Processor):
    """Add or refresh the hyperlink to the source work item.

    Runs last so the marker lists every tracked step of this phase.
    """

    name = STEP_SOURCE_LINK
    run_order = 100
    tracked = False

    def process(
        self, batch: BatchContext, record: MigrationRecord
    ) -> list[PatchOperation]:
        steps = self.pipeline.step_names if self.pipeline is not None else frozenset()
        marker = SourceLinkMarker(rev=record.source_rev or 0, steps=frozenset(steps))
        comment = marker.to_comment()

        index, relation = work_items.find_hyperlink(record.target_item, record.source_url)
        if relation is None:
            return [hyperlink_add(record.source_url, comment)]
        if SourceLinkMarker.from_comment(work_items.relation_comment(relation)) == marker:
            return []
        return [hyperlink_replace(index, record.source_url, comment)]
