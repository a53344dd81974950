"""Processor registries for phases 2 and 3, in declaration order."""

from workitem_migrator.processors.attachments import AttachmentsProcessor
from workitem_migrator.processors.clear_relations import ClearRelationsProcessor
from workitem_migrator.processors.comments import CommentsProcessor
from workitem_migrator.processors.history import HistoryProcessor
from workitem_migrator.processors.links import LinksProcessor
from workitem_migrator.processors.post_move_tags import (
    SourcePostMoveTagProcessor,
    TargetPostMoveTagProcessor,
)
from workitem_migrator.processors.source_link import SourceLinkProcessor

PHASE2_PROCESSORS = [
    ClearRelationsProcessor,
    AttachmentsProcessor,
    CommentsProcessor,
    HistoryProcessor,
    LinksProcessor,
    TargetPostMoveTagProcessor,
    SourceLinkProcessor,
]

PHASE3_PROCESSORS = [
    SourcePostMoveTagProcessor,
]
