"""
Ordered, independently enabled processing steps.

Each phase has a static registry: a list of ``Processor`` subclasses. A
pipeline instantiates the enabled ones sorted by ``run_order`` (ties keep the
registry order), runs ``preprocess`` once per batch and ``process`` once per
record, and concatenates the patch operations every step returns.

Steps must be safe to run again on a record that was partially migrated.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, ClassVar, Iterable, Sequence

from workitem_migrator.types import PatchOperation

if TYPE_CHECKING:
    from workitem_migrator.core.config import MigrationConfig
    from workitem_migrator.core.context import MigrationContext
    from workitem_migrator.core.scheduler import BatchContext
    from workitem_migrator.core.state import MigrationRecord


class Processor:
    """Base class for a pipeline step."""

    name: ClassVar[str] = ""
    run_order: ClassVar[int] = 50
    # Tracked steps are recorded in the back-link marker once they complete
    tracked: ClassVar[bool] = True

    def __init__(self, ctx: MigrationContext, pipeline: Pipeline | None = None) -> None:
        self.ctx = ctx
        self.pipeline = pipeline

    @classmethod
    def is_enabled(cls, config: MigrationConfig) -> bool:
        return True

    def preprocess(self, batch: BatchContext) -> None:
        """Prepare shared data for every record of ``batch``."""

    def process(
        self, batch: BatchContext, record: MigrationRecord
    ) -> list[PatchOperation]:
        raise NotImplementedError


def ordered(registry: Sequence[type[Processor]]) -> list[type[Processor]]:
    """Registry sorted by run order, ties broken by declaration order."""
    return [
        processor
        for _, processor in sorted(
            enumerate(registry), key=lambda entry: (entry[1].run_order, entry[0])
        )
    ]


def enabled_step_names(
    registry: Iterable[type[Processor]], config: MigrationConfig
) -> frozenset[str]:
    """Names of the tracked steps that ``config`` enables."""
    return frozenset(
        processor.name
        for processor in registry
        if processor.tracked and processor.is_enabled(config)
    )


class Pipeline:
    """The enabled processors of one phase, in run order."""

    def __init__(
        self, processors: list[Processor], step_names: frozenset[str] = frozenset()
    ) -> None:
        self.processors = processors
        self.step_names = step_names

    @classmethod
    def build(
        cls, registry: Sequence[type[Processor]], ctx: MigrationContext
    ) -> Pipeline:
        pipeline = cls([], enabled_step_names(registry, ctx.config))
        pipeline.processors = [
            processor(ctx, pipeline)
            for processor in ordered(registry)
            if processor.is_enabled(ctx.config)
        ]
        return pipeline

    @property
    def names(self) -> list[str]:
        return [processor.name for processor in self.processors]

    def __len__(self) -> int:
        return len(self.processors)

    def preprocess(self, batch: BatchContext) -> None:
        for processor in self.processors:
            processor.preprocess(batch)

    def process(
        self, batch: BatchContext, record: MigrationRecord
    ) -> list[PatchOperation]:
        operations: list[PatchOperation] = []
        for processor in self.processors:
            operations.extend(processor.process(batch, record))
        return operations
