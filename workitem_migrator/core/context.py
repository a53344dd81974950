"""Immutable migration context.

MigrationContext is a frozen dataclass holding everything a migration run
shares: configuration, the two service clients, the state store and the
append-only caches used by the link step. The references never change during
a run; the objects behind them are safe for concurrent use.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, TypeVar

from workitem_migrator.core.config import MigrationConfig
from workitem_migrator.core.state import ConcurrentMap, ConcurrentSet, StateStore
from workitem_migrator.services.client import WorkItemClient
from workitem_migrator.utils.api import FailureHook, retry_call

T = TypeVar("T")


@dataclass(frozen=True)
class MigrationContext:
    """Immutable context for a migration run. Created once, shared everywhere."""

    config: MigrationConfig
    source: WorkItemClient
    target: WorkItemClient
    store: StateStore = field(default_factory=StateStore)

    # Source work item id -> target work item id, for every known counterpart
    source_to_target: ConcurrentMap[int, int] = field(default_factory=ConcurrentMap)

    # Link relation types that exist on the target
    link_relation_types: ConcurrentSet[str] = field(default_factory=ConcurrentSet)

    # Reference names of target fields that hold identities
    identity_fields: ConcurrentSet[str] = field(default_factory=ConcurrentSet)

    output_dir: Path | None = None
    verbose: bool = False

    def call(
        self,
        operation: Callable[[], T],
        description: str,
        on_failure: FailureHook | None = None,
        **log_kwargs: Any,
    ) -> T:
        """Run a remote call under the configured retry policy."""
        return retry_call(
            operation,
            on_failure=on_failure,
            description=description,
            **self.config.retry_options,
            **log_kwargs,
        )
