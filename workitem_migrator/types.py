"""Shared type definitions for the work item migration tool.

Provides the flag sets that track per-record migration state, TypedDicts for
the JSON shapes exchanged with the remote work item service, and the summary
types produced at the end of a run.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, Flag, auto
from typing import Any, TypedDict

# ---------------------------------------------------------------------------
# Per-record state flags
# ---------------------------------------------------------------------------


class MigrationAction(str, Enum):
    """What the run intends to do with a source record."""

    NONE = "none"
    CREATE = "create"
    UPDATE = "update"


class FailureReason(Flag):
    """Independent causes of a record failing; several may be set at once."""

    NONE = 0
    BAD_REQUEST = auto()
    UNEXPECTED_ERROR = auto()
    CRITICAL_ERROR = auto()
    ATTACHMENT_DOWNLOAD_ERROR = auto()
    ATTACHMENT_UPLOAD_ERROR = auto()
    DUPLICATE_TARGET_LINK = auto()


class PhaseRequirement(Flag):
    """Rework needed for a record that already exists on the target."""

    NONE = 0
    NEEDS_PHASE1_UPDATE = auto()
    NEEDS_PHASE2_UPDATE = auto()


class PhaseCompletion(Flag):
    """Phases a record has finished in the current run."""

    NONE = 0
    PHASE1 = auto()
    PHASE2 = auto()
    PHASE3 = auto()


def flag_names(value: Flag) -> list[str]:
    """Return the names of the single members contained in ``value``."""
    return [
        member.name
        for member in type(value)
        if member.value and member.name and member in value
    ]


class FaultClass(str, Enum):
    """Classification of an error raised by a remote call."""

    TRANSIENT = "transient"
    PERMANENT = "permanent"
    UNKNOWN = "unknown"


# ---------------------------------------------------------------------------
# Remote work item service shapes
# ---------------------------------------------------------------------------


class WorkItemRelation(TypedDict, total=False):
    """A relation entry on a work item (link, hyperlink, attachment)."""

    rel: str
    url: str
    attributes: dict[str, Any]


class WorkItem(TypedDict, total=False):
    """A work item as returned by the service with ``$expand=all``."""

    id: int
    rev: int
    url: str
    fields: dict[str, Any]
    relations: list[WorkItemRelation]


class WorkItemReference(TypedDict, total=False):
    """A lightweight reference returned by queries."""

    id: int
    url: str


class PatchOperation(TypedDict, total=False):
    """One JSON Patch operation against a work item."""

    op: str
    path: str
    value: Any


class BatchRequest(TypedDict):
    """One entry of a batched write call."""

    method: str
    uri: str
    headers: dict[str, str]
    body: list[PatchOperation]


class BatchResponse(TypedDict, total=False):
    """One entry of a batched write response."""

    code: int
    headers: dict[str, str]
    body: str


class Comment(TypedDict, total=False):
    """A work item discussion comment."""

    id: int
    text: str
    createdBy: dict[str, Any]
    createdDate: str


class AttachmentReference(TypedDict, total=False):
    """The reference returned after uploading an attachment."""

    id: str
    url: str


# ---------------------------------------------------------------------------
# Run summary
# ---------------------------------------------------------------------------


@dataclass
class LedgerEntry:
    """One line of the per-record audit ledger."""

    source_id: int
    target_id: int | None
    action: str
    failure_reasons: list[str] = field(default_factory=list)
    phases_completed: list[str] = field(default_factory=list)


@dataclass
class MigrationSummary:
    """Counts and ledger aggregated at the end of a run."""

    total: int = 0
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    failed: int = 0
    failures_by_reason: dict[str, int] = field(default_factory=dict)
    ledger: list[LedgerEntry] = field(default_factory=list)

    @property
    def has_failures(self) -> bool:
        """True when at least one record failed."""
        return self.failed > 0
