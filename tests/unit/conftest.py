"""Unit test configuration and shared fixtures."""

from __future__ import annotations

from typing import Any
from unittest.mock import MagicMock

import pytest

from workitem_migrator.core.config import ConnectionConfig, MigrationConfig
from workitem_migrator.core.context import MigrationContext
from workitem_migrator.core.scheduler import BatchContext
from workitem_migrator.core.state import MigrationRecord, SourceLinkMarker, StateStore
from workitem_migrator.types import MigrationAction, PhaseRequirement

SOURCE_ACCOUNT = "https://dev.example.com/source-org"
TARGET_ACCOUNT = "https://dev.example.com/target-org"

BOTH_PHASES = PhaseRequirement.NEEDS_PHASE1_UPDATE | PhaseRequirement.NEEDS_PHASE2_UPDATE

# ---------------------------------------------------------------------------
# Data builders
# ---------------------------------------------------------------------------


def source_url(source_id: int) -> str:
    return f"{SOURCE_ACCOUNT}/_apis/wit/workItems/{source_id}"


def target_url(target_id: int) -> str:
    return f"{TARGET_ACCOUNT}/_apis/wit/workItems/{target_id}"


def make_work_item(
    item_id: int,
    rev: int = 1,
    work_item_type: str = "Bug",
    title: str = "A bug",
    account: str = SOURCE_ACCOUNT,
    relations: list[dict[str, Any]] | None = None,
    **fields: Any,
) -> dict[str, Any]:
    """Build a dict resembling a work item read with ``$expand=all``."""
    item: dict[str, Any] = {
        "id": item_id,
        "rev": rev,
        "url": f"{account}/_apis/wit/workItems/{item_id}",
        "fields": {
            "System.Id": item_id,
            "System.Rev": rev,
            "System.WorkItemType": work_item_type,
            "System.Title": title,
            "System.TeamProject": "SourceProject",
            "System.AreaPath": "SourceProject\\Team A",
            "System.IterationPath": "SourceProject",
            "System.Watermark": item_id * 10,
            **fields,
        },
        "relations": relations or [],
    }
    return item


def make_hyperlink(url: str, comment: str) -> dict[str, Any]:
    return {"rel": "Hyperlink", "url": url, "attributes": {"comment": comment}}


def make_attachment_relation(
    name: str, size: int, url: str | None = None, comment: str = ""
) -> dict[str, Any]:
    attributes: dict[str, Any] = {"name": name, "resourceSize": size}
    if comment:
        attributes["comment"] = comment
    return {
        "rel": "AttachedFile",
        "url": url
        or f"{SOURCE_ACCOUNT}/_apis/wit/attachments/0f0e0d0c-0b0a-0908-0706-050403020100",
        "attributes": attributes,
    }


def make_target_item(
    target_id: int,
    source_id: int,
    marker: SourceLinkMarker | None = None,
    relations: list[dict[str, Any]] | None = None,
    **fields: Any,
) -> dict[str, Any]:
    """Build a target work item that links back to ``source_id``."""
    comment = (marker or SourceLinkMarker(rev=1)).to_comment()
    return make_work_item(
        target_id,
        account=TARGET_ACCOUNT,
        relations=[make_hyperlink(source_url(source_id), comment), *(relations or [])],
        **fields,
    )


def make_record(
    source_id: int,
    action: MigrationAction = MigrationAction.NONE,
    requirement: PhaseRequirement = PhaseRequirement.NONE,
    target_id: int | None = None,
    source_item: dict[str, Any] | None = None,
    target_item: dict[str, Any] | None = None,
    **overrides: Any,
) -> MigrationRecord:
    record = MigrationRecord(
        source_id=source_id,
        source_url=source_url(source_id),
        action=action,
        requirement=requirement,
        target_id=target_id,
        target_url=target_url(target_id) if target_id is not None else None,
        source_item=source_item if source_item is not None else make_work_item(source_id),
        target_item=target_item,
    )
    for key, value in overrides.items():
        setattr(record, key, value)
    return record


def make_batch(records: list[MigrationRecord], batch_id: int = 1) -> BatchContext:
    return BatchContext(batch_id=batch_id, total_batches=1, records=records)


# ---------------------------------------------------------------------------
# Config, clients and context
# ---------------------------------------------------------------------------


def make_config(**overrides: Any) -> MigrationConfig:
    """A valid config whose retries are a single attempt unless overridden."""
    values: dict[str, Any] = {
        "source_connection": ConnectionConfig(
            account=SOURCE_ACCOUNT, project="SourceProject", access_token="src-token"
        ),
        "target_connection": ConnectionConfig(
            account=TARGET_ACCOUNT, project="TargetProject", access_token="tgt-token"
        ),
        "query": "Shared Queries/Migrate",
        "batch_size": 10,
        "max_retries": 1,
        "retry_delay": 0.0,
        "heartbeat_frequency_in_seconds": 0,
    }
    values.update(overrides)
    return MigrationConfig(**values)


def make_client(account: str, project: str) -> MagicMock:
    """A MagicMock standing in for WorkItemClient with working URL helpers."""
    client = MagicMock()
    client.account = account
    client.project = project
    client.work_item_url.side_effect = lambda i: f"{account}/_apis/wit/workItems/{i}"
    client.update_batch_uri.side_effect = (
        lambda i: f"/_apis/wit/workItems/{i}?api-version=5.0"
    )
    client.create_batch_uri.side_effect = (
        lambda t: f"/{project}/_apis/wit/workItems/${t}?api-version=5.0"
    )
    client.query_artifact_uris.return_value = {}
    client.get_comments.return_value = []
    client.get_updates.return_value = []
    return client


def make_ctx(
    config: MigrationConfig | None = None,
    records: list[MigrationRecord] | None = None,
    **config_overrides: Any,
) -> MigrationContext:
    return MigrationContext(
        config=config or make_config(**config_overrides),
        source=make_client(SOURCE_ACCOUNT, "SourceProject"),
        target=make_client(TARGET_ACCOUNT, "TargetProject"),
        store=StateStore(records or []),
    )


@pytest.fixture()
def ctx() -> MigrationContext:
    """Context with default config, mock clients and an empty store."""
    return make_ctx()


@pytest.fixture(autouse=True)
def _no_retry_sleep(monkeypatch):
    """Keep retry back-off instant in every unit test."""
    monkeypatch.setattr("workitem_migrator.utils.api.time.sleep", lambda _: None)
