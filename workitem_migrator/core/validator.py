"""
Pre-migration validation: read the source query and decide what each record needs.

The validator fills the state store. Every work item the configured query
returns becomes a MigrationRecord; the target is then searched for work items
that already link back to each source item, and the back-link marker of any
match decides whether the record is created, updated or left alone.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

from workitem_migrator.constants import (
    FIELD_WATERMARK,
    FIELD_WORK_ITEM_TYPE,
    LINK_RELATION_USAGE,
    QUERY_TYPE_FLAT,
)
from workitem_migrator.core.context import MigrationContext
from workitem_migrator.core.pipeline import enabled_step_names
from workitem_migrator.core.scheduler import BatchContext, for_each_batch
from workitem_migrator.core.state import MigrationRecord, SourceLinkMarker
from workitem_migrator.exceptions import ValidationError
from workitem_migrator.processors import PHASE2_PROCESSORS
from workitem_migrator.services import wiql
from workitem_migrator.types import (
    FailureReason,
    MigrationAction,
    PhaseRequirement,
    WorkItem,
)
from workitem_migrator.utils import work_items
from workitem_migrator.utils.logging import log_success, log_with_context


@dataclass
class ValidationResult:
    """Readiness counts produced by a validation pass."""

    returned: int = 0
    create: int = 0
    update_phase1: int = 0
    update_phase2_only: int = 0
    unchanged: int = 0
    failed: int = 0

    @property
    def to_migrate(self) -> int:
        return self.create + self.update_phase1 + self.update_phase2_only


class Validator:
    """Populates the state store and reports what a migration would do."""

    def __init__(self, ctx: MigrationContext) -> None:
        self.ctx = ctx
        self.config = ctx.config
        self.step_names = enabled_step_names(PHASE2_PROCESSORS, ctx.config)

    def run(self) -> ValidationResult:
        """Validate the query, load the source records and classify them."""
        started = time.monotonic()
        query_text = self.validate_query()
        self.discover_relation_types()
        self.load_source_records(query_text)
        self.validate_target_schema()
        self.identify_migrated_work_items()
        self.log_identities()
        result = self.readiness()
        log_with_context(
            logging.INFO,
            f"Validation completed in {time.monotonic() - started:.1f}s",
        )
        self.log_readiness(result)
        return result

    # ------------------------------------------------------------------
    # Query
    # ------------------------------------------------------------------

    def validate_query(self) -> str:
        """Return the WIQL text of the configured saved query.

        Raises:
            ValidationError: If the query cannot be read or is not flat
        """
        log_with_context(logging.INFO, f"Reading source query '{self.config.query}'")
        try:
            query = self.ctx.call(
                lambda: self.ctx.source.get_query(self.config.query),
                f"get query '{self.config.query}'",
            )
        except Exception as e:
            raise ValidationError(
                f"Unable to read query '{self.config.query}' from the source project: {e}"
            ) from e

        query_type = str(query.get("queryType", "")).lower()
        if query_type != QUERY_TYPE_FLAT:
            raise ValidationError(
                f"Query '{self.config.query}' is a {query_type or 'unknown'} query; "
                "only flat queries are supported"
            )
        text = query.get("wiql")
        if not text:
            raise ValidationError(f"Query '{self.config.query}' has no WIQL text")
        return text

    def discover_relation_types(self) -> None:
        """Record the work item link types the target supports."""
        relation_types = self.ctx.call(
            self.ctx.target.get_relation_types, "get target relation types"
        )
        for relation_type in relation_types:
            usage = (relation_type.get("attributes") or {}).get("usage")
            if usage == LINK_RELATION_USAGE and relation_type.get("referenceName"):
                self.ctx.link_relation_types.add(relation_type["referenceName"])
        log_with_context(
            logging.DEBUG,
            f"Target supports {len(self.ctx.link_relation_types)} link relation type(s)",
        )

    def load_source_records(self, query_text: str) -> int:
        """Page through the query results and add one record per work item.

        Returns:
            Number of records added
        """
        base = wiql.base_query(query_text, self.config.source_post_move_tag)
        # The service returns one more item than requested
        top = self.config.query_page_size - 1
        watermark, last_id = 0, 0
        added = 0
        page = 0

        while True:
            page += 1
            text = wiql.page_query(base, watermark, last_id)
            references = self.ctx.call(
                lambda: self.ctx.source.query_by_wiql(text, top),
                f"query page {page}",
            )
            if not references:
                break

            ids = [reference["id"] for reference in references]
            items = self.ctx.call(
                lambda: self.ctx.source.get_work_items(ids),
                f"read {len(ids)} source work item(s)",
            )
            by_id: dict[int, WorkItem] = {item["id"]: item for item in items}

            for reference in references:
                source_id = reference["id"]
                item = by_id.get(source_id)
                if source_id not in self.ctx.store:
                    self.ctx.store.upsert(
                        MigrationRecord(
                            source_id=source_id,
                            source_url=reference.get("url")
                            or self.ctx.source.work_item_url(source_id),
                            source_item=item,
                        )
                    )
                    added += 1
                last_id = source_id
                if item is not None:
                    watermark = int(work_items.fields(item).get(FIELD_WATERMARK, watermark))

            log_with_context(
                logging.DEBUG,
                f"Query page {page}: {len(references)} work item(s), "
                f"cursor at watermark {watermark} id {last_id}",
            )

        log_with_context(
            logging.INFO, f"Source query returned {added} work item(s)"
        )
        return added

    def validate_target_schema(self) -> None:
        """Exclude records whose work item type the target lacks; warn on fields."""
        types = self.ctx.call(
            self.ctx.target.get_work_item_types, "get target work item types"
        )
        known_types = {str(t.get("name", "")).lower() for t in types}
        fields = self.ctx.call(self.ctx.target.get_fields, "get target fields")
        known_fields = {str(f.get("referenceName", "")).lower() for f in fields}
        self.ctx.identity_fields.update(
            f["referenceName"]
            for f in fields
            if f.get("isIdentity") and f.get("referenceName")
        )
        known_fields.update(m.target.lower() for m in self.config.field_mappings)
        mapped_sources = {m.source.lower() for m in self.config.field_mappings}

        missing_fields: set[str] = set()
        for record in self.ctx.store.snapshot():
            source_fields = work_items.fields(record.source_item)
            work_item_type = str(source_fields.get(FIELD_WORK_ITEM_TYPE, ""))
            if work_item_type.lower() not in known_types:
                log_with_context(
                    logging.ERROR,
                    f"Work item {record.source_id} has type '{work_item_type}', "
                    "which does not exist on the target; it will be skipped",
                    source_id=record.source_id,
                )
                self.ctx.store.add_failure(record.source_id, FailureReason.BAD_REQUEST)
                continue
            missing_fields.update(
                name
                for name in source_fields
                if name.lower() not in known_fields and name.lower() not in mapped_sources
            )

        for name in sorted(missing_fields):
            log_with_context(
                logging.WARNING,
                f"Field '{name}' does not exist on the target; writes of it will fail "
                "unless it is mapped",
            )

    # ------------------------------------------------------------------
    # Identification
    # ------------------------------------------------------------------

    def identify_migrated_work_items(self) -> None:
        """Decide the action of every record from the target's back-links."""
        records = self.ctx.store.snapshot()
        if not records:
            return
        log_with_context(
            logging.INFO, "Querying the target for previously migrated work items"
        )
        for_each_batch(
            records,
            self.config.batch_size,
            self.config.parallelism,
            self._identify_batch,
            description="Identifying",
            on_batch_error=self._on_identify_error,
        )

    def _on_identify_error(self, batch: BatchContext, error: BaseException) -> None:
        for record in batch.records:
            self.ctx.store.add_failure(record.source_id, FailureReason.CRITICAL_ERROR)
            self.ctx.store.set_action(record.source_id, MigrationAction.NONE)

    def _identify_batch(self, batch: BatchContext) -> None:
        urls = [record.source_url for record in batch.records]
        matches = self.ctx.call(
            lambda: self.ctx.target.query_artifact_uris(urls),
            f"find migrated work items for {batch.label}",
            batch_id=batch.batch_id,
        )

        existing: dict[int, int] = {}
        for record in batch.records:
            if record.has_failure:
                continue
            references = _matches_for(matches, record.source_url)
            if len(references) > 1:
                log_with_context(
                    logging.ERROR,
                    f"Work item {record.source_id} is linked from "
                    f"{len(references)} target work items: "
                    f"{', '.join(str(r.get('id')) for r in references)}",
                    source_id=record.source_id,
                )
                self.ctx.store.add_failure(
                    record.source_id, FailureReason.DUPLICATE_TARGET_LINK
                )
                self.ctx.store.set_action(record.source_id, MigrationAction.NONE)
            elif not references:
                if self.config.create_new_work_items:
                    self.ctx.store.set_action(
                        record.source_id,
                        MigrationAction.CREATE,
                        PhaseRequirement.NEEDS_PHASE1_UPDATE
                        | PhaseRequirement.NEEDS_PHASE2_UPDATE,
                    )
                else:
                    self.ctx.store.set_action(record.source_id, MigrationAction.NONE)
            else:
                existing[references[0]["id"]] = record.source_id

        if not existing:
            return

        targets = self.ctx.call(
            lambda: self.ctx.target.get_work_items(list(existing)),
            f"read {len(existing)} target work item(s) for {batch.label}",
            batch_id=batch.batch_id,
        )
        for target in targets:
            source_id = existing.get(target.get("id"))
            if source_id is not None:
                self._classify_existing(source_id, target)

    def _classify_existing(self, source_id: int, target: WorkItem) -> None:
        store = self.ctx.store
        record = store.get(source_id)
        store.resolve_target(source_id, target["id"], target.get("url"), target)
        self.ctx.source_to_target.add(source_id, target["id"])

        _, hyperlink = work_items.find_hyperlink(target, record.source_url)
        marker = SourceLinkMarker.from_comment(work_items.relation_comment(hyperlink))
        store.set_marker(source_id, marker)

        both = PhaseRequirement.NEEDS_PHASE1_UPDATE | PhaseRequirement.NEEDS_PHASE2_UPDATE
        if self.config.overwrite_existing_work_items:
            store.set_action(source_id, MigrationAction.UPDATE, both)
        elif self.config.update_modified_work_items and marker.rev != record.source_rev:
            log_with_context(
                logging.DEBUG,
                f"Work item {source_id} changed since it was migrated "
                f"(rev {marker.rev} -> {record.source_rev})",
                source_id=source_id,
            )
            store.set_action(source_id, MigrationAction.UPDATE, both)
        elif not marker.covers(self.step_names):
            store.set_action(
                source_id, MigrationAction.UPDATE, PhaseRequirement.NEEDS_PHASE2_UPDATE
            )
        else:
            store.set_action(source_id, MigrationAction.NONE)

    def log_identities(self) -> set[str]:
        """Log each distinct identity the records to migrate carry, with its mapping."""
        identity_map = self.config.identity_map
        found: set[str] = set()
        for record in self.ctx.store.snapshot():
            if record.has_failure or record.action == MigrationAction.NONE:
                continue
            for name, value in work_items.fields(record.source_item).items():
                if name in self.ctx.identity_fields:
                    found.add(work_items.identity_name(value))
        found.discard("")

        for identity in sorted(found):
            message = f"Discovered source identity: '{identity}'"
            if identity in identity_map:
                message += f", mapped to '{identity_map[identity]}'"
            log_with_context(logging.DEBUG, message)
        return found

    # ------------------------------------------------------------------
    # Readiness
    # ------------------------------------------------------------------

    def readiness(self) -> ValidationResult:
        store = self.ctx.store
        result = ValidationResult()
        result.returned = len(store)
        result.failed = len(store.failed())
        result.create = sum(
            1 for r in store.by_action(MigrationAction.CREATE) if not r.has_failure
        )
        for record in store.by_action(MigrationAction.UPDATE):
            if record.has_failure:
                continue
            if PhaseRequirement.NEEDS_PHASE1_UPDATE in record.requirement:
                result.update_phase1 += 1
            else:
                result.update_phase2_only += 1
        result.unchanged = sum(
            1 for r in store.by_action(MigrationAction.NONE) if not r.has_failure
        )
        return result

    def log_readiness(self, result: ValidationResult) -> None:
        log_with_context(logging.INFO, "")
        log_with_context(logging.INFO, "VALIDATION SUMMARY:")
        log_with_context(logging.INFO, f"  Work items returned by query: {result.returned}")
        log_with_context(logging.INFO, f"  Work items to create:         {result.create}")
        log_with_context(
            logging.INFO, f"  Work items to update:         {result.update_phase1}"
        )
        log_with_context(
            logging.INFO,
            f"  Work items needing phase 2:   {result.update_phase2_only}",
        )
        log_with_context(logging.INFO, f"  Work items unchanged:         {result.unchanged}")
        log_with_context(logging.INFO, f"  Work items failed:            {result.failed}")
        if result.failed:
            log_with_context(
                logging.WARNING,
                f"{result.failed} work item(s) cannot be migrated; see the log for details",
            )
        else:
            log_success(f"Validation passed: {result.to_migrate} work item(s) to migrate")


def _matches_for(matches: dict, url: str) -> list:
    for key, references in matches.items():
        if work_items.same_url(key, url):
            return references or []
    return []
