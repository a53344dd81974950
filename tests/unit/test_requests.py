"""Unit tests for phase 1 request generation."""

from tests.unit.conftest import (
    BOTH_PHASES,
    SOURCE_ACCOUNT,
    TARGET_ACCOUNT,
    make_batch,
    make_ctx,
    make_record,
    make_work_item,
)
from workitem_migrator.core.config import (
    FieldMapping,
    FieldReplacement,
    FieldSubstitution,
    IdentityMapping,
)
from workitem_migrator.core.requests import Phase1RequestBuilder, replace_leading_project
from workitem_migrator.exceptions import RemoteServiceError
from workitem_migrator.types import FailureReason, MigrationAction

IMAGE_GUID = "aaaaaaaa-bbbb-cccc-dddd-eeeeeeeeeeee"
IMAGE_URL = f"{SOURCE_ACCOUNT}/_apis/wit/attachments/{IMAGE_GUID}?fileName=shot.png"

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _fields(operations):
    return {
        op["path"][len("/fields/") :]: op["value"]
        for op in operations
        if op["path"].startswith("/fields/")
    }


def _builder(record=None, **config):
    records = [record] if record is not None else []
    ctx = make_ctx(records=records, **config)
    return ctx, Phase1RequestBuilder(ctx)


# ---------------------------------------------------------------------------
# replace_leading_project
# ---------------------------------------------------------------------------


class TestReplaceLeadingProject:
    def test_nested_path(self):
        assert replace_leading_project("Src\\Team\\Sub", "src", "Dst") == "Dst\\Team\\Sub"

    def test_root_path(self):
        assert replace_leading_project("Src", "Src", "Dst") == "Dst"

    def test_other_project(self):
        assert replace_leading_project("Other\\Team", "Src", "Dst") is None

    def test_empty(self):
        assert replace_leading_project("", "Src", "Dst") is None


# ---------------------------------------------------------------------------
# Field operations
# ---------------------------------------------------------------------------


class TestFieldOperations:
    def test_read_only_fields_are_skipped(self):
        record = make_record(1, source_item=make_work_item(1, **{"WEF_1234_Kanban.Column": "x"}))
        ctx, builder = _builder(record)

        values = _fields(builder.field_operations(make_batch([record]), record))

        assert "System.Id" not in values
        assert "System.Rev" not in values
        assert "System.Watermark" not in values
        assert "WEF_1234_Kanban.Column" not in values
        assert values["System.Title"] == "A bug"
        assert values["System.WorkItemType"] == "Bug"

    def test_project_scoped_fields_move_to_target(self):
        record = make_record(1)
        ctx, builder = _builder(record)

        values = _fields(builder.field_operations(make_batch([record]), record))

        assert values["System.TeamProject"] == "TargetProject"
        assert values["System.AreaPath"] == "TargetProject\\Team A"
        assert values["System.IterationPath"] == "TargetProject"

    def test_foreign_paths_fall_back_to_defaults(self):
        item = make_work_item(1, **{"System.AreaPath": "Elsewhere\\Team"})
        record = make_record(1, source_item=item)
        ctx, builder = _builder(record, default_area_path="TargetProject\\Imported")

        values = _fields(builder.field_operations(make_batch([record]), record))

        assert values["System.AreaPath"] == "TargetProject\\Imported"

    def test_type_omitted_for_updates(self):
        record = make_record(1)
        ctx, builder = _builder(record)
        values = _fields(
            builder.field_operations(make_batch([record]), record, include_type=False)
        )
        assert "System.WorkItemType" not in values

    def test_mapping_substitution_and_replacement(self):
        item = make_work_item(
            1,
            **{
                "Custom.Severity": "1 - Critical",
                "Microsoft.VSTS.Common.Severity": "3 - Medium",
                "Custom.Owner": "alice",
                "Custom.Notes": "see ticket OLD-42",
            },
        )
        record = make_record(1, source_item=item)
        ctx, builder = _builder(
            record,
            field_mappings=[
                FieldMapping(source="Custom.Severity", target="Microsoft.VSTS.Common.Severity")
            ],
            field_substitutions=[FieldSubstitution(field="Custom.Owner", value="migration")],
            field_replacements=[
                FieldReplacement(field="Custom.Notes", pattern=r"OLD-(\d+)", replacement=r"NEW-\1")
            ],
        )

        values = _fields(builder.field_operations(make_batch([record]), record))

        assert values["Microsoft.VSTS.Common.Severity"] == "1 - Critical"
        assert "Custom.Severity" not in values
        assert values["Custom.Owner"] == "migration"
        assert values["Custom.Notes"] == "see ticket NEW-42"

    def test_identity_fields_are_mapped(self):
        item = make_work_item(
            1,
            **{
                "System.AssignedTo": {
                    "displayName": "Alice",
                    "uniqueName": "alice@source.example",
                },
                "System.CreatedBy": "Bob <bob@source.example>",
                "Custom.Reviewer": "carol@source.example",
                "Custom.Contact": "alice@source.example",
            },
        )
        record = make_record(1, source_item=item)
        ctx, builder = _builder(
            record,
            identity_mappings=[
                IdentityMapping(source="alice@source.example", target="alice@target.example"),
                IdentityMapping(source="Bob <bob@source.example>", target="bob@target.example"),
            ],
        )
        ctx.identity_fields.update(["System.AssignedTo", "System.CreatedBy", "Custom.Reviewer"])

        values = _fields(builder.field_operations(make_batch([record]), record))

        assert values["System.AssignedTo"] == "alice@target.example"
        assert values["System.CreatedBy"] == "bob@target.example"
        # Unmapped identities and non-identity fields keep their value
        assert values["Custom.Reviewer"] == "carol@source.example"
        assert values["Custom.Contact"] == "alice@source.example"


# ---------------------------------------------------------------------------
# Inline images
# ---------------------------------------------------------------------------


class TestInlineImages:
    def _record(self):
        item = make_work_item(
            1, **{"System.Description": f'<p>Screenshot: <img src="{IMAGE_URL}"></p>'}
        )
        return make_record(1, MigrationAction.CREATE, BOTH_PHASES, source_item=item)

    def test_finds_source_images(self):
        record = self._record()
        ctx, builder = _builder(record)
        assert builder.inline_image_urls(record) == {IMAGE_URL}

    def test_images_are_rehosted_and_rewritten(self):
        record = self._record()
        ctx, builder = _builder(record)
        ctx.source.get_attachment.return_value = b"png"
        ctx.target.upload_attachment.return_value = {
            "id": "11111111-2222-3333-4444-555555555555",
            "url": f"{TARGET_ACCOUNT}/_apis/wit/attachments/11111111-2222-3333-4444-555555555555",
        }
        batch = make_batch([record])

        builder.preprocess(batch)
        values = _fields(builder.field_operations(batch, record))

        ctx.target.upload_attachment.assert_called_once_with(
            b"png", "shot.png", ctx.config.attachment_upload_chunk_size
        )
        expected = (
            f"{TARGET_ACCOUNT}/_apis/wit/attachments/"
            "11111111-2222-3333-4444-555555555555?fileName=shot.png"
        )
        assert batch.inline_images == {IMAGE_URL: expected}
        assert expected in values["System.Description"]
        assert SOURCE_ACCOUNT not in values["System.Description"]

    def test_download_failure_excludes_record(self):
        record = self._record()
        ctx, builder = _builder(record)
        ctx.source.get_attachment.side_effect = RemoteServiceError("404", status_code=404)
        batch = make_batch([record])

        builder.preprocess(batch)

        assert ctx.store.get(1).failure_reason == FailureReason.ATTACHMENT_DOWNLOAD_ERROR
        assert builder.build_batch(batch) == []


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class TestBuildBatch:
    def test_temporary_ids_are_unique_and_negative(self):
        records = [
            make_record(i, MigrationAction.CREATE, BOTH_PHASES) for i in (1, 2, 3)
        ]
        ctx, builder = _builder()
        for record in records:
            ctx.store.upsert(record)
        ctx.store.add_failure(2, FailureReason.BAD_REQUEST)

        requests = builder.build_batch(make_batch(records))

        assert [source_id for source_id, _ in requests] == [1, 3]
        temporary_ids = [
            op["value"] for _, request in requests for op in request["body"] if op["path"] == "/id"
        ]
        assert temporary_ids == [-1, -2]
        assert all(r["method"] == "PATCH" for _, r in requests)
        assert all(
            r["headers"] == {"Content-Type": "application/json-patch+json"}
            for _, r in requests
        )

    def test_update_without_back_link_adds_one(self):
        record = make_record(
            1,
            MigrationAction.UPDATE,
            BOTH_PHASES,
            target_id=101,
            target_item=make_work_item(101, account=TARGET_ACCOUNT),
        )
        ctx, builder = _builder(record)

        request = builder.build(make_batch([record]), record, -1)

        assert request["body"][-1]["op"] == "add"
        assert request["body"][-1]["path"] == "/relations/-"
        assert not any(op["path"] == "/id" for op in request["body"])
