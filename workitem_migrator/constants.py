"""Constants shared across the work item migration tool."""

# HTTP status codes
HTTP_OK = 200
HTTP_BAD_REQUEST = 400
HTTP_UNAUTHORIZED = 401
HTTP_FORBIDDEN = 403
HTTP_RATE_LIMIT = 429
HTTP_SERVER_ERROR_MIN = 500

# REST API
API_VERSION = "5.0"
BATCH_API_VERSION = "5.0"
WRITE_QUERY_STRING = "bypassRules=true&suppressNotifications=true"
JSON_PATCH_CONTENT_TYPE = "application/json-patch+json"
MAX_WORK_ITEMS_PER_READ = 200
MAX_BATCH_SIZE = 200
UPDATES_PAGE_SIZE = 200

# Vendor error codes the service is expected to recover from on its own
TRANSIENT_ERROR_CODES = frozenset(
    {
        "VS402335",  # too many concurrent requests
        "VS402490",  # request rate limit exceeded
        "VS402491",  # resource usage quota exceeded
        "TF400733",  # request cancelled / server busy
    }
)
VENDOR_ERROR_CODE_PATTERN = r"\b(?:TF|VS)\d{6}\b"

# Retry defaults
DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_RETRY_DELAY = 1.0
DEFAULT_RETRY_DELAY_INCREMENT = 1.0
UNKNOWN_FAULT_MAX_ATTEMPTS = 3

# Field reference names
FIELD_ID = "System.Id"
FIELD_REV = "System.Rev"
FIELD_WATERMARK = "System.Watermark"
FIELD_TEAM_PROJECT = "System.TeamProject"
FIELD_AREA_PATH = "System.AreaPath"
FIELD_ITERATION_PATH = "System.IterationPath"
FIELD_WORK_ITEM_TYPE = "System.WorkItemType"
FIELD_TAGS = "System.Tags"
FIELD_HISTORY = "System.History"

# Fields the service computes or refuses on write
READ_ONLY_FIELDS = frozenset(
    {
        FIELD_ID,
        FIELD_REV,
        FIELD_WATERMARK,
        "System.AreaId",
        "System.IterationId",
        "System.NodeName",
        "System.AuthorizedAs",
        "System.AuthorizedDate",
        "System.RevisedDate",
        "System.PersonId",
        "System.CommentCount",
        "System.BoardColumn",
        "System.BoardColumnDone",
        "System.BoardLane",
        "System.AreaLevel1",
        "System.IterationLevel1",
        "System.ExternalLinkCount",
        "System.HyperLinkCount",
        "System.AttachedFileCount",
        "System.RelatedLinkCount",
        "System.RemoteLinkCount",
        "Microsoft.VSTS.Common.StateChangeDate",
    }
)
HTML_FIELDS = frozenset(
    {
        "System.Description",
        "Microsoft.VSTS.TCM.ReproSteps",
        "Microsoft.VSTS.Common.AcceptanceCriteria",
        "Microsoft.VSTS.TCM.SystemInfo",
    }
)

# Relations
RELATION_HYPERLINK = "Hyperlink"
RELATION_ATTACHED_FILE = "AttachedFile"
RELATION_ATTRIBUTE_COMMENT = "comment"
RELATION_ATTRIBUTE_NAME = "name"
RELATION_ATTRIBUTE_LENGTH = "resourceSize"
LINK_RELATION_USAGE = "workItemLink"
QUERY_TYPE_FLAT = "flat"
ATTACHMENT_URL_PATTERN = (
    r"_apis/wit/attachments/"
    r"(?P<guid>[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12})"
)

# Step names recorded in the back-link marker
STEP_CLEAR_RELATIONS = "clear-relations"
STEP_ATTACHMENTS = "attachments"
STEP_COMMENTS = "comments"
STEP_HISTORY = "history"
STEP_LINKS = "links"
STEP_TARGET_POST_MOVE_TAG = "target-post-move-tag"
STEP_SOURCE_LINK = "source-link"
STEP_SOURCE_POST_MOVE_TAG = "source-post-move-tag"

# Run output
OUTPUT_ROOT = "migration_logs"
REPORT_FILE_NAME = "migration_report.yaml"
VALIDATION_REPORT_FILE_NAME = "validation_report.yaml"
AUDIT_LOG_FILE_NAME = "batch_audit.jsonl"
