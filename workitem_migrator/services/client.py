"""
HTTP client for the remote work item service.

Thin wrapper over a ``requests.Session``. Every method raises
``RemoteServiceError`` for a non-2xx answer and lets transport errors from
``requests`` propagate so the retry layer can classify them.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Iterable, Optional
from urllib.parse import quote

import requests

from workitem_migrator.constants import (
    API_VERSION,
    BATCH_API_VERSION,
    JSON_PATCH_CONTENT_TYPE,
    MAX_WORK_ITEMS_PER_READ,
    VENDOR_ERROR_CODE_PATTERN,
    WRITE_QUERY_STRING,
)
from workitem_migrator.exceptions import RemoteServiceError
from workitem_migrator.types import (
    AttachmentReference,
    BatchRequest,
    BatchResponse,
    Comment,
    PatchOperation,
    WorkItem,
    WorkItemReference,
)
from workitem_migrator.utils.logging import (
    log_api_request,
    log_api_response,
    log_with_context,
)

_VENDOR_CODE_RE = re.compile(VENDOR_ERROR_CODE_PATTERN)
COMMENTS_API_VERSION = "5.0-preview.2"


class WorkItemClient:
    """Client for one account/project of the work item service."""

    def __init__(
        self,
        account: str,
        project: str,
        access_token: str = "",
        timeout: float = 100.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.account = account.rstrip("/")
        self.project = project
        self.timeout = timeout
        self.session = session or requests.Session()
        if access_token:
            self.session.auth = ("", access_token)
        self.session.headers.update({"Accept": "application/json"})

    @classmethod
    def from_connection(cls, connection: Any) -> WorkItemClient:
        """Build a client from a ``ConnectionConfig``."""
        return cls(connection.account, connection.project, connection.token)

    # ------------------------------------------------------------------
    # URLs
    # ------------------------------------------------------------------

    @property
    def project_url(self) -> str:
        return f"{self.account}/{quote(self.project)}"

    def work_item_url(self, work_item_id: int) -> str:
        """API URL of a work item; also the back-link target on other accounts."""
        return f"{self.account}/_apis/wit/workItems/{work_item_id}"

    def attachment_url(self, attachment_id: str) -> str:
        return f"{self.account}/_apis/wit/attachments/{attachment_id}"

    def create_batch_uri(self, work_item_type: str) -> str:
        """Relative URI used inside a batch to create a work item."""
        return (
            f"/{quote(self.project)}/_apis/wit/workItems/${quote(work_item_type)}"
            f"?{WRITE_QUERY_STRING}&api-version={BATCH_API_VERSION}"
        )

    def update_batch_uri(self, work_item_id: int) -> str:
        """Relative URI used inside a batch to update a work item."""
        return (
            f"/_apis/wit/workItems/{work_item_id}"
            f"?{WRITE_QUERY_STRING}&api-version={BATCH_API_VERSION}"
        )

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _request(
        self,
        method: str,
        url: str,
        params: Optional[dict[str, Any]] = None,
        json_body: Any = None,
        data: Any = None,
        headers: Optional[dict[str, str]] = None,
        raw: bool = False,
    ) -> Any:
        params = {"api-version": API_VERSION, **(params or {})}
        log_api_request(method, url, json_body if json_body is not None else data)

        response = self.session.request(
            method,
            url,
            params=params,
            json=json_body,
            data=data,
            headers=headers,
            timeout=self.timeout,
        )

        if not response.ok:
            raise self._error_from_response(method, url, response)

        if raw:
            log_api_response(response.status_code, url, f"<{len(response.content)} bytes>")
            return response.content
        if not response.content:
            log_api_response(response.status_code, url)
            return None
        payload = response.json()
        log_api_response(response.status_code, url, payload)
        return payload

    @staticmethod
    def _error_from_response(
        method: str, url: str, response: requests.Response
    ) -> RemoteServiceError:
        try:
            body = response.json()
        except ValueError:
            body = response.text
        if isinstance(body, dict):
            message = body.get("message") or json.dumps(body)
        else:
            message = str(body) or response.reason
        match = _VENDOR_CODE_RE.search(message)
        log_with_context(
            logging.DEBUG,
            f"{method} {url} returned {response.status_code}: {message}",
            component="http",
        )
        return RemoteServiceError(
            f"{response.status_code} {response.reason}: {message}",
            status_code=response.status_code,
            error_code=match.group(0) if match else None,
            body=body,
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_query(self, query_path: str) -> dict[str, Any]:
        """Saved query definition including its WIQL text."""
        return self._request(
            "GET",
            f"{self.project_url}/_apis/wit/queries/{quote(query_path)}",
            params={"$expand": "wiql"},
        )

    def query_by_wiql(self, wiql: str, top: int) -> list[WorkItemReference]:
        result = self._request(
            "POST",
            f"{self.project_url}/_apis/wit/wiql",
            params={"$top": top},
            json_body={"query": wiql},
        )
        return (result or {}).get("workItems", [])

    def query_artifact_uris(self, uris: Iterable[str]) -> dict[str, list[WorkItemReference]]:
        """Work items on this account that link to each of ``uris``."""
        uris = list(uris)
        if not uris:
            return {}
        result = self._request(
            "POST",
            f"{self.project_url}/_apis/wit/artifacturiquery",
            json_body={"artifactUris": uris},
        )
        return (result or {}).get("artifactUrisQueryResult", {}) or {}

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_work_items(
        self, ids: Iterable[int], expand: str = "all"
    ) -> list[WorkItem]:
        ids = list(ids)
        items: list[WorkItem] = []
        for start in range(0, len(ids), MAX_WORK_ITEMS_PER_READ):
            chunk = ids[start : start + MAX_WORK_ITEMS_PER_READ]
            result = self._request(
                "GET",
                f"{self.account}/_apis/wit/workitems",
                params={
                    "ids": ",".join(str(i) for i in chunk),
                    "$expand": expand,
                    "errorPolicy": "omit",
                },
            )
            items.extend(item for item in (result or {}).get("value", []) if item)
        return items

    def get_work_item(self, work_item_id: int, expand: str = "all") -> WorkItem:
        return self._request(
            "GET",
            self.work_item_url(work_item_id),
            params={"$expand": expand},
        )

    def get_comments(self, work_item_id: int) -> list[Comment]:
        result = self._request(
            "GET",
            f"{self.project_url}/_apis/wit/workItems/{work_item_id}/comments",
            params={"api-version": COMMENTS_API_VERSION},
        )
        return (result or {}).get("comments", [])

    def get_updates(self, work_item_id: int, top: int, skip: int = 0) -> list[dict[str, Any]]:
        result = self._request(
            "GET",
            f"{self.work_item_url(work_item_id)}/updates",
            params={"$top": top, "$skip": skip},
        )
        return (result or {}).get("value", [])

    def get_relation_types(self) -> list[dict[str, Any]]:
        result = self._request("GET", f"{self.account}/_apis/wit/workitemrelationtypes")
        return (result or {}).get("value", [])

    def get_work_item_types(self) -> list[dict[str, Any]]:
        result = self._request("GET", f"{self.project_url}/_apis/wit/workitemtypes")
        return (result or {}).get("value", [])

    def get_fields(self) -> list[dict[str, Any]]:
        result = self._request("GET", f"{self.project_url}/_apis/wit/fields")
        return (result or {}).get("value", [])

    # ------------------------------------------------------------------
    # Attachments
    # ------------------------------------------------------------------

    def get_attachment(self, url_or_id: str) -> bytes:
        """Download an attachment by its full URL or its id."""
        url = url_or_id if "://" in url_or_id else self.attachment_url(url_or_id)
        url = url.split("?", 1)[0]
        return self._request("GET", url, params={"download": "true"}, raw=True)

    def create_attachment(self, data: bytes, file_name: str) -> AttachmentReference:
        """Single-shot upload."""
        return self._request(
            "POST",
            f"{self.project_url}/_apis/wit/attachments",
            params={"fileName": file_name, "uploadType": "simple"},
            data=data,
            headers={"Content-Type": "application/octet-stream"},
        )

    def create_attachment_chunked(
        self, data: bytes, file_name: str, chunk_size: int
    ) -> AttachmentReference:
        """Create an empty attachment, then PUT it in sequential byte ranges."""
        reference = self._request(
            "POST",
            f"{self.project_url}/_apis/wit/attachments",
            params={"fileName": file_name, "uploadType": "chunked"},
            data=b"",
            headers={"Content-Type": "application/octet-stream"},
        )
        total = len(data)
        for start in range(0, total, chunk_size):
            chunk = data[start : start + chunk_size]
            end = start + len(chunk) - 1
            self._request(
                "PUT",
                f"{self.project_url}/_apis/wit/attachments/{reference['id']}",
                params={"fileName": file_name, "uploadType": "chunked"},
                data=chunk,
                headers={
                    "Content-Type": "application/octet-stream",
                    "Content-Range": f"bytes {start}-{end}/{total}",
                },
            )
        return reference

    def upload_attachment(
        self, data: bytes, file_name: str, chunk_size: int
    ) -> AttachmentReference:
        """Upload ``data``, chunked when it is larger than ``chunk_size``."""
        if len(data) > chunk_size:
            return self.create_attachment_chunked(data, file_name, chunk_size)
        return self.create_attachment(data, file_name)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def execute_batch(self, batch: list[BatchRequest]) -> list[BatchResponse]:
        """Submit a batch of writes; an unreadable answer yields an empty list."""
        url = f"{self.account}/_apis/wit/$batch"
        log_api_request("POST", url, batch)
        response = self.session.post(
            url,
            params={"api-version": BATCH_API_VERSION},
            json=batch,
            timeout=self.timeout,
        )
        if not response.ok:
            raise self._error_from_response("POST", url, response)
        try:
            payload = response.json()
        except ValueError:
            log_with_context(
                logging.WARNING,
                f"Batch response from {url} is not JSON",
                component="http",
            )
            return []
        log_api_response(response.status_code, url, payload)
        if not isinstance(payload, dict) or not isinstance(payload.get("value"), list):
            return []
        return payload["value"]

    def update_work_item(
        self, work_item_id: int, operations: list[PatchOperation]
    ) -> WorkItem:
        return self._request(
            "PATCH",
            self.work_item_url(work_item_id),
            params={"bypassRules": "true", "suppressNotifications": "true"},
            data=json.dumps(operations),
            headers={"Content-Type": JSON_PATCH_CONTENT_TYPE},
        )
