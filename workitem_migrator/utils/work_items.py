"""Read helpers for work item documents returned by the service."""

from __future__ import annotations

import re
from typing import Any, Optional

from workitem_migrator.constants import (
    FIELD_TAGS,
    RELATION_ATTACHED_FILE,
    RELATION_ATTRIBUTE_COMMENT,
    RELATION_ATTRIBUTE_LENGTH,
    RELATION_ATTRIBUTE_NAME,
    RELATION_HYPERLINK,
)
from workitem_migrator.types import WorkItem, WorkItemRelation

_WORK_ITEM_ID_RE = re.compile(r"/workItems/(\d+)/?$", re.IGNORECASE)


def relations(item: Optional[WorkItem]) -> list[WorkItemRelation]:
    if not item:
        return []
    return item.get("relations") or []


def fields(item: Optional[WorkItem]) -> dict[str, Any]:
    if not item:
        return {}
    return item.get("fields") or {}


def same_url(left: str, right: str) -> bool:
    return left.rstrip("/").lower() == right.rstrip("/").lower()


def work_item_id_from_url(url: str) -> Optional[int]:
    match = _WORK_ITEM_ID_RE.search(url or "")
    return int(match.group(1)) if match else None


def find_hyperlink(item: Optional[WorkItem], url: str) -> tuple[int, Optional[WorkItemRelation]]:
    """Index and relation of the hyperlink to ``url``, or ``(-1, None)``."""
    for index, relation in enumerate(relations(item)):
        if relation.get("rel") == RELATION_HYPERLINK and same_url(
            relation.get("url", ""), url
        ):
            return index, relation
    return -1, None


def relation_comment(relation: Optional[WorkItemRelation]) -> Optional[str]:
    if not relation:
        return None
    attributes = relation.get("attributes") or {}
    for key, value in attributes.items():
        if key.lower() == RELATION_ATTRIBUTE_COMMENT:
            return value
    return None


def has_relation(item: Optional[WorkItem], rel: str, url: str) -> bool:
    return any(
        r.get("rel") == rel and same_url(r.get("url", ""), url) for r in relations(item)
    )


def attachments(item: Optional[WorkItem]) -> list[tuple[int, WorkItemRelation]]:
    """``(index, relation)`` pairs of the attached files."""
    return [
        (index, relation)
        for index, relation in enumerate(relations(item))
        if relation.get("rel") == RELATION_ATTACHED_FILE
    ]


def attachment_name(relation: WorkItemRelation) -> str:
    return (relation.get("attributes") or {}).get(RELATION_ATTRIBUTE_NAME, "")


def attachment_size(relation: WorkItemRelation) -> int:
    return int((relation.get("attributes") or {}).get(RELATION_ATTRIBUTE_LENGTH) or 0)


def find_attachment(
    item: Optional[WorkItem], name: str, size: Optional[int] = None
) -> tuple[int, Optional[WorkItemRelation]]:
    """First attached file named ``name`` (and of ``size`` bytes when given)."""
    for index, relation in attachments(item):
        if attachment_name(relation) != name:
            continue
        if size is None or attachment_size(relation) == size:
            return index, relation
    return -1, None


def identity_name(value: Any) -> str:
    """Name an identity field value: ``uniqueName`` of an identity reference, else the text."""
    if isinstance(value, dict):
        return str(value.get("uniqueName") or value.get("displayName") or "")
    return "" if value is None else str(value)


def split_tags(value: Optional[str]) -> list[str]:
    if not value:
        return []
    return [tag.strip() for tag in value.split(";") if tag.strip()]


def tags(item: Optional[WorkItem]) -> list[str]:
    return split_tags(fields(item).get(FIELD_TAGS))
