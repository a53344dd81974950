"""JSON Patch operation builders for work item writes."""

from __future__ import annotations

from typing import Any, Optional

from workitem_migrator.constants import (
    FIELD_HISTORY,
    RELATION_ATTACHED_FILE,
    RELATION_ATTRIBUTE_COMMENT,
    RELATION_ATTRIBUTE_LENGTH,
    RELATION_ATTRIBUTE_NAME,
    RELATION_HYPERLINK,
)
from workitem_migrator.types import PatchOperation


def field_operation(name: str, value: Any, op: str = "add") -> PatchOperation:
    return {"op": op, "path": f"/fields/{name}", "value": value}


def temporary_id_operation(temporary_id: int) -> PatchOperation:
    """Negative placeholder id used to refer to a work item inside one batch."""
    return {"op": "add", "path": "/id", "value": temporary_id}


def relation_add(
    rel: str, url: str, attributes: Optional[dict[str, Any]] = None
) -> PatchOperation:
    value: dict[str, Any] = {"rel": rel, "url": url}
    if attributes:
        value["attributes"] = attributes
    return {"op": "add", "path": "/relations/-", "value": value}


def relation_remove(index: int) -> PatchOperation:
    return {"op": "remove", "path": f"/relations/{index}"}


def relation_replace(
    index: int, rel: str, url: str, attributes: Optional[dict[str, Any]] = None
) -> PatchOperation:
    value: dict[str, Any] = {"rel": rel, "url": url}
    if attributes:
        value["attributes"] = attributes
    return {"op": "replace", "path": f"/relations/{index}", "value": value}


def hyperlink_add(url: str, comment: str) -> PatchOperation:
    return relation_add(RELATION_HYPERLINK, url, {RELATION_ATTRIBUTE_COMMENT: comment})


def hyperlink_replace(index: int, url: str, comment: str) -> PatchOperation:
    return relation_replace(
        index, RELATION_HYPERLINK, url, {RELATION_ATTRIBUTE_COMMENT: comment}
    )


def attachment_add(
    url: str, name: str, size: int, comment: str = ""
) -> PatchOperation:
    attributes: dict[str, Any] = {
        RELATION_ATTRIBUTE_NAME: name,
        RELATION_ATTRIBUTE_LENGTH: size,
    }
    if comment:
        attributes[RELATION_ATTRIBUTE_COMMENT] = comment
    return relation_add(RELATION_ATTACHED_FILE, url, attributes)


def comment_add(text: str) -> PatchOperation:
    return field_operation(FIELD_HISTORY, text)


def order_relation_operations(operations: list[PatchOperation]) -> list[PatchOperation]:
    """Order operations so relation indexes stay valid while they are applied.

    Replacements run first, then removals from the highest index down, then
    everything else in its original order. Duplicate removals are dropped.
    """
    replaces = []
    removal_indexes: set[int] = set()
    others = []
    for operation in operations:
        index = _relation_index(operation)
        if index is not None and operation.get("op") == "replace":
            replaces.append(operation)
        elif index is not None and operation.get("op") == "remove":
            removal_indexes.add(index)
        else:
            others.append(operation)
    removals = [relation_remove(i) for i in sorted(removal_indexes, reverse=True)]
    return replaces + removals + others


def _relation_index(operation: PatchOperation) -> Optional[int]:
    path = operation.get("path", "")
    if not path.startswith("/relations/"):
        return None
    tail = path[len("/relations/") :]
    return int(tail) if tail.isdigit() else None
