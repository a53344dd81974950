"""
Helpers for rewriting WIQL query text.

Queries are paged by repeatedly injecting a compound watermark/id cursor into
the WHERE clause and forcing an ORDER BY on the same columns.
"""

from __future__ import annotations

import re

from workitem_migrator.constants import FIELD_ID, FIELD_TAGS, FIELD_WATERMARK

_ORDER_BY_RE = re.compile(r"\s+ORDER\s+BY\s+", re.IGNORECASE)
_WHERE_RE = re.compile(r"\s+WHERE\s+", re.IGNORECASE)

PAGE_ORDER = f"{FIELD_WATERMARK}, {FIELD_ID}"


def _split_order_by(wiql: str) -> tuple[str, str]:
    matches = list(_ORDER_BY_RE.finditer(wiql))
    if not matches:
        return wiql.strip(), ""
    last = matches[-1]
    return wiql[: last.start()].strip(), wiql[last.end() :].strip()


def remove_order_by(wiql: str) -> str:
    """Strip a trailing ORDER BY clause."""
    return _split_order_by(wiql)[0]


def set_order_by(wiql: str, order_by: str) -> str:
    """Replace any ORDER BY clause with ``order_by``."""
    return f"{remove_order_by(wiql)} ORDER BY {order_by}"


def add_where_constraint(wiql: str, clause: str) -> str:
    """AND ``clause`` onto the query's WHERE clause, keeping any ORDER BY."""
    if not clause:
        return wiql
    body, order_by = _split_order_by(wiql)
    match = _WHERE_RE.search(body)
    if match:
        head = body[: match.start()]
        condition = body[match.end() :].strip()
        body = f"{head} WHERE ({condition}) AND ({clause})"
    else:
        body = f"{body} WHERE {clause}"
    if order_by:
        body = f"{body} ORDER BY {order_by}"
    return body


def exclude_tag_clause(tag: str) -> str:
    escaped = tag.replace("'", "''")
    return f"{FIELD_TAGS} NOT CONTAINS '{escaped}'"


def watermark_clause(watermark: int, last_id: int) -> str:
    return (
        f"(({FIELD_WATERMARK} > {watermark}) OR "
        f"({FIELD_WATERMARK} = {watermark} AND {FIELD_ID} > {last_id}))"
    )


def base_query(wiql: str, post_move_tag: str = "") -> str:
    """The user's query without ordering, excluding already-moved items."""
    query = remove_order_by(wiql)
    if post_move_tag:
        query = add_where_constraint(query, exclude_tag_clause(post_move_tag))
    return query


def page_query(base: str, watermark: int, last_id: int) -> str:
    """Query for the page that follows the ``(watermark, last_id)`` cursor."""
    return set_order_by(
        add_where_constraint(base, watermark_clause(watermark, last_id)), PAGE_ORDER
    )
