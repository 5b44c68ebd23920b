"""Relay-style connection merging.

A connection value looks like:

    {
        "edges": [{"cursor": "YXJyYXljb25uZWN0aW9uOjA=", "node": Reference("Film:1")}, ...],
        "pageInfo": {
            "startCursor": ..., "endCursor": ...,
            "hasPreviousPage": ..., "hasNextPage": ...,
        },
    }

Merge rules:
- args.after set: incoming edges are placed right after the `after` cursor
  (or at the end when the cursor is unknown); endCursor/hasNextPage come
  from the incoming page, startCursor/hasPreviousPage are kept
- args.before set: the symmetric prepend before the `before` cursor;
  startCursor/hasPreviousPage come from the incoming page, endCursor/hasNextPage
  are kept
- neither: the incoming page replaces the connection (a fresh page). This
  covers `first` alone and `last` alone: without a cursor there is no anchor
  to splice against, and a `last`-only page is the tail of the list, so its
  startCursor/hasPreviousPage as well as endCursor/hasNextPage are taken
  from the incoming page
- an incoming edge whose cursor already exists overwrites that position
- edges stay in fetch order; they are never re-sorted by cursor

Merging the same page twice yields the same edge sequence as merging once.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from policycache.core.types import MISSING

if TYPE_CHECKING:
    from policycache.policies.fields import FieldMergeOptions, FieldReadOptions

logger = logging.getLogger(__name__)

PAGE_INFO_FIELDS = ("startCursor", "endCursor", "hasPreviousPage", "hasNextPage")


def empty_connection() -> dict[str, Any]:
    return {
        "edges": [],
        "pageInfo": {
            "startCursor": None,
            "endCursor": None,
            "hasPreviousPage": False,
            "hasNextPage": False,
        },
    }


def _edges_of(connection: Any) -> list[Any]:
    if not isinstance(connection, Mapping):
        return []
    edges = connection.get("edges")
    return list(edges) if isinstance(edges, list) else []


def _page_info_of(connection: Any) -> dict[str, Any]:
    if not isinstance(connection, Mapping):
        return {}
    page_info = connection.get("pageInfo")
    return dict(page_info) if isinstance(page_info, Mapping) else {}


def _cursor_of(edge: Any) -> str | None:
    if isinstance(edge, Mapping):
        cursor = edge.get("cursor")
        if isinstance(cursor, str):
            return cursor
    return None


def _first_cursor(edges: list[Any]) -> str | None:
    for edge in edges:
        cursor = _cursor_of(edge)
        if cursor is not None:
            return cursor
    return None


def _last_cursor(edges: list[Any]) -> str | None:
    return _first_cursor(list(reversed(edges)))


def _index_of(edges: list[Any], cursor: str) -> int | None:
    for index, edge in enumerate(edges):
        if _cursor_of(edge) == cursor:
            return index
    return None


def _splice(edges: list[Any], incoming: list[Any], insert_at: int) -> list[Any]:
    """Insert incoming edges at insert_at, overwriting edges whose cursor exists."""
    result = list(edges)
    position = insert_at
    for edge in incoming:
        cursor = _cursor_of(edge)
        existing_index = _index_of(result, cursor) if cursor is not None else None
        if existing_index is not None:
            result[existing_index] = edge
            position = existing_index + 1
        else:
            result.insert(position, edge)
            position += 1
    return result


def _dedupe(edges: list[Any]) -> list[Any]:
    """Collapse repeated cursors within one page, keeping the first position."""
    return _splice([], edges, 0)


def merge_connection(existing: Any, incoming: Any, options: FieldMergeOptions) -> Any:
    """Merge an incoming page into the cached connection."""
    if incoming is None or incoming is MISSING:
        return incoming
    if not isinstance(incoming, Mapping):
        logger.warning(
            f"Ignoring non-connection value for {options.typename}.{options.field_name}"
        )
        return existing if existing is not MISSING else incoming

    args = options.args or {}
    after = args.get("after")
    before = args.get("before")

    incoming_edges = _dedupe(_edges_of(incoming))
    incoming_info = _page_info_of(incoming)
    extras = {k: v for k, v in incoming.items() if k not in ("edges", "pageInfo")}

    if existing is MISSING or existing is None or not isinstance(existing, Mapping):
        base = empty_connection()
    else:
        base = {**existing}

    existing_edges = _edges_of(base)
    page_info = {**empty_connection()["pageInfo"], **_page_info_of(base)}

    if after is not None:
        index = _index_of(existing_edges, after)
        insert_at = index + 1 if index is not None else len(existing_edges)
        edges = _splice(existing_edges, incoming_edges, insert_at)
        page_info["endCursor"] = incoming_info.get("endCursor", _last_cursor(incoming_edges))
        page_info["hasNextPage"] = bool(incoming_info.get("hasNextPage", False))
        if page_info["startCursor"] is None:
            page_info["startCursor"] = _first_cursor(edges)
    elif before is not None:
        index = _index_of(existing_edges, before)
        insert_at = index if index is not None else 0
        edges = _splice(existing_edges, incoming_edges, insert_at)
        page_info["startCursor"] = incoming_info.get("startCursor", _first_cursor(incoming_edges))
        page_info["hasPreviousPage"] = bool(incoming_info.get("hasPreviousPage", False))
        if page_info["endCursor"] is None:
            page_info["endCursor"] = _last_cursor(edges)
    else:
        edges = incoming_edges
        page_info = {
            "startCursor": incoming_info.get("startCursor", _first_cursor(edges)),
            "endCursor": incoming_info.get("endCursor", _last_cursor(edges)),
            "hasPreviousPage": bool(incoming_info.get("hasPreviousPage", False)),
            "hasNextPage": bool(incoming_info.get("hasNextPage", False)),
        }
        base = {}

    for name, value in incoming_info.items():
        if name not in PAGE_INFO_FIELDS:
            page_info[name] = value

    return {**base, **extras, "edges": edges, "pageInfo": page_info}


def read_connection(existing: Any, options: FieldReadOptions) -> Any:
    """Read the cached connection.

    Returns MISSING when no page has been merged yet, which is distinct from
    a merged empty page (a connection with no edges). Edges whose node no
    longer resolves are left out.
    """
    if existing is MISSING or existing is None:
        return existing
    if not isinstance(existing, Mapping):
        return existing

    edges = [
        edge
        for edge in _edges_of(existing)
        if not isinstance(edge, Mapping) or options.can_read(edge.get("node"))
    ]
    return {
        **existing,
        "edges": edges,
        "pageInfo": {**empty_connection()["pageInfo"], **_page_info_of(existing)},
    }
