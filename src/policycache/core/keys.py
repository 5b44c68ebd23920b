"""Entity identity and storage-field naming.

Entity key format: {typename}:{id}, unless the caller supplies its own
data_id_from_object resolver (e.g. globally unique ids used as-is).

Storage field format: {field} or {field}({key_args_json})

Where:
- field: the schema field name ("allFilms")
- key_args_json: compact JSON of the key arguments with sorted keys,
  e.g. allFilms({"first":3})
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from typing import Any

import orjson

ROOT_QUERY = "ROOT_QUERY"
ROOT_MUTATION = "ROOT_MUTATION"

ROOT_TYPENAMES: dict[str, str] = {
    ROOT_QUERY: "Query",
    ROOT_MUTATION: "Mutation",
}

TYPENAME_FIELD = "__typename"

DataIdFromObject = Callable[[Mapping[str, Any]], "str | None"]


def default_data_id_from_object(obj: Mapping[str, Any]) -> str | None:
    """Default identity resolver: "{__typename}:{id}" when both are present."""
    typename = obj.get(TYPENAME_FIELD)
    if not isinstance(typename, str):
        return None

    for id_field in ("id", "_id"):
        value = obj.get(id_field)
        if isinstance(value, (str, int)) and not isinstance(value, bool):
            return f"{typename}:{value}"
    return None


def typename_from_key(key: str) -> str | None:
    """Infer a typename from an entity key.

    Returns None for keys that don't follow the {typename}:{id} convention.
    """
    if key in ROOT_TYPENAMES:
        return ROOT_TYPENAMES[key]
    typename, sep, rest = key.partition(":")
    if not sep or not typename or not rest:
        return None
    return typename


def storage_field_name(
    field_name: str,
    args: Mapping[str, Any] | None,
    key_args: Iterable[str] | None = None,
) -> str:
    """Compute the name a field value is stored under.

    Args:
        field_name: Schema field name
        args: Arguments the field was requested with
        key_args: Argument names that distinguish stored values. None keys
            on every argument; an empty iterable keys on none.

    Returns:
        The storage field name
    """
    if not args:
        return field_name

    if key_args is None:
        selected = dict(args)
    else:
        selected = {name: args[name] for name in key_args if name in args}

    if not selected:
        return field_name

    encoded = orjson.dumps(selected, option=orjson.OPT_SORT_KEYS).decode("utf-8")
    return f"{field_name}({encoded})"

