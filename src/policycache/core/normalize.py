"""Normalization of response trees into flat entity records.

Every object the identity resolver recognizes becomes its own entity and is
replaced in its parent by a Reference. Objects without identity stay embedded
in the parent field value.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any

from policycache.core.errors import InvalidWriteError
from policycache.core.types import Reference

logger = logging.getLogger(__name__)

Identify = Callable[[Mapping[str, Any]], "str | None"]


def normalize(
    data: Mapping[str, Any],
    root_key: str,
    identify: Identify,
) -> dict[str, dict[str, Any]]:
    """Flatten a response tree into entity field maps.

    Args:
        data: Response data for the root entity
        root_key: Key of the root entity (e.g. ROOT_QUERY)
        identify: Identity resolver for nested objects

    Returns:
        Mapping of entity key to field map. Nested entities come before the
        entities that reference them; the root entity is last.

    Raises:
        InvalidWriteError: If data is not an object
    """
    if not isinstance(data, Mapping):
        raise InvalidWriteError(root_key, "response data must be an object")

    entities: dict[str, dict[str, Any]] = {}

    def visit(value: Any) -> Any:
        if isinstance(value, Reference):
            return value
        if isinstance(value, Mapping):
            nested = {name: visit(child) for name, child in value.items()}
            key = identify(value)
            if key is None:
                return nested
            merged = entities.pop(key, {})
            merged.update(nested)
            entities[key] = merged
            return Reference(key)
        if isinstance(value, (list, tuple)):
            return [visit(item) for item in value]
        return value

    root_fields = {name: visit(value) for name, value in data.items()}

    root_merged = entities.pop(root_key, {})
    root_merged.update(root_fields)
    entities[root_key] = root_merged

    logger.debug(f"Normalized response for {root_key} into {len(entities)} entities")
    return entities
