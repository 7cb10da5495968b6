from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from app.errors import InvalidIdentifierError


def parse_identifier(value: Any, *, field: str) -> int:
    """Accept a positive integer id, or its decimal string form."""
    if isinstance(value, bool):
        raise InvalidIdentifierError(field, value)
    if isinstance(value, int):
        if value <= 0:
            raise InvalidIdentifierError(field, value)
        return value
    if isinstance(value, str):
        raw = value.strip()
        if raw.isdigit() and int(raw) > 0:
            return int(raw)
    raise InvalidIdentifierError(field, value)


def extract_identifier(ref: Any, *, field: str = "activity_ids") -> int:
    """Resolve a reference that may be a bare id or an already-loaded entity.

    Loaded ORM objects, mappings with an ``id``/``_id`` key and bare ids all
    resolve to the same integer, so they compare equal when deduplicating.
    """
    if isinstance(ref, dict):
        raw = ref.get("id", ref.get("_id"))
        return parse_identifier(raw, field=field)
    if isinstance(ref, (int, str)):
        return parse_identifier(ref, field=field)
    raw_id = getattr(ref, "id", None)
    if raw_id is None:
        raise InvalidIdentifierError(field, repr(ref))
    return parse_identifier(raw_id, field=field)


def unique_identifiers(refs: Iterable[Any], *, field: str = "activity_ids") -> list[int]:
    """Extract ids, keeping first-seen order and dropping repeats."""
    ordered: list[int] = []
    seen: set[int] = set()
    for ref in refs:
        identifier = extract_identifier(ref, field=field)
        if identifier in seen:
            continue
        seen.add(identifier)
        ordered.append(identifier)
    return ordered
