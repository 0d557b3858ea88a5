"""Reviewer corrections applied to a stored draft.

Overrides are dotted paths into the draft's wire form, with ``[n]`` list
indexes: ``{"totals.noi": 1200000, "rentRoll[1].baseRent": 90000}``.
Segments may be given in camelCase or snake_case.
"""

import re
from typing import Any

import pydantic
from pydantic.alias_generators import to_camel

from whisperer.errors import ValidationError
from whisperer.models import DraftRecord

_SEGMENT = re.compile(r"^([A-Za-z_][A-Za-z0-9_]*)((?:\[\d+\])*)$")
_INDEX = re.compile(r"\[(\d+)\]")


def parse_path(path: str) -> list:
    """Split ``rentRoll[1].baseRent`` into ``["rentRoll", 1, "baseRent"]``."""
    parts: list = []
    for segment in path.split("."):
        match = _SEGMENT.match(segment.strip())
        if match is None:
            raise ValidationError(f"invalid correction path: {path!r}")
        parts.append(to_camel(match.group(1)) if "_" in match.group(1) else match.group(1))
        parts.extend(int(i) for i in _INDEX.findall(match.group(2)))
    return parts


def apply_overrides(draft: DraftRecord, overrides: dict[str, Any]) -> DraftRecord:
    """Return a new draft with every override written in."""
    payload = draft.model_dump(mode="json", by_alias=True)
    for path, value in sorted(overrides.items()):
        parts = parse_path(path)
        if parts[0] not in payload:
            raise ValidationError(f"unknown record section in correction path {path!r}")
        target = payload
        for key in parts[:-1]:
            target = _step(target, key, path)
        _assign(target, parts[-1], value, path)
    try:
        return DraftRecord.model_validate(payload)
    except pydantic.ValidationError as exc:
        raise ValidationError(f"corrections do not fit the record: {exc.error_count()} invalid value(s)") from exc


def _step(container, key, path: str):
    if isinstance(key, int):
        if not isinstance(container, list) or key >= len(container):
            raise ValidationError(f"correction path {path!r} points past the end of a list")
        return container[key]
    if not isinstance(container, dict):
        raise ValidationError(f"correction path {path!r} does not match the record shape")
    if container.get(key) is None:
        container[key] = {}
    return container[key]


def _assign(container, key, value, path: str) -> None:
    if isinstance(key, int):
        if not isinstance(container, list) or key >= len(container):
            raise ValidationError(f"correction path {path!r} points past the end of a list")
        container[key] = value
    elif isinstance(container, dict):
        container[key] = value
    else:
        raise ValidationError(f"correction path {path!r} does not match the record shape")
