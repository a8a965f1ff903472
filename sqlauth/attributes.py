"""Folding SQL result rows into multi-valued attribute sets."""

from __future__ import annotations

from datetime import date, datetime, time
from typing import Collection, Iterable

from .models import AttributeSet, Row


def stringify(value: object) -> str:
    """Canonical text form of a driver value."""

    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).decode("utf-8", errors="replace")
    return str(value)


def merge_attributes(
    target: AttributeSet,
    rows: Iterable[Row],
    forbidden: Collection[str] = (),
) -> AttributeSet:
    """Merge every non-null column of ``rows`` into ``target`` in place.

    Columns listed in ``forbidden`` are never copied. Values keep the order in
    which they were first seen and are deduplicated by exact string match.
    """

    for row in rows:
        for name, value in row.items():
            if value is None or name in forbidden:
                continue
            text = stringify(value)
            values = target.setdefault(name, [])
            if text not in values:
                values.append(text)
    return target


__all__ = ["merge_attributes", "stringify"]
