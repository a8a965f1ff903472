"""Tests for attribute merging."""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal

from sqlauth.attributes import merge_attributes, stringify


def test_stringify_canonical_forms() -> None:
    assert stringify(True) == "true"
    assert stringify(False) == "false"
    assert stringify(42) == "42"
    assert stringify(Decimal("10.50")) == "10.50"
    assert stringify(date(2024, 2, 29)) == "2024-02-29"
    assert stringify(datetime(2024, 2, 29, 8, 30, tzinfo=timezone.utc)) == "2024-02-29T08:30:00+00:00"
    assert stringify(b"caf\xc3\xa9") == "café"
    assert stringify("") == ""


def test_merge_skips_nulls_and_forbidden_columns() -> None:
    attributes: dict[str, list[str]] = {}

    merge_attributes(
        attributes,
        [{"uid": "alice", "hash": "$2y$...", "phone": None}],
        forbidden={"hash"},
    )

    assert attributes == {"uid": ["alice"]}


def test_merge_builds_multi_valued_attributes_in_row_order() -> None:
    attributes: dict[str, list[str]] = {}

    merge_attributes(
        attributes,
        [
            {"uid": "alice", "group": "admin"},
            {"uid": "alice", "group": "ops"},
            {"uid": "alice", "group": "Admin"},
        ],
    )

    assert attributes == {"uid": ["alice"], "group": ["admin", "ops", "Admin"]}


def test_merge_is_idempotent() -> None:
    rows = [{"group": "admin", "level": 1}, {"group": "ops", "level": 2}]
    once: dict[str, list[str]] = {}
    twice: dict[str, list[str]] = {}

    merge_attributes(once, rows)
    merge_attributes(twice, rows)
    merge_attributes(twice, rows)

    assert once == twice == {"group": ["admin", "ops"], "level": ["1", "2"]}


def test_merge_appends_to_existing_attributes() -> None:
    attributes = {"group": ["staff"]}

    result = merge_attributes(attributes, [{"group": "staff"}, {"group": "physics"}])

    assert result is attributes
    assert attributes == {"group": ["staff", "physics"]}


def test_stringified_duplicates_collapse() -> None:
    attributes: dict[str, list[str]] = {}

    merge_attributes(attributes, [{"id": 1}, {"id": "1"}])

    assert attributes == {"id": ["1"]}
