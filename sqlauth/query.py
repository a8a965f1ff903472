"""Parameterised query execution against a registry handle."""

from __future__ import annotations

import re
from typing import Any, Mapping

from .connections import MYSQL, PGSQL, DatabaseHandle
from .errors import QueryError
from .models import Row

PREPARE = "prepare"
EXECUTE = "execute"
FETCH = "fetch"

_PLACEHOLDER = re.compile(r"(?<![:\w]):([A-Za-z_][A-Za-z0-9_]*)")


def bind_parameters(driver: str, sql: str, params: Mapping[str, object]) -> tuple[str, Any]:
    """Rewrite ``:name`` placeholders into the driver's native paramstyle.

    Returns the rewritten SQL and the parameter container the driver expects.
    """

    names = _PLACEHOLDER.findall(sql)
    missing = sorted({name for name in names if name not in params})
    if missing:
        raise QueryError(PREPARE, f"no value supplied for placeholder(s): {', '.join(missing)}")

    if driver == PGSQL:
        positions: dict[str, int] = {}
        values: list[object] = []

        def _numbered(match: re.Match[str]) -> str:
            name = match.group(1)
            if name not in positions:
                values.append(params[name])
                positions[name] = len(values)
            return f"${positions[name]}"

        return _PLACEHOLDER.sub(_numbered, sql), values

    if driver == MYSQL and names:
        # mysql-connector only substitutes %(name)s, so literal % stays as written.
        used = set(names)
        return _PLACEHOLDER.sub(r"%(\1)s", sql), {key: value for key, value in params.items() if key in used}

    used = set(names)
    return sql, {key: value for key, value in params.items() if key in used}


async def execute_query(handle: DatabaseHandle, sql: str, params: Mapping[str, object]) -> list[Row]:
    """Run ``sql`` with named parameters and return every row as a mapping.

    Each failure stage is reported as a :class:`QueryError`; nothing is retried.
    """

    statement_sql, bound = bind_parameters(handle.driver, sql, params)
    try:
        statement = await handle.prepare(statement_sql)
    except Exception as exc:
        raise QueryError(PREPARE, str(exc)) from exc
    try:
        result = await handle.execute(statement, bound)
    except Exception as exc:
        raise QueryError(EXECUTE, str(exc)) from exc
    try:
        return await handle.fetch_all(result)
    except Exception as exc:
        raise QueryError(FETCH, str(exc)) from exc


__all__ = ["EXECUTE", "FETCH", "PREPARE", "bind_parameters", "execute_query"]
