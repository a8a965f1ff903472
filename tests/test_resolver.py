"""Tests for auth query resolution and attribute query selection."""

from __future__ import annotations

from typing import Any, Callable

import pytest

from sqlauth.attribute_queries import AttributeQueryRunner
from sqlauth.config import DatabaseConfig, parse_source_config
from sqlauth.connections import DatabaseRegistry
from sqlauth.errors import AuthenticationError, DatabaseConnectionError, HashColumnError
from sqlauth.models import LoginResult, QueryState
from sqlauth.resolver import AuthenticationResolver

Responder = Callable[[str, dict[str, object]], list[dict[str, object]]]


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


class _ScriptedHandle:
    driver = "sqlite"

    def __init__(self, name: str, responder: Responder, calls: list[tuple[str, str, dict[str, object]]]) -> None:
        self._name = name
        self._responder = responder
        self._calls = calls

    async def prepare(self, sql: str) -> str:
        return sql

    async def execute(self, statement: str, params: Any) -> list[dict[str, object]]:
        self._calls.append((self._name, statement, dict(params)))
        return self._responder(statement, dict(params))

    async def fetch_all(self, result: Any) -> list[dict[str, object]]:
        return list(result)

    async def command(self, sql: str) -> None:
        return None

    async def close(self) -> None:
        return None


class _ScriptedDatabases:
    def __init__(self, **responders: Responder) -> None:
        self._responders = responders
        self.calls: list[tuple[str, str, dict[str, object]]] = []

    async def __call__(self, config: DatabaseConfig) -> _ScriptedHandle:
        return _ScriptedHandle(config.name, self._responders[config.name], self.calls)

    @property
    def queried(self) -> list[str]:
        return [name for name, _, _ in self.calls]


def _rows(*rows: dict[str, object]) -> Responder:
    return lambda sql, params: list(rows)


def _fail(sql: str, params: dict[str, object]) -> list[dict[str, object]]:
    raise RuntimeError("relation does not exist")


def _config(auth_queries: dict[str, dict[str, object]], attr_queries: list[dict[str, object]] | None = None):  # type: ignore[no-untyped-def]
    return parse_source_config(
        {
            "databases": {
                name: {"dsn": "sqlite::memory:", "username": "", "password": ""} for name in ("a", "b", "c")
            },
            "auth_queries": auth_queries,
            "attr_queries": attr_queries or [],
        },
        "test",
    )


async def _resolve(config, databases: _ScriptedDatabases, username: str = "alice", password: str = "pw") -> LoginResult:  # type: ignore[no-untyped-def]
    resolver = AuthenticationResolver(config.auth_queries, auth_id="test")
    async with DatabaseRegistry(config.databases, opener=databases) as registry:
        return await resolver.resolve(registry, username, password)


@pytest.mark.anyio
async def test_first_successful_query_wins_and_later_queries_never_run() -> None:
    config = _config(
        {
            "one": {"database": "a", "query": "select 'one' as src where :username = :password"},
            "two": {"database": "b", "query": "select 'two' as src where :username = :password"},
            "three": {"database": "c", "query": "select 'three' as src where :username = :password"},
        }
    )
    databases = _ScriptedDatabases(a=_rows(), b=_rows({"src": "two"}), c=_rows({"src": "three"}))

    result = await _resolve(config, databases)

    assert result.winning_query == "two"
    assert result.attributes == {"src": ["two"]}
    assert databases.queried == ["a", "b"]
    assert [(o.name, o.state) for o in result.outcomes] == [
        ("one", QueryState.FAILED),
        ("two", QueryState.WON),
        ("three", QueryState.PENDING),
    ]


@pytest.mark.anyio
async def test_password_parameter_only_sent_without_hash_column() -> None:
    config = _config(
        {
            "hashed": {
                "database": "a",
                "query": "select hash from users where uid=:username",
                "password_verify_hash_column": "hash",
            },
            "plain": {"database": "b", "query": "select uid from users where uid=:username and pw=:password"},
        }
    )
    databases = _ScriptedDatabases(a=_rows(), b=_rows({"uid": "alice"}))

    await _resolve(config, databases, password="secret")

    assert databases.calls[0][2] == {"username": "alice"}
    assert databases.calls[1][2] == {"username": "alice", "password": "secret"}


@pytest.mark.anyio
async def test_regex_mismatch_skips_without_connecting() -> None:
    config = _config(
        {
            "numeric": {"database": "a", "query": "select 1 as x where :username = :password", "username_regex": r"^\d+$"},
            "any": {"database": "b", "query": "select 2 as x where :username = :password"},
        }
    )
    databases = _ScriptedDatabases(a=_rows({"x": 1}), b=_rows({"x": 2}))

    result = await _resolve(config, databases)

    assert databases.queried == ["b"]
    assert result.outcomes[0].state is QueryState.SKIPPED


@pytest.mark.anyio
async def test_query_errors_fall_through_to_next_query() -> None:
    config = _config(
        {
            "broken": {"database": "a", "query": "select * from nope where :username = :password"},
            "fine": {"database": "b", "query": "select 'ok' as status where :username = :password"},
        }
    )
    databases = _ScriptedDatabases(a=_fail, b=_rows({"status": "ok"}))

    result = await _resolve(config, databases)

    assert result.winning_query == "fine"


@pytest.mark.anyio
async def test_no_winner_raises_generic_denial() -> None:
    config = _config(
        {
            "broken": {"database": "a", "query": "select * from nope where :username = :password"},
            "empty": {"database": "b", "query": "select 1 where :username = :password"},
        }
    )
    databases = _ScriptedDatabases(a=_fail, b=_rows())

    with pytest.raises(AuthenticationError) as excinfo:
        await _resolve(config, databases)

    assert excinfo.value.code == "WRONGUSERPASS"


@pytest.mark.anyio
async def test_inconsistent_hash_column_aborts_resolution() -> None:
    config = _config(
        {
            "hashed": {
                "database": "a",
                "query": "select hash from users where uid=:username",
                "password_verify_hash_column": "hash",
            },
            "fallback": {"database": "b", "query": "select 1 as x where :username = :password"},
        }
    )
    databases = _ScriptedDatabases(a=_rows({"hash": "$2b$04$one"}, {"hash": "$2b$04$two"}), b=_rows({"x": 1}))

    with pytest.raises(HashColumnError):
        await _resolve(config, databases)

    assert databases.queried == ["a"]


@pytest.mark.anyio
async def test_connection_errors_propagate() -> None:
    config = _config({"main": {"database": "a", "query": "select 1 where :username = :password"}})

    async def _refuse(config: DatabaseConfig) -> _ScriptedHandle:
        raise DatabaseConnectionError("Failed to connect to 'sqlite::memory:'")

    resolver = AuthenticationResolver(config.auth_queries)
    async with DatabaseRegistry(config.databases, opener=_refuse) as registry:
        with pytest.raises(DatabaseConnectionError):
            await resolver.resolve(registry, "alice", "pw")


@pytest.mark.anyio
async def test_extracted_userid_comes_from_first_row() -> None:
    config = _config(
        {
            "main": {
                "database": "a",
                "query": "select uid, mail from users where mail=:username and pw=:password",
                "extract_userid_from": "uid",
            }
        }
    )
    databases = _ScriptedDatabases(a=_rows({"uid": 42, "mail": "a@x"}, {"uid": 43, "mail": "a@x"}))

    result = await _resolve(config, databases)

    assert result.extracted_userid == 42
    assert result.attributes == {"uid": ["42", "43"], "mail": ["a@x"]}


@pytest.mark.anyio
async def test_missing_extract_column_leaves_userid_unset() -> None:
    config = _config(
        {
            "main": {
                "database": "a",
                "query": "select mail from users where mail=:username and pw=:password",
                "extract_userid_from": "uid",
            }
        }
    )
    databases = _ScriptedDatabases(a=_rows({"mail": "a@x"}))

    result = await _resolve(config, databases)

    assert result.extracted_userid is None
    assert result.parameters_for("alice") == {"username": "alice"}


def _attr_config():  # type: ignore[no-untyped-def]
    return _config(
        {
            "A": {"database": "a", "query": "select 1 as x where :username = :password"},
            "B": {"database": "b", "query": "select 2 as x where :username = :password"},
        },
        [
            {"database": "a", "query": "select 'a-only' as tag where :userid is not null", "only_for_auth": ["A"]},
            {"database": "b", "query": "select 'b-only' as tag where :userid is not null", "only_for_auth": ["B"]},
            {"database": "c", "query": "select 'all' as tag where :userid is not null"},
        ],
    )


async def _run_attrs(config, databases: _ScriptedDatabases, result: LoginResult) -> LoginResult:  # type: ignore[no-untyped-def]
    runner = AttributeQueryRunner(config.attr_queries, auth_id="test")
    async with DatabaseRegistry(config.databases, opener=databases) as registry:
        return await runner.run(registry, result, "alice")


@pytest.mark.anyio
async def test_only_for_auth_restricts_attribute_queries() -> None:
    config = _attr_config()
    databases = _ScriptedDatabases(a=_rows({"tag": "a-only"}), b=_rows({"tag": "b-only"}), c=_rows({"tag": "all"}))

    result = await _run_attrs(config, databases, LoginResult(winning_query="B", extracted_userid=7))

    assert databases.queried == ["b", "c"]
    assert result.attributes == {"tag": ["b-only", "all"]}
    assert all(params == {"userid": 7} for _, _, params in databases.calls)


@pytest.mark.anyio
async def test_attribute_queries_use_username_without_extracted_userid() -> None:
    config = _config(
        {"main": {"database": "a", "query": "select 1 as x where :username = :password"}},
        [{"database": "a", "query": "select role from roles where uid=:username"}],
    )
    databases = _ScriptedDatabases(a=_rows({"role": "admin"}, {"role": "ops"}))

    result = await _run_attrs(config, databases, LoginResult(winning_query="main", attributes={"x": ["1"]}))

    assert databases.calls[0][2] == {"username": "alice"}
    assert result.attributes == {"x": ["1"], "role": ["admin", "ops"]}


@pytest.mark.anyio
async def test_failed_attribute_query_does_not_abort() -> None:
    config = _attr_config()
    databases = _ScriptedDatabases(a=_fail, b=_rows(), c=_rows({"tag": "all"}))

    result = await _run_attrs(config, databases, LoginResult(winning_query="A", extracted_userid=1))

    assert result.attributes == {"tag": ["all"]}
