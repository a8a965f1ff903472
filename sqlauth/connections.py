"""Database drivers and the per-attempt connection registry."""

from __future__ import annotations

import asyncio
import logging
import re
import sqlite3
from typing import Any, Awaitable, Callable, Mapping, Protocol, Sequence, runtime_checkable
from urllib.parse import unquote, urlsplit

import asyncpg
import mysql.connector

from .config import DatabaseConfig
from .errors import ConfigurationError, DatabaseConnectionError

LOG = logging.getLogger(__name__)

PGSQL = "pgsql"
MYSQL = "mysql"
SQLITE = "sqlite"

_SCHEME_ALIASES: Mapping[str, str] = {
    "pgsql": PGSQL,
    "postgres": PGSQL,
    "postgresql": PGSQL,
    "mysql": MYSQL,
    "sqlite": SQLITE,
}

SESSION_COMMANDS: Mapping[str, str] = {
    PGSQL: "SET NAMES 'UTF8'",
    MYSQL: "SET NAMES 'utf8mb4'",
}

_CREDENTIAL_TOKEN = re.compile(r"(user|password)=([^;&]*)", re.IGNORECASE)
_URL_USERINFO = re.compile(r"(//)[^@/]*@")

_PG_TEXT_TYPES = frozenset({"text", "varchar", "bpchar", "name", "citext", "unknown"})
_PG_INTEGER_TYPES = frozenset({"int2", "int4", "int8"})


def _coerce_parameter(value: Any, type_name: str | None) -> Any:
    """Convert ``value`` to the Python type asyncpg expects for ``type_name``.

    asyncpg checks each argument against the type the server inferred for its
    ``$n`` slot. An integer userid compared with a text column, or a numeric
    username compared with an integer column, is converted here.
    """

    if value is None or type_name is None:
        return value
    if type_name in _PG_TEXT_TYPES and not isinstance(value, str):
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, (bytes, bytearray)):
            return bytes(value).decode("utf-8", errors="replace")
        return str(value)
    if type_name in _PG_INTEGER_TYPES and isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return value
    return value


@runtime_checkable
class DatabaseHandle(Protocol):
    """A live connection used for the duration of one login attempt."""

    driver: str

    async def prepare(self, sql: str) -> Any:
        """Prepare a statement already rewritten to the driver's placeholder style."""

    async def execute(self, statement: Any, params: Sequence[Any] | Mapping[str, Any]) -> Any:
        """Run a prepared statement with bound parameters."""

    async def fetch_all(self, result: Any) -> list[dict[str, object]]:
        """Collect every row of an executed statement."""

    async def command(self, sql: str) -> None:
        """Run a statement without parameters or results."""

    async def close(self) -> None:
        """Release the connection."""


HandleOpener = Callable[[DatabaseConfig], Awaitable[DatabaseHandle]]


class AsyncpgHandle:
    """PostgreSQL connection driven by asyncpg."""

    driver = PGSQL

    def __init__(self, conn: Any) -> None:
        self._conn = conn

    async def prepare(self, sql: str) -> Any:
        return await self._conn.prepare(sql)

    async def execute(self, statement: Any, params: Sequence[Any] | Mapping[str, Any]) -> Any:
        declared = [parameter.name for parameter in statement.get_parameters()]
        values = [
            _coerce_parameter(value, declared[index] if index < len(declared) else None)
            for index, value in enumerate(params)
        ]
        return await statement.fetch(*values)

    async def fetch_all(self, result: Any) -> list[dict[str, object]]:
        return [dict(record.items()) for record in result]

    async def command(self, sql: str) -> None:
        await self._conn.execute(sql)

    async def close(self) -> None:
        await self._conn.close()


class MysqlHandle:
    """MySQL connection; the blocking driver runs in a worker thread."""

    driver = MYSQL

    def __init__(self, conn: Any) -> None:
        self._conn = conn

    async def prepare(self, sql: str) -> Any:
        return sql

    async def execute(self, statement: Any, params: Sequence[Any] | Mapping[str, Any]) -> Any:
        def _run() -> Any:
            cursor = self._conn.cursor(dictionary=True)
            try:
                cursor.execute(statement, params)
            except Exception:
                cursor.close()
                raise
            return cursor

        return await asyncio.to_thread(_run)

    async def fetch_all(self, result: Any) -> list[dict[str, object]]:
        def _collect() -> list[dict[str, object]]:
            try:
                return [dict(row) for row in result.fetchall()]
            finally:
                result.close()

        return await asyncio.to_thread(_collect)

    async def command(self, sql: str) -> None:
        def _run() -> None:
            cursor = self._conn.cursor()
            try:
                cursor.execute(sql)
            finally:
                cursor.close()

        await asyncio.to_thread(_run)

    async def close(self) -> None:
        await asyncio.to_thread(self._conn.close)


class SqliteHandle:
    """SQLite connection from the standard library, run in a worker thread."""

    driver = SQLITE

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    async def prepare(self, sql: str) -> Any:
        return sql

    async def execute(self, statement: Any, params: Sequence[Any] | Mapping[str, Any]) -> Any:
        return await asyncio.to_thread(self._conn.execute, statement, params)

    async def fetch_all(self, result: Any) -> list[dict[str, object]]:
        rows = await asyncio.to_thread(result.fetchall)
        columns = [column[0] for column in result.description or ()]
        return [dict(zip(columns, row)) for row in rows]

    async def command(self, sql: str) -> None:
        await asyncio.to_thread(self._conn.execute, sql)

    async def close(self) -> None:
        await asyncio.to_thread(self._conn.close)


def driver_for(dsn: str) -> str | None:
    """Return the driver name implied by the DSN scheme, if recognised."""

    scheme = dsn.split(":", 1)[0].strip().lower()
    return _SCHEME_ALIASES.get(scheme)


def redact_dsn(dsn: str) -> str:
    """Mask credentials embedded in a connection string."""

    redacted = _CREDENTIAL_TOKEN.sub(r"\1=***", dsn)
    return _URL_USERINFO.sub(r"\1***@", redacted)


def session_command(dsn: str) -> str | None:
    """Driver-specific command issued right after connecting."""

    driver = driver_for(dsn)
    if driver is None:
        return None
    return SESSION_COMMANDS.get(driver)


async def open_handle(config: DatabaseConfig) -> DatabaseHandle:
    """Open a connection for the given database configuration."""

    driver = driver_for(config.dsn)
    try:
        if driver == PGSQL:
            return AsyncpgHandle(await asyncpg.connect(**_asyncpg_kwargs(config)))
        if driver == MYSQL:
            conn = await asyncio.to_thread(mysql.connector.connect, **_mysql_kwargs(config))
            return MysqlHandle(conn)
        if driver == SQLITE:
            path, uri = _sqlite_target(config.dsn)
            conn = await asyncio.to_thread(
                sqlite3.connect, path, uri=uri, check_same_thread=False, **config.options
            )
            return SqliteHandle(conn)
    except Exception as exc:
        raise DatabaseConnectionError(f"Failed to connect to '{redact_dsn(config.dsn)}': {exc}") from exc
    raise DatabaseConnectionError(f"Unsupported database driver in DSN '{redact_dsn(config.dsn)}'")


class DatabaseRegistry:
    """Lazily opens and caches one handle per database for one login attempt."""

    def __init__(
        self,
        databases: Mapping[str, DatabaseConfig],
        *,
        auth_id: str = "",
        opener: HandleOpener | None = None,
    ) -> None:
        self._databases = databases
        self._auth_id = auth_id
        self._opener = opener or open_handle
        self._handles: dict[str, DatabaseHandle] = {}

    @property
    def connected(self) -> tuple[str, ...]:
        """Names of databases with a live handle."""

        return tuple(self._handles)

    async def connect(self, name: str) -> DatabaseHandle:
        """Return the cached handle for ``name``, opening it on first use."""

        config = self._databases.get(name)
        if config is None:
            raise ConfigurationError(
                f"Attempt to connect to unknown database '{name}' for authentication source '{self._auth_id}'"
            )
        handle = self._handles.get(name)
        if handle is not None:
            return handle

        handle = await self._opener(config)
        command = session_command(config.dsn)
        if command:
            try:
                await handle.command(command)
            except Exception as exc:
                await _close_quietly(handle, name)
                raise DatabaseConnectionError(
                    f"Failed to initialise session on '{redact_dsn(config.dsn)}': {exc}"
                ) from exc
        self._handles[name] = handle
        LOG.debug("Connected to database", extra={"auth_id": self._auth_id, "database": name})
        return handle

    async def disconnect_all(self) -> None:
        """Close every handle opened during this attempt."""

        handles, self._handles = self._handles, {}
        for name, handle in handles.items():
            await _close_quietly(handle, name)
            LOG.debug("Disconnected from database", extra={"auth_id": self._auth_id, "database": name})

    async def __aenter__(self) -> DatabaseRegistry:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.disconnect_all()


async def _close_quietly(handle: DatabaseHandle, name: str) -> None:
    try:
        await handle.close()
    except Exception:  # pragma: no cover - best effort cleanup
        LOG.exception("Failed to close database handle", extra={"database": name})


def _key_values(body: str) -> dict[str, str]:
    pairs: dict[str, str] = {}
    for chunk in body.split(";"):
        key, sep, value = chunk.partition("=")
        if sep and key.strip():
            pairs[key.strip().lower()] = value.strip()
    return pairs


def _asyncpg_kwargs(config: DatabaseConfig) -> dict[str, object]:
    body = config.dsn.split(":", 1)[1]
    kwargs: dict[str, object] = {}
    if body.startswith("//"):
        kwargs["dsn"] = "postgresql:" + body
    else:
        pairs = _key_values(body)
        for source, target in (("host", "host"), ("dbname", "database"), ("user", "user"), ("password", "password")):
            if pairs.get(source):
                kwargs[target] = pairs[source]
        if pairs.get("port"):
            kwargs["port"] = int(pairs["port"])
    if config.username:
        kwargs["user"] = config.username
    if config.password:
        kwargs["password"] = config.password
    kwargs.update(config.options)
    return kwargs


def _mysql_kwargs(config: DatabaseConfig) -> dict[str, object]:
    body = config.dsn.split(":", 1)[1]
    kwargs: dict[str, object] = {}
    if body.startswith("//"):
        url = urlsplit("mysql:" + body)
        if url.hostname:
            kwargs["host"] = url.hostname
        if url.port:
            kwargs["port"] = url.port
        if url.path.strip("/"):
            kwargs["database"] = unquote(url.path.strip("/"))
        if url.username:
            kwargs["user"] = unquote(url.username)
        if url.password:
            kwargs["password"] = unquote(url.password)
    else:
        pairs = _key_values(body)
        for source, target in (
            ("host", "host"),
            ("dbname", "database"),
            ("unix_socket", "unix_socket"),
            ("charset", "charset"),
        ):
            if pairs.get(source):
                kwargs[target] = pairs[source]
        if pairs.get("port"):
            kwargs["port"] = int(pairs["port"])
    if config.username:
        kwargs["user"] = config.username
    if config.password:
        kwargs["password"] = config.password
    kwargs.update(config.options)
    return kwargs


def _sqlite_target(dsn: str) -> tuple[str, bool]:
    body = dsn.split(":", 1)[1]
    if body.startswith("//"):
        body = body[2:]
    if not body:
        body = ":memory:"
    return body, body.startswith("file:")


__all__ = [
    "AsyncpgHandle",
    "DatabaseHandle",
    "DatabaseRegistry",
    "HandleOpener",
    "MysqlHandle",
    "SqliteHandle",
    "driver_for",
    "open_handle",
    "redact_dsn",
    "session_command",
]
