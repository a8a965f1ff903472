"""Authentication source configuration models and loading helpers."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Annotated, Any, Mapping

import tomllib

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    StrictFloat,
    StrictInt,
    StrictStr,
    ValidationError,
    field_validator,
    model_validator,
)

from .errors import ConfigurationError
from .legacy import from_password_verify1, from_sql1

NonEmptyStr = Annotated[StrictStr, Field(min_length=1)]
OptionValue = StrictStr | StrictInt | StrictFloat | StrictBool

SOURCE_TYPES = ("sql2", "sql", "password_verify")

_DELIMITED_REGEX = re.compile(r"^([/#~])(.*)\1([A-Za-z]*)$", re.DOTALL)
_REGEX_MODIFIERS = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL, "x": re.VERBOSE, "u": 0}


def _split_delimited_regex(value: str) -> tuple[str, int]:
    """Unwrap a ``/pattern/flags`` style regex into a pattern and ``re`` flags.

    Undelimited values are returned unchanged.
    """

    match = _DELIMITED_REGEX.match(value)
    if match is None:
        return value, 0
    _, pattern, modifiers = match.groups()
    unknown = sorted(set(modifiers) - set(_REGEX_MODIFIERS))
    if unknown:
        raise ValueError(f"username_regex {value!r} uses unsupported modifier(s): {', '.join(unknown)}")
    flags = 0
    for modifier in modifiers:
        flags |= _REGEX_MODIFIERS[modifier]
    return pattern, flags


class DatabaseConfig(BaseModel):
    """Connection settings for one named database."""

    model_config = ConfigDict(frozen=True)

    name: StrictStr
    dsn: StrictStr
    username: StrictStr
    password: StrictStr = Field(repr=False)
    options: dict[str, OptionValue] = Field(default_factory=dict)


class AuthQueryConfig(BaseModel):
    """A query that verifies credentials and yields the first attributes."""

    model_config = ConfigDict(frozen=True)

    name: StrictStr
    database: StrictStr
    query: NonEmptyStr
    username_regex: re.Pattern[str] | None = None
    extract_userid_from: NonEmptyStr | None = None
    password_verify_hash_column: NonEmptyStr | None = None

    @field_validator("username_regex", mode="before")
    @classmethod
    def _compile_regex(cls, value: object) -> object:
        if value is None or isinstance(value, re.Pattern):
            return value
        if not isinstance(value, str):
            raise ValueError(f"username_regex must be a string, got {type(value).__name__}")
        pattern, flags = _split_delimited_regex(value)
        try:
            return re.compile(pattern, flags)
        except re.error as exc:
            raise ValueError(f"username_regex {value!r} is not a valid regular expression: {exc}") from exc

    @property
    def verifies_hash(self) -> bool:
        return self.password_verify_hash_column is not None

    def matches(self, username: str) -> bool:
        """Return True when the username passes the optional regex gate."""

        if self.username_regex is None:
            return True
        return self.username_regex.search(username) is not None


class AttrQueryConfig(BaseModel):
    """A query contributing extra attributes after authentication."""

    model_config = ConfigDict(frozen=True)

    database: StrictStr
    query: NonEmptyStr
    only_for_auth: tuple[StrictStr, ...] | None = None

    def applies_to(self, auth_query: str) -> bool:
        if self.only_for_auth is None:
            return True
        return auth_query in self.only_for_auth


class SourceConfig(BaseModel):
    """Validated configuration of one authentication source."""

    model_config = ConfigDict(frozen=True)

    databases: dict[str, DatabaseConfig]
    auth_queries: dict[str, AuthQueryConfig]
    attr_queries: tuple[AttrQueryConfig, ...] = ()

    @model_validator(mode="before")
    @classmethod
    def _inject_names(cls, data: Any) -> Any:
        if not isinstance(data, Mapping):
            return data
        data = dict(data)
        for key in ("databases", "auth_queries"):
            entries = data.get(key)
            if isinstance(entries, Mapping):
                data[key] = {
                    name: {**entry, "name": name} if isinstance(entry, Mapping) else entry
                    for name, entry in entries.items()
                }
        attr_queries = data.get("attr_queries")
        if isinstance(attr_queries, Mapping):
            data["attr_queries"] = list(attr_queries.values())
        return data

    @model_validator(mode="after")
    def _check_references(self) -> SourceConfig:
        if not self.databases:
            raise ValueError("'databases' must contain at least one database")
        if not self.auth_queries:
            raise ValueError("'auth_queries' must contain at least one auth query")
        for name, auth_query in self.auth_queries.items():
            if auth_query.database not in self.databases:
                raise ValueError(f"Auth query '{name}' references unknown database '{auth_query.database}'")
        for index, attr_query in enumerate(self.attr_queries):
            if attr_query.database not in self.databases:
                raise ValueError(
                    f"Attribute query #{index} references unknown database '{attr_query.database}'"
                )
            for auth_name in attr_query.only_for_auth or ():
                if auth_name not in self.auth_queries:
                    raise ValueError(f"Attribute query #{index} references unknown auth query '{auth_name}'")
        return self


def parse_source_config(data: object, auth_id: str) -> SourceConfig:
    """Validate raw configuration data for the named authentication source."""

    if not isinstance(data, Mapping):
        raise ConfigurationError(
            f"Configuration for authentication source '{auth_id}' must be a mapping, got {type(data).__name__}"
        )
    try:
        return SourceConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigurationError(_describe_errors(exc, auth_id)) from exc


def load_sources(path: Path | str) -> dict[str, SourceConfig]:
    """Load every ``[sources.<auth_id>]`` table from a TOML file."""

    config_path = Path(path)
    try:
        with config_path.open("rb") as handle:
            raw = tomllib.load(handle)
    except FileNotFoundError as exc:
        raise ConfigurationError(f"Configuration file '{config_path}' does not exist") from exc
    except (tomllib.TOMLDecodeError, OSError) as exc:
        raise ConfigurationError(f"Could not read configuration file '{config_path}': {exc}") from exc

    sources = raw.get("sources")
    if not isinstance(sources, dict) or not sources:
        raise ConfigurationError(f"Configuration file '{config_path}' defines no [sources.<name>] tables")

    parsed: dict[str, SourceConfig] = {}
    for auth_id, entry in sources.items():
        if not isinstance(entry, dict):
            raise ConfigurationError(f"Source '{auth_id}' in '{config_path}' must be a table")
        parsed[auth_id] = parse_source_config(_normalize_source(auth_id, entry), auth_id)
    return parsed


def _normalize_source(auth_id: str, entry: dict[str, Any]) -> dict[str, Any]:
    entry = dict(entry)
    source_type = entry.pop("type", "sql2")
    if source_type == "sql2":
        return entry
    if source_type == "sql":
        return from_sql1(entry, auth_id)
    if source_type == "password_verify":
        return from_password_verify1(entry, auth_id)
    raise ConfigurationError(
        f"Unknown type {source_type!r} for authentication source '{auth_id}'; "
        f"expected one of {', '.join(SOURCE_TYPES)}"
    )


def _describe_errors(exc: ValidationError, auth_id: str) -> str:
    messages: list[str] = []
    for error in exc.errors():
        loc = tuple(str(part) for part in error["loc"])
        message = str(error["msg"]).removeprefix("Value error, ")
        if error["type"] == "missing" and loc:
            where = ".".join(loc[:-1]) or "the source"
            messages.append(f"Missing required attribute '{loc[-1]}' in {where}")
        elif loc:
            messages.append(f"Invalid value for '{'.'.join(loc)}': {message}")
        else:
            messages.append(message)
    return f"Invalid configuration for authentication source '{auth_id}': " + "; ".join(messages)


__all__ = [
    "AttrQueryConfig",
    "AuthQueryConfig",
    "DatabaseConfig",
    "SourceConfig",
    "load_sources",
    "parse_source_config",
]
