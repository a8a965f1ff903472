"""Adapters rewriting single-database configurations into the multi-query schema."""

from __future__ import annotations

from typing import Any, Mapping

from .errors import ConfigurationError

DEFAULT_NAME = "default"
DEFAULT_HASH_COLUMN = "passwordhash"


def from_sql1(config: Mapping[str, Any], auth_id: str = DEFAULT_NAME) -> dict[str, Any]:
    """Translate a flat ``dsn`` + ``query`` configuration.

    The first query authenticates, any further queries only add attributes.
    """

    queries = _queries(config, auth_id)
    database: dict[str, Any] = {param: config[param] for param in ("dsn", "username", "password")}
    if "options" in config:
        database["options"] = config["options"]

    auth_query: dict[str, Any] = {"database": DEFAULT_NAME, "query": queries[0]}
    if "username_regex" in config:
        auth_query["username_regex"] = config["username_regex"]

    return {
        "databases": {DEFAULT_NAME: database},
        "auth_queries": {DEFAULT_NAME: auth_query},
        "attr_queries": [{"database": DEFAULT_NAME, "query": query} for query in queries[1:]],
    }


def from_password_verify1(config: Mapping[str, Any], auth_id: str = DEFAULT_NAME) -> dict[str, Any]:
    """Like :func:`from_sql1`, verifying the password against a hash column in-process."""

    translated = from_sql1(config, auth_id)
    translated["auth_queries"][DEFAULT_NAME]["password_verify_hash_column"] = config.get(
        "passwordhash_column", DEFAULT_HASH_COLUMN
    )
    return translated


def _queries(config: Mapping[str, Any], auth_id: str) -> list[Any]:
    for param in ("dsn", "username", "password", "query"):
        if param not in config:
            raise ConfigurationError(f"Missing required attribute '{param}' for authentication source '{auth_id}'")
    query = config["query"]
    if isinstance(query, str):
        return [query]
    if not isinstance(query, (list, tuple)):
        raise ConfigurationError(
            f"Attribute 'query' for authentication source '{auth_id}' must be a string or a list of strings"
        )
    if not query:
        raise ConfigurationError(f"Attribute 'query' for authentication source '{auth_id}' is an empty list")
    return list(query)


__all__ = ["DEFAULT_HASH_COLUMN", "from_password_verify1", "from_sql1"]
