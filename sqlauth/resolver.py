"""Ordered evaluation of auth queries until the first one wins."""

from __future__ import annotations

import logging
from typing import Mapping

from .attributes import merge_attributes
from .config import AuthQueryConfig
from .connections import DatabaseRegistry
from .errors import AuthenticationError, QueryError
from .models import AttributeSet, AuthQueryOutcome, LoginResult, QueryState, Row
from .passwords import verify_password_hash
from .query import execute_query

LOG = logging.getLogger(__name__)


class AuthenticationResolver:
    """Runs auth queries in configuration order; the first success wins.

    Resolution state lives in the returned :class:`LoginResult` so one resolver
    (and the configuration behind it) can serve concurrent logins.
    """

    def __init__(self, auth_queries: Mapping[str, AuthQueryConfig], *, auth_id: str = "") -> None:
        self._auth_queries = auth_queries
        self._auth_id = auth_id

    async def resolve(self, registry: DatabaseRegistry, username: str, password: str) -> LoginResult:
        """Return the winning query's result or raise ``AuthenticationError``."""

        states = {name: QueryState.PENDING for name in self._auth_queries}
        for name, auth_query in self._auth_queries.items():
            context = {"auth_id": self._auth_id, "query": name}
            if not auth_query.matches(username):
                states[name] = QueryState.SKIPPED
                LOG.debug("Skipping auth query, username does not match username_regex", extra=context)
                continue

            LOG.debug("Trying auth query", extra=context)
            states[name] = QueryState.TRIED
            rows = await self._run(registry, auth_query, username, password)
            if rows is not None and self._succeeded(auth_query, rows, password):
                states[name] = QueryState.WON
                LOG.debug("Auth query succeeded", extra={**context, "rows": len(rows)})
                return self._won(auth_query, rows, states)

            states[name] = QueryState.FAILED
            LOG.debug("Auth query did not authenticate, trying next auth query", extra=context)

        LOG.error(
            "No auth query succeeded, probably wrong username or password",
            extra={"auth_id": self._auth_id},
        )
        raise AuthenticationError()

    async def _run(
        self,
        registry: DatabaseRegistry,
        auth_query: AuthQueryConfig,
        username: str,
        password: str,
    ) -> list[Row] | None:
        handle = await registry.connect(auth_query.database)
        params: dict[str, object] = {"username": username}
        if not auth_query.verifies_hash:
            params["password"] = password
        try:
            return await execute_query(handle, auth_query.query, params)
        except QueryError as exc:
            LOG.error(
                "Auth query failed: %s",
                exc,
                extra={"auth_id": self._auth_id, "query": auth_query.name, "stage": exc.stage},
            )
            return None

    def _succeeded(self, auth_query: AuthQueryConfig, rows: list[Row], password: str) -> bool:
        if not rows:
            return False
        if auth_query.password_verify_hash_column is None:
            return True
        return verify_password_hash(
            rows,
            auth_query.password_verify_hash_column,
            password,
            auth_id=self._auth_id,
            query_name=auth_query.name,
        )

    def _won(
        self,
        auth_query: AuthQueryConfig,
        rows: list[Row],
        states: Mapping[str, QueryState],
    ) -> LoginResult:
        attributes: AttributeSet = {}
        forbidden = (auth_query.password_verify_hash_column,) if auth_query.verifies_hash else ()
        merge_attributes(attributes, rows, forbidden)
        return LoginResult(
            winning_query=auth_query.name,
            extracted_userid=self._extract_userid(auth_query, rows[0]),
            attributes=attributes,
            outcomes=tuple(AuthQueryOutcome(name, state) for name, state in states.items()),
        )

    def _extract_userid(self, auth_query: AuthQueryConfig, row: Row) -> object | None:
        column = auth_query.extract_userid_from
        if column is None:
            return None
        value = row.get(column)
        if value is None:
            LOG.warning(
                "extract_userid_from column missing or null, attribute queries will use the username",
                extra={"auth_id": self._auth_id, "query": auth_query.name, "column": column},
            )
        return value


__all__ = ["AuthenticationResolver"]
