"""Public login entry point for an SQL-backed authentication source."""

from __future__ import annotations

import logging
from typing import Mapping

from .attribute_queries import AttributeQueryRunner
from .config import SourceConfig, parse_source_config
from .connections import DatabaseRegistry, HandleOpener
from .models import AttributeSet, LoginResult
from .resolver import AuthenticationResolver

LOG = logging.getLogger(__name__)


class SqlAuthSource:
    """Verifies credentials and gathers attributes across SQL databases.

    The instance holds read-only configuration only. Every :meth:`login` call
    gets its own :class:`DatabaseRegistry`, so concurrent logins never share
    handles or resolution state.
    """

    def __init__(
        self,
        auth_id: str,
        config: SourceConfig,
        *,
        opener: HandleOpener | None = None,
    ) -> None:
        self._auth_id = auth_id
        self._config = config
        self._opener = opener
        self._resolver = AuthenticationResolver(config.auth_queries, auth_id=auth_id)
        self._runner = AttributeQueryRunner(config.attr_queries, auth_id=auth_id)

    @classmethod
    def from_mapping(
        cls,
        auth_id: str,
        data: Mapping[str, object],
        *,
        opener: HandleOpener | None = None,
    ) -> SqlAuthSource:
        """Validate raw configuration and build a source from it."""

        return cls(auth_id, parse_source_config(data, auth_id), opener=opener)

    @property
    def auth_id(self) -> str:
        return self._auth_id

    @property
    def config(self) -> SourceConfig:
        return self._config

    async def login(self, username: str, password: str) -> AttributeSet:
        """Return the user's attributes or raise ``AuthenticationError``."""

        result = await self.authenticate(username, password)
        return result.attributes

    async def authenticate(self, username: str, password: str) -> LoginResult:
        """Like :meth:`login`, returning the full per-call result record."""

        async with DatabaseRegistry(self._config.databases, auth_id=self._auth_id, opener=self._opener) as registry:
            result = await self._resolver.resolve(registry, username, password)
            await self._runner.run(registry, result, username)
        LOG.info(
            "Attributes: %s",
            ",".join(result.attributes),
            extra={"auth_id": self._auth_id, "winning_query": result.winning_query},
        )
        return result


__all__ = ["SqlAuthSource"]
