"""Attribute queries executed after a winning auth query."""

from __future__ import annotations

import logging
from typing import Sequence

from .attributes import merge_attributes
from .config import AttrQueryConfig
from .connections import DatabaseRegistry
from .errors import QueryError
from .models import LoginResult
from .query import execute_query

LOG = logging.getLogger(__name__)


class AttributeQueryRunner:
    """Adds attributes from every query applicable to the winning auth query."""

    def __init__(self, attr_queries: Sequence[AttrQueryConfig], *, auth_id: str = "") -> None:
        self._attr_queries = attr_queries
        self._auth_id = auth_id

    async def run(self, registry: DatabaseRegistry, result: LoginResult, username: str) -> LoginResult:
        params = result.parameters_for(username)
        for index, attr_query in enumerate(self._attr_queries):
            context = {"auth_id": self._auth_id, "attr_query": index, "winning_query": result.winning_query}
            if not attr_query.applies_to(result.winning_query):
                LOG.debug("Skipping attribute query, it does not apply to the winning auth query", extra=context)
                continue

            handle = await registry.connect(attr_query.database)
            try:
                rows = await execute_query(handle, attr_query.query, params)
            except QueryError as exc:
                LOG.error("Attribute query failed: %s", exc, extra={**context, "stage": exc.stage})
                continue

            LOG.debug("Attribute query returned rows", extra={**context, "rows": len(rows)})
            merge_attributes(result.attributes, rows)
        return result


__all__ = ["AttributeQueryRunner"]
