"""SQL-backed credential verification and attribute aggregation."""

from .config import AttrQueryConfig, AuthQueryConfig, DatabaseConfig, SourceConfig, load_sources, parse_source_config
from .errors import (
    AuthenticationError,
    ConfigurationError,
    DatabaseConnectionError,
    HashColumnError,
    QueryError,
    SqlAuthError,
)
from .models import AttributeSet, LoginResult, QueryState
from .source import SqlAuthSource

__version__ = "0.1.0"

__all__ = [
    "AttrQueryConfig",
    "AttributeSet",
    "AuthQueryConfig",
    "AuthenticationError",
    "ConfigurationError",
    "DatabaseConfig",
    "DatabaseConnectionError",
    "HashColumnError",
    "LoginResult",
    "QueryError",
    "QueryState",
    "SourceConfig",
    "SqlAuthError",
    "SqlAuthSource",
    "load_sources",
    "parse_source_config",
]
