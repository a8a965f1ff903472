"""Exception hierarchy shared by the authentication engine."""

from __future__ import annotations

WRONG_USER_PASS = "WRONGUSERPASS"


class SqlAuthError(RuntimeError):
    """Base class for every error raised by sqlauth."""


class ConfigurationError(SqlAuthError):
    """Raised when an authentication source configuration is malformed."""


class DatabaseConnectionError(SqlAuthError):
    """Raised when a database connection cannot be established."""


class QueryError(SqlAuthError):
    """Raised when a query fails to prepare, execute or fetch."""

    def __init__(self, stage: str, message: str) -> None:
        super().__init__(f"Failed to {stage} query: {message}")
        self.stage = stage
        self.driver_message = message


class AuthenticationError(SqlAuthError):
    """The single user-facing "invalid credentials" signal."""

    def __init__(self, code: str = WRONG_USER_PASS) -> None:
        super().__init__(code)
        self.code = code


class HashColumnError(AuthenticationError):
    """Hash column missing, empty or inconsistent across rows.

    Surfaces to users exactly like a wrong password; the distinct type only
    exists so operators can tell a broken auth query from bad credentials.
    """

    def __init__(self, reason: str) -> None:
        super().__init__(WRONG_USER_PASS)
        self.reason = reason


__all__ = [
    "AuthenticationError",
    "ConfigurationError",
    "DatabaseConnectionError",
    "HashColumnError",
    "QueryError",
    "SqlAuthError",
    "WRONG_USER_PASS",
]
