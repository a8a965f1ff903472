"""In-process password verification against a hash column."""

from __future__ import annotations

import logging
from typing import Sequence

from passlib.context import CryptContext

from .attributes import stringify
from .errors import HashColumnError
from .models import Row

LOG = logging.getLogger(__name__)

# Verification only; sqlauth never hashes or stores passwords.
PASSWORD_CONTEXT = CryptContext(
    schemes=["bcrypt", "argon2", "sha512_crypt", "sha256_crypt", "md5_crypt", "des_crypt"],
    deprecated="auto",
)


def verify_password(plaintext: str, password_hash: str) -> bool:
    """Check ``plaintext`` against a stored one-way hash."""

    try:
        return PASSWORD_CONTEXT.verify(plaintext, password_hash)
    except ValueError:
        # Unrecognised hash format, treated as a mismatch.
        return False


def verify_password_hash(
    rows: Sequence[Row],
    hash_column: str,
    plaintext: str,
    *,
    auth_id: str = "",
    query_name: str = "",
) -> bool:
    """Verify ``plaintext`` against the single hash carried by ``rows``.

    Returns False when there are no rows or the password does not match, so the
    caller can move on to the next auth query. A hash column that is missing,
    null, empty or different between rows raises :class:`HashColumnError`.
    """

    if not rows:
        return False

    context = {"auth_id": auth_id, "query": query_name, "column": hash_column}
    password_hash: str | None = None
    for row in rows:
        value = row.get(hash_column)
        if value is None:
            LOG.error("Hash column must be present in every result row", extra=context)
            raise HashColumnError(f"column '{hash_column}' missing or null in auth query '{query_name}'")
        text = stringify(value)
        if not text:
            LOG.error("Hash column must contain a password hash", extra=context)
            raise HashColumnError(f"column '{hash_column}' empty in auth query '{query_name}'")
        if password_hash is None:
            password_hash = text
        elif password_hash != text:
            LOG.error("Hash column must be the same in every result row", extra=context)
            raise HashColumnError(f"column '{hash_column}' differs between rows in auth query '{query_name}'")

    assert password_hash is not None
    if not verify_password(plaintext, password_hash):
        LOG.error("Password verification failed", extra=context)
        return False
    LOG.debug("Password verification succeeded", extra=context)
    return True


__all__ = ["PASSWORD_CONTEXT", "verify_password", "verify_password_hash"]
