"""Credential hashing collaborator.

Snapshots never contain recoverable credentials, so a restore manufactures
one replacement credential and assigns it to every restored customer and
reseller account.  The engine only sees the opaque hash.
"""

from typing import Protocol

from passlib.context import CryptContext


class CredentialHasher(Protocol):
    """Black-box ``hash(plaintext) -> opaque credential`` function."""

    def hash(self, plaintext: str) -> str:
        ...


class PasslibCredentialHasher:
    """bcrypt hashing through passlib.

    The same context verifies logins elsewhere in the system, so hashes
    written by a restore are accepted by the normal login path.
    """

    def __init__(self, schemes: list[str] | None = None) -> None:
        self._context = CryptContext(schemes=schemes or ["bcrypt"], deprecated="auto")

    def hash(self, plaintext: str) -> str:
        return self._context.hash(plaintext)

    def verify(self, plaintext: str, hashed: str) -> bool:
        return self._context.verify(plaintext, hashed)
