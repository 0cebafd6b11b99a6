"""
auth/hashing.py -- bcrypt password hashing.

Passwords: bcrypt used directly (no passlib wrapper). passlib's internal
wrap-bug detection creates a password longer than 72 bytes, which bcrypt 4.x
rejects with an explicit error. Direct bcrypt usage is simpler and has no
compatibility shim.

The DUMMY_HASH constant enables timing equalization in CredentialVerifier so
response time does not reveal whether a username exists [C1].

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import bcrypt


class BcryptHasher:
    """PasswordHasher backed by bcrypt.

    rounds is the bcrypt cost factor. Tests pass a low value to keep the
    suite fast; production keeps the library default.
    """

    def __init__(self, rounds: int = 12) -> None:
        self.rounds = rounds

    def hash(self, plain: str) -> str:
        """Return a bcrypt hash of the given plaintext.

        Passwords longer than 72 bytes are truncated by bcrypt (a known bcrypt
        limitation). The API layer caps input at 255 chars.
        """
        return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, plain: str, hashed: str) -> bool:
        """Return True if the plaintext matches the bcrypt hash."""
        try:
            return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
        except ValueError:
            # Malformed hash in the DB -- treat as a non-match.
            return False


# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
DUMMY_HASH: str = BcryptHasher().hash("keyward_timing_dummy")
