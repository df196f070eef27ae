"""
auth/passwords.py -- bcrypt password hashing.

bcrypt is used directly rather than through passlib: passlib's wrap-bug
detection builds a password longer than 72 bytes, which bcrypt 4.x rejects
with an explicit error. Direct usage has no compatibility shim.

The cost factor is fixed per process (Settings.bcrypt_rounds). Hashes carry
their own cost, so raising the setting later still verifies old hashes.

Plaintext passwords are never logged or stored by this module.
"""

from __future__ import annotations

import bcrypt

# bcrypt only looks at the first 72 bytes of its input.
MAX_PASSWORD_BYTES = 72


class PasswordHasher:
    """Salted, adaptive password hashing.

    Usage:
        hasher = PasswordHasher(rounds=12)
        digest = hasher.hash("longenough1")
        hasher.verify("longenough1", digest)   # True
    """

    def __init__(self, rounds: int = 12) -> None:
        self.rounds = rounds
        # Timing equalization dummy hash [C1].
        # Computed once at construction so the first signin attempt is not
        # measurably slower than later ones.
        self._dummy_hash = self.hash("authkit_timing_dummy")

    def hash(self, plain: str) -> str:
        """Return a bcrypt hash of the given plaintext password."""
        return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, plain: str, hashed: str) -> bool:
        """Return True if the plaintext password matches the bcrypt hash.

        Malformed hashes and over-long inputs verify as False rather than raising.
        """
        try:
            return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
        except ValueError:
            return False

    def dummy_verify(self, plain: str) -> bool:
        """Burn one verification's worth of CPU for an account that does not exist.

        Always call this when the email is unknown so response time does not
        reveal whether an account exists [C1]. Always returns False.
        """
        self.verify(plain, self._dummy_hash)
        return False
