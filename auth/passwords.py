"""
auth/passwords.py -- Salted PBKDF2 password hashing and temporary passwords.

Security design decisions:
  Algorithm: PBKDF2-HMAC-SHA256 via hashlib, 310,000 iterations minimum,
       32-byte derived key. Salt and hash are stored in separate columns as
       base64 text, so existing rows stay verifiable if the iteration count is
       ever raised for new hashes only by a later migration.

  Salt: secrets.token_bytes(16) -- 128 bits per account.

  Comparison: hmac.compare_digest, so verification time does not depend on
       how many leading bytes of the candidate hash match.

  Temporary passwords: drawn with secrets.choice from an alphabet without
       0/O, 1/I/l so an admin can read one out to a user.

Failure policy: an unusable digest or a too-low work factor is a
ConfigurationError raised from the constructor, i.e. at startup.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import secrets

from auth.errors import ConfigurationError

MIN_ITERATIONS = 310_000
SALT_BYTES = 16
KEY_BYTES = 32

READABLE_ALPHABET = "ABCDEFGHJKMNPQRSTUVWXYZabcdefghijkmnpqrstuvwxyz23456789"


class PasswordHasher:
    """Derives and verifies salted PBKDF2 password hashes.

    Usage:
        hasher = PasswordHasher()
        salt = hasher.generate_salt()
        stored = hasher.hash("s3cret", salt)
        hasher.verify("s3cret", salt, stored)   # True

    Instances hold no mutable state and are safe to share between threads.
    """

    def __init__(self, iterations: int = MIN_ITERATIONS, digest: str = "sha256") -> None:
        if iterations < MIN_ITERATIONS:
            raise ConfigurationError(f"PBKDF2 needs at least {MIN_ITERATIONS} iterations, got {iterations}.")
        if digest not in hashlib.algorithms_available:
            raise ConfigurationError(f"Hash algorithm {digest!r} is not available.")
        self.iterations = iterations
        self.digest = digest

    @staticmethod
    def generate_salt() -> str:
        return base64.b64encode(secrets.token_bytes(SALT_BYTES)).decode("ascii")

    def hash(self, password: str, salt: str) -> str:
        """Return base64(PBKDF2-HMAC(password, salt)). Deterministic per (password, salt)."""
        try:
            raw_salt = base64.b64decode(salt.encode("ascii"), validate=True)
        except (binascii.Error, UnicodeEncodeError) as exc:
            raise ConfigurationError("Stored password salt is not valid base64.") from exc
        try:
            derived = hashlib.pbkdf2_hmac(
                self.digest,
                password.encode("utf-8"),
                raw_salt,
                self.iterations,
                dklen=KEY_BYTES,
            )
        except ValueError as exc:
            raise ConfigurationError(f"Password hashing failed: {exc}") from exc
        return base64.b64encode(derived).decode("ascii")

    def verify(self, password: str, salt: str | None, expected_hash: str | None) -> bool:
        """Return True if password hashes to expected_hash under salt.

        Rows without a salt or hash never verify.
        """
        if not salt or not expected_hash:
            return False
        candidate = self.hash(password, salt)
        return hmac.compare_digest(candidate.encode("ascii"), expected_hash.encode("ascii"))


def generate_temporary_password(length: int = 12) -> str:
    """Return a random password built only from READABLE_ALPHABET."""
    return "".join(secrets.choice(READABLE_ALPHABET) for _ in range(length))
