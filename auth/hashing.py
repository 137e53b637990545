"""
auth/hashing.py -- Memory-hard password hashing (Argon2id via argon2-cffi).

Digests are self-describing PHC strings ($argon2id$v=19$m=...,t=...,p=...$salt$hash),
so verification always runs under the parameters embedded at hash time, and
raising the cost later does not break existing accounts (needs_rehash() tells
the login flow when to upgrade a digest).

verify() compares in constant time inside libargon2. A malformed digest raises
HashError; callers must treat that exactly like a wrong password and never
surface the difference to the client.

The dummy digest enables timing equalization in the login flow: when the email
is unknown, verify_dummy() burns the same CPU and memory as a real check, so
response time does not reveal whether the account exists.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from argon2 import PasswordHasher, Type
from argon2.exceptions import HashingError, InvalidHash, VerificationError, VerifyMismatchError

from core.errors import HashError


class CredentialHasher:
    """Hash and verify passwords with tunable Argon2id cost.

    Defaults follow the argon2-cffi RFC 9106 "low memory" profile. Tests pass
    much smaller costs through Settings to keep the suite fast.
    """

    def __init__(self, time_cost: int = 3, memory_cost: int = 65536, parallelism: int = 4) -> None:
        self._hasher = PasswordHasher(
            time_cost=time_cost,
            memory_cost=memory_cost,
            parallelism=parallelism,
            type=Type.ID,
        )
        self._dummy_digest = self.hash("authcore_timing_dummy")

    def hash(self, password: str) -> str:
        """Return a PHC-format digest with a fresh random salt.

        Raises HashError only if the entropy source or the encoder fails.
        """
        try:
            return self._hasher.hash(password)
        except (HashingError, UnicodeError) as exc:
            raise HashError("password hashing failed") from exc

    def verify(self, password: str, digest: str) -> bool:
        """Return True if password matches digest.

        Raises HashError when digest is not a well-formed Argon2 digest.
        """
        try:
            return self._hasher.verify(digest, password)
        except VerifyMismatchError:
            return False
        except (InvalidHash, VerificationError, UnicodeError) as exc:
            raise HashError("stored digest is not verifiable") from exc

    def verify_dummy(self, password: str) -> None:
        """Spend one verification's worth of work against a throwaway digest."""
        self.verify(password, self._dummy_digest)

    def needs_rehash(self, digest: str) -> bool:
        try:
            return self._hasher.check_needs_rehash(digest)
        except (InvalidHash, ValueError):
            return False
