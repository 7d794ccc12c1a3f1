"""Argon2id password hashing with a self-describing encoding.

Stored form::

    argon2id$v=19$m=131072,t=3,p=4$<salt>$<derived key>

where salt and key are base64url without padding. Everything needed to
re-derive the key travels with the string, so verification never depends on
the currently configured cost parameters.
"""

from __future__ import annotations

import base64
import binascii
import hmac
import re
import secrets
from dataclasses import dataclass
from typing import Optional

from argon2.exceptions import HashingError
from argon2.low_level import ARGON2_VERSION, Type, hash_secret_raw

from tokengate.logging import get_logger
from tokengate.service.errors import HashingFailed

logger = get_logger(__name__)

ALGORITHM = "argon2id"
MIN_SALT_BYTES = 16

# Upper bounds applied to parameters read back from storage so a corrupted
# or hostile row cannot make verification allocate unbounded memory.
_MAX_MEMORY_COST = 1 << 22  # KiB, 4 GiB
_MAX_ITERATIONS = 64
_MAX_PARALLELISM = 255
_KEY_LEN_RANGE = (16, 128)

_PARAMS_RE = re.compile(r"^m=(\d+),t=(\d+),p=(\d+)$")


def _b64encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def _b64decode(segment: str) -> bytes:
    padding = "=" * ((4 - len(segment) % 4) % 4)
    return base64.b64decode(segment + padding, altchars=b"-_", validate=True)


@dataclass(frozen=True)
class HashedSecret:
    algorithm: str
    version: int
    memory_cost: int
    iterations: int
    parallelism: int
    salt: bytes
    key: bytes

    def encode(self) -> str:
        return "{}$v={}$m={},t={},p={}${}${}".format(
            self.algorithm,
            self.version,
            self.memory_cost,
            self.iterations,
            self.parallelism,
            _b64encode(self.salt),
            _b64encode(self.key),
        )

    @classmethod
    def decode(cls, encoded: str) -> "HashedSecret":
        """Parse an encoded hash; raises ``ValueError`` on any malformation."""
        parts = encoded.split("$")
        if len(parts) != 5:
            raise ValueError("expected five '$'-separated fields")
        algorithm, version_part, params_part, salt_part, key_part = parts
        if not version_part.startswith("v="):
            raise ValueError("missing version field")
        version = int(version_part[2:])
        match = _PARAMS_RE.match(params_part)
        if not match:
            raise ValueError("malformed parameter field")
        memory_cost, iterations, parallelism = (int(v) for v in match.groups())
        try:
            salt = _b64decode(salt_part)
            key = _b64decode(key_part)
        except (binascii.Error, ValueError) as exc:
            raise ValueError("salt or key is not base64url") from exc
        return cls(
            algorithm=algorithm,
            version=version,
            memory_cost=memory_cost,
            iterations=iterations,
            parallelism=parallelism,
            salt=salt,
            key=key,
        )


def constant_time_equal(expected: bytes, actual: bytes) -> bool:
    if len(expected) != len(actual):
        return False
    return hmac.compare_digest(expected, actual)


class CredentialHasher:
    """Hash and verify passwords with Argon2id.

    The defaults (128 MiB, 3 passes, 4 lanes) take a few hundred milliseconds;
    callers must never hold a shared lock across ``hash`` or ``verify``.
    """

    def __init__(
        self,
        *,
        memory_cost: int = 128 * 1024,
        iterations: int = 3,
        parallelism: int = 4,
        key_len: int = 32,
        salt_len: int = MIN_SALT_BYTES,
    ) -> None:
        if salt_len < MIN_SALT_BYTES:
            raise ValueError(f"salt_len must be at least {MIN_SALT_BYTES} bytes")
        self.memory_cost = memory_cost
        self.iterations = iterations
        self.parallelism = parallelism
        self.key_len = key_len
        self.salt_len = salt_len

    def _derive(
        self,
        password: str,
        salt: bytes,
        *,
        memory_cost: int,
        iterations: int,
        parallelism: int,
        key_len: int,
    ) -> bytes:
        return hash_secret_raw(
            secret=password.encode("utf-8"),
            salt=salt,
            time_cost=iterations,
            memory_cost=memory_cost,
            parallelism=parallelism,
            hash_len=key_len,
            type=Type.ID,
            version=ARGON2_VERSION,
        )

    def hash(self, password: str, *, salt: Optional[bytes] = None) -> str:
        """Return the encoded hash of ``password``.

        ``salt`` exists so tests can pin the output; production callers leave
        it unset and get a fresh random salt every call.
        """
        if salt is None:
            salt = secrets.token_bytes(self.salt_len)
        elif len(salt) < MIN_SALT_BYTES:
            raise HashingFailed("salt too short")
        try:
            key = self._derive(
                password,
                salt,
                memory_cost=self.memory_cost,
                iterations=self.iterations,
                parallelism=self.parallelism,
                key_len=self.key_len,
            )
        except (HashingError, ValueError, UnicodeEncodeError) as exc:
            logger.error("password_hash_failed", error_type=type(exc).__name__)
            raise HashingFailed("failed to hash password") from exc
        return HashedSecret(
            algorithm=ALGORITHM,
            version=ARGON2_VERSION,
            memory_cost=self.memory_cost,
            iterations=self.iterations,
            parallelism=self.parallelism,
            salt=salt,
            key=key,
        ).encode()

    def verify(self, stored: str, candidate: str) -> bool:
        """Check ``candidate`` against ``stored``; malformed input is simply False."""
        try:
            record = HashedSecret.decode(stored)
        except (ValueError, AttributeError):
            return False
        if record.algorithm != ALGORITHM or record.version != ARGON2_VERSION:
            return False
        if not (
            0 < record.memory_cost <= _MAX_MEMORY_COST
            and 0 < record.iterations <= _MAX_ITERATIONS
            and 0 < record.parallelism <= _MAX_PARALLELISM
            and _KEY_LEN_RANGE[0] <= len(record.key) <= _KEY_LEN_RANGE[1]
        ):
            return False
        try:
            derived = self._derive(
                candidate,
                record.salt,
                memory_cost=record.memory_cost,
                iterations=record.iterations,
                parallelism=record.parallelism,
                key_len=len(record.key),
            )
        except (HashingError, ValueError, UnicodeEncodeError):
            return False
        return constant_time_equal(record.key, derived)

    def needs_rehash(self, stored: str) -> bool:
        try:
            record = HashedSecret.decode(stored)
        except ValueError:
            return True
        return (
            record.algorithm != ALGORITHM
            or record.version != ARGON2_VERSION
            or record.memory_cost != self.memory_cost
            or record.iterations != self.iterations
            or record.parallelism != self.parallelism
            or len(record.key) != self.key_len
        )


__all__ = ["CredentialHasher", "HashedSecret", "constant_time_equal"]
