"""Contract and helpers shared between the memory and postgres identity stores."""

from __future__ import annotations

import unicodedata
from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Protocol

from tokengate.context import CallContext
from tokengate.storage.models import Identity


def normalize_email(email: str) -> str:
    """Canonical form of an email used as the unique secondary key."""
    return unicodedata.normalize("NFKC", email.strip()).lower()


class IdentityStore(Protocol):
    """Capabilities every identity backend provides.

    ``create`` raises ``AlreadyExists`` when the normalized email (or id) is
    taken; lookups raise ``NotFound``. Every operation raises
    ``OperationCancelled`` without touching state when ``ctx`` is already
    cancelled, and durable backends raise ``StoreUnavailable`` on timeouts.
    """

    def create(self, identity: Identity, ctx: Optional[CallContext] = None) -> None: ...

    def find_by_secondary_key(
        self, email: str, ctx: Optional[CallContext] = None
    ) -> Identity: ...

    def find_by_identifier(
        self, identity_id: str, ctx: Optional[CallContext] = None
    ) -> Identity: ...

    def ping(self, ctx: Optional[CallContext] = None) -> None: ...


def identity_from_row(row: Mapping[str, Any]) -> Identity:
    created_at = row.get("created_at") or datetime.now(timezone.utc)
    if isinstance(created_at, datetime) and created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    return Identity(
        id=str(row["id"]),
        email=row["email"],
        password_hash=row["password_hash"],
        created_at=created_at,
    )


__all__ = ["IdentityStore", "identity_from_row", "normalize_email"]
