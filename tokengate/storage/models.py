from __future__ import annotations

import base64
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict


def new_identity_id() -> str:
    """Opaque identifier: ``usr_`` plus 16 random bytes, base64url without padding."""
    raw = base64.urlsafe_b64encode(secrets.token_bytes(16)).decode("ascii")
    return "usr_" + raw.rstrip("=")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Identity:
    id: str
    email: str
    password_hash: str = field(repr=False)
    created_at: datetime = field(default_factory=_utcnow)

    def public(self) -> Dict[str, str]:
        return {"id": self.id, "email": self.email}
