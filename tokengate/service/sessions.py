from __future__ import annotations

import secrets
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from tokengate.context import CallContext, ensure_context
from tokengate.logging import get_logger
from tokengate.service.errors import (
    ConflictError,
    InvalidCredentials,
    InvalidToken,
    UnavailableError,
)
from tokengate.service.passwords import CredentialHasher
from tokengate.service.tokens import TokenIssuer, TokenKind, TokenValidator
from tokengate.storage.common import IdentityStore, normalize_email
from tokengate.storage.errors import AlreadyExists, NotFound, StoreUnavailable
from tokengate.storage.models import Identity, new_identity_id


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int
    token_type: str = "Bearer"

    def as_dict(self) -> dict:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "token_type": self.token_type,
            "expires_in": self.expires_in,
        }


class SessionService:
    """Registration, password login and refresh on top of an identity store."""

    def __init__(
        self,
        store: IdentityStore,
        hasher: CredentialHasher,
        issuer: TokenIssuer,
        validator: TokenValidator,
    ) -> None:
        self.store = store
        self.hasher = hasher
        self.issuer = issuer
        self.validator = validator
        self.logger = get_logger(__name__)
        self._dummy_hash: Optional[str] = None
        self._dummy_lock = threading.Lock()

    def _dummy_stored_hash(self) -> str:
        # Hashed with the live parameters so an unknown-email login costs
        # the same as a wrong password.
        if self._dummy_hash is None:
            with self._dummy_lock:
                if self._dummy_hash is None:
                    self._dummy_hash = self.hasher.hash(secrets.token_urlsafe(16))
        return self._dummy_hash

    def register(
        self, email: str, password: str, ctx: Optional[CallContext] = None
    ) -> Identity:
        ctx = ensure_context(ctx)
        normalized = normalize_email(email)
        try:
            self.store.find_by_secondary_key(normalized, ctx)
        except NotFound:
            pass
        except StoreUnavailable as exc:
            raise UnavailableError("identity store unavailable") from exc
        else:
            raise ConflictError("email already registered", detail={"field": "email"})

        password_hash = self.hasher.hash(password)
        identity = Identity(
            id=new_identity_id(),
            email=normalized,
            password_hash=password_hash,
            created_at=datetime.now(timezone.utc),
        )
        try:
            self.store.create(identity, ctx)
        except AlreadyExists as exc:
            raise ConflictError("email already registered", detail={"field": "email"}) from exc
        except StoreUnavailable as exc:
            raise UnavailableError("identity store unavailable") from exc
        self.logger.info("identity_registered", user_id=identity.id)
        return identity

    def login(
        self, email: str, password: str, ctx: Optional[CallContext] = None
    ) -> TokenPair:
        ctx = ensure_context(ctx)
        try:
            identity = self.store.find_by_secondary_key(email, ctx)
        except NotFound:
            self.hasher.verify(self._dummy_stored_hash(), password)
            self.logger.info("login_rejected")
            raise InvalidCredentials()
        except StoreUnavailable as exc:
            raise UnavailableError("identity store unavailable") from exc

        if not self.hasher.verify(identity.password_hash, password):
            self.logger.info("login_rejected")
            raise InvalidCredentials()
        if self.hasher.needs_rehash(identity.password_hash):
            self.logger.info("password_hash_outdated", user_id=identity.id)

        access = self.issuer.issue(identity, TokenKind.ACCESS, ctx)
        refresh = self.issuer.issue(identity, TokenKind.REFRESH, ctx)
        self.logger.info("login_succeeded", user_id=identity.id)
        return TokenPair(
            access_token=access.token,
            refresh_token=refresh.token,
            expires_in=access.expires_in,
        )

    def refresh(self, refresh_token: str, ctx: Optional[CallContext] = None) -> TokenPair:
        """Mint a new access token; the refresh token is returned unchanged."""
        ctx = ensure_context(ctx)
        claims = self.validator.validate(refresh_token, TokenKind.REFRESH)
        try:
            identity = self.store.find_by_identifier(claims.sub, ctx)
        except NotFound as exc:
            raise InvalidToken() from exc
        except StoreUnavailable as exc:
            raise UnavailableError("identity store unavailable") from exc

        access = self.issuer.issue(identity, TokenKind.ACCESS, ctx)
        self.logger.info("access_token_refreshed", user_id=identity.id)
        return TokenPair(
            access_token=access.token,
            refresh_token=refresh_token,
            expires_in=access.expires_in,
        )


__all__ = ["SessionService", "TokenPair"]
