from __future__ import annotations

import functools
from dataclasses import dataclass
from typing import Any, Callable, Optional, TypeVar

from tokengate.context import CallContext, ensure_context
from tokengate.logging import get_logger
from tokengate.service.errors import AuthenticationError, InvalidToken, UnavailableError
from tokengate.service.tokens import TokenClaims, TokenKind, TokenValidator
from tokengate.storage.common import IdentityStore
from tokengate.storage.errors import NotFound, StoreUnavailable
from tokengate.storage.models import Identity

BEARER_PREFIX = "Bearer "

T = TypeVar("T")


@dataclass(frozen=True)
class AuthContext:
    """The authenticated principal for a single call."""

    identity: Identity
    claims: TokenClaims

    @property
    def identity_id(self) -> str:
        return self.identity.id


def extract_bearer(header: Optional[str]) -> Optional[str]:
    """Return the token of an ``Authorization: Bearer <token>`` header.

    The scheme match is case-sensitive with exactly one space; anything else,
    including an empty token, yields ``None``.
    """
    if not header or not header.startswith(BEARER_PREFIX):
        return None
    token = header[len(BEARER_PREFIX):]
    if not token or token != token.strip():
        return None
    return token


class AuthGate:
    """Resolve an Authorization header into the identity it was issued for."""

    def __init__(self, validator: TokenValidator, store: IdentityStore) -> None:
        self.validator = validator
        self.store = store
        self.logger = get_logger(__name__)

    def authenticate(
        self, authorization: Optional[str], ctx: Optional[CallContext] = None
    ) -> AuthContext:
        ctx = ensure_context(ctx)
        token = extract_bearer(authorization)
        if token is None:
            raise AuthenticationError("unauthorized")
        try:
            claims = self.validator.validate(token, TokenKind.ACCESS)
            identity = self.store.find_by_identifier(claims.sub, ctx)
        except (InvalidToken, NotFound) as exc:
            raise AuthenticationError("unauthorized") from exc
        except StoreUnavailable as exc:
            raise UnavailableError("identity store unavailable") from exc
        return AuthContext(identity=identity, claims=claims)

    def protect(self, handler: Callable[..., T]) -> Callable[..., T]:
        """Wrap ``handler(auth, *args, **kwargs)`` so it is only reached when
        the ``authorization`` passed as first argument authenticates."""

        @functools.wraps(handler)
        def wrapper(
            authorization: Optional[str],
            *args: Any,
            ctx: Optional[CallContext] = None,
            **kwargs: Any,
        ) -> T:
            auth = self.authenticate(authorization, ctx)
            return handler(auth, *args, **kwargs)

        return wrapper


__all__ = ["AuthContext", "AuthGate", "BEARER_PREFIX", "extract_bearer"]
