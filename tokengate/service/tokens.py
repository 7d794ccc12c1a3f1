"""HS256 access and refresh tokens.

Access and refresh tokens are signed with different secrets and carry their
kind in ``token_type``; a token only validates as the kind it was issued as.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import math
import secrets
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

from tokengate.context import CallContext, ensure_context
from tokengate.logging import get_logger
from tokengate.service.errors import InvalidToken, SigningFailed
from tokengate.storage.models import Identity

logger = get_logger(__name__)

ALGORITHM = "HS256"
_HEADER = {"alg": ALGORITHM, "typ": "JWT"}


class TokenKind(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"


@dataclass(frozen=True)
class TokenClaims:
    sub: str
    jti: str
    iat: int
    exp: int
    token_type: TokenKind
    iss: str
    aud: str

    def as_payload(self) -> dict[str, Any]:
        return {
            "sub": self.sub,
            "jti": self.jti,
            "iat": self.iat,
            "exp": self.exp,
            "token_type": self.token_type.value,
            "iss": self.iss,
            "aud": self.aud,
        }


@dataclass(frozen=True)
class IssuedToken:
    token: str
    kind: TokenKind
    expires_in: int
    claims: TokenClaims


def _encode_segment(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")


def _decode_segment(segment: str) -> bytes:
    padding = "=" * ((4 - len(segment) % 4) % 4)
    return base64.b64decode(segment + padding, altchars=b"-_", validate=True)


def _load_segment(segment: str) -> Any:
    try:
        return json.loads(_decode_segment(segment))
    except (binascii.Error, ValueError, UnicodeDecodeError, RecursionError):
        return None


def _is_numeric_date(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return isinstance(value, int) or math.isfinite(value)


def _sign(secret: str, signing_input: str) -> bytes:
    return hmac.new(
        secret.encode(), signing_input.encode("utf-8", "replace"), hashlib.sha256
    ).digest()


class _KeyedByKind:
    def __init__(
        self,
        access_secret: str,
        refresh_secret: str,
        *,
        issuer: str,
        audience: str,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not access_secret or not refresh_secret:
            raise ValueError("access and refresh signing secrets must be non-empty")
        if hmac.compare_digest(access_secret.encode(), refresh_secret.encode()):
            raise ValueError("access and refresh signing secrets must differ")
        self._secrets = {
            TokenKind.ACCESS: access_secret,
            TokenKind.REFRESH: refresh_secret,
        }
        self.issuer = issuer
        self.audience = audience
        self.clock = clock

    def _secret_for(self, kind: TokenKind) -> str:
        return self._secrets[TokenKind(kind)]


class TokenIssuer(_KeyedByKind):
    """Mint signed tokens for an identity."""

    def __init__(
        self,
        access_secret: str,
        refresh_secret: str,
        access_ttl: int,
        refresh_ttl: int,
        *,
        issuer: str,
        audience: str,
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(
            access_secret, refresh_secret, issuer=issuer, audience=audience, clock=clock
        )
        if access_ttl <= 0 or refresh_ttl <= 0:
            raise ValueError("token lifetimes must be positive")
        self._ttls = {TokenKind.ACCESS: int(access_ttl), TokenKind.REFRESH: int(refresh_ttl)}

    def ttl_for(self, kind: TokenKind) -> int:
        return self._ttls[TokenKind(kind)]

    def issue(
        self, identity: Identity, kind: TokenKind, ctx: Optional[CallContext] = None
    ) -> IssuedToken:
        ensure_context(ctx).check("issue_token")
        kind = TokenKind(kind)
        ttl = self.ttl_for(kind)
        now = int(self.clock())
        claims = TokenClaims(
            sub=identity.id,
            jti=secrets.token_urlsafe(12),
            iat=now,
            exp=now + ttl,
            token_type=kind,
            iss=self.issuer,
            aud=self.audience,
        )
        try:
            header_enc = _encode_segment(json.dumps(_HEADER, separators=(",", ":")).encode())
            payload_enc = _encode_segment(
                json.dumps(claims.as_payload(), separators=(",", ":")).encode()
            )
            signing_input = f"{header_enc}.{payload_enc}"
            signature = _sign(self._secret_for(kind), signing_input)
        except (TypeError, ValueError) as exc:
            logger.error("token_signing_failed", kind=kind.value, error_type=type(exc).__name__)
            raise SigningFailed("failed to sign token") from exc
        return IssuedToken(
            token=f"{signing_input}.{_encode_segment(signature)}",
            kind=kind,
            expires_in=ttl,
            claims=claims,
        )


class TokenValidator(_KeyedByKind):
    """Verify tokens of an expected kind.

    Every rejection raises the same ``InvalidToken`` so callers cannot learn
    which check failed.
    """

    def validate(self, token: str, kind: TokenKind) -> TokenClaims:
        kind = TokenKind(kind)
        payload = self._decode(token, kind)
        if payload is None:
            raise InvalidToken()
        return self._claims_from_payload(payload, kind)

    def _decode(self, token: str, kind: TokenKind) -> Optional[dict[str, Any]]:
        if not isinstance(token, str):
            return None
        parts = token.split(".")
        if len(parts) != 3:
            return None
        header_b64, payload_b64, sig_b64 = parts
        # Nothing attacker-controlled is parsed until the MAC matches.
        expected_sig = _encode_segment(_sign(self._secret_for(kind), f"{header_b64}.{payload_b64}"))
        if not hmac.compare_digest(expected_sig.encode(), sig_b64.encode("utf-8", "replace")):
            return None
        header = _load_segment(header_b64)
        if not isinstance(header, dict) or header.get("alg") != ALGORITHM:
            return None
        payload = _load_segment(payload_b64)
        if not isinstance(payload, dict):
            return None
        return payload

    def _claims_from_payload(self, payload: dict[str, Any], kind: TokenKind) -> TokenClaims:
        if payload.get("token_type") != kind.value:
            raise InvalidToken()
        if payload.get("iss") != self.issuer:
            raise InvalidToken()
        aud = payload.get("aud")
        if isinstance(aud, list):
            valid_aud = self.audience in aud
        else:
            valid_aud = aud == self.audience
        if not valid_aud:
            raise InvalidToken()
        sub = payload.get("sub")
        jti = payload.get("jti")
        if not isinstance(sub, str) or not sub.strip():
            raise InvalidToken()
        if not isinstance(jti, str) or not jti.strip():
            raise InvalidToken()
        exp = payload.get("exp")
        iat = payload.get("iat", 0)
        if not _is_numeric_date(exp) or not _is_numeric_date(iat):
            raise InvalidToken()
        if self.clock() >= exp:
            raise InvalidToken()
        return TokenClaims(
            sub=sub,
            jti=jti,
            iat=int(iat),
            exp=int(exp),
            token_type=kind,
            iss=self.issuer,
            aud=self.audience,
        )


__all__ = ["IssuedToken", "TokenClaims", "TokenIssuer", "TokenKind", "TokenValidator"]
