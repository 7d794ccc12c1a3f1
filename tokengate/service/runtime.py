from __future__ import annotations

import threading
from typing import Optional
from urllib.parse import urlparse, urlunparse

from tokengate.config import Settings, get_settings, reset_settings_cache
from tokengate.context import CallContext
from tokengate.logging import get_logger
from tokengate.service.gate import AuthGate
from tokengate.service.passwords import CredentialHasher
from tokengate.service.sessions import SessionService
from tokengate.service.tokens import TokenIssuer, TokenValidator
from tokengate.storage.common import IdentityStore
from tokengate.storage.memory import MemoryIdentityStore
from tokengate.storage.postgres import PostgresIdentityStore

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Replace the password in a DSN with ``***`` for logging."""
    if not url:
        return url
    try:
        parsed = urlparse(url)
        password = parsed.password
    except ValueError:
        return "***url_parse_error***"
    if not password:
        return url
    netloc = parsed.hostname or ""
    if parsed.port:
        netloc = f"{netloc}:{parsed.port}"
    netloc = f"{parsed.username or ''}:***@{netloc}"
    return urlunparse(
        (parsed.scheme, netloc, parsed.path, parsed.params, parsed.query, parsed.fragment)
    )


def build_store(settings: Settings) -> IdentityStore:
    if settings.memory_store_selected:
        return MemoryIdentityStore()
    return PostgresIdentityStore(
        settings.database_url,
        timeout=settings.store_timeout_seconds,
        min_size=settings.db_pool_min_size,
        max_size=settings.db_pool_max_size,
    )


class Runtime:
    """Process-wide wiring: one store, hasher, issuer, validator and gate."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        store: Optional[IdentityStore] = None,
    ) -> None:
        self.settings = settings or get_settings()
        store_type = "memory" if self.settings.memory_store_selected else "postgres"
        logger.info(
            "runtime_init_started",
            store_type=store_type,
            database_url=_mask_url_password(self.settings.database_url),
        )
        try:
            self.store = store if store is not None else build_store(self.settings)
        except Exception as exc:
            logger.error(
                "runtime_store_init_failed",
                store_type=store_type,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise

        self.hasher = CredentialHasher(
            memory_cost=self.settings.password_memory_cost,
            iterations=self.settings.password_iterations,
            parallelism=self.settings.password_parallelism,
            salt_len=self.settings.password_salt_bytes,
        )
        self.issuer = TokenIssuer(
            self.settings.jwt_secret,
            self.settings.jwt_refresh_secret,
            self.settings.access_token_ttl_seconds,
            self.settings.refresh_token_ttl_seconds,
            issuer=self.settings.jwt_issuer,
            audience=self.settings.jwt_audience,
        )
        self.validator = TokenValidator(
            self.settings.jwt_secret,
            self.settings.jwt_refresh_secret,
            issuer=self.settings.jwt_issuer,
            audience=self.settings.jwt_audience,
        )
        self.sessions = SessionService(self.store, self.hasher, self.issuer, self.validator)
        self.gate = AuthGate(self.validator, self.store)
        logger.info("runtime_init_complete", store_type=store_type)

    def new_call_context(self) -> CallContext:
        return CallContext(timeout=self.settings.request_timeout_seconds)

    def close(self) -> None:
        close = getattr(self.store, "close", None)
        if close is not None:
            close()


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Return the process Runtime, creating it on first use.

    Double-checked locking: the unlocked read is the fast path, creation
    happens once under ``_runtime_lock``.
    """
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> Runtime:
    """Rebuild the singleton from a freshly read environment."""

    global runtime
    with _runtime_lock:
        if runtime is not None:
            runtime.close()
        reset_settings_cache()
        runtime = Runtime()
        return runtime


__all__ = ["Runtime", "build_store", "get_runtime", "reset_runtime_for_tests"]
