from __future__ import annotations

import contextlib
from typing import Iterator, Optional

import psycopg
from psycopg import errors
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool, PoolTimeout

from tokengate.context import CallContext, ensure_context
from tokengate.logging import get_logger, sanitize_error_message
from tokengate.storage.common import identity_from_row, normalize_email
from tokengate.storage.errors import (
    AlreadyExists,
    NotFound,
    OperationCancelled,
    StoreUnavailable,
)
from tokengate.storage.models import Identity

_REQUIRED_TABLES = ("app_user",)


class PostgresIdentityStore:
    """Postgres-backed identity store.

    Every call is bounded by ``timeout`` seconds (or the caller's remaining
    deadline, whichever is shorter), applied both to checking a connection
    out of the pool and as the transaction's ``statement_timeout``.
    """

    def __init__(
        self,
        dsn: str,
        *,
        timeout: float = 5.0,
        min_size: int = 1,
        max_size: int = 10,
        pool: Optional[ConnectionPool] = None,
    ) -> None:
        self.dsn = dsn
        self.timeout = timeout
        self.logger = get_logger(__name__)
        self.pool = pool or ConnectionPool(
            self.dsn,
            min_size=min_size,
            max_size=max_size,
            timeout=timeout,
            kwargs={"row_factory": dict_row, "autocommit": False},
            open=True,
        )
        self._verify_required_schema()

    def _budget(self, ctx: CallContext, operation: str) -> float:
        ctx.check(operation)
        remaining = ctx.remaining()
        budget = self.timeout if remaining is None else min(self.timeout, remaining)
        if budget <= 0:
            raise OperationCancelled(f"{operation} cancelled by caller")
        return budget

    @contextlib.contextmanager
    def _connect(self, ctx: CallContext, operation: str) -> Iterator[psycopg.Connection]:
        budget = self._budget(ctx, operation)
        try:
            with self.pool.connection(timeout=budget) as conn:
                conn.execute(
                    "SELECT set_config('statement_timeout', %s, true)",
                    (str(int(budget * 1000)),),
                )
                yield conn
        except PoolTimeout as exc:
            self.logger.warning("identity_store_pool_timeout", operation=operation, timeout=budget)
            raise StoreUnavailable("identity store timed out", {"operation": operation}) from exc
        except errors.QueryCanceled as exc:
            self.logger.warning("identity_store_statement_timeout", operation=operation, timeout=budget)
            raise StoreUnavailable("identity store timed out", {"operation": operation}) from exc
        except psycopg.OperationalError as exc:
            self.logger.error(
                "identity_store_unreachable",
                operation=operation,
                error=sanitize_error_message(str(exc)),
            )
            raise StoreUnavailable("identity store unavailable", {"operation": operation}) from exc

    def _verify_required_schema(self) -> None:
        """Ensure the identity table exists before serving requests."""

        with self._connect(CallContext.background(), "verify_schema") as conn:
            missing_tables = []
            for table in _REQUIRED_TABLES:
                row = conn.execute(
                    "SELECT to_regclass(%s) AS oid", (f"public.{table}",)
                ).fetchone()
                if not row or not row.get("oid"):
                    missing_tables.append(table)
        if missing_tables:
            raise RuntimeError(
                "Missing required Postgres tables: {}. Apply sql/001_app_user.sql first.".format(
                    ", ".join(sorted(missing_tables))
                )
            )

    def create(self, identity: Identity, ctx: Optional[CallContext] = None) -> None:
        ctx = ensure_context(ctx)
        try:
            with self._connect(ctx, "create") as conn:
                conn.execute(
                    """
                    INSERT INTO app_user (id, email, password_hash, created_at)
                    VALUES (%s, %s, %s, %s)
                    """,
                    (
                        identity.id,
                        normalize_email(identity.email),
                        identity.password_hash,
                        identity.created_at,
                    ),
                )
        except errors.UniqueViolation as exc:
            raise AlreadyExists("email already exists", {"field": "email"}) from exc

    def find_by_secondary_key(
        self, email: str, ctx: Optional[CallContext] = None
    ) -> Identity:
        ctx = ensure_context(ctx)
        with self._connect(ctx, "find_by_secondary_key") as conn:
            row = conn.execute(
                "SELECT id, email, password_hash, created_at FROM app_user WHERE email = %s",
                (normalize_email(email),),
            ).fetchone()
        if not row:
            raise NotFound("identity not found", {"field": "email"})
        return identity_from_row(row)

    def find_by_identifier(
        self, identity_id: str, ctx: Optional[CallContext] = None
    ) -> Identity:
        ctx = ensure_context(ctx)
        with self._connect(ctx, "find_by_identifier") as conn:
            row = conn.execute(
                "SELECT id, email, password_hash, created_at FROM app_user WHERE id = %s",
                (identity_id,),
            ).fetchone()
        if not row:
            raise NotFound("identity not found", {"field": "id"})
        return identity_from_row(row)

    def ping(self, ctx: Optional[CallContext] = None) -> None:
        ctx = ensure_context(ctx)
        with self._connect(ctx, "ping") as conn:
            conn.execute("SELECT 1").fetchone()

    def close(self) -> None:
        self.pool.close()


__all__ = ["PostgresIdentityStore"]
