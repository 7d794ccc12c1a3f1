#!/usr/bin/env python3
"""Create a user outside the HTTP API.

Usage:
    # Print an INSERT statement to run against the database by hand:
    python scripts/create_user.py --email user@example.com --password 'correct horse' --sql

    # Register through the configured store (DATABASE_URL, or in-memory):
    python scripts/create_user.py --email user@example.com --password 'correct horse'

Environment Variables:
    USER_EMAIL / USER_PASSWORD: defaults for --email / --password
    DATABASE_URL: PostgreSQL connection string (in-memory store when unset)
"""
from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def _sql_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def render_insert_sql(identity) -> str:
    return (
        "INSERT INTO app_user (id, email, password_hash, created_at) "
        f"VALUES ({_sql_literal(identity.id)}, {_sql_literal(identity.email)}, "
        f"{_sql_literal(identity.password_hash)}, NOW());"
    )


def validate_credentials(email: str, password: str) -> tuple[str, str]:
    """Apply the same email and password rules as HTTP registration."""
    from tokengate.api.schemas import _validate_email, _validate_password_strength

    return _validate_email(email), _validate_password_strength(password)


def build_identity(email: str, password: str):
    """Hash ``password`` with the configured cost parameters and build an Identity."""
    from tokengate.config import get_settings
    from tokengate.service.passwords import CredentialHasher
    from tokengate.storage.models import Identity, new_identity_id

    email, password = validate_credentials(email, password)
    settings = get_settings()
    hasher = CredentialHasher(
        memory_cost=settings.password_memory_cost,
        iterations=settings.password_iterations,
        parallelism=settings.password_parallelism,
        salt_len=settings.password_salt_bytes,
    )
    return Identity(
        id=new_identity_id(),
        email=email,
        password_hash=hasher.hash(password),
    )


def register(email: str, password: str):
    from tokengate.service.runtime import get_runtime

    email, password = validate_credentials(email, password)
    runtime = get_runtime()
    try:
        return runtime.sessions.register(email, password)
    finally:
        runtime.close()


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        description="Create a tokengate user",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--email", default=os.environ.get("USER_EMAIL"))
    parser.add_argument("--password", default=os.environ.get("USER_PASSWORD"))
    parser.add_argument(
        "--sql",
        action="store_true",
        help="Print an INSERT statement instead of writing to the store",
    )
    args = parser.parse_args(argv)

    if not args.email or not args.password:
        print("Error: --email and --password (or USER_EMAIL / USER_PASSWORD) are required")
        return 1

    from tokengate.service.errors import ServiceError

    try:
        if args.sql:
            identity = build_identity(args.email, args.password)
            print(f"-- Add user: {identity.email}")
            print(render_insert_sql(identity))
            return 0
        if not os.environ.get("DATABASE_URL"):
            print("Note: Using in-memory store (set DATABASE_URL for persistence)")
        identity = register(args.email, args.password)
    except (ValueError, ServiceError) as exc:
        print(f"Error: {exc}")
        return 1
    print(f"Created user: {identity.email} (id: {identity.id})")
    return 0


if __name__ == "__main__":
    sys.exit(main())
