from __future__ import annotations

import os
import secrets
from typing import Any, List

from dotenv import dotenv_values
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationInfo,
    field_validator,
    model_validator,
)

from tokengate.logging import get_logger

logger = get_logger(__name__)


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Process settings read from the environment (and ``.env``)."""

    database_url: str = env_field(
        "",
        "DATABASE_URL",
        description="Postgres DSN; empty selects the in-memory identity store",
    )
    use_memory_store: bool = env_field(False, "USE_MEMORY_STORE")
    db_pool_min_size: int = env_field(1, "DB_POOL_MIN_SIZE", ge=0)
    db_pool_max_size: int = env_field(10, "DB_POOL_MAX_SIZE", ge=1)
    store_timeout_seconds: float = env_field(5.0, "STORE_TIMEOUT_SECONDS", gt=0)
    request_timeout_seconds: float = env_field(30.0, "REQUEST_TIMEOUT_SECONDS", gt=0)

    jwt_secret: str = env_field(None, "JWT_SECRET", validate_default=True)
    jwt_refresh_secret: str = env_field(
        None, "JWT_REFRESH_SECRET", validate_default=True
    )
    jwt_issuer: str = env_field("tokengate", "JWT_ISSUER")
    jwt_audience: str = env_field("tokengate-clients", "JWT_AUDIENCE")
    access_token_ttl_seconds: int = env_field(15 * 60, "ACCESS_TOKEN_TTL_SECONDS", gt=0)
    refresh_token_ttl_seconds: int = env_field(
        72 * 60 * 60, "REFRESH_TOKEN_TTL_SECONDS", gt=0
    )

    password_memory_cost: int = env_field(
        128 * 1024, "PASSWORD_MEMORY_COST", ge=8, description="Argon2id memory in KiB"
    )
    password_iterations: int = env_field(3, "PASSWORD_ITERATIONS", ge=1)
    password_parallelism: int = env_field(4, "PASSWORD_PARALLELISM", ge=1)
    password_salt_bytes: int = env_field(16, "PASSWORD_SALT_BYTES")

    cors_allow_origins: List[str] = env_field([], "CORS_ALLOW_ORIGINS")
    enable_hsts: bool = env_field(False, "ENABLE_HSTS")
    build_sha: str = env_field("dev", "BUILD_SHA")

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @field_validator("jwt_secret", "jwt_refresh_secret", mode="before")
    @classmethod
    def _ensure_signing_secret(cls, value: Any, info: ValidationInfo) -> Any:
        if value:
            return value
        # Tokens signed with a generated secret die with the process.
        logger.warning("jwt_secret_generated", setting=info.field_name.upper())
        return secrets.token_urlsafe(64)

    @field_validator("password_salt_bytes")
    @classmethod
    def _validate_salt_bytes(cls, value: int) -> int:
        if value < 16:
            raise ValueError("PASSWORD_SALT_BYTES must be at least 16")
        return value

    @field_validator("cors_allow_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @model_validator(mode="after")
    def _check_consistency(self) -> "Settings":
        if self.jwt_secret == self.jwt_refresh_secret:
            raise ValueError("JWT_SECRET and JWT_REFRESH_SECRET must differ")
        if self.db_pool_min_size > self.db_pool_max_size:
            raise ValueError("DB_POOL_MIN_SIZE cannot exceed DB_POOL_MAX_SIZE")
        return self

    @property
    def memory_store_selected(self) -> bool:
        return self.use_memory_store or not self.database_url


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
