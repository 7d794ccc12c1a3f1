import pytest
from pydantic import ValidationError

from tokengate.config import Settings, get_settings, reset_settings_cache
from tokengate.service.runtime import Runtime, _mask_url_password
from tokengate.storage.memory import MemoryIdentityStore


def test_defaults_match_production_parameters():
    settings = Settings(jwt_secret="a", jwt_refresh_secret="b")
    assert settings.access_token_ttl_seconds == 15 * 60
    assert settings.refresh_token_ttl_seconds == 72 * 60 * 60
    assert settings.password_memory_cost == 131072
    assert settings.password_iterations == 3
    assert settings.password_parallelism == 4
    assert settings.password_salt_bytes == 16
    assert settings.store_timeout_seconds == 5.0


def test_missing_secrets_are_generated_and_distinct():
    settings = Settings()
    assert settings.jwt_secret
    assert settings.jwt_refresh_secret
    assert settings.jwt_secret != settings.jwt_refresh_secret


def test_identical_secrets_rejected():
    with pytest.raises(ValidationError):
        Settings(jwt_secret="same", jwt_refresh_secret="same")


def test_salt_below_minimum_rejected():
    with pytest.raises(ValidationError):
        Settings(jwt_secret="a", jwt_refresh_secret="b", password_salt_bytes=8)


def test_from_env_reads_environment(monkeypatch):
    monkeypatch.setenv("ACCESS_TOKEN_TTL_SECONDS", "60")
    monkeypatch.setenv("CORS_ALLOW_ORIGINS", "https://a.example, https://b.example")
    monkeypatch.setenv("USE_MEMORY_STORE", "false")
    monkeypatch.setenv("DATABASE_URL", "")
    settings = Settings.from_env()
    assert settings.access_token_ttl_seconds == 60
    assert settings.cors_allow_origins == ["https://a.example", "https://b.example"]
    assert settings.memory_store_selected


def test_database_url_selects_postgres(monkeypatch):
    monkeypatch.setenv("USE_MEMORY_STORE", "false")
    monkeypatch.setenv("DATABASE_URL", "postgresql://localhost/tokengate")
    assert not Settings.from_env().memory_store_selected


def test_settings_cache_reset(monkeypatch):
    first = get_settings()
    assert get_settings() is first
    monkeypatch.setenv("JWT_ISSUER", "other-issuer")
    reset_settings_cache()
    assert get_settings().jwt_issuer == "other-issuer"


def test_runtime_wires_memory_store():
    settings = Settings(
        jwt_secret="a",
        jwt_refresh_secret="b",
        use_memory_store=True,
        password_memory_cost=1024,
        password_iterations=1,
        password_parallelism=1,
    )
    runtime = Runtime(settings)
    assert isinstance(runtime.store, MemoryIdentityStore)
    identity = runtime.sessions.register("user@example.com", "password123")
    pair = runtime.sessions.login("user@example.com", "password123")
    assert runtime.gate.authenticate(f"Bearer {pair.access_token}").identity == identity
    assert runtime.new_call_context().remaining() <= settings.request_timeout_seconds


def test_mask_url_password():
    assert (
        _mask_url_password("postgresql://app:hunter2@db:5432/tokengate")
        == "postgresql://app:***@db:5432/tokengate"
    )
    assert _mask_url_password("postgresql://db/tokengate") == "postgresql://db/tokengate"
    assert _mask_url_password("") == ""
