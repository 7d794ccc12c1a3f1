import importlib.util
from pathlib import Path

import pytest

from tokengate.service.passwords import CredentialHasher
from tokengate.service.runtime import get_runtime

SCRIPT = Path(__file__).resolve().parent.parent / "scripts" / "create_user.py"


@pytest.fixture
def create_user():
    spec = importlib.util.spec_from_file_location("create_user", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_sql_mode_prints_insert_with_verifiable_hash(create_user, capsys):
    assert create_user.main(["--email", "Ops@Example.com", "--password", "password123", "--sql"]) == 0
    out = capsys.readouterr().out
    insert = next(line for line in out.splitlines() if line.startswith("INSERT"))
    assert "INTO app_user" in insert
    assert "'ops@example.com'" in insert
    stored = insert.split("'")[5]
    assert stored.startswith("argon2id$v=19$")
    assert CredentialHasher().verify(stored, "password123")


def test_sql_literal_escapes_quotes(create_user):
    assert create_user._sql_literal("o'brien") == "'o''brien'"


def test_register_mode_uses_runtime(create_user, capsys, monkeypatch):
    closed = []
    monkeypatch.setattr(type(get_runtime()), "close", lambda self: closed.append(True))
    assert create_user.main(["--email", "ops@example.com", "--password", "password123"]) == 0
    assert "Created user: ops@example.com" in capsys.readouterr().out
    assert get_runtime().store.find_by_secondary_key("ops@example.com")
    assert closed


def test_invalid_input_reports_error(create_user, capsys):
    assert create_user.main(["--email", "bad", "--password", "password123", "--sql"]) == 1
    assert create_user.main(["--email", "ops@example.com", "--password", "short", "--sql"]) == 1
    assert create_user.main([]) == 1


@pytest.mark.parametrize(
    "email, password",
    [("bad", "password123"), ("ops@example.com", "x"), ("ops@example.com", "short")],
)
def test_register_mode_rejects_invalid_input(create_user, capsys, email, password):
    assert create_user.main(["--email", email, "--password", password]) == 1
    assert "Error:" in capsys.readouterr().out
    assert len(get_runtime().store) == 0
