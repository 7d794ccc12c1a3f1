import pytest

from tokengate.service.errors import AuthenticationError
from tokengate.service.gate import AuthGate, extract_bearer
from tokengate.service.tokens import TokenKind
from tokengate.storage.memory import MemoryIdentityStore


@pytest.fixture
def gate(validator, store):
    return AuthGate(validator, store)


@pytest.mark.parametrize(
    "header, expected",
    [
        ("Bearer abc.def.ghi", "abc.def.ghi"),
        ("bearer abc.def.ghi", None),
        ("BEARER abc.def.ghi", None),
        ("Bearer  abc", None),
        ("Bearer ", None),
        ("Bearer", None),
        ("Basic dXNlcjpwYXNz", None),
        ("", None),
        (None, None),
    ],
)
def test_extract_bearer(header, expected):
    assert extract_bearer(header) == expected


def test_authenticate_attaches_identity(gate, sessions):
    identity = sessions.register("user@example.com", "password123")
    pair = sessions.login("user@example.com", "password123")
    auth = gate.authenticate(f"Bearer {pair.access_token}")
    assert auth.identity == identity
    assert auth.identity_id == identity.id
    assert auth.claims.token_type is TokenKind.ACCESS


@pytest.mark.parametrize("header", [None, "Bearer not-a-jwt", "Token abc"])
def test_authenticate_rejects_bad_headers(gate, header):
    with pytest.raises(AuthenticationError) as excinfo:
        gate.authenticate(header)
    assert excinfo.value.status_code == 401
    assert excinfo.value.message == "unauthorized"


def test_refresh_token_is_not_an_access_credential(gate, sessions):
    sessions.register("user@example.com", "password123")
    pair = sessions.login("user@example.com", "password123")
    with pytest.raises(AuthenticationError):
        gate.authenticate(f"Bearer {pair.refresh_token}")


def test_vanished_subject_is_unauthorized(sessions, validator):
    sessions.register("user@example.com", "password123")
    pair = sessions.login("user@example.com", "password123")
    empty_gate = AuthGate(validator, MemoryIdentityStore())
    with pytest.raises(AuthenticationError) as excinfo:
        empty_gate.authenticate(f"Bearer {pair.access_token}")
    assert excinfo.value.message == "unauthorized"


def test_expired_access_token_is_unauthorized(gate, sessions, clock):
    sessions.register("user@example.com", "password123")
    pair = sessions.login("user@example.com", "password123")
    clock.advance(900)
    with pytest.raises(AuthenticationError):
        gate.authenticate(f"Bearer {pair.access_token}")


def test_protect_only_runs_handler_when_authenticated(gate, sessions):
    identity = sessions.register("user@example.com", "password123")
    pair = sessions.login("user@example.com", "password123")
    calls = []

    @gate.protect
    def handler(auth, greeting):
        calls.append(auth.identity.id)
        return f"{greeting}, {auth.identity.email}"

    assert handler(f"Bearer {pair.access_token}", "hello") == "hello, user@example.com"
    assert calls == [identity.id]

    with pytest.raises(AuthenticationError):
        handler("Bearer garbage", "hello")
    assert calls == [identity.id]
