import os
import sys
from pathlib import Path

# Environment must be in place before anything imports tokengate.config.
os.environ.setdefault("USE_MEMORY_STORE", "true")
os.environ.setdefault("DATABASE_URL", "")
os.environ.setdefault("JWT_SECRET", "test-access-secret-for-testing-only-do-not-use-in-production")
os.environ.setdefault(
    "JWT_REFRESH_SECRET", "test-refresh-secret-for-testing-only-do-not-use-in-production"
)
# Cheap Argon2id parameters keep the suite fast; production defaults are exercised
# explicitly where the encoding is asserted.
os.environ.setdefault("PASSWORD_MEMORY_COST", "1024")
os.environ.setdefault("PASSWORD_ITERATIONS", "1")
os.environ.setdefault("PASSWORD_PARALLELISM", "1")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from tokengate.service.passwords import CredentialHasher  # noqa: E402
from tokengate.service.runtime import reset_runtime_for_tests  # noqa: E402
from tokengate.service.sessions import SessionService  # noqa: E402
from tokengate.service.tokens import TokenIssuer, TokenValidator  # noqa: E402
from tokengate.storage.memory import MemoryIdentityStore  # noqa: E402

ACCESS_SECRET = "unit-access-secret"
REFRESH_SECRET = "unit-refresh-secret"
ISSUER = "tokengate-test"
AUDIENCE = "tokengate-test-clients"


class FakeClock:
    """Manually advanced epoch clock for expiry tests."""

    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def reset_runtime_state():
    reset_runtime_for_tests()
    yield
    reset_runtime_for_tests()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def hasher():
    return CredentialHasher(memory_cost=1024, iterations=1, parallelism=1)


@pytest.fixture
def store():
    return MemoryIdentityStore()


@pytest.fixture
def issuer(clock):
    return TokenIssuer(
        ACCESS_SECRET,
        REFRESH_SECRET,
        900,
        259200,
        issuer=ISSUER,
        audience=AUDIENCE,
        clock=clock,
    )


@pytest.fixture
def validator(clock):
    return TokenValidator(
        ACCESS_SECRET, REFRESH_SECRET, issuer=ISSUER, audience=AUDIENCE, clock=clock
    )


@pytest.fixture
def sessions(store, hasher, issuer, validator):
    return SessionService(store, hasher, issuer, validator)
