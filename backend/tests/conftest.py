"""
Pytest configuration for backend tests.

Why: Force AnyIO to use the asyncio backend to avoid sandbox restrictions
that can affect the Trio backend (e.g., socketpair permission errors), and
build each test's app from fresh in-memory stores so no state leaks between
tests.
"""
import sys
from pathlib import Path

import httpx
import pytest
from httpx import ASGITransport

# Ensure the repo root (for `backend.*`) and tests dir (for `utils.*`) are importable
REPO_ROOT = Path(__file__).resolve().parents[2]
TESTS_DIR = REPO_ROOT / "backend" / "tests"
for p in (str(REPO_ROOT), str(TESTS_DIR)):
    if p not in sys.path:
        sys.path.insert(0, p)

from backend.chat.store import InMemoryConversationStore  # noqa: E402
from backend.courses.repo import InMemoryCourseRepo  # noqa: E402
from backend.identity_access.accounts import InMemoryAccountStore  # noqa: E402
from backend.web.config import Settings  # noqa: E402
from backend.web.main import create_app  # noqa: E402
from utils.identity import StaticVerifier  # noqa: E402


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def _clear_env_toggles(monkeypatch: pytest.MonkeyPatch):
    """Default to a dev environment with every feature toggle cleared.

    Tests that need production semantics opt in via
    `settings.override_environment("prod")` or monkeypatch.setenv.
    """
    for var in (
        "POLYGLOT_ENV",
        "SIGNUP_REQUIRE_TOKEN",
        "STORES_BACKEND",
        "CORS_ORIGINS",
        "FIREBASE_PROJECT_ID",
        "LOG_LEVEL",
    ):
        monkeypatch.delenv(var, raising=False)
    yield


@pytest.fixture
def accounts() -> InMemoryAccountStore:
    return InMemoryAccountStore()


@pytest.fixture
def courses(accounts: InMemoryAccountStore) -> InMemoryCourseRepo:
    return InMemoryCourseRepo(accounts=accounts)


@pytest.fixture
def conversations() -> InMemoryConversationStore:
    return InMemoryConversationStore()


@pytest.fixture
def verifier() -> StaticVerifier:
    return StaticVerifier()


@pytest.fixture
def settings() -> Settings:
    return Settings()


@pytest.fixture
def app(accounts, courses, conversations, verifier, settings):
    return create_app(
        accounts=accounts,
        courses=courses,
        conversations=conversations,
        verifier=verifier,
        settings=settings,
    )


@pytest.fixture
def client_for():
    """Return a factory for AsyncClients bound to an ASGI app."""

    def _make(app, *, raise_app_exceptions: bool = True) -> httpx.AsyncClient:
        transport = ASGITransport(app=app, raise_app_exceptions=raise_app_exceptions)
        return httpx.AsyncClient(transport=transport, base_url="http://test")

    return _make
