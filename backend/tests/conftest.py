"""
Pytest configuration for backend tests.

Why: Force AnyIO to use the asyncio backend and reset the module-level
singletons of the web app (record store, session/state stores, OIDC client,
environment override) so tests never leak state into each other.
"""
import os
import sys
from pathlib import Path

import pytest

# Make `backend.*` importable when pytest is started from any directory.
REPO_ROOT = Path(__file__).resolve().parents[2]
TESTS_DIR = REPO_ROOT / "backend" / "tests"
for p in (str(REPO_ROOT), str(TESTS_DIR)):
    if p not in sys.path:
        sys.path.insert(0, p)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def _clear_env_toggles(monkeypatch: pytest.MonkeyPatch):
    """Start every test from dev defaults.

    Tests that need prod semantics set ADMISSIONS_ENV (or use
    `main.SETTINGS.override_environment`) themselves.
    """
    for var in (
        "ADMISSIONS_ENV",
        "ADMISSIONS_REPO",
        "ADMISSIONS_TRUST_PROXY",
        "STRICT_CSRF_WRITES",
        "ALLOW_SERVICE_DSN_FOR_TESTING",
    ):
        monkeypatch.delenv(var, raising=False)
    yield


@pytest.fixture(autouse=True)
def _reset_admissions_repo():
    """Give every test a fresh in-memory record store and no identity admin.

    Live-DB tests construct `DBAdmissionsRepo` explicitly and skip when
    Postgres is unreachable.
    """
    from backend.admissions.repo_memory import InMemoryAdmissionsRepo
    from backend.web import repo_wiring

    repo_wiring.set_repo(InMemoryAdmissionsRepo())
    repo_wiring.set_identity_admin(None)
    yield


@pytest.fixture(autouse=True)
def _reset_auth_singletons(monkeypatch: pytest.MonkeyPatch):
    """Reset STATE_STORE, SESSION_STORE, OIDC client and env override per test.

    Why:
        Auth tests share the `main` singletons; PKCE state or sessions created
        by one test must not satisfy another test's callback or middleware.
    """
    from backend.identity_access.oidc import OIDCClient, OIDCConfig
    from backend.identity_access.stores import SessionStore, StateStore
    from backend.web import main

    cfg = OIDCConfig.from_env()
    monkeypatch.setattr(main, "STATE_STORE", StateStore())
    monkeypatch.setattr(main, "SESSION_STORE", SessionStore())
    monkeypatch.setattr(main, "OIDC_CFG", cfg)
    monkeypatch.setattr(main, "OIDC", OIDCClient(cfg))
    main.SETTINGS.override_environment(None)
    yield
    main.SETTINGS.override_environment(None)


@pytest.fixture
def repo():
    """The in-memory store currently wired into the web app."""
    from backend.web import repo_wiring

    return repo_wiring.get_repo()


@pytest.fixture
def team(repo):
    from backend.tests.utils.seed import seed_team

    return seed_team(repo)


def pytest_report_header(config):
    dsn = os.getenv("DATABASE_URL")
    return f"admissions: DATABASE_URL {'set' if dsn else 'unset'} (live RLS tests skip when unreachable)"
