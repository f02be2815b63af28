from __future__ import annotations

import os
import tempfile

# Bind settings to an isolated SQLite database before any modsentry module loads them.
_TEST_DB_DIR = tempfile.mkdtemp(prefix="modsentry-tests-")
os.environ["DATABASE_URL"] = os.environ.get(
    "MODSENTRY_TEST_DATABASE_URL",
    f"sqlite+aiosqlite:///{_TEST_DB_DIR}/modsentry.db",
)
os.environ["CREDENTIAL_ENCRYPTION_KEY"] = "test-credential-encryption-key"
os.environ["CLASSIFIER_PROVIDER"] = "fake"

import pytest

from modsentry.core.config import get_settings
from modsentry.persistence.db import create_schema, drop_schema, engine
from modsentry.services.telemetry import reset_telemetry


@pytest.fixture(autouse=True)
async def fresh_schema() -> None:
    # Rebuild tables per test so pool ordering and audit counts never leak between cases.
    await drop_schema()
    await create_schema()
    reset_telemetry()
    yield
    # Dispose the async engine to prevent cross-loop connection reuse between tests.
    await engine.dispose()


@pytest.fixture(autouse=True)
def clear_settings_cache() -> None:
    # Tests that monkeypatch env vars rebuild settings; restore the shared view afterwards.
    yield
    get_settings.cache_clear()
