# tests/conftest.py
import os
import tempfile

import pytest
from fastapi.testclient import TestClient

# Settings are cached on first import, so the environment must be in place
# before anything from engagement_crm is imported.
_DB_DIR = tempfile.mkdtemp(prefix="engagement_crm_tests_")
os.environ["DB_URL"] = f"sqlite+aiosqlite:///{os.path.join(_DB_DIR, 'test.db')}"
os.environ["APP_ENV"] = "test"
os.environ["ZOOM_WEBHOOK_SECRET_TOKEN"] = "test-webhook-secret"
os.environ["MESSAGING_WEBHOOK_VERIFY_TOKEN"] = "test-verify-token"
for _name in ("INTERNAL_API_KEY", "MESSAGING_API_URL", "OPENROUTER_API_KEY"):
    os.environ.pop(_name, None)

from engagement_crm.db.session import init_db  # noqa: E402
from engagement_crm.main import create_app  # noqa: E402
from tests.factories import run_async  # noqa: E402


@pytest.fixture(scope="session")
def client() -> TestClient:
    """
    Shared TestClient fixture for all tests.

    Uses the application factory so configuration stays test-friendly.
    """
    app = create_app()
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture(autouse=True)
def _reset_db():
    """
    Every test gets a clean schema and empty tables.
    """
    run_async(init_db())
    yield
