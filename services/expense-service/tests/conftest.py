"""Pytest configuration for expense-service tests.

Ensures the service's own src directory takes precedence in sys.path and
points the module-level engine at a throwaway SQLite file before `main` or
`persistence` are imported.
"""

import os
import sys
import tempfile
from pathlib import Path

import pytest

SERVICES_ROOT = Path(__file__).resolve().parents[2]

# Ensure this service's src is first in sys.path
SERVICE_SRC = Path(__file__).resolve().parents[1] / "src"
if str(SERVICE_SRC) not in sys.path:
    sys.path.insert(0, str(SERVICE_SRC))

# `shared` lives at services/shared
if str(SERVICES_ROOT) not in sys.path:
    sys.path.insert(1, str(SERVICES_ROOT))

_TEST_DB_DIR = Path(tempfile.mkdtemp(prefix="expense-service-tests-"))
os.environ.setdefault("EXPENSES_DB_URL", f"sqlite:///{_TEST_DB_DIR / 'expenses.db'}")
os.environ.setdefault("ENABLE_TELEMETRY", "false")


@pytest.fixture(scope="session", autouse=True)
def create_schema() -> None:
    from persistence.database import init_db

    init_db()


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"
