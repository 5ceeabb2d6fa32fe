from __future__ import annotations

import os
import shutil
from pathlib import Path

import pytest

# Set env before any pocket_ledger imports (settings/engine are created at import time).
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite:///./.pocket_ledger_test.db")
os.environ.setdefault("STORAGE_BACKEND", "local")
os.environ.setdefault("LOCAL_STORAGE_PATH", ".tmp_storage_test")
os.environ.setdefault("SCRATCH_PATH", ".tmp_scratch_test")
# Outbound services are always mocked in tests.
os.environ["VISION_API_KEY"] = ""
os.environ["TINYPNG_API_KEY"] = ""


@pytest.fixture(autouse=True)
def _reset_db_and_storage() -> None:
    import pocket_ledger.models  # noqa: F401
    from pocket_ledger.core.db import engine
    from pocket_ledger.core.models import Base
    from pocket_ledger.modules.fx import service as fx_service
    import pocket_ledger.core.storage as storage_mod

    storage_mod._storage = None
    fx_service._rate_cache = None

    for env in ("LOCAL_STORAGE_PATH", "SCRATCH_PATH"):
        path = Path(os.environ[env])
        if path.exists():
            shutil.rmtree(path)

    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)

    yield


@pytest.fixture
def client():
    from fastapi.testclient import TestClient

    from pocket_ledger.main import app

    app.dependency_overrides.clear()
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def user_and_headers():
    from pocket_ledger.core.db import SessionLocal
    from pocket_ledger.core.security import create_access_token
    from pocket_ledger.modules.identity.service import create_user

    with SessionLocal() as session:
        user = create_user(
            session, email="owner@example.com", password="password1", full_name="Owner"
        )
        token = create_access_token(subject=str(user.id))
    return user, {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers(user_and_headers):
    return user_and_headers[1]
