from __future__ import annotations

from pathlib import Path

from pocket_ledger.core.config import settings
from pocket_ledger.core.db import engine
from pocket_ledger.core.logging import configure_logging, get_logger, log_event
from pocket_ledger.core.models import Base

logger = get_logger(__name__)


def _scratch_root() -> Path:
    root = settings.scratch_path
    return root if root.is_absolute() else Path.cwd() / root


def bootstrap() -> None:
    configure_logging()

    import pocket_ledger.models  # noqa: F401

    if settings.environment in {"dev", "test"} and str(settings.database_url).startswith("sqlite"):
        Base.metadata.create_all(engine)

    scratch = _scratch_root()
    scratch.mkdir(parents=True, exist_ok=True)
    log_event(
        logger,
        "app.bootstrap",
        environment=settings.environment,
        storage_backend=settings.storage_backend,
        scratch_path=str(scratch),
    )
