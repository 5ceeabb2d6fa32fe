"""
Per-invocation scratch space on local disk.

Every artifact registered with a ScratchSpace is removed when the space exits,
whatever the exit path. Removal is idempotent: a path that is already gone is
not an error.
"""

from __future__ import annotations

import logging
import shutil
import uuid
from collections.abc import Iterator
from contextlib import ExitStack, contextmanager
from pathlib import Path

from pocket_ledger.core.logging import get_logger, log_event

logger = get_logger(__name__)


def discard(path: Path) -> None:
    try:
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        else:
            path.unlink(missing_ok=True)
    except FileNotFoundError:
        return
    except OSError as e:
        log_event(
            logger,
            "scratch.cleanup.failure",
            level=logging.WARNING,
            path=str(path),
            error_type=type(e).__name__,
            error=str(e),
        )


@contextmanager
def scratch_artifact(path: Path) -> Iterator[Path]:
    try:
        yield path
    finally:
        discard(path)


class ScratchSpace:
    def __init__(self, root: Path) -> None:
        self._root = root
        self._dir: Path | None = None
        self._stack = ExitStack()

    @property
    def path(self) -> Path:
        if self._dir is None:
            raise RuntimeError("ScratchSpace is not open")
        return self._dir

    def __enter__(self) -> ScratchSpace:
        self._dir = self._root / f"ingest-{uuid.uuid4().hex}"
        self._dir.mkdir(parents=True, exist_ok=False)
        # Registered first so it is released last, after every artifact inside it.
        self._stack.enter_context(scratch_artifact(self._dir))
        return self

    def __exit__(self, *exc_info) -> None:
        self._stack.close()

    def artifact(self, stem: str, suffix: str = "") -> Path:
        path = self.path / f"{stem}{suffix}"
        self._stack.enter_context(scratch_artifact(path))
        return path

    def write(self, stem: str, suffix: str, body: bytes) -> Path:
        path = self.artifact(stem, suffix)
        path.write_bytes(body)
        return path
