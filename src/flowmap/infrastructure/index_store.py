"""Index store: load, atomically save, and lock ``.flowmap/index.json``."""

from __future__ import annotations

import json
import logging
import os
import tempfile
import time
from pathlib import Path
from typing import TYPE_CHECKING, Any

from flowmap.errors import LockError, StoreError
from flowmap.graph.model import Graph, Index, IndexedFile, from_iso, to_iso, utc_now
from flowmap.infrastructure.config import DEFAULT_STALE_LOCK_SECONDS, STATE_DIR

if TYPE_CHECKING:
    from types import TracebackType

logger = logging.getLogger(__name__)

FORMAT_VERSION = 1
INDEX_FILE = "index.json"
LOCK_FILE = "index.lock"


def store_path(root: Path) -> Path:
    return Path(root) / STATE_DIR / INDEX_FILE


# ---------------------------------------------------------------------------
# (De)serialization
# ---------------------------------------------------------------------------


def index_to_dict(index: Index) -> dict[str, Any]:
    return {
        "version": FORMAT_VERSION,
        "createdAt": to_iso(index.created_at),
        "lastRunAt": to_iso(index.last_run_at) if index.last_run_at else None,
        "projectRoot": index.project_root,
        "config": {"include": list(index.include), "exclude": list(index.exclude)},
        "fingerprint": index.fingerprint,
        "files": {path: entry.to_dict() for path, entry in index.files.items()},
        "graph": index.graph.to_dict(),
    }


def index_from_dict(data: dict[str, Any]) -> Index:
    """Rebuild an :class:`Index` from its document form.

    Raises ``ValueError`` (or ``KeyError``/``TypeError``/``AttributeError``
    from nested entries of the wrong shape) when the document is incompatible.
    """
    version = data.get("version")
    if version != FORMAT_VERSION:
        raise ValueError(f"unsupported index version {version!r}")
    config = data.get("config") or {}
    files = data.get("files") or {}
    graph = data.get("graph") or {}
    for name, value in (("config", config), ("files", files), ("graph", graph)):
        if not isinstance(value, dict):
            raise TypeError(f"{name!r} is not an object")
    last_run = data.get("lastRunAt")
    return Index(
        created_at=from_iso(data["createdAt"]),
        project_root=str(data.get("projectRoot", "")),
        last_run_at=from_iso(last_run) if last_run else None,
        include=list(config.get("include", [])),
        exclude=list(config.get("exclude", [])),
        files={
            path: IndexedFile.from_dict(path, entry)
            for path, entry in files.items()
        },
        graph=Graph.from_dict(graph),
        fingerprint=str(data.get("fingerprint", "")),
    )


def dumps(index: Index) -> str:
    """Canonical document text: sorted keys, 2-space indent, trailing newline."""
    return json.dumps(index_to_dict(index), sort_keys=True, indent=2, ensure_ascii=False) + "\n"


# ---------------------------------------------------------------------------
# Load / save
# ---------------------------------------------------------------------------


def load(root: Path) -> Index:
    """Load the index for *root*.

    A missing, unreadable, malformed or incompatible document yields a fresh
    empty index (logged), which makes the next run a full extraction.
    """
    path = store_path(root)
    project_root = str(Path(root).resolve())
    if not path.is_file():
        return Index.empty(project_root)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError("top level is not an object")
        return index_from_dict(data)
    except (
        OSError, UnicodeDecodeError, ValueError, KeyError, TypeError, AttributeError
    ) as exc:
        logger.warning("Ignoring unusable index %s (%s); starting fresh", path, exc)
        return Index.empty(project_root)


def save(root: Path, index: Index) -> Path:
    """Atomically write *index*: temp file in the same directory, fsync, rename.

    Raises
    ------
    StoreError
        The state directory or the document cannot be written.
    """
    path = store_path(root)
    content = dumps(index)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(suffix=".tmp", prefix="index_", dir=path.parent)
    except OSError as exc:
        raise StoreError(f"Cannot write {path}: {exc}") from exc

    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(content)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_path, path)
    except OSError as exc:
        try:
            os.unlink(tmp_path)
        except OSError:
            logger.debug("Could not remove temp file %s", tmp_path)
        raise StoreError(f"Cannot write {path}: {exc}") from exc

    logger.debug("Saved index to %s (%d files)", path, len(index.files))
    return path


def update(index: Index, entry: IndexedFile) -> None:
    index.files[entry.path] = entry


def remove(index: Index, path: str) -> bool:
    """Drop the entry for *path*; return whether one existed."""
    return index.files.pop(path, None) is not None


# ---------------------------------------------------------------------------
# Run lock
# ---------------------------------------------------------------------------


class RunLock:
    """Exclusive per-root run lock backed by an ``O_EXCL`` lock file.

    A lock file older than *stale_after* seconds is assumed to belong to a
    crashed run and is broken.  Use as a context manager::

        with RunLock(root):
            ...
    """

    def __init__(self, root: Path, stale_after: float = DEFAULT_STALE_LOCK_SECONDS) -> None:
        self.path = Path(root) / STATE_DIR / LOCK_FILE
        self.stale_after = stale_after
        self._held = False

    def acquire(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise LockError(f"Cannot create {self.path.parent}: {exc}") from exc

        for attempt in range(2):
            try:
                fd = os.open(str(self.path), os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
            except FileExistsError:
                if attempt == 0 and self._break_if_stale():
                    continue
                raise LockError(
                    f"Another flowmap run holds {self.path}; remove it if no run is active"
                ) from None
            except OSError as exc:
                raise LockError(f"Cannot create {self.path}: {exc}") from exc
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(f"{os.getpid()} {to_iso(utc_now())}\n")
            self._held = True
            return

    def _break_if_stale(self) -> bool:
        try:
            age = time.time() - self.path.stat().st_mtime
        except FileNotFoundError:
            # Released between our attempt and the stat.
            return True
        if age < self.stale_after:
            return False
        logger.warning("Breaking stale lock %s (%.0fs old)", self.path, age)
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        return True

    def release(self) -> None:
        if not self._held:
            return
        self._held = False
        try:
            self.path.unlink()
        except FileNotFoundError:
            logger.debug("Lock file %s already gone", self.path)

    def __enter__(self) -> RunLock:
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()
