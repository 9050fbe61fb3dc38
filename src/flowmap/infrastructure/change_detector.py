"""Change detector: classify candidate paths against the persisted index."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable
    from pathlib import Path

    from flowmap.graph.model import Index, IndexedFile
    from flowmap.infrastructure.pathset import PathEntry


@dataclass
class ChangeSet:
    """Paths grouped by what happened to them since the last run.  Each list is sorted."""

    new: list[str] = field(default_factory=list)
    modified: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    # Unchanged by content but with a newer mtime; their entries get the
    # observed mtime without re-extraction.
    touched: list[str] = field(default_factory=list)

    @property
    def to_extract(self) -> list[str]:
        return sorted(self.new + self.modified)

    @property
    def nothing_changed(self) -> bool:
        return not (self.new or self.modified or self.deleted)


def file_hash(path: Path, chunk_size: int = 256 * 1024) -> str:
    """SHA-256 hex digest of *path*, read in *chunk_size* blocks."""
    digest = hashlib.sha256()
    with path.open("rb") as fh:
        for chunk in iter(lambda: fh.read(chunk_size), b""):
            digest.update(chunk)
    return digest.hexdigest()


def _same_state(entry: PathEntry, indexed: IndexedFile) -> bool:
    return (
        entry.modified_at <= indexed.last_indexed
        and entry.modified_at == indexed.file_modified
        and entry.size_bytes == indexed.size_bytes
    )


def diff(
    entries: Iterable[PathEntry],
    index: Index,
    *,
    hasher: Callable[[str], str | None] | None = None,
) -> ChangeSet:
    """Compare the observed path set with *index*.

    A path is unchanged when the index has an entry whose recorded mtime and
    size equal what is observed now, and that mtime is not later than the
    entry's ``last_indexed`` stamp.  With a *hasher* (path -> SHA-256 hex,
    or ``None`` when unreadable), a size-preserving change whose content
    hash matches the stored ``content_hash`` is reclassified as unchanged
    and reported as ``touched``.
    """
    changes = ChangeSet()
    seen: set[str] = set()
    for entry in entries:
        seen.add(entry.path)
        indexed = index.files.get(entry.path)
        if indexed is None:
            changes.new.append(entry.path)
        elif _same_state(entry, indexed):
            changes.unchanged.append(entry.path)
        elif (
            hasher is not None
            and indexed.content_hash
            and entry.size_bytes == indexed.size_bytes
            and hasher(entry.path) == indexed.content_hash
        ):
            changes.unchanged.append(entry.path)
            changes.touched.append(entry.path)
        else:
            changes.modified.append(entry.path)

    changes.deleted = [path for path in index.files if path not in seen]
    for bucket in (changes.new, changes.modified, changes.unchanged):
        bucket.sort()
    changes.deleted.sort()
    changes.touched.sort()
    return changes
