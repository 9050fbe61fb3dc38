"""Path set: walk the project root and select candidate files.

Include and exclude rules are gitignore-style patterns compiled with
``pathspec``.  Exclusion always wins: configured excludes, the root
``.gitignore`` and nested ``.gitignore`` files all veto inclusion, and the
state directory plus ``.git/`` are never listed.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import pathspec

from flowmap.graph.model import mtime_from_ns
from flowmap.infrastructure.config import DEFAULT_BINARY_EXTENSIONS, STATE_DIR

if TYPE_CHECKING:
    from collections.abc import Collection, Iterable
    from datetime import datetime

logger = logging.getLogger(__name__)

# Never listed, whatever the configuration says.
ALWAYS_EXCLUDED: tuple[str, ...] = (".git/", f"{STATE_DIR}/")

GENERATED_MARKERS: tuple[bytes, ...] = (
    b"@generated",
    b"DO NOT EDIT",
    b"auto-generated",
    b"autogenerated",
)
GENERATED_SNIFF_BYTES = 512


@dataclass(frozen=True)
class PathEntry:
    """A candidate file: root-relative POSIX path plus observed stat."""

    path: str
    modified_at: datetime
    size_bytes: int


def read_ignore_file(path: Path) -> list[str]:
    """Read a .gitignore-style file, stripping comments and blank lines."""
    lines: list[str] = []
    for raw in path.read_text(encoding="utf-8-sig", errors="replace").splitlines():
        stripped = raw.strip()
        if stripped and not stripped.startswith("#"):
            lines.append(stripped)
    return lines


def is_generated(path: Path) -> bool:
    """Check the first bytes of *path* for a generated-code marker."""
    with path.open("rb") as fh:
        head = fh.read(GENERATED_SNIFF_BYTES)
    return any(marker in head for marker in GENERATED_MARKERS)


class _Scope:
    """Compiled include/exclude rules for one walk."""

    def __init__(self, root: Path, include: Iterable[str], exclude: Iterable[str]) -> None:
        self._include = pathspec.PathSpec.from_lines("gitignore", list(include))
        patterns = list(ALWAYS_EXCLUDED)
        patterns.extend(exclude)
        gitignore = root / ".gitignore"
        if gitignore.is_file():
            patterns.extend(read_ignore_file(gitignore))
        self._exclude = pathspec.PathSpec.from_lines("gitignore", patterns)
        self._nested: dict[str, pathspec.PathSpec] = {}

    def add_nested(self, rel_dir: str, patterns: list[str]) -> None:
        if patterns:
            self._nested[rel_dir] = pathspec.PathSpec.from_lines("gitignore", patterns)

    def _nested_match(self, rel_path: str, suffix: str = "") -> bool:
        parts = rel_path.split("/")
        for depth in range(1, len(parts)):
            spec = self._nested.get("/".join(parts[:depth]))
            if spec is not None and spec.match_file("/".join(parts[depth:]) + suffix):
                return True
        return False

    def dir_excluded(self, rel_dir: str) -> bool:
        return self._exclude.match_file(f"{rel_dir}/") or self._nested_match(rel_dir, "/")

    def file_included(self, rel_path: str) -> bool:
        if self._exclude.match_file(rel_path) or self._nested_match(rel_path):
            return False
        return self._include.match_file(rel_path)


def resolve(
    root: Path,
    include: Iterable[str] = ("*",),
    exclude: Iterable[str] = (),
    *,
    skip_generated: bool = True,
    binary_extensions: Collection[str] = DEFAULT_BINARY_EXTENSIONS,
) -> tuple[list[PathEntry], list[str]]:
    """Walk *root* and return ``(entries, warnings)``.

    Entries are sorted by path.  Unreadable directories and files that
    cannot be stat'ed are skipped with a warning.  Oversized files are still
    listed; the indexer decides what to do with them.
    """
    root = Path(root)
    scope = _Scope(root, include, exclude)
    binary = {ext.lower() for ext in binary_extensions}
    entries: list[PathEntry] = []
    warnings: list[str] = []

    def _on_error(exc: OSError) -> None:
        msg = f"Cannot read directory {exc.filename}: {exc.strerror}"
        logger.warning("%s", msg)
        warnings.append(msg)

    for dirpath, dirnames, filenames in os.walk(root, onerror=_on_error):
        rel_dir = Path(dirpath).relative_to(root).as_posix()
        if rel_dir == ".":
            rel_dir = ""

        if rel_dir:
            nested = Path(dirpath) / ".gitignore"
            if nested.is_file():
                try:
                    scope.add_nested(rel_dir, read_ignore_file(nested))
                except OSError as exc:
                    warnings.append(f"Cannot read {rel_dir}/.gitignore: {exc}")

        dirnames[:] = sorted(
            d
            for d in dirnames
            if not scope.dir_excluded(f"{rel_dir}/{d}" if rel_dir else d)
            and not Path(dirpath, d).is_symlink()
        )

        for fname in sorted(filenames):
            rel_path = f"{rel_dir}/{fname}" if rel_dir else fname
            if not scope.file_included(rel_path):
                continue
            if os.path.splitext(fname)[1].lower() in binary:
                continue
            full = Path(dirpath, fname)
            try:
                stat = full.stat()
            except OSError as exc:
                if full.is_symlink():
                    logger.debug("Skipping broken symlink: %s", rel_path)
                    continue
                msg = f"Cannot stat {rel_path}: {exc.strerror or exc}"
                logger.warning("%s", msg)
                warnings.append(msg)
                continue
            if skip_generated:
                try:
                    if is_generated(full):
                        logger.debug("Skipping generated file: %s", rel_path)
                        continue
                except OSError:
                    # Still listed; the indexer reports the read failure and
                    # keeps the previous entry.
                    logger.debug("Cannot sniff %s for generated markers", rel_path)
            entries.append(PathEntry(rel_path, mtime_from_ns(stat.st_mtime_ns), stat.st_size))

    entries.sort(key=lambda e: e.path)
    return entries, warnings
