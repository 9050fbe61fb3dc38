"""Indexer: orchestrate one incremental run over a project root.

check root -> lock -> config -> path set -> load index -> diff -> extract
(thread pool) -> update entries -> aggregate -> prune drops -> apply recoveries
-> save.
"""

from __future__ import annotations

import codecs
import hashlib
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from flowmap import __version__
from flowmap.errors import IndexerError, RunCancelled
from flowmap.extractors import default_registry
from flowmap.extractors.languages import supported_extensions
from flowmap.graph.aggregator import aggregate
from flowmap.graph.model import Edge, IndexedFile, utc_now
from flowmap.infrastructure import index_store, pathset
from flowmap.infrastructure.change_detector import ChangeSet, diff, file_hash
from flowmap.infrastructure.config import DEFAULT_STALE_LOCK_SECONDS, load_config

if TYPE_CHECKING:
    import threading
    from collections.abc import Callable, Iterable
    from datetime import datetime

    from flowmap.extractors.base import ExtractorRegistry
    from flowmap.graph.aggregator import AggregationReport, DroppedEdge, Substitution
    from flowmap.graph.model import Index
    from flowmap.infrastructure.config import IndexerConfig
    from flowmap.infrastructure.pathset import PathEntry

logger = logging.getLogger(__name__)

# Read size for files above ``max_file_size``.
CHUNK_SIZE = 256 * 1024


@dataclass
class Summary:
    """Outcome of one indexer run."""

    root: str = ""
    store_path: str = ""
    new: int = 0
    modified: int = 0
    unchanged: int = 0
    deleted: int = 0
    extracted: int = 0
    files: int = 0
    elements: int = 0
    edges: int = 0
    cross_file_edges: int = 0
    elements_added: dict[str, int] = field(default_factory=dict)
    elements_removed: dict[str, int] = field(default_factory=dict)
    edges_added: int = 0
    edges_removed: int = 0
    recovered: list[dict[str, Any]] = field(default_factory=list)
    dropped: list[dict[str, Any]] = field(default_factory=list)
    ambiguities: list[str] = field(default_factory=list)
    stale_references: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    full: bool = False
    nothing_changed: bool = False
    duration_s: float = 0.0

    @property
    def recovered_edges(self) -> int:
        return sum(1 for sub in self.recovered if sub["context"] == "edge")

    def to_dict(self) -> dict[str, Any]:
        return {
            "root": self.root,
            "storePath": self.store_path,
            "new": self.new,
            "modified": self.modified,
            "unchanged": self.unchanged,
            "deleted": self.deleted,
            "extracted": self.extracted,
            "files": self.files,
            "elements": self.elements,
            "edges": self.edges,
            "crossFileEdges": self.cross_file_edges,
            "elementsAdded": dict(self.elements_added),
            "elementsRemoved": dict(self.elements_removed),
            "edgesAdded": self.edges_added,
            "edgesRemoved": self.edges_removed,
            "recovered": list(self.recovered),
            "dropped": list(self.dropped),
            "ambiguities": list(self.ambiguities),
            "staleReferences": list(self.stale_references),
            "skipped": list(self.skipped),
            "failed": list(self.failed),
            "warnings": list(self.warnings),
            "full": self.full,
            "nothingChanged": self.nothing_changed,
            "durationS": round(self.duration_s, 3),
        }


@dataclass
class _Outcome:
    path: str
    entry: IndexedFile | None = None
    warnings: list[str] = field(default_factory=list)
    skipped: bool = False


def read_source(path: Path, size: int, max_file_size: int) -> tuple[str, str]:
    """Return ``(text, sha256)`` for *path*.

    Files above *max_file_size* are read in chunks through an incremental
    UTF-8 decoder so a multi-byte character may straddle chunk boundaries.
    """
    if size <= max_file_size:
        data = path.read_bytes()
        return data.decode("utf-8"), hashlib.sha256(data).hexdigest()

    decoder = codecs.getincrementaldecoder("utf-8")()
    digest = hashlib.sha256()
    parts: list[str] = []
    with path.open("rb") as fh:
        for chunk in iter(lambda: fh.read(CHUNK_SIZE), b""):
            digest.update(chunk)
            parts.append(decoder.decode(chunk))
    parts.append(decoder.decode(b"", final=True))
    return "".join(parts), digest.hexdigest()


def _hash_path(path: Path) -> str | None:
    try:
        return file_hash(path, CHUNK_SIZE)
    except OSError:
        return None


def fingerprint(registry: ExtractorRegistry, scope_tag: str) -> str:
    """Identify extractor behaviour; a change forces full re-extraction."""
    exts = ",".join(sorted(supported_extensions()))
    return f"{__version__}|{','.join(registry.categories)}|{exts}|{scope_tag}"


def apply_substitutions(
    files: dict[str, IndexedFile],
    substitutions: Iterable[Substitution],
) -> int:
    """Rewrite recovered ids inside the owning file entries.

    Returns the number of entries changed.
    """
    mappings: dict[str, dict[str, str]] = {}
    for sub in substitutions:
        if sub.owner is not None and sub.owner in files:
            mappings.setdefault(sub.owner, {})[sub.old_id] = sub.new_id

    for owner, mapping in mappings.items():
        entry = files[owner]
        edges: list[Edge] = []
        for edge in entry.local_edges:
            edges.append(
                Edge(
                    mapping.get(edge.source, edge.source),
                    mapping.get(edge.target, edge.target),
                    edge.edge_type,
                    edge.label,
                )
            )
        entry.local_edges = edges
        entry.elements = [e.with_references(dict(mapping)) for e in entry.elements]
    return len(mappings)


def prune_unresolved(
    files: dict[str, IndexedFile],
    dropped: Iterable[DroppedEdge],
    stripped: Iterable[tuple[str, str]],
) -> int:
    """Remove dropped edges and stripped payload ids from their owning entries.

    A dangling id left in an unchanged file would silently attach to
    whatever element later takes that id.  Returns the number of entries
    changed.
    """
    edges_by_owner: dict[str, set[Edge]] = {}
    for drop in dropped:
        if drop.owner is not None and drop.owner in files:
            edges_by_owner.setdefault(drop.owner, set()).add(drop.edge)
    ids_by_owner: dict[str, dict[str, str | None]] = {}
    for owner, element_id in stripped:
        if owner in files:
            ids_by_owner.setdefault(owner, {})[element_id] = None

    owners = set(edges_by_owner) | set(ids_by_owner)
    for owner in owners:
        entry = files[owner]
        gone = edges_by_owner.get(owner, set())
        entry.local_edges = [e for e in entry.local_edges if e not in gone]
        mapping = ids_by_owner.get(owner)
        if mapping:
            entry.elements = [e.with_references(dict(mapping)) for e in entry.elements]
    return len(owners)


class Indexer:
    """Incremental project indexer.

    Parameters
    ----------
    config:
        Settings to use; when ``None`` they are loaded from the project root
        on every run.
    registry:
        Extraction strategies; defaults to :func:`default_registry`.
    workers:
        Thread-pool size override.
    clock:
        Source of "now" for ``last_indexed`` stamps.
    full:
        Re-extract every file regardless of change detection.
    """

    def __init__(
        self,
        config: IndexerConfig | None = None,
        *,
        registry: ExtractorRegistry | None = None,
        workers: int | None = None,
        clock: Callable[[], datetime] = utc_now,
        full: bool = False,
    ) -> None:
        self._config = config
        self._registry = registry
        self._workers = workers
        self._clock = clock
        self._full = full

    def run(self, root: Path | str, *, cancel: threading.Event | None = None) -> Summary:
        """Index *root* and persist the result.

        Raises
        ------
        IndexerError
            *root* is not an existing directory.
        LockError
            Another run holds the lock.
        ConfigError
            The config file is invalid.
        StoreError
            The index cannot be written.
        RunCancelled
            *cancel* was set; nothing was saved.
        """
        root = Path(root)
        if not root.is_dir():
            raise IndexerError(f"Project root does not exist or is not a directory: {root}")
        root = root.resolve()

        stale_after = (
            self._config.stale_lock_seconds if self._config else DEFAULT_STALE_LOCK_SECONDS
        )
        started = time.monotonic()
        with index_store.RunLock(root, stale_after=stale_after):
            summary = self._run_locked(root, cancel)
        summary.duration_s = time.monotonic() - started
        logger.info(
            "Indexed %s: %d new, %d modified, %d unchanged, %d deleted; %d elements, %d edges",
            root, summary.new, summary.modified, summary.unchanged, summary.deleted,
            summary.elements, summary.edges,
        )
        return summary

    # -- pipeline -----------------------------------------------------------

    def _run_locked(self, root: Path, cancel: threading.Event | None) -> Summary:
        config = self._config or load_config(root)
        registry = self._registry or default_registry(
            categories=config.categories, scope_tag=config.scope_tag
        )
        now = self._clock()
        summary = Summary(root=str(root), store_path=str(index_store.store_path(root)))

        entries, walk_warnings = pathset.resolve(
            root,
            config.include,
            config.exclude,
            skip_generated=config.skip_generated,
            binary_extensions=config.binary_extensions,
        )
        summary.warnings.extend(walk_warnings)
        entries = [e for e in entries if registry.category_for(e.path) is not None]

        index = index_store.load(root)
        previous_graph = index.graph
        current_fingerprint = fingerprint(registry, config.scope_tag)
        full = self._full or bool(index.files and index.fingerprint != current_fingerprint)

        hasher = (lambda p: _hash_path(root / p)) if config.hash_check else None
        changes = diff(entries, index, hasher=hasher)
        if full:
            _force_full(changes)
        summary.full = full
        self._check_cancel(cancel)

        by_path = {e.path: e for e in entries}
        outcomes = self._extract_all(
            root, changes.to_extract, by_path, registry, config, now, cancel
        )
        self._check_cancel(cancel)

        for path in changes.deleted:
            index_store.remove(index, path)
        for path in changes.touched:
            stale = index.files[path]
            stale.file_modified = by_path[path].modified_at
            stale.last_indexed = now

        failed: list[str] = []
        fresh: set[str] = set()
        for outcome in outcomes:
            summary.warnings.extend(outcome.warnings)
            if outcome.entry is not None:
                index_store.update(index, outcome.entry)
                fresh.add(outcome.path)
            elif outcome.skipped:
                summary.skipped.append(outcome.path)
            else:
                failed.append(outcome.path)

        graph, report = aggregate(
            index.files,
            previous=previous_graph,
            edge_rules=config.edge_rules,
            aliases=config.aliases,
            source_roots=config.source_roots,
            fresh=fresh,
            failed_files=failed,
        )
        prune_unresolved(index.files, report.dropped, report.stripped)
        apply_substitutions(index.files, report.recovered)

        index.graph = graph
        index.project_root = str(root)
        index.last_run_at = now
        index.include = list(config.include)
        index.exclude = list(config.exclude)
        index.fingerprint = current_fingerprint

        self._check_cancel(cancel)
        index_store.save(root, index)

        _fill_summary(summary, changes, index, report)
        summary.extracted = len(fresh)
        summary.failed = sorted(failed)
        summary.nothing_changed = changes.nothing_changed and not full
        return summary

    def _extract_all(
        self,
        root: Path,
        paths: list[str],
        by_path: dict[str, PathEntry],
        registry: ExtractorRegistry,
        config: IndexerConfig,
        now: datetime,
        cancel: threading.Event | None = None,
    ) -> list[_Outcome]:
        if not paths:
            return []
        workers = max(1, min(self._workers or config.workers, len(paths)))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = [
                pool.submit(self._extract_one, root, by_path[p], registry, config, now, cancel)
                for p in paths
            ]
            # Collected in path order regardless of completion order.
            outcomes: list[_Outcome] = []
            for future in futures:
                if cancel is not None and cancel.is_set():
                    for pending in futures:
                        pending.cancel()
                    self._check_cancel(cancel)
                outcomes.append(future.result())
            return outcomes

    def _extract_one(
        self,
        root: Path,
        entry: PathEntry,
        registry: ExtractorRegistry,
        config: IndexerConfig,
        now: datetime,
        cancel: threading.Event | None = None,
    ) -> _Outcome:
        path = entry.path
        if cancel is not None and cancel.is_set():
            return _Outcome(path, skipped=True)
        if entry.size_bytes > config.hard_file_size_limit:
            msg = (
                f"{path}: {entry.size_bytes} bytes exceeds the hard limit of "
                f"{config.hard_file_size_limit}; skipped"
            )
            logger.warning("%s", msg)
            return _Outcome(path, warnings=[msg], skipped=True)

        extractor = registry.for_path(path)
        if extractor is None:
            return _Outcome(path, skipped=True)

        try:
            content, digest = read_source(root / path, entry.size_bytes, config.max_file_size)
        except (OSError, UnicodeDecodeError) as exc:
            msg = f"{path}: cannot read ({exc})"
            logger.warning("%s", msg)
            return _Outcome(path, warnings=[msg])

        try:
            result = extractor.extract(path, content)
        except Exception as exc:  # extractor bugs must not abort the run
            msg = f"{path}: {extractor.category} extractor failed: {exc}"
            logger.warning("%s", msg)
            return _Outcome(path, warnings=[msg])

        indexed = IndexedFile(
            path=path,
            last_indexed=now,
            file_modified=entry.modified_at,
            size_bytes=entry.size_bytes,
            category=extractor.category,
            content_hash=digest,
            elements=result.elements,
            local_edges=result.local_edges,
            references=result.references,
        )
        return _Outcome(path, entry=indexed, warnings=list(result.warnings))

    @staticmethod
    def _check_cancel(cancel: threading.Event | None) -> None:
        if cancel is not None and cancel.is_set():
            raise RunCancelled("Run cancelled; the index was not modified")


def _force_full(changes: ChangeSet) -> None:
    changes.modified = sorted(changes.modified + changes.unchanged)
    changes.unchanged = []
    changes.touched = []


def _fill_summary(
    summary: Summary,
    changes: ChangeSet,
    index: Index,
    report: AggregationReport,
) -> None:
    summary.new = len(changes.new)
    summary.modified = len(changes.modified)
    summary.unchanged = len(changes.unchanged)
    summary.deleted = len(changes.deleted)
    summary.files = len(index.files)
    summary.elements = len(index.graph.elements)
    summary.edges = len(index.graph.edges)
    summary.cross_file_edges = report.cross_file_edges
    summary.elements_added = dict(report.elements_added)
    summary.elements_removed = dict(report.elements_removed)
    summary.edges_added = report.edges_added
    summary.edges_removed = report.edges_removed
    summary.recovered = [sub.to_dict() for sub in report.recovered]
    summary.dropped = [drop.to_dict() for drop in report.dropped]
    summary.ambiguities = list(report.ambiguities)
    summary.stale_references = list(report.stale_references)
    summary.warnings.extend(report.unmatched_references)
