"""Reference resolver: map module specifiers to indexed file paths."""

from __future__ import annotations

import posixpath
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

# Well-known path aliases, used when config has no ``aliases``.
DEFAULT_ALIASES: dict[str, str] = {
    "@/": "src/",
    "~/": "src/",
}

# Directory "barrel" modules, tried in this order.
DEFAULT_INDEX_NAMES: tuple[str, ...] = ("index", "__init__")


def _strip_suffixes(path: str) -> list[str]:
    """Return stems of *path* with one and with all suffixes removed.

    ``a/calc.flow.yml`` -> ``["a/calc.flow", "a/calc"]``.
    """
    head, name = posixpath.split(path)
    stems: list[str] = []
    parts = name.split(".")
    # Leading dot files (".env") have no suffix to strip.
    if parts[0] == "":
        return stems
    for cut in range(len(parts) - 1, 0, -1):
        stem = ".".join(parts[:cut])
        stems.append(posixpath.join(head, stem) if head else stem)
    return stems


class ReferenceResolver:
    """Resolve normalized module specifiers against a set of project files.

    Resolution order for a specifier:

    1. relative (``./x``, ``../x``) against the importer's directory;
    2. alias prefixes, longest first;
    3. root-relative, then under each configured source root.

    Each candidate base path matches an exact file, a file with any suffix
    (``calc`` -> ``calc.py``), or a barrel file in a directory
    (``components`` -> ``components/index.tsx``).  Ties are broken by path
    so resolution never depends on input order.
    """

    def __init__(
        self,
        paths: Iterable[str],
        *,
        aliases: Mapping[str, str] | None = None,
        source_roots: Iterable[str] = (),
        index_names: Iterable[str] = DEFAULT_INDEX_NAMES,
    ) -> None:
        self._paths: frozenset[str] = frozenset(paths)
        self._by_stem: dict[str, list[str]] = {}
        for path in sorted(self._paths):
            for stem in _strip_suffixes(path):
                self._by_stem.setdefault(stem, []).append(path)
        alias_map = DEFAULT_ALIASES if aliases is None else dict(aliases)
        self._aliases: list[tuple[str, str]] = sorted(
            alias_map.items(), key=lambda kv: (-len(kv[0]), kv[0])
        )
        self._source_roots: tuple[str, ...] = tuple(r.strip("/") for r in source_roots if r)
        self._index_names: tuple[str, ...] = tuple(index_names)

    def resolve(self, importer: str, module: str) -> str | None:
        """Return the indexed path *module* refers to from *importer*, if any."""
        for base in self._candidate_bases(importer, module):
            hit = self._lookup(base)
            if hit is not None and hit != importer:
                return hit
        return None

    def _candidate_bases(self, importer: str, module: str) -> list[str]:
        if not module:
            return []
        if module in (".", "..") or module.startswith(("./", "../")):
            joined = posixpath.join(posixpath.dirname(importer), module)
            return [posixpath.normpath(joined)]

        for prefix, target in self._aliases:
            if module.startswith(prefix):
                rest = module[len(prefix):]
                return [posixpath.normpath(posixpath.join(target, rest))]

        module = module.lstrip("/")
        bases = [posixpath.normpath(module)]
        bases.extend(
            posixpath.normpath(posixpath.join(root, module)) for root in self._source_roots
        )
        return bases

    def _lookup(self, base: str) -> str | None:
        if base == ".":
            base = ""
        if base == ".." or base.startswith("../"):
            return None
        if base:
            if base in self._paths:
                return base
            matches = self._by_stem.get(base)
            if matches:
                return matches[0]
        for name in self._index_names:
            key = posixpath.join(base, name) if base else name
            matches = self._by_stem.get(key)
            if matches:
                return matches[0]
        return None
