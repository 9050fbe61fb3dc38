"""Extractor contract, per-file element builder, and strategy registry."""

from __future__ import annotations

import fnmatch
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from flowmap.graph.model import (
    DEFAULT_SCOPE_TAG,
    Edge,
    Element,
    Reference,
    default_attrs,
    make_element_id,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping


@dataclass
class ExtractionResult:
    """Everything one extractor found in one file."""

    elements: list[Element] = field(default_factory=list)
    local_edges: list[Edge] = field(default_factory=list)
    references: list[Reference] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@runtime_checkable
class Extractor(Protocol):
    """A pluggable per-category extraction strategy.

    ``extract`` must be pure: the same ``(path, content)`` always yields the
    same result, including identifier ordinals.
    """

    category: str
    extensions: frozenset[str]

    def extract(self, path: str, content: str) -> ExtractionResult: ...


class ElementBuilder:
    """Collects elements for one file and assigns ordinal identifiers.

    Ordinals count per kind in the order :meth:`add` is called.  Structural
    edges implied by payloads (a Component capturing a DataPoint, a
    Transform reading its inputs) are derived in :meth:`build`, ahead of any
    explicit edges.
    """

    def __init__(self, path: str, scope_tag: str = DEFAULT_SCOPE_TAG) -> None:
        self.path = path
        self.scope_tag = scope_tag
        self._counters: dict[str, int] = {}
        self._drafts: list[tuple[str, str, str, dict[str, Any]]] = []
        self._by_id: dict[str, dict[str, Any]] = {}
        self._edges: list[Edge] = []
        self._references: list[Reference] = []
        self._warnings: list[str] = []

    def add(self, kind: str, label: str, **attrs: Any) -> str:
        """Create an element and return its identifier."""
        payload = default_attrs(kind)
        payload.update({k: v for k, v in attrs.items() if k in payload})
        ordinal = self._counters.get(kind, 0)
        self._counters[kind] = ordinal + 1
        element_id = make_element_id(self.scope_tag, self.path, kind, ordinal)
        self._drafts.append((element_id, kind, label, payload))
        self._by_id[element_id] = payload
        return element_id

    def attrs(self, element_id: str) -> dict[str, Any]:
        """Mutable payload of a not-yet-built element."""
        return self._by_id[element_id]

    def append(self, element_id: str, name: str, value: Any) -> None:
        """Append *value* to a list attr, keeping entries unique."""
        items = self._by_id[element_id][name]
        if value not in items:
            items.append(value)

    def find(self, label: str, kind: str | None = None) -> str | None:
        """First element (in discovery order) with *label*, case-insensitive."""
        wanted = label.casefold()
        for element_id, element_kind, element_label, _ in self._drafts:
            if kind is not None and element_kind != kind:
                continue
            if element_label.casefold() == wanted:
                return element_id
        return None

    def edge(self, source: str, target: str, edge_type: str, label: str | None = None) -> None:
        self._edges.append(Edge(source=source, target=target, edge_type=edge_type, label=label))

    def reference(
        self,
        module: str,
        name: str,
        usage: str = "import",
        user: str | None = None,
        arguments: Iterable[str] = (),
    ) -> None:
        self._references.append(
            Reference(module=module, name=name, usage=usage, user=user, arguments=tuple(arguments))
        )

    def warn(self, message: str) -> None:
        self._warnings.append(f"{self.path}: {message}")

    def build(self) -> ExtractionResult:
        elements = [
            Element.create(element_id, kind, label, self.path, **payload)
            for element_id, kind, label, payload in self._drafts
        ]
        edges = _structural_edges(elements)
        edges.extend(self._edges)
        return ExtractionResult(
            elements=elements,
            local_edges=edges,
            references=list(self._references),
            warnings=list(self._warnings),
        )


def _structural_edges(elements: list[Element]) -> list[Edge]:
    """Edges implied by component, transform, and screen payloads."""
    edges: list[Edge] = []
    for element in elements:
        attrs = element.attrs
        if element.kind == "Component":
            edges.extend(Edge(element.id, ref, "flows-to") for ref in attrs["captures"])
            edges.extend(Edge(ref, element.id, "flows-to") for ref in attrs["displays"])
            edges.extend(Edge(element.id, ref, "contains") for ref in attrs["children"])
        elif element.kind == "Transform":
            if attrs["transform_kind"] == "validation":
                edges.extend(Edge(element.id, ref, "validates") for ref in attrs["inputs"])
            else:
                edges.extend(Edge(ref, element.id, "transforms") for ref in attrs["inputs"])
            edges.extend(Edge(element.id, ref, "derives-from") for ref in attrs["outputs"])
        elif element.kind == "Screen":
            for region in attrs["regions"]:
                edges.extend(Edge(element.id, ref, "contains") for ref in region["elements"])
    return [edge for edge in edges if edge.source != edge.target]


class ExtractorRegistry:
    """Selects an extraction strategy for a path.

    Explicit ``categories`` globs (``{"*.x": "manifest"}``) win over
    extension matching; among extensions the longest suffix wins, so
    ``.flow.yml`` beats ``.yml``.
    """

    def __init__(
        self,
        extractors: Iterable[Extractor] = (),
        categories: Mapping[str, str] | None = None,
    ) -> None:
        self._by_category: dict[str, Extractor] = {}
        self._categories: list[tuple[str, str]] = sorted((categories or {}).items())
        for extractor in extractors:
            self.register(extractor)

    def register(self, extractor: Extractor) -> None:
        self._by_category[extractor.category] = extractor

    def get(self, category: str) -> Extractor | None:
        return self._by_category.get(category)

    @property
    def categories(self) -> list[str]:
        return sorted(self._by_category)

    def category_for(self, path: str) -> str | None:
        """Return the category for *path*, or ``None`` when nothing handles it."""
        name = path.rsplit("/", 1)[-1]
        for pattern, category in self._categories:
            if (fnmatch.fnmatchcase(path, pattern) or fnmatch.fnmatchcase(name, pattern)) and (
                category in self._by_category
            ):
                return category

        best: tuple[int, str] | None = None
        for category, extractor in sorted(self._by_category.items()):
            for ext in extractor.extensions:
                if name.endswith(ext) and (best is None or len(ext) > best[0]):
                    best = (len(ext), category)
        return best[1] if best else None

    def for_path(self, path: str) -> Extractor | None:
        category = self.category_for(path)
        return self._by_category.get(category) if category else None


# Function-name prefixes stripped to name a transform's result.
_OUTPUT_PREFIXES: tuple[str, ...] = (
    "compute",
    "calculate",
    "calc",
    "get",
    "build",
    "make",
    "derive",
)


def derived_output_label(name: str) -> str:
    """Name the result of a function: ``compute_total``/``calcTotal`` -> ``total``."""
    for prefix in _OUTPUT_PREFIXES:
        rest = name[len(prefix):]
        if not name.startswith(prefix) or not rest:
            continue
        if rest[0] == "_" and len(rest) > 1:
            return rest[1:]
        if rest[0].isupper():
            return rest[0].lower() + rest[1:]
    return f"{name}_result"
