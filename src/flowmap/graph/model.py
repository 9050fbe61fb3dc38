"""Graph data model: elements, edges, references, indexed files, and the index root."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, NamedTuple

ELEMENT_KINDS: tuple[str, ...] = (
    "DataPoint",
    "Component",
    "Transform",
    "Table",
    "Image",
    "Screen",
)

EDGE_TYPES: frozenset[str] = frozenset(
    {"flows-to", "derives-from", "transforms", "validates", "contains"}
)

USAGES: frozenset[str] = frozenset({"import", "render", "call", "query", "mutate", "read", "input"})

ORIGINS: frozenset[str] = frozenset({"captured", "inferred"})
TRANSFORM_KINDS: frozenset[str] = frozenset({"formula", "validation", "workflow"})
PERSISTENCE_KINDS: frozenset[str] = frozenset({"database", "api", "file", "manual"})

DEFAULT_SCOPE_TAG = "el"

# Kind -> default payload.  Every element carries exactly these attrs.
_KIND_DEFAULTS: dict[str, dict[str, Any]] = {
    "DataPoint": {
        "value_type": "",
        "origin": "inferred",
        "origin_description": "",
        "constraints": [],
    },
    "Component": {"displays": [], "captures": [], "children": [], "layout_hint": ""},
    "Transform": {
        "transform_kind": "formula",
        "inputs": [],
        "outputs": [],
        "logic_description": "",
    },
    "Table": {"persistence_kind": "database", "columns": []},
    "Image": {"source": "", "alt": ""},
    "Screen": {"regions": []},
}

# Payload fields that hold lists of element ids.
REFERENCE_FIELDS: dict[str, tuple[str, ...]] = {
    "Component": ("displays", "captures", "children"),
    "Transform": ("inputs", "outputs"),
}

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Identifiers
# ---------------------------------------------------------------------------


class ElementRef(NamedTuple):
    """Parsed form of a serialized element identifier."""

    scope: str
    path: str
    kind: str
    ordinal: int


def make_element_id(scope: str, path: str, kind: str, ordinal: int) -> str:
    """Serialize ``(scope, path, kind, ordinal)`` as ``scope:path#Kind:ordinal``."""
    return f"{scope}:{path}#{kind}:{ordinal}"


def parse_element_id(element_id: str) -> ElementRef | None:
    """Parse an identifier produced by :func:`make_element_id`.

    Returns ``None`` when the string is not a well-formed identifier.
    """
    head, sep, tail = element_id.rpartition("#")
    if not sep:
        return None
    kind, sep, ordinal = tail.rpartition(":")
    if not sep or not ordinal.isdigit() or kind not in ELEMENT_KINDS:
        return None
    scope, sep, path = head.partition(":")
    if not sep or not path:
        return None
    return ElementRef(scope=scope, path=path, kind=kind, ordinal=int(ordinal))


def element_sort_key(element_id: str) -> tuple[str, int, int, str]:
    """Sort by file, kind, then numeric ordinal (so ``:10`` follows ``:9``)."""
    ref = parse_element_id(element_id)
    if ref is None:
        return ("", len(ELEMENT_KINDS), 0, element_id)
    return (ref.path, ELEMENT_KINDS.index(ref.kind), ref.ordinal, element_id)


# ---------------------------------------------------------------------------
# Timestamps
# ---------------------------------------------------------------------------


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def mtime_from_ns(mtime_ns: int) -> datetime:
    """Convert ``st_mtime_ns`` to an aware datetime without float rounding."""
    return _EPOCH + timedelta(microseconds=mtime_ns // 1000)


def to_iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_iso(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ---------------------------------------------------------------------------
# Elements and edges
# ---------------------------------------------------------------------------


def default_attrs(kind: str) -> dict[str, Any]:
    """Return a fresh copy of the default payload for *kind*."""
    if kind not in _KIND_DEFAULTS:
        raise ValueError(f"Unknown element kind: {kind!r}")
    return copy.deepcopy(_KIND_DEFAULTS[kind])


def _normalize_attrs(kind: str, attrs: dict[str, Any]) -> dict[str, Any]:
    merged = default_attrs(kind)
    for key, value in attrs.items():
        if key in merged:
            merged[key] = value
    if kind == "DataPoint":
        merged["constraints"] = sorted({str(c) for c in merged["constraints"]})
    elif kind == "Table":
        merged["columns"] = [[str(name), str(vtype)] for name, vtype in merged["columns"]]
    elif kind == "Screen":
        merged["regions"] = [
            {"name": str(r.get("name", "")), "elements": list(r.get("elements", []))}
            for r in merged["regions"]
        ]
    for name in REFERENCE_FIELDS.get(kind, ()):
        merged[name] = list(merged[name])
    return merged


@dataclass(frozen=True)
class Element:
    """A typed node of the graph.

    ``attrs`` holds the kind-specific payload (see :func:`default_attrs`).
    """

    id: str
    kind: str
    label: str
    file: str
    attrs: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(cls, id: str, kind: str, label: str, file: str, **attrs: Any) -> Element:  # noqa: A002
        return cls(id=id, kind=kind, label=label, file=file, attrs=_normalize_attrs(kind, attrs))

    def referenced_ids(self) -> list[tuple[str, str]]:
        """Return ``(field, element_id)`` pairs for every id held in the payload."""
        pairs: list[tuple[str, str]] = []
        for name in REFERENCE_FIELDS.get(self.kind, ()):
            pairs.extend((name, ref) for ref in self.attrs.get(name, []))
        if self.kind == "Screen":
            for region in self.attrs.get("regions", []):
                pairs.extend((f"regions.{region['name']}", ref) for ref in region["elements"])
        return pairs

    def with_references(self, mapping: dict[str, str | None]) -> Element:
        """Return a copy with payload ids rewritten; ``None`` removes an id."""
        attrs = copy.deepcopy(self.attrs)

        def _rewrite(ids: list[str]) -> list[str]:
            out: list[str] = []
            for ref in ids:
                new = mapping.get(ref, ref)
                if new is not None and new not in out:
                    out.append(new)
            return out

        for name in REFERENCE_FIELDS.get(self.kind, ()):
            attrs[name] = _rewrite(attrs.get(name, []))
        if self.kind == "Screen":
            for region in attrs.get("regions", []):
                region["elements"] = _rewrite(region["elements"])
        return Element(id=self.id, kind=self.kind, label=self.label, file=self.file, attrs=attrs)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind,
            "label": self.label,
            "file": self.file,
            "attrs": copy.deepcopy(self.attrs),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Element:
        return cls.create(
            data["id"], data["kind"], data.get("label", ""), data.get("file", ""),
            **data.get("attrs", {}),
        )


@dataclass(frozen=True)
class Edge:
    """A directed, typed edge between two element ids."""

    source: str
    target: str
    edge_type: str
    label: str | None = None

    def __post_init__(self) -> None:
        if self.edge_type not in EDGE_TYPES:
            raise ValueError(f"Unknown edge type: {self.edge_type!r}")

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.source, self.target, self.edge_type)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"from": self.source, "to": self.target, "type": self.edge_type}
        if self.label:
            data["label"] = self.label
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Edge:
        return cls(
            source=data["from"],
            target=data["to"],
            edge_type=data["type"],
            label=data.get("label"),
        )


@dataclass(frozen=True)
class Reference:
    """An import-like declaration naming an element in another file.

    ``module`` is normalized to a slash-separated specifier: ``./x``,
    ``../x``, an alias such as ``@/x``, or a root-relative ``pkg/mod``.
    """

    module: str
    name: str
    usage: str = "import"
    user: str | None = None
    arguments: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"module": self.module, "name": self.name, "usage": self.usage}
        if self.user is not None:
            data["user"] = self.user
        if self.arguments:
            data["arguments"] = list(self.arguments)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Reference:
        return cls(
            module=data["module"],
            name=data["name"],
            usage=data.get("usage", "import"),
            user=data.get("user"),
            arguments=tuple(data.get("arguments", ())),
        )


# ---------------------------------------------------------------------------
# Per-file entries, graph, index
# ---------------------------------------------------------------------------


@dataclass
class IndexedFile:
    """Extraction result for one file plus the filesystem state it reflects."""

    path: str
    last_indexed: datetime
    file_modified: datetime
    size_bytes: int
    category: str = ""
    content_hash: str = ""
    elements: list[Element] = field(default_factory=list)
    local_edges: list[Edge] = field(default_factory=list)
    references: list[Reference] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "lastIndexed": to_iso(self.last_indexed),
            "fileModified": to_iso(self.file_modified),
            "sizeBytes": self.size_bytes,
            "category": self.category,
            "contentHash": self.content_hash,
            "elements": [e.to_dict() for e in self.elements],
            "localEdges": [e.to_dict() for e in self.local_edges],
            "references": [r.to_dict() for r in self.references],
        }

    @classmethod
    def from_dict(cls, path: str, data: dict[str, Any]) -> IndexedFile:
        return cls(
            path=path,
            last_indexed=from_iso(data["lastIndexed"]),
            file_modified=from_iso(data["fileModified"]),
            size_bytes=int(data["sizeBytes"]),
            category=data.get("category", ""),
            content_hash=data.get("contentHash", ""),
            elements=[Element.from_dict(e) for e in data.get("elements", [])],
            local_edges=[Edge.from_dict(e) for e in data.get("localEdges", [])],
            references=[Reference.from_dict(r) for r in data.get("references", [])],
        )


@dataclass
class Graph:
    """Project-wide graph.  Always derived from the indexed files."""

    elements: list[Element] = field(default_factory=list)
    edges: list[Edge] = field(default_factory=list)

    def element_map(self) -> dict[str, Element]:
        return {e.id: e for e in self.elements}

    def metadata(self) -> dict[str, Any]:
        counts = dict.fromkeys(ELEMENT_KINDS, 0)
        for element in self.elements:
            counts[element.kind] += 1
        return {
            "counts": counts,
            "edgeCount": len(self.edges),
            "sourceFileCount": len({e.file for e in self.elements}),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "elements": [e.to_dict() for e in self.elements],
            "edges": [e.to_dict() for e in self.edges],
            "metadata": self.metadata(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Graph:
        return cls(
            elements=[Element.from_dict(e) for e in data.get("elements", [])],
            edges=[Edge.from_dict(e) for e in data.get("edges", [])],
        )


@dataclass
class Index:
    """Root aggregate persisted by the index store."""

    created_at: datetime
    project_root: str
    last_run_at: datetime | None = None
    include: list[str] = field(default_factory=list)
    exclude: list[str] = field(default_factory=list)
    files: dict[str, IndexedFile] = field(default_factory=dict)
    graph: Graph = field(default_factory=Graph)
    # Extractor + grammar availability at the last run; a change forces
    # full re-extraction.
    fingerprint: str = ""

    @classmethod
    def empty(cls, project_root: str, now: datetime | None = None) -> Index:
        return cls(created_at=now or utc_now(), project_root=project_root)
