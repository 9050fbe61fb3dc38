"""Graph aggregator: merge per-file results into one validated graph.

Aggregation runs in five phases over the full set of indexed files:

1. collect elements and local edges, in path order;
2. resolve every file's references to indexed files (the reference graph);
3. match each referenced name to an element of the target file;
4. synthesize cross-file edges from the edge rule table;
5. validate: recover or drop dangling endpoints, drop self-edges,
   de-duplicate ``(source, target, type)`` triples (first wins).

The result is independent of the order of the input mapping.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from flowmap.graph.edge_rules import DEFAULT_EDGE_RULES, EdgeRuleTable
from flowmap.graph.import_resolver import ReferenceResolver
from flowmap.graph.model import (
    ELEMENT_KINDS,
    Edge,
    Element,
    Graph,
    IndexedFile,
    Reference,
    element_sort_key,
    parse_element_id,
)

if TYPE_CHECKING:
    from collections.abc import Collection, Iterable, Mapping

    from flowmap.graph.edge_rules import EdgeRule

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReferenceMatch:
    """A reference of *importer* bound to an element of another file."""

    importer: str
    reference: Reference
    element_id: str


@dataclass(frozen=True)
class Substitution:
    """An endpoint rewritten by label-based recovery.

    ``owner`` is the file whose entry holds the rewritten id (``None`` for
    synthesized edges); ``context`` is ``"edge"`` or ``"<element id>.<field>"``.
    """

    owner: str | None
    old_id: str
    new_id: str
    label: str
    context: str
    ambiguous: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "owner": self.owner,
            "from": self.old_id,
            "to": self.new_id,
            "label": self.label,
            "context": self.context,
            "ambiguous": self.ambiguous,
        }


@dataclass(frozen=True)
class DroppedEdge:
    edge: Edge
    owner: str | None
    missing: str

    def to_dict(self) -> dict[str, Any]:
        return {"edge": self.edge.to_dict(), "owner": self.owner, "missing": self.missing}


@dataclass
class AggregationReport:
    """What aggregation changed, repaired, and gave up on."""

    elements_added: dict[str, int] = field(default_factory=dict)
    elements_removed: dict[str, int] = field(default_factory=dict)
    edges_added: int = 0
    edges_removed: int = 0
    cross_file_edges: int = 0
    duplicate_edges: int = 0
    self_edges: int = 0
    recovered: list[Substitution] = field(default_factory=list)
    dropped: list[DroppedEdge] = field(default_factory=list)
    ambiguities: list[str] = field(default_factory=list)
    stale_references: list[str] = field(default_factory=list)
    # (owner file, id) pairs stripped from element payloads.
    stripped: list[tuple[str, str]] = field(default_factory=list)
    unmatched_references: list[str] = field(default_factory=list)
    failed_files: list[str] = field(default_factory=list)

    @property
    def recovered_edges(self) -> list[Substitution]:
        return [s for s in self.recovered if s.context == "edge"]


# ---------------------------------------------------------------------------
# Phase 2: reference graph
# ---------------------------------------------------------------------------


def build_reference_graph(
    files: Mapping[str, IndexedFile],
    resolver: ReferenceResolver,
) -> dict[str, list[tuple[Reference, str]]]:
    """Map each importer to its ``(reference, target path)`` pairs.

    References whose module does not resolve to an indexed file (third-party
    packages, missing files) are left out.
    """
    graph: dict[str, list[tuple[Reference, str]]] = {}
    for path in sorted(files):
        resolved: list[tuple[Reference, str]] = []
        for reference in files[path].references:
            target = resolver.resolve(path, reference.module)
            if target is not None:
                resolved.append((reference, target))
        if resolved:
            graph[path] = resolved
    return graph


# ---------------------------------------------------------------------------
# Phase 3: identifier matching
# ---------------------------------------------------------------------------


def _ordinal(element: Element) -> int:
    ref = parse_element_id(element.id)
    return ref.ordinal if ref is not None else 0


def match_label(
    candidates: Iterable[Element],
    name: str,
    preferred_kinds: Collection[str] = (),
) -> Element | None:
    """Best element whose label equals *name*, case-insensitively.

    Kinds in *preferred_kinds* win, then the lowest ordinal, then kind
    order and id.
    """
    wanted = name.casefold()
    hits = [e for e in candidates if e.label.casefold() == wanted]
    if not hits:
        return None
    hits.sort(
        key=lambda e: (
            e.kind not in preferred_kinds,
            _ordinal(e),
            ELEMENT_KINDS.index(e.kind),
            e.id,
        )
    )
    return hits[0]


def _find_exported(
    path: str,
    name: str,
    preferred_kinds: Collection[str],
    by_file: Mapping[str, list[Element]],
    reference_graph: Mapping[str, list[tuple[Reference, str]]],
    visited: set[str],
) -> Element | None:
    """Look *name* up in *path*, following barrel re-exports cycle-safely."""
    if path in visited:
        return None
    visited.add(path)
    hit = match_label(by_file.get(path, ()), name, preferred_kinds)
    if hit is not None:
        return hit
    wanted = name.casefold()
    for reference, target in reference_graph.get(path, ()):
        if reference.name != "*" and reference.name.casefold() != wanted:
            continue
        hit = _find_exported(target, name, preferred_kinds, by_file, reference_graph, visited)
        if hit is not None:
            return hit
    return None


def match_references(
    reference_graph: Mapping[str, list[tuple[Reference, str]]],
    by_file: Mapping[str, list[Element]],
    rules: EdgeRuleTable,
    report: AggregationReport | None = None,
) -> list[ReferenceMatch]:
    matches: list[ReferenceMatch] = []
    for importer in sorted(reference_graph):
        for reference, target in reference_graph[importer]:
            if reference.name == "*":
                continue
            preferred = rules.kinds_for(reference.usage)
            element = _find_exported(
                target, reference.name, preferred, by_file, reference_graph, set()
            )
            if element is None:
                if report is not None and reference.usage != "import":
                    report.unmatched_references.append(
                        f"{importer}: {reference.name!r} not found in {target}"
                    )
                continue
            matches.append(ReferenceMatch(importer, reference, element.id))
    return matches


# ---------------------------------------------------------------------------
# Phase 4: edge synthesis
# ---------------------------------------------------------------------------


def synthesize_edges(
    matches: Iterable[ReferenceMatch],
    elements: Mapping[str, Element],
    by_file: Mapping[str, list[Element]],
    rules: EdgeRuleTable,
) -> list[Edge]:
    edges: list[Edge] = []
    for match in matches:
        imported = elements[match.element_id]
        rule = rules.lookup(imported.kind, match.reference.usage)
        if rule is None:
            continue
        if rule.direction == "from_arguments":
            local_points = [e for e in by_file.get(match.importer, ()) if e.kind == "DataPoint"]
            for argument in match.reference.arguments:
                point = match_label(local_points, argument)
                if point is not None:
                    edges.append(Edge(point.id, imported.id, rule.edge_type))
            continue
        user = match.reference.user
        if user is None or user not in elements:
            continue
        if rule.direction == "to_user":
            edges.append(Edge(imported.id, user, rule.edge_type))
        else:
            edges.append(Edge(user, imported.id, rule.edge_type))
    return edges


# ---------------------------------------------------------------------------
# Phase 5: validation and recovery
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class _Resolution:
    element_id: str | None
    label: str = ""
    ambiguous: bool = False


class _Recovery:
    """Resolve edge endpoints against the current and previous element sets."""

    def __init__(
        self,
        elements: Mapping[str, Element],
        by_file: Mapping[str, list[Element]],
        previous: Mapping[str, Element],
        fresh: Collection[str] | None,
    ) -> None:
        self._elements = elements
        self._by_file = by_file
        self._previous = previous
        self._fresh = fresh

    def resolve(self, endpoint: str, owner: str | None) -> _Resolution:
        known = self._previous.get(endpoint)
        current = self._elements.get(endpoint)
        if current is not None:
            relabelled = known is not None and known.label != current.label
            if relabelled and self._shifted(endpoint, owner):
                # The id now names a different element; follow the label or drop.
                return self._find(known)  # type: ignore[arg-type]
            return _Resolution(endpoint)
        if known is None:
            return _Resolution(None)
        return self._find(known)

    def _shifted(self, endpoint: str, owner: str | None) -> bool:
        # An endpoint can only be stale when its owner was not re-extracted
        # in this run and it points into some other file.
        if owner is None or self._fresh is None or owner in self._fresh:
            return False
        ref = parse_element_id(endpoint)
        return ref is not None and ref.path != owner

    def _find(self, known: Element) -> _Resolution:
        hits = [e for e in self._by_file.get(known.file, ()) if e.label == known.label]
        if not hits:
            return _Resolution(None, known.label)
        same_kind = [e for e in hits if e.kind == known.kind]
        tier = same_kind or hits
        tier.sort(key=lambda e: (_ordinal(e), ELEMENT_KINDS.index(e.kind), e.id))
        return _Resolution(tier[0].id, known.label, ambiguous=len(tier) > 1)


def _record(
    report: AggregationReport,
    old_id: str,
    new_id: str,
    resolution: _Resolution,
    owner: str | None,
    context: str,
) -> None:
    report.recovered.append(
        Substitution(
            owner=owner,
            old_id=old_id,
            new_id=new_id,
            label=resolution.label,
            context=context,
            ambiguous=resolution.ambiguous,
        )
    )
    if resolution.ambiguous:
        report.ambiguities.append(
            f"{old_id} -> {new_id}: label {resolution.label!r} matches "
            "several elements"
        )


def _validate_payloads(
    elements: dict[str, Element],
    recovery: _Recovery,
    report: AggregationReport,
) -> None:
    """Recover or strip dangling ids held in element payloads."""
    for element_id in sorted(elements, key=element_sort_key):
        element = elements[element_id]
        mapping: dict[str, str | None] = {}
        for name, ref in element.referenced_ids():
            resolution = recovery.resolve(ref, element.file)
            if resolution.element_id is None:
                mapping[ref] = None
                report.stale_references.append(f"{element.id} {name} -> {ref}")
                report.stripped.append((element.file, ref))
                logger.warning("Stale reference %s %s -> %s", element.id, name, ref)
            elif resolution.element_id != ref:
                mapping[ref] = resolution.element_id
                _record(
                    report, ref, resolution.element_id, resolution,
                    element.file, f"{element.id}.{name}",
                )
        if mapping:
            elements[element_id] = element.with_references(mapping)


def _validate_edges(
    owned: Iterable[tuple[Edge, str | None]],
    recovery: _Recovery,
    report: AggregationReport,
) -> list[Edge]:
    kept: dict[tuple[str, str, str], Edge] = {}
    for edge, owner in owned:
        source = recovery.resolve(edge.source, owner)
        target = recovery.resolve(edge.target, owner)
        if source.element_id is None or target.element_id is None:
            missing = edge.source if source.element_id is None else edge.target
            report.dropped.append(DroppedEdge(edge, owner, missing))
            logger.warning(
                "Dropping edge %s -> %s (%s): %s no longer exists",
                edge.source, edge.target, edge.edge_type, missing,
            )
            continue
        if source.element_id != edge.source:
            _record(report, edge.source, source.element_id, source, owner, "edge")
        if target.element_id != edge.target:
            _record(report, edge.target, target.element_id, target, owner, "edge")
        candidate = Edge(source.element_id, target.element_id, edge.edge_type, edge.label)
        if candidate.source == candidate.target:
            report.self_edges += 1
            continue
        if candidate.key in kept:
            report.duplicate_edges += 1
            continue
        kept[candidate.key] = candidate
    return list(kept.values())


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def _kind_delta(ids: Iterable[str], elements: Mapping[str, Element]) -> dict[str, int]:
    delta: dict[str, int] = {}
    for element_id in ids:
        kind = elements[element_id].kind
        delta[kind] = delta.get(kind, 0) + 1
    return dict(sorted(delta.items()))


def aggregate(
    files: Mapping[str, IndexedFile],
    *,
    previous: Graph | None = None,
    edge_rules: Iterable[EdgeRule] = DEFAULT_EDGE_RULES,
    aliases: Mapping[str, str] | None = None,
    source_roots: Iterable[str] = (),
    fresh: Collection[str] | None = None,
    failed_files: Iterable[str] = (),
) -> tuple[Graph, AggregationReport]:
    """Build the project graph from every indexed file.

    Parameters
    ----------
    files:
        Path -> IndexedFile for the whole project.
    previous:
        Graph from the last run; enables label-based recovery and the
        added/removed deltas.
    edge_rules:
        Rules for cross-file edge synthesis.
    aliases:
        Module prefix -> path aliases for the resolver.
    source_roots:
        Extra roots module specifiers are tried under.
    fresh:
        Paths re-extracted in this run.  Foreign endpoints held by other
        files are checked for ordinal shifts; ``None`` disables the check.
    failed_files:
        Paths that failed extraction this run (reported only).

    Returns
    -------
    tuple[Graph, AggregationReport]
    """
    report = AggregationReport(failed_files=sorted(failed_files))
    rules = EdgeRuleTable(edge_rules)

    # Phase 1: collect.
    elements: dict[str, Element] = {}
    by_file: dict[str, list[Element]] = {}
    owned: list[tuple[Edge, str | None]] = []
    for path in sorted(files):
        entry = files[path]
        for element in entry.elements:
            if element.id in elements:
                logger.warning("Duplicate element id %s in %s", element.id, path)
                continue
            elements[element.id] = element
            by_file.setdefault(element.file, []).append(element)
        owned.extend((edge, path) for edge in entry.local_edges)

    # Phase 2: reference graph.
    resolver = ReferenceResolver(files, aliases=aliases, source_roots=source_roots)
    reference_graph = build_reference_graph(files, resolver)

    # Phase 3: identifier matching.
    matches = match_references(reference_graph, by_file, rules, report)

    # Phase 4: edge synthesis.
    synthesized = synthesize_edges(matches, elements, by_file, rules)
    owned.extend((edge, None) for edge in synthesized)

    # Phase 5: validate, recover, filter, dedup.
    previous_elements = previous.element_map() if previous is not None else {}
    recovery = _Recovery(elements, by_file, previous_elements, fresh)
    _validate_payloads(elements, recovery, report)
    edges = _validate_edges(owned, recovery, report)

    synthesized_keys = {edge.key for edge in synthesized}
    report.cross_file_edges = sum(1 for edge in edges if edge.key in synthesized_keys)

    graph = Graph(
        elements=sorted(elements.values(), key=lambda e: element_sort_key(e.id)),
        edges=sorted(edges, key=lambda e: e.key),
    )

    report.elements_added = _kind_delta(
        (i for i in elements if i not in previous_elements), elements
    )
    report.elements_removed = _kind_delta(
        (i for i in previous_elements if i not in elements), previous_elements
    )
    previous_keys = {e.key for e in previous.edges} if previous is not None else set()
    current_keys = {e.key for e in graph.edges}
    report.edges_added = len(current_keys - previous_keys)
    report.edges_removed = len(previous_keys - current_keys)

    logger.debug(
        "Aggregated %d elements, %d edges (%d recovered, %d dropped)",
        len(graph.elements), len(graph.edges), len(report.recovered), len(report.dropped),
    )
    return graph, report
