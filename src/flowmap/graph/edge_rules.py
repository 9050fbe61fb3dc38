"""Edge synthesis rules: (imported kind, usage) -> edge type and direction."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from flowmap.graph.model import EDGE_TYPES, ELEMENT_KINDS, USAGES

if TYPE_CHECKING:
    from collections.abc import Iterable

# imported -> user, user -> imported, or each call argument -> imported.
DIRECTIONS: frozenset[str] = frozenset({"to_user", "from_user", "from_arguments"})


@dataclass(frozen=True)
class EdgeRule:
    """How a usage of an imported element becomes a cross-file edge."""

    kind: str
    usage: str
    edge_type: str
    direction: str

    @property
    def key(self) -> tuple[str, str]:
        return (self.kind, self.usage)


DEFAULT_EDGE_RULES: tuple[EdgeRule, ...] = (
    EdgeRule("Component", "render", "contains", "from_user"),
    EdgeRule("Image", "render", "contains", "from_user"),
    EdgeRule("Transform", "call", "transforms", "from_arguments"),
    EdgeRule("Table", "query", "flows-to", "to_user"),
    EdgeRule("Table", "mutate", "flows-to", "from_user"),
    EdgeRule("DataPoint", "read", "flows-to", "to_user"),
    EdgeRule("DataPoint", "input", "transforms", "to_user"),
)


def parse_edge_rule(data: dict[str, Any]) -> EdgeRule:
    """Build an :class:`EdgeRule` from a config mapping.

    Raises ``ValueError`` on unknown kinds, usages, edge types or directions.
    """
    kind = str(data.get("kind", ""))
    usage = str(data.get("usage", ""))
    edge_type = str(data.get("edge", data.get("edge_type", "")))
    direction = str(data.get("direction", "to_user"))
    if kind not in ELEMENT_KINDS:
        raise ValueError(f"edge rule: unknown kind {kind!r}")
    if usage not in USAGES:
        raise ValueError(f"edge rule: unknown usage {usage!r}")
    if edge_type not in EDGE_TYPES:
        raise ValueError(f"edge rule: unknown edge type {edge_type!r}")
    if direction not in DIRECTIONS:
        raise ValueError(f"edge rule: unknown direction {direction!r}")
    return EdgeRule(kind=kind, usage=usage, edge_type=edge_type, direction=direction)


def merge_edge_rules(
    overrides: Iterable[EdgeRule],
    base: Iterable[EdgeRule] = DEFAULT_EDGE_RULES,
) -> tuple[EdgeRule, ...]:
    """Overlay *overrides* on *base*, replacing rules with the same key."""
    merged: dict[tuple[str, str], EdgeRule] = {rule.key: rule for rule in base}
    for rule in overrides:
        merged[rule.key] = rule
    return tuple(merged.values())


class EdgeRuleTable:
    """Lookup table over a set of edge rules."""

    def __init__(self, rules: Iterable[EdgeRule] = DEFAULT_EDGE_RULES) -> None:
        self._rules: dict[tuple[str, str], EdgeRule] = {rule.key: rule for rule in rules}

    def lookup(self, kind: str, usage: str) -> EdgeRule | None:
        return self._rules.get((kind, usage))

    def kinds_for(self, usage: str) -> frozenset[str]:
        """Kinds that produce an edge for *usage*."""
        return frozenset(kind for kind, u in self._rules if u == usage)
