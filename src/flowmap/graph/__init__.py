"""Graph domain: data model, reference resolution, edge rules, aggregation."""

from flowmap.graph.aggregator import (
    AggregationReport,
    DroppedEdge,
    ReferenceMatch,
    Substitution,
    aggregate,
    build_reference_graph,
    match_label,
    match_references,
    synthesize_edges,
)
from flowmap.graph.edge_rules import (
    DEFAULT_EDGE_RULES,
    EdgeRule,
    EdgeRuleTable,
    merge_edge_rules,
    parse_edge_rule,
)
from flowmap.graph.import_resolver import ReferenceResolver
from flowmap.graph.model import (
    ELEMENT_KINDS,
    Edge,
    Element,
    Graph,
    Index,
    IndexedFile,
    Reference,
    make_element_id,
    parse_element_id,
)

__all__ = [
    "DEFAULT_EDGE_RULES",
    "ELEMENT_KINDS",
    "AggregationReport",
    "DroppedEdge",
    "Edge",
    "EdgeRule",
    "EdgeRuleTable",
    "Element",
    "Graph",
    "Index",
    "IndexedFile",
    "Reference",
    "ReferenceMatch",
    "ReferenceResolver",
    "Substitution",
    "aggregate",
    "build_reference_graph",
    "make_element_id",
    "match_label",
    "match_references",
    "merge_edge_rules",
    "parse_edge_rule",
    "parse_element_id",
    "synthesize_edges",
]
