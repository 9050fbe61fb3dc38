"""Tests for flowmap.graph.edge_rules."""

from __future__ import annotations

import pytest

from flowmap.graph.edge_rules import (
    DEFAULT_EDGE_RULES,
    EdgeRule,
    EdgeRuleTable,
    merge_edge_rules,
    parse_edge_rule,
)


class TestParse:
    def test_valid(self) -> None:
        rule = parse_edge_rule({"kind": "Table", "usage": "read", "edge": "flows-to"})
        assert rule == EdgeRule("Table", "read", "flows-to", "to_user")

    def test_edge_type_alias(self) -> None:
        rule = parse_edge_rule(
            {"kind": "Image", "usage": "render", "edge_type": "contains", "direction": "from_user"}
        )
        assert rule.edge_type == "contains"
        assert rule.direction == "from_user"

    @pytest.mark.parametrize(
        ("data", "message"),
        [
            ({"kind": "Widget", "usage": "read", "edge": "flows-to"}, "unknown kind"),
            ({"kind": "Table", "usage": "peek", "edge": "flows-to"}, "unknown usage"),
            ({"kind": "Table", "usage": "read", "edge": "owns"}, "unknown edge type"),
            (
                {"kind": "Table", "usage": "read", "edge": "flows-to", "direction": "up"},
                "unknown direction",
            ),
        ],
    )
    def test_invalid(self, data: dict[str, str], message: str) -> None:
        with pytest.raises(ValueError, match=message):
            parse_edge_rule(data)


class TestTable:
    def test_defaults(self) -> None:
        table = EdgeRuleTable()
        rule = table.lookup("Transform", "call")
        assert rule is not None
        assert rule.direction == "from_arguments"
        assert table.lookup("Transform", "render") is None

    def test_kinds_for(self) -> None:
        assert EdgeRuleTable().kinds_for("render") == frozenset({"Component", "Image"})

    def test_merge_replaces_by_key(self) -> None:
        override = EdgeRule("Table", "query", "derives-from", "from_user")
        merged = merge_edge_rules([override])
        assert len(merged) == len(DEFAULT_EDGE_RULES)
        assert EdgeRuleTable(merged).lookup("Table", "query") == override

    def test_merge_adds_new(self) -> None:
        extra = EdgeRule("Screen", "render", "contains", "from_user")
        merged = merge_edge_rules([extra])
        assert len(merged) == len(DEFAULT_EDGE_RULES) + 1
