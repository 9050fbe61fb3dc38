"""Tests for flowmap.graph.model: identifiers, elements, edges, graph metadata."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from flowmap.graph.model import (
    Edge,
    Element,
    Graph,
    IndexedFile,
    Reference,
    default_attrs,
    element_sort_key,
    from_iso,
    make_element_id,
    mtime_from_ns,
    parse_element_id,
    to_iso,
)


class TestIdentifiers:
    def test_make_id(self) -> None:
        element_id = make_element_id("el", "src/form.tsx", "Component", 0)
        assert element_id == "el:src/form.tsx#Component:0"

    def test_parse_id(self) -> None:
        ref = parse_element_id("el:src/form.tsx#Component:3")
        assert ref is not None
        assert ref.scope == "el"
        assert ref.path == "src/form.tsx"
        assert ref.kind == "Component"
        assert ref.ordinal == 3

    def test_path_may_contain_colon_and_hash(self) -> None:
        element_id = make_element_id("el", "c:/odd#dir/x.flow.yml", "DataPoint", 12)
        ref = parse_element_id(element_id)
        assert ref is not None
        assert ref.path == "c:/odd#dir/x.flow.yml"
        assert ref.ordinal == 12

    @pytest.mark.parametrize(
        "value",
        [
            "",
            "el:path",
            "el:path#Widget:0",
            "el:path#DataPoint:x",
            "path#DataPoint:0",
            "el:#DataPoint:0",
        ],
    )
    def test_malformed_ids(self, value: str) -> None:
        assert parse_element_id(value) is None

    def test_sort_key_is_numeric_on_ordinal(self) -> None:
        ids = [
            "el:a#DataPoint:10",
            "el:a#DataPoint:9",
            "el:a#Component:0",
            "el:0#Transform:0",
        ]
        assert sorted(ids, key=element_sort_key) == [
            "el:0#Transform:0",
            "el:a#DataPoint:9",
            "el:a#DataPoint:10",
            "el:a#Component:0",
        ]


class TestTimestamps:
    def test_mtime_from_ns_keeps_microseconds(self) -> None:
        value = mtime_from_ns(1_700_000_000_123_456_789)
        assert value.microsecond == 123_456
        assert value.tzinfo is not None

    def test_iso_roundtrip_exact(self) -> None:
        value = datetime(2024, 5, 6, 7, 8, 9, 10, tzinfo=timezone.utc)
        assert from_iso(to_iso(value)) == value

    def test_naive_iso_is_utc(self) -> None:
        assert from_iso("2024-01-01T00:00:00").tzinfo == timezone.utc


class TestElement:
    def test_defaults_filled(self) -> None:
        element = Element.create("el:a#DataPoint:0", "DataPoint", "qty", "a")
        assert element.attrs == {
            "value_type": "",
            "origin": "inferred",
            "origin_description": "",
            "constraints": [],
        }

    def test_unknown_attrs_dropped(self) -> None:
        element = Element.create("el:a#Image:0", "Image", "logo", "a", source="x.png", bogus=1)
        assert element.attrs == {"source": "x.png", "alt": ""}

    def test_constraints_sorted_and_unique(self) -> None:
        element = Element.create(
            "el:a#DataPoint:0", "DataPoint", "qty", "a", constraints=["min=1", "required", "min=1"]
        )
        assert element.attrs["constraints"] == ["min=1", "required"]

    def test_unknown_kind_raises(self) -> None:
        with pytest.raises(ValueError, match="Unknown element kind"):
            default_attrs("Widget")

    def test_referenced_ids(self) -> None:
        component = Element.create(
            "el:a#Component:0", "Component", "Form", "a",
            captures=["el:a#DataPoint:0"], displays=["el:b#DataPoint:0"],
        )
        screen = Element.create(
            "el:a#Screen:0", "Screen", "Home", "a",
            regions=[{"name": "main", "elements": ["el:a#Component:0"]}],
        )
        assert component.referenced_ids() == [
            ("displays", "el:b#DataPoint:0"),
            ("captures", "el:a#DataPoint:0"),
        ]
        assert screen.referenced_ids() == [("regions.main", "el:a#Component:0")]

    def test_with_references_rewrites_and_removes(self) -> None:
        transform = Element.create(
            "el:a#Transform:0", "Transform", "calc", "a",
            inputs=["el:b#DataPoint:1", "el:b#DataPoint:2"], outputs=["el:a#DataPoint:0"],
        )
        updated = transform.with_references(
            {"el:b#DataPoint:1": "el:b#DataPoint:0", "el:b#DataPoint:2": None}
        )
        assert updated.attrs["inputs"] == ["el:b#DataPoint:0"]
        assert updated.attrs["outputs"] == ["el:a#DataPoint:0"]
        # Original untouched.
        assert transform.attrs["inputs"] == ["el:b#DataPoint:1", "el:b#DataPoint:2"]

    def test_dict_form(self) -> None:
        element = Element.create("el:a#Table:0", "Table", "orders", "a", columns=[("id", "int")])
        data = element.to_dict()
        assert data["attrs"]["columns"] == [["id", "int"]]
        assert Element.from_dict(data) == element


class TestEdgeAndReference:
    def test_invalid_edge_type(self) -> None:
        with pytest.raises(ValueError, match="Unknown edge type"):
            Edge("a", "b", "points-at")

    def test_edge_dict_omits_empty_label(self) -> None:
        assert Edge("a", "b", "contains").to_dict() == {"from": "a", "to": "b", "type": "contains"}
        assert Edge("a", "b", "contains", "x").to_dict()["label"] == "x"

    def test_reference_defaults(self) -> None:
        ref = Reference.from_dict({"module": "./calc", "name": "total"})
        assert ref.usage == "import"
        assert ref.user is None
        assert ref.arguments == ()
        assert ref.to_dict() == {"module": "./calc", "name": "total", "usage": "import"}


class TestIndexedFileAndGraph:
    def test_indexed_file_keys(self) -> None:
        now = datetime(2025, 1, 1, tzinfo=timezone.utc)
        entry = IndexedFile("a.flow.yml", now, now, 12, category="manifest")
        data = entry.to_dict()
        assert set(data) == {
            "lastIndexed", "fileModified", "sizeBytes", "category",
            "contentHash", "elements", "localEdges", "references",
        }
        assert IndexedFile.from_dict("a.flow.yml", data) == entry

    def test_graph_metadata(self) -> None:
        graph = Graph(
            elements=[
                Element.create("el:a#DataPoint:0", "DataPoint", "x", "a"),
                Element.create("el:a#DataPoint:1", "DataPoint", "y", "a"),
                Element.create("el:b#Component:0", "Component", "C", "b"),
            ],
            edges=[Edge("el:b#Component:0", "el:a#DataPoint:0", "flows-to")],
        )
        meta = graph.metadata()
        assert meta["counts"]["DataPoint"] == 2
        assert meta["counts"]["Component"] == 1
        assert meta["counts"]["Screen"] == 0
        assert meta["edgeCount"] == 1
        assert meta["sourceFileCount"] == 2
