"""Tests for flowmap.extractors.manifest."""

from __future__ import annotations

import pytest
import yaml

from flowmap.extractors.manifest import ManifestExtractor
from flowmap.graph.model import Edge, Reference

ORDER_FORM = """\
elements:
  - kind: DataPoint
    label: quantity
    valueType: number
    origin: captured
    constraints: [required, min=1]
  - kind: Component
    label: Order form
    captures: [Quantity]
    displays: ["el:calc.flow.yml#DataPoint:0"]
  - kind: Table
    label: orders
    columns: {id: int, total: decimal}
  - kind: Screen
    label: Checkout
    regions:
      - {name: main, elements: [order form]}
edges:
  - {from: quantity, to: "el:calc.flow.yml#Transform:0", type: transforms, label: qty}
imports:
  - {from: ./calc.flow.yml, name: compute_total, usage: call, arguments: [quantity]}
  - {from: ./calc.flow.yml, name: total, usage: read, user: Order form}
"""


@pytest.fixture()
def extractor() -> ManifestExtractor:
    return ManifestExtractor()


class TestElements:
    def test_kinds_and_ids(self, extractor: ManifestExtractor) -> None:
        result = extractor.extract("form.flow.yml", ORDER_FORM)
        assert [e.id for e in result.elements] == [
            "el:form.flow.yml#DataPoint:0",
            "el:form.flow.yml#Component:0",
            "el:form.flow.yml#Table:0",
            "el:form.flow.yml#Screen:0",
        ]

    def test_camel_case_keys_and_constraints(self, extractor: ManifestExtractor) -> None:
        point = extractor.extract("form.flow.yml", ORDER_FORM).elements[0]
        assert point.attrs["value_type"] == "number"
        assert point.attrs["origin"] == "captured"
        assert point.attrs["constraints"] == ["min=1", "required"]

    def test_payload_labels_resolved(self, extractor: ManifestExtractor) -> None:
        result = extractor.extract("form.flow.yml", ORDER_FORM)
        form = result.elements[1]
        assert form.attrs["captures"] == ["el:form.flow.yml#DataPoint:0"]
        assert form.attrs["displays"] == ["el:calc.flow.yml#DataPoint:0"]
        screen = result.elements[3]
        assert screen.attrs["regions"] == [
            {"name": "main", "elements": ["el:form.flow.yml#Component:0"]}
        ]

    def test_columns_mapping(self, extractor: ManifestExtractor) -> None:
        table = extractor.extract("form.flow.yml", ORDER_FORM).elements[2]
        assert table.attrs["columns"] == [["id", "int"], ["total", "decimal"]]

    def test_extraction_is_deterministic(self, extractor: ManifestExtractor) -> None:
        first = extractor.extract("form.flow.yml", ORDER_FORM)
        second = extractor.extract("form.flow.yml", ORDER_FORM)
        assert first == second


class TestEdgesAndImports:
    def test_structural_then_explicit_edges(self, extractor: ManifestExtractor) -> None:
        edges = extractor.extract("form.flow.yml", ORDER_FORM).local_edges
        form = "el:form.flow.yml#Component:0"
        qty = "el:form.flow.yml#DataPoint:0"
        assert edges == [
            Edge(form, qty, "flows-to"),
            Edge("el:calc.flow.yml#DataPoint:0", form, "flows-to"),
            Edge("el:form.flow.yml#Screen:0", form, "contains"),
            Edge(qty, "el:calc.flow.yml#Transform:0", "transforms", "qty"),
        ]

    def test_references(self, extractor: ManifestExtractor) -> None:
        refs = extractor.extract("form.flow.yml", ORDER_FORM).references
        assert refs == [
            Reference("./calc.flow.yml", "compute_total", "call", None, ("quantity",)),
            Reference("./calc.flow.yml", "total", "read", "el:form.flow.yml#Component:0"),
        ]


class TestInvalidInput:
    def test_empty_document(self, extractor: ManifestExtractor) -> None:
        result = extractor.extract("x.flow.yml", "")
        assert result.elements == []
        assert result.warnings == []

    def test_top_level_list_rejected(self, extractor: ManifestExtractor) -> None:
        with pytest.raises(ValueError, match="mapping"):
            extractor.extract("x.flow.yml", "- a\n- b\n")

    def test_yaml_error_propagates(self, extractor: ManifestExtractor) -> None:
        with pytest.raises(yaml.YAMLError):
            extractor.extract("x.flow.yml", "elements: [unclosed\n")

    def test_bad_entries_warn(self, extractor: ManifestExtractor) -> None:
        text = """\
elements:
  - kind: Widget
    label: w
  - kind: DataPoint
    label: qty
    origin: guessed
  - kind: Component
    label: Form
    captures: [nope]
edges:
  - {from: qty, to: Form, type: owns}
imports:
  - {from: ./x, name: y, usage: peek}
"""
        result = extractor.extract("x.flow.yml", text)
        assert [e.kind for e in result.elements] == ["DataPoint", "Component"]
        assert result.elements[0].attrs["origin"] == "inferred"
        assert result.elements[1].attrs["captures"] == []
        assert result.references == []
        assert len(result.warnings) == 5
        assert all(w.startswith("x.flow.yml: ") for w in result.warnings)
