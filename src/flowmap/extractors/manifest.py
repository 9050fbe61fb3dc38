"""Manifest extractor: declarative ``*.flow.yml`` element and edge files.

A manifest lists elements, optional explicit edges, and imports::

    elements:
      - kind: DataPoint
        label: quantity
        value_type: number
        origin: captured
        constraints: [required]
      - kind: Component
        label: Order form
        captures: [quantity]
    edges:
      - {from: quantity, to: "el:calc.flow.yml#Transform:0", type: flows-to}
    imports:
      - {from: ./calc.flow.yml, name: total, usage: call, user: Order form,
         arguments: [quantity]}

Element references are local labels (case-insensitive) or explicit
identifiers of elements in other files.
"""

from __future__ import annotations

from typing import Any

import yaml

from flowmap.extractors.base import ElementBuilder, ExtractionResult
from flowmap.graph.model import (
    DEFAULT_SCOPE_TAG,
    EDGE_TYPES,
    ELEMENT_KINDS,
    ORIGINS,
    PERSISTENCE_KINDS,
    REFERENCE_FIELDS,
    TRANSFORM_KINDS,
    USAGES,
    parse_element_id,
)

# camelCase spellings accepted for payload keys.
_KEY_ALIASES: dict[str, str] = {
    "valueType": "value_type",
    "originDescription": "origin_description",
    "layoutHint": "layout_hint",
    "transformKind": "transform_kind",
    "logicDescription": "logic_description",
    "persistenceKind": "persistence_kind",
}

_ENUM_FIELDS: dict[str, frozenset[str]] = {
    "origin": ORIGINS,
    "transform_kind": TRANSFORM_KINDS,
    "persistence_kind": PERSISTENCE_KINDS,
}


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _columns(value: Any) -> list[list[str]]:
    if isinstance(value, dict):
        return [[str(k), str(v)] for k, v in value.items()]
    columns: list[list[str]] = []
    for item in _as_list(value):
        if isinstance(item, dict):
            columns.append([str(item.get("name", "")), str(item.get("type", ""))])
        elif isinstance(item, (list, tuple)) and item:
            columns.append([str(item[0]), str(item[1]) if len(item) > 1 else ""])
        else:
            columns.append([str(item), ""])
    return columns


class ManifestExtractor:
    """Extractor for hand-written YAML flow manifests."""

    category = "manifest"
    extensions = frozenset({".flow.yml", ".flow.yaml"})

    def __init__(self, scope_tag: str = DEFAULT_SCOPE_TAG) -> None:
        self.scope_tag = scope_tag

    def extract(self, path: str, content: str) -> ExtractionResult:
        data = yaml.safe_load(content)
        if data is None:
            return ExtractionResult()
        if not isinstance(data, dict):
            raise ValueError("manifest must be a mapping with 'elements', 'edges', 'imports'")

        builder = ElementBuilder(path, self.scope_tag)
        pending: list[tuple[str, str, dict[str, Any]]] = []

        # Pass 1: create every element so labels resolve regardless of order.
        for raw in _as_list(data.get("elements")):
            if not isinstance(raw, dict):
                builder.warn(f"skipping non-mapping element entry: {raw!r}")
                continue
            kind = str(raw.get("kind", ""))
            if kind not in ELEMENT_KINDS:
                builder.warn(f"unknown element kind {kind!r}")
                continue
            label = str(raw.get("label", ""))
            fields = {_KEY_ALIASES.get(k, k): v for k, v in raw.items()}
            scalars = self._scalar_attrs(builder, kind, fields)
            element_id = builder.add(kind, label, **scalars)
            pending.append((element_id, kind, fields))

        # Pass 2: id-valued payload fields.
        for element_id, kind, fields in pending:
            for name in REFERENCE_FIELDS.get(kind, ()):
                for token in _as_list(fields.get(name)):
                    ref = self._resolve(builder, str(token))
                    if ref is not None:
                        builder.append(element_id, name, ref)
            if kind == "Screen":
                for region in _as_list(fields.get("regions")):
                    if not isinstance(region, dict):
                        continue
                    ids = [self._resolve(builder, str(t)) for t in _as_list(region.get("elements"))]
                    builder.attrs(element_id)["regions"].append(
                        {"name": str(region.get("name", "")), "elements": [i for i in ids if i]}
                    )

        for raw in _as_list(data.get("edges")):
            if not isinstance(raw, dict):
                continue
            edge_type = str(raw.get("type", "flows-to"))
            if edge_type not in EDGE_TYPES:
                builder.warn(f"unknown edge type {edge_type!r}")
                continue
            source = self._resolve(builder, str(raw.get("from", "")))
            target = self._resolve(builder, str(raw.get("to", "")))
            if source is None or target is None:
                continue
            label = raw.get("label")
            builder.edge(source, target, edge_type, str(label) if label else None)

        for raw in _as_list(data.get("imports")):
            if not isinstance(raw, dict):
                continue
            usage = str(raw.get("usage", "import"))
            if usage not in USAGES:
                builder.warn(f"unknown usage {usage!r}")
                continue
            user = raw.get("user")
            builder.reference(
                module=str(raw.get("from", "")),
                name=str(raw.get("name", "")),
                usage=usage,
                user=self._resolve(builder, str(user)) if user else None,
                arguments=[str(a) for a in _as_list(raw.get("arguments"))],
            )

        return builder.build()

    def _scalar_attrs(
        self, builder: ElementBuilder, kind: str, fields: dict[str, Any]
    ) -> dict[str, Any]:
        attrs: dict[str, Any] = {}
        for name in ("value_type", "origin_description", "layout_hint", "logic_description",
                     "source", "alt"):
            if name in fields and fields[name] is not None:
                attrs[name] = str(fields[name])
        for name, allowed in _ENUM_FIELDS.items():
            if name in fields:
                value = str(fields[name])
                if value in allowed:
                    attrs[name] = value
                else:
                    builder.warn(f"invalid {name} {value!r} on {kind} {fields.get('label')!r}")
        if "constraints" in fields:
            attrs["constraints"] = [str(c) for c in _as_list(fields["constraints"])]
        if "columns" in fields:
            attrs["columns"] = _columns(fields["columns"])
        return attrs

    def _resolve(self, builder: ElementBuilder, token: str) -> str | None:
        if parse_element_id(token) is not None:
            return token
        found = builder.find(token)
        if found is None:
            builder.warn(f"unknown element {token!r}")
        return found
