"""TSX/JSX extractor: components, form inputs, and transforms via tree-sitter."""

from __future__ import annotations

import posixpath
from dataclasses import dataclass
from typing import TYPE_CHECKING

from flowmap.extractors.base import ElementBuilder, ExtractionResult, derived_output_label
from flowmap.extractors.languages import node_text, parse, walk
from flowmap.graph.model import DEFAULT_SCOPE_TAG

if TYPE_CHECKING:
    from tree_sitter import Node as TSNode

_INPUT_TAGS: dict[str, str] = {"input": "string", "select": "choice", "textarea": "text"}
_INPUT_TYPES: dict[str, str] = {
    "number": "number",
    "range": "number",
    "checkbox": "boolean",
    "radio": "choice",
    "date": "date",
    "datetime-local": "datetime",
    "email": "email",
    "file": "file",
}
_CONSTRAINT_ATTRS: tuple[str, ...] = ("min", "max", "minLength", "maxLength", "pattern", "step")
_LABEL_ATTRS: tuple[str, ...] = ("name", "id", "aria-label", "placeholder")
_IGNORED_DISPLAY_NAMES: frozenset[str] = frozenset({"children", "props", "undefined", "null"})
_FUNCTION_NODES: frozenset[str] = frozenset({"arrow_function", "function_expression", "function"})


@dataclass(frozen=True)
class _Function:
    name: str
    node: TSNode
    params: TSNode | None
    body: TSNode | None
    is_component: bool


def _string_value(node: TSNode) -> str:
    for child in node.children:
        if child.type == "string_fragment":
            return node_text(child)
    return node_text(node).strip("\"'`")


def _has_jsx(node: TSNode | None) -> bool:
    if node is None:
        return False
    return node.type.startswith("jsx_") or any(n.type.startswith("jsx_") for n in walk(node))


def _function_value(value: TSNode | None) -> TSNode | None:
    """Unwrap ``memo(() => ...)`` / ``forwardRef(function ...)`` style wrappers."""
    if value is None:
        return None
    if value.type in _FUNCTION_NODES:
        return value
    if value.type == "call_expression":
        args = value.child_by_field_name("arguments")
        for arg in args.named_children if args is not None else []:
            if arg.type in _FUNCTION_NODES:
                return arg
    return None


def _jsx_attributes(node: TSNode) -> dict[str, str | bool]:
    """Attributes of a JSX tag; boolean attributes map to ``True``."""
    attrs: dict[str, str | bool] = {}
    for child in node.named_children:
        if child.type != "jsx_attribute" or not child.named_children:
            continue
        key = node_text(child.named_children[0])
        if len(child.named_children) < 2:
            attrs[key] = True
            continue
        value = child.named_children[1]
        if value.type == "string":
            attrs[key] = _string_value(value)
        elif value.type == "jsx_expression" and value.named_children:
            attrs[key] = node_text(value.named_children[0])
        else:
            attrs[key] = node_text(value)
    return attrs


def _expression_label(node: TSNode) -> str:
    """``total`` -> ``total``; ``order.total`` -> ``total``; anything else -> ``""``."""
    if node.type == "identifier":
        return node_text(node)
    if node.type == "member_expression":
        return node_text(node.child_by_field_name("property"))
    return ""


class TsxExtractor:
    """Reference strategy for React-style TSX/JSX (and plain TS/JS) sources.

    Capitalised functions returning JSX become Components.  Form controls
    become captured DataPoints, ``{expr}`` children become displayed
    DataPoints, ``<img>`` becomes an Image, locally defined child components
    become ``children``, and imported ones become render References.  Other
    top-level functions become Transforms.
    """

    category = "tsx"
    extensions = frozenset({".tsx", ".jsx", ".ts", ".js"})

    def __init__(self, scope_tag: str = DEFAULT_SCOPE_TAG) -> None:
        self.scope_tag = scope_tag

    def extract(self, path: str, content: str) -> ExtractionResult:
        builder = ElementBuilder(path, self.scope_tag)
        if not content.strip():
            return builder.build()
        extension = posixpath.splitext(path)[1] or ".tsx"
        root = parse(extension, content)
        if root is None:
            builder.warn("tree-sitter-typescript is not installed")
            return builder.build()

        imports: dict[str, tuple[str, str]] = {}
        functions: list[_Function] = []
        for child in root.named_children:
            if child.type == "import_statement":
                self._collect_imports(child, builder, imports)
            elif child.type == "export_statement" and child.child_by_field_name("source"):
                self._collect_reexports(child, builder)
            else:
                functions.extend(self._functions(child))

        # Pass 1: one element per function, in source order.
        ids: dict[str, str] = {}
        for fn in functions:
            if fn.name in ids:
                continue
            if fn.is_component:
                ids[fn.name] = builder.add("Component", fn.name, layout_hint="jsx")
            else:
                kind = "validation" if fn.name.startswith("validate") else "formula"
                ids[fn.name] = builder.add(
                    "Transform", fn.name, transform_kind=kind, logic_description=f"{fn.name}()"
                )

        # Pass 2: payloads and usages.
        seen: set[tuple[object, ...]] = set()
        for fn in functions:
            element_id = ids[fn.name]
            if fn.body is None:
                continue
            if fn.is_component:
                self._component(fn, element_id, builder, imports, ids)
            else:
                self._transform(fn, element_id, builder)
            self._calls(fn.body, element_id, builder, imports, seen)
        return builder.build()

    # -- discovery ---------------------------------------------------------

    def _collect_imports(
        self, node: TSNode, builder: ElementBuilder, imports: dict[str, tuple[str, str]]
    ) -> None:
        source_node = node.child_by_field_name("source")
        if source_node is None:
            return
        module = _string_value(source_node)
        for clause in node.named_children:
            if clause.type != "import_clause":
                continue
            for item in clause.named_children:
                if item.type == "identifier":
                    local = node_text(item)
                    imports[local] = (module, local)
                    builder.reference(module, local)
                elif item.type == "named_imports":
                    for spec in item.named_children:
                        if spec.type != "import_specifier":
                            continue
                        imported = node_text(spec.child_by_field_name("name"))
                        alias = spec.child_by_field_name("alias")
                        imports[node_text(alias) if alias else imported] = (module, imported)
                        builder.reference(module, imported)

    def _collect_reexports(self, node: TSNode, builder: ElementBuilder) -> None:
        """Barrel re-exports: ``export { A } from "./a"`` and ``export * from "./b"``."""
        module = _string_value(node.child_by_field_name("source"))
        clause = next((c for c in node.named_children if c.type == "export_clause"), None)
        if clause is None:
            builder.reference(module, "*")
            return
        for spec in clause.named_children:
            if spec.type == "export_specifier":
                builder.reference(module, node_text(spec.child_by_field_name("name")))

    def _functions(self, node: TSNode) -> list[_Function]:
        if node.type == "export_statement":
            found: list[_Function] = []
            for child in node.named_children:
                found.extend(self._functions(child))
            return found
        if node.type == "function_declaration":
            name = node_text(node.child_by_field_name("name"))
            return [self._make(name, node)] if name else []
        if node.type in ("lexical_declaration", "variable_declaration"):
            found = []
            for declarator in node.named_children:
                if declarator.type != "variable_declarator":
                    continue
                fn = _function_value(declarator.child_by_field_name("value"))
                name = node_text(declarator.child_by_field_name("name"))
                if fn is not None and name:
                    found.append(self._make(name, fn))
            return found
        return []

    def _make(self, name: str, node: TSNode) -> _Function:
        params = node.child_by_field_name("parameters") or node.child_by_field_name("parameter")
        body = node.child_by_field_name("body")
        return _Function(
            name=name,
            node=node,
            params=params,
            body=body,
            is_component=name[:1].isupper() and _has_jsx(body),
        )

    # -- components --------------------------------------------------------

    def _component(
        self,
        fn: _Function,
        component_id: str,
        builder: ElementBuilder,
        imports: dict[str, tuple[str, str]],
        local_ids: dict[str, str],
    ) -> None:
        assert fn.body is not None
        for node in walk(fn.body):
            if node.type in ("jsx_opening_element", "jsx_self_closing_element"):
                self._tag(node, fn.name, component_id, builder, imports, local_ids)
            elif node.type == "jsx_expression" and node.parent is not None and (
                node.parent.type == "jsx_element"
            ):
                inner = node.named_children[0] if node.named_children else None
                label = _expression_label(inner) if inner is not None else ""
                if not label or label in _IGNORED_DISPLAY_NAMES:
                    continue
                if label in imports or label in local_ids:
                    continue
                point = builder.find(label, "DataPoint")
                if point is None:
                    point = builder.add(
                        "DataPoint",
                        label,
                        origin="inferred",
                        origin_description=f"displayed by {fn.name}",
                    )
                builder.append(component_id, "displays", point)

    def _tag(
        self,
        node: TSNode,
        component: str,
        component_id: str,
        builder: ElementBuilder,
        imports: dict[str, tuple[str, str]],
        local_ids: dict[str, str],
    ) -> None:
        tag = node_text(node.child_by_field_name("name"))
        if not tag:
            return
        attrs = _jsx_attributes(node)

        if tag in _INPUT_TAGS:
            label = next(
                (str(attrs[key]) for key in _LABEL_ATTRS if isinstance(attrs.get(key), str)), ""
            )
            if not label:
                builder.warn(f"unnamed <{tag}> in {component}")
                return
            input_type = attrs.get("type")
            value_type = _INPUT_TYPES.get(str(input_type), _INPUT_TAGS[tag])
            constraints = ["required"] if attrs.get("required") else []
            constraints.extend(
                f"{key}={attrs[key]}"
                for key in _CONSTRAINT_ATTRS
                if isinstance(attrs.get(key), str)
            )
            point = builder.find(label, "DataPoint")
            if point is None:
                point = builder.add(
                    "DataPoint",
                    label,
                    value_type=value_type,
                    origin="captured",
                    origin_description=f"<{tag}> in {component}",
                    constraints=constraints,
                )
            builder.append(component_id, "captures", point)
            return

        if tag == "img":
            source = str(attrs.get("src", "")) if attrs.get("src") is not True else ""
            alt = str(attrs.get("alt", "")) if attrs.get("alt") is not True else ""
            image = builder.add("Image", alt or source or "image", source=source, alt=alt)
            builder.append(component_id, "displays", image)
            return

        base = tag.split(".", 1)[0]
        if not base[:1].isupper():
            return
        if base in local_ids:
            if local_ids[base] != component_id:
                builder.append(component_id, "children", local_ids[base])
        elif base in imports:
            module, imported = imports[base]
            builder.reference(module, imported, usage="render", user=component_id)

    # -- transforms --------------------------------------------------------

    def _transform(self, fn: _Function, transform_id: str, builder: ElementBuilder) -> None:
        params = self._parameter_names(fn.params)
        for param in params:
            point = builder.find(param, "DataPoint")
            if point is None:
                point = builder.add(
                    "DataPoint",
                    param,
                    origin="inferred",
                    origin_description=f"parameter of {fn.name}",
                )
            builder.append(transform_id, "inputs", point)
        builder.attrs(transform_id)["logic_description"] = f"{fn.name}({', '.join(params)})"

        if fn.name.startswith("validate"):
            return
        returned = ""
        assert fn.body is not None
        if fn.body.type != "statement_block":
            returned = _expression_label(fn.body) if fn.body.type == "identifier" else ""
        else:
            for node in walk(fn.body):
                if node.type == "return_statement" and node.named_children:
                    value = node.named_children[0]
                    if value.type == "identifier" and node_text(value) not in params:
                        returned = node_text(value)
                        break
        if returned in params:
            returned = ""
        label = returned or derived_output_label(fn.name)
        point = builder.find(label, "DataPoint")
        if point is None:
            point = builder.add(
                "DataPoint", label, origin="inferred", origin_description=f"result of {fn.name}"
            )
        builder.append(transform_id, "outputs", point)

    def _parameter_names(self, params: TSNode | None) -> list[str]:
        if params is None:
            return []
        if params.type == "identifier":
            return [node_text(params)]
        names: list[str] = []
        for child in params.named_children:
            pattern = child
            if child.type.endswith("_parameter"):
                pattern = child.child_by_field_name("pattern")
            if pattern is None:
                continue
            if pattern.type == "identifier":
                names.append(node_text(pattern))
            elif pattern.type == "object_pattern":
                for prop in pattern.named_children:
                    if prop.type == "shorthand_property_identifier_pattern":
                        names.append(node_text(prop))
                    elif prop.type == "object_assignment_pattern":
                        left = prop.child_by_field_name("left")
                        if left is not None:
                            names.append(node_text(left))
        return names

    # -- usages ------------------------------------------------------------

    def _calls(
        self,
        body: TSNode,
        user: str,
        builder: ElementBuilder,
        imports: dict[str, tuple[str, str]],
        seen: set[tuple[object, ...]],
    ) -> None:
        for node in walk(body):
            if node.type != "call_expression":
                continue
            func = node.child_by_field_name("function")
            if func is None or func.type != "identifier" or node_text(func) not in imports:
                continue
            args = node.child_by_field_name("arguments")
            labels = tuple(
                label
                for label in (_expression_label(a) for a in (args.named_children if args else []))
                if label
            )
            module, imported = imports[node_text(func)]
            key = (module, imported, user, labels)
            if key in seen:
                continue
            seen.add(key)
            builder.reference(module, imported, usage="call", user=user, arguments=labels)
