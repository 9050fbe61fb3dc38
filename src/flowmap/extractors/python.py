"""Python extractor: tables, record fields, and transforms via tree-sitter."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from flowmap.extractors.base import ElementBuilder, ExtractionResult, derived_output_label
from flowmap.extractors.languages import node_text, parse, walk
from flowmap.graph.model import DEFAULT_SCOPE_TAG

if TYPE_CHECKING:
    from tree_sitter import Node as TSNode

# Base classes that mark an ORM model.
_TABLE_BASES: frozenset[str] = frozenset(
    {"Base", "Model", "db.Model", "models.Model", "DeclarativeBase", "Document"}
)

# Base classes / decorators that mark a plain record whose fields are data.
_RECORD_BASES: frozenset[str] = frozenset({"BaseModel", "TypedDict", "NamedTuple", "Schema"})

_ROUTE_DECORATOR_RE = re.compile(
    r"^@\s*[\w.]+\.(get|post|put|patch|delete|route|api_route|websocket|task)\b"
    r"|^@\s*(shared_task|task)\b"
)
_VALIDATION_PREFIXES: tuple[str, ...] = ("validate", "check_", "is_valid", "ensure_")
_FIELD_CONSTRAINT_KEYS: frozenset[str] = frozenset(
    {"gt", "ge", "lt", "le", "min_length", "max_length", "pattern", "regex", "max_digits"}
)
_QUERY_METHODS: frozenset[str] = frozenset(
    {"query", "select", "get", "filter", "filter_by", "execute", "scalars", "objects"}
)
_MUTATE_METHODS: frozenset[str] = frozenset(
    {"add", "add_all", "insert", "update", "delete", "merge", "save", "create", "bulk_create"}
)
_SKIPPED_PARAMS: frozenset[str] = frozenset({"self", "cls"})


def _module_spec(node: TSNode) -> str:
    """Normalize a ``from X import`` module to a slash specifier."""
    if node.type != "relative_import":
        return node_text(node).replace(".", "/")
    prefix = ""
    rest = ""
    for child in node.children:
        if child.type == "import_prefix":
            prefix = node_text(child)
        elif child.type == "dotted_name":
            rest = node_text(child).replace(".", "/")
    dots = max(len(prefix), 1)
    head = "./" if dots == 1 else "../" * (dots - 1)
    if rest:
        return head + rest
    return head.rstrip("/") or "."


def _unquote(text: str) -> str:
    return text.strip().strip("\"'")


def _assignment(stmt: TSNode) -> TSNode | None:
    if stmt.type != "expression_statement" or not stmt.named_children:
        return None
    child = stmt.named_children[0]
    return child if child.type == "assignment" else None


def _call_name(node: TSNode | None) -> str:
    """Last dotted segment of a call's function (``models.CharField`` -> ``CharField``)."""
    if node is None or node.type != "call":
        return ""
    return node_text(node.child_by_field_name("function")).rsplit(".", 1)[-1]


def _root_identifier(node: TSNode) -> str:
    """Leftmost name of an attribute chain (``Order.objects.filter`` -> ``Order``)."""
    while node.type == "attribute":
        obj = node.child_by_field_name("object")
        if obj is None:
            return ""
        node = obj
    return node_text(node) if node.type == "identifier" else ""


def _strip_wrapper(type_text: str, wrapper: str) -> str:
    if type_text.startswith(f"{wrapper}[") and type_text.endswith("]"):
        return type_text[len(wrapper) + 1 : -1]
    return type_text


class PythonExtractor:
    """Reference strategy for Python sources.

    * ORM classes (``__tablename__`` or a model base) become Tables.
    * dataclass / pydantic / TypedDict fields become DataPoints.
    * public top-level functions become Transforms whose parameters are
      input DataPoints; a declared or named result becomes an output.
    * ``from x import y`` plus calls and queries of imported names become
      References for cross-file resolution.
    """

    category = "python"
    extensions = frozenset({".py"})

    def __init__(self, scope_tag: str = DEFAULT_SCOPE_TAG) -> None:
        self.scope_tag = scope_tag

    def extract(self, path: str, content: str) -> ExtractionResult:
        builder = ElementBuilder(path, self.scope_tag)
        if not content.strip():
            return builder.build()
        root = parse(".py", content)
        if root is None:
            builder.warn("tree-sitter-python is not installed")
            return builder.build()

        imports: dict[str, tuple[str, str]] = {}
        for child in root.children:
            if child.type == "import_from_statement":
                self._collect_imports(child, builder, imports)

        seen: set[tuple[object, ...]] = set()
        for child in root.children:
            node = child
            decorators: list[str] = []
            if child.type == "decorated_definition":
                decorators = [node_text(d) for d in child.children if d.type == "decorator"]
                definition = child.child_by_field_name("definition")
                if definition is None:
                    continue
                node = definition
            if node.type == "class_definition":
                self._class(node, decorators, builder)
            elif node.type == "function_definition":
                self._function(node, decorators, builder, imports, seen)
        return builder.build()

    # -- imports -----------------------------------------------------------

    def _collect_imports(
        self, node: TSNode, builder: ElementBuilder, imports: dict[str, tuple[str, str]]
    ) -> None:
        module_node = node.child_by_field_name("module_name")
        if module_node is None:
            return
        spec = _module_spec(module_node)
        for name_node in node.children_by_field_name("name"):
            if name_node.type == "aliased_import":
                imported = node_text(name_node.child_by_field_name("name"))
                local = node_text(name_node.child_by_field_name("alias"))
            else:
                imported = node_text(name_node)
                local = imported
            if not imported:
                continue
            imports[local] = (spec, imported)
            builder.reference(spec, imported)

    # -- classes -----------------------------------------------------------

    def _class(self, node: TSNode, decorators: list[str], builder: ElementBuilder) -> None:
        name = node_text(node.child_by_field_name("name"))
        supers_node = node.child_by_field_name("superclasses")
        bases = [node_text(c) for c in supers_node.named_children] if supers_node else []
        body = node.child_by_field_name("body")
        if body is None or not name:
            return
        assignments = [a for a in (_assignment(s) for s in body.named_children) if a is not None]

        is_table = (
            any(node_text(a.child_by_field_name("left")) == "__tablename__" for a in assignments)
            or any(b in _TABLE_BASES for b in bases)
            or any(b.replace(" ", "") == "table=True" for b in bases)
        )
        if is_table:
            columns: list[list[str]] = []
            for assign in assignments:
                column = self._column(assign)
                if column is not None:
                    columns.append(column)
            builder.add("Table", name, persistence_kind="database", columns=columns)
            return

        is_record = any("dataclass" in d for d in decorators) or any(
            b.rsplit(".", 1)[-1] in _RECORD_BASES for b in bases
        )
        if not is_record:
            return
        for assign in assignments:
            left = assign.child_by_field_name("left")
            type_node = assign.child_by_field_name("type")
            if left is None or left.type != "identifier" or type_node is None:
                continue
            type_text = node_text(type_node)
            if type_text.startswith("ClassVar"):
                continue
            builder.add(
                "DataPoint",
                node_text(left),
                value_type=type_text,
                origin="inferred",
                origin_description=f"field of {name}",
                constraints=self._field_constraints(type_text, assign.child_by_field_name("right")),
            )

    def _column(self, assign: TSNode) -> list[str] | None:
        left = assign.child_by_field_name("left")
        if left is None or left.type != "identifier":
            return None
        column = node_text(left)
        if column.startswith("__"):
            return None
        right = assign.child_by_field_name("right")
        type_node = assign.child_by_field_name("type")
        if type_node is not None:
            return [column, _strip_wrapper(node_text(type_node), "Mapped")]
        call = _call_name(right)
        if not call or call == "relationship":
            return None
        if not (call.endswith(("Column", "column", "Field")) or call == "ForeignKey"):
            return None
        args = right.child_by_field_name("arguments") if right is not None else None
        value_type = call
        if args is not None and call in ("Column", "column", "mapped_column"):
            for arg in args.named_children:
                if arg.type in ("identifier", "attribute"):
                    value_type = node_text(arg).rsplit(".", 1)[-1]
                    break
                if arg.type == "call":
                    value_type = _call_name(arg)
                    break
        return [column, value_type]

    def _field_constraints(self, type_text: str, right: TSNode | None) -> list[str]:
        constraints: list[str] = []
        optional = "Optional" in type_text or "None" in type_text
        if right is None:
            if not optional:
                constraints.append("required")
            return constraints
        if _call_name(right) != "Field":
            return constraints
        args = right.child_by_field_name("arguments")
        for arg in args.named_children if args is not None else []:
            if arg.type == "ellipsis":
                constraints.append("required")
            elif arg.type == "keyword_argument":
                key = node_text(arg.child_by_field_name("name"))
                if key in _FIELD_CONSTRAINT_KEYS:
                    value = _unquote(node_text(arg.child_by_field_name("value")))
                    constraints.append(f"{key}={value}")
        return constraints

    # -- functions ---------------------------------------------------------

    def _function(
        self,
        node: TSNode,
        decorators: list[str],
        builder: ElementBuilder,
        imports: dict[str, tuple[str, str]],
        seen: set[tuple[object, ...]],
    ) -> None:
        name = node_text(node.child_by_field_name("name"))
        if not name or name.startswith("_"):
            return
        body = node.child_by_field_name("body")

        if any(_ROUTE_DECORATOR_RE.search(d) for d in decorators):
            transform_kind = "workflow"
        elif name.startswith(_VALIDATION_PREFIXES):
            transform_kind = "validation"
        else:
            transform_kind = "formula"

        params = self._parameters(node.child_by_field_name("parameters"))
        transform_id = builder.add(
            "Transform",
            name,
            transform_kind=transform_kind,
            logic_description=(
                self._docstring(body) or f"{name}({', '.join(p for p, _, _ in params)})"
            ),
        )

        for param, type_text, has_default in params:
            point = builder.find(param, "DataPoint")
            if point is None:
                point = builder.add(
                    "DataPoint",
                    param,
                    value_type=type_text,
                    origin="inferred",
                    origin_description=f"parameter of {name}",
                    constraints=[] if has_default else ["required"],
                )
            builder.append(transform_id, "inputs", point)

        if transform_kind != "validation":
            output = self._output_label(node, name, {p for p, _, _ in params})
            if output is not None:
                label, type_text = output
                point = builder.find(label, "DataPoint")
                if point is None:
                    point = builder.add(
                        "DataPoint",
                        label,
                        value_type=type_text,
                        origin="inferred",
                        origin_description=f"result of {name}",
                    )
                builder.append(transform_id, "outputs", point)

        if body is not None:
            self._usages(body, transform_id, builder, imports, seen)

    def _parameters(self, node: TSNode | None) -> list[tuple[str, str, bool]]:
        """Return ``(name, type, has_default)`` for each named parameter."""
        params: list[tuple[str, str, bool]] = []
        if node is None:
            return params
        for child in node.named_children:
            if child.type == "identifier":
                params.append((node_text(child), "", False))
            elif child.type == "typed_parameter":
                ident = child.named_children[0] if child.named_children else None
                if ident is None or ident.type != "identifier":
                    continue
                type_text = node_text(child.child_by_field_name("type"))
                params.append((node_text(ident), type_text, False))
            elif child.type in ("default_parameter", "typed_default_parameter"):
                ident = child.child_by_field_name("name")
                if ident is None or ident.type != "identifier":
                    continue
                type_text = node_text(child.child_by_field_name("type"))
                params.append((node_text(ident), type_text, True))
        return [p for p in params if p[0] not in _SKIPPED_PARAMS]

    def _docstring(self, body: TSNode | None) -> str:
        if body is None or not body.named_children:
            return ""
        first = body.named_children[0]
        if first.type != "expression_statement" or not first.named_children:
            return ""
        string = first.named_children[0]
        if string.type != "string":
            return ""
        text = node_text(string).strip("\"' \n")
        return text.splitlines()[0].strip() if text else ""

    def _output_label(
        self, node: TSNode, name: str, params: set[str]
    ) -> tuple[str, str] | None:
        return_type = node_text(node.child_by_field_name("return_type"))
        returned = ""
        body = node.child_by_field_name("body")
        for sub in walk(body) if body is not None else []:
            if sub.type == "return_statement" and sub.named_children:
                value = sub.named_children[0]
                if value.type == "identifier" and node_text(value) not in params:
                    returned = node_text(value)
                    break
        if returned:
            return returned, return_type
        if not return_type or return_type == "None":
            return None
        return derived_output_label(name), return_type

    def _usages(
        self,
        body: TSNode,
        user: str,
        builder: ElementBuilder,
        imports: dict[str, tuple[str, str]],
        seen: set[tuple[object, ...]],
    ) -> None:
        def _emit(local: str, usage: str, arguments: tuple[str, ...] = ()) -> None:
            module, imported = imports[local]
            key = (module, imported, usage, user, arguments)
            if key in seen:
                return
            seen.add(key)
            builder.reference(module, imported, usage=usage, user=user, arguments=arguments)

        for call in walk(body):
            if call.type != "call":
                continue
            func = call.child_by_field_name("function")
            args = call.child_by_field_name("arguments")
            arg_nodes = args.named_children if args is not None else []
            if func is None:
                continue

            if func.type == "identifier" and node_text(func) in imports:
                _emit(node_text(func), "call", tuple(self._argument_labels(arg_nodes)))

            if func.type == "attribute":
                method = node_text(func.child_by_field_name("attribute"))
            elif func.type == "identifier":
                method = node_text(func)
            else:
                continue
            if method in _QUERY_METHODS:
                usage = "query"
            elif method in _MUTATE_METHODS:
                usage = "mutate"
            else:
                continue
            for arg in arg_nodes:
                target = arg
                if arg.type == "call":
                    target = arg.child_by_field_name("function") or arg
                if target.type == "identifier" and node_text(target) in imports:
                    _emit(node_text(target), usage)
            root_name = _root_identifier(func) if func.type == "attribute" else ""
            if root_name in imports:
                # Order.objects.filter(...) style access.
                _emit(root_name, usage)

    def _argument_labels(self, arg_nodes: list[TSNode]) -> list[str]:
        labels: list[str] = []
        for arg in arg_nodes:
            value = arg.child_by_field_name("value") if arg.type == "keyword_argument" else arg
            if value is None:
                continue
            if value.type == "identifier":
                labels.append(node_text(value))
            elif value.type == "attribute":
                labels.append(node_text(value.child_by_field_name("attribute")))
        return labels
