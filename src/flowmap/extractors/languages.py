"""Lazy tree-sitter grammar loading shared by the source extractors."""

from __future__ import annotations

from typing import TYPE_CHECKING

from tree_sitter import Language, Parser

if TYPE_CHECKING:
    from collections.abc import Callable

    from tree_sitter import Node as TSNode


def _load_python() -> Language:
    import tree_sitter_python as tspython

    return Language(tspython.language())


def _load_typescript() -> Language:
    import tree_sitter_typescript as tstypescript

    return Language(tstypescript.language_typescript())


def _load_tsx() -> Language:
    import tree_sitter_typescript as tstypescript

    return Language(tstypescript.language_tsx())


# Extension -> loader function mapping.
_EXTENSION_LOADERS: dict[str, Callable[[], Language]] = {
    ".py": _load_python,
    ".ts": _load_typescript,
    ".tsx": _load_tsx,
    ".js": _load_tsx,
    ".jsx": _load_tsx,
}

# Cache for loaded languages (None means "tried and failed / unsupported").
_LANG_CACHE: dict[str, Language | None] = {}


def get_language(extension: str) -> Language | None:
    """Get the grammar for a file extension, or ``None`` if unsupported/unavailable."""
    if extension in _LANG_CACHE:
        return _LANG_CACHE[extension]

    loader = _EXTENSION_LOADERS.get(extension)
    if loader is None:
        _LANG_CACHE[extension] = None
        return None

    try:
        language = loader()
    except ImportError:
        _LANG_CACHE[extension] = None
        return None

    _LANG_CACHE[extension] = language
    return language


def supported_extensions() -> frozenset[str]:
    """Return the set of file extensions with available grammars."""
    return frozenset(ext for ext in _EXTENSION_LOADERS if get_language(ext) is not None)


def clear_cache() -> None:
    """Clear the language cache (useful for testing)."""
    _LANG_CACHE.clear()


def parse(extension: str, content: str) -> TSNode | None:
    """Parse *content* with the grammar for *extension* and return the root node."""
    language = get_language(extension)
    if language is None:
        return None
    parser = Parser(language)
    return parser.parse(content.encode("utf-8")).root_node


def node_text(node: TSNode | None) -> str:
    if node is None or node.text is None:
        return ""
    return node.text.decode("utf-8")


def walk(node: TSNode) -> list[TSNode]:
    """All descendants of *node* in source (pre-)order, excluding *node*."""
    out: list[TSNode] = []
    stack = list(reversed(node.children))
    while stack:
        current = stack.pop()
        out.append(current)
        stack.extend(reversed(current.children))
    return out
