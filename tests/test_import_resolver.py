"""Tests for flowmap.graph.import_resolver: module specifier resolution."""

from __future__ import annotations

import pytest

from flowmap.graph.import_resolver import ReferenceResolver, _strip_suffixes


class TestStripSuffixes:
    def test_single_suffix(self) -> None:
        assert _strip_suffixes("src/calc.py") == ["src/calc"]

    def test_compound_suffix(self) -> None:
        assert _strip_suffixes("a/calc.flow.yml") == ["a/calc.flow", "a/calc"]

    def test_no_suffix(self) -> None:
        assert _strip_suffixes("Makefile") == []

    def test_dotfile(self) -> None:
        assert _strip_suffixes(".env") == []


class TestRelative:
    def test_sibling(self) -> None:
        resolver = ReferenceResolver(["src/form.tsx", "src/calc.ts"])
        assert resolver.resolve("src/form.tsx", "./calc") == "src/calc.ts"

    def test_parent(self) -> None:
        resolver = ReferenceResolver(["a/b.py", "x.py"])
        assert resolver.resolve("a/b.py", "../x") == "x.py"

    def test_exact_file_name(self) -> None:
        resolver = ReferenceResolver(["form.flow.yml", "calc.flow.yml"])
        assert resolver.resolve("form.flow.yml", "./calc.flow.yml") == "calc.flow.yml"

    def test_compound_suffix_stem(self) -> None:
        resolver = ReferenceResolver(["form.flow.yml", "calc.flow.yml"])
        assert resolver.resolve("form.flow.yml", "./calc") == "calc.flow.yml"

    def test_escaping_root_is_unresolved(self) -> None:
        resolver = ReferenceResolver(["a.py", "x.py"])
        assert resolver.resolve("a.py", "../../x") is None

    def test_barrel_directory(self) -> None:
        resolver = ReferenceResolver(["src/app.tsx", "src/components/index.tsx"])
        assert resolver.resolve("src/app.tsx", "./components") == "src/components/index.tsx"

    def test_python_package_dot(self) -> None:
        resolver = ReferenceResolver(["pkg/a.py", "pkg/__init__.py"])
        assert resolver.resolve("pkg/a.py", ".") == "pkg/__init__.py"


class TestAliasesAndRoots:
    def test_default_alias(self) -> None:
        resolver = ReferenceResolver(["src/app.tsx", "src/utils/calc.ts"])
        assert resolver.resolve("src/app.tsx", "@/utils/calc") == "src/utils/calc.ts"

    def test_longest_alias_wins(self) -> None:
        resolver = ReferenceResolver(
            ["app.tsx", "lib/ui/button.tsx", "ui/button.tsx"],
            aliases={"@/": "", "@/ui/": "lib/ui/"},
        )
        assert resolver.resolve("app.tsx", "@/ui/button") == "lib/ui/button.tsx"

    def test_root_relative(self) -> None:
        resolver = ReferenceResolver(["app/services.py", "app/models.py"])
        assert resolver.resolve("app/services.py", "app/models") == "app/models.py"

    def test_source_root(self) -> None:
        resolver = ReferenceResolver(
            ["src/shop/orders.py", "src/shop/models.py"], source_roots=["src"]
        )
        assert resolver.resolve("src/shop/orders.py", "shop/models") == "src/shop/models.py"


class TestUnresolved:
    @pytest.mark.parametrize("module", ["react", "", "lodash/fp"])
    def test_third_party(self, module: str) -> None:
        resolver = ReferenceResolver(["src/app.tsx"])
        assert resolver.resolve("src/app.tsx", module) is None

    def test_self_import_ignored(self) -> None:
        resolver = ReferenceResolver(["calc.py"])
        assert resolver.resolve("calc.py", "calc") is None

    def test_ties_break_by_path(self) -> None:
        paths = ["calc.ts", "calc.py", "main.py"]
        assert ReferenceResolver(paths).resolve("main.py", "./calc") == "calc.py"
        assert ReferenceResolver(reversed(paths)).resolve("main.py", "./calc") == "calc.py"
