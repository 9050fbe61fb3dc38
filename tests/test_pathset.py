"""Tests for flowmap.infrastructure.pathset."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

import pytest

from flowmap.graph.model import mtime_from_ns
from flowmap.infrastructure.pathset import resolve

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path


def _paths(root: Path, **kwargs: object) -> list[str]:
    entries, _ = resolve(root, **kwargs)  # type: ignore[arg-type]
    return [e.path for e in entries]


class TestResolve:
    def test_sorted_posix_paths_with_stat(
        self, tmp_project: Path, write: Callable[..., Path]
    ) -> None:
        written = write(tmp_project, "src/b.py", "b = 1\n", tick=5)
        write(tmp_project, "a.flow.yml", "elements: []\n")
        entries, warnings = resolve(tmp_project)
        assert [e.path for e in entries] == ["a.flow.yml", "src/b.py"]
        assert entries[1].size_bytes == 6
        assert entries[1].modified_at == mtime_from_ns(written.stat().st_mtime_ns)
        assert warnings == []

    def test_state_and_git_dirs_never_listed(
        self, tmp_project: Path, write: Callable[..., Path]
    ) -> None:
        write(tmp_project, ".git/config", "x")
        write(tmp_project, ".flowmap/index.json", "{}")
        write(tmp_project, "a.py", "")
        assert _paths(tmp_project) == ["a.py"]

    def test_exclude_patterns(self, tmp_project: Path, write: Callable[..., Path]) -> None:
        write(tmp_project, "build/out.py", "")
        write(tmp_project, "debug.log", "")
        write(tmp_project, "keep.py", "")
        assert _paths(tmp_project, exclude=["build/", "*.log"]) == ["keep.py"]

    def test_include_restricts(self, tmp_project: Path, write: Callable[..., Path]) -> None:
        write(tmp_project, "src/app.tsx", "")
        write(tmp_project, "scripts/tool.py", "")
        assert _paths(tmp_project, include=["src/"]) == ["src/app.tsx"]

    def test_exclude_wins_over_include(
        self, tmp_project: Path, write: Callable[..., Path]
    ) -> None:
        write(tmp_project, "src/app.tsx", "")
        write(tmp_project, "src/app.test.tsx", "")
        paths = _paths(tmp_project, include=["src/"], exclude=["*.test.tsx"])
        assert paths == ["src/app.tsx"]

    def test_gitignore_root_and_nested(
        self, tmp_project: Path, write: Callable[..., Path]
    ) -> None:
        write(tmp_project, ".gitignore", "# comment\nsecret.py\n")
        write(tmp_project, "pkg/.gitignore", "local.py\n")
        write(tmp_project, "secret.py", "")
        write(tmp_project, "local.py", "")
        write(tmp_project, "pkg/local.py", "")
        write(tmp_project, "pkg/mod.py", "")
        paths = _paths(tmp_project)
        assert "secret.py" not in paths
        assert "pkg/local.py" not in paths
        assert "local.py" in paths
        assert "pkg/mod.py" in paths

    def test_binary_extensions_skipped(
        self, tmp_project: Path, write: Callable[..., Path]
    ) -> None:
        write(tmp_project, "logo.PNG", "not really")
        write(tmp_project, "a.py", "")
        assert _paths(tmp_project) == ["a.py"]

    def test_generated_files(self, tmp_project: Path, write: Callable[..., Path]) -> None:
        write(tmp_project, "gen.py", "# @generated by protoc\n")
        write(tmp_project, "a.py", "")
        assert _paths(tmp_project) == ["a.py"]
        assert _paths(tmp_project, skip_generated=False) == ["a.py", "gen.py"]

    def test_oversized_files_still_listed(
        self, tmp_project: Path, write: Callable[..., Path]
    ) -> None:
        write(tmp_project, "big.py", "x" * 5000)
        entries, _ = resolve(tmp_project)
        assert entries[0].size_bytes == 5000

    @pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks unsupported")
    def test_symlinked_dirs_not_followed(
        self, tmp_path: Path, tmp_project: Path, write: Callable[..., Path]
    ) -> None:
        write(tmp_path, "outside/x.py", "")
        write(tmp_project, "a.py", "")
        (tmp_project / "linked").symlink_to(tmp_path / "outside", target_is_directory=True)
        assert _paths(tmp_project) == ["a.py"]

    @pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks unsupported")
    def test_broken_symlink_ignored(self, tmp_project: Path, write: Callable[..., Path]) -> None:
        write(tmp_project, "a.py", "")
        (tmp_project / "gone.py").symlink_to(tmp_project / "missing.py")
        entries, warnings = resolve(tmp_project)
        assert [e.path for e in entries] == ["a.py"]
        assert warnings == []


class TestUnreadable:
    @pytest.mark.skipif(
        not hasattr(os, "geteuid") or os.geteuid() == 0,
        reason="needs a non-root POSIX user for permission bits to apply",
    )
    def test_unreadable_directory_warns(
        self, tmp_project: Path, write: Callable[..., Path]
    ) -> None:
        write(tmp_project, "a.py", "")
        write(tmp_project, "locked/b.py", "")
        locked = tmp_project / "locked"
        locked.chmod(0o000)
        try:
            entries, warnings = resolve(tmp_project)
        finally:
            locked.chmod(0o755)
        assert [e.path for e in entries] == ["a.py"]
        assert len(warnings) == 1
        assert "Cannot read directory" in warnings[0]

    def test_listing_error_skips_directory(
        self, tmp_project: Path, write: Callable[..., Path], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        write(tmp_project, "a.py", "")
        write(tmp_project, "locked/b.py", "")
        real_scandir = os.scandir

        def scandir(path: str) -> object:
            if os.path.basename(os.fspath(path)) == "locked":
                raise PermissionError(13, "Permission denied", os.fspath(path))
            return real_scandir(path)

        monkeypatch.setattr(os, "scandir", scandir)
        entries, warnings = resolve(tmp_project)
        assert [e.path for e in entries] == ["a.py"]
        assert warnings == [f"Cannot read directory {tmp_project / 'locked'}: Permission denied"]
