"""Shared test fixtures for flowmap."""

from __future__ import annotations

import os
from datetime import datetime, timezone
from typing import TYPE_CHECKING

import pytest

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

# Base mtime for files written by tests: 2024-01-01T00:00:00Z.
BASE_MTIME_NS = 1_704_067_200 * 1_000_000_000


@pytest.fixture()
def tmp_project(tmp_path: Path) -> Path:
    """Create an empty project root."""
    root = tmp_path / "proj"
    root.mkdir()
    return root


@pytest.fixture()
def write() -> Callable[..., Path]:
    """Write a project file with an explicit mtime.

    ``write(root, "a/b.flow.yml", text, tick=0)`` sets the mtime to
    ``BASE_MTIME_NS + tick`` seconds, so tests control change detection
    without sleeping.
    """

    def _write(root: Path, rel: str, text: str, *, tick: int = 0) -> Path:
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        mtime_ns = BASE_MTIME_NS + tick * 1_000_000_000
        os.utime(path, ns=(mtime_ns, mtime_ns))
        return path

    return _write


class StepClock:
    """Deterministic clock: each call returns the next hour."""

    def __init__(self) -> None:
        self.calls = 0

    def __call__(self) -> datetime:
        self.calls += 1
        return datetime(2025, 1, 1, self.calls % 24, tzinfo=timezone.utc)


@pytest.fixture()
def clock() -> StepClock:
    return StepClock()
