"""Tests for flowmap.infrastructure.config."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import pytest

from flowmap.errors import ConfigError
from flowmap.graph.edge_rules import DEFAULT_EDGE_RULES, EdgeRuleTable
from flowmap.infrastructure.config import (
    DEFAULT_EXCLUDE,
    IndexerConfig,
    config_from_dict,
    find_config,
    load_config,
)

if TYPE_CHECKING:
    from pathlib import Path


class TestLoadConfig:
    def test_defaults_without_file(self, tmp_project: Path) -> None:
        config = load_config(tmp_project)
        assert config.include == ("*",)
        assert config.exclude == DEFAULT_EXCLUDE
        assert config.edge_rules == DEFAULT_EDGE_RULES
        assert config.source is None
        assert config.workers >= 1

    def test_root_file(self, tmp_project: Path) -> None:
        (tmp_project / "flowmap.yml").write_text(
            "maxFileSize: 2048\nhardFileSizeLimit: 4096\nexclude: '*.log'\n"
            "categories:\n  '*.x': manifest\n",
            encoding="utf-8",
        )
        config = load_config(tmp_project)
        assert config.max_file_size == 2048
        assert config.hard_file_size_limit == 4096
        assert config.exclude == ("*.log",)
        assert config.categories == {"*.x": "manifest"}
        assert config.source == "flowmap.yml"

    def test_state_dir_file_wins(self, tmp_project: Path) -> None:
        (tmp_project / ".flowmap").mkdir()
        (tmp_project / ".flowmap" / "config.yml").write_text("workers: 3\n", encoding="utf-8")
        (tmp_project / "flowmap.yml").write_text("workers: 5\n", encoding="utf-8")
        assert find_config(tmp_project) == tmp_project / ".flowmap" / "config.yml"
        assert load_config(tmp_project).workers == 3

    def test_empty_file(self, tmp_project: Path) -> None:
        (tmp_project / "flowmap.yml").write_text("", encoding="utf-8")
        config = load_config(tmp_project)
        assert config.include == ("*",)
        assert config.source is not None

    def test_invalid_yaml(self, tmp_project: Path) -> None:
        (tmp_project / "flowmap.yml").write_text("include: [oops\n", encoding="utf-8")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_config(tmp_project)

    def test_non_mapping(self, tmp_project: Path) -> None:
        (tmp_project / "flowmap.yml").write_text("- a\n", encoding="utf-8")
        with pytest.raises(ConfigError, match="mapping"):
            load_config(tmp_project)


class TestConfigFromDict:
    @pytest.mark.parametrize(
        "data",
        [
            {"workers": 0},
            {"max_file_size": "big"},
            {"skip_generated": "yes"},
            {"include": [1, 2]},
            {"categories": ["manifest"]},
            {"scope_tag": "a:b"},
            {"edge_rules": {"kind": "Table"}},
            {"edge_rules": [{"kind": "Widget", "usage": "read", "edge": "flows-to"}]},
            {"max_file_size": 4096, "hard_file_size_limit": 1024},
        ],
    )
    def test_invalid_values(self, data: dict[str, object]) -> None:
        with pytest.raises(ConfigError):
            config_from_dict(data)

    def test_edge_rule_override(self) -> None:
        config = config_from_dict(
            {"edgeRules": [{"kind": "Table", "usage": "query", "edge": "derives-from"}]}
        )
        rule = EdgeRuleTable(config.edge_rules).lookup("Table", "query")
        assert rule is not None
        assert rule.edge_type == "derives-from"
        assert EdgeRuleTable(config.edge_rules).lookup("Transform", "call") is not None

    def test_binary_extensions_normalized(self) -> None:
        config = config_from_dict({"binary_extensions": ["PNG", ".Bin"]})
        assert config.binary_extensions == frozenset({".png", ".bin"})

    def test_null_values_keep_defaults(self) -> None:
        assert config_from_dict({"include": None}).include == IndexerConfig().include

    def test_unknown_key_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING, logger="flowmap"):
            config_from_dict({"colour": "blue"})
        assert "colour" in caplog.text
