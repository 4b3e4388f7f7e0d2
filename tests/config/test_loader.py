"""Tests for config loading and precedence."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from codegraph.config import loader
from codegraph.config.loader import get_db_path, get_index_dir, load_config
from codegraph.config.models import CodeGraphConfig, IndexConfig, LogOutputConfig
from codegraph.core.errors import ConfigError


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch: pytest.MonkeyPatch, temp_dir: Path) -> None:
    """No global config file, no CODEGRAPH__ env vars."""
    monkeypatch.setattr(loader, "GLOBAL_CONFIG_PATH", temp_dir / "global" / "config.yaml")
    for key in list(os.environ):
        if key.upper().startswith("CODEGRAPH__"):
            monkeypatch.delenv(key)


def _repo_config(root: Path, text: str) -> None:
    config_dir = root / ".codegraph"
    config_dir.mkdir(parents=True, exist_ok=True)
    (config_dir / "config.yaml").write_text(text)


class TestDefaults:
    """Built-in defaults."""

    def test_defaults(self, temp_dir: Path) -> None:
        """No sources gives the model defaults."""
        config = load_config(temp_dir)
        assert config.watcher.debounce_sec == 0.3
        assert config.watcher.max_debounce_wait_sec == 2.0
        assert config.indexer.max_workers >= 1
        assert config.index.respect_gitignore is True
        assert config.limits.search_default == 20


class TestPrecedence:
    """defaults < global yaml < repo yaml < env < kwargs."""

    def test_repo_overrides_global(self, temp_dir: Path) -> None:
        """Repo YAML wins over global YAML; other global keys survive."""
        global_path = loader.GLOBAL_CONFIG_PATH
        global_path.parent.mkdir(parents=True)
        global_path.write_text("watcher:\n  debounce_sec: 1.0\n  poll_interval_sec: 4.0\n")
        _repo_config(temp_dir, "watcher:\n  debounce_sec: 0.7\n")

        config = load_config(temp_dir)
        assert config.watcher.debounce_sec == 0.7
        assert config.watcher.poll_interval_sec == 4.0

    def test_env_overrides_yaml(self, temp_dir: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Env vars win over repo YAML."""
        _repo_config(temp_dir, "indexer:\n  max_workers: 2\n")
        monkeypatch.setenv("CODEGRAPH__INDEXER__MAX_WORKERS", "6")
        assert load_config(temp_dir).indexer.max_workers == 6

    def test_kwargs_override_env(self, temp_dir: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Direct kwargs win over everything."""
        monkeypatch.setenv("CODEGRAPH__INDEXER__MAX_WORKERS", "6")
        config = load_config(temp_dir, indexer={"max_workers": 3})
        assert config.indexer.max_workers == 3


class TestErrors:
    """Invalid configuration."""

    def test_yaml_syntax_error(self, temp_dir: Path) -> None:
        """Malformed YAML raises ConfigError.parse_error."""
        _repo_config(temp_dir, "watcher: [unclosed\n")
        with pytest.raises(ConfigError) as exc_info:
            load_config(temp_dir)
        assert exc_info.value.error_name == "CONFIG_PARSE_ERROR"

    def test_non_mapping_yaml(self, temp_dir: Path) -> None:
        """A YAML list at the top level is rejected."""
        _repo_config(temp_dir, "- a\n- b\n")
        with pytest.raises(ConfigError):
            load_config(temp_dir)

    def test_invalid_value(self, temp_dir: Path) -> None:
        """Validation failures raise ConfigError.invalid_value naming the field."""
        _repo_config(temp_dir, "indexer:\n  max_workers: 0\n")
        with pytest.raises(ConfigError) as exc_info:
            load_config(temp_dir)
        assert exc_info.value.error_name == "CONFIG_INVALID_VALUE"
        assert "max_workers" in exc_info.value.details["field"]

    def test_relative_log_destination_rejected(self) -> None:
        """File log destinations must be absolute."""
        with pytest.raises(ValueError):
            LogOutputConfig(destination="logs/out.log")


class TestPaths:
    """Index directory resolution."""

    def test_default_db_path(self, temp_dir: Path) -> None:
        """Database lives in <root>/.codegraph/graph.db by default."""
        config = CodeGraphConfig()
        assert get_index_dir(temp_dir, config) == temp_dir / ".codegraph"
        assert get_db_path(temp_dir, config) == temp_dir / ".codegraph" / "graph.db"

    def test_index_path_override(self, temp_dir: Path) -> None:
        """index.index_path relocates the database."""
        config = CodeGraphConfig(index=IndexConfig(index_path=str(temp_dir / "elsewhere")))
        assert get_db_path(temp_dir, config) == temp_dir / "elsewhere" / "graph.db"
