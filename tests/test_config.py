"""Tests for configuration loading."""
from pathlib import Path

import pytest
from pydantic import ValidationError

from vault_graph.config import GraphConfig


class TestEnvironment:
    """Values come from VAULT_GRAPH_* environment variables."""

    def test_defaults(self, monkeypatch):
        for name in (
            "VAULT_GRAPH_CACHE_PATH",
            "VAULT_GRAPH_QUEUE_MAX_SIZE",
            "VAULT_GRAPH_NOTE_EXTENSIONS",
            "VAULT_GRAPH_PREFER_TITLE_OVER_ALIAS",
        ):
            monkeypatch.delenv(name, raising=False)
        cfg = GraphConfig()
        assert cfg.cache_path is None
        assert cfg.get_cache_url() is None
        assert cfg.queue_max_size == 1024
        assert cfg.note_extensions == (".md",)
        assert cfg.prefer_title_over_alias is False

    def test_overrides(self, monkeypatch, tmp_path):
        monkeypatch.setenv("VAULT_GRAPH_VAULT_DIR", str(tmp_path))
        monkeypatch.setenv("VAULT_GRAPH_QUEUE_MAX_SIZE", "16")
        monkeypatch.setenv("VAULT_GRAPH_BATCH_MAX_SIZE", "4")
        monkeypatch.setenv("VAULT_GRAPH_NOTE_EXTENSIONS", "md, markdown ,.TXT")
        monkeypatch.setenv("VAULT_GRAPH_PREFER_TITLE_OVER_ALIAS", "yes")
        cfg = GraphConfig()
        assert cfg.vault_dir == tmp_path
        assert cfg.queue_max_size == 16
        assert cfg.batch_max_size == 4
        assert cfg.note_extensions == (".md", ".markdown", ".txt")
        assert cfg.prefer_title_over_alias is True


class TestValidation:
    @pytest.mark.parametrize("field,value", [
        ("queue_max_size", 0),
        ("batch_max_size", 0),
        ("worker_poll_interval", 0),
    ])
    def test_rejects_bad_bounds(self, field, value):
        with pytest.raises(ValidationError):
            GraphConfig(**{field: value})


class TestPaths:
    def test_cache_url_relative_to_vault(self, tmp_path):
        cfg = GraphConfig(vault_dir=tmp_path, cache_path=Path(".vault_graph/cache.db"))
        assert cfg.get_cache_url() == f"sqlite:///{tmp_path / '.vault_graph' / 'cache.db'}"
        assert (tmp_path / ".vault_graph").is_dir()

    def test_absolute_path_kept(self, tmp_path):
        cfg = GraphConfig(vault_dir=tmp_path)
        assert cfg.get_absolute_path(tmp_path / "x") == tmp_path / "x"
        assert cfg.get_absolute_path(Path("x")) == tmp_path / "x"
