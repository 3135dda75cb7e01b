"""Common test fixtures for the vault graph engine."""

import tempfile
from pathlib import Path
from typing import Callable, Dict

import pytest

from tests.factories import NoteSource, added
from vault_graph.config import GraphConfig, config
from vault_graph.graph.maintainer import IncrementalMaintainer
from vault_graph.graph.snapshot import GraphSnapshot
from vault_graph.models.db_models import init_db
from vault_graph.services.graph_service import GraphService
from vault_graph.storage.index_cache import IndexCache


@pytest.fixture
def temp_vault():
    """Create a temporary vault directory."""
    with tempfile.TemporaryDirectory() as vault_dir:
        yield Path(vault_dir)


@pytest.fixture
def write_note(temp_vault) -> Callable[[str, str], Path]:
    """Write a note file into the temporary vault."""
    def _write(rel_path: str, content: str) -> Path:
        path = temp_vault / rel_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        return path
    return _write


@pytest.fixture
def test_config(temp_vault, monkeypatch):
    """Configure with test paths (auto-restored even on crash)."""
    monkeypatch.setattr(config, "vault_dir", temp_vault)
    monkeypatch.setattr(config, "cache_path", None)
    yield config


@pytest.fixture
def graph_config(temp_vault):
    """An isolated config with small queue bounds."""
    return GraphConfig(
        vault_dir=temp_vault,
        cache_path=None,
        queue_max_size=8,
        batch_max_size=4,
        worker_poll_interval=0.05,
    )


@pytest.fixture
def memory_engine():
    """In-memory SQLite engine with the cache tables created."""
    engine = init_db("sqlite://")
    yield engine
    engine.dispose()


@pytest.fixture
def index_cache(memory_engine):
    return IndexCache(memory_engine)


@pytest.fixture
def maintainer():
    return IncrementalMaintainer()


@pytest.fixture
def build_graph(maintainer) -> Callable[[Dict[str, NoteSource]], GraphSnapshot]:
    """Build a snapshot from ``{note_id: source}`` in one batch."""
    def _build(notes: Dict[str, NoteSource]) -> GraphSnapshot:
        snapshot, diff = maintainer.rebuild(added(i, s) for i, s in notes.items())
        assert not diff.failures
        return snapshot
    return _build


@pytest.fixture
def graph_service(graph_config):
    """A GraphService with a small queue; the writer is stopped afterwards."""
    service = GraphService(graph_config)
    yield service
    service.close()
