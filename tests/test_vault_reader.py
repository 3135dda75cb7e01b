"""Tests for scanning a vault directory."""
import pytest

from vault_graph.exceptions import StorageError
from vault_graph.models.schema import MutationKind
from vault_graph.storage.vault_reader import VaultReader


class TestVaultReader:
    """Tests for VaultReader."""

    def test_events_in_path_order(self, temp_vault, write_note):
        write_note("b.md", "b")
        write_note("a/z.md", "z")
        write_note("a/y.MD", "y")
        events = list(VaultReader(temp_vault, [".md"]).iter_events())
        # Files of a folder come before its subfolders
        assert [e.note_id for e in events] == ["b.md", "a/y.MD", "a/z.md"]
        assert all(e.kind == MutationKind.ADDED for e in events)

    def test_skips_hidden_and_tool_folders(self, temp_vault, write_note):
        write_note("note.md", "n")
        write_note(".obsidian/workspace.md", "x")
        write_note(".hidden/secret.md", "x")
        write_note("node_modules/pkg/readme.md", "x")
        write_note(".dotfile.md", "x")
        write_note("image.png", "x")
        reader = VaultReader(temp_vault, [".md"])
        assert [e.path for e in reader.iter_events()] == ["note.md"]

    def test_frontmatter_id(self, temp_vault, write_note):
        write_note("one.md", "---\nid: shared\n---\n")
        write_note("two.md", "---\nid: shared\n---\n")
        events = list(VaultReader(temp_vault, [".md"]).iter_events())
        assert [(e.note_id, e.path) for e in events] == [
            ("shared", "one.md"),
            ("two.md", "two.md"),
        ]

    def test_unreadable_file_skipped(self, temp_vault, write_note):
        write_note("good.md", "ok")
        (temp_vault / "bad.md").write_bytes(b"\xff\xfe\xfa")
        events = list(VaultReader(temp_vault, [".md"]).iter_events())
        assert [e.note_id for e in events] == ["good.md"]

    def test_missing_vault(self, temp_vault):
        with pytest.raises(StorageError):
            list(VaultReader(temp_vault / "nope").iter_events())

    def test_defaults_from_config(self, test_config, write_note):
        write_note("a.md", "a")
        reader = VaultReader()
        assert reader.vault_dir == test_config.vault_dir
        assert [e.note_id for e in reader.iter_events()] == ["a.md"]
