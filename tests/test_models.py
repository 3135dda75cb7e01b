# tests/test_models.py
"""Tests for the data models and the exception hierarchy."""
import pytest
from pydantic import ValidationError

from vault_graph.exceptions import (
    ErrorCode,
    MutationApplicationError,
    NoteNotFoundError,
    StorageError,
)
from vault_graph.models.schema import (
    GraphDiff,
    MutationEvent,
    MutationKind,
    Note,
    canonical_path,
    content_hash,
    path_stem,
    path_without_extension,
)


class TestPaths:
    """Tests for path helpers."""

    @pytest.mark.parametrize("raw,expected", [
        ("notes/a.md", "notes/a.md"),
        ("./notes//a.md", "notes/a.md"),
        ("notes\\sub\\a.md", "notes/sub/a.md"),
        ("/abs/a.md", "abs/a.md"),
        ("notes/../b.md", "b.md"),
    ])
    def test_canonical_path(self, raw, expected):
        assert canonical_path(raw) == expected

    @pytest.mark.parametrize("raw", ["", "   ", "..", "../outside.md", "."])
    def test_canonical_path_rejects(self, raw):
        with pytest.raises(ValueError):
            canonical_path(raw)

    def test_stem_and_key(self):
        assert path_stem("dir/My Note.md") == "My Note"
        assert path_without_extension("dir/My Note.md") == "dir/My Note"
        assert path_without_extension("dir/.hidden") == "dir/.hidden"


class TestNoteModel:
    """Tests for the Note model."""

    def test_note_creation(self):
        note = Note(id="n1", path="dir/Note.md", content="text", title=" Note ")
        assert note.title == "Note"
        assert note.version == 1
        assert note.content_hash == content_hash("text")
        assert note.path_key == "dir/Note"
        assert note.names() == ("Note",)

    def test_note_validation(self):
        with pytest.raises(ValidationError):
            Note(id="", path="a.md", title="A")
        with pytest.raises(ValidationError):
            Note(id="a", path="a.md", title="   ")
        with pytest.raises(ValidationError):
            Note(id="a", path="../a.md", title="A")
        with pytest.raises(ValidationError):
            Note(id="a", path="a.md", title="A", version=0)

    def test_aliases_cleaned(self):
        note = Note(id="a", path="a.md", title="A", aliases=(" x ", "", "x", "y"))
        assert note.aliases == ("x", "y")
        assert note.names() == ("A", "x", "y")

    def test_note_is_immutable(self):
        note = Note(id="a", path="a.md", title="A")
        with pytest.raises(ValidationError):
            note.title = "B"


class TestMutationEvent:
    """Tests for MutationEvent."""

    def test_factories(self):
        assert MutationEvent.added("a", "a.md", "x").kind == MutationKind.ADDED
        assert MutationEvent.updated("a", "a.md", "x").kind == MutationKind.UPDATED
        renamed = MutationEvent.renamed("a", "b.md", previous_path="./a.md")
        assert renamed.previous_path == "a.md"
        assert renamed.content is None
        assert MutationEvent.deleted("a", "a.md").content is None

    def test_content_required_for_added_and_updated(self):
        with pytest.raises(ValidationError):
            MutationEvent(kind=MutationKind.ADDED, note_id="a", path="a.md")
        with pytest.raises(ValidationError):
            MutationEvent(kind=MutationKind.UPDATED, note_id="a", path="a.md")

    def test_blank_note_id_rejected(self):
        with pytest.raises(ValidationError):
            MutationEvent.added(" ", "a.md", "x")


class TestGraphDiff:
    def test_empty(self):
        assert GraphDiff(version=3).is_empty

    def test_to_dict(self):
        data = GraphDiff(version=2, changed_note_ids=("a",)).to_dict()
        assert data["version"] == 2
        assert data["changed_note_ids"] == ["a"]
        assert data["failures"] == []


class TestExceptions:
    """Tests for the exception hierarchy."""

    def test_not_found(self):
        error = NoteNotFoundError("abc")
        assert error.code == ErrorCode.NOTE_NOT_FOUND
        assert str(error) == "[NOTE_NOT_FOUND] Note with ID 'abc' not found (note_id=abc)"
        assert error.to_dict() == {
            "error": "NoteNotFoundError",
            "code": 1001,
            "code_name": "NOTE_NOT_FOUND",
            "message": "Note with ID 'abc' not found",
            "details": {"note_id": "abc"},
        }

    def test_mutation_error_details(self):
        error = MutationApplicationError(
            "failed", note_id="a", kind="updated", original_error=RuntimeError("boom")
        )
        assert error.details == {"note_id": "a", "kind": "updated", "original_error": "boom"}

    def test_storage_error_hides_full_path(self):
        error = StorageError("read failed", path="/home/user/vault/cache.db")
        assert error.details["path_hint"] == "cache.db"
