"""Data models for the vault graph engine."""

import hashlib
import posixpath
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional, Tuple, Union

from pydantic import BaseModel, Field, field_validator, model_validator


def content_hash(content: str) -> str:
    """Compute the SHA-256 hex digest used for change detection.

    Args:
        content: Raw note text.

    Returns:
        Hex digest string (64 characters).
    """
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def canonical_path(path: str) -> str:
    """Normalize a vault-relative path to its canonical POSIX form.

    Backslashes become slashes, ``.``/``..`` segments are collapsed and
    leading ``./`` or ``/`` is removed.

    Raises:
        ValueError: If the path is empty or escapes the vault root.
    """
    if path is None or not str(path).strip():
        raise ValueError("Path cannot be empty")
    cleaned = str(path).strip().replace("\\", "/")
    cleaned = posixpath.normpath(cleaned).lstrip("/")
    if cleaned in ("", ".") or cleaned == ".." or cleaned.startswith("../"):
        raise ValueError(f"Path '{path}' is outside the vault")
    return cleaned


def path_stem(path: str) -> str:
    """Return the file name of a canonical path without its extension."""
    name = posixpath.basename(path)
    return posixpath.splitext(name)[0] or name


def path_without_extension(path: str) -> str:
    """Return a canonical path with its file extension removed."""
    root = posixpath.splitext(path)[0]
    return root if posixpath.basename(root) else path


class MutationKind(str, Enum):
    """Kinds of note-level changes delivered by the file store."""

    ADDED = "added"
    UPDATED = "updated"
    RENAMED = "renamed"
    DELETED = "deleted"


class Direction(str, Enum):
    """Edge direction for neighbor queries."""

    IN = "in"
    OUT = "out"
    BOTH = "both"


class AnchorKind(str, Enum):
    """What a link anchor points at inside the target note."""

    HEADING = "heading"  # [[Note#Heading]]
    BLOCK = "block"  # [[Note#^block-id]]


class TieBreakRule(str, Enum):
    """The rule that picked the winner among several candidates."""

    EXACT_CASE = "exact_case"
    TITLE_OVER_ALIAS = "title_over_alias"
    SHORTER_PATH = "shorter_path"
    SMALLEST_ID = "smallest_id"


class Note(BaseModel):
    """An indexed version of a note.

    The file store owns notes; the engine keeps an immutable copy per
    indexed version.
    """

    id: str = Field(..., description="Stable identifier, independent of path")
    path: str = Field(..., description="Canonical vault-relative POSIX path")
    content: str = Field(default="", description="Raw note text")
    title: str = Field(..., description="Explicit or path-derived title")
    aliases: Tuple[str, ...] = Field(
        default_factory=tuple, description="Declared aliases"
    )
    version: int = Field(default=1, ge=1, description="Per-note version counter")
    content_hash: str = Field(default="", description="SHA-256 of content")

    model_config = {"frozen": True, "extra": "forbid"}

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        """Validate that the ID is not blank."""
        if not v or not v.strip():
            raise ValueError("Note ID cannot be empty")
        return v

    @field_validator("path")
    @classmethod
    def validate_path(cls, v: str) -> str:
        return canonical_path(v)

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        """Validate that the title is not empty."""
        if not v.strip():
            raise ValueError("Title cannot be empty")
        return v.strip()

    @field_validator("aliases")
    @classmethod
    def validate_aliases(cls, v: Tuple[str, ...]) -> Tuple[str, ...]:
        """Strip aliases, drop blanks and duplicates, keep declaration order."""
        seen = []
        for alias in v:
            alias = str(alias).strip()
            if alias and alias not in seen:
                seen.append(alias)
        return tuple(seen)

    @model_validator(mode="before")
    @classmethod
    def _fill_hash(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("content_hash"):
            data = {**data, "content_hash": content_hash(data.get("content") or "")}
        return data

    @property
    def path_key(self) -> str:
        """Path without extension, usable as a link target (``folder/Note``)."""
        return path_without_extension(self.path)

    def names(self) -> Tuple[str, ...]:
        """Title followed by aliases."""
        return (self.title,) + self.aliases


class LinkToken(BaseModel):
    """A parsed bracket-link occurrence within a note's raw text."""

    source_id: str = Field(..., description="ID of the note containing the link")
    raw: str = Field(..., description="The full token as written, brackets included")
    target: str = Field(..., description="Bare target as written, without anchor")
    alias: Optional[str] = Field(default=None, description="Display text after '|'")
    anchor: Optional[str] = Field(default=None, description="Heading or block id after '#'")
    anchor_kind: Optional[AnchorKind] = Field(default=None)
    embed: bool = Field(default=False, description="Written as ![[...]]")
    span: Tuple[int, int] = Field(..., description="Character offsets [start, end)")
    byte_span: Tuple[int, int] = Field(..., description="UTF-8 byte offsets [start, end)")
    ordinal: int = Field(..., ge=0, description="Appearance order within the note")

    model_config = {"frozen": True, "extra": "forbid"}

    @property
    def start(self) -> int:
        return self.span[0]

    @property
    def end(self) -> int:
        return self.span[1]


class AmbiguityEvent(BaseModel):
    """A link target that matched more than one note."""

    source_id: str
    raw_target: str
    span: Tuple[int, int]
    candidates: Tuple[str, ...] = Field(..., description="Candidate ids, sorted")
    chosen: str
    rule: TieBreakRule

    model_config = {"frozen": True, "extra": "forbid"}


class ResolvedEdge(BaseModel):
    """A directed edge whose identity is its originating token."""

    source_id: str
    target_id: str
    token: LinkToken
    ambiguity: Optional[AmbiguityEvent] = None

    model_config = {"frozen": True, "extra": "forbid"}

    @property
    def alias(self) -> Optional[str]:
        return self.token.alias

    @property
    def anchor(self) -> Optional[str]:
        return self.token.anchor

    @property
    def span(self) -> Tuple[int, int]:
        return self.token.span

    @property
    def is_self_link(self) -> bool:
        return self.source_id == self.target_id


class BrokenReference(BaseModel):
    """A token whose target matched no note."""

    source_id: str
    raw_target: str
    span: Tuple[int, int]
    token: LinkToken

    model_config = {"frozen": True, "extra": "forbid"}


# Every token resolves to exactly one of these
LinkOutcome = Union[ResolvedEdge, BrokenReference]


class Resolution(BaseModel):
    """Result of resolving one raw target string against a title index."""

    raw_target: str
    key: str = Field(..., description="Normalized lookup key")
    candidates: Tuple[str, ...] = Field(default_factory=tuple)
    chosen: Optional[str] = None
    rule: Optional[TieBreakRule] = None

    model_config = {"frozen": True, "extra": "forbid"}

    @property
    def is_broken(self) -> bool:
        return self.chosen is None

    @property
    def is_ambiguous(self) -> bool:
        return len(self.candidates) > 1


class MutationEvent(BaseModel):
    """A note-level change delivered by the external file store."""

    kind: MutationKind
    note_id: str
    path: str
    content: Optional[str] = None
    previous_path: Optional[str] = None

    model_config = {"frozen": True, "extra": "forbid"}

    @field_validator("note_id")
    @classmethod
    def validate_note_id(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Note ID cannot be empty")
        return v

    @field_validator("path", "previous_path")
    @classmethod
    def validate_paths(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return canonical_path(v)

    @model_validator(mode="after")
    def _check_content(self) -> "MutationEvent":
        if self.kind in (MutationKind.ADDED, MutationKind.UPDATED) and self.content is None:
            raise ValueError(f"{self.kind.value} events require content")
        return self

    @classmethod
    def added(cls, note_id: str, path: str, content: str) -> "MutationEvent":
        return cls(kind=MutationKind.ADDED, note_id=note_id, path=path, content=content)

    @classmethod
    def updated(cls, note_id: str, path: str, content: str) -> "MutationEvent":
        return cls(kind=MutationKind.UPDATED, note_id=note_id, path=path, content=content)

    @classmethod
    def renamed(
        cls,
        note_id: str,
        path: str,
        previous_path: Optional[str] = None,
        content: Optional[str] = None,
    ) -> "MutationEvent":
        return cls(
            kind=MutationKind.RENAMED,
            note_id=note_id,
            path=path,
            previous_path=previous_path,
            content=content,
        )

    @classmethod
    def deleted(cls, note_id: str, path: str) -> "MutationEvent":
        return cls(kind=MutationKind.DELETED, note_id=note_id, path=path)


class MutationFailure(BaseModel):
    """An event that could not be applied; the note kept its prior state."""

    note_id: str
    # None when the note failed while re-resolving links for another change
    kind: Optional[MutationKind] = None
    error_code: int
    message: str

    model_config = {"frozen": True, "extra": "forbid"}


class GraphDiff(BaseModel):
    """What changed between two consecutive snapshots.

    Pushed to subscribers after each applied batch so a UI can re-render
    only the affected note views.
    """

    version: int
    changed_note_ids: Tuple[str, ...] = Field(default_factory=tuple)
    added_edges: Tuple[ResolvedEdge, ...] = Field(default_factory=tuple)
    removed_edges: Tuple[ResolvedEdge, ...] = Field(default_factory=tuple)
    new_broken_references: Tuple[BrokenReference, ...] = Field(default_factory=tuple)
    resolved_references: Tuple[BrokenReference, ...] = Field(
        default_factory=tuple,
        description="References that were broken before this batch and now resolve",
    )
    new_ambiguities: Tuple[AmbiguityEvent, ...] = Field(default_factory=tuple)
    failures: Tuple[MutationFailure, ...] = Field(default_factory=tuple)

    model_config = {"frozen": True, "extra": "forbid"}

    @property
    def is_empty(self) -> bool:
        return not (self.changed_note_ids or self.failures)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-compatible dictionary."""
        return self.model_dump(mode="json")


@dataclass(frozen=True)
class IndexedNote:
    """A note together with everything parsed from its content.

    Attributes:
        note: The indexed note version.
        tokens: Link tokens in appearance order.
        headings: Normalized heading texts, for anchor checks.
        block_ids: Block identifiers declared with ``^id``.
    """

    note: Note
    tokens: Tuple[LinkToken, ...] = ()
    headings: FrozenSet[str] = frozenset()
    block_ids: FrozenSet[str] = frozenset()

    @property
    def id(self) -> str:
        return self.note.id
