"""Note metadata extraction: title, aliases and link anchors.

Titles and aliases come from YAML frontmatter; a note without an explicit
title is titled after its file name. Headings and ``^block`` ids are
collected so link anchors can be checked for the consistency report.
"""
import logging
import re
import unicodedata
from dataclasses import dataclass
from typing import FrozenSet, Iterable, List, Optional, Tuple

import frontmatter
import yaml

from vault_graph.models.schema import (
    IndexedNote,
    LinkToken,
    Note,
    canonical_path,
    path_stem,
)
from vault_graph.parsing.link_parser import fenced_code_regions, parse_links

logger = logging.getLogger(__name__)

# Frontmatter must start on the very first line
_FRONTMATTER_RE = re.compile(r"\A---[ \t]*\r?\n.*?^---[ \t]*(?:\r?\n|\Z)", re.DOTALL | re.MULTILINE)
_HEADING_RE = re.compile(r"^ {0,3}(#{1,6})[ \t]+(.*?)[ \t]*#*[ \t]*$")
_BLOCK_ID_RE = re.compile(r"(?:^|\s)\^([A-Za-z0-9][A-Za-z0-9-]*)[ \t]*$")


@dataclass(frozen=True)
class NoteMetadata:
    """Fields read from a note's frontmatter."""

    title: Optional[str] = None
    aliases: Tuple[str, ...] = ()
    note_id: Optional[str] = None


def normalize_anchor(anchor: str) -> str:
    """Normalize a heading or block anchor for comparison.

    For nested heading anchors (``H1#H2``) only the last segment counts.
    """
    anchor = anchor.rsplit("#", 1)[-1]
    anchor = unicodedata.normalize("NFC", anchor)
    return " ".join(anchor.split()).casefold()


def _coerce_names(value) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value if v is not None and not isinstance(v, (list, dict))]
    return []


class NoteParser:
    """Builds indexed notes from raw content."""

    def read_metadata(self, content: str, note_id: str = "") -> NoteMetadata:
        """Read title, aliases and id from frontmatter.

        Invalid YAML is logged and treated as no frontmatter; it never
        stops the note from being indexed.
        """
        if not content.startswith("---"):
            return NoteMetadata()
        try:
            post = frontmatter.loads(content)
        except (yaml.YAMLError, ValueError, TypeError) as e:
            logger.warning(f"Ignoring unreadable frontmatter in note '{note_id}': {e}")
            return NoteMetadata()

        metadata = post.metadata
        if not isinstance(metadata, dict):
            return NoteMetadata()
        title = metadata.get("title")
        if title is not None and not isinstance(title, str):
            title = str(title)
        if title is not None and not title.strip():
            title = None

        raw_aliases = metadata.get("aliases")
        if raw_aliases is None:
            raw_aliases = metadata.get("alias")
        aliases = tuple(a.strip() for a in _coerce_names(raw_aliases) if a.strip())

        fm_id = metadata.get("id")
        fm_id = str(fm_id).strip() if fm_id is not None and str(fm_id).strip() else None

        return NoteMetadata(title=title, aliases=aliases, note_id=fm_id)

    def extract_anchors(self, content: str) -> Tuple[FrozenSet[str], FrozenSet[str]]:
        """Collect normalized headings and block ids outside code and frontmatter.

        Returns:
            Tuple of (headings, block_ids).
        """
        body_start = 0
        m = _FRONTMATTER_RE.match(content)
        if m:
            body_start = m.end()
        fences = fenced_code_regions(content)

        headings = set()
        block_ids = set()
        pos = 0
        fence_idx = 0
        for line in content.splitlines(keepends=True):
            line_start = pos
            pos += len(line)
            if line_start < body_start:
                continue
            while fence_idx < len(fences) and fences[fence_idx][1] <= line_start:
                fence_idx += 1
            if fence_idx < len(fences) and fences[fence_idx][0] <= line_start:
                continue

            stripped = line.rstrip("\r\n")
            hm = _HEADING_RE.match(stripped)
            if hm and hm.group(2):
                headings.add(normalize_anchor(hm.group(2)))
            bm = _BLOCK_ID_RE.search(stripped)
            if bm:
                block_ids.add(bm.group(1).casefold())
        return frozenset(headings), frozenset(block_ids)

    def build_note(
        self,
        note_id: str,
        path: str,
        content: str,
        version: int = 1,
    ) -> Note:
        """Create a Note, deriving title and aliases from its content."""
        path = canonical_path(path)
        meta = self.read_metadata(content, note_id)
        return Note(
            id=note_id,
            path=path,
            content=content,
            title=meta.title or path_stem(path),
            aliases=meta.aliases,
            version=version,
        )

    def index_note(
        self,
        note: Note,
        tokens: Optional[Iterable[LinkToken]] = None,
    ) -> IndexedNote:
        """Parse a note's links and anchors.

        Args:
            note: The note to index.
            tokens: Previously parsed tokens for identical content, reused
                instead of parsing again.
        """
        if tokens is None:
            token_tuple = parse_links(note.content, note.id).to_tuple()
        else:
            token_tuple = tuple(tokens)
        headings, block_ids = self.extract_anchors(note.content)
        return IndexedNote(
            note=note,
            tokens=token_tuple,
            headings=headings,
            block_ids=block_ids,
        )
