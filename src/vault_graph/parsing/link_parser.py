"""Bracket-link extraction from raw note text.

Recognizes ``[[Target]]``, ``[[Target|Alias]]``, ``[[Target#Heading]]``,
``[[Target#^block]]`` and the embed form ``![[Target]]``. Link-like text
inside fenced code blocks and inline code spans is not a link. Malformed
candidates are dropped silently; they never become broken references
because they were never valid link syntax.

Everything here is a pure function of the text: no shared state, safe to
re-run any number of times.
"""
import logging
import re
from typing import Callable, Collection, Iterator, List, Mapping, Optional, Tuple

from vault_graph.exceptions import ErrorCode, ParseError
from vault_graph.models.schema import AnchorKind, LinkToken

logger = logging.getLogger(__name__)

LINK_OPEN = "[["
LINK_CLOSE = "]]"

# Opening fence: up to three spaces of indentation, then 3+ backticks or tildes
_FENCE_RE = re.compile(r"^ {0,3}(`{3,}|~{3,})")

# Attachments are out of scope: links to these files are not note links
ATTACHMENT_EXTENSIONS = frozenset({
    ".png", ".jpg", ".jpeg", ".gif", ".bmp", ".svg", ".webp", ".avif",
    ".pdf", ".mp3", ".wav", ".m4a", ".ogg", ".flac",
    ".mp4", ".webm", ".mov", ".mkv",
})


# ---------------------------------------------------------------------------
# Code regions
# ---------------------------------------------------------------------------


def fenced_code_regions(text: str) -> List[Tuple[int, int]]:
    """Return ``[start, end)`` character ranges covered by fenced code blocks.

    A fence closes only on a line holding the same marker character, at
    least as long as the opening run, and nothing else. An unclosed fence
    runs to the end of the text.
    """
    regions: List[Tuple[int, int]] = []
    pos = 0
    fence_char: Optional[str] = None
    fence_len = 0
    fence_start = 0

    for line in text.splitlines(keepends=True):
        m = _FENCE_RE.match(line)
        if fence_char is None:
            if m:
                marker = m.group(1)
                # A backtick fence's info string may not contain backticks
                if not (marker[0] == "`" and "`" in line[m.end():]):
                    fence_char = marker[0]
                    fence_len = len(marker)
                    fence_start = pos
        elif (
            m
            and m.group(1)[0] == fence_char
            and len(m.group(1)) >= fence_len
            and not line[m.end():].strip()
        ):
            regions.append((fence_start, pos + len(line)))
            fence_char = None
        pos += len(line)

    if fence_char is not None:
        regions.append((fence_start, len(text)))
    return regions


def _inline_code_regions(text: str, start: int, end: int) -> List[Tuple[int, int]]:
    """Return inline code spans within ``text[start:end]``.

    A span opens with a run of N backticks and closes at the next run of
    exactly N backticks. A run with no matching close is literal text.
    """
    regions: List[Tuple[int, int]] = []
    i = start
    while i < end:
        j = text.find("`", i, end)
        if j < 0:
            break
        k = j
        while k < end and text[k] == "`":
            k += 1
        run = k - j

        close_end = None
        search = k
        while search < end:
            c = text.find("`", search, end)
            if c < 0:
                break
            d = c
            while d < end and text[d] == "`":
                d += 1
            if d - c == run:
                close_end = d
                break
            search = d

        if close_end is None:
            i = k
        else:
            regions.append((j, close_end))
            i = close_end
    return regions


def prose_segments(text: str) -> List[Tuple[int, int]]:
    """Return the ``[start, end)`` ranges of text that are not code."""
    segments: List[Tuple[int, int]] = []
    cursor = 0
    for fence_start, fence_end in fenced_code_regions(text) + [(len(text), len(text))]:
        if fence_start > cursor:
            inner_cursor = cursor
            for code_start, code_end in _inline_code_regions(text, cursor, fence_start):
                if code_start > inner_cursor:
                    segments.append((inner_cursor, code_start))
                inner_cursor = code_end
            if fence_start > inner_cursor:
                segments.append((inner_cursor, fence_start))
        cursor = max(cursor, fence_end)
    return segments


# ---------------------------------------------------------------------------
# Single-token parsing
# ---------------------------------------------------------------------------


def split_link_inner(inner: str, offset: int = 0) -> Tuple[str, Optional[str], Optional[str]]:
    """Split the text between the brackets into (target, anchor, alias).

    Content before the first ``|`` is the target-and-anchor, after it the
    alias. Within the target, content before the first ``#`` is the bare
    target and after it the anchor.

    Args:
        inner: Text between ``[[`` and ``]]``.
        offset: Position of the token, for error reporting.

    Raises:
        ParseError: If the candidate is not valid link syntax.
    """
    if "[" in inner or "]" in inner:
        raise ParseError("Unbalanced brackets in link", offset=offset)
    if "\n" in inner or "\r" in inner:
        raise ParseError("Link spans multiple lines", offset=offset)

    if "|" in inner:
        target_part, alias = inner.split("|", 1)
        alias = alias.strip() or None
    else:
        target_part, alias = inner, None

    if "#" in target_part:
        target, anchor = target_part.split("#", 1)
        anchor = anchor.strip() or None
    else:
        target, anchor = target_part, None

    target = target.strip()
    if not target:
        raise ParseError("Empty link target", offset=offset, code=ErrorCode.LINK_EMPTY_TARGET)
    return target, anchor, alias


def is_attachment_target(target: str) -> bool:
    """True when a target names an attachment file rather than a note."""
    lowered = target.lower()
    dot = lowered.rfind(".")
    return dot > 0 and lowered[dot:] in ATTACHMENT_EXTENSIONS


# ---------------------------------------------------------------------------
# Scanning
# ---------------------------------------------------------------------------


def _scan(text: str, source_id: str) -> Iterator[LinkToken]:
    ordinal = 0
    # Byte offsets are computed incrementally; tokens arrive in text order
    byte_cursor_char = 0
    byte_cursor = 0

    for seg_start, seg_end in prose_segments(text):
        i = seg_start
        while i < seg_end:
            open_at = text.find(LINK_OPEN, i, seg_end)
            if open_at < 0:
                break
            close_at = text.find(LINK_CLOSE, open_at + 2, seg_end)
            if close_at < 0:
                # No closing brackets left in this segment
                break

            inner = text[open_at + 2:close_at]
            try:
                target, anchor, alias = split_link_inner(inner, offset=open_at)
            except ParseError as e:
                logger.debug(f"Dropping link candidate in note '{source_id}': {e}")
                # Resume just past the opener so "[[[Note]]]" still finds "[[Note]]"
                i = open_at + 1 if "[" in inner else close_at + 2
                continue

            i = close_at + 2
            if is_attachment_target(target):
                continue

            embed = open_at > seg_start and text[open_at - 1] == "!"
            start = open_at - 1 if embed else open_at
            end = close_at + 2

            byte_cursor += len(text[byte_cursor_char:start].encode("utf-8"))
            byte_cursor_char = start
            byte_start = byte_cursor
            byte_end = byte_start + len(text[start:end].encode("utf-8"))

            anchor_kind = None
            if anchor is not None:
                anchor_kind = AnchorKind.BLOCK if anchor.startswith("^") else AnchorKind.HEADING

            yield LinkToken(
                source_id=source_id,
                raw=text[start:end],
                target=target,
                alias=alias,
                anchor=anchor,
                anchor_kind=anchor_kind,
                embed=embed,
                span=(start, end),
                byte_span=(byte_start, byte_end),
                ordinal=ordinal,
            )
            ordinal += 1


class LinkTokenStream:
    """Lazy, finite, restartable sequence of link tokens.

    Each iteration re-scans the text from the start, so the stream can be
    consumed any number of times without shared state.
    """

    __slots__ = ("_text", "_source_id")

    def __init__(self, text: str, source_id: str = "") -> None:
        self._text = text or ""
        self._source_id = source_id

    def __iter__(self) -> Iterator[LinkToken]:
        return _scan(self._text, self._source_id)

    def __repr__(self) -> str:
        return f"LinkTokenStream(source_id={self._source_id!r}, chars={len(self._text)})"

    def to_tuple(self) -> Tuple[LinkToken, ...]:
        return tuple(self)


def parse_links(text: str, source_id: str = "") -> LinkTokenStream:
    """Extract link tokens from raw note text.

    Args:
        text: Raw note content.
        source_id: ID of the note the text belongs to.

    Returns:
        A lazy, restartable stream of tokens in appearance order.
    """
    return LinkTokenStream(text, source_id)


def rewrite_link_targets(
    text: str,
    replacements: Mapping[str, str],
    key: Optional[Callable[[str], str]] = None,
    spans: Optional[Collection[Tuple[int, int]]] = None,
) -> Tuple[str, int]:
    """Rewrite link targets in place using token spans.

    Alias, anchor and embed prefix are preserved; links inside code are
    never touched.

    Args:
        text: Raw note content.
        replacements: Mapping of target lookup key -> new target text.
        key: Function turning a written target into a lookup key.
            Defaults to the target as written.
        spans: When given, only tokens at these spans are rewritten.

    Returns:
        Tuple of (rewritten text, number of tokens rewritten).
    """
    key = key or (lambda t: t)
    pieces: List[str] = []
    cursor = 0
    count = 0
    for token in parse_links(text):
        if spans is not None and token.span not in spans:
            continue
        new_target = replacements.get(key(token.target))
        if new_target is None:
            continue
        inner = new_target
        if token.anchor is not None:
            inner += f"#{token.anchor}"
        if token.alias is not None:
            inner += f"|{token.alias}"
        prefix = "!" if token.embed else ""
        pieces.append(text[cursor:token.start])
        pieces.append(f"{prefix}[[{inner}]]")
        cursor = token.end
        count += 1
    pieces.append(text[cursor:])
    return "".join(pieces), count

