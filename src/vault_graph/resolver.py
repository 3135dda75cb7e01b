"""Title/alias resolution of link targets to note ids.

Every note is indexed under its title, each alias, and its path without
extension, all normalized with :func:`normalize_key`. A lookup returns the
full candidate set; when it holds more than one note the winner is picked
by a fixed tie-break order and the tie is recorded as an ambiguity.

Tie-break order:

1. A candidate whose name matches the raw target with exact case beats
   candidates that only match case-insensitively.
2. Optionally (``prefer_title_over_alias``), a candidate matched by its
   title beats one matched only by an alias.
3. The candidate with the shorter canonical path wins.
4. The lexicographically smallest id wins.
"""
import logging
import unicodedata
from typing import FrozenSet, List, Mapping, Optional, Set

from vault_graph.models.schema import (
    AmbiguityEvent,
    BrokenReference,
    LinkOutcome,
    LinkToken,
    Note,
    Resolution,
    ResolvedEdge,
    TieBreakRule,
)

logger = logging.getLogger(__name__)

TitleIndex = Mapping[str, FrozenSet[str]]


def exact_form(text: str) -> str:
    """Clean a name for exact-case comparison.

    NFC normalization, surrounding whitespace stripped, internal runs of
    whitespace collapsed to one space, and a trailing ``.md`` removed.
    """
    text = unicodedata.normalize("NFC", text or "")
    text = " ".join(text.split())
    if text.lower().endswith(".md") and len(text) > 3:
        text = text[:-3].rstrip()
    return text


def normalize_key(text: str) -> str:
    """Normalize a title, alias, path or raw target into an index key."""
    return exact_form(text).casefold()


def note_keys(note: Note) -> FrozenSet[str]:
    """All index keys a note owns: title, aliases and extension-less path."""
    keys = {normalize_key(name) for name in note.names()}
    keys.add(normalize_key(note.path_key))
    keys.discard("")
    return frozenset(keys)


def _exact_names(note: Note) -> Set[str]:
    return {exact_form(name) for name in note.names()} | {exact_form(note.path_key)}


def _title_matches(note: Note, key: str) -> bool:
    return normalize_key(note.title) == key or normalize_key(note.path_key) == key


def resolve_target(
    raw_target: str,
    title_index: TitleIndex,
    notes: Mapping[str, Note],
    prefer_title_over_alias: bool = False,
) -> Resolution:
    """Resolve a bare target string (anchor already removed).

    Args:
        raw_target: Target as written inside the brackets.
        title_index: Normalized key -> candidate note ids.
        notes: Note id -> note, for the tie-break rules.
        prefer_title_over_alias: Apply the title-over-alias rule.

    Returns:
        A Resolution; ``chosen`` is None when nothing matched.
    """
    key = normalize_key(raw_target)
    candidates = sorted(title_index.get(key, frozenset())) if key else []
    if not candidates:
        return Resolution(raw_target=raw_target, key=key)
    if len(candidates) == 1:
        return Resolution(
            raw_target=raw_target, key=key,
            candidates=tuple(candidates), chosen=candidates[0],
        )

    pool: List[str] = candidates
    wanted = exact_form(raw_target)
    exact = [c for c in pool if wanted in _exact_names(notes[c])]
    if len(exact) == 1:
        return _decided(raw_target, key, candidates, exact[0], TieBreakRule.EXACT_CASE)
    if exact:
        pool = exact

    if prefer_title_over_alias:
        titled = [c for c in pool if _title_matches(notes[c], key)]
        if len(titled) == 1:
            return _decided(raw_target, key, candidates, titled[0], TieBreakRule.TITLE_OVER_ALIAS)
        if titled:
            pool = titled

    shortest = min(len(notes[c].path) for c in pool)
    shorter = [c for c in pool if len(notes[c].path) == shortest]
    if len(shorter) == 1:
        return _decided(raw_target, key, candidates, shorter[0], TieBreakRule.SHORTER_PATH)

    return _decided(raw_target, key, candidates, min(shorter), TieBreakRule.SMALLEST_ID)


def _decided(
    raw_target: str,
    key: str,
    candidates: List[str],
    chosen: str,
    rule: TieBreakRule,
) -> Resolution:
    logger.debug(
        f"Ambiguous target '{raw_target}': {len(candidates)} candidates, "
        f"chose '{chosen}' by {rule.value}"
    )
    return Resolution(
        raw_target=raw_target,
        key=key,
        candidates=tuple(candidates),
        chosen=chosen,
        rule=rule,
    )


def resolve_token(
    token: LinkToken,
    title_index: TitleIndex,
    notes: Mapping[str, Note],
    prefer_title_over_alias: bool = False,
) -> LinkOutcome:
    """Turn one token into exactly one ResolvedEdge or BrokenReference."""
    resolution = resolve_target(token.target, title_index, notes, prefer_title_over_alias)
    if resolution.chosen is None:
        return BrokenReference(
            source_id=token.source_id,
            raw_target=token.target,
            span=token.span,
            token=token,
        )

    ambiguity: Optional[AmbiguityEvent] = None
    if resolution.is_ambiguous:
        ambiguity = AmbiguityEvent(
            source_id=token.source_id,
            raw_target=token.target,
            span=token.span,
            candidates=resolution.candidates,
            chosen=resolution.chosen,
            rule=resolution.rule,
        )
    return ResolvedEdge(
        source_id=token.source_id,
        target_id=resolution.chosen,
        token=token,
        ambiguity=ambiguity,
    )
