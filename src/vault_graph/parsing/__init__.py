"""Link and note metadata parsing."""
from vault_graph.parsing.link_parser import (
    LinkTokenStream,
    parse_links,
    rewrite_link_targets,
)
from vault_graph.parsing.note_parser import NoteMetadata, NoteParser, normalize_anchor

__all__ = [
    "LinkTokenStream",
    "NoteMetadata",
    "NoteParser",
    "normalize_anchor",
    "parse_links",
    "rewrite_link_targets",
]
