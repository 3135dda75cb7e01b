"""Reads a vault directory into mutation events for a startup rebuild."""
import logging
import os
from pathlib import Path
from typing import Iterator, Optional, Sequence, Set, Tuple

from vault_graph.config import config
from vault_graph.exceptions import ErrorCode, StorageError
from vault_graph.models.schema import MutationEvent, canonical_path
from vault_graph.parsing.note_parser import NoteParser

logger = logging.getLogger(__name__)

# Tool and version-control folders never hold notes
IGNORED_DIRS = frozenset({".git", ".obsidian", ".trash", ".vault_graph", "node_modules"})


class VaultReader:
    """Lazily walks a vault and yields one Added event per note file.

    A note's id is its vault-relative path unless its frontmatter declares
    an ``id``. When two files declare the same id, the later one in path
    order falls back to its path.
    """

    def __init__(
        self,
        vault_dir: Optional[Path] = None,
        extensions: Optional[Sequence[str]] = None,
        parser: Optional[NoteParser] = None,
    ):
        self.vault_dir = Path(vault_dir or config.vault_dir).expanduser()
        self.extensions = tuple(e.lower() for e in (extensions or config.note_extensions))
        self.parser = parser or NoteParser()

    def _check_root(self) -> None:
        if not self.vault_dir.is_dir():
            raise StorageError(
                f"Vault directory does not exist: {self.vault_dir}",
                operation="scan",
                path=str(self.vault_dir),
                code=ErrorCode.STORAGE_READ_FAILED,
            )

    def iter_files(self) -> Iterator[Path]:
        """Yield note files folder by folder in sorted order, skipping hidden folders."""
        self._check_root()
        for root, dirs, files in os.walk(self.vault_dir):
            dirs[:] = sorted(
                d for d in dirs if d not in IGNORED_DIRS and not d.startswith(".")
            )
            for name in sorted(files):
                if name.startswith("."):
                    continue
                if os.path.splitext(name)[1].lower() in self.extensions:
                    yield Path(root) / name

    def relative_path(self, file_path: Path) -> str:
        return canonical_path(file_path.relative_to(self.vault_dir).as_posix())

    def read_file(self, file_path: Path) -> Optional[Tuple[str, str]]:
        """Read one note file.

        Returns:
            Tuple of (relative path, content), or None if unreadable.
        """
        try:
            content = file_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Skipping unreadable note file {file_path.name}: {e}")
            return None
        return self.relative_path(file_path), content

    def note_id_for(self, rel_path: str, content: str) -> str:
        meta = self.parser.read_metadata(content, rel_path)
        return meta.note_id or rel_path

    def iter_events(self) -> Iterator[MutationEvent]:
        """Yield Added events for every readable note file."""
        claimed: Set[str] = set()
        count = 0
        for file_path in self.iter_files():
            read = self.read_file(file_path)
            if read is None:
                continue
            rel_path, content = read
            note_id = self.note_id_for(rel_path, content)
            if note_id in claimed:
                logger.warning(
                    f"Note id '{note_id}' declared by more than one file; "
                    f"using path '{rel_path}' as id instead"
                )
                note_id = rel_path
            claimed.add(note_id)
            count += 1
            yield MutationEvent.added(note_id, rel_path, content)
        logger.info(f"Scanned {count} notes in {self.vault_dir}")
