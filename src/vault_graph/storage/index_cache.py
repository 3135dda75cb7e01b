"""Persisted index cache.

Records, per note, the content hash and the parsed link tokens of the
last indexed version. At startup the hashes tell which notes changed
without parsing anything, and unchanged notes reuse their stored tokens.
The cache is only an accelerator: any unreadable entry is treated as a
miss and the note is parsed again.
"""
import datetime
import json
import logging
from typing import Dict, Iterable, List, Mapping, Optional, Set, Tuple

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError

from vault_graph.exceptions import ErrorCode, StorageError
from vault_graph.graph.snapshot import GraphSnapshot
from vault_graph.models.db_models import DBCachedNote, get_session_factory, init_db
from vault_graph.models.schema import IndexedNote, LinkToken

logger = logging.getLogger(__name__)


def _dump_tokens(tokens: Iterable[LinkToken]) -> str:
    return json.dumps([t.model_dump(mode="json") for t in tokens], ensure_ascii=False)


def _load_tokens(raw: str) -> Tuple[LinkToken, ...]:
    return tuple(LinkToken.model_validate(item) for item in json.loads(raw))


class IndexCache:
    """SQLite-backed cache of per-note hashes and tokens."""

    def __init__(self, engine=None):
        """Initialize the cache.

        Args:
            engine: SQLAlchemy engine. If None, uses the configured cache path.
        """
        self.engine = engine or init_db()
        self.session_factory = get_session_factory(self.engine)
        logger.info("IndexCache initialized")

    def lookup(self, note_id: str, content_hash: str) -> Optional[Tuple[LinkToken, ...]]:
        """Return stored tokens if the cached hash matches, else None."""
        try:
            with self.session_factory() as session:
                row = session.get(DBCachedNote, note_id)
                if row is None or row.content_hash != content_hash:
                    return None
                raw = row.tokens_json
        except SQLAlchemyError as e:
            logger.warning(f"Index cache lookup failed for note '{note_id}': {e}")
            return None

        try:
            tokens = _load_tokens(raw)
        except (ValueError, TypeError, PydanticValidationError) as e:
            logger.warning(
                f"[{ErrorCode.CACHE_CORRUPTED.name}] Discarding cached tokens "
                f"for note '{note_id}': {e}"
            )
            return None
        if any(t.source_id != note_id for t in tokens):
            return None
        return tokens

    def get_hashes(self) -> Dict[str, str]:
        """Map every cached note id to its content hash."""
        try:
            with self.session_factory() as session:
                rows = session.execute(select(DBCachedNote.note_id, DBCachedNote.content_hash))
                return {note_id: digest for note_id, digest in rows}
        except SQLAlchemyError as e:
            raise StorageError(
                "Failed to read index cache",
                operation="get_hashes",
                code=ErrorCode.STORAGE_READ_FAILED,
                original_error=e,
            )

    def stale_note_ids(self, current_hashes: Mapping[str, str]) -> Set[str]:
        """Find notes whose cached state no longer matches the vault.

        Args:
            current_hashes: Note id -> content hash of the files on disk.

        Returns:
            Ids that are new, changed, or cached but no longer present.
        """
        cached = self.get_hashes()
        stale = {
            note_id for note_id, digest in current_hashes.items()
            if cached.get(note_id) != digest
        }
        stale.update(set(cached) - set(current_hashes))
        return stale

    def store(self, notes: Iterable[IndexedNote]) -> int:
        """Insert or replace cache entries.

        Returns:
            Number of entries written.
        """
        count = 0
        now = datetime.datetime.now(datetime.timezone.utc)
        try:
            with self.session_factory() as session:
                for indexed in notes:
                    note = indexed.note
                    row = session.get(DBCachedNote, note.id)
                    if row is not None and row.content_hash == note.content_hash and row.path == note.path:
                        continue
                    session.merge(DBCachedNote(
                        note_id=note.id,
                        path=note.path,
                        content_hash=note.content_hash,
                        version=note.version,
                        tokens_json=_dump_tokens(indexed.tokens),
                        indexed_at=now,
                    ))
                    count += 1
                session.commit()
        except SQLAlchemyError as e:
            raise StorageError(
                "Failed to write index cache",
                operation="store",
                code=ErrorCode.STORAGE_WRITE_FAILED,
                original_error=e,
            )
        if count:
            logger.debug(f"Stored {count} notes in index cache")
        return count

    def remove(self, note_ids: Iterable[str]) -> int:
        """Delete cache entries; unknown ids are ignored."""
        ids: List[str] = list(note_ids)
        if not ids:
            return 0
        try:
            with self.session_factory() as session:
                result = session.execute(
                    delete(DBCachedNote).where(DBCachedNote.note_id.in_(ids))
                )
                session.commit()
                return result.rowcount or 0
        except SQLAlchemyError as e:
            raise StorageError(
                "Failed to delete from index cache",
                operation="remove",
                code=ErrorCode.STORAGE_WRITE_FAILED,
                original_error=e,
            )

    def sync(self, snapshot: GraphSnapshot, note_ids: Iterable[str]) -> None:
        """Bring the entries of ``note_ids`` in line with a snapshot."""
        present: List[IndexedNote] = []
        gone: List[str] = []
        for note_id in note_ids:
            indexed = snapshot.indexed.get(note_id)
            if indexed is None:
                gone.append(note_id)
            else:
                present.append(indexed)
        self.store(present)
        self.remove(gone)

    def count(self) -> int:
        with self.session_factory() as session:
            return session.scalar(select(func.count()).select_from(DBCachedNote)) or 0

    def clear(self) -> None:
        """Remove every entry."""
        with self.session_factory() as session:
            session.execute(delete(DBCachedNote))
            session.commit()
        logger.info("Index cache cleared")
