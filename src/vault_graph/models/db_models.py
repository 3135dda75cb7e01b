"""SQLAlchemy models for the persisted index cache."""
import datetime
from typing import Optional

from sqlalchemy import Column, DateTime, Integer, String, Text, create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from vault_graph.config import config
from vault_graph.exceptions import ConfigurationError, ErrorCode

# Create base class for SQLAlchemy models
Base = declarative_base()


class DBCachedNote(Base):
    """Indexed state of one note, keyed by id and checked by content hash."""
    __tablename__ = "cached_notes"
    note_id = Column(String(1024), primary_key=True)
    path = Column(String(1024), nullable=False, index=True)
    content_hash = Column(String(64), nullable=False)
    version = Column(Integer, nullable=False, default=1)
    # JSON array of serialized link tokens
    tokens_json = Column(Text, nullable=False, default="[]")
    indexed_at = Column(
        DateTime,
        default=lambda: datetime.datetime.now(datetime.timezone.utc),
        nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<CachedNote(note_id='{self.note_id}', path='{self.path}', "
            f"hash='{self.content_hash[:8]}')>"
        )


def _is_memory_url(db_url: str) -> bool:
    return db_url in ("sqlite://", "sqlite:///:memory:")


def init_db(db_url: Optional[str] = None) -> Engine:
    """Create the cache engine and tables.

    File databases use WAL journaling with NORMAL synchronous mode and a
    small connection pool. In-memory databases share one connection so
    every session sees the same tables.

    Args:
        db_url: SQLAlchemy URL. Defaults to the configured cache path.

    Raises:
        ConfigurationError: If no URL is given and the cache is disabled.
    """
    db_url = db_url or config.get_cache_url()
    if not db_url:
        raise ConfigurationError(
            "Index cache is disabled (VAULT_GRAPH_CACHE_PATH is not set)",
            config_key="cache_path",
            code=ErrorCode.CONFIG_MISSING,
        )

    if _is_memory_url(db_url):
        engine = create_engine(
            db_url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    else:
        # SQLite is single-writer, so a small pool is enough
        engine = create_engine(
            db_url,
            poolclass=QueuePool,
            pool_size=2,
            max_overflow=4,
            pool_timeout=30,
            pool_pre_ping=True,
            connect_args={"check_same_thread": False},
        )

        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.close()

    Base.metadata.create_all(engine)
    return engine


def get_session_factory(engine: Engine):
    """Get a session factory bound to an engine."""
    return sessionmaker(bind=engine)
