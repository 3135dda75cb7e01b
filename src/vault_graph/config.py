"""Configuration module for the vault graph engine."""

import logging
import os
from pathlib import Path
from typing import Optional, Tuple

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

# Load environment variables from the project root .env file.
# Anchored to __file__ so it works regardless of the process CWD.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# User-level config, shared by every vault on this machine
_USER_ENV = Path.home() / ".vault_graph" / ".env"
load_dotenv(_USER_ENV)


logger = logging.getLogger(__name__)


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


def _env_extensions() -> Tuple[str, ...]:
    raw = os.getenv("VAULT_GRAPH_NOTE_EXTENSIONS", ".md")
    exts = []
    for part in raw.split(","):
        part = part.strip().lower()
        if not part:
            continue
        exts.append(part if part.startswith(".") else f".{part}")
    return tuple(exts) or (".md",)


class GraphConfig(BaseModel):
    """Configuration for the link graph engine."""

    # Root of the vault scanned at startup
    vault_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("VAULT_GRAPH_VAULT_DIR", "."))
    )
    # Optional SQLite index cache. When unset the index is rebuilt from
    # the note corpus on every start.
    cache_path: Optional[Path] = Field(
        default_factory=lambda: (
            Path(os.getenv("VAULT_GRAPH_CACHE_PATH"))
            if os.getenv("VAULT_GRAPH_CACHE_PATH")
            else None
        )
    )
    # Maximum number of distinct note ids waiting in the mutation queue
    queue_max_size: int = Field(
        default_factory=lambda: int(os.getenv("VAULT_GRAPH_QUEUE_MAX_SIZE", "1024"))
    )
    # Maximum number of events applied per snapshot
    batch_max_size: int = Field(
        default_factory=lambda: int(os.getenv("VAULT_GRAPH_BATCH_MAX_SIZE", "256"))
    )
    note_extensions: Tuple[str, ...] = Field(default_factory=_env_extensions)
    # Resolution policy: among equally exact candidates, a note whose title
    # matches outranks a note that only matches through an alias.
    prefer_title_over_alias: bool = Field(
        default_factory=lambda: _env_flag("VAULT_GRAPH_PREFER_TITLE_OVER_ALIAS", "false")
    )
    log_level: str = Field(
        default_factory=lambda: os.getenv("VAULT_GRAPH_LOG_LEVEL", "INFO").upper()
    )
    # Seconds the background worker waits for new events before re-checking
    # its stop flag
    worker_poll_interval: float = Field(
        default_factory=lambda: float(os.getenv("VAULT_GRAPH_WORKER_POLL_INTERVAL", "0.5"))
    )

    @model_validator(mode="after")
    def _validate_limits(self) -> "GraphConfig":
        """Validate queue and batch bounds."""
        if self.queue_max_size < 1:
            raise ValueError("queue_max_size must be >= 1")
        if self.batch_max_size < 1:
            raise ValueError("batch_max_size must be >= 1")
        if self.worker_poll_interval <= 0:
            raise ValueError("worker_poll_interval must be > 0")
        if self.batch_max_size > self.queue_max_size:
            logger.warning(
                f"batch_max_size ({self.batch_max_size}) exceeds queue_max_size "
                f"({self.queue_max_size}); batches will never be larger than the queue"
            )
        return self

    def get_absolute_path(self, path: Path) -> Path:
        """Convert a relative path to an absolute path based on vault_dir."""
        if path.is_absolute():
            return path
        return self.vault_dir / path

    def get_cache_url(self) -> Optional[str]:
        """Get the SQLAlchemy URL of the index cache, or None when disabled."""
        if self.cache_path is None:
            return None
        cache_path = self.get_absolute_path(self.cache_path)
        cache_path.parent.mkdir(parents=True, exist_ok=True)
        return f"sqlite:///{cache_path}"


# Create a global config instance
config = GraphConfig()
