"""Configuration module for the refnotes server."""

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

from refnotes import __version__

# Load environment variables from the project root .env file.
# Anchored to __file__ so it works regardless of the process CWD.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# User-level config, kept next to the default database location
_USER_ENV = Path.home() / ".refnotes" / ".env"
load_dotenv(_USER_ENV)


logger = logging.getLogger(__name__)


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


class RefNotesConfig(BaseModel):
    """Configuration for the refnotes server."""

    # Base directory for relative paths
    base_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("REFNOTES_BASE_DIR", "."))
    )
    # Database configuration
    database_path: Path = Field(
        default_factory=lambda: Path(
            os.getenv("REFNOTES_DATABASE_PATH", "data/db/refnotes.db")
        )
    )
    # When True, uses an in-memory SQLite database (useful for throwaway sessions)
    in_memory_db: bool = Field(
        default_factory=lambda: _env_flag("REFNOTES_IN_MEMORY_DB", "false")
    )
    # Server configuration
    server_name: str = Field(default=os.getenv("REFNOTES_SERVER_NAME", "refnotes"))
    server_version: str = Field(default=__version__)
    # How many times a note creation is retried after losing an allocation race
    allocation_max_retries: int = Field(
        default_factory=lambda: int(os.getenv("REFNOTES_ALLOCATION_MAX_RETRIES", "3"))
    )
    # Input limits enforced at the tool boundary
    max_title_length: int = Field(
        default_factory=lambda: int(os.getenv("REFNOTES_MAX_TITLE_LENGTH", "500"))
    )
    max_content_length: int = Field(
        default_factory=lambda: int(
            os.getenv("REFNOTES_MAX_CONTENT_LENGTH", "1000000")
        )
    )
    # Persistent log directory (None uses ~/.refnotes/logs)
    log_dir: Optional[Path] = Field(
        default_factory=lambda: (
            Path(os.getenv("REFNOTES_LOG_DIR"))
            if os.getenv("REFNOTES_LOG_DIR")
            else None
        )
    )

    @model_validator(mode="after")
    def _validate_limits(self) -> "RefNotesConfig":
        """Reject retry counts and length limits that would block every request."""
        if self.allocation_max_retries < 1:
            raise ValueError("allocation_max_retries must be >= 1")
        if self.max_title_length < 1:
            raise ValueError("max_title_length must be >= 1")
        if self.max_content_length < 1:
            raise ValueError("max_content_length must be >= 1")
        return self

    def get_absolute_path(self, path: Path) -> Path:
        """Convert a relative path to an absolute path based on base_dir."""
        if path.is_absolute():
            return path
        return self.base_dir / path

    def get_db_url(self) -> str:
        """Get the database URL for SQLite."""
        if self.in_memory_db:
            return "sqlite:///:memory:"
        db_path = self.get_absolute_path(self.database_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        return f"sqlite:///{db_path}"


# Create a global config instance
config = RefNotesConfig()
