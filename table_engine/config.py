"""Engine configuration using pydantic-settings."""

from pathlib import Path
from typing import Literal

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Engine settings loaded from environment variables.

    All settings can be configured via:
    1. Environment variables (e.g., DATA_DIR=/my/path)
    2. .env file in the working directory

    The registry/data database path is derived from DATA_DIR by default but
    can be overridden.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    debug: bool = True  # Default to True for development

    # Storage paths
    data_dir: Path = Path("./data")
    engine_db_path: Path | None = None

    # DuckDB settings
    duckdb_threads: int = 4
    duckdb_memory_limit: str = "4GB"

    # Timeouts (seconds)
    operation_timeout: float = 30.0

    # Pagination
    default_page_size: int = 20
    max_page_size: int = 100

    # Soft delete behaviour.
    # auto: soft delete when the table has a deleted_at column, hard otherwise
    default_delete_mode: Literal["auto", "soft", "hard"] = "auto"
    include_deleted_default: bool = False

    # Compare cached structure with the live catalog before every record
    # operation and raise SchemaDriftError on mismatch
    verify_structure_on_access: bool = False

    @model_validator(mode="after")
    def set_default_paths(self) -> "Settings":
        """Set default paths based on data_dir if not explicitly provided."""
        if self.engine_db_path is None:
            self.engine_db_path = self.data_dir / "engine.duckdb"
        return self


# Global settings instance
settings = Settings()
