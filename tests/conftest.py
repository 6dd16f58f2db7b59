"""Pytest configuration and fixtures."""

import pytest
from pathlib import Path
import tempfile

import structlog

from table_engine.config import settings


@pytest.fixture(autouse=True)
def reset_logging():
    """CLI runs bind log output to a temporary stream; restore defaults after each test."""
    yield
    structlog.reset_defaults()


@pytest.fixture
def temp_data_dir(monkeypatch):
    """Create a temporary data directory and point settings at it."""
    with tempfile.TemporaryDirectory() as tmpdir:
        data_dir = Path(tmpdir) / "data"
        data_dir.mkdir(parents=True, exist_ok=True)
        engine_db_path = data_dir / "engine.duckdb"

        # Patch settings
        monkeypatch.setattr(settings, "data_dir", data_dir)
        monkeypatch.setattr(settings, "engine_db_path", engine_db_path)

        yield {
            "data_dir": data_dir,
            "engine_db_path": engine_db_path,
        }


@pytest.fixture
def engine_db(temp_data_dir):
    """Create EngineDB instance with temporary storage."""
    from table_engine.database import EngineDB

    # Reset singleton for testing
    EngineDB._instance = None

    db = EngineDB()
    db.initialize()

    yield db

    # Cleanup singleton after test
    EngineDB._instance = None


@pytest.fixture
def engine(engine_db):
    """TableEngine bound to the temporary database."""
    from table_engine.engine import TableEngine

    table_engine = TableEngine(db=engine_db)
    table_engine.initialize()
    return table_engine


@pytest.fixture
def product_definition():
    """Definition of a small product table."""
    return {
        "name": "produtos",
        "description": "Catalog products",
        "columns": [
            {"name": "id", "type": "integer", "isPrimary": True, "nullable": False},
            {"name": "nome", "type": "string", "nullable": False},
            {"name": "preco", "type": "decimal"},
            {"name": "ativo", "type": "boolean", "defaultValue": True},
        ],
    }


@pytest.fixture
def products(engine, product_definition):
    """The product table created in project 1."""
    record, _ = engine.schema.create_table(1, product_definition)
    return record
