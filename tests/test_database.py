"""Tests for the engine database: registry schema, error mapping and timeouts."""

import duckdb
import pytest

from table_engine.database import EngineDB, default_api_paths, map_store_error
from table_engine.errors import ConflictError, DatabaseError


class TestEngineDB:
    """Tests for EngineDB lifecycle."""

    def test_singleton(self, engine_db):
        assert EngineDB() is engine_db

    def test_initialize_creates_registry(self, engine_db, temp_data_dir):
        assert temp_data_dir["engine_db_path"].exists()

        tables = {row[0] for row in engine_db.execute(
            "SELECT table_name FROM information_schema.tables WHERE table_schema = 'main'"
        )}
        assert {"project_databases", "project_apis", "operations_log"} <= tables

    def test_initialize_is_idempotent(self, engine_db):
        engine_db.initialize()
        assert engine_db.count_tables() == 0

    def test_transaction_rolls_back_on_error(self, engine_db):
        with pytest.raises(RuntimeError):
            with engine_db.transaction() as conn:
                conn.execute(
                    "INSERT INTO project_databases (project_id, table_name) VALUES (1, 'x')"
                )
                raise RuntimeError("boom")

        assert engine_db.count_tables() == 0

    def test_store_errors_are_mapped(self, engine_db):
        with pytest.raises(DatabaseError):
            engine_db.execute("SELECT * FROM missing_table")

    def test_registry_unique_per_project(self, engine_db):
        engine_db.execute_write(
            "INSERT INTO project_databases (project_id, table_name) VALUES (1, 'produtos')"
        )
        engine_db.execute_write(
            "INSERT INTO project_databases (project_id, table_name) VALUES (2, 'produtos')"
        )
        with pytest.raises(ConflictError):
            engine_db.execute_write(
                "INSERT INTO project_databases (project_id, table_name) VALUES (1, 'produtos')"
            )

    def test_operations_log(self, engine_db):
        engine_db.log_operation(
            operation="create_table",
            status="success",
            project_id=3,
            resource_type="table",
            resource_id="produtos",
            details={"columns": 2},
            duration_ms=4,
        )
        assert engine_db.list_operations(3) == [{
            "operation": "create_table",
            "status": "success",
            "resource_type": "table",
            "resource_id": "produtos",
            "details": {"columns": 2},
            "error_message": None,
        }]
        assert engine_db.list_operations(4) == []


class TestTimeout:
    """Units of work are interrupted after the configured timeout."""

    def test_long_statement_interrupted(self, engine_db):
        with pytest.raises(DatabaseError) as exc_info:
            with engine_db.connection(timeout=0.05) as conn:
                conn.execute(
                    "SELECT COUNT(*) FROM range(100000) a, range(100000) b "
                    "WHERE a.range + b.range = -1"
                ).fetchall()

        assert exc_info.value.error == "timeout"
        assert exc_info.value.details == {"reason": "timeout"}

    def test_fast_statement_unaffected(self, engine_db):
        with engine_db.connection(timeout=5) as conn:
            assert conn.execute("SELECT 42").fetchone()[0] == 42


class TestMapStoreError:
    """Tests for translating DuckDB exceptions."""

    def test_constraint(self):
        error = map_store_error(duckdb.ConstraintException(
            'Constraint Error: Duplicate key "id: 1" violates primary key constraint.'
        ))
        assert isinstance(error, ConflictError)
        assert error.error == "constraint_violation"

    def test_already_exists_scrubs_physical_name(self):
        error = map_store_error(duckdb.CatalogException(
            'Catalog Error: Table with name "p1_produtos" already exists!'
        ))
        assert isinstance(error, ConflictError)
        assert error.error == "already_exists"
        assert "p1_" not in error.message
        assert "produtos" in error.message

    def test_transaction_conflict(self):
        error = map_store_error(duckdb.TransactionException(
            "TransactionContext Error: Catalog write-write conflict on create with \"p1_produtos\""
        ))
        assert isinstance(error, ConflictError)
        assert error.error == "transaction_conflict"
        assert "p1_" not in str(error.details)

    def test_dependency(self):
        error = map_store_error(duckdb.CatalogException(
            'Catalog Error: Cannot drop column "nome" because there is a UNIQUE constraint that depends on it'
        ))
        assert error.error == "dependency_conflict"

    def test_only_first_line_kept(self):
        error = map_store_error(duckdb.BinderException(
            'Binder Error: Referenced column "x" not found in FROM clause!\n'
            'LINE 1: SELECT x FROM "p7_itens"'
        ))
        assert isinstance(error, DatabaseError)
        assert error.details["reason"] == 'Binder Error: Referenced column "x" not found in FROM clause!'

    def test_timed_out_flag(self):
        error = map_store_error(duckdb.Error("anything"), timed_out=True)
        assert error.error == "timeout"


def test_default_api_paths():
    assert default_api_paths("produtos") == ["/produtos", "/produtos/:id"]
