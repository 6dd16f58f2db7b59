"""Tests for project isolation of logical tables."""

import pytest

from table_engine.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError


class TestProjectIsolation:
    """Tables of one project are invisible to every other project."""

    def test_same_name_resolves_per_project(self, engine, product_definition):
        engine.schema.create_table(1, product_definition)
        engine.schema.create_table(2, product_definition)

        engine.records.insert_record(1, "produtos", {"nome": "Caneta"})
        engine.records.insert_record(1, "produtos", {"nome": "Lápis"})
        engine.records.insert_record(2, "produtos", {"nome": "Borracha"})

        first = engine.records.query_records(1, "produtos")
        second = engine.records.query_records(2, "produtos")
        assert [row["nome"] for row in first.rows] == ["Caneta", "Lápis"]
        assert [row["nome"] for row in second.rows] == ["Borracha"]

    def test_physical_tables_are_distinct(self, engine, engine_db, product_definition):
        engine.schema.create_table(1, product_definition)
        engine.schema.create_table(2, product_definition)

        names = {row[0] for row in engine_db.execute(
            "SELECT table_name FROM information_schema.tables WHERE table_name LIKE 'p%_produtos'"
        )}
        assert names == {"p1_produtos", "p2_produtos"}

    def test_other_project_table_not_found(self, engine, products):
        with pytest.raises(NotFoundError) as exc_info:
            engine.records.query_records(2, "produtos")
        assert exc_info.value.error == "table_not_found"

    def test_record_ids_do_not_cross_projects(self, engine, product_definition):
        engine.schema.create_table(1, product_definition)
        engine.schema.create_table(2, product_definition)
        row = engine.records.insert_record(1, "produtos", {"nome": "Caneta"})

        with pytest.raises(NotFoundError):
            engine.records.get_record_by_id(2, "produtos", row["id"])

    def test_drop_only_affects_own_project(self, engine, product_definition):
        engine.schema.create_table(1, product_definition)
        engine.schema.create_table(2, product_definition)

        engine.schema.drop_table(2, "produtos")

        assert engine.schema.get_table_schema(1, "produtos").table_name == "produtos"
        with pytest.raises(NotFoundError):
            engine.schema.get_table_schema(2, "produtos")


class TestPhysicalNameAccess:
    """Physical names are never accepted as logical names."""

    def test_foreign_physical_name_forbidden(self, engine, products):
        with pytest.raises(ForbiddenError) as exc_info:
            engine.records.query_records(2, "p1_produtos")
        assert "p1_" not in exc_info.value.message

    def test_own_physical_name_not_registered(self, engine, products):
        with pytest.raises(NotFoundError):
            engine.records.query_records(1, "p1_produtos")

    def test_forbidden_for_mutations(self, engine, products):
        with pytest.raises(ForbiddenError):
            engine.records.insert_record(3, "P1_Produtos", {"nome": "x"})
        with pytest.raises(ForbiddenError):
            engine.schema.drop_table(3, "p1_produtos")

    def test_registry_tables_not_addressable(self, engine):
        with pytest.raises(NotFoundError):
            engine.records.query_records(1, "project_databases")

    @pytest.mark.parametrize("project_id", [0, -1, "abc", None])
    def test_invalid_project_id(self, engine, products, project_id):
        with pytest.raises(ValidationError):
            engine.records.query_records(project_id, "produtos")


class TestMessagesHidePhysicalNames:
    """Errors surfaced to callers only mention logical names."""

    def test_duplicate_key_message(self, engine, products):
        engine.records.insert_record(1, "produtos", {"id": 1, "nome": "Caneta"})
        with pytest.raises(ConflictError) as exc_info:
            engine.records.insert_record(1, "produtos", {"id": 1, "nome": "Lápis"})
        assert "p1_produtos" not in exc_info.value.message

    def test_failed_envelope_message(self, engine, products):
        engine.insert_record(1, "produtos", {"id": 5, "nome": "Caneta"})
        result = engine.insert_record(1, "produtos", {"id": 5, "nome": "Lápis"})

        assert result.success is False
        assert "p1_" not in result.error.message
        assert "p1_" not in str(result.error.details)

    def test_schema_view_uses_logical_names(self, engine, products):
        engine.schema.add_index(1, "produtos", "por_nome", ["nome"])
        schema = engine.schema.get_table_schema(1, "produtos")

        dumped = schema.model_dump_json(by_alias=True)
        assert "p1_produtos" not in dumped
