"""Tests for the TableEngine facade: envelopes, audit trail and metrics."""

from prometheus_client import REGISTRY

from table_engine.models import QueryResult


def _counter(operation, status):
    return REGISTRY.get_sample_value(
        "table_engine_operations_total", {"operation": operation, "status": status}
    ) or 0.0


class TestEnvelope:
    """Every operation returns a QueryResult."""

    def test_success_envelope(self, engine, product_definition):
        product_definition["generateApi"] = True
        result = engine.create_table(1, product_definition)

        assert isinstance(result, QueryResult)
        assert result.success is True
        assert result.error is None
        assert result.data.table_name == "produtos"
        assert len(result.meta["apis"]) == 5

    def test_no_apis_without_generate_api(self, engine, product_definition):
        result = engine.create_table(1, product_definition)

        assert result.success
        assert result.meta is None
        assert engine.list_apis(1).data == []

    def test_failure_envelope(self, engine):
        result = engine.create_table(1, {"name": "bad name", "columns": []})

        assert result.success is False
        assert result.data is None
        assert result.error.error == "invalid_table_definition"
        codes = {e["code"] for e in result.error.details["errors"]}
        assert {"invalid_table_name", "no_columns"} <= codes

    def test_not_found_envelope(self, engine):
        result = engine.get_table_schema(1, "nada")
        assert result.success is False
        assert result.error.error == "table_not_found"

    def test_forbidden_envelope(self, engine, products):
        result = engine.query_records(2, "p1_produtos")
        assert result.success is False
        assert result.error.error == "forbidden"

    def test_serialized_with_camel_case(self, engine, products):
        engine.insert_record(1, "produtos", {"nome": "Caneta"})
        result = engine.query_records(1, "produtos", pagination={"pageSize": 5})

        payload = result.model_dump(mode="json", by_alias=True)
        assert payload["success"] is True
        assert payload["meta"]["pagination"] == {
            "page": 1,
            "pageSize": 5,
            "total": 1,
            "totalPages": 1,
        }
        assert payload["data"][0]["nome"] == "Caneta"


class TestFacadeOperations:
    """Round trips through the facade."""

    def test_record_lifecycle(self, engine, products):
        inserted = engine.insert_record(1, "produtos", {"nome": "Caneta", "preco": 2})
        record_id = inserted.data["id"]

        assert engine.get_record_by_id(1, "produtos", record_id).data["nome"] == "Caneta"
        assert engine.update_record(1, "produtos", record_id, {"nome": "Lápis"}).data["nome"] == "Lápis"
        assert engine.delete_record(1, "produtos", record_id).data == {"id": record_id, "mode": "hard"}
        assert engine.get_record_by_id(1, "produtos", record_id).error.error == "record_not_found"

    def test_alter_and_schema(self, engine, products):
        result = engine.alter_table(1, "produtos", {"addColumns": [{"name": "estoque", "type": "integer"}]})
        assert result.success

        schema = engine.get_table_schema(1, "produtos").data
        assert [c.name for c in schema.columns][-1] == "estoque"

    def test_list_tables(self, engine, products):
        result = engine.list_tables(1)
        assert [t.table_name for t in result.data] == ["produtos"]

    def test_update_table_info(self, engine, products):
        result = engine.update_table_info(1, "produtos", display_name="Produtos", description="Catálogo")
        assert result.data.display_name == "Produtos"
        assert result.data.description == "Catálogo"

    def test_indexes(self, engine, products):
        assert engine.add_index(1, "produtos", "por_nome", ["nome"]).data.name == "por_nome"
        assert [i.name for i in engine.list_indexes(1, "produtos").data] == ["por_nome"]
        assert engine.drop_index(1, "produtos", "por_nome").success
        assert engine.list_indexes(1, "produtos").data == []

    def test_verify_structure(self, engine, engine_db, products):
        assert engine.verify_structure(1, "produtos").data == {"table_name": "produtos", "in_sync": True}

        with engine_db.connection() as conn:
            conn.execute('ALTER TABLE "p1_produtos" ADD COLUMN extra INTEGER')

        result = engine.verify_structure(1, "produtos")
        assert result.error.error == "schema_drift"
        assert engine.detect_drift(1, "produtos").data

    def test_list_and_delete_apis(self, engine, product_definition):
        product_definition["generateApi"] = True
        engine.create_table(1, product_definition)

        apis = engine.list_apis(1, "produtos").data
        assert {(a.method, a.api_path) for a in apis} == {
            ("GET", "/produtos"),
            ("GET", "/produtos/:id"),
            ("POST", "/produtos"),
            ("PUT", "/produtos/:id"),
            ("DELETE", "/produtos/:id"),
        }

        assert engine.delete_table_apis(1, "produtos").data == {"deleted": 5}
        assert engine.list_apis(1, include_inactive=True).data == []

    def test_drop_table(self, engine, product_definition):
        product_definition["generateApi"] = True
        engine.create_table(1, product_definition)

        result = engine.drop_table(1, "produtos")
        assert result.data["dropped"] is True
        assert result.data["apis_deactivated"] == 5
        assert engine.list_tables(1).data == []


class TestAuditTrail:
    """Mutations are recorded in operations_log."""

    def test_success_and_failure_logged(self, engine, engine_db, product_definition):
        engine.create_table(1, product_definition)
        engine.create_table(1, product_definition)

        operations = engine_db.list_operations(1)
        assert [(op["operation"], op["status"]) for op in operations] == [
            ("create_table", "failed"),
            ("create_table", "success"),
        ]
        assert operations[0]["resource_id"] == "produtos"
        assert operations[0]["error_message"]

    def test_reads_not_logged(self, engine, engine_db, products):
        before = len(engine_db.list_operations(1))
        engine.query_records(1, "produtos")
        engine.get_table_schema(1, "produtos")
        assert len(engine_db.list_operations(1)) == before

    def test_record_mutation_details(self, engine, engine_db, products):
        row = engine.insert_record(1, "produtos", {"nome": "Caneta"}).data
        engine.delete_record(1, "produtos", row["id"], mode="hard")

        latest = engine_db.list_operations(1, limit=1)[0]
        assert latest["operation"] == "delete_record"
        assert latest["resource_type"] == "record"
        assert latest["resource_id"] == f"produtos/{row['id']}"
        assert latest["details"] == {"mode": "hard"}


class TestMetrics:
    """Operation counters are labelled by outcome."""

    def test_counters(self, engine, products):
        ok_before = _counter("list_tables", "success")
        failed_before = _counter("get_table_schema", "failed")

        engine.list_tables(1)
        engine.get_table_schema(1, "nada")

        assert _counter("list_tables", "success") == ok_before + 1
        assert _counter("get_table_schema", "failed") == failed_before + 1


class TestCallerTimeout:
    """A per-call timeout is handed to the store and reported as an envelope."""

    SLOW_PREDICATE = (
        "(SELECT COUNT(*) FROM range(100000) a, range(100000) b "
        "WHERE a.range + b.range = -1) = 0"
    )

    def test_query_interrupted(self, engine, products, monkeypatch):
        monkeypatch.setattr(
            engine.records, "build_predicate", lambda table, filters: ([self.SLOW_PREDICATE], [])
        )

        result = engine.query_records(1, "produtos", timeout=0.05)

        assert result.success is False
        assert result.error.error == "timeout"
        assert result.error.details == {"reason": "timeout"}

    def test_generous_timeout_succeeds(self, engine, products):
        engine.insert_record(1, "produtos", {"nome": "Caneta"}, timeout=5)

        result = engine.query_records(1, "produtos", timeout=5)

        assert result.success is True
        assert [row["nome"] for row in result.data] == ["Caneta"]

    def test_schema_operations_accept_timeout(self, engine, product_definition):
        assert engine.create_table(1, product_definition, timeout=5).success
        assert engine.get_table_schema(1, "produtos", timeout=5).success
        assert engine.list_tables(1, timeout=5).data[0].table_name == "produtos"
        assert engine.drop_table(1, "produtos", timeout=5).success


class TestRecordRules:
    """Custom validation rules never escape the envelope."""

    def test_invalid_pattern(self, engine, products):
        result = engine.insert_record(1, "produtos", {"nome": "x"}, schema={"nome": {"pattern": "("}})

        assert result.success is False
        assert result.error.error == "validation_error"
        assert engine.query_records(1, "produtos").meta["pagination"]["total"] == 0
