"""Tests for table definition and record validation."""

from datetime import date
from decimal import Decimal

import pytest

from table_engine.errors import ValidationError
from table_engine.models import LogicalType, ProjectDatabase, TableColumn
from table_engine.validator import check_record, validate, validate_column, validate_data


def _codes(outcome):
    return [error["code"] for error in outcome.errors]


class TestValidateDefinition:
    """Tests for validate()."""

    def test_valid_definition(self, product_definition):
        outcome = validate(product_definition)
        assert outcome.valid
        assert outcome.definition.name == "produtos"
        assert outcome.definition.columns[0].is_primary is True

    def test_invalid_table_name(self, product_definition):
        product_definition["name"] = "1produtos"
        assert _codes(validate(product_definition)) == ["invalid_table_name"]

    def test_invalid_and_duplicate_column_names(self, product_definition):
        product_definition["columns"].append({"name": "Nome", "type": "text"})
        product_definition["columns"].append({"name": "bad-name", "type": "text"})
        codes = _codes(validate(product_definition))
        assert "duplicate_column" in codes
        assert "invalid_column_name" in codes

    def test_unsupported_type(self, product_definition):
        product_definition["columns"][1]["type"] = "varchar"
        outcome = validate(product_definition)
        assert _codes(outcome) == ["invalid_type"]
        assert outcome.errors[0]["field"] == "columns[1].type"

    def test_requires_exactly_one_primary_key(self, product_definition):
        product_definition["columns"][1]["isPrimary"] = True
        assert _codes(validate(product_definition)) == ["primary_key_count"]

        product_definition["columns"][0]["isPrimary"] = False
        product_definition["columns"][1]["isPrimary"] = False
        assert _codes(validate(product_definition)) == ["primary_key_count"]

    def test_reserved_names_conflict_with_timestamps(self, product_definition):
        product_definition["timestamps"] = True
        product_definition["softDelete"] = True
        product_definition["columns"].append({"name": "created_at", "type": "datetime"})
        product_definition["columns"].append({"name": "deleted_at", "type": "datetime"})
        assert _codes(validate(product_definition)) == ["reserved_column", "reserved_column"]

    def test_reserved_names_allowed_without_flags(self, product_definition):
        product_definition["columns"].append({"name": "created_at", "type": "datetime"})
        assert validate(product_definition).valid

    def test_reports_all_violations_at_once(self):
        outcome = validate({
            "name": "bad name",
            "columns": [
                {"name": "id", "type": "uuid"},
                {"name": "x y", "type": "string"},
            ],
        })
        assert set(_codes(outcome)) == {
            "invalid_table_name",
            "invalid_column_name",
            "invalid_type",
            "primary_key_count",
        }

    def test_requires_columns(self):
        assert "no_columns" in _codes(validate({"name": "vazia", "columns": []}))

    def test_invalid_default(self, product_definition):
        product_definition["columns"][2]["defaultValue"] = "cheap"
        assert _codes(validate(product_definition)) == ["invalid_default"]

    def test_raise_for_errors(self, product_definition):
        product_definition["name"] = ""
        with pytest.raises(ValidationError) as exc_info:
            validate(product_definition).raise_for_errors()
        assert exc_info.value.error == "invalid_table_definition"
        assert exc_info.value.details["errors"][0]["code"] == "invalid_table_name"

    def test_malformed_payload(self):
        with pytest.raises(ValidationError):
            validate({"name": "t", "columns": "not a list"})


class TestValidateColumn:
    """Tests for columns added by alter_table."""

    def test_valid_column(self):
        assert validate_column({"name": "estoque", "type": "integer"}) == []

    def test_reserved_and_primary(self):
        errors = validate_column({"name": "updated_at", "type": "datetime", "isPrimary": True})
        assert {e["code"] for e in errors} == {"reserved_column", "primary_key_count"}


@pytest.fixture
def table():
    return ProjectDatabase(
        id=1,
        project_id=1,
        table_name="produtos",
        structure=[
            TableColumn(name="id", type=LogicalType.INTEGER, physical_type="INTEGER", nullable=False, is_primary=True),
            TableColumn(name="nome", type=LogicalType.STRING, physical_type="VARCHAR(255)", nullable=False),
            TableColumn(name="preco", type=LogicalType.DECIMAL, physical_type="DECIMAL(18,4)"),
            TableColumn(name="lancamento", type=LogicalType.DATE, physical_type="DATE"),
            TableColumn(
                name="ativo", type=LogicalType.BOOLEAN, physical_type="BOOLEAN",
                nullable=False, default_value=True,
            ),
        ],
    )


class TestCheckRecord:
    """Tests for record payload checks against the cached structure."""

    def test_coerces_values(self, table):
        values = check_record(table, {"NOME": "Caneta", "preco": "2.50", "lancamento": "2024-03-01"})
        assert values == {"nome": "Caneta", "preco": Decimal("2.50"), "lancamento": date(2024, 3, 1)}

    def test_collects_all_errors(self, table):
        with pytest.raises(ValidationError) as exc_info:
            check_record(table, {"cor": "azul", "preco": "caro", "ativo": None})
        codes = {e["code"] for e in exc_info.value.errors}
        assert codes == {"unknown_field", "invalid_type", "not_nullable", "required"}

    def test_required_skipped_when_partial(self, table):
        assert check_record(table, {"preco": 3}, partial=True) == {"preco": Decimal(3)}

    def test_rejects_non_dict(self, table):
        with pytest.raises(ValidationError):
            check_record(table, ["nome"])


class TestValidateData:
    """Tests for custom field rules."""

    def test_rules(self):
        schema = {
            "nome": {"required": True, "minLength": 3},
            "email": {"type": "email"},
            "site": {"type": "url"},
            "preco": {"type": "number", "min": 0, "max": 100},
            "status": {"enum": ["novo", "pago"]},
            "sku": {"pattern": r"^[A-Z]{3}-\d+$"},
        }
        errors = validate_data(
            {
                "nome": "ab",
                "email": "not-an-email",
                "site": "https://example.com/loja",
                "preco": 150,
                "status": "cancelado",
                "sku": "abc-1",
            },
            schema,
        )
        codes = {(e["field"], e["code"]) for e in errors}
        assert codes == {
            ("nome", "MIN_LENGTH"),
            ("email", "TYPE_EMAIL"),
            ("preco", "MAX_VALUE"),
            ("status", "ENUM"),
            ("sku", "PATTERN"),
        }

    def test_required_and_custom_message(self):
        errors = validate_data({}, {"nome": {"required": True, "message": "Informe o nome"}})
        assert errors == [{"field": "nome", "message": "Informe o nome", "code": "REQUIRED"}]

    def test_valid_data(self):
        assert validate_data({"tags": ["a"], "meta": {}}, {"tags": {"type": "array"}, "meta": {"type": "object"}}) == []

    @pytest.mark.parametrize("pattern", ["(", "[a-", "*x"])
    def test_invalid_pattern_rejected(self, pattern):
        with pytest.raises(ValidationError) as exc_info:
            validate_data({"sku": "abc"}, {"sku": {"pattern": pattern}})
        assert exc_info.value.errors[0]["field"] == "pattern"
        assert "invalid regular expression" in exc_info.value.errors[0]["message"]
