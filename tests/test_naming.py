"""Tests for physical naming of project tables."""

import pytest

from table_engine.errors import ValidationError
from table_engine.naming import (
    is_project_table,
    logical_index_name,
    parse_physical_name,
    physical_index_name,
    physical_table_name,
    quote_identifier,
    sanitize,
    scrub_physical_names,
    sequence_name,
    validate_project_id,
)


class TestSanitize:
    """Tests for basename sanitization."""

    @pytest.mark.parametrize(
        "name,expected",
        [
            ("produtos", "produtos"),
            ("Produtos", "produtos"),
            ("Order Items", "order_items"),
            ("__weird--name__", "weird_name"),
            ("a  b!!c", "a_b_c"),
            ("preço", "pre_o"),
        ],
    )
    def test_sanitize(self, name, expected):
        assert sanitize(name) == expected

    def test_sanitize_is_idempotent(self):
        once = sanitize("My Table--2024")
        assert sanitize(once) == once


class TestPhysicalTableName:
    """Tests for the physical name derivation."""

    def test_prefixes_project_id(self):
        assert physical_table_name(1, "produtos") == "p1_produtos"

    def test_same_basename_differs_per_project(self):
        assert physical_table_name(1, "produtos") != physical_table_name(2, "produtos")

    def test_accepts_numeric_string_project_id(self):
        assert physical_table_name("42", "Clientes") == "p42_clientes"

    @pytest.mark.parametrize("project_id", [0, -3, "abc", None, True, 1.5])
    def test_rejects_invalid_project_id(self, project_id):
        with pytest.raises(ValidationError) as exc_info:
            physical_table_name(project_id, "produtos")
        assert exc_info.value.error == "invalid_project_id"

    def test_rejects_name_without_identifier_characters(self):
        with pytest.raises(ValidationError):
            physical_table_name(1, "---")

    def test_validate_project_id_returns_int(self):
        assert validate_project_id("7") == 7


class TestParsePhysicalName:
    """Tests for splitting physical names."""

    def test_parse_prefixed_name(self):
        assert parse_physical_name("p12_order_items") == (12, "order_items")

    def test_parse_unprefixed_name(self):
        assert parse_physical_name("project_databases") == (None, "project_databases")

    def test_round_trip(self):
        physical = physical_table_name(5, "Clientes VIP")
        assert parse_physical_name(physical) == (5, "clientes_vip")

    def test_is_project_table(self):
        assert is_project_table("p1_produtos", 1)
        assert not is_project_table("p1_produtos", 2)
        assert not is_project_table("p11_produtos", 1)


class TestDerivedNames:
    """Tests for index and sequence names."""

    def test_index_name_embeds_table(self):
        assert physical_index_name("p1_produtos", "By Name") == "idx_p1_produtos_by_name"

    def test_logical_index_name(self):
        assert logical_index_name("p1_produtos", "idx_p1_produtos_by_name") == "by_name"

    def test_sequence_name(self):
        assert sequence_name("p1_produtos", "id") == "p1_produtos_id_seq"

    def test_quote_identifier_escapes_quotes(self):
        assert quote_identifier('we"ird') == '"we""ird"'


class TestScrubPhysicalNames:
    """Tests for removing physical names from messages."""

    def test_scrub_table_name(self):
        message = 'Table with name "p1_produtos" already exists!'
        assert scrub_physical_names(message) == 'Table with name "produtos" already exists!'

    def test_scrub_index_name(self):
        assert scrub_physical_names("Index idx_p3_orders_by_date exists") == "Index orders_by_date exists"

    def test_scrub_leaves_other_text(self):
        assert scrub_physical_names("column price is invalid") == "column price is invalid"
