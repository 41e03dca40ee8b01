"""
Unit-тесты для проверки имён таблиц.
"""

import pytest

from src.ingestion.exceptions import InvalidTableNameError
from src.ingestion.table_names import center_table_name, resolve_table_name, validate_table_name
from src.invoicing.domain.models import Center


class TestValidateTableName:
    """Формат, длина, SQL keyword."""

    @pytest.mark.parametrize("name", ["orders_raw", "_tmp", "송장_최종", "Orders2"])
    def test_valid_names(self, name):
        assert validate_table_name(name) == name

    @pytest.mark.parametrize("name", ["2orders", "orders-raw", "orders raw", 'x"; DROP', ""])
    def test_invalid_names(self, name):
        with pytest.raises(InvalidTableNameError):
            validate_table_name(name)

    def test_length_limit(self):
        assert validate_table_name("a" * 64)
        with pytest.raises(InvalidTableNameError):
            validate_table_name("a" * 65)

    @pytest.mark.parametrize("name", ["select", "DROP", "Table"])
    def test_sql_keywords_rejected(self, name):
        with pytest.raises(InvalidTableNameError):
            validate_table_name(name)


class TestResolveTableName:
    """Логические ключи Tables.Invoice.*."""

    def test_key_resolved_from_settings(self):
        assert resolve_table_name("Tables.Invoice.Raw") == "orders_raw"
        assert resolve_table_name("Tables.Invoice.Final") == "invoice_final"

    def test_plain_name_passes_through(self):
        assert resolve_table_name("orders_normalized") == "orders_normalized"

    def test_unknown_key_uses_default(self):
        assert resolve_table_name("Tables.Invoice.Unknown", default="fallback") == "fallback"

    def test_unknown_key_without_default(self):
        with pytest.raises(InvalidTableNameError):
            resolve_table_name("Tables.Invoice.Unknown")

    def test_center_table_name(self):
        assert center_table_name(Center.BUSAN) == "invoice_final_busan"
        assert center_table_name(Center.SEOUL_FROZEN) == "invoice_final_seoul_frozen"
