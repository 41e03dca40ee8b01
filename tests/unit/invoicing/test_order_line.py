"""
Unit-тесты для OrderLine и ingestion-контракта RawOrderRow.
"""

import math

import pytest

from contracts.ingestion_dto import RawOrderRow, map_columns
from src.invoicing.domain.exceptions import IntegrityViolationError
from src.invoicing.domain.models import (
    Center,
    ConsolidationClass,
    OrderLine,
    PackingKind,
)


class TestRawOrderRow:
    """Мягкий контракт: кривые значения не отбрасываются."""

    def test_nan_and_float_codes_coerced(self):
        row = RawOrderRow(item_code=7710.0, recipient_name=math.nan, address=" 서울 ")

        assert row.item_code == "7710"
        assert row.recipient_name == ""
        assert row.address == "서울"

    def test_non_numeric_quantity_is_none(self):
        assert RawOrderRow(quantity="두개").quantity is None
        assert RawOrderRow(quantity="3").quantity == 3
        assert RawOrderRow(quantity="1,200").quantity == 1200

    def test_money_defaults_to_zero(self):
        row = RawOrderRow(payment_amount="", order_amount="12,000")

        assert row.payment_amount == 0.0
        assert row.order_amount == 12000.0

    def test_invalid_fields(self):
        row = RawOrderRow(recipient_name="", address="", item_name="만두", quantity=0)

        assert row.invalid_fields() == ["recipient_name", "address", "quantity"]
        assert not row.is_valid()

    def test_map_columns(self):
        mapped = map_columns(
            {"수취인명": "홍길동", "수량": "2", "unknown": "x", "address": "부산"},
            {"수취인명": "recipient_name", "수량": "quantity"},
        )

        assert mapped == {"recipient_name": "홍길동", "quantity": "2", "address": "부산"}


class TestOrderLine:
    """Тесты доменной строки."""

    def test_from_raw_keeps_missing_quantity_as_zero(self):
        line = OrderLine.from_raw(RawOrderRow(item_name="만두", quantity=None), row_id=7)

        assert line.line_id == "7"
        assert line.source_row_id == 7
        assert line.quantity == 0

    def test_terminal_class_cannot_change(self):
        line = OrderLine(line_id="1", source_row_id=1)
        line.classify(ConsolidationClass.EXTRA)

        line.classify(ConsolidationClass.EXTRA)
        with pytest.raises(IntegrityViolationError):
            line.classify(ConsolidationClass.SINGLE)

    def test_non_terminal_class_can_change(self):
        line = OrderLine(line_id="1", source_row_id=1)
        line.classify(ConsolidationClass.COMBINED)
        line.classify(ConsolidationClass.ONE_PARCEL)

        assert line.consolidation_class == ConsolidationClass.ONE_PARCEL

    def test_address_region(self):
        assert OrderLine(line_id="1", source_row_id=1, address="[06236] 서울 강남구").address_region == "서울"
        assert OrderLine(line_id="1", source_row_id=1, address="*서울 종로구").address_region == "서울"
        assert OrderLine(line_id="1", source_row_id=1, address="부산 해운대구").address_region == "부산"

    def test_record_round_trip_preserves_enums(self):
        line = OrderLine(
            line_id="3.1",
            source_row_id=3,
            sub_index=1,
            center=Center.GAMCHEON,
            consolidation_class=ConsolidationClass.ONE_PARCEL,
            packing_kind=PackingKind.BOXED,
            is_placeholder=True,
        )

        record = line.to_record()
        restored = OrderLine.from_record(record)

        assert record["center"] == "gamcheon"
        assert record["is_placeholder"] == 1
        assert restored == line

    def test_priority_flag(self):
        assert not OrderLine(line_id="1", source_row_id=1).has_priority_flag
        assert OrderLine(line_id="1", source_row_id=1, star2="★").has_priority_flag
