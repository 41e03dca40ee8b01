"""
Unit-тесты для Stage 6: Aggregation.

ЦКП: Итоговые наборы по центрам, стабильная сортировка, проверка целостности.
"""

import pytest
import yaml

from src.invoicing.domain.exceptions import IntegrityViolationError
from src.invoicing.domain.models import Center, ConsolidationClass, OrderLine, PackingKind
from src.invoicing.rules.rule_loader import DEFAULT_RULES_FILE, RuleSet
from src.invoicing.s6_aggregation import AggregationStage, sort_key


def load_rules(**sections) -> RuleSet:
    with open(DEFAULT_RULES_FILE, 'r', encoding='utf-8') as f:
        data = yaml.safe_load(f)
    data.update(sections)
    return RuleSet.from_dict(data)


def make_line(row_id: int = 1, **fields) -> OrderLine:
    values = dict(
        recipient_name="홍길동",
        address="서울 강남구 1",
        item_code="P1",
        item_name="냉동만두",
        quantity=1,
        center=Center.FROZEN,
        consolidation_class=ConsolidationClass.SINGLE,
    )
    values.update(fields)
    return OrderLine(line_id=str(row_id), source_row_id=row_id, **values)


class TestAggregationSorting:
    """Сортировка итоговых наборов."""

    def test_priority_lines_first(self):
        stage = AggregationStage(load_rules())
        plain = make_line(1, address="가")
        flagged = make_line(2, address="하", star2="★")

        result = stage.process([plain, flagged])

        assert result.center_results[Center.FROZEN] == [flagged, plain]

    def test_sorted_by_address_then_name(self):
        stage = AggregationStage(load_rules())
        lines = [
            make_line(1, address="나", item_name="B"),
            make_line(2, address="가", item_name="Z"),
            make_line(3, address="나", item_name="A"),
        ]

        result = stage.process(lines)

        assert [l.line_id for l in result.center_results[Center.FROZEN]] == ["2", "3", "1"]

    def test_sort_is_stable_for_equal_keys(self):
        stage = AggregationStage(load_rules())
        later = make_line(2)
        earlier = make_line(1)

        result = stage.process([later, earlier])

        assert result.center_results[Center.FROZEN] == [earlier, later]
        assert sort_key(earlier) == sort_key(later)

    def test_lines_bucketed_by_center(self):
        stage = AggregationStage(load_rules())
        frozen = make_line(1)
        busan = make_line(2, center=Center.BUSAN)

        result = stage.process([frozen, busan])

        assert result.center_results[Center.FROZEN] == [frozen]
        assert result.center_results[Center.BUSAN] == [busan]
        assert result.center_results[Center.GAMCHEON] == []
        assert set(result.center_results) == set(Center)


class TestAggregationIntegrity:
    """Каждая строка ровно в одном центре."""

    def test_duplicated_line_rejected(self):
        stage = AggregationStage(load_rules())
        line = make_line(1)
        twin = make_line(1, center=Center.BUSAN)

        with pytest.raises(IntegrityViolationError):
            stage.process([line, twin])

    def test_unclassified_line_rejected(self):
        stage = AggregationStage(load_rules())

        with pytest.raises(IntegrityViolationError):
            stage.process([make_line(1, center=None)])


class TestAggregationSupplements:
    """Политики, коробки, внешняя отгрузка, отчёт заказов."""

    def test_policy_applied_per_center(self):
        data_codes = {"BUSAN_COST": "3100", "BUSAN_SIZE": "소", "BUSAN_COUNT": "2"}
        with open(DEFAULT_RULES_FILE, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
        data["policies"]["codes"].update(data_codes)
        stage = AggregationStage(RuleSet.from_dict(data))
        busan = make_line(1, center=Center.BUSAN)
        frozen = make_line(2)

        stage.process([busan, frozen])

        assert (busan.shipping_cost, busan.box_size, busan.print_count) == (3100, "소", 2)
        assert (frozen.shipping_cost, frozen.box_size, frozen.print_count) == (2150, "극소", 1)

    def test_boxed_prefix_is_idempotent(self):
        stage = AggregationStage(load_rules())
        boxed = make_line(1, item_name="만두 박스", packing_kind=PackingKind.BOXED, consolidation_class=None)

        stage.process([boxed])
        stage.process([boxed])

        assert boxed.item_name == "▨▧▦ 만두 박스"

    def test_external_shipment_split(self):
        rules = load_rules(aggregation={
            "external_shipment": {"center": "busan", "item_codes": ["EX1"]},
        })
        stage = AggregationStage(rules)
        external = make_line(1, center=Center.BUSAN, item_code="EX1")
        regular = make_line(2, center=Center.BUSAN)

        result = stage.process([external, regular])

        assert result.external == [external]
        assert result.center_results[Center.BUSAN] == [regular]
        assert external not in result.final_lines

    def test_order_info_skips_placeholders(self):
        stage = AggregationStage(load_rules())
        real = make_line(1, center=Center.BUSAN)
        placeholder = make_line(
            1, center=Center.BUSAN, is_placeholder=True, placeholder_seq=1,
            consolidation_class=ConsolidationClass.EXTRA,
        )
        placeholder.line_id = "1.0+1"

        result = stage.process([real, placeholder])

        assert len(result.order_info) == 1
        assert result.order_info[0]["warehouse"] == "부산창고"
        assert result.center_results[Center.BUSAN] == [real, placeholder]
