"""
Unit-тесты для Stage 3: Substitution.

ЦКП: Виртуальный код → реальные единицы, деньги только у primary.
"""

import yaml

from src.invoicing.domain.models import Center, OrderLine
from src.invoicing.rules.rule_loader import DEFAULT_RULES_FILE, RuleSet
from src.invoicing.s3_substitution import SubstitutionStage


SET_RULE = {
    "source_code": "SET1",
    "alternates": [
        {"item_code": "A1", "item_name": "GS_떡갈비", "factor": 1},
        {"item_code": "A2", "item_name": "GS_동그랑땡", "factor": 2},
    ],
}


def load_rules(**sections) -> RuleSet:
    with open(DEFAULT_RULES_FILE, 'r', encoding='utf-8') as f:
        data = yaml.safe_load(f)
    data.update(sections)
    return RuleSet.from_dict(data)


def make_line(row_id: int = 1, **fields) -> OrderLine:
    values = dict(
        recipient_name="홍길동",
        address="부산 해운대구 1",
        item_code="SET1",
        item_name="GS_명절세트",
        quantity=3,
        payment_amount=30000.0,
        order_amount=33000.0,
        center=Center.GONGSAN,
        classification_key="GS_",
    )
    values.update(fields)
    return OrderLine(line_id=str(row_id), source_row_id=row_id, **values)


class TestSubstitutionExpansion:
    """Развёртывание по правилу."""

    def test_two_alternates_scale_quantity_and_keep_money_on_primary(self):
        stage = SubstitutionStage(load_rules(substitutions=[SET_RULE]))

        result = stage.process([make_line()])

        assert len(result.lines) == 2
        primary, secondary = result.lines
        assert (primary.item_code, primary.quantity) == ("A1", 3)
        assert (secondary.item_code, secondary.quantity) == ("A2", 6)
        assert primary.payment_amount == 30000.0
        assert primary.order_amount == 33000.0
        assert secondary.payment_amount == 0.0
        assert secondary.order_amount == 0.0

    def test_money_is_conserved(self):
        stage = SubstitutionStage(load_rules(substitutions=[SET_RULE]))
        original = make_line()

        result = stage.process([original.copy()])

        assert sum(l.payment_amount for l in result.lines) == original.payment_amount
        assert sum(l.order_amount for l in result.lines) == original.order_amount

    def test_generated_lines_keep_center_and_address(self):
        stage = SubstitutionStage(load_rules(substitutions=[SET_RULE]))

        result = stage.process([make_line()])

        assert {l.center for l in result.lines} == {Center.GONGSAN}
        assert {l.address for l in result.lines} == {"부산 해운대구 1"}
        assert [l.line_id for l in result.lines] == ["1.1", "1.2"]
        assert [l.sub_index for l in result.lines] == [1, 2]

    def test_defaults_applied_to_generated_lines(self):
        stage = SubstitutionStage(load_rules(substitutions=[SET_RULE]))

        result = stage.process([make_line()])

        assert all(l.shipping_cost == 2150 for l in result.lines)
        assert all(l.box_size == "극소" for l in result.lines)
        assert all(l.print_count == 1 for l in result.lines)

    def test_blank_alternate_name_dropped(self):
        rule = {
            "source_code": "SET1",
            "alternates": [
                {"item_code": "A1", "item_name": "떡갈비", "factor": 1},
                {"item_code": "A2", "item_name": " ", "factor": 1},
            ],
        }
        stage = SubstitutionStage(load_rules(substitutions=[rule]))

        result = stage.process([make_line()])

        assert [l.item_code for l in result.lines] == ["A1"]
        assert result.steps[1].affected_rows == 1


class TestSubstitutionPassThrough:
    """Строки без правила."""

    def test_line_without_rule_unchanged(self):
        stage = SubstitutionStage(load_rules(substitutions=[SET_RULE]))
        line = make_line(item_code="PLAIN")

        result = stage.process([line])

        assert result.lines == [line]
        assert line.quantity == 3

    def test_location_from_registry(self):
        rules = load_rules(
            substitutions=[SET_RULE],
            item_registry={"A2": {"parcel_units": 5, "location": "B-12"}},
        )
        stage = SubstitutionStage(rules)

        result = stage.process([make_line()])

        assert [l.location for l in result.lines] == ["", "B-12"]
