"""
Unit-тесты для Stage 5: Overflow Split.

ЦКП: Перенаправление по порогу, идемпотентный префикс, anti-stranding.
"""

import pytest
import yaml

from src.invoicing.domain.exceptions import InvoicingConfigurationError
from src.invoicing.domain.models import Center, ConsolidationClass, OrderLine
from src.invoicing.rules.rule_loader import DEFAULT_RULES_FILE, RuleSet
from src.invoicing.s5_overflow import OverflowSplitStage, apply_prefix


GAMCHEON_RULE = {
    "name": "gamcheon-special",
    "source_center": "frozen",
    "target_center": "gamcheon",
    "name_prefix": "GC_",
    "items": [{"item_code": "F1", "threshold": 3, "secondary_codes": ["F9"]}],
}


def load_rules(**sections) -> RuleSet:
    with open(DEFAULT_RULES_FILE, 'r', encoding='utf-8') as f:
        data = yaml.safe_load(f)
    data.update(sections)
    return RuleSet.from_dict(data)


def make_line(row_id: int = 1, **fields) -> OrderLine:
    values = dict(
        recipient_name="홍길동",
        address="부산 사하구 1",
        item_code="F1",
        item_name="냉동새우",
        quantity=1,
        center=Center.FROZEN,
        classification_key="냉동새",
    )
    values.update(fields)
    return OrderLine(line_id=str(row_id), source_row_id=row_id, **values)


class TestApplyPrefix:
    """Идемпотентный префикс."""

    def test_prefix_added_once(self):
        assert apply_prefix("새우", "GC_") == "GC_새우"
        assert apply_prefix("GC_새우", "GC_") == "GC_새우"
        assert apply_prefix("GC_GC_새우", "GC_") == "GC_새우"
        assert apply_prefix(" 새우 ", "GC_") == "GC_새우"


class TestOverflowReroute:
    """Перенаправление строк."""

    def test_single_candidate_rerouted_and_reclassified(self):
        stage = OverflowSplitStage(load_rules(overflow=[GAMCHEON_RULE]))
        line = make_line()

        stage.process([line])

        assert line.item_name == "GC_냉동새우"
        assert line.center == Center.GAMCHEON
        assert line.classification_key == "GC_"
        assert line.consolidation_class == ConsolidationClass.SINGLE

    def test_combined_below_threshold_stays(self):
        stage = OverflowSplitStage(load_rules(overflow=[GAMCHEON_RULE]))
        small = make_line(1, quantity=1)
        large = make_line(2, quantity=3)

        stage.process([small, large])

        assert small.center == Center.FROZEN
        assert small.consolidation_class == ConsolidationClass.COMBINED
        assert small.item_name == "냉동새우"
        assert large.center == Center.GAMCHEON

    def test_other_centers_untouched(self):
        stage = OverflowSplitStage(load_rules(overflow=[GAMCHEON_RULE]))
        busan = make_line(center=Center.BUSAN, item_name="BS_새우")

        stage.process([busan])

        assert busan.center == Center.BUSAN
        assert busan.item_name == "BS_새우"

    def test_rerun_is_idempotent(self):
        stage = OverflowSplitStage(load_rules(overflow=[GAMCHEON_RULE]))
        line = make_line()

        stage.process([line])
        stage.process([line])

        assert line.item_name == "GC_냉동새우"
        assert line.center == Center.GAMCHEON

    def test_no_rules_is_pass_through(self):
        stage = OverflowSplitStage(load_rules())
        line = make_line()

        result = stage.process([line])

        assert result.lines == [line]
        assert line.center == Center.FROZEN


class TestAntiStranding:
    """Secondary-строка не остаётся одна на адресе."""

    def test_secondary_moves_with_rerouted_line(self):
        stage = OverflowSplitStage(load_rules(overflow=[GAMCHEON_RULE]))
        main = make_line(1)
        secondary = make_line(2, item_code="F9", item_name="아이스팩")

        stage.process([main, secondary])

        assert main.center == Center.GAMCHEON
        assert secondary.center == Center.GAMCHEON
        assert secondary.item_name == "GC_아이스팩"

    def test_secondary_stays_when_address_has_other_lines(self):
        stage = OverflowSplitStage(load_rules(overflow=[GAMCHEON_RULE]))
        main = make_line(1)
        secondary = make_line(2, item_code="F9", item_name="아이스팩")
        other = make_line(3, item_code="X1", item_name="만두")

        stage.process([main, secondary, other])

        assert main.center == Center.GAMCHEON
        assert secondary.center == Center.FROZEN
        assert other.center == Center.FROZEN

    def test_unrelated_companion_stays(self):
        stage = OverflowSplitStage(load_rules(overflow=[GAMCHEON_RULE]))
        main = make_line(1)
        other = make_line(2, item_code="X1", item_name="만두")

        stage.process([main, other])

        assert other.center == Center.FROZEN


class TestOverflowConfiguration:
    """Проверка правил при инициализации."""

    def test_prefix_must_classify_to_target(self):
        bad = dict(GAMCHEON_RULE, name_prefix="BS_")

        with pytest.raises(InvoicingConfigurationError) as exc_info:
            OverflowSplitStage(load_rules(overflow=[bad]))

        assert exc_info.value.key == "overflow.gamcheon-special.name_prefix"
