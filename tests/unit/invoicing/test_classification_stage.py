"""
Unit-тесты для Stage 2: Classification.

ЦКП: Каждая строка получает РОВНО ОДИН центр.
"""

import yaml

from src.invoicing.domain.models import Center, OrderLine
from src.invoicing.rules.rule_loader import DEFAULT_RULES_FILE, RuleSet
from src.invoicing.s2_classification import ClassificationStage, classification_key_of


def load_rules(**sections) -> RuleSet:
    with open(DEFAULT_RULES_FILE, 'r', encoding='utf-8') as f:
        data = yaml.safe_load(f)
    data.update(sections)
    return RuleSet.from_dict(data)


def make_line(row_id: int = 1, **fields) -> OrderLine:
    values = dict(
        recipient_name="홍길동",
        address="부산 해운대구 1",
        item_code="1001",
        item_name="냉동만두",
        quantity=1,
        marketplace="쿠팡",
    )
    values.update(fields)
    return OrderLine(line_id=str(row_id), source_row_id=row_id, **values)


class TestPrefixClassification:
    """Префикс названия → центр."""

    def test_classification_key_is_trimmed_prefix(self):
        assert classification_key_of("  BS_고등어") == "BS_"
        assert classification_key_of("만") == "만"

    def test_known_prefixes(self):
        stage = ClassificationStage(load_rules())
        lines = [
            make_line(1, item_name="BS_고등어"),
            make_line(2, item_name="GS_닭가슴살"),
            make_line(3, item_name="YC_사과"),
            make_line(4, item_name="GR_위탁상품"),
            make_line(5, item_name="GC_새우"),
        ]

        stage.process(lines)

        assert [l.center for l in lines] == [
            Center.BUSAN, Center.GONGSAN, Center.PRODUCE, Center.CONSIGNMENT, Center.GAMCHEON,
        ]

    def test_unmatched_prefix_goes_to_default_center(self):
        """Нет совпадения по префиксу → frozen."""
        stage = ClassificationStage(load_rules())
        line = make_line(item_name="냉동만두 1kg")

        stage.process([line])

        assert line.center == Center.FROZEN
        assert line.classification_key == "냉동만"

    def test_prefix_is_case_sensitive(self):
        stage = ClassificationStage(load_rules())
        line = make_line(item_name="bs_고등어")

        stage.process([line])

        assert line.center == Center.FROZEN

    def test_classification_is_total(self):
        stage = ClassificationStage(load_rules())
        names = ["", " ", "A", "BS", "BS_", "??? x", "GC_GC_새우", "★특가"]
        lines = [make_line(i, item_name=name) for i, name in enumerate(names, start=1)]

        stage.process(lines)

        assert all(isinstance(l.center, Center) for l in lines)


class TestRegionalOverrides:
    """Переопределения по региону и маркетплейсу."""

    def test_seoul_gongsan_override(self):
        stage = ClassificationStage(load_rules())
        line = make_line(item_name="GS_닭가슴살", address="서울 마포구 1", marketplace="Gfresh")

        result = stage.process([line])

        assert line.center == Center.SEOUL_GONGSAN
        assert result.steps[1].affected_rows == 1

    def test_override_requires_marketplace(self):
        stage = ClassificationStage(load_rules())
        line = make_line(item_name="GS_닭가슴살", address="서울 마포구 1", marketplace="쿠팡")

        stage.process([line])

        assert line.center == Center.GONGSAN

    def test_override_requires_region(self):
        stage = ClassificationStage(load_rules())
        line = make_line(item_name="냉동만두", address="경기 성남시 1", marketplace="Cafe24(신)")

        stage.process([line])

        assert line.center == Center.FROZEN


class TestMessagesAndFlags:
    """Шаблоны сообщений и приоритетные метки."""

    def test_messages_by_center(self):
        stage = ClassificationStage(load_rules())
        busan = make_line(1, item_name="BS_고등어")
        frozen = make_line(2)

        stage.process([busan, frozen])

        assert busan.msg1 == "부산창고 출고"
        assert frozen.msg1 == "냉동식품입니다"

    def test_address_keyword_flag(self):
        stage = ClassificationStage(load_rules())
        jeju = make_line(1, address="제주 제주시 1")
        other = make_line(2)

        stage.process([jeju, other])

        assert jeju.star2 == "★"
        assert other.star2 == ""

    def test_talkdeal_single_line_address_flagged(self):
        rules = load_rules(priority={
            "talkdeal_rules": [{"item_code": "T1", "marketplace": "카카오톡딜", "required_codes": ["R1"]}],
            "address_keywords": [],
        })
        stage = ClassificationStage(rules)
        line = make_line(item_code="T1", marketplace="카카오톡딜")

        stage.process([line])

        assert line.star1 == "***"

    def test_talkdeal_with_required_companion_not_flagged(self):
        rules = load_rules(priority={
            "talkdeal_rules": [{"item_code": "T1", "marketplace": "카카오톡딜", "required_codes": ["R1"]}],
        })
        stage = ClassificationStage(rules)
        lines = [make_line(1, item_code="T1", marketplace="카카오톡딜"), make_line(2, item_code="R1")]

        stage.process(lines)

        assert [l.star1 for l in lines] == ["", ""]

    def test_talkdeal_without_companion_flags_whole_address(self):
        rules = load_rules(priority={
            "talkdeal_rules": [{"item_code": "T1", "marketplace": "카카오톡딜", "required_codes": ["R1"]}],
        })
        stage = ClassificationStage(rules)
        lines = [
            make_line(1, item_code="T1", marketplace="카카오톡딜"),
            make_line(2, item_code="X9"),
            make_line(3, item_code="X9", address="다른 주소"),
        ]

        stage.process(lines)

        assert [l.star1 for l in lines] == ["***", "***", ""]
