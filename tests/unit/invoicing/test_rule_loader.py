"""
Unit-тесты для RuleSet (загрузка и валидация правил).

ЦКП: Ошибка в правилах обнаруживается при ЗАГРУЗКЕ и называет ключ.
"""

import copy

import pytest
import yaml

from src.invoicing.domain.exceptions import InvoicingConfigurationError
from src.invoicing.domain.models import Center
from src.invoicing.rules.rule_loader import DEFAULT_RULES_FILE, RuleSet


def default_rules_data() -> dict:
    with open(DEFAULT_RULES_FILE, 'r', encoding='utf-8') as f:
        return yaml.safe_load(f)


class TestRuleSetLoad:
    """Тесты загрузки YAML."""

    def test_default_rules_load(self):
        """Встроенный default_rules.yaml загружается без ошибок."""
        RuleSet._cache.clear()

        rules = RuleSet.load()

        assert set(rules.centers) == set(Center)
        assert rules.classification.default_center == Center.FROZEN
        assert rules.source_file == "default_rules.yaml"

    def test_load_is_cached(self):
        RuleSet._cache.clear()

        assert RuleSet.load() is RuleSet.load()

    def test_missing_file_is_configuration_error(self, tmp_path):
        with pytest.raises(InvoicingConfigurationError) as exc_info:
            RuleSet.load(tmp_path / "absent.yaml")

        assert "absent.yaml" in exc_info.value.key

    def test_broken_yaml_is_configuration_error(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("centers: [unclosed", encoding="utf-8")

        with pytest.raises(InvoicingConfigurationError):
            RuleSet.load(path)

    def test_load_from_custom_file(self, tmp_path):
        data = default_rules_data()
        data["consolidation"] = {"default_parcel_units": 4}
        path = tmp_path / "custom.yaml"
        path.write_text(yaml.safe_dump(data, allow_unicode=True), encoding="utf-8")

        rules = RuleSet.load(path)

        assert rules.parcel_units_for("unknown") == 4

    def test_unquoted_numeric_codes_load_as_strings(self, tmp_path):
        """Коды и политики без кавычек в YAML (7710, 2150) приводятся к строкам."""
        data = default_rules_data()
        data["substitutions"] = [{
            "source_code": 7710,
            "alternates": [{"item_code": 7711, "item_name": "떡갈비", "factor": 1}],
        }]
        data["item_registry"] = {7711: {"parcel_units": 5}}
        data["normalization"]["star_item_codes"] = [7710, 7720]
        data["priority"]["talkdeal_rules"] = [
            {"item_code": 8801, "marketplace": "카카오", "required_codes": [8802]},
        ]
        data["overflow"] = [{
            "name": "gamcheon-special",
            "source_center": "frozen",
            "target_center": "gamcheon",
            "name_prefix": "GC_",
            "items": [{"item_code": 9901, "threshold": 3, "secondary_codes": [9909]}],
        }]
        data["aggregation"]["external_shipment"] = {"center": "busan", "item_codes": [5501]}
        data["policies"]["codes"]["BUSAN_COST"] = 3100
        path = tmp_path / "numeric.yaml"
        path.write_text(yaml.safe_dump(data, allow_unicode=True), encoding="utf-8")
        assert "source_code: 7710" in path.read_text(encoding="utf-8")

        rules = RuleSet.load(path)

        assert rules.substitutions["7710"].alternates[0].item_code == "7711"
        assert rules.parcel_units_for("7711") == 5
        assert rules.normalization.star_item_codes == ["7710", "7720"]
        assert rules.priority.talkdeal_rules[0].required_codes == ["8802"]
        assert rules.overflow[0].items[0].item_code == "9901"
        assert rules.overflow[0].items[0].secondary_codes == ["9909"]
        assert rules.aggregation.external_shipment.item_codes == ["5501"]
        assert rules.center_policy(Center.BUSAN).shipping_cost == 3100


class TestRuleSetValidation:
    """Тесты фатальных ошибок конфигурации."""

    def test_missing_policy_value_names_key(self):
        """Отсутствие <PREFIX>_COST: фатальная ошибка с именем ключа."""
        data = default_rules_data()
        del data["policies"]["codes"]["BUSAN_COST"]

        with pytest.raises(InvoicingConfigurationError) as exc_info:
            RuleSet.from_dict(data)

        assert exc_info.value.key == "BUSAN_COST"
        assert "BUSAN_COST" in str(exc_info.value)

    def test_blank_policy_value_is_missing(self):
        data = default_rules_data()
        data["policies"]["codes"]["SEOUL_FROZEN_COUNT"] = "  "

        with pytest.raises(InvoicingConfigurationError) as exc_info:
            RuleSet.from_dict(data)

        assert exc_info.value.key == "SEOUL_FROZEN_COUNT"

    def test_unknown_center_name(self):
        data = default_rules_data()
        data["centers"]["busann"] = {"label": "x", "policy_prefix": "X"}

        with pytest.raises(InvoicingConfigurationError) as exc_info:
            RuleSet.from_dict(data)

        assert exc_info.value.key == "centers.busann"

    def test_missing_center_description(self):
        data = default_rules_data()
        del data["centers"]["gamcheon"]

        with pytest.raises(InvoicingConfigurationError) as exc_info:
            RuleSet.from_dict(data)

        assert exc_info.value.key == "centers.gamcheon"

    def test_unknown_center_in_prefix_table(self):
        data = default_rules_data()
        data["classification"]["prefixes"]["ZZ_"] = "nowhere"

        with pytest.raises(InvoicingConfigurationError) as exc_info:
            RuleSet.from_dict(data)

        assert exc_info.value.key.startswith("classification.prefixes")

    def test_prefix_must_be_three_chars(self):
        data = default_rules_data()
        data["classification"]["prefixes"]["GR"] = "consignment"

        with pytest.raises(InvoicingConfigurationError):
            RuleSet.from_dict(data)

    def test_missing_required_section(self):
        data = default_rules_data()
        del data["policies"]

        with pytest.raises(InvoicingConfigurationError) as exc_info:
            RuleSet.from_dict(data)

        assert exc_info.value.key == "policies"

    def test_substitution_with_five_alternates_rejected(self):
        data = default_rules_data()
        data["substitutions"] = [{
            "source_code": "V1",
            "alternates": [{"item_code": f"R{i}", "item_name": "x", "factor": 1} for i in range(5)],
        }]

        with pytest.raises(InvoicingConfigurationError):
            RuleSet.from_dict(data)

    def test_duplicate_substitution_rejected(self):
        data = default_rules_data()
        rule = {"source_code": "V1", "alternates": [{"item_code": "R1", "item_name": "x", "factor": 1}]}
        data["substitutions"] = [rule, copy.deepcopy(rule)]

        with pytest.raises(InvoicingConfigurationError) as exc_info:
            RuleSet.from_dict(data)

        assert exc_info.value.key == "substitutions.V1"

    def test_overflow_same_source_and_target_rejected(self):
        data = default_rules_data()
        data["overflow"] = [{
            "name": "loop",
            "source_center": "busan",
            "target_center": "busan",
            "name_prefix": "BS_",
            "items": [{"item_code": "1", "threshold": 3}],
        }]

        with pytest.raises(InvoicingConfigurationError):
            RuleSet.from_dict(data)

    def test_column_mapping_to_unknown_field_rejected(self):
        data = default_rules_data()
        data["column_mapping"]["columns"]["비고"] = "remarks"

        with pytest.raises(InvoicingConfigurationError):
            RuleSet.from_dict(data)

    def test_message_table_without_default_row_rejected(self):
        data = default_rules_data()
        data["messages"]["tables"]["busan"] = {"쿠팡": {"msg1": "x"}}

        with pytest.raises(InvoicingConfigurationError):
            RuleSet.from_dict(data)


class TestRuleSetLookups:
    """Тесты lookup-методов."""

    def test_center_policy_values(self):
        data = default_rules_data()
        data["policies"]["codes"]["BUSAN_COST"] = "3000"
        data["policies"]["codes"]["BUSAN_SIZE"] = "소"
        data["policies"]["codes"]["BUSAN_COUNT"] = "2"

        policy = RuleSet.from_dict(data).center_policy(Center.BUSAN)

        assert policy.shipping_cost == 3000
        assert policy.box_size == "소"
        assert policy.print_count == 2

    def test_unknown_prefix_falls_back_to_default(self):
        rules = RuleSet.from_dict(default_rules_data())

        assert rules.center_for_prefix("XYZ") == Center.FROZEN
        assert rules.center_for_prefix("BS_") == Center.BUSAN

    def test_parcel_units_defaults(self):
        """Пустое, нулевое и нечисловое значение 택배수량 → default."""
        data = default_rules_data()
        data["item_registry"] = {
            "A": {"parcel_units": 4, "location": "L1"},
            "B": {"parcel_units": 0},
            "C": {"parcel_units": "abc"},
            "D": {"parcel_units": "6"},
        }
        rules = RuleSet.from_dict(data)

        assert rules.parcel_units_for("A") == 4
        assert rules.parcel_units_for("B") == 10
        assert rules.parcel_units_for("C") == 10
        assert rules.parcel_units_for("D") == 6
        assert rules.parcel_units_for("missing") == 10
        assert rules.location_for("A") == "L1"
        assert rules.location_for("missing") == ""

    def test_messages_fall_back_to_default_marketplace(self):
        data = default_rules_data()
        data["messages"]["tables"]["busan"]["쿠팡"] = {"msg1": "쿠팡 전용"}
        rules = RuleSet.from_dict(data)

        assert rules.messages_for(Center.BUSAN, "쿠팡").msg1 == "쿠팡 전용"
        assert rules.messages_for(Center.BUSAN, "11번가").msg1 == "부산창고 출고"
        assert rules.messages_for(Center.GONGSAN, "쿠팡").msg1 == "냉동식품입니다"
