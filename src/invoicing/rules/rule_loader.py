"""
Rule Loader для правил движка Invoicing.

ЦКП: Загрузка единой модели RuleSet из YAML.

Архитектурный принцип:
- Единая модель RuleSet для всех стадий
- Каждая секция YAML валидируется pydantic-контрактом при ЗАГРУЗКЕ
- Ошибка в правилах = InvoicingConfigurationError с конкретным ключом,
  до любых изменений данных
- 0 хардкода префиксов/центров/политик в коде стадий
"""

import yaml
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, ClassVar, Dict, List, Optional, Union

from loguru import logger
from pydantic import ValidationError

from src.domain.contracts import (
    AggregationConfig,
    CenterConfig,
    ClassificationConfig,
    ColumnMappingConfig,
    ConsolidationConfig,
    ItemRegistryEntry,
    MessageRow,
    MessagesConfig,
    NormalizationConfig,
    OverflowRule,
    PolicyConfig,
    PriorityConfig,
    RegionalOverrideRule,
    SubstitutionDefaults,
    SubstitutionRule,
)
from ..domain.exceptions import InvoicingConfigurationError
from ..domain.models import Center


DEFAULT_RULES_FILE = Path(__file__).parent / "default_rules.yaml"

REQUIRED_SECTIONS = ("centers", "classification", "policies")

# Суффиксы обязательных кодов политики: <PREFIX>_COST и т.д.
POLICY_SUFFIXES = ("COST", "SIZE", "COUNT")


@dataclass
class CenterPolicy:
    """Политика доставки центра (стоимость, размер коробки, копии печати)."""
    shipping_cost: int
    box_size: str
    print_count: int

    def to_dict(self) -> dict:
        return {
            "shipping_cost": self.shipping_cost,
            "box_size": self.box_size,
            "print_count": self.print_count,
        }


@dataclass
class RuleSet:
    """
    Полный набор правил прогона.

    Содержит все данные для всех стадий пайплайна:
    - centers / classification / regional_overrides: Stage 2
    - normalization: Stage 1
    - messages / priority: Stage 2 (шаблоны и метки)
    - item_registry / substitutions: Stage 3-4
    - overflow: Stage 5
    - aggregation / policies: Stage 6
    """
    centers: Dict[Center, CenterConfig]
    classification: ClassificationConfig
    policies: PolicyConfig
    regional_overrides: List[RegionalOverrideRule] = field(default_factory=list)
    normalization: NormalizationConfig = field(default_factory=NormalizationConfig)
    messages: MessagesConfig = field(default_factory=MessagesConfig)
    priority: PriorityConfig = field(default_factory=PriorityConfig)
    item_registry: Dict[str, ItemRegistryEntry] = field(default_factory=dict)
    substitutions: Dict[str, SubstitutionRule] = field(default_factory=dict)
    substitution_defaults: SubstitutionDefaults = field(default_factory=SubstitutionDefaults)
    consolidation: ConsolidationConfig = field(default_factory=ConsolidationConfig)
    overflow: List[OverflowRule] = field(default_factory=list)
    aggregation: AggregationConfig = field(default_factory=AggregationConfig)
    column_mapping: ColumnMappingConfig = field(default_factory=ColumnMappingConfig)

    source_file: Optional[str] = None
    _cache: ClassVar[Dict[str, "RuleSet"]] = {}

    @classmethod
    def load(cls, path: Optional[Union[str, Path]] = None) -> "RuleSet":
        """
        Загружает правила из YAML (с кешем по пути).

        Raises:
            InvoicingConfigurationError: файл не найден, YAML битый или
                секция не проходит контракт
        """
        rules_path = Path(path) if path else DEFAULT_RULES_FILE
        cache_key = str(rules_path.resolve())
        if cache_key in cls._cache:
            return cls._cache[cache_key]

        if not rules_path.exists():
            raise InvoicingConfigurationError(
                f"Файл правил не найден: {rules_path}",
                key=str(rules_path),
                component="RuleSet",
            )

        try:
            with open(rules_path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise InvoicingConfigurationError(
                f"Не удалось разобрать YAML: {rules_path}",
                key=str(rules_path),
                component="RuleSet",
                original_error=e,
            )

        rule_set = cls.from_dict(data or {}, source=rules_path.name)
        cls._cache[cache_key] = rule_set

        logger.debug(
            f"[RuleSet] Загружены правила {rules_path.name}: "
            f"{len(rule_set.classification.prefixes)} префиксов, "
            f"{len(rule_set.substitutions)} замен, "
            f"{len(rule_set.overflow)} overflow"
        )
        return rule_set

    @classmethod
    def from_dict(cls, data: Dict[str, Any], source: str = "<dict>") -> "RuleSet":
        """Собирает RuleSet из словаря (секции YAML) с валидацией."""
        for section in REQUIRED_SECTIONS:
            if section not in data or data[section] is None:
                raise InvoicingConfigurationError(
                    f"Отсутствует обязательная секция '{section}' ({source})",
                    key=section,
                    component="RuleSet",
                )

        centers: Dict[Center, CenterConfig] = {}
        for name, value in data["centers"].items():
            if name not in Center._value2member_map_:
                raise InvoicingConfigurationError(
                    f"Неизвестный центр '{name}'",
                    key=f"centers.{name}",
                    component="RuleSet",
                )
            centers[Center(name)] = cls._parse(f"centers.{name}", CenterConfig, value)
        missing_centers = [c.value for c in Center if c not in centers]
        if missing_centers:
            raise InvoicingConfigurationError(
                f"Нет описания центров: {missing_centers}",
                key=f"centers.{missing_centers[0]}",
                component="RuleSet",
            )

        substitutions: Dict[str, SubstitutionRule] = {}
        for raw in data.get("substitutions") or []:
            rule = cls._parse("substitutions", SubstitutionRule, raw)
            if rule.source_code in substitutions:
                raise InvoicingConfigurationError(
                    f"Дублирующееся правило замены для {rule.source_code}",
                    key=f"substitutions.{rule.source_code}",
                    component="RuleSet",
                )
            substitutions[rule.source_code] = rule

        rule_set = cls(
            centers=centers,
            classification=cls._parse("classification", ClassificationConfig, data["classification"]),
            policies=cls._parse("policies", PolicyConfig, data["policies"]),
            regional_overrides=[
                cls._parse("regional_overrides", RegionalOverrideRule, raw)
                for raw in data.get("regional_overrides") or []
            ],
            normalization=cls._parse("normalization", NormalizationConfig, data.get("normalization") or {}),
            messages=cls._parse("messages", MessagesConfig, data.get("messages") or {}),
            priority=cls._parse("priority", PriorityConfig, data.get("priority") or {}),
            item_registry={
                str(code): cls._parse(f"item_registry.{code}", ItemRegistryEntry, raw or {})
                for code, raw in (data.get("item_registry") or {}).items()
            },
            substitutions=substitutions,
            substitution_defaults=cls._parse(
                "substitution_defaults", SubstitutionDefaults, data.get("substitution_defaults") or {}
            ),
            consolidation=cls._parse("consolidation", ConsolidationConfig, data.get("consolidation") or {}),
            overflow=[cls._parse("overflow", OverflowRule, raw) for raw in data.get("overflow") or []],
            aggregation=cls._parse("aggregation", AggregationConfig, data.get("aggregation") or {}),
            column_mapping=cls._parse("column_mapping", ColumnMappingConfig, data.get("column_mapping") or {}),
            source_file=source,
        )
        rule_set.validate_policies()
        return rule_set

    @staticmethod
    def _parse(section: str, model: type, raw: Any) -> Any:
        """Валидирует секцию контрактом, ошибка → InvoicingConfigurationError."""
        try:
            return model.model_validate(raw)
        except ValidationError as e:
            first = e.errors()[0] if e.errors() else {}
            loc = ".".join(str(p) for p in first.get("loc", ()))
            key = f"{section}.{loc}" if loc else section
            raise InvoicingConfigurationError(
                f"Секция '{section}' не прошла контракт {model.__name__}: {first.get('msg', e)}",
                key=key,
                component="RuleSet",
                original_error=e,
            )

    # === Политики ===

    def validate_policies(self) -> None:
        """
        Проверяет наличие <PREFIX>_COST/_SIZE/_COUNT для каждого центра.

        Raises:
            InvoicingConfigurationError: с ключом отсутствующего кода
        """
        for center in Center:
            self.center_policy(center)

    def policy_value(self, code: str) -> str:
        value = self.policies.codes.get(code)
        if value is None or str(value).strip() == "":
            raise InvoicingConfigurationError(
                f"Отсутствует значение политики {self.policies.group}.{code}",
                key=code,
                component="RuleSet",
            )
        return str(value).strip()

    def center_policy(self, center: Center) -> CenterPolicy:
        prefix = self.centers[center].policy_prefix
        cost_key, size_key, count_key = (f"{prefix}_{s}" for s in POLICY_SUFFIXES)
        cost = self.policy_value(cost_key)
        size = self.policy_value(size_key)
        count = self.policy_value(count_key)
        try:
            return CenterPolicy(shipping_cost=int(cost), box_size=size, print_count=int(count))
        except ValueError as e:
            raise InvoicingConfigurationError(
                f"Нечисловое значение политики для {center.value}",
                key=cost_key if not cost.isdigit() else count_key,
                component="RuleSet",
                original_error=e,
            )

    # === Lookups ===

    def center_for_prefix(self, classification_key: str) -> Center:
        """Префикс → центр (тотальная функция, дефолт default_center)."""
        return self.classification.prefixes.get(classification_key, self.classification.default_center)

    def warehouse_label(self, center: Center) -> str:
        return self.centers[center].label

    def messages_for(self, center: Center, marketplace: str) -> MessageRow:
        """Строка сообщений центра по маркетплейсу, fallback на '나머지'."""
        if not self.messages.tables:
            return MessageRow()
        table_name = self.messages.center_tables.get(center, self.messages.default_table)
        table = self.messages.tables[table_name]
        return table.get(marketplace) or table[self.messages.default_marketplace]

    def registered_parcel_units(self, item_code: str) -> Optional[int]:
        """택배수량 из реестра или None (нет записи, пусто, 0, не число)."""
        entry = self.item_registry.get(item_code)
        if entry is None or entry.parcel_units is None:
            return None
        try:
            units = int(float(entry.parcel_units))
        except (TypeError, ValueError):
            return None
        return units if units > 0 else None

    def parcel_units_for(self, item_code: str) -> int:
        """
        Единиц товара в одной посылке.

        Пустое, нулевое или нечисловое значение → default_parcel_units.
        """
        units = self.registered_parcel_units(item_code)
        return units if units is not None else self.consolidation.default_parcel_units

    def location_for(self, item_code: str) -> str:
        entry = self.item_registry.get(item_code)
        return entry.location if entry else ""
