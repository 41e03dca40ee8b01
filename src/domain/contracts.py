"""
Валидационные контракты (contracts) для правил движка Invoicing.

Каждый контракт гарантирует:
  1. Правильный тип данных (type safety)
  2. Значения в допустимых диапазонах (data integrity)
  3. Обязательные поля (completeness)

Без этих контрактов оператор может загрузить невалидные правила:
  - префикс классификации "GR" (должно быть ровно 3 символа)
  - центр "busann" (неизвестный центр)
  - замена с 5 альтернативами (максимум 4)
  - overflow порог = 0

Ошибка в правилах = ошибка конфигурации при ЗАГРУЗКЕ, а не при обработке строк.
Все модели используют Pydantic v2 с Field validators.

ВАЖНО: Коды товаров и значения политик в YAML часто пишутся без кавычек
(source_code: 7710, BUSAN_COST: 2150). Все контракты приводят числа к
строкам (coerce_numbers_to_str), как это делает item_registry.
"""

from typing import List, Optional, Dict, Any, Union
from pydantic import BaseModel, Field, field_validator, model_validator, ConfigDict

from contracts.ingestion_dto import RawOrderRow
from src.invoicing.domain.models import Center


# ============================================================================
# CENTERS
# ============================================================================

class CenterConfig(BaseModel):
    """Описание центра: метка склада и префикс кодов политики."""

    model_config = ConfigDict(frozen=True, coerce_numbers_to_str=True)

    label: str = Field(..., min_length=1, description="Название склада (본사창고, 부산창고, ...)")
    policy_prefix: str = Field(..., min_length=1, description="Префикс кодов политики (FROZEN → FROZEN_COST)")


# ============================================================================
# STAGE 1: NORMALIZATION
# ============================================================================

class NormalizationConfig(BaseModel):
    """Параметры нормализации полей."""

    model_config = ConfigDict(frozen=True, coerce_numbers_to_str=True)

    note_markers: List[str] = Field(default_factory=lambda: ["*"], description="Зарезервированные маркеры в сообщении доставки")
    address_strip_chars: List[str] = Field(default_factory=lambda: ["·"], description="Символы, удаляемые из адреса")
    nan_recipient: str = Field("nan", description="Значение получателя, считающееся пустым")
    nan_recipient_replacement: str = Field("난난", description="Замена для nan-получателя")
    payment_zero_marketplaces: List[str] = Field(default_factory=list, description="Маркетплейсы с кодом оплаты '0'")
    star_item_codes: List[str] = Field(default_factory=list, description="Коды товаров, помечающие адрес '*'")
    dry_ice_name: str = Field("드라이아이스 추가", description="Название строки сухого льда")
    boxed_name_marker: str = Field("박스", description="Маркер готовой коробки в названии")


# ============================================================================
# STAGE 2: CLASSIFICATION
# ============================================================================

class ClassificationConfig(BaseModel):
    """Таблица префикс → центр с явным дефолтом."""

    model_config = ConfigDict(frozen=True, coerce_numbers_to_str=True)

    prefixes: Dict[str, Center] = Field(..., description="3-символьный префикс названия → центр")
    default_center: Center = Field(Center.FROZEN, description="Центр для неизвестных префиксов")

    @field_validator("prefixes")
    @classmethod
    def prefixes_three_chars(cls, v: Dict[str, Center]) -> Dict[str, Center]:
        """Префикс должен быть ровно 3 символа (сравнение case-sensitive)."""
        for prefix in v:
            if len(prefix) != 3:
                raise ValueError(f"Префикс должен быть 3 символа: '{prefix}'")
        return v


class RegionalOverrideRule(BaseModel):
    """Переопределение центра по региону адреса и маркетплейсу."""

    model_config = ConfigDict(frozen=True, coerce_numbers_to_str=True)

    source_center: Center
    target_center: Center
    region_prefix: str = Field(..., min_length=1, max_length=2, description="Первые 2 символа региона (서울)")
    marketplaces: List[str] = Field(..., min_length=1)


class MessageRow(BaseModel):
    """Шаблоны msg1..msg6 для этикетки."""

    model_config = ConfigDict(frozen=True, coerce_numbers_to_str=True)

    msg1: str = ""
    msg2: str = ""
    msg3: str = ""
    msg4: str = ""
    msg5: str = ""
    msg6: str = ""


class MessagesConfig(BaseModel):
    """
    Таблицы сообщений.

    tables: имя таблицы → маркетплейс → MessageRow.
    Каждая таблица ОБЯЗАНА содержать строку default_marketplace ('나머지').
    """

    model_config = ConfigDict(frozen=True, coerce_numbers_to_str=True)

    default_marketplace: str = "나머지"
    default_table: str = "default"
    center_tables: Dict[Center, str] = Field(default_factory=dict, description="Центр → своя таблица сообщений")
    tables: Dict[str, Dict[str, MessageRow]] = Field(default_factory=dict)

    @model_validator(mode="after")
    def tables_have_default_row(self) -> "MessagesConfig":
        if self.tables and self.default_table not in self.tables:
            raise ValueError(f"Нет таблицы сообщений '{self.default_table}'")
        for table_name, rows in self.tables.items():
            if self.default_marketplace not in rows:
                raise ValueError(
                    f"Таблица сообщений '{table_name}' без строки '{self.default_marketplace}'"
                )
        for center, table_name in self.center_tables.items():
            if table_name not in self.tables:
                raise ValueError(f"Центр {center.value} ссылается на неизвестную таблицу '{table_name}'")
        return self


class TalkDealRule(BaseModel):
    """Товар, недоступный для 톡딜 без сопутствующих товаров."""

    model_config = ConfigDict(frozen=True, coerce_numbers_to_str=True)

    item_code: str = Field(..., min_length=1)
    marketplace: str = Field(..., min_length=1)
    required_codes: List[str] = Field(default_factory=list, max_length=3)


class PriorityConfig(BaseModel):
    """Правила приоритетных меток (별표1, 별표2)."""

    model_config = ConfigDict(frozen=True, coerce_numbers_to_str=True)

    talkdeal_rules: List[TalkDealRule] = Field(default_factory=list)
    talkdeal_flag: str = "***"
    address_keywords: List[str] = Field(default_factory=list, description="Ключевые слова адреса для 별표2")
    address_flag: str = "★"


# ============================================================================
# STAGE 3: SUBSTITUTION
# ============================================================================

class ItemRegistryEntry(BaseModel):
    """Запись реестра товаров (품목등록)."""

    model_config = ConfigDict(frozen=True, coerce_numbers_to_str=True)

    parcel_units: Optional[Union[int, str]] = Field(None, description="Единиц в одной посылке (택배수량)")
    location: str = Field("", description="Код локации (품목그룹2코드)")


class SubstitutionAlternate(BaseModel):
    """Один реальный товар в составе виртуального."""

    model_config = ConfigDict(frozen=True, coerce_numbers_to_str=True)

    item_code: str = Field(..., min_length=1)
    item_name: str = Field("", description="Название (пустое → строка отбрасывается)")
    factor: int = Field(..., gt=0, description="Единиц на единицу исходного товара")


class SubstitutionRule(BaseModel):
    """Виртуальный код → 1..4 альтернативы. Первая альтернатива является primary."""

    model_config = ConfigDict(frozen=True, coerce_numbers_to_str=True)

    source_code: str = Field(..., min_length=1)
    alternates: List[SubstitutionAlternate] = Field(..., min_length=1, max_length=4)


class SubstitutionDefaults(BaseModel):
    """Значения по умолчанию для сгенерированных строк."""

    model_config = ConfigDict(frozen=True, coerce_numbers_to_str=True)

    shipping_cost: int = Field(2150, ge=0)
    box_size: str = "극소"
    print_count: int = Field(1, ge=1)


# ============================================================================
# STAGE 4-5: CONSOLIDATION / OVERFLOW
# ============================================================================

class ConsolidationConfig(BaseModel):
    """Параметры консолидации."""

    model_config = ConfigDict(frozen=True, coerce_numbers_to_str=True)

    default_parcel_units: int = Field(10, gt=0, description="Дефолт для пустого/нулевого 택배수량")


class OverflowItem(BaseModel):
    """Товар overflow: порог количества и связанные вторичные товары."""

    model_config = ConfigDict(frozen=True, coerce_numbers_to_str=True)

    item_code: str = Field(..., min_length=1)
    threshold: int = Field(..., ge=1, description="Порог количества (>=)")
    secondary_codes: List[str] = Field(default_factory=list)


class OverflowRule(BaseModel):
    """Правило overflow-перенаправления."""

    model_config = ConfigDict(frozen=True, coerce_numbers_to_str=True)

    name: str = Field(..., min_length=1)
    source_center: Center
    target_center: Center
    name_prefix: str = Field(..., min_length=1, description="Префикс названия (идемпотентно)")
    items: List[OverflowItem] = Field(..., min_length=1)

    @model_validator(mode="after")
    def centers_differ(self) -> "OverflowRule":
        if self.source_center == self.target_center:
            raise ValueError(f"Overflow '{self.name}': source и target совпадают ({self.source_center.value})")
        return self


# ============================================================================
# STAGE 6: AGGREGATION
# ============================================================================

class ExternalShipmentConfig(BaseModel):
    """Внешняя отгрузка: строки центра с этими кодами уходят в отдельный набор."""

    model_config = ConfigDict(frozen=True, coerce_numbers_to_str=True)

    center: Center = Center.BUSAN
    item_codes: List[str] = Field(default_factory=list)


class AggregationConfig(BaseModel):
    """Параметры агрегации."""

    model_config = ConfigDict(frozen=True, coerce_numbers_to_str=True)

    boxed_name_prefix: str = "▨▧▦ "
    center_order: List[Center] = Field(default_factory=lambda: list(Center))
    external_shipment: ExternalShipmentConfig = Field(default_factory=ExternalShipmentConfig)


class PolicyConfig(BaseModel):
    """Политики доставки (CommonCode GroupCode='DELIVERY_POLICY')."""

    model_config = ConfigDict(frozen=True, coerce_numbers_to_str=True)

    group: str = "DELIVERY_POLICY"
    codes: Dict[str, str] = Field(default_factory=dict)


# ============================================================================
# INGESTION
# ============================================================================

class ColumnMappingConfig(BaseModel):
    """Явная таблица: внешний заголовок колонки → поле RawOrderRow."""

    model_config = ConfigDict(frozen=True, coerce_numbers_to_str=True)

    columns: Dict[str, str] = Field(default_factory=dict)

    @field_validator("columns")
    @classmethod
    def targets_are_row_fields(cls, v: Dict[str, str]) -> Dict[str, str]:
        unknown = sorted(set(v.values()) - set(RawOrderRow.model_fields))
        if unknown:
            raise ValueError(f"Неизвестные поля RawOrderRow: {unknown}")
        return v


# ============================================================================
# ERRORS & DIAGNOSTICS
# ============================================================================

class ContractValidationError(Exception):
    """Exception для нарушения контрактов (используется вместо Pydantic ValidationError)."""

    def __init__(self, stage_name: str, contract_name: str, errors: Union[List[Dict[str, Any]], List[Any]]) -> None:
        self.stage_name = stage_name
        self.contract_name = contract_name
        self.errors = errors

        error_messages = []
        for err in errors:
            if isinstance(err, dict):
                loc = ".".join(str(p) for p in err.get('loc', [])) or 'unknown'
                err_type = err.get('type', 'unknown')
                msg = err.get('msg', 'unknown error')
                error_messages.append(f"  {loc} ({err_type}): {msg}")
            else:
                error_messages.append(f"  {str(err)}")

        message = (
            f"❌ Contract violation in {stage_name} ({contract_name}):\n"
            + "\n".join(error_messages)
        )
        super().__init__(message)
