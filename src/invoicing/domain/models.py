"""
Доменные модели Invoicing: OrderLine и перечисления.

ЦКП: Единая мутабельная строка заказа, которая проходит все стадии
пайплайна и сериализуется в плоскую запись для SQLite.

ВАЖНО: Center: tagged enum с явным дефолтом (FROZEN). Классификация
не может вернуть None.
"""

from dataclasses import dataclass, fields, replace
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from contracts.ingestion_dto import RawOrderRow

from .exceptions import IntegrityViolationError


# Sentinel значения для пустых полей и строк-заглушек доп. посылок
SENTINEL_ITEM_CODE = "0000"
SENTINEL_ITEM_NAME = "--"
PLACEHOLDER_NAME = "+++"
PLACEHOLDER_ORDER_ID = "1234567890"


class Center(str, Enum):
    """Центр отгрузки (склад назначения)."""
    CONSIGNMENT = "consignment"      # 위탁
    BUSAN = "busan"                  # 부산
    GONGSAN = "gongsan"              # 공산 (경기공산)
    PRODUCE = "produce"              # 청과
    GAMCHEON = "gamcheon"            # 감천
    FROZEN = "frozen"                # 냉동 (дефолт)
    SEOUL_GONGSAN = "seoul_gongsan"  # 서울공산
    SEOUL_FROZEN = "seoul_frozen"    # 서울냉동


class ConsolidationClass(str, Enum):
    """Класс консолидации строки."""
    SINGLE = "single"           # 단일
    COMBINED = "combined"       # 합포장 (промежуточный, из OverflowSplit)
    EXTRA = "extra"             # 추가
    ONE_PARCEL = "one-parcel"   # 1장


# Терминальные классы: после них строку нельзя переклассифицировать
TERMINAL_CLASSES = frozenset({ConsolidationClass.EXTRA, ConsolidationClass.ONE_PARCEL})


class PackingKind(str, Enum):
    """Способ упаковки: россыпь (консолидируется) или готовая коробка."""
    LOOSE = "loose"    # 낱개
    BOXED = "boxed"    # 박스


@dataclass
class OrderLine:
    """
    Одна позиция заказа.

    Исходные поля заполняются из RawOrderRow, производные
    (center, consolidation_class, parcel_*) выставляются стадиями.
    """
    line_id: str
    source_row_id: int
    sub_index: int = 0

    # Заказ
    order_id: str = ""
    marketplace_order_id: str = ""
    marketplace: str = ""
    order_status: str = ""
    collected_at: str = ""

    # Получатель
    recipient_name: str = ""
    phone1: str = ""
    phone2: str = ""
    postal_code: str = ""
    address: str = ""
    delivery_note: str = ""

    # Товар
    item_code: str = ""
    item_name: str = ""           # 송장명 (display name)
    option_name: str = ""
    quantity: int = 1

    # Деньги
    payment_amount: float = 0.0
    order_amount: float = 0.0
    payment_method: str = ""
    tax_category: str = ""

    # Шаблоны сообщений для этикетки
    msg1: str = ""
    msg2: str = ""
    msg3: str = ""
    msg4: str = ""
    msg5: str = ""
    msg6: str = ""

    # === Производные поля ===
    classification_key: str = ""
    center: Optional[Center] = None
    consolidation_class: Optional[ConsolidationClass] = None
    packing_kind: PackingKind = PackingKind.LOOSE
    parcel_units: int = 0
    parcel_factor: float = 0.0
    parcel_total: float = 0.0
    parcel_count: int = 0
    item_count: int = 0
    location: str = ""
    shipping_cost: int = 0
    box_size: str = ""
    print_count: int = 1
    star1: str = ""
    star2: str = ""
    is_placeholder: bool = False
    placeholder_seq: int = 0

    @property
    def ordering_key(self) -> Tuple[int, int, int]:
        """Стабильный порядок (id строки при загрузке)."""
        return (self.source_row_id, self.sub_index, self.placeholder_seq)

    @property
    def has_priority_flag(self) -> bool:
        return bool(self.star1.strip() or self.star2.strip())

    @property
    def group_key(self) -> Tuple[str, str]:
        return (self.address, self.recipient_name)

    @property
    def is_terminal(self) -> bool:
        return self.consolidation_class in TERMINAL_CLASSES

    @property
    def address_region(self) -> str:
        """Регион адреса: текст после последней ']', первые 2 символа."""
        tail = self.address.rsplit("]", 1)[-1].strip().lstrip("*").strip()
        return tail[:2]

    def classify(self, value: ConsolidationClass) -> None:
        """
        Устанавливает класс консолидации.

        Raises:
            IntegrityViolationError: строка уже в терминальном классе
        """
        if self.is_terminal and value != self.consolidation_class:
            raise IntegrityViolationError(
                f"Строка {self.line_id} уже в терминальном классе "
                f"{self.consolidation_class.value}, попытка → {value.value}",
                component="OrderLine",
            )
        self.consolidation_class = value

    @classmethod
    def from_raw(cls, row: RawOrderRow, row_id: int) -> "OrderLine":
        """Создаёт строку из ingestion-контракта (quantity=None сохраняется как 0)."""
        data = row.model_dump()
        data["quantity"] = row.quantity if row.quantity is not None else 0
        return cls(line_id=str(row_id), source_row_id=row_id, **data)

    def copy(self, **changes: Any) -> "OrderLine":
        return replace(self, **changes)

    def to_record(self) -> Dict[str, Any]:
        """Плоская запись для SQLite (enum → value, bool → int)."""
        record: Dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, Enum):
                value = value.value
            elif isinstance(value, bool):
                value = int(value)
            record[f.name] = value
        return record

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "OrderLine":
        data = {name: record[name] for name in ORDER_LINE_COLUMNS if name in record}
        if data.get("center"):
            data["center"] = Center(data["center"])
        else:
            data["center"] = None
        if data.get("consolidation_class"):
            data["consolidation_class"] = ConsolidationClass(data["consolidation_class"])
        else:
            data["consolidation_class"] = None
        if data.get("packing_kind"):
            data["packing_kind"] = PackingKind(data["packing_kind"])
        if "is_placeholder" in data:
            data["is_placeholder"] = bool(data["is_placeholder"])
        return cls(**data)


ORDER_LINE_COLUMNS: Tuple[str, ...] = tuple(f.name for f in fields(OrderLine))

# Колонки отчёта заказов (송장출력_주문정보)
ORDER_INFO_COLUMNS: Tuple[str, ...] = (
    "line_id", "marketplace_order_id", "order_id", "collected_at", "marketplace",
    "recipient_name", "product_name", "item_code", "quantity", "payment_amount",
    "order_amount", "tax_category", "payment_method", "address", "warehouse",
    "phone2", "order_status",
)
