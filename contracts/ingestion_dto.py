"""
DTO контракт: Ingestion source -> Invoicing

Сырая строка заказа из выгрузки агрегатора (одна строка = одна позиция).

ВАЖНО: Контракт намеренно "мягкий". Пустые и кривые значения не
отбрасываются, а приводятся к пустым строкам / None. Исправление
значениями по умолчанию: задача NormalizationStage, а не ingestion.
"""

import math
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


STRING_FIELDS = (
    "order_id", "marketplace_order_id", "marketplace", "order_status", "collected_at",
    "recipient_name", "phone1", "phone2", "postal_code", "address", "delivery_note",
    "item_code", "item_name", "option_name", "payment_method", "tax_category",
)


def _to_text(v: Any) -> str:
    if v is None:
        return ""
    if isinstance(v, float):
        if math.isnan(v):
            return ""
        # 7710.0 из таблицы → "7710"
        if v.is_integer():
            return str(int(v))
    return str(v).strip()


class RawOrderRow(BaseModel):
    """
    Сырая позиция заказа.

    Минимально необходимые поля: получатель, адрес, код/название товара,
    количество, номер заказа, маркетплейс, суммы, сообщение доставки.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    order_id: str = Field("", description="Номер заказа (주문번호)")
    marketplace_order_id: str = Field("", description="Номер заказа маркетплейса (주문번호(쇼핑몰))")
    marketplace: str = Field("", description="Маркетплейс (쇼핑몰)")
    order_status: str = Field("", description="Статус заказа")
    collected_at: str = Field("", description="Время сбора (수집시간)")

    recipient_name: str = Field("", description="Получатель (수취인명)")
    phone1: str = ""
    phone2: str = ""
    postal_code: str = ""
    address: str = Field("", description="Адрес (свободный текст)")
    delivery_note: str = Field("", description="Сообщение доставки (배송메세지)")

    item_code: str = Field("", description="Код товара (품목코드)")
    item_name: str = Field("", description="Название для этикетки (송장명)")
    option_name: str = ""
    quantity: Optional[int] = Field(None, description="Количество (None если не число)")

    payment_amount: float = 0.0
    order_amount: float = 0.0
    payment_method: str = ""
    tax_category: str = ""

    @field_validator(*STRING_FIELDS, mode="before")
    @classmethod
    def coerce_text(cls, v: Any) -> str:
        return _to_text(v)

    @field_validator("quantity", mode="before")
    @classmethod
    def coerce_quantity(cls, v: Any) -> Optional[int]:
        """Нечисловое количество → None (дефолт выставит нормализация)."""
        text = _to_text(v).replace(",", "")
        if not text:
            return None
        try:
            return int(float(text))
        except ValueError:
            return None

    @field_validator("payment_amount", "order_amount", mode="before")
    @classmethod
    def coerce_money(cls, v: Any) -> float:
        text = _to_text(v).replace(",", "")
        if not text:
            return 0.0
        try:
            return float(text)
        except ValueError:
            return 0.0

    def is_valid(self) -> bool:
        return not self.invalid_fields()

    def invalid_fields(self) -> list[str]:
        """Имена невалидных обязательных полей (для precheck лога)."""
        invalid = []
        if not self.recipient_name:
            invalid.append("recipient_name")
        if not self.address:
            invalid.append("address")
        if not self.item_name:
            invalid.append("item_name")
        if self.quantity is None or self.quantity <= 0:
            invalid.append("quantity")
        return invalid


def map_columns(record: Mapping[str, Any], columns: Dict[str, str]) -> Dict[str, Any]:
    """
    Переименовывает внешние колонки в поля RawOrderRow.

    Args:
        record: Строка выгрузки (заголовок → значение)
        columns: Явная таблица заголовок → поле

    Returns:
        Dict с полями RawOrderRow. Колонки, уже названные как поля,
        проходят без изменений.
    """
    mapped: Dict[str, Any] = {}
    for key, value in record.items():
        target = columns.get(key, key)
        if target in RawOrderRow.model_fields:
            mapped[target] = value
    return mapped
