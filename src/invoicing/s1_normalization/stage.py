"""
Stage 1: Normalization

ЦКП: Канонические значения полей, по которым работают все следующие стадии.

Входные данные: List[OrderLine] (из RawOrderRow)
Выходные данные: StageResult (те же строки, поля исправлены)

Алгоритм:
1. Пустой код товара → '0000' / название '--'
2. Получатель из 1 символа → удвоение, 'nan' → '난난'
3. Удаление маркеров шаблона ('*') из сообщения доставки
4. Очистка адреса ('·', пробелы)
5. Код оплаты '0' для маркетплейсов из конфига
6. Нечисловое / < 1 количество → 1
7. Пометка адреса '*' для товаров из star_item_codes
8. Готовые коробки (маркер '박스' в названии) → PackingKind.BOXED
9. Строки сухого льда без адреса → адрес группы (телефоны, индекс, получатель)

ВАЖНО: Стадия НИКОГДА не падает. Любое отсутствующее поле получает
значение по умолчанию и учитывается в rows_defaulted.
"""

from typing import Dict, List, Optional, Tuple
from loguru import logger

from ..domain.interfaces import IOrderStage
from ..domain.models import (
    OrderLine,
    PackingKind,
    SENTINEL_ITEM_CODE,
    SENTINEL_ITEM_NAME,
)
from ..domain.stage_result import StageResult
from ..rules.rule_loader import RuleSet


class NormalizationStage(IOrderStage):
    """
    Stage 1: Normalization.

    Мутирует поля строк на месте, без побочных эффектов.
    """

    name = "normalization"

    def __init__(self, rules: RuleSet):
        self.rules = rules
        self.config = rules.normalization
        logger.info("[NormalizationStage] Инициализирован")

    def process(self, lines: List[OrderLine]) -> StageResult:
        result = StageResult(stage_name=self.name, rows_processed=len(lines))
        defaulted_ids = set()

        def _mark(changed: List[OrderLine]) -> int:
            defaulted_ids.update(line.line_id for line in changed)
            return len(changed)

        result.log_step("[UPDATE] Пустой код товара → sentinel", _mark(self._fill_item_code(lines)))
        result.log_step("[UPDATE] Нормализация получателя", _mark(self._fix_recipient(lines)))
        result.log_step("[UPDATE] Нечисловое количество → 1", _mark(self._fix_quantity(lines)))
        result.log_step("[UPDATE] Удаление маркеров из сообщения доставки", self._strip_note_markers(lines))
        result.log_step("[UPDATE] Очистка адреса", self._clean_address(lines))
        result.log_step("[UPDATE] Код оплаты '0' по маркетплейсу", self._zero_payment_method(lines))
        result.log_step("[UPDATE] Пометка адреса '*' по коду товара", self._star_address(lines))
        result.log_step("[UPDATE] Готовые коробки", self._mark_boxed(lines))
        result.log_step("[UPDATE] Адрес строк сухого льда", _mark(self._fill_dry_ice_address(lines)))

        result.lines = lines
        result.rows_defaulted = len(defaulted_ids)

        logger.debug(
            f"[NormalizationStage] {len(lines)} строк, "
            f"исправлено значениями по умолчанию: {result.rows_defaulted}"
        )
        return result

    def _fill_item_code(self, lines: List[OrderLine]) -> List[OrderLine]:
        changed = []
        for line in lines:
            if not line.item_code.strip():
                line.item_code = SENTINEL_ITEM_CODE
                line.item_name = SENTINEL_ITEM_NAME
                changed.append(line)
        return changed

    def _fix_recipient(self, lines: List[OrderLine]) -> List[OrderLine]:
        """Получатель из 1 символа удваивается (поле этикетки не бывает 1-символьным)."""
        changed = []
        nan_value = self.config.nan_recipient
        for line in lines:
            name = line.recipient_name.strip()
            if name == nan_value:
                line.recipient_name = self.config.nan_recipient_replacement
                changed.append(line)
            elif len(name) == 1:
                line.recipient_name = name * 2
                changed.append(line)
            else:
                line.recipient_name = name
        return changed

    def _fix_quantity(self, lines: List[OrderLine]) -> List[OrderLine]:
        changed = []
        for line in lines:
            if not isinstance(line.quantity, int) or line.quantity < 1:
                line.quantity = 1
                changed.append(line)
        return changed

    def _strip_note_markers(self, lines: List[OrderLine]) -> int:
        count = 0
        for line in lines:
            note = line.delivery_note
            for marker in self.config.note_markers:
                note = note.replace(marker, "")
            if note != line.delivery_note:
                line.delivery_note = note
                count += 1
        return count

    def _clean_address(self, lines: List[OrderLine]) -> int:
        count = 0
        for line in lines:
            address = line.address
            for ch in self.config.address_strip_chars:
                address = address.replace(ch, "")
            address = address.strip()
            if address != line.address:
                line.address = address
                count += 1
        return count

    def _zero_payment_method(self, lines: List[OrderLine]) -> int:
        marketplaces = set(self.config.payment_zero_marketplaces)
        count = 0
        for line in lines:
            if line.marketplace in marketplaces and line.payment_method != "0":
                line.payment_method = "0"
                count += 1
        return count

    def _star_address(self, lines: List[OrderLine]) -> int:
        codes = set(self.config.star_item_codes)
        count = 0
        for line in lines:
            if line.item_code in codes and not line.address.startswith("*"):
                line.address = "*" + line.address
                count += 1
        return count

    def _mark_boxed(self, lines: List[OrderLine]) -> int:
        marker = self.config.boxed_name_marker
        count = 0
        for line in lines:
            if marker and marker in line.item_name:
                line.packing_kind = PackingKind.BOXED
                count += 1
        return count

    def _fill_dry_ice_address(self, lines: List[OrderLine]) -> List[OrderLine]:
        """
        Строка сухого льда без адреса получает адрес заказа того же получателя.

        Ключ группы: (phone1, phone2, postal_code, recipient_name).
        Берётся первый непустой адрес в порядке загрузки.
        """
        dry_ice_name = self.config.dry_ice_name

        known: Dict[Tuple[str, str, str, str], str] = {}
        for line in sorted(lines, key=lambda l: l.ordering_key):
            if line.address and line.item_name.strip() != dry_ice_name:
                known.setdefault(self._contact_key(line), line.address)

        changed = []
        for line in lines:
            if line.item_name.strip() == dry_ice_name and not line.address:
                address: Optional[str] = known.get(self._contact_key(line))
                if address:
                    line.address = address
                    changed.append(line)
                else:
                    logger.warning(
                        f"[NormalizationStage] Сухой лёд {line.line_id}: не найден адрес "
                        f"для получателя '{line.recipient_name}'"
                    )
        return changed

    @staticmethod
    def _contact_key(line: OrderLine) -> Tuple[str, str, str, str]:
        return (line.phone1, line.phone2, line.postal_code, line.recipient_name)
