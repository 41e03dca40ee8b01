"""
Stage 4: Consolidation

ЦКП: Для каждой группы (центр, адрес, получатель) решено: одна этикетка
или несколько посылок, и созданы строки доп. посылок.

Входные данные: List[OrderLine] после замены / overflow
Выходные данные: StageResult (классы single / one-parcel / extra + строки-заглушки)

Алгоритм (на снимке строк, группы считаются ОДИН раз):
1. parcel_units из реестра по (заменённому) коду, 0/пусто/не число → 10
2. Доля посылки = floor(1000/units)/1000 × quantity, сумма по группе
3. parcel_count = ceil(суммы)
4. parcel_count > 1 → extra; одна строка в группе → single; иначе one-parcel
5. single: item_count = сумма количеств single-строк с тем же кодом
6. extra: ОДИН представитель на адрес (минимальный ordering_key),
   копии-заглушки 1..n, где n = ceil(суммы долей всех extra-строк адреса),
   адрес + "[n]"

ВАЖНО: extra / one-parcel: терминальные классы. Строки-заглушки
добавляются к результату и НЕ перегруппировываются. Повторный
запуск стадии отбрасывает старые заглушки и строит их заново.
Готовые коробки (PackingKind.BOXED) проходят без группировки.
"""

from collections import defaultdict
from itertools import groupby
from typing import Dict, List, Tuple
from loguru import logger

from ..domain.interfaces import IOrderStage
from ..domain.models import (
    Center,
    ConsolidationClass,
    OrderLine,
    PackingKind,
    PLACEHOLDER_NAME,
    PLACEHOLDER_ORDER_ID,
    SENTINEL_ITEM_CODE,
)
from ..domain.stage_result import StageResult
from ..rules.rule_loader import RuleSet
from .parcel_calculator import milli_to_float, parcel_count, parcel_factor_milli


GroupKey = Tuple[Center, str, str]


def number_placeholders(placeholders: List[OrderLine]) -> List[OrderLine]:
    """
    Нумерует заглушки внутри адреса: 1..n в стабильном порядке.

    Чистая свёртка: partition by (center, address), running index.
    Адрес получает суффикс "[n]".
    """
    ordered = sorted(placeholders, key=lambda l: (l.center.value, l.address, l.ordering_key))
    numbered = []
    for _, group in groupby(ordered, key=lambda l: (l.center, l.address)):
        for seq, line in enumerate(group, start=1):
            numbered.append(line.copy(
                line_id=f"{line.source_row_id}.{line.sub_index}+{seq}",
                placeholder_seq=seq,
                address=f"{line.address}[{seq}]",
            ))
    return numbered


class ConsolidationStage(IOrderStage):
    """
    Stage 4: Consolidation.

    ЦКП: Классы консолидации и строки доп. посылок.
    """

    name = "consolidation"

    def __init__(self, rules: RuleSet):
        self.rules = rules
        logger.info("[ConsolidationStage] Инициализирован")

    def process(self, lines: List[OrderLine]) -> StageResult:
        result = StageResult(stage_name=self.name, rows_processed=len(lines))

        stale = sum(1 for line in lines if line.is_placeholder)
        lines = [line for line in lines if not line.is_placeholder]
        result.log_step("[DELETE] Заглушки предыдущего расчёта", stale)

        boxed = [line for line in lines if line.packing_kind == PackingKind.BOXED]
        loose = [line for line in lines if line.packing_kind != PackingKind.BOXED]
        result.log_step("[SKIP] Готовые коробки без группировки", len(boxed))

        factors, defaulted = self._compute_factors(loose)
        result.rows_defaulted = defaulted
        result.log_step("[UPDATE] 택배수량 и доля посылки", len(loose))

        groups = self._group(loose)
        self._classify_groups(groups, factors)
        result.log_step(
            "[UPDATE] Классы консолидации (extra / one-parcel / single)",
            sum(len(members) for members in groups.values()),
        )

        singles = [line for line in loose if line.consolidation_class == ConsolidationClass.SINGLE]
        self._aggregate_single_item_counts(singles)
        result.log_step("[UPDATE] item_count для single", len(singles))

        placeholders = self._build_placeholders(loose, factors)
        result.log_step("[INSERT] Строки доп. посылок", len(placeholders))

        result.lines = loose + boxed + placeholders

        logger.debug(
            f"[ConsolidationStage] Групп: {len(groups)}, "
            f"single={len(singles)}, "
            f"extra={sum(1 for l in loose if l.consolidation_class == ConsolidationClass.EXTRA)}, "
            f"заглушек={len(placeholders)}"
        )
        return result

    def _compute_factors(self, lines: List[OrderLine]) -> Tuple[Dict[str, int], int]:
        factors: Dict[str, int] = {}
        defaulted = 0
        for line in lines:
            if self.rules.registered_parcel_units(line.item_code) is None:
                defaulted += 1
            line.parcel_units = self.rules.parcel_units_for(line.item_code)
            milli = parcel_factor_milli(line.parcel_units, line.quantity)
            line.parcel_factor = milli_to_float(milli)
            factors[line.line_id] = milli
        return factors, defaulted

    @staticmethod
    def _group(lines: List[OrderLine]) -> Dict[GroupKey, List[OrderLine]]:
        groups: Dict[GroupKey, List[OrderLine]] = defaultdict(list)
        for line in sorted(lines, key=lambda l: l.ordering_key):
            groups[(line.center, line.address, line.recipient_name)].append(line)
        return groups

    @staticmethod
    def _classify_groups(
        groups: Dict[GroupKey, List[OrderLine]],
        factors: Dict[str, int],
    ) -> None:
        for members in groups.values():
            total_milli = sum(factors[line.line_id] for line in members)
            count = parcel_count([total_milli])

            if count > 1:
                target = ConsolidationClass.EXTRA
            elif len(members) == 1:
                target = ConsolidationClass.SINGLE
            else:
                target = ConsolidationClass.ONE_PARCEL

            for line in members:
                line.parcel_total = milli_to_float(total_milli)
                line.parcel_count = count
                line.classify(target)

    @staticmethod
    def _aggregate_single_item_counts(singles: List[OrderLine]) -> None:
        totals: Dict[Tuple[Center, str], int] = defaultdict(int)
        for line in singles:
            totals[(line.center, line.item_code)] += line.quantity
        for line in singles:
            line.item_count = totals[(line.center, line.item_code)]

    @staticmethod
    def _build_placeholders(lines: List[OrderLine], factors: Dict[str, int]) -> List[OrderLine]:
        """
        Заглушки: одна серия 1..n на адрес.

        n = parcel_count(сумма долей ВСЕХ extra-строк адреса), поэтому
        посылки каждого получателя на адресе получают свои этикетки.
        Представитель серии: extra-строка с минимальным ordering_key.
        """
        representatives: Dict[Tuple[Center, str], OrderLine] = {}
        address_milli: Dict[Tuple[Center, str], int] = defaultdict(int)
        for line in sorted(lines, key=lambda l: l.ordering_key):
            if line.consolidation_class != ConsolidationClass.EXTRA:
                continue
            key = (line.center, line.address)
            representatives.setdefault(key, line)
            address_milli[key] += factors[line.line_id]

        raw: List[OrderLine] = []
        for key, rep in representatives.items():
            for _ in range(parcel_count([address_milli[key]])):
                raw.append(rep.copy(
                    quantity=1,
                    item_code=SENTINEL_ITEM_CODE,
                    item_name=PLACEHOLDER_NAME,
                    option_name=PLACEHOLDER_NAME,
                    order_id=PLACEHOLDER_ORDER_ID,
                    payment_amount=0.0,
                    order_amount=0.0,
                    item_count=0,
                    is_placeholder=True,
                ))
        return number_placeholders(raw)
