"""
Stage 6: Aggregation

ЦКП: Итоговые отсортированные наборы строк по каждому центру.

Входные данные: List[OrderLine] после консолидации
Выходные данные: AggregationResult (центр → строки, внешняя отгрузка, отчёт заказов)

Алгоритм:
1. Проверка целостности: каждая реальная строка ровно в одном центре
2. Готовые коробки получают префикс '▨▧▦ ' (идемпотентно)
3. Политика центра: стоимость доставки, размер коробки, копии печати
4. UNION по центру: single, коробки, one-parcel, extra, заглушки
5. Сортировка: (есть приоритетная метка ? 0 : 1, адрес, название)
6. Строки внешней отгрузки уходят в отдельный набор
7. Отчёт заказов (송장출력_주문정보) с названием склада

ВАЖНО: Стадия НЕ пишет в хранилище. Атомарная замена таблиц выполняется
пайплайном после успешной проверки целостности.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple
from loguru import logger

from ..domain.exceptions import IntegrityViolationError
from ..domain.interfaces import IOrderStage
from ..domain.models import Center, ConsolidationClass, OrderLine, PackingKind
from ..domain.stage_result import StageResult
from ..rules.rule_loader import RuleSet
from ..s5_overflow.stage import apply_prefix


# Порядок частей UNION до финальной сортировки
UNION_RANK = {
    ConsolidationClass.SINGLE: 0,
    "boxed": 1,
    ConsolidationClass.ONE_PARCEL: 2,
    ConsolidationClass.EXTRA: 3,
    "placeholder": 4,
}


def sort_key(line: OrderLine) -> Tuple[int, str, str]:
    """Приоритетные строки первыми, затем адрес, затем название."""
    return (0 if line.has_priority_flag else 1, line.address, line.item_name)


def union_rank(line: OrderLine) -> int:
    if line.is_placeholder:
        return UNION_RANK["placeholder"]
    if line.packing_kind == PackingKind.BOXED:
        return UNION_RANK["boxed"]
    return UNION_RANK.get(line.consolidation_class, UNION_RANK[ConsolidationClass.ONE_PARCEL])


@dataclass
class AggregationResult(StageResult):
    """
    Результат Stage 6.

    ЦКП: Готовые к печати наборы строк (единственный интерфейс для потребителей).
    """
    center_results: Dict[Center, List[OrderLine]] = field(default_factory=dict)
    external: List[OrderLine] = field(default_factory=list)
    order_info: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def final_lines(self) -> List[OrderLine]:
        """UNION ALL всех центров в порядке center_results."""
        return [line for lines in self.center_results.values() for line in lines]

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update({
            "center_counts": {c.value: len(lines) for c, lines in self.center_results.items()},
            "external_count": len(self.external),
            "order_info_count": len(self.order_info),
        })
        return data


class AggregationStage(IOrderStage):
    """Stage 6: Aggregation."""

    name = "aggregation"

    def __init__(self, rules: RuleSet):
        self.rules = rules
        self.config = rules.aggregation
        self._policies = {center: rules.center_policy(center) for center in Center}
        logger.info("[AggregationStage] Инициализирован")

    def process(self, lines: List[OrderLine]) -> AggregationResult:
        result = AggregationResult(stage_name=self.name, rows_processed=len(lines))

        self.check_integrity(lines)
        result.log_step("[CHECK] Целостность: строка ровно в одном центре", len(lines))

        boxed = 0
        for line in lines:
            if line.packing_kind == PackingKind.BOXED:
                line.item_name = apply_prefix(line.item_name, self.config.boxed_name_prefix)
                boxed += 1
        result.log_step("[UPDATE] Префикс готовых коробок", boxed)

        for line in lines:
            policy = self._policies[line.center]
            line.shipping_cost = policy.shipping_cost
            line.box_size = policy.box_size
            line.print_count = policy.print_count
        result.log_step("[UPDATE] Политика доставки центра", len(lines))

        by_center: Dict[Center, List[OrderLine]] = defaultdict(list)
        for line in lines:
            by_center[line.center].append(line)

        external_center = self.config.external_shipment.center
        external_codes = set(self.config.external_shipment.item_codes)

        for center in self._center_order():
            union = sorted(by_center.get(center, []), key=lambda l: (union_rank(l), l.ordering_key))
            if center == external_center and external_codes:
                moved = [l for l in union if not l.is_placeholder and l.item_code in external_codes]
                moved_ids = {l.line_id for l in moved}
                union = [l for l in union if l.line_id not in moved_ids]
                result.external = sorted(moved, key=sort_key)
            result.center_results[center] = sorted(union, key=sort_key)
        result.log_step("[MOVE] Внешняя отгрузка", len(result.external))

        result.order_info = self.build_order_info(lines)
        result.log_step("[INSERT] Отчёт заказов", len(result.order_info))

        result.lines = result.final_lines
        counts = {c.value: len(v) for c, v in result.center_results.items() if v}
        logger.debug(f"[AggregationStage] Итог: {counts}, внешняя отгрузка={len(result.external)}")
        return result

    def _center_order(self) -> List[Center]:
        order = list(dict.fromkeys(self.config.center_order))
        return order + [c for c in Center if c not in order]

    @staticmethod
    def check_integrity(lines: List[OrderLine]) -> None:
        """
        Каждая строка имеет центр, каждая реальная строка ровно в одном центре.

        Raises:
            IntegrityViolationError: с примерами нарушений
        """
        unclassified = [line.line_id for line in lines if line.center is None]
        if unclassified:
            raise IntegrityViolationError(
                f"Строки без центра: {unclassified[:10]}",
                component="AggregationStage",
            )

        centers_by_line: Dict[str, set] = defaultdict(set)
        occurrences: Dict[str, int] = defaultdict(int)
        for line in lines:
            centers_by_line[line.line_id].add(line.center)
            occurrences[line.line_id] += 1

        duplicated = {
            line_id: sorted(c.value for c in centers)
            for line_id, centers in centers_by_line.items()
            if len(centers) > 1 or occurrences[line_id] > 1
        }
        if duplicated:
            sample = dict(list(duplicated.items())[:10])
            raise IntegrityViolationError(
                f"Строки встречаются более одного раза / в нескольких центрах: {sample}",
                component="AggregationStage",
            )

    def build_order_info(self, lines: List[OrderLine]) -> List[Dict[str, Any]]:
        """Отчёт заказов: одна запись на реальную строку, с названием склада."""
        report = []
        for line in sorted(lines, key=lambda l: l.ordering_key):
            if line.is_placeholder:
                continue
            report.append({
                "line_id": line.line_id,
                "marketplace_order_id": line.marketplace_order_id,
                "order_id": line.order_id,
                "collected_at": line.collected_at,
                "marketplace": line.marketplace,
                "recipient_name": line.recipient_name,
                "product_name": line.option_name,
                "item_code": line.item_code,
                "quantity": line.quantity,
                "payment_amount": line.payment_amount,
                "order_amount": line.order_amount,
                "tax_category": line.tax_category,
                "payment_method": line.payment_method,
                "address": line.address,
                "warehouse": self.rules.warehouse_label(line.center),
                "phone2": line.phone2,
                "order_status": line.order_status,
            })
        return report
