"""
Stage 5: Overflow Split (감천 특별출고)

ЦКП: Часть строк центра-источника перенаправлена в отдельный центр
с собственным префиксом названия.

Входные данные: List[OrderLine] после замены
Выходные данные: StageResult (перенаправленные строки уже переклассифицированы)

Алгоритм (для каждого OverflowRule):
1. Кандидаты: строки source_center с кодом из списка overflow-товаров
2. Число кандидатов на адрес > 1 → combined (합포장), иначе single (단일)
3. Перенаправляются: single + combined с quantity >= порога товара
4. Anti-stranding: если на адресе ровно две строки центра-источника,
   перенаправленная overflow-строка и строка с её secondary-кодом,
   secondary-строка уходит вместе с ней
5. Название получает префикс идемпотентно: PREFIX + name без ведущих PREFIX
6. Перенаправленные строки заново классифицируются (попадают в target_center)

ВАЖНО: Стадия идёт ДО консолидации. Строки ниже порога остаются в
combined и консолидируются вместе с остальными строками источника.
"""

from collections import Counter, defaultdict
from typing import Dict, List, Optional, Set
from loguru import logger

from src.domain.contracts import OverflowItem, OverflowRule
from ..domain.exceptions import InvoicingConfigurationError
from ..domain.interfaces import IOrderStage
from ..domain.models import ConsolidationClass, OrderLine
from ..domain.stage_result import StageResult
from ..rules.rule_loader import RuleSet
from ..s2_classification.stage import ClassificationStage, classification_key_of


def apply_prefix(name: str, prefix: str) -> str:
    """Идемпотентный префикс: 'GC_GC_x' → 'GC_x', 'x' → 'GC_x'."""
    stripped = name.strip()
    while stripped.startswith(prefix):
        stripped = stripped[len(prefix):]
    return prefix + stripped


class OverflowSplitStage(IOrderStage):
    """
    Stage 5: Overflow Split.

    ЦКП: Перенаправление по порогу количества и адресу.
    """

    name = "overflow"

    def __init__(self, rules: RuleSet, classifier: Optional[ClassificationStage] = None):
        self.rules = rules
        self.classifier = classifier or ClassificationStage(rules)
        self._validate_prefixes()
        logger.info(f"[OverflowSplitStage] Инициализирован ({len(rules.overflow)} правил)")

    def _validate_prefixes(self) -> None:
        """Префикс правила обязан классифицироваться в target_center."""
        for rule in self.rules.overflow:
            center = self.rules.center_for_prefix(classification_key_of(rule.name_prefix))
            if center != rule.target_center:
                raise InvoicingConfigurationError(
                    f"Overflow '{rule.name}': префикс '{rule.name_prefix}' классифицируется в "
                    f"{center.value}, ожидался {rule.target_center.value}",
                    key=f"overflow.{rule.name}.name_prefix",
                    component="OverflowSplitStage",
                )

    def process(self, lines: List[OrderLine]) -> StageResult:
        result = StageResult(stage_name=self.name, rows_processed=len(lines))

        for rule in self.rules.overflow:
            rerouted = self._apply_rule(rule, lines, result)
            logger.debug(
                f"[OverflowSplitStage] '{rule.name}': перенаправлено {len(rerouted)} строк "
                f"{rule.source_center.value} → {rule.target_center.value}"
            )

        result.lines = lines
        return result

    def _apply_rule(self, rule: OverflowRule, lines: List[OrderLine], result: StageResult) -> List[OrderLine]:
        items: Dict[str, OverflowItem] = {item.item_code: item for item in rule.items}
        source_lines = [line for line in lines if line.center == rule.source_center]
        candidates = [line for line in source_lines if line.item_code in items]

        address_count = Counter(line.address for line in candidates)
        for line in candidates:
            line.classify(
                ConsolidationClass.COMBINED if address_count[line.address] > 1
                else ConsolidationClass.SINGLE
            )
        result.log_step(f"[UPDATE] ({rule.name}) 합포장/단일", len(candidates))

        rerouted = [
            line for line in candidates
            if line.consolidation_class == ConsolidationClass.SINGLE
            or line.quantity >= items[line.item_code].threshold
        ]
        rerouted_ids: Set[str] = {line.line_id for line in rerouted}

        companions = self._stranded_companions(source_lines, rerouted, items, rerouted_ids)
        result.log_step(f"[UPDATE] ({rule.name}) anti-stranding", len(companions))

        moved = rerouted + companions
        for line in moved:
            line.item_name = apply_prefix(line.item_name, rule.name_prefix)
            self.classifier.classify_line(line)
        result.log_step(f"[MOVE] ({rule.name}) → {rule.target_center.value}", len(moved))
        return moved

    @staticmethod
    def _stranded_companions(
        source_lines: List[OrderLine],
        rerouted: List[OrderLine],
        items: Dict[str, OverflowItem],
        rerouted_ids: Set[str],
    ) -> List[OrderLine]:
        by_address: Dict[str, List[OrderLine]] = defaultdict(list)
        for line in source_lines:
            by_address[line.address].append(line)

        companions = []
        for line in rerouted:
            group = by_address[line.address]
            if len(group) != 2:
                continue
            other = group[0] if group[1] is line else group[1]
            if other.line_id in rerouted_ids:
                continue
            if other.item_code in items[line.item_code].secondary_codes:
                companions.append(other)
                rerouted_ids.add(other.line_id)
        return companions
