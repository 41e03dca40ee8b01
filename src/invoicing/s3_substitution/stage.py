"""
Stage 3: Substitution (합포장변경)

ЦКП: Виртуальные коды товаров развёрнуты в реально отгружаемые единицы.

Входные данные: List[OrderLine] после классификации
Выходные данные: StageResult (исходные строки с правилом заменены на 1..4 строки)

Алгоритм:
1. Для строки с правилом замены: по строке на каждую альтернативу
   - quantity = исходное количество × factor альтернативы
   - деньги (payment_amount, order_amount) только у primary (слот 1), остальным 0
   - стоимость доставки / коробка / копии печати из substitution_defaults
2. Строки с пустым названием альтернативы отбрасываются
3. Исходная строка удаляется
4. Всем строкам проставляется location из реестра товаров

ВАЖНО: Стадия идёт ДО консолидации: поиск 택배수량 использует уже
ЗАМЕНЁННЫЙ код товара. Центр и адрес строки замена не меняет.
"""

from typing import List, Optional
from loguru import logger

from ..domain.interfaces import IOrderStage
from ..domain.models import OrderLine
from ..domain.stage_result import StageResult
from ..rules.rule_loader import RuleSet


PRIMARY_SLOT = 1


class SubstitutionStage(IOrderStage):
    """Stage 3: Substitution."""

    name = "substitution"

    def __init__(self, rules: RuleSet):
        self.rules = rules
        logger.info(f"[SubstitutionStage] Инициализирован ({len(rules.substitutions)} правил)")

    def process(self, lines: List[OrderLine]) -> StageResult:
        result = StageResult(stage_name=self.name, rows_processed=len(lines))

        output: List[OrderLine] = []
        replaced = 0
        generated = 0
        dropped = 0

        for line in lines:
            expanded = self.expand(line)
            if expanded is None:
                output.append(line)
                continue
            replaced += 1
            generated += len(expanded)
            dropped += len(self.rules.substitutions[line.item_code].alternates) - len(expanded)
            output.extend(expanded)

        result.log_step("[INSERT] Строки замены", generated)
        result.log_step("[DELETE] Пустые названия альтернатив", dropped)
        result.log_step("[DELETE] Исходные строки замены", replaced)

        located = 0
        for line in output:
            location = self.rules.location_for(line.item_code)
            if location:
                line.location = location
                located += 1
        result.log_step("[UPDATE] Локация из реестра товаров", located)

        if dropped:
            logger.warning(f"[SubstitutionStage] Отброшено строк с пустым названием: {dropped}")

        logger.debug(
            f"[SubstitutionStage] Заменено {replaced} строк → {generated} строк "
            f"(итого {len(output)})"
        )
        result.lines = output
        return result

    def expand(self, line: OrderLine) -> Optional[List[OrderLine]]:
        """
        Разворачивает строку по правилу замены.

        Returns:
            None если правила нет (строка проходит без изменений),
            иначе список замещающих строк (может быть пустым).
        """
        rule = self.rules.substitutions.get(line.item_code)
        if rule is None:
            return None

        defaults = self.rules.substitution_defaults
        expanded = []
        for slot, alternate in enumerate(rule.alternates, start=1):
            if not alternate.item_name.strip():
                continue
            is_primary = slot == PRIMARY_SLOT
            expanded.append(line.copy(
                line_id=f"{line.line_id}.{slot}",
                sub_index=slot,
                item_code=alternate.item_code,
                item_name=alternate.item_name,
                option_name=alternate.item_name,
                quantity=line.quantity * alternate.factor,
                payment_amount=line.payment_amount if is_primary else 0.0,
                order_amount=line.order_amount if is_primary else 0.0,
                shipping_cost=defaults.shipping_cost,
                box_size=defaults.box_size,
                print_count=defaults.print_count,
            ))
        return expanded
