"""
Stage 2: Classification

ЦКП: Каждая строка получает РОВНО ОДИН центр отгрузки.

Входные данные: List[OrderLine] после нормализации
Выходные данные: StageResult (classification_key, center, msg1..msg6, star1/star2)

Алгоритм:
1. classification_key = первые 3 символа названия после trim (case-sensitive)
2. Префикс → центр по таблице из RuleSet, иначе default_center (냉동)
3. Региональные переопределения (регион адреса + маркетплейс)
4. Шаблоны сообщений msg1..msg6 из таблицы центра (fallback '나머지')
5. Приоритетные метки: 별표1 (톡딜불가), 별표2 (ключевые слова адреса)

СИСТЕМНЫЙ ПРИНЦИП:
- Префиксная таблица тотальна: у неё есть явная ветка по умолчанию
- Префикс вычисляется ДО любой логики по адресу
- Неизвестный центр в правилах ловится при загрузке RuleSet
"""

from collections import defaultdict
from typing import Dict, List, Set
from loguru import logger

from ..domain.exceptions import IntegrityViolationError
from ..domain.interfaces import IOrderStage
from ..domain.models import Center, OrderLine
from ..domain.stage_result import StageResult
from ..rules.rule_loader import RuleSet


CLASSIFICATION_KEY_LENGTH = 3


def classification_key_of(item_name: str) -> str:
    """Первые 3 символа названия после trim."""
    return item_name.strip()[:CLASSIFICATION_KEY_LENGTH]


class ClassificationStage(IOrderStage):
    """
    Stage 2: Classification.

    ЦКП: Тотальное отображение строка → Center.
    """

    name = "classification"

    def __init__(self, rules: RuleSet):
        self.rules = rules
        logger.info(
            f"[ClassificationStage] Инициализирован "
            f"({len(rules.classification.prefixes)} префиксов, "
            f"{len(rules.regional_overrides)} региональных правил)"
        )

    def process(self, lines: List[OrderLine]) -> StageResult:
        result = StageResult(stage_name=self.name, rows_processed=len(lines))

        for line in lines:
            self._assign_center(line)
        result.log_step("[UPDATE] Префикс → центр", len(lines))

        overridden = sum(1 for line in lines if self._apply_regional_override(line))
        result.log_step("[UPDATE] Региональные переопределения", overridden)

        for line in lines:
            self._assign_messages(line)
        result.log_step("[UPDATE] Шаблоны сообщений msg1..msg6", len(lines))

        result.log_step("[UPDATE] 별표1 (톡딜불가)", self._flag_talkdeal_unavailable(lines))
        result.log_step("[UPDATE] 별표2 (адрес)", self._flag_priority_addresses(lines))

        unclassified = [line.line_id for line in lines if line.center is None]
        if unclassified:
            raise IntegrityViolationError(
                f"Строки без центра: {unclassified[:10]}",
                component="ClassificationStage",
            )

        result.lines = lines
        logger.debug(f"[ClassificationStage] Распределение: {self._distribution(lines)}")
        return result

    def classify_line(self, line: OrderLine) -> OrderLine:
        """
        Классифицирует одну строку (префикс + переопределения + сообщения).

        Используется OverflowSplitStage для перенаправленных строк.
        """
        self._assign_center(line)
        self._apply_regional_override(line)
        self._assign_messages(line)
        return line

    def _assign_center(self, line: OrderLine) -> None:
        line.classification_key = classification_key_of(line.item_name)
        line.center = self.rules.center_for_prefix(line.classification_key)

    def _apply_regional_override(self, line: OrderLine) -> bool:
        for rule in self.rules.regional_overrides:
            if (
                line.center == rule.source_center
                and line.address_region == rule.region_prefix
                and line.marketplace in rule.marketplaces
            ):
                line.center = rule.target_center
                return True
        return False

    def _assign_messages(self, line: OrderLine) -> None:
        row = self.rules.messages_for(line.center, line.marketplace)
        line.msg1, line.msg2, line.msg3 = row.msg1, row.msg2, row.msg3
        line.msg4, line.msg5, line.msg6 = row.msg4, row.msg5, row.msg6

    def _flag_talkdeal_unavailable(self, lines: List[OrderLine]) -> int:
        """
        별표1: товар нельзя отправить по 톡딜 без сопутствующих товаров.

        Адрес помечается, если на нём есть строка (item_code, marketplace)
        из правила и при этом:
          - на адресе ровно одна строка, ИЛИ
          - строк несколько, но нет ни одного required_code.
        Помечаются ВСЕ строки адреса.
        """
        rules = self.rules.priority.talkdeal_rules
        if not rules:
            return 0

        by_address: Dict[str, List[OrderLine]] = defaultdict(list)
        for line in lines:
            if line.address:
                by_address[line.address].append(line)

        targets: Set[str] = set()
        for address, group in by_address.items():
            codes = {line.item_code for line in group}
            for rule in rules:
                hit = any(
                    line.item_code == rule.item_code and line.marketplace == rule.marketplace
                    for line in group
                )
                if not hit:
                    continue
                if len(group) == 1 or not codes.intersection(rule.required_codes):
                    targets.add(address)
                    break

        flag = self.rules.priority.talkdeal_flag
        flagged = 0
        for address in targets:
            for line in by_address[address]:
                line.star1 = flag
                flagged += 1
        return flagged

    def _flag_priority_addresses(self, lines: List[OrderLine]) -> int:
        keywords = self.rules.priority.address_keywords
        flag = self.rules.priority.address_flag
        flagged = 0
        for line in lines:
            if any(keyword in line.address for keyword in keywords):
                line.star2 = flag
                flagged += 1
        return flagged

    @staticmethod
    def _distribution(lines: List[OrderLine]) -> Dict[str, int]:
        counts: Dict[str, int] = defaultdict(int)
        for line in lines:
            counts[line.center.value if isinstance(line.center, Center) else "none"] += 1
        return dict(counts)
