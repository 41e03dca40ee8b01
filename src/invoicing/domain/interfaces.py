"""
Invoicing Domain: Интерфейсы и абстракции.

Определяет контракты для стадий пайплайна, хранилища и пробы памяти.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from typing import Any, Dict, Iterable, List, Mapping, Sequence

from .models import OrderLine
from .stage_result import StageResult, StepLogEntry


class IOrderStage(ABC):
    """
    Интерфейс стадии пайплайна.

    Стадия получает полностью закоммиченный набор строк предыдущей
    стадии и возвращает свой результат. Стадии не пишут в хранилище сами.
    """

    name: str = "stage"

    @abstractmethod
    def process(self, lines: List[OrderLine]) -> StageResult:
        """
        Обрабатывает снимок строк.

        Args:
            lines: Строки предыдущей стадии (упорядочены по ordering_key)

        Returns:
            StageResult со строками и журналом шагов
        """
        pass


class IOrderStore(ABC):
    """
    Интерфейс персистентного хранилища.

    Транзакционное реляционное хранилище: bulk insert, truncate,
    commit/rollback, чтение набора строк, атомарная замена таблиц.
    """

    @abstractmethod
    def transaction(self) -> AbstractContextManager:
        """Контекст транзакции: commit при успехе, rollback при ошибке."""
        pass

    @abstractmethod
    def truncate(self, table: str) -> None:
        pass

    @abstractmethod
    def bulk_insert(self, table: str, records: Sequence[Mapping[str, Any]]) -> int:
        """Вставляет записи одной транзакцией, возвращает число строк."""
        pass

    @abstractmethod
    def fetch_lines(self, table: str) -> List[OrderLine]:
        """Читает строки таблицы в стабильном порядке."""
        pass

    @abstractmethod
    def fetch_records(self, table: str) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    def replace_tables(self, tables: Mapping[str, Sequence[Mapping[str, Any]]]) -> None:
        """Атомарно заменяет содержимое нескольких таблиц (truncate + insert)."""
        pass

    @abstractmethod
    def write_step_log(self, run_id: str, stage_name: str, steps: Iterable[StepLogEntry]) -> None:
        pass

    @abstractmethod
    def write_error_log(self, run_id: str, stage_name: str, error: BaseException) -> None:
        pass


class IMemoryProbe(ABC):
    """Проба памяти для адаптивного размера чанков."""

    @abstractmethod
    def available_mb(self) -> float:
        """Доступная системная память (MB)."""
        pass

    @abstractmethod
    def process_mb(self) -> float:
        """Память текущего процесса (RSS, MB)."""
        pass

