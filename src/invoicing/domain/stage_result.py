"""
Результаты стадий и журнал шагов.

Каждая стадия возвращает StageResult: обработанные строки + журнал
шагов (аналог sp_execution_log: StepID, описание, затронутые строки).
"""

from dataclasses import dataclass, field
from typing import List

from .models import OrderLine


@dataclass
class StepLogEntry:
    """Один шаг стадии."""
    step_id: int
    description: str
    affected_rows: int

    def to_dict(self) -> dict:
        return {
            "step_id": self.step_id,
            "description": self.description,
            "affected_rows": self.affected_rows,
        }


@dataclass
class StageResult:
    """
    Результат стадии.

    ЦКП: строки для следующей стадии + метрики для итогового отчёта.
    """
    stage_name: str
    lines: List[OrderLine] = field(default_factory=list)
    rows_processed: int = 0
    rows_defaulted: int = 0
    steps: List[StepLogEntry] = field(default_factory=list)

    def log_step(self, description: str, affected_rows: int) -> None:
        self.steps.append(StepLogEntry(
            step_id=len(self.steps) + 1,
            description=description,
            affected_rows=affected_rows,
        ))

    def to_dict(self) -> dict:
        return {
            "stage_name": self.stage_name,
            "rows_out": len(self.lines),
            "rows_processed": self.rows_processed,
            "rows_defaulted": self.rows_defaulted,
            "steps": [s.to_dict() for s in self.steps],
        }
