"""
DTO контракт: Invoicing -> Operator

Итоговый отчёт прогона. Всегда содержит по каждой стадии: сколько строк
обработано, сколько исправлено значениями по умолчанию и сколько
чанков не удалось записать.
"""

from typing import Dict, List

from pydantic import BaseModel, ConfigDict, Field


class StageSummary(BaseModel):
    """Метрики одной стадии."""

    model_config = ConfigDict(frozen=True)

    stage_name: str
    rows_processed: int = Field(0, ge=0)
    rows_defaulted: int = Field(0, ge=0)
    rows_out: int = Field(0, ge=0)
    chunks_total: int = Field(0, ge=0)
    chunks_failed: int = Field(0, ge=0)
    records_failed: int = Field(0, ge=0)


class RunSummaryDTO(BaseModel):
    """Отчёт прогона пайплайна."""

    model_config = ConfigDict(frozen=True)

    run_id: str
    stages: List[StageSummary] = Field(default_factory=list)
    center_counts: Dict[str, int] = Field(default_factory=dict, description="Центр → строк в итоговой таблице")
    external_count: int = Field(0, ge=0)
    published: bool = Field(True, description="Итоговые таблицы заменены результатом прогона")
    processing_time_ms: float = Field(0.0, ge=0)

    @property
    def chunks_failed(self) -> int:
        return sum(s.chunks_failed for s in self.stages)

    @property
    def has_partial_failure(self) -> bool:
        return self.chunks_failed > 0
