"""
Invoice Pipeline - Оркестратор 6 стадий.

Координирует выполнение всех стадий в строгом порядке:
1. Normalization → 2. Classification → 3. Substitution →
4. Overflow Split → 5. Consolidation → 6. Aggregation

Каждая стадия читает ЗАКОММИЧЕННУЮ таблицу предыдущей стадии и пишет
свой результат в staging-таблицу через BatchProcessor (строгий барьер).
Итоговые таблицы заменяются атомарно только после успешной Aggregation.

Возвращает PipelineResult с RunSummaryDTO (контракт Invoicing -> Operator).
"""

import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence
from loguru import logger
from pydantic import ValidationError

from contracts.ingestion_dto import RawOrderRow, map_columns
from config.settings import PUBLISH_ON_PARTIAL_FAILURE
from contracts.run_summary_dto import RunSummaryDTO, StageSummary
from src.domain.contracts import ContractValidationError
from src.ingestion.batch_processor import BatchProcessor, BatchResult
from src.ingestion.table_names import center_table_name

from .domain.exceptions import RunCancelledError
from .domain.interfaces import IOrderStage, IOrderStore
from .domain.models import Center, OrderLine
from .domain.stage_result import StageResult
from .rules.rule_loader import RuleSet
from .s1_normalization import NormalizationStage
from .s2_classification import ClassificationStage
from .s3_substitution import SubstitutionStage
from .s4_consolidation import ConsolidationStage
from .s5_overflow import OverflowSplitStage
from .s6_aggregation import AggregationResult, AggregationStage


RAW_TABLE = "Tables.Invoice.Raw"
FINAL_TABLE = "Tables.Invoice.Final"
EXTERNAL_TABLE = "Tables.Invoice.External"
ORDER_INFO_TABLE = "Tables.Invoice.OrderInfo"

STAGING_TABLES = (
    RAW_TABLE,
    "Tables.Invoice.Normalized",
    "Tables.Invoice.Classified",
    "Tables.Invoice.Substituted",
    "Tables.Invoice.Overflow",
    "Tables.Invoice.Consolidated",
)


@dataclass
class PipelineResult:
    """
    Полный результат прогона со всеми промежуточными данными.

    Используется для отладки и анализа.
    """
    summary: RunSummaryDTO
    ingestion: Optional[BatchResult] = None
    stage_results: Dict[str, StageResult] = field(default_factory=dict)
    batch_results: Dict[str, BatchResult] = field(default_factory=dict)
    aggregation: Optional[AggregationResult] = None

    processing_time_ms: float = 0.0
    stages_completed: int = 0

    def to_dict(self) -> dict:
        return {
            "summary": self.summary.model_dump(),
            "ingestion": self.ingestion.to_dict() if self.ingestion else None,
            "stages": {name: r.to_dict() for name, r in self.stage_results.items()},
            "batches": {name: b.to_dict() for name, b in self.batch_results.items()},
            "processing_time_ms": self.processing_time_ms,
            "stages_completed": self.stages_completed,
        }


class InvoicePipeline:
    """
    Пайплайн классификации и консолидации заказов.

    ЦКП: Итоговые таблицы по центрам + отчёт прогона.
    """

    def __init__(
        self,
        store: IOrderStore,
        rules: Optional[RuleSet] = None,
        batch_processor: Optional[BatchProcessor] = None,
        normalization_stage: Optional[NormalizationStage] = None,
        classification_stage: Optional[ClassificationStage] = None,
        substitution_stage: Optional[SubstitutionStage] = None,
        overflow_stage: Optional[OverflowSplitStage] = None,
        consolidation_stage: Optional[ConsolidationStage] = None,
        aggregation_stage: Optional[AggregationStage] = None,
        cancel_event: Optional[threading.Event] = None,
        publish_on_partial_failure: bool = PUBLISH_ON_PARTIAL_FAILURE,
    ):
        """
        Инициализация пайплайна.

        Args:
            store: Хранилище (staging + итоговые таблицы)
            rules: Правила (по умолчанию default_rules.yaml)
            Все стадии опциональны, по умолчанию создаются стандартные.
            cancel_event: Флаг отмены, проверяется между стадиями
            publish_on_partial_failure: False → при сбойных чанках итоговые
                таблицы не заменяются (остаётся предыдущий результат)

        Raises:
            InvoicingConfigurationError: правила невалидны (до любых изменений данных)
        """
        self.store = store
        self.rules = rules or RuleSet.load()
        self.rules.validate_policies()

        self.batch_processor = batch_processor or BatchProcessor()
        self.normalization_stage = normalization_stage or NormalizationStage(self.rules)
        self.classification_stage = classification_stage or ClassificationStage(self.rules)
        self.substitution_stage = substitution_stage or SubstitutionStage(self.rules)
        self.overflow_stage = overflow_stage or OverflowSplitStage(self.rules, classifier=self.classification_stage)
        self.consolidation_stage = consolidation_stage or ConsolidationStage(self.rules)
        self.aggregation_stage = aggregation_stage or AggregationStage(self.rules)
        self.cancel_event = cancel_event or threading.Event()
        self.publish_on_partial_failure = publish_on_partial_failure

        logger.info("[InvoicePipeline] Инициализирован (6 стадий)")

    @property
    def stages(self) -> List[tuple]:
        """(стадия, входная таблица, выходная таблица) для стадий 1-5."""
        return [
            (self.normalization_stage, RAW_TABLE, "Tables.Invoice.Normalized"),
            (self.classification_stage, "Tables.Invoice.Normalized", "Tables.Invoice.Classified"),
            (self.substitution_stage, "Tables.Invoice.Classified", "Tables.Invoice.Substituted"),
            (self.overflow_stage, "Tables.Invoice.Substituted", "Tables.Invoice.Overflow"),
            (self.consolidation_stage, "Tables.Invoice.Overflow", "Tables.Invoice.Consolidated"),
        ]

    def cancel(self) -> None:
        """Запрос отмены: прогон остановится перед следующей стадией."""
        logger.warning("[InvoicePipeline] Запрошена отмена прогона")
        self.cancel_event.set()

    def run(self, raw_records: Sequence[Mapping[str, Any]], run_id: Optional[str] = None) -> PipelineResult:
        """
        Прогоняет сырые записи через все 6 стадий.

        Args:
            raw_records: Строки выгрузки (заголовок → значение)
            run_id: Идентификатор прогона для журналов

        Returns:
            PipelineResult: RunSummaryDTO + промежуточные результаты

        Raises:
            InvoicingError: фатальная ошибка; записывается в error_log,
                итоговые таблицы не изменяются
        """
        run_id = run_id or uuid.uuid4().hex[:12]
        start_time = time.time()
        logger.info(f"[InvoicePipeline] Старт прогона {run_id}: {len(raw_records)} записей")

        result = PipelineResult(summary=RunSummaryDTO(run_id=run_id))
        summaries: List[StageSummary] = []
        current = "ingestion"

        try:
            self._check_cancelled(current)
            result.ingestion = self._ingest(raw_records)
            summaries.append(self._summarize(current, len(raw_records), 0, len(raw_records), result.ingestion))

            total = len(self.stages) + 1
            for number, (stage, source, target) in enumerate(self.stages, start=1):
                current = stage.name
                self._check_cancelled(current)
                logger.debug(f"[InvoicePipeline] Stage {number}/{total}: {stage.name}")

                stage_result, batch = self._run_stage(run_id, stage, source, target)
                result.stage_results[stage.name] = stage_result
                result.batch_results[stage.name] = batch
                result.stages_completed += 1
                summaries.append(self._summarize(
                    stage.name,
                    stage_result.rows_processed,
                    stage_result.rows_defaulted,
                    len(stage_result.lines),
                    batch,
                ))

            current = self.aggregation_stage.name
            self._check_cancelled(current)
            logger.debug(f"[InvoicePipeline] Stage {total}/{total}: {current}")
            aggregation = self.aggregation_stage.process(self.store.fetch_lines("Tables.Invoice.Consolidated"))
            chunks_failed = sum(s.chunks_failed for s in summaries)
            if chunks_failed and not self.publish_on_partial_failure:
                published = False
                logger.warning(
                    f"[InvoicePipeline] Сбойных чанков: {chunks_failed}. "
                    f"Итоговые таблицы НЕ заменены (publish_on_partial_failure=False)"
                )
            else:
                published = True
                self._publish(aggregation)
            self.store.write_step_log(run_id, current, aggregation.steps)
            result.aggregation = aggregation
            result.stage_results[current] = aggregation
            result.stages_completed += 1
            summaries.append(self._summarize(
                current, aggregation.rows_processed, aggregation.rows_defaulted, len(aggregation.lines)
            ))

        except Exception as e:
            logger.error(f"[InvoicePipeline] ❌ Прогон {run_id} остановлен на стадии '{current}': {e}")
            try:
                self.store.write_error_log(run_id, current, e)
            except Exception as log_error:
                logger.error(f"[InvoicePipeline] ❌ Не удалось записать error_log: {log_error}")
            raise

        result.processing_time_ms = (time.time() - start_time) * 1000
        result.summary = RunSummaryDTO(
            run_id=run_id,
            stages=summaries,
            center_counts={c.value: len(lines) for c, lines in aggregation.center_results.items()},
            external_count=len(aggregation.external),
            published=published,
            processing_time_ms=result.processing_time_ms,
        )

        if result.summary.has_partial_failure:
            logger.warning(
                f"[InvoicePipeline] Прогон {run_id} завершён с ошибками записи: "
                f"{result.summary.chunks_failed} чанков"
            )
        else:
            logger.info(
                f"[InvoicePipeline] ✅ Прогон {run_id} завершён за {result.processing_time_ms:.1f}ms: "
                f"{len(aggregation.lines)} строк в итоговых таблицах"
            )
        return result

    def _check_cancelled(self, next_stage: str) -> None:
        if self.cancel_event.is_set():
            raise RunCancelledError(
                f"Прогон отменён перед стадией '{next_stage}'",
                component="InvoicePipeline",
            )

    def _ingest(self, raw_records: Sequence[Mapping[str, Any]]) -> BatchResult:
        """Маппинг колонок → RawOrderRow → OrderLine → orders_raw."""
        columns = self.rules.column_mapping.columns
        try:
            rows = [RawOrderRow.model_validate(map_columns(record, columns)) for record in raw_records]
        except ValidationError as e:
            raise ContractValidationError("ingestion", "RawOrderRow", e.errors())

        invalid = self.batch_processor.precheck(rows)
        if invalid:
            logger.info(f"[InvoicePipeline] Заказов с пустыми полями: {len(invalid)} (будут исправлены)")

        for table in STAGING_TABLES:
            self.store.truncate(table)

        lines = [OrderLine.from_raw(row, row_id) for row_id, row in enumerate(rows, start=1)]
        return self.batch_processor.ingest(self.store, RAW_TABLE, [line.to_record() for line in lines])

    def _run_stage(self, run_id: str, stage: IOrderStage, source: str, target: str):
        lines = self.store.fetch_lines(source)
        stage_result = stage.process(lines)
        batch = self.batch_processor.ingest(self.store, target, [line.to_record() for line in stage_result.lines])
        self.store.write_step_log(run_id, stage.name, stage_result.steps)
        logger.info(
            f"[InvoicePipeline] {stage.name}: {stage_result.rows_processed} → {len(stage_result.lines)} строк, "
            f"исправлено {stage_result.rows_defaulted}, сбойных чанков {batch.chunks_failed}"
        )
        return stage_result, batch

    def _publish(self, aggregation: AggregationResult) -> None:
        """Атомарная замена всех итоговых таблиц."""
        tables: Dict[str, List[Dict[str, Any]]] = {
            center_table_name(center): [line.to_record() for line in aggregation.center_results.get(center, [])]
            for center in Center
        }
        tables[FINAL_TABLE] = [line.to_record() for line in aggregation.final_lines]
        tables[EXTERNAL_TABLE] = [line.to_record() for line in aggregation.external]
        tables[ORDER_INFO_TABLE] = aggregation.order_info
        self.store.replace_tables(tables)

    @staticmethod
    def _summarize(
        stage_name: str,
        rows_processed: int,
        rows_defaulted: int,
        rows_out: int,
        batch: Optional[BatchResult] = None,
    ) -> StageSummary:
        return StageSummary(
            stage_name=stage_name,
            rows_processed=rows_processed,
            rows_defaulted=rows_defaulted,
            rows_out=rows_out,
            chunks_total=batch.chunks_total if batch else 0,
            chunks_failed=batch.chunks_failed if batch else 0,
            records_failed=batch.failure_count if batch else 0,
        )
