"""
Batch Ingestion Layer

ЦКП: Большие наборы записей пишутся в хранилище чанками с адаптивным
размером, повторами и изоляцией сбоев.

Алгоритм:
1. Перед каждым чанком: проба памяти
   - доступно < порога → размер чанка /2 (не ниже min)
   - доступно > 2 × порога и размер < начального → размер ×5/4 (не выше начального)
2. Запись чанка с повторами: max_retries, задержка base × 2^попытка
3. MemoryError при записи → размер /2, чанк дробится и пишется заново
4. Каждые N чанков → gc.collect()
5. Сбойный чанк НЕ прерывает загрузку: учитывается в BatchResult

ВАЖНО: Процессор ничего не знает о строках заказа. Он получает
последовательность записей и функцию записи чанка.
"""

import gc
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, List, Mapping, Optional, Sequence, Tuple
from loguru import logger

from config.settings import (
    DEFAULT_BATCH_SIZE,
    MIN_BATCH_SIZE,
    MAX_BATCH_SIZE,
    BATCH_MAX_WORKERS,
    MEMORY_THRESHOLD_MB,
    MAX_RETRIES,
    RETRY_BASE_DELAY_SECONDS,
    GC_EVERY_N_CHUNKS,
    SLOW_CHUNK_SECONDS,
    INVALID_ORDER_LOG_LIMIT,
)
from contracts.ingestion_dto import RawOrderRow
from src.invoicing.domain.interfaces import IMemoryProbe, IOrderStore
from .exceptions import BatchSizeError
from .memory_probe import PsutilMemoryProbe
from .table_names import resolve_table_name


ChunkWriter = Callable[[List[Any]], int]


@dataclass
class ChunkOutcome:
    """Результат записи одного чанка."""
    index: int
    size: int
    written: int = 0
    failed: int = 0
    attempts: int = 0
    error: Optional[str] = None


@dataclass
class BatchResult:
    """
    Итог batch-загрузки.

    ЦКП: (успешно, неуспешно) + детализация по чанкам.
    """
    total_records: int = 0
    success_count: int = 0
    failure_count: int = 0
    chunks_total: int = 0
    chunks_failed: int = 0
    failed_chunk_indices: List[int] = field(default_factory=list)
    chunk_sizes: List[int] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    elapsed_ms: float = 0.0

    def as_tuple(self) -> Tuple[int, int]:
        return self.success_count, self.failure_count

    def add(self, outcome: ChunkOutcome) -> None:
        self.success_count += outcome.written
        self.failure_count += outcome.failed
        if outcome.failed:
            self.chunks_failed += 1
            self.failed_chunk_indices.append(outcome.index)
            if outcome.error:
                self.errors.append(outcome.error)

    def to_dict(self) -> dict:
        return {
            "total_records": self.total_records,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "chunks_total": self.chunks_total,
            "chunks_failed": self.chunks_failed,
            "failed_chunk_indices": self.failed_chunk_indices,
            "chunk_sizes": self.chunk_sizes,
            "elapsed_ms": round(self.elapsed_ms, 2),
        }


@dataclass
class BatchStatus:
    """Снимок состояния процессора."""
    batch_size: int
    process_mb: float
    available_mb: float

    def to_dict(self) -> dict:
        return {
            "batch_size": self.batch_size,
            "process_mb": round(self.process_mb, 1),
            "available_mb": round(self.available_mb, 1),
        }


class BatchProcessor:
    """
    Адаптивная чанковая загрузка.

    Все зависимости инжектируются: проба памяти (по умолчанию psutil)
    и функция ожидания между повторами (по умолчанию time.sleep).
    """

    def __init__(
        self,
        memory_probe: Optional[IMemoryProbe] = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        min_batch_size: int = MIN_BATCH_SIZE,
        max_batch_size: int = MAX_BATCH_SIZE,
        memory_threshold_mb: float = MEMORY_THRESHOLD_MB,
        max_retries: int = MAX_RETRIES,
        retry_base_delay: float = RETRY_BASE_DELAY_SECONDS,
        gc_every: int = GC_EVERY_N_CHUNKS,
        slow_chunk_seconds: float = SLOW_CHUNK_SECONDS,
        concurrent: bool = False,
        max_workers: int = BATCH_MAX_WORKERS,
        sleep_func: Callable[[float], None] = time.sleep,
    ):
        if not 0 < min_batch_size <= max_batch_size:
            raise BatchSizeError(
                f"Некорректные границы чанка: [{min_batch_size}, {max_batch_size}]",
                component="BatchProcessor",
            )
        self.min_batch_size = min_batch_size
        self.max_batch_size = max_batch_size
        self._check_bounds(batch_size)

        self.memory_probe = memory_probe or PsutilMemoryProbe()
        self.initial_batch_size = batch_size
        self.memory_threshold_mb = memory_threshold_mb
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay
        self.gc_every = gc_every
        self.slow_chunk_seconds = slow_chunk_seconds
        self.concurrent = concurrent
        self.max_workers = max_workers
        self.sleep = sleep_func

        self._batch_size = batch_size
        self._lock = threading.Lock()

        logger.info(
            f"[BatchProcessor] Инициализирован: batch_size={batch_size}, "
            f"границы=[{min_batch_size}, {max_batch_size}], "
            f"порог памяти={memory_threshold_mb}MB, concurrent={concurrent}"
        )

    # === Размер чанка ===

    @property
    def batch_size(self) -> int:
        return self._batch_size

    def set_batch_size(self, size: int) -> None:
        """
        Ручная установка размера чанка.

        Raises:
            BatchSizeError: размер вне [min, max]
        """
        self._check_bounds(size)
        with self._lock:
            self._batch_size = size
        logger.info(f"[BatchProcessor] Размер чанка установлен: {size}")

    def _check_bounds(self, size: int) -> None:
        if not self.min_batch_size <= size <= self.max_batch_size:
            raise BatchSizeError(
                f"Размер чанка {size} вне [{self.min_batch_size}, {self.max_batch_size}]",
                component="BatchProcessor",
            )

    def _halve(self) -> int:
        with self._lock:
            self._batch_size = max(self.min_batch_size, self._batch_size // 2)
            return self._batch_size

    def _adjust_for_memory(self) -> int:
        available = self.memory_probe.available_mb()
        with self._lock:
            before = self._batch_size
            if available < self.memory_threshold_mb:
                self._batch_size = max(self.min_batch_size, before // 2)
            elif available > 2 * self.memory_threshold_mb and before < self.initial_batch_size:
                self._batch_size = min(self.initial_batch_size, before * 5 // 4)
            after = self._batch_size

        if after < before:
            logger.warning(
                f"[BatchProcessor] Мало памяти ({available:.0f}MB < {self.memory_threshold_mb}MB): "
                f"чанк {before} → {after}"
            )
        elif after > before:
            logger.debug(f"[BatchProcessor] Память восстановлена ({available:.0f}MB): чанк {before} → {after}")
        return after

    def get_status(self) -> BatchStatus:
        return BatchStatus(
            batch_size=self._batch_size,
            process_mb=self.memory_probe.process_mb(),
            available_mb=self.memory_probe.available_mb(),
        )

    # === Загрузка ===

    def ingest(self, store: IOrderStore, table: str, records: Sequence[Mapping[str, Any]]) -> BatchResult:
        """
        Пишет записи в таблицу хранилища.

        Args:
            store: Хранилище
            table: Имя таблицы или ключ "Tables.Invoice.<Name>"
            records: Плоские записи
        """
        table_name = resolve_table_name(table)
        logger.debug(f"[BatchProcessor] {table_name}: {len(records)} записей")
        return self.process(records, lambda chunk: store.bulk_insert(table_name, chunk))

    def process(self, records: Sequence[Any], writer: ChunkWriter) -> BatchResult:
        """
        Делит записи на чанки и пишет их через writer.

        Returns:
            BatchResult (as_tuple() → (успешно, неуспешно))
        """
        start_time = time.time()
        result = BatchResult(total_records=len(records))

        if self.concurrent:
            self._process_concurrent(records, writer, result)
        else:
            self._process_sequential(records, writer, result)

        result.elapsed_ms = (time.time() - start_time) * 1000
        if result.chunks_failed:
            logger.error(
                f"[BatchProcessor] ❌ Сбойных чанков: {result.chunks_failed}/{result.chunks_total} "
                f"(записей не записано: {result.failure_count})"
            )
        else:
            logger.debug(
                f"[BatchProcessor] ✅ {result.success_count} записей, "
                f"{result.chunks_total} чанков за {result.elapsed_ms:.1f}ms"
            )
        return result

    def _next_chunks(self, records: Sequence[Any]):
        """Генератор (index, chunk); размер пересчитывается перед каждым чанком."""
        offset = 0
        index = 0
        while offset < len(records):
            index += 1
            size = self._adjust_for_memory()
            chunk = list(records[offset:offset + size])
            offset += len(chunk)
            yield index, chunk

    def _process_sequential(self, records: Sequence[Any], writer: ChunkWriter, result: BatchResult) -> None:
        for index, chunk in self._next_chunks(records):
            result.chunks_total += 1
            result.chunk_sizes.append(len(chunk))
            result.add(self._write_chunk(index, chunk, writer))
            self._maybe_collect(index)

    def _process_concurrent(self, records: Sequence[Any], writer: ChunkWriter, result: BatchResult) -> None:
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = []
            for index, chunk in self._next_chunks(records):
                result.chunks_total += 1
                result.chunk_sizes.append(len(chunk))
                futures.append(executor.submit(self._write_chunk, index, chunk, writer))
                self._maybe_collect(index)

            for future in futures:
                result.add(future.result())

    def _maybe_collect(self, index: int) -> None:
        if self.gc_every and index % self.gc_every == 0:
            collected = gc.collect()
            logger.debug(f"[BatchProcessor] gc после чанка {index}: {collected} объектов")

    def _write_chunk(self, index: int, chunk: List[Any], writer: ChunkWriter) -> ChunkOutcome:
        """
        Пишет чанк с повторами.

        Исчерпание попыток → ChunkOutcome.failed = len(chunk), исключение
        наружу не пробрасывается.
        """
        outcome = ChunkOutcome(index=index, size=len(chunk))
        attempt = 0
        while True:
            outcome.attempts = attempt + 1
            try:
                chunk_start = time.time()
                writer(chunk)
                elapsed = time.time() - chunk_start
                if elapsed > self.slow_chunk_seconds:
                    logger.warning(f"[BatchProcessor] Медленный чанк {index}: {elapsed:.1f}s ({len(chunk)} записей)")
                outcome.written = len(chunk)
                return outcome

            except MemoryError:
                if len(chunk) <= self.min_batch_size:
                    error = f"MemoryError на минимальном чанке ({len(chunk)})"
                else:
                    return self._split_after_memory_error(index, chunk, writer)

            except Exception as e:
                error = f"{type(e).__name__}: {e}"

            if attempt >= self.max_retries:
                logger.error(f"[BatchProcessor] ❌ Чанк {index} не записан после {attempt + 1} попыток: {error}")
                outcome.failed = len(chunk)
                outcome.error = f"chunk {index}: {error}"
                return outcome

            delay = self.retry_base_delay * (2 ** attempt)
            logger.warning(
                f"[BatchProcessor] Чанк {index}, попытка {attempt + 1}/{self.max_retries + 1}: {error}. "
                f"Повтор через {delay:.1f}s"
            )
            self.sleep(delay)
            attempt += 1

    def _split_after_memory_error(self, index: int, chunk: List[Any], writer: ChunkWriter) -> ChunkOutcome:
        new_size = min(self._halve(), max(self.min_batch_size, len(chunk) // 2))
        logger.warning(f"[BatchProcessor] MemoryError на чанке {index} ({len(chunk)}): дробление по {new_size}")

        outcome = ChunkOutcome(index=index, size=len(chunk))
        for offset in range(0, len(chunk), new_size):
            part = self._write_chunk(index, chunk[offset:offset + new_size], writer)
            outcome.written += part.written
            outcome.failed += part.failed
            outcome.attempts += part.attempts
            outcome.error = outcome.error or part.error
        return outcome

    # === Предпроверка ===

    def precheck(self, rows: Sequence[RawOrderRow], log_limit: int = INVALID_ORDER_LOG_LIMIT) -> List[Tuple[int, List[str]]]:
        """
        Находит заказы без обязательных полей.

        Строки НЕ отбрасываются: нормализация заполнит значения по умолчанию.
        В лог попадают первые log_limit нарушений.

        Returns:
            [(позиция, [пустые поля]), ...]
        """
        invalid = []
        for position, row in enumerate(rows):
            missing = row.invalid_fields()
            if missing:
                invalid.append((position, missing))

        for position, missing in invalid[:log_limit]:
            logger.warning(f"[BatchProcessor] Заказ #{position}: пустые поля {missing}")
        if len(invalid) > log_limit:
            logger.warning(f"[BatchProcessor] ... и ещё {len(invalid) - log_limit} заказов с пустыми полями")
        return invalid

