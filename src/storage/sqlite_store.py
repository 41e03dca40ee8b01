"""
SQLite хранилище строк заказов.

ЦКП: Транзакционная персистентность между стадиями пайплайна.

Таблицы:
- staging: orders_raw, orders_normalized, ..., orders_consolidated
- итоговые: invoice_final, invoice_final_<center>, invoice_external, order_info
- журналы: step_log, error_log

ВАЖНО: Итоговые таблицы заменяются ТОЛЬКО через replace_tables (одна
транзакция на все таблицы). Потребитель никогда не видит частичный результат.
"""

import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import fields
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Sequence, Tuple
from loguru import logger

from config.settings import TABLE_NAMES
from src.ingestion.table_names import center_table_name, resolve_table_name, validate_table_name
from src.invoicing.domain.exceptions import StoreError
from src.invoicing.domain.interfaces import IOrderStore
from src.invoicing.domain.models import (
    Center,
    ORDER_INFO_COLUMNS,
    ORDER_LINE_COLUMNS,
    OrderLine,
)
from src.invoicing.domain.stage_result import StepLogEntry


STEP_LOG_COLUMNS = ("run_id", "stage_name", "step_id", "description", "affected_rows", "logged_at")
ERROR_LOG_COLUMNS = ("run_id", "stage_name", "error_type", "message", "logged_at")

# Таблицы, не являющиеся наборами OrderLine
_SPECIAL_TABLES = {
    "Tables.Invoice.OrderInfo": ORDER_INFO_COLUMNS,
    "Tables.Invoice.StepLog": STEP_LOG_COLUMNS,
    "Tables.Invoice.ErrorLog": ERROR_LOG_COLUMNS,
}

_SQL_TYPES = {int: "INTEGER", float: "REAL", bool: "INTEGER"}


def _order_line_schema() -> List[Tuple[str, str]]:
    return [(f.name, _SQL_TYPES.get(f.type, "TEXT")) for f in fields(OrderLine)]


class SqliteOrderStore(IOrderStore):
    """
    IOrderStore на sqlite3.

    Одно соединение на экземпляр, доступ сериализован RLock (batch-слой
    может писать чанки из нескольких потоков).
    """

    def __init__(self, db_path: str = ":memory:"):
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        self.db_path = db_path
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._columns: Dict[str, Tuple[str, ...]] = {}

        self.ensure_tables()
        logger.info(f"[SqliteOrderStore] Открыта база: {db_path}")

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # === Схема ===

    def ensure_tables(self) -> None:
        """Создаёт все таблицы, если их нет."""
        line_schema = _order_line_schema()
        with self.transaction() as conn:
            for key, name in TABLE_NAMES.items():
                if key in _SPECIAL_TABLES:
                    self._create_table(conn, name, [(c, "TEXT") for c in _SPECIAL_TABLES[key]])
                else:
                    self._create_table(conn, name, line_schema)
            for center in Center:
                self._create_table(conn, center_table_name(center), line_schema)

    def _create_table(self, conn: sqlite3.Connection, name: str, schema: List[Tuple[str, str]]) -> None:
        validate_table_name(name)
        columns_sql = ", ".join(f'"{column}" {sql_type}' for column, sql_type in schema)
        conn.execute(f'CREATE TABLE IF NOT EXISTS "{name}" ({columns_sql})')
        self._columns[name] = tuple(column for column, _ in schema)

    def _table(self, table: str) -> Tuple[str, Tuple[str, ...]]:
        name = resolve_table_name(table)
        if name not in self._columns:
            raise StoreError(f"Неизвестная таблица: {name}", component="SqliteOrderStore")
        return name, self._columns[name]

    # === Транзакции ===

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Commit при успехе, rollback при любой ошибке."""
        with self._lock:
            try:
                yield self._conn
                self._conn.commit()
            except sqlite3.Error as e:
                self._conn.rollback()
                raise StoreError("Ошибка транзакции SQLite", component="SqliteOrderStore", original_error=e)
            except BaseException:
                self._conn.rollback()
                raise

    # === Запись ===

    def truncate(self, table: str) -> None:
        name, _ = self._table(table)
        with self.transaction() as conn:
            conn.execute(f'DELETE FROM "{name}"')

    def bulk_insert(self, table: str, records: Sequence[Mapping[str, Any]]) -> int:
        name, columns = self._table(table)
        with self.transaction() as conn:
            self._insert(conn, name, columns, records)
        return len(records)

    def _insert(
        self,
        conn: sqlite3.Connection,
        name: str,
        columns: Tuple[str, ...],
        records: Sequence[Mapping[str, Any]],
    ) -> None:
        if not records:
            return
        placeholders = ", ".join("?" for _ in columns)
        column_sql = ", ".join(f'"{c}"' for c in columns)
        conn.executemany(
            f'INSERT INTO "{name}" ({column_sql}) VALUES ({placeholders})',
            [tuple(record.get(c) for c in columns) for record in records],
        )

    def replace_tables(self, tables: Mapping[str, Sequence[Mapping[str, Any]]]) -> None:
        """
        Атомарная замена: DELETE + INSERT для всех таблиц в одной транзакции.

        При ошибке на любой таблице откатываются все.
        """
        resolved = [(self._table(table), records) for table, records in tables.items()]
        with self.transaction() as conn:
            for (name, columns), records in resolved:
                conn.execute(f'DELETE FROM "{name}"')
                self._insert(conn, name, columns, records)
        logger.debug(f"[SqliteOrderStore] Заменено таблиц: {len(resolved)}")

    def write_step_log(self, run_id: str, stage_name: str, steps: Iterable[StepLogEntry]) -> None:
        now = datetime.now().isoformat(timespec="seconds")
        records = [
            {
                "run_id": run_id,
                "stage_name": stage_name,
                "step_id": step.step_id,
                "description": step.description,
                "affected_rows": step.affected_rows,
                "logged_at": now,
            }
            for step in steps
        ]
        self.bulk_insert("Tables.Invoice.StepLog", records)

    def write_error_log(self, run_id: str, stage_name: str, error: BaseException) -> None:
        self.bulk_insert("Tables.Invoice.ErrorLog", [{
            "run_id": run_id,
            "stage_name": stage_name,
            "error_type": type(error).__name__,
            "message": str(error),
            "logged_at": datetime.now().isoformat(timespec="seconds"),
        }])

    # === Чтение ===

    def fetch_records(self, table: str) -> List[Dict[str, Any]]:
        name, _ = self._table(table)
        with self._lock:
            try:
                rows = self._conn.execute(f'SELECT * FROM "{name}" ORDER BY rowid').fetchall()
            except sqlite3.Error as e:
                raise StoreError(f"Ошибка чтения {name}", component="SqliteOrderStore", original_error=e)
        return [dict(row) for row in rows]

    def fetch_lines(self, table: str) -> List[OrderLine]:
        """Строки в порядке ordering_key (source_row_id, sub_index, placeholder_seq)."""
        name, columns = self._table(table)
        if columns != ORDER_LINE_COLUMNS:
            raise StoreError(f"Таблица {name} не содержит строк заказов", component="SqliteOrderStore")
        with self._lock:
            try:
                rows = self._conn.execute(
                    f'SELECT * FROM "{name}" ORDER BY source_row_id, sub_index, placeholder_seq, rowid'
                ).fetchall()
            except sqlite3.Error as e:
                raise StoreError(f"Ошибка чтения {name}", component="SqliteOrderStore", original_error=e)
        return [OrderLine.from_record(dict(row)) for row in rows]

    def count(self, table: str) -> int:
        name, _ = self._table(table)
        with self._lock:
            return self._conn.execute(f'SELECT COUNT(*) FROM "{name}"').fetchone()[0]
