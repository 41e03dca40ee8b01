#!/usr/bin/env python3
"""
Запуск пайплайна Invoice Router на снимке сырых заказов.

Использование:
    python scripts/run_invoice_pipeline.py data/input/orders.csv
    python scripts/run_invoice_pipeline.py data/input/orders.json --db data/invoice.db
    python scripts/run_invoice_pipeline.py orders.csv --rules my_rules.yaml --batch-size 200

Этот скрипт:
1. Читает снимок сырых строк (CSV с заголовками или JSON-массив объектов)
2. Прогоняет 6 стадий и публикует итоговые таблицы в SQLite
3. Выводит отчёт по стадиям и количество строк по центрам
"""

import sys
import csv
import json
import argparse
from pathlib import Path

from loguru import logger

# Добавляем корень проекта в путь
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from config.settings import DATABASE_PATH, LOG_LEVEL, RULES_PATH, validate_config
from contracts.run_summary_dto import RunSummaryDTO
from src.invoicing.application.factory import InvoicingComponentFactory
from src.invoicing.domain.exceptions import InvoicingError


def read_snapshot(path: Path) -> list:
    """Читает сырые строки: .json (массив объектов) или .csv (utf-8, заголовки)."""
    if path.suffix.lower() == ".json":
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, list):
            raise ValueError(f"Ожидался JSON-массив объектов: {path}")
        return data

    with open(path, "r", encoding="utf-8-sig", newline="") as f:
        return list(csv.DictReader(f))


def print_summary(summary: RunSummaryDTO) -> None:
    print("\n" + "=" * 72)
    print(f"  ПРОГОН {summary.run_id}  ({summary.processing_time_ms:.0f}ms)")
    print("=" * 72)
    print(f"  {'Стадия':<16}{'обработано':>12}{'исправлено':>12}{'на выходе':>12}{'сбой чанков':>14}")
    for stage in summary.stages:
        print(
            f"  {stage.stage_name:<16}{stage.rows_processed:>12}{stage.rows_defaulted:>12}"
            f"{stage.rows_out:>12}{stage.chunks_failed:>14}"
        )

    print("\n  Строк по центрам:")
    for center, count in summary.center_counts.items():
        if count:
            print(f"    {center:<16}{count:>8}")
    print(f"    {'external':<16}{summary.external_count:>8}")

    if summary.has_partial_failure:
        print(f"\n  [WARN] Не записано чанков: {summary.chunks_failed}")


def main():
    """Главная функция."""
    parser = argparse.ArgumentParser(description="Классификация и консолидация заказов по центрам")
    parser.add_argument("path", help="Снимок сырых строк (.csv или .json)")
    parser.add_argument("--db", default=DATABASE_PATH, help="Путь к SQLite базе")
    parser.add_argument("--rules", default=RULES_PATH, help="YAML с правилами")
    parser.add_argument("--batch-size", type=int, default=None, help="Начальный размер чанка")
    parser.add_argument("--concurrent", action="store_true", help="Параллельная запись чанков")
    parser.add_argument("--json", action="store_true", help="Вывести отчёт как JSON")
    args = parser.parse_args()

    validate_config()

    snapshot = Path(args.path)
    if not snapshot.exists():
        print(f"[ERROR] Файл не найден: {snapshot}")
        sys.exit(1)

    records = read_snapshot(snapshot)
    logger.info(f"Прочитано строк: {len(records)} из {snapshot.name}")

    batch_kwargs = {"concurrent": args.concurrent}
    if args.batch_size:
        batch_kwargs["batch_size"] = args.batch_size

    try:
        pipeline = InvoicingComponentFactory.create_pipeline(
            store=InvoicingComponentFactory.create_store(args.db),
            rules=InvoicingComponentFactory.create_rules(args.rules),
            batch_processor=InvoicingComponentFactory.create_batch_processor(**batch_kwargs),
        )
        result = pipeline.run(records)
    except InvoicingError as e:
        logger.error(f"❌ {e}")
        sys.exit(2)

    if args.json:
        print(json.dumps(result.summary.model_dump(), ensure_ascii=False, indent=2))
    else:
        print_summary(result.summary)

    if result.summary.has_partial_failure:
        sys.exit(3)


if __name__ == "__main__":
    logger.remove()
    logger.add(
        sys.stdout,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <level>{message}</level>",
        level=LOG_LEVEL
    )

    main()
