"""
Настройки проекта Invoice Router (движок классификации и консолидации заказов).

ВАЖНО: Путь к базе данных и к файлу правил можно переопределить через
переменные окружения INVOICE_DB_PATH и INVOICE_RULES_PATH.
"""

import os
from pathlib import Path

# =============================================================================
# ПУТИ ПРОЕКТА
# =============================================================================
PROJECT_ROOT = Path(__file__).parent.parent
DATA_DIR = PROJECT_ROOT / "data"
INPUT_DIR = DATA_DIR / "input"
OUTPUT_DIR = DATA_DIR / "output"

# SQLite база (staging + итоговые таблицы)
DATABASE_PATH = os.getenv("INVOICE_DB_PATH", str(DATA_DIR / "invoice.db"))

# YAML с правилами (классификация, замены, overflow, политики)
RULES_PATH = os.getenv(
    "INVOICE_RULES_PATH",
    str(PROJECT_ROOT / "src" / "invoicing" / "rules" / "default_rules.yaml")
)

# =============================================================================
# ЛОГИРОВАНИЕ
# =============================================================================
LOG_LEVEL = os.getenv("INVOICE_LOG_LEVEL", "INFO")

# =============================================================================
# НАСТРОЙКИ BATCH INGESTION
# =============================================================================
DEFAULT_BATCH_SIZE = 500
MIN_BATCH_SIZE = 50
MAX_BATCH_SIZE = 2000

# Порог доступной памяти (MB): ниже порога размер чанка уменьшается вдвое
MEMORY_THRESHOLD_MB = int(os.getenv("INVOICE_MEMORY_THRESHOLD_MB", "500"))

# Повторы при сбое чанка: 1s, 2s, 4s
MAX_RETRIES = 3
RETRY_BASE_DELAY_SECONDS = 1.0

# gc.collect() каждые N чанков
GC_EVERY_N_CHUNKS = 10

# Предупреждение о медленной вставке чанка
SLOW_CHUNK_SECONDS = 5.0

# Сколько невалидных заказов выводить в лог при precheck
INVALID_ORDER_LOG_LIMIT = 10

# Параллельная загрузка чанков (по умолчанию выключена)
BATCH_CONCURRENT = os.getenv("INVOICE_BATCH_CONCURRENT", "0") == "1"
BATCH_MAX_WORKERS = int(os.getenv("INVOICE_BATCH_MAX_WORKERS", str(os.cpu_count() or 1)))

# Публиковать итоговые таблицы, если часть чанков не записалась.
# "0" → предыдущий результат остаётся нетронутым
PUBLISH_ON_PARTIAL_FAILURE = os.getenv("INVOICE_PUBLISH_ON_PARTIAL_FAILURE", "1") == "1"

# =============================================================================
# ТАБЛИЦЫ
# =============================================================================
# Ключ конфигурации: "Tables.Invoice.<Name>" → физическое имя таблицы
TABLE_KEY_PREFIX = "Tables.Invoice."

TABLE_NAMES = {
    "Tables.Invoice.Raw": "orders_raw",
    "Tables.Invoice.Normalized": "orders_normalized",
    "Tables.Invoice.Classified": "orders_classified",
    "Tables.Invoice.Substituted": "orders_substituted",
    "Tables.Invoice.Overflow": "orders_overflow",
    "Tables.Invoice.Consolidated": "orders_consolidated",
    "Tables.Invoice.Final": "invoice_final",
    "Tables.Invoice.External": "invoice_external",
    "Tables.Invoice.OrderInfo": "order_info",
    "Tables.Invoice.StepLog": "step_log",
    "Tables.Invoice.ErrorLog": "error_log",
}

# Префикс итоговых таблиц по центрам: invoice_final_<center>
CENTER_TABLE_PREFIX = "invoice_final_"


def validate_config():
    """Проверяет согласованность настроек."""
    if not (MIN_BATCH_SIZE <= DEFAULT_BATCH_SIZE <= MAX_BATCH_SIZE):
        raise ValueError(
            f"DEFAULT_BATCH_SIZE={DEFAULT_BATCH_SIZE} вне диапазона "
            f"[{MIN_BATCH_SIZE}, {MAX_BATCH_SIZE}]"
        )

    if MEMORY_THRESHOLD_MB <= 0:
        raise ValueError(f"MEMORY_THRESHOLD_MB должен быть > 0, получено: {MEMORY_THRESHOLD_MB}")

    if MAX_RETRIES < 0:
        raise ValueError(f"MAX_RETRIES не может быть отрицательным: {MAX_RETRIES}")

    if BATCH_MAX_WORKERS < 1:
        raise ValueError(f"BATCH_MAX_WORKERS должен быть >= 1, получено: {BATCH_MAX_WORKERS}")

    for key in TABLE_NAMES:
        if not key.startswith(TABLE_KEY_PREFIX):
            raise ValueError(f"Ключ таблицы должен начинаться с {TABLE_KEY_PREFIX}: {key}")

    return True
