"""
Исключения Batch Ingestion.

Сбой отдельного чанка НЕ является исключением для вызывающего кода:
он повторяется и при исчерпании попыток учитывается в BatchResult.
"""

from src.invoicing.domain.exceptions import InvoicingError


class BatchIngestionError(InvoicingError):
    """Базовое исключение batch-слоя."""
    pass


class InvalidTableNameError(BatchIngestionError):
    """Имя таблицы не прошло проверку (формат, длина, SQL keyword)."""
    pass


class BatchSizeError(BatchIngestionError):
    """Размер чанка вне допустимых границ."""
    pass
