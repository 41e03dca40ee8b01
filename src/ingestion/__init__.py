"""
Batch Ingestion: адаптивная чанковая загрузка в хранилище.
"""

from .batch_processor import BatchProcessor, BatchResult, BatchStatus
from .memory_probe import PsutilMemoryProbe
from .table_names import center_table_name, resolve_table_name, validate_table_name
from .exceptions import BatchIngestionError, BatchSizeError, InvalidTableNameError

__all__ = [
    "BatchProcessor",
    "BatchResult",
    "BatchStatus",
    "PsutilMemoryProbe",
    "center_table_name",
    "resolve_table_name",
    "validate_table_name",
    "BatchIngestionError",
    "BatchSizeError",
    "InvalidTableNameError",
]
