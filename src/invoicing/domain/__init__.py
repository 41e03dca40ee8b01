"""
Domain слой домена Invoicing.

Содержит модели, интерфейсы и исключения.
"""

from .models import (
    Center,
    ConsolidationClass,
    PackingKind,
    OrderLine,
    TERMINAL_CLASSES,
)

from .interfaces import (
    IOrderStage,
    IOrderStore,
    IMemoryProbe,
)

from .exceptions import (
    InvoicingError,
    InvoicingConfigurationError,
    IntegrityViolationError,
    RunCancelledError,
    StoreError,
)

from .stage_result import StageResult, StepLogEntry

__all__ = [
    # Модели
    "Center",
    "ConsolidationClass",
    "PackingKind",
    "OrderLine",
    "TERMINAL_CLASSES",

    # Интерфейсы
    "IOrderStage",
    "IOrderStore",
    "IMemoryProbe",

    # Исключения
    "InvoicingError",
    "InvoicingConfigurationError",
    "IntegrityViolationError",
    "RunCancelledError",
    "StoreError",

    # Результаты стадий
    "StageResult",
    "StepLogEntry",
]
