"""Stage 4: Consolidation - группировка по адресу и доп. посылки."""

from .stage import ConsolidationStage, number_placeholders
from .parcel_calculator import parcel_factor_milli, parcel_count

__all__ = [
    "ConsolidationStage",
    "number_placeholders",
    "parcel_factor_milli",
    "parcel_count",
]
