"""
Контракты DTO на границах движка Invoice Router.

Все контракты используют Pydantic v2 для валидации.

Контракты:
- Ingestion -> Invoicing: RawOrderRow (ingestion_dto.py)
- Invoicing -> Operator: RunSummaryDTO (run_summary_dto.py)
"""

# Ingestion -> Invoicing
from .ingestion_dto import RawOrderRow, map_columns

# Invoicing -> Operator
from .run_summary_dto import RunSummaryDTO, StageSummary

__all__ = [
    # Ingestion -> Invoicing
    "RawOrderRow",
    "map_columns",
    # Invoicing -> Operator
    "RunSummaryDTO",
    "StageSummary",
]
