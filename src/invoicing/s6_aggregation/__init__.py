"""Stage 6: Aggregation - итоговые наборы строк по центрам."""

from .stage import AggregationStage, AggregationResult, sort_key

__all__ = ["AggregationStage", "AggregationResult", "sort_key"]
