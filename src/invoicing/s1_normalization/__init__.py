"""Stage 1: Normalization - очистка сырых полей."""

from .stage import NormalizationStage

__all__ = ["NormalizationStage"]
