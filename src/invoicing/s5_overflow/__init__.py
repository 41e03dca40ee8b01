"""Stage 5: Overflow Split - перенаправление части строк центра."""

from .stage import OverflowSplitStage, apply_prefix

__all__ = ["OverflowSplitStage", "apply_prefix"]
