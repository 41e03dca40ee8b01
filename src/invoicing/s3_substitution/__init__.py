"""Stage 3: Substitution - виртуальный код → 1..4 реальных товара."""

from .stage import SubstitutionStage

__all__ = ["SubstitutionStage"]
