"""Stage 2: Classification - строка → центр отгрузки."""

from .stage import ClassificationStage, classification_key_of

__all__ = ["ClassificationStage", "classification_key_of"]
