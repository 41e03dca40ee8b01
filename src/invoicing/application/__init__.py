"""
Application слой домена Invoicing.

Содержит фабрику и оркестратор для использования компонентов.
"""

from .factory import InvoicingComponentFactory
from ..pipeline import InvoicePipeline, PipelineResult

__all__ = [
    "InvoicingComponentFactory",
    "InvoicePipeline",
    "PipelineResult",
]
