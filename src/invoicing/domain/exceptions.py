"""
Исключения для домена Invoicing.

Ошибки конфигурации, целостности и отмены прогона.
Дефекты отдельных строк НЕ являются исключениями: они исправляются
значениями по умолчанию внутри стадий.
"""

from typing import Optional


class InvoicingError(Exception):
    """Базовое исключение для ошибок домена Invoicing."""

    def __init__(
        self,
        message: str,
        component: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        self.message = message
        self.component = component
        self.original_error = original_error
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        msg = f"Invoicing Error: {self.message}"
        if self.component:
            msg += f" (Component: {self.component})"
        if self.original_error:
            msg += f" [Original: {type(self.original_error).__name__}: {str(self.original_error)}]"
        return msg


class InvoicingConfigurationError(InvoicingError):
    """
    Ошибка конфигурации правил (фатальная).

    Поднимается ДО любых изменений данных. Поле key содержит
    конкретный отсутствующий или невалидный ключ.
    """

    def __init__(
        self,
        message: str,
        key: Optional[str] = None,
        component: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        self.key = key
        super().__init__(message, component=component, original_error=original_error)

    def _format_message(self) -> str:
        msg = super()._format_message()
        if self.key:
            msg += f" [Key: {self.key}]"
        return msg


class IntegrityViolationError(InvoicingError):
    """Нарушение инварианта стадии (строка в двух центрах и т.п.)."""
    pass


class RunCancelledError(InvoicingError):
    """Прогон отменён оператором между стадиями."""
    pass


class StoreError(InvoicingError):
    """Ошибка персистентного хранилища вне batch-слоя."""
    pass
