"""
Проверка и разрешение имён таблиц.

Имя таблицы подставляется в SQL напрямую (параметризовать нельзя),
поэтому каждое имя проходит проверку:
- формат: ^[가-힣a-zA-Z_][가-힣a-zA-Z0-9_]*$
- длина: 1..64
- не SQL keyword
"""

import re
from typing import Optional

from config.settings import CENTER_TABLE_PREFIX, TABLE_KEY_PREFIX, TABLE_NAMES
from src.invoicing.domain.models import Center
from .exceptions import InvalidTableNameError


TABLE_NAME_PATTERN = re.compile(r"^[가-힣a-zA-Z_][가-힣a-zA-Z0-9_]*$")
MAX_TABLE_NAME_LENGTH = 64

SQL_KEYWORDS = frozenset({
    "SELECT", "INSERT", "UPDATE", "DELETE", "DROP", "CREATE", "ALTER", "TABLE",
    "FROM", "WHERE", "JOIN", "UNION", "INTO", "VALUES", "INDEX", "VIEW",
    "TRUNCATE", "GRANT", "REVOKE", "EXEC", "EXECUTE", "DATABASE", "SCHEMA",
    "ORDER", "GROUP", "HAVING", "LIMIT", "AND", "OR", "NOT", "NULL",
})


def validate_table_name(name: str) -> str:
    """
    Проверяет имя таблицы.

    Returns:
        То же имя (для цепочек вызовов)

    Raises:
        InvalidTableNameError: с причиной
    """
    if not name or len(name) > MAX_TABLE_NAME_LENGTH:
        raise InvalidTableNameError(
            f"Недопустимая длина имени таблицы: '{name}' (1..{MAX_TABLE_NAME_LENGTH})",
            component="TableNames",
        )
    if not TABLE_NAME_PATTERN.match(name):
        raise InvalidTableNameError(
            f"Недопустимые символы в имени таблицы: '{name}'",
            component="TableNames",
        )
    if name.upper() in SQL_KEYWORDS:
        raise InvalidTableNameError(
            f"Имя таблицы совпадает с SQL keyword: '{name}'",
            component="TableNames",
        )
    return name


def resolve_table_name(name_or_key: str, default: Optional[str] = None) -> str:
    """
    Разрешает логический ключ "Tables.Invoice.<Name>" в физическое имя.

    Обычные имена проходят только проверку. Для неизвестного ключа
    используется default.
    """
    if name_or_key.startswith(TABLE_KEY_PREFIX):
        resolved = TABLE_NAMES.get(name_or_key, default)
        if resolved is None:
            raise InvalidTableNameError(
                f"Ключ таблицы не найден в настройках: {name_or_key}",
                component="TableNames",
            )
        return validate_table_name(resolved)
    return validate_table_name(name_or_key)


def center_table_name(center: Center) -> str:
    """Итоговая таблица центра: invoice_final_<center>."""
    return validate_table_name(f"{CENTER_TABLE_PREFIX}{center.value}")
