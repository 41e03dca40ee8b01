"""
Расчёт количества посылок (택배수량).

Доля посылки считается в целых тысячных, чтобы сумма по группе не
накапливала ошибку float:

    factor_milli = floor(1000 / units) × quantity
    parcel_count = ceil(sum(factor_milli) / 1000), минимум 1
"""

from typing import Iterable

MILLI = 1000


def parcel_factor_milli(units: int, quantity: int) -> int:
    """Доля посылки строки в тысячных (units <= 0 трактуется как 1)."""
    return (MILLI // max(units, 1)) * quantity


def parcel_count(factors_milli: Iterable[int]) -> int:
    """Округление суммы долей вверх до целого числа посылок."""
    total = sum(factors_milli)
    return max(1, -(-total // MILLI))


def milli_to_float(value: int) -> float:
    return value / MILLI
