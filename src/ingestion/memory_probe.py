"""Проба памяти на psutil."""

import psutil

from src.invoicing.domain.interfaces import IMemoryProbe


BYTES_IN_MB = 1024 * 1024


class PsutilMemoryProbe(IMemoryProbe):
    """Доступная системная память и RSS текущего процесса."""

    def __init__(self) -> None:
        self._process = psutil.Process()

    def available_mb(self) -> float:
        return psutil.virtual_memory().available / BYTES_IN_MB

    def process_mb(self) -> float:
        return self._process.memory_info().rss / BYTES_IN_MB
