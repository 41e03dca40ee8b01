"""
Фабрика для создания компонентов домена Invoicing.

Предоставляет удобные методы для создания и конфигурации
всех компонентов (правила, хранилище, batch-слой, пайплайн)
через единый интерфейс.
"""

import threading
from pathlib import Path
from typing import Optional, Union
from loguru import logger

from config.settings import (
    BATCH_CONCURRENT,
    BATCH_MAX_WORKERS,
    DATABASE_PATH,
    DEFAULT_BATCH_SIZE,
    RULES_PATH,
)
from src.ingestion.batch_processor import BatchProcessor
from src.storage.sqlite_store import SqliteOrderStore
from ..domain.interfaces import IMemoryProbe, IOrderStore
from ..pipeline import InvoicePipeline
from ..rules.rule_loader import RuleSet


class InvoicingComponentFactory:
    """
    Фабрика для создания компонентов домена Invoicing.

    Домен Invoicing отвечает за:
    - Классификацию строк заказов по центрам
    - Замены, overflow и консолидацию посылок
    - Публикацию итоговых таблиц по центрам
    """

    @staticmethod
    def create_rules(path: Optional[Union[str, Path]] = None) -> RuleSet:
        """
        Загружает правила.

        Args:
            path: YAML с правилами (по умолчанию RULES_PATH)

        Raises:
            InvoicingConfigurationError: правила невалидны
        """
        logger.debug("[Invoicing] Загрузка правил")
        return RuleSet.load(path or RULES_PATH)

    @staticmethod
    def create_store(db_path: Optional[str] = None) -> IOrderStore:
        logger.debug("[Invoicing] Создание хранилища")
        return SqliteOrderStore(db_path or DATABASE_PATH)

    @staticmethod
    def create_batch_processor(
        memory_probe: Optional[IMemoryProbe] = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        concurrent: bool = BATCH_CONCURRENT,
        max_workers: int = BATCH_MAX_WORKERS,
    ) -> BatchProcessor:
        logger.debug("[Invoicing] Создание batch-процессора")
        return BatchProcessor(
            memory_probe=memory_probe,
            batch_size=batch_size,
            concurrent=concurrent,
            max_workers=max_workers,
        )

    @staticmethod
    def create_pipeline(
        store: Optional[IOrderStore] = None,
        rules: Optional[RuleSet] = None,
        batch_processor: Optional[BatchProcessor] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> InvoicePipeline:
        """
        Создаёт пайплайн; недостающие компоненты создаются по умолчанию.

        Returns:
            InvoicePipeline со стандартными стадиями
        """
        logger.info("[Invoicing] Создание пайплайна")

        if rules is None:
            rules = InvoicingComponentFactory.create_rules()

        if store is None:
            store = InvoicingComponentFactory.create_store()

        if batch_processor is None:
            batch_processor = InvoicingComponentFactory.create_batch_processor()

        return InvoicePipeline(
            store=store,
            rules=rules,
            batch_processor=batch_processor,
            cancel_event=cancel_event,
        )
