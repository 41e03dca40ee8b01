"""
Домен Invoicing: классификация и консолидация строк заказов.

Этот домен отвечает за:
1. Нормализацию и классификацию строк по центрам отгрузки
2. Замены товаров, overflow-перенаправление и консолидацию посылок
3. Сборку итоговых наборов строк по каждому центру

Граница домена: contracts.RawOrderRow (вход), contracts.RunSummaryDTO (выход)

ВАЖНО: Пакет намеренно ничего не импортирует на верхнем уровне
(src.domain.contracts зависит от src.invoicing.domain.models).
Оркестратор и фабрика: src.invoicing.application.
"""
