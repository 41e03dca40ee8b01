"""Invoice Router - движок классификации и консолидации заказов по центрам отгрузки."""
