"""Expense taxonomy: category → ordered list of subcategories.

The taxonomy is static for the process lifetime. It feeds the classifier
prompt, the spreadsheet grid template and the fuzzy category resolver.
Iteration order is significant: the grid lays category blocks out left to
right in this order, and the first category/subcategory is the default
bucket for unresolvable names.
"""

from __future__ import annotations

DEFAULT_TAXONOMY: dict[str, list[str]] = {
    "Еда": [
        "Магаз", "Рестораны", "Рынок", "Кофейня", "Фастфуд", "Доставка",
        "Кондитерская", "Кафе", "Супермаркет", "Продукты",
    ],
    "Транспорт": [
        "Такси", "Шеринг", "Общественный", "Авиа", "Метро", "Автобус",
        "Поезд", "Троллейбус", "Самокат", "Велосипед", "Парковка",
    ],
    "Услуги": [
        "Жилье", "Комиссии, банки", "Туризм", "Парикмахерская", "Веб сервисы",
        "Курсы яхтинга", "Обустройство дома", "Мобильная связь", "Интернет",
        "Страхование", "Образование", "Медицина", "Ремонт", "Прачечная", "Уборка",
    ],
    "Всякая всячина": [
        "Одежда/обувь", "Развлечение", "Налоги", "Благотворительность",
        "Экскурсия", "Страховка", "Техника", "Новый iphone 13", "Подарки",
        "Книги", "Игрушки", "Хобби", "Спорт", "Питомцы", "Аксессуары",
        "Косметика", "Украшения",
    ],
    "Здоровье": [
        "Аптека", "Врач", "Стоматолог", "Анализы", "Массаж", "Фитнес", "Медстраховка",
    ],
    "Образование": [
        "Курсы", "Книги", "Онлайн-обучение", "Тренинги", "Школа", "Университет",
    ],
    "Дом": [
        "Аренда", "Коммуналка", "Ремонт", "Мебель", "Техника", "Декор", "Интернет",
    ],
    "Дети": [
        "Игрушки", "Одежда", "Кружки", "Секция", "Школа", "Питание",
    ],
    "Путешествия": [
        "Авиабилеты", "Отель", "Экскурсии", "Трансфер", "Страховка", "Питание",
    ],
    "Авто": [
        "Бензин", "Мойка", "Шиномонтаж", "Ремонт", "Страховка", "Парковка",
    ],
    "Питомцы": [
        "Корм", "Ветклиника", "Игрушки", "Аксессуары",
    ],
}


class Taxonomy:
    """Read-only view over a category → subcategories mapping.

    Args:
        mapping: Ordered mapping of category name to subcategory names.
            Defaults to DEFAULT_TAXONOMY.

    Raises:
        ValueError: If the mapping is empty or a category has no subcategories.
    """

    def __init__(self, mapping: dict[str, list[str]] | None = None):
        source = DEFAULT_TAXONOMY if mapping is None else mapping
        if not source:
            raise ValueError("Taxonomy must contain at least one category")
        self._mapping: dict[str, tuple[str, ...]] = {}
        for category, subcategories in source.items():
            subs = tuple(str(s) for s in (subcategories or []))
            if not subs:
                raise ValueError(f"Category '{category}' has no subcategories")
            self._mapping[str(category)] = subs

    def __contains__(self, category: object) -> bool:
        return category in self._mapping

    def __iter__(self):
        return iter(self._mapping)

    def __len__(self) -> int:
        return len(self._mapping)

    def __repr__(self) -> str:
        return f"Taxonomy({len(self._mapping)} categories)"

    @property
    def categories(self) -> list[str]:
        return list(self._mapping)

    def subcategories(self, category: str) -> list[str]:
        """Subcategories of category, or an empty list if unknown."""
        return list(self._mapping.get(category, ()))

    def items(self) -> list[tuple[str, list[str]]]:
        return [(c, list(s)) for c, s in self._mapping.items()]

    @property
    def default_category(self) -> str:
        return next(iter(self._mapping))

    def all_subcategories(self) -> list[str]:
        """Every subcategory across categories, first occurrence order, no repeats."""
        seen: dict[str, None] = {}
        for subs in self._mapping.values():
            for s in subs:
                seen.setdefault(s, None)
        return list(seen)

    def to_dict(self) -> dict[str, list[str]]:
        return {c: list(s) for c, s in self._mapping.items()}
