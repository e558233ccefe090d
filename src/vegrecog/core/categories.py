"""The closed set of categories the classifier recognizes."""

from __future__ import annotations

from enum import StrEnum


class Category(StrEnum):
    """Known categories, in model output index order."""

    TOMATO = "tomato"
    CARROT = "carrot"
    POTATO = "potato"


DISPLAY_NAMES: dict[Category, str] = {
    Category.TOMATO: "Tomate",
    Category.CARROT: "Carotte",
    Category.POTATO: "Pomme de terre",
}

KNOWN_CATEGORIES: frozenset[Category] = frozenset(Category)


def display_name(category: Category) -> str:
    """Return the human-readable name for a category."""
    return DISPLAY_NAMES[category]
