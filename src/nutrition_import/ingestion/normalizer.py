"""Entity normalizer — one raw row in, one entity or one skip reason out.

Every function here is pure: it never touches storage, never logs, and
never raises for bad data.  Malformed rows come back as :class:`Skipped`
so the calling stage can count them.
"""

from __future__ import annotations

from nutrition_import.ingestion.loader import RawRow, RowShape
from nutrition_import.models import (
    UNCATEGORIZED_ID,
    Food,
    FoodCategory,
    FoodNutrient,
    Nutrient,
    Parsed,
    Skipped,
)

# ── Source files and header aliases ─────────────────────────────────────

CATEGORY_FILES = ("food_category.csv", "wweia_food_category.csv")
NUTRIENT_FILE = "nutrient.csv"
FOOD_FILE = "food.csv"
FOOD_NUTRIENT_FILE = "food_nutrient.csv"

CATEGORY_SHAPE = RowShape(
    name="category",
    columns={
        "id": ("id", "wweia_food_category", "code"),
        "name": ("description", "wweia_food_category_description"),
    },
    required=frozenset({"id", "name"}),
)

NUTRIENT_SHAPE = RowShape(
    name="nutrient",
    columns={
        "id": ("id", "nutrient_id"),
        "name": ("name",),
        "unit_name": ("unit_name",),
    },
    required=frozenset({"id", "name", "unit_name"}),
)

FOOD_SHAPE = RowShape(
    name="food",
    columns={
        "id": ("fdc_id", "id"),
        "name": ("description",),
        "category_id": ("food_category_id", "wweia_category_code"),
    },
    required=frozenset({"id", "name"}),
)

FOOD_NUTRIENT_SHAPE = RowShape(
    name="food_nutrient",
    columns={
        "food_id": ("fdc_id", "food_id"),
        "nutrient_id": ("nutrient_id",),
        "amount": ("amount",),
    },
    required=frozenset({"food_id", "nutrient_id"}),
)


# ── Field parsers ───────────────────────────────────────────────────────


def parse_int(raw: str | None) -> int | None:
    """Parse an integer id.  Accepts a redundant ``.0`` suffix (``"1234.0"``)."""
    if raw is None:
        return None
    text = raw.strip()
    if text.endswith(".0"):
        text = text[:-2]
    try:
        return int(text)
    except ValueError:
        return None


def parse_float(raw: str | None) -> float | None:
    if raw is None:
        return None
    try:
        return float(raw.strip())
    except ValueError:
        return None


def _key(row: RawRow, field: str, label: str) -> int | Skipped:
    raw = row.get(field)
    if raw is None:
        return Skipped(f"missing {label} id", row.line)
    value = parse_int(raw)
    if value is None:
        return Skipped(f"non-numeric {label} id", row.line)
    return value


# ── Row parsers ─────────────────────────────────────────────────────────


def parse_category(row: RawRow) -> Parsed[FoodCategory] | Skipped:
    key = _key(row, "id", "category")
    if isinstance(key, Skipped):
        return key
    return Parsed(FoodCategory(id=key, name=row.get("name") or ""))


def parse_nutrient(row: RawRow) -> Parsed[Nutrient] | Skipped:
    key = _key(row, "id", "nutrient")
    if isinstance(key, Skipped):
        return key
    return Parsed(
        Nutrient(id=key, name=row.get("name") or "", unit_name=row.get("unit_name") or "")
    )


def parse_food(row: RawRow) -> Parsed[Food] | Skipped:
    """Normalize a ``food.csv`` row.

    A blank or non-numeric category (branded exports sometimes carry a
    category *name* here) falls back to :data:`UNCATEGORIZED_ID`.
    """
    key = _key(row, "id", "food")
    if isinstance(key, Skipped):
        return key
    category_id = parse_int(row.get("category_id"))
    return Parsed(
        Food(
            id=key,
            name=row.get("name") or "",
            food_category_id=UNCATEGORIZED_ID if category_id is None else category_id,
        )
    )


def parse_food_nutrient(row: RawRow) -> Parsed[FoodNutrient] | Skipped:
    food_id = _key(row, "food_id", "food")
    if isinstance(food_id, Skipped):
        return food_id
    nutrient_id = _key(row, "nutrient_id", "nutrient")
    if isinstance(nutrient_id, Skipped):
        return nutrient_id

    raw_amount = row.get("amount")
    amount = 0.0 if raw_amount is None else parse_float(raw_amount)
    if amount is None:
        return Skipped("non-numeric amount", row.line)
    return Parsed(FoodNutrient(food_id=food_id, nutrient_id=nutrient_id, amount=amount))
