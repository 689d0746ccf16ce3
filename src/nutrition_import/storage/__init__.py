"""
Storage — the relational side of the import.

Public surface
--------------
- :class:`RelationalWriter` — schema creation and batched upserts.
- :func:`build_metadata` / :func:`create_store_engine` — schema and engine helpers.
"""

from nutrition_import.storage.schema import (
    FOOD,
    FOOD_CATEGORY,
    FOOD_NUTRIENT,
    NUTRIENT,
    build_metadata,
    create_store_engine,
)
from nutrition_import.storage.writer import RelationalWriter

__all__ = [
    "FOOD",
    "FOOD_CATEGORY",
    "FOOD_NUTRIENT",
    "NUTRIENT",
    "RelationalWriter",
    "build_metadata",
    "create_store_engine",
]
