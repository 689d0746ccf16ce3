"""Relational schema — SQLAlchemy Core tables for the four entity types.

Table and column names follow the dataset's published model
(``FoodCategory.Id``, ``Food.FoodCategoryId`` …) so the database can be
shared with other consumers that expect them.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import (
    BigInteger,
    Column,
    Engine,
    Float,
    ForeignKey,
    Integer,
    MetaData,
    Table,
    Text,
    create_engine,
    event,
)

logger = logging.getLogger(__name__)

FOOD_CATEGORY = "FoodCategory"
NUTRIENT = "Nutrient"
FOOD = "Food"
FOOD_NUTRIENT = "FoodNutrient"

# SQLite only aliases rowid for INTEGER PRIMARY KEY.
_Id = BigInteger().with_variant(Integer, "sqlite")


def build_metadata(*, enforce_foreign_keys: bool = False) -> MetaData:
    """Describe the four tables.

    Parameters
    ----------
    enforce_foreign_keys:
        When ``True`` the schema declares ``Food → FoodCategory`` and
        ``FoodNutrient → Food / Nutrient`` foreign keys.  When ``False``
        the references are logical only and ordering alone keeps them
        consistent.
    """

    def ref(target: str) -> tuple[Any, ...]:
        return (ForeignKey(target),) if enforce_foreign_keys else ()

    metadata = MetaData()
    Table(
        FOOD_CATEGORY,
        metadata,
        Column("Id", _Id, primary_key=True, autoincrement=False),
        Column("Name", Text, nullable=False),
    )
    Table(
        NUTRIENT,
        metadata,
        Column("Id", _Id, primary_key=True, autoincrement=False),
        Column("Name", Text, nullable=False),
        Column("UnitName", Text, nullable=False),
    )
    Table(
        FOOD,
        metadata,
        Column("Id", _Id, primary_key=True, autoincrement=False),
        Column("Name", Text, nullable=False),
        Column("FoodCategoryId", _Id, *ref("FoodCategory.Id"), nullable=False),
    )
    Table(
        FOOD_NUTRIENT,
        metadata,
        Column("FoodId", _Id, *ref("Food.Id"), primary_key=True, autoincrement=False),
        Column("NutrientId", _Id, *ref("Nutrient.Id"), primary_key=True, autoincrement=False),
        Column("Amount", Float, nullable=False),
    )
    return metadata


def _enable_sqlite_foreign_keys(dbapi_connection: Any, connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_store_engine(url: str, *, enforce_foreign_keys: bool = False) -> Engine:
    """Create the relational engine.

    SQLite ignores declared foreign keys unless every connection opts in,
    so strict mode installs a ``connect`` hook that does.
    """
    engine = create_engine(url)
    if enforce_foreign_keys and engine.dialect.name == "sqlite":
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    logger.info("Relational store: %s (foreign keys %s)",
                engine.url.render_as_string(hide_password=True),
                "enforced" if enforce_foreign_keys else "not enforced")
    return engine
