"""Relational upsert writer.

Every write is an *insert-or-replace by primary key* executed inside a
short transaction.  A failed or cancelled batch is rolled back in full;
batches committed before it are left untouched.

Usage::

    from nutrition_import.storage.writer import RelationalWriter

    writer = RelationalWriter.from_url("sqlite:///nutrition.db")
    writer.ensure_schema()
    writer.upsert_batch("FoodCategory", categories)
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from typing import Any

from sqlalchemy import Connection, Engine, Table, func, select
from sqlalchemy.exc import SQLAlchemyError

from nutrition_import.errors import ImportCancelled, StorageError, StorageWriteError
from nutrition_import.models import (
    UNCATEGORIZED_ID,
    Entity,
    Food,
    FoodCategory,
    FoodNutrient,
    Nutrient,
)
from nutrition_import.storage.schema import (
    FOOD,
    FOOD_CATEGORY,
    FOOD_NUTRIENT,
    NUTRIENT,
    build_metadata,
    create_store_engine,
)

logger = logging.getLogger(__name__)


def _category_row(c: FoodCategory) -> dict[str, Any]:
    return {"Id": c.id, "Name": c.name}


def _nutrient_row(n: Nutrient) -> dict[str, Any]:
    return {"Id": n.id, "Name": n.name, "UnitName": n.unit_name}


def _food_row(f: Food) -> dict[str, Any]:
    return {"Id": f.id, "Name": f.name, "FoodCategoryId": f.food_category_id}


def _food_nutrient_row(fn: FoodNutrient) -> dict[str, Any]:
    return {"FoodId": fn.food_id, "NutrientId": fn.nutrient_id, "Amount": fn.amount}


_ROW_MAPPERS: dict[str, Callable[[Any], dict[str, Any]]] = {
    FOOD_CATEGORY: _category_row,
    NUTRIENT: _nutrient_row,
    FOOD: _food_row,
    FOOD_NUTRIENT: _food_nutrient_row,
}


def _check_cancelled(cancel_event: threading.Event | None) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise ImportCancelled("Import cancelled")


class RelationalWriter:
    """Batched upserts into the relational store.

    Parameters
    ----------
    engine:
        SQLAlchemy engine bound to the target database.
    enforce_foreign_keys:
        Declare foreign keys in the schema (``strict`` policy).  The engine
        must have been created with the same flag for SQLite.
    """

    def __init__(self, engine: Engine, *, enforce_foreign_keys: bool = False) -> None:
        self.engine = engine
        self.enforce_foreign_keys = enforce_foreign_keys
        self.metadata = build_metadata(enforce_foreign_keys=enforce_foreign_keys)

    @classmethod
    def from_url(cls, url: str, *, enforce_foreign_keys: bool = False) -> RelationalWriter:
        engine = create_store_engine(url, enforce_foreign_keys=enforce_foreign_keys)
        return cls(engine, enforce_foreign_keys=enforce_foreign_keys)

    # -- schema ---------------------------------------------------------------

    def ensure_schema(self) -> None:
        """Create the four tables if they do not exist.  Idempotent."""
        try:
            self.metadata.create_all(self.engine, checkfirst=True)
        except SQLAlchemyError as exc:
            raise StorageWriteError("Failed to create relational schema") from exc

        if self.enforce_foreign_keys:
            # Foods without a category point at the sentinel row.
            self.upsert_batch(FOOD_CATEGORY, [FoodCategory(id=UNCATEGORIZED_ID, name="Uncategorized")])

    # -- writes ---------------------------------------------------------------

    def upsert_rows(self, conn: Connection, table_name: str, entities: Iterable[Entity]) -> int:
        """Upsert *entities* on *conn* inside a transaction the caller owns.

        Rows sharing a primary key within one call collapse to the last one.
        """
        table = self._table(table_name)
        to_row = _ROW_MAPPERS[table_name]
        pk = [c.name for c in table.primary_key.columns]
        rows: dict[tuple[Any, ...], dict[str, Any]] = {}
        for entity in entities:
            row = to_row(entity)
            rows[tuple(row[k] for k in pk)] = row
        if rows:
            conn.execute(self._upsert_statement(table), list(rows.values()))
        return len(rows)

    def upsert_batch(
        self,
        table_name: str,
        entities: Iterable[Entity],
        *,
        cancel_event: threading.Event | None = None,
    ) -> int:
        """Write one homogeneous batch in a single transaction.

        Returns the number of rows written.  Raises
        :class:`~nutrition_import.errors.StorageWriteError` on database
        errors and :class:`~nutrition_import.errors.ImportCancelled` when
        *cancel_event* is set; both leave the table as it was.
        """
        batch: list[Entity] = []
        for entity in entities:
            _check_cancelled(cancel_event)
            batch.append(entity)
        if not batch:
            return 0
        return self._commit(table_name, batch)

    def upsert_stream(
        self,
        table_name: str,
        entities: Iterable[Entity],
        *,
        batch_size: int = 10_000,
        cancel_event: threading.Event | None = None,
        on_commit: Callable[[int], None] | None = None,
    ) -> int:
        """Stream *entities* into the table, committing every *batch_size* rows.

        Only one batch is held in memory at a time.  ``on_commit`` receives
        the running total after each commit.  On failure or cancellation the
        open batch is discarded and earlier commits stay in place.

        The returned total counts rows written, batch by batch.  A key that
        reappears in a later batch is written, and counted, again.
        """
        total = 0
        pending: list[Entity] = []
        for entity in entities:
            _check_cancelled(cancel_event)
            pending.append(entity)
            if len(pending) >= batch_size:
                total += self._commit(table_name, pending)
                pending = []
                if on_commit is not None:
                    on_commit(total)
        if pending:
            total += self._commit(table_name, pending)
            if on_commit is not None:
                on_commit(total)
        return total

    # -- reads ----------------------------------------------------------------

    def existing_ids(self, table_name: str) -> set[int]:
        """Return every ``Id`` currently stored in *table_name*."""
        table = self._table(table_name)
        try:
            with self.engine.connect() as conn:
                return set(conn.execute(select(table.c.Id)).scalars())
        except SQLAlchemyError as exc:
            raise StorageError(f"Reading ids from {table_name} failed: {exc}") from exc

    def count(self, table_name: str) -> int:
        table = self._table(table_name)
        try:
            with self.engine.connect() as conn:
                return conn.execute(select(func.count()).select_from(table)).scalar_one()
        except SQLAlchemyError as exc:
            raise StorageError(f"Counting rows in {table_name} failed: {exc}") from exc

    def dispose(self) -> None:
        self.engine.dispose()

    # -- internals ------------------------------------------------------------

    def _table(self, table_name: str) -> Table:
        try:
            return self.metadata.tables[table_name]
        except KeyError:
            raise ValueError(f"Unknown table: {table_name!r}") from None

    def _upsert_statement(self, table: Table) -> Any:
        dialect = self.engine.dialect.name
        if dialect == "sqlite":
            from sqlalchemy.dialects.sqlite import insert
        elif dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert
        else:
            raise StorageWriteError(f"Unsupported database dialect: {dialect!r}")

        stmt = insert(table)
        pk = {c.name for c in table.primary_key.columns}
        return stmt.on_conflict_do_update(
            index_elements=sorted(pk),
            set_={c.name: stmt.excluded[c.name] for c in table.columns if c.name not in pk},
        )

    def _commit(self, table_name: str, batch: list[Entity]) -> int:
        try:
            with self.engine.begin() as conn:
                written = self.upsert_rows(conn, table_name, batch)
        except SQLAlchemyError as exc:
            logger.error("Upsert into %s failed; %d rows rolled back", table_name, len(batch))
            raise StorageWriteError(f"Upsert into {table_name} failed: {exc}") from exc
        logger.debug("Committed %d rows into %s", written, table_name)
        return written
