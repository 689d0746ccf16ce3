"""Import orchestrator — runs the stages of a dataset import in order.

Stages, each gated on the success of the previous one::

    schema → categories → nutrients → foods → food nutrients → embeddings

Every stage owns its own transaction(s).  A fatal error stops the run in
``FAILED``; cancellation stops it in ``CANCELLED``.  Either way, stages
that already committed keep their data.  There is no cross-stage
rollback and no resume.

Usage::

    from nutrition_import.pipeline.importer import build_importer

    importer = build_importer()
    report = importer.run("data/FoodData_Central_sr_legacy_food_csv_2018-04")
    print(report.status, report.counts)
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable, Iterator
from pathlib import Path
from typing import TypeVar

from nutrition_import.config import Settings, settings
from nutrition_import.errors import (
    DatasetNotFoundError,
    ImportCancelled,
    ImportPipelineError,
    SourceAbsentError,
)
from nutrition_import.ingestion.loader import RawRow, RecordReader, RowShape, first_existing, read_records
from nutrition_import.ingestion.normalizer import (
    CATEGORY_FILES,
    CATEGORY_SHAPE,
    FOOD_FILE,
    FOOD_NUTRIENT_FILE,
    FOOD_NUTRIENT_SHAPE,
    FOOD_SHAPE,
    NUTRIENT_FILE,
    NUTRIENT_SHAPE,
    parse_category,
    parse_food,
    parse_food_nutrient,
    parse_nutrient,
)
from nutrition_import.models import (
    Food,
    FoodCategory,
    FoodNutrient,
    ImportReport,
    Nutrient,
    Parsed,
    Skipped,
    StageStats,
)
from nutrition_import.pipeline.state import ImportState, StateMachine
from nutrition_import.storage.schema import FOOD, FOOD_CATEGORY, FOOD_NUTRIENT, NUTRIENT
from nutrition_import.storage.writer import RelationalWriter
from nutrition_import.vectors.base import FoodVectorStore
from nutrition_import.vectors.embedder import EmbeddingClient
from nutrition_import.vectors.generator import EmbeddingBatchGenerator

logger = logging.getLogger(__name__)

T = TypeVar("T", FoodCategory, Nutrient, Food, FoodNutrient)

STAGES = ("categories", "nutrients", "foods", "food_nutrients", "embeddings")


class FoodDataImporter:
    """Sequences a full dataset import.

    Parameters
    ----------
    writer:
        Relational store handle.
    embedder:
        Embedding client used for food descriptions.
    vector_store:
        Vector collection receiving the embeddings.
    logger:
        Logger for progress and warnings.
    embedding_batch_size:
        Records per vector-store upsert.
    association_batch_size:
        Food-nutrient rows per committed transaction.
    """

    def __init__(
        self,
        writer: RelationalWriter,
        embedder: EmbeddingClient,
        vector_store: FoodVectorStore,
        *,
        logger: logging.Logger = logger,
        embedding_batch_size: int = 32,
        association_batch_size: int = 10_000,
    ) -> None:
        self.writer = writer
        self.log = logger
        self.association_batch_size = association_batch_size
        self.generator = EmbeddingBatchGenerator(
            embedder, vector_store, batch_size=embedding_batch_size, logger=logger
        )
        self._machine = StateMachine()

    @property
    def state(self) -> ImportState:
        return self._machine.state

    # -- public API -----------------------------------------------------------

    def run(
        self,
        dataset_root: str | Path,
        cancel_event: threading.Event | None = None,
        *,
        embed: bool = True,
    ) -> ImportReport:
        """Import every entity family found under *dataset_root*.

        Fatal errors are logged and reported rather than raised; check
        ``report.status``.
        """
        machine = self._machine = StateMachine()
        stats = {name: StageStats(name) for name in STAGES}
        status = "completed"
        error: str | None = None
        t0 = time.monotonic()

        try:
            root = self._validate_root(dataset_root)
            self.log.info("Starting import from %s", root)

            self.writer.ensure_schema()
            machine.advance(ImportState.SCHEMA_ENSURED)

            categories = self._load(
                first_existing(root, CATEGORY_FILES), CATEGORY_SHAPE, parse_category,
                stats["categories"], cancel_event,
            )
            machine.advance(ImportState.CATEGORIES_LOADED)
            stats["categories"].imported = self.writer.upsert_batch(
                FOOD_CATEGORY, categories, cancel_event=cancel_event
            )
            machine.advance(ImportState.CATEGORIES_WRITTEN)

            nutrients = self._load(
                root / NUTRIENT_FILE, NUTRIENT_SHAPE, parse_nutrient,
                stats["nutrients"], cancel_event,
            )
            machine.advance(ImportState.NUTRIENTS_LOADED)
            stats["nutrients"].imported = self.writer.upsert_batch(
                NUTRIENT, nutrients, cancel_event=cancel_event
            )
            machine.advance(ImportState.NUTRIENTS_WRITTEN)

            foods = self._load(
                root / FOOD_FILE, FOOD_SHAPE, parse_food, stats["foods"], cancel_event,
            )
            machine.advance(ImportState.FOODS_LOADED)
            stats["foods"].imported = self.writer.upsert_batch(FOOD, foods, cancel_event=cancel_event)
            machine.advance(ImportState.FOODS_WRITTEN)

            self._write_associations(root / FOOD_NUTRIENT_FILE, stats["food_nutrients"], cancel_event)
            machine.advance(ImportState.ASSOCIATIONS_WRITTEN)

            if embed and foods:
                stats["embeddings"].imported = self.generator.run(
                    _unique_by_id(foods), cancel_event=cancel_event
                )
            elif not embed:
                self.log.info("Embedding stage disabled; skipping %d foods", len(foods))
            machine.advance(ImportState.EMBEDDINGS_WRITTEN)

            machine.advance(ImportState.COMPLETED)
            self.log.info("Import completed successfully.")
        except ImportCancelled as exc:
            machine.cancel()
            status, error = "cancelled", str(exc)
            self.log.warning("Import cancelled in state %s", machine.history[-2].value)
        except ImportPipelineError as exc:
            machine.fail()
            status, error = "failed", str(exc)
            self.log.exception("Import failed after %s", machine.history[-2].value)
        except Exception as exc:
            machine.fail()
            status, error = "failed", f"{type(exc).__name__}: {exc}"
            self.log.exception("Unexpected error after %s", machine.history[-2].value)

        return ImportReport(
            status=status,
            state=machine.state.value,
            dataset_root=str(dataset_root),
            counts={name: s.imported for name, s in stats.items()},
            skipped={name: dict(s.skipped) for name, s in stats.items() if s.skipped},
            history=[s.value for s in machine.history],
            error=error,
            elapsed_seconds=round(time.monotonic() - t0, 2),
        )

    # -- stages ---------------------------------------------------------------

    def _load(
        self,
        path: Path,
        shape: RowShape,
        parse: Callable[[RawRow], Parsed[T] | Skipped],
        stats: StageStats,
        cancel_event: threading.Event | None,
    ) -> list[T]:
        reader = self._open(path, shape, stats)
        if reader is None:
            return []
        entities = list(self._parse(reader, parse, stats, cancel_event))
        self.log.info("Loaded %d %s rows from %s", len(entities), shape.name, path.name)
        self._report_skips(path, stats)
        return entities

    def _write_associations(
        self,
        path: Path,
        stats: StageStats,
        cancel_event: threading.Event | None,
    ) -> None:
        reader = self._open(path, FOOD_NUTRIENT_SHAPE, stats)
        if reader is None:
            return

        rows: Iterable[FoodNutrient] = self._parse(reader, parse_food_nutrient, stats, cancel_event)
        if not self.writer.enforce_foreign_keys:
            rows = self._known_references(
                rows, self.writer.existing_ids(FOOD), self.writer.existing_ids(NUTRIENT), stats
            )

        def on_commit(total: int) -> None:
            stats.imported = total
            self.log.info("Inserted %d food nutrients", total)

        stats.imported = self.writer.upsert_stream(
            FOOD_NUTRIENT,
            rows,
            batch_size=self.association_batch_size,
            cancel_event=cancel_event,
            on_commit=on_commit,
        )
        self.log.info("Inserted %d food nutrient rows", stats.imported)
        self._report_skips(path, stats)

    # -- helpers --------------------------------------------------------------

    @staticmethod
    def _validate_root(dataset_root: str | Path) -> Path:
        if not str(dataset_root).strip():
            raise DatasetNotFoundError("Dataset path must be provided.")
        root = Path(dataset_root)
        if not root.is_dir():
            raise DatasetNotFoundError(f"Dataset directory '{root}' was not found.")
        return root

    def _open(self, path: Path, shape: RowShape, stats: StageStats) -> RecordReader | None:
        try:
            return read_records(path, shape)
        except SourceAbsentError:
            self.log.warning("Unable to locate %s file at %s", shape.name, path)
            stats.source_present = False
            return None

    def _parse(
        self,
        reader: RecordReader,
        parse: Callable[[RawRow], Parsed[T] | Skipped],
        stats: StageStats,
        cancel_event: threading.Event | None,
    ) -> Iterator[T]:
        for row in reader:
            if cancel_event is not None and cancel_event.is_set():
                raise ImportCancelled(f"Import cancelled while reading {reader.path.name}")
            stats.read += 1
            outcome = parse(row)
            if isinstance(outcome, Skipped):
                stats.skip(outcome.reason)
                self.log.debug("Skipping %s line %d: %s", reader.path.name, outcome.line, outcome.reason)
                continue
            yield outcome.entity

        if reader.malformed:
            stats.skip("unreadable row", reader.malformed)

    def _report_skips(self, path: Path, stats: StageStats) -> None:
        if stats.skipped:
            self.log.warning("Skipped %d rows in %s: %s",
                             stats.skipped_total, path.name, dict(stats.skipped))

    @staticmethod
    def _known_references(
        rows: Iterable[FoodNutrient],
        food_ids: set[int],
        nutrient_ids: set[int],
        stats: StageStats,
    ) -> Iterator[FoodNutrient]:
        for fn in rows:
            if fn.food_id not in food_ids:
                stats.skip("unknown food id")
            elif fn.nutrient_id not in nutrient_ids:
                stats.skip("unknown nutrient id")
            else:
                yield fn


def _unique_by_id(foods: list[Food]) -> list[Food]:
    """Collapse foods sharing an id; the last row wins, first-seen order is kept."""
    return list({food.id: food for food in foods}.values())


def build_importer(config: Settings = settings, *, logger: logging.Logger = logger) -> FoodDataImporter:
    """Wire an importer from *config*.

    Chroma is imported lazily so the relational side can be used without
    a vector-store client installed.
    """
    from nutrition_import.vectors.chroma_store import ChromaFoodStore, make_chroma_client

    strict = config.referential_policy == "strict"
    writer = RelationalWriter.from_url(config.database_url, enforce_foreign_keys=strict)
    embedder = EmbeddingClient.from_settings(config)
    store = ChromaFoodStore(
        config.vector_collection,
        config.embedding_dimension,
        client=make_chroma_client(
            host=config.chroma_host,
            port=config.chroma_port,
            persist_directory=config.chroma_persist_directory,
        ),
    )
    return FoodDataImporter(
        writer,
        embedder,
        store,
        logger=logger,
        embedding_batch_size=config.embedding_batch_size,
        association_batch_size=config.association_batch_size,
    )
