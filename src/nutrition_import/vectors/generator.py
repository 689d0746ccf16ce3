"""Embedding batch generator — food descriptions → vector store.

Embedding calls are made one at a time, in load order.  Results are
buffered into fixed-size batches and each full batch is written with a
single ``upsert_batch`` call; the remainder is flushed at the end.

If an embedding call fails or the run is cancelled, the batch being
assembled is dropped.  Batches already flushed stay in the store.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable

from nutrition_import.errors import ImportCancelled
from nutrition_import.models import Food
from nutrition_import.vectors.base import FoodVectorRecord, FoodVectorStore
from nutrition_import.vectors.embedder import EmbeddingClient

logger = logging.getLogger(__name__)

PROGRESS_EVERY = 100


class EmbeddingBatchGenerator:
    """Drive one embedding request per food and batch the results.

    Parameters
    ----------
    embedder:
        Client used for each description.
    store:
        Target vector collection.
    batch_size:
        Records per ``upsert_batch`` call.
    """

    def __init__(
        self,
        embedder: EmbeddingClient,
        store: FoodVectorStore,
        *,
        batch_size: int = 32,
        logger: logging.Logger = logger,
    ) -> None:
        if embedder.dimension != store.dimension:
            raise ValueError(
                f"Embedder dimension {embedder.dimension} does not match "
                f"collection dimension {store.dimension}"
            )
        self.embedder = embedder
        self.store = store
        self.batch_size = batch_size
        self.log = logger

    def run(self, foods: Iterable[Food], *, cancel_event: threading.Event | None = None) -> int:
        """Embed and store every food.  Returns the number of vectors written."""
        self.store.ensure_collection_exists()

        batch: list[FoodVectorRecord] = []
        processed = 0
        written = 0
        for food in foods:
            if cancel_event is not None and cancel_event.is_set():
                self.log.info("Embedding cancelled; discarding %d unflushed records", len(batch))
                raise ImportCancelled("Import cancelled during embedding")

            vector = self.embedder.generate(food.name)
            batch.append(
                FoodVectorRecord(
                    id=food.id,
                    name=food.name,
                    category_id=food.food_category_id,
                    vector=vector,
                )
            )
            processed += 1

            if len(batch) >= self.batch_size:
                self.store.upsert_batch(batch)
                written += len(batch)
                batch = []

            if processed % PROGRESS_EVERY == 0:
                self.log.info("Embedded %d foods", processed)

        if batch:
            self.store.upsert_batch(batch)
            written += len(batch)

        self.log.info("Embedded %d foods into %r", written, self.store.collection_name)
        return written
