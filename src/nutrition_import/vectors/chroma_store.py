"""Chroma implementation of the food vector-store abstraction."""

from __future__ import annotations

import logging
from typing import Any

import chromadb
from chromadb.errors import ChromaError

from nutrition_import.config import settings
from nutrition_import.errors import EmbeddingDimensionError, VectorStoreWriteError
from nutrition_import.vectors.base import FoodVectorRecord, FoodVectorStore

logger = logging.getLogger(__name__)

_DIMENSION_KEY = "embedding_dimension"


def make_chroma_client(
    *,
    host: str = settings.chroma_host,
    port: int = settings.chroma_port,
    persist_directory: str = settings.chroma_persist_directory,
) -> Any:
    """Return an HTTP client, or an embedded one when *persist_directory* is set."""
    if persist_directory:
        return chromadb.PersistentClient(path=persist_directory)
    return chromadb.HttpClient(host=host, port=port)


class ChromaFoodStore(FoodVectorStore):
    """Chroma-backed store of food description embeddings.

    Parameters
    ----------
    collection_name:
        Name of the Chroma collection.
    dimension:
        Expected vector length (384 or 768).
    client:
        A ready ``chromadb`` client.  Built from the global settings when
        omitted.
    distance_metric:
        ``cosine`` | ``l2`` | ``ip``.
    """

    def __init__(
        self,
        collection_name: str = settings.vector_collection,
        dimension: int = settings.embedding_dimension,
        *,
        client: Any = None,
        distance_metric: str = "cosine",
    ) -> None:
        super().__init__(collection_name, dimension)
        self._client = client if client is not None else make_chroma_client()
        self._distance_metric = distance_metric
        self._collection: Any = None

    # -- FoodVectorStore overrides --------------------------------------------

    def ensure_collection_exists(self) -> None:
        try:
            collection = self._existing_collection()
            if collection is None:
                collection = self._client.create_collection(
                    name=self.collection_name,
                    metadata={"hnsw:space": self._distance_metric, _DIMENSION_KEY: self.dimension},
                    embedding_function=None,
                )
                logger.info("Created vector collection %r", self.collection_name)
        except Exception as exc:
            raise VectorStoreWriteError(
                f"Could not open vector collection {self.collection_name!r}"
            ) from exc
        existing = (collection.metadata or {}).get(_DIMENSION_KEY)
        if existing is not None and int(existing) != self.dimension:
            raise EmbeddingDimensionError(
                f"Collection {self.collection_name!r} holds {existing}-dim vectors, "
                f"configured dimension is {self.dimension}"
            )
        self._collection = collection
        logger.info("Vector collection %r ready (dim=%d)", self.collection_name, self.dimension)

    def upsert_batch(self, records: list[FoodVectorRecord]) -> None:
        if not records:
            return
        for rec in records:
            if len(rec.vector) != self.dimension:
                raise EmbeddingDimensionError(
                    f"Food {rec.id} has a {len(rec.vector)}-dim vector, expected {self.dimension}"
                )
        try:
            self._get_collection().upsert(
                ids=[str(r.id) for r in records],
                embeddings=[r.vector for r in records],
                documents=[r.name for r in records],
                metadatas=[{"food_id": r.id, "category_id": r.category_id} for r in records],
            )
        except Exception as exc:
            raise VectorStoreWriteError(
                f"Upsert of {len(records)} vectors into {self.collection_name!r} failed"
            ) from exc

    def similarity_search(self, vector: list[float], *, k: int = 5) -> list[dict[str, Any]]:
        results = self._get_collection().query(
            query_embeddings=[vector],
            n_results=k,
            include=["documents", "metadatas", "distances"],
        )

        hits: list[dict[str, Any]] = []
        ids = results.get("ids", [[]])[0]
        docs = results.get("documents", [[]])[0]
        metas = results.get("metadatas", [[]])[0]
        distances = results.get("distances", [[]])[0]

        for doc_id, name, meta, dist in zip(ids, docs, metas, distances):
            meta = meta or {}
            hits.append(
                {
                    "id": int(doc_id),
                    "name": name or "",
                    "category_id": meta.get("category_id"),
                    # Cosine distance lies in [0, 2].
                    "score": 1.0 - dist,
                }
            )
        return hits

    def health_check(self) -> bool:
        try:
            self._client.heartbeat()
            return True
        except Exception:
            logger.warning("Chroma health-check failed", exc_info=True)
            return False

    # -- internals ------------------------------------------------------------

    def _get_collection(self) -> Any:
        if self._collection is None:
            self.ensure_collection_exists()
        return self._collection

    def _existing_collection(self) -> Any:
        try:
            return self._client.get_collection(name=self.collection_name, embedding_function=None)
        except (ChromaError, ValueError):
            return None
