"""Abstract base class for food-embedding vector stores.

Adding a new backend (Qdrant, pgvector, sqlite-vec …) only requires
subclassing :class:`FoodVectorStore` and implementing the abstract
methods.  The embedding generator and the search endpoint are
backend-agnostic.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel


class FoodVectorRecord(BaseModel):
    """One food as stored in the vector collection."""

    id: int
    name: str
    category_id: int
    vector: list[float]


class FoodVectorStore(ABC):
    """Backend-agnostic vector-store interface.

    Parameters
    ----------
    collection_name:
        Logical name of the collection / index / namespace.
    dimension:
        Length every stored vector must have.
    """

    def __init__(self, collection_name: str, dimension: int) -> None:
        self.collection_name = collection_name
        self.dimension = dimension

    # -- required overrides ---------------------------------------------------

    @abstractmethod
    def ensure_collection_exists(self) -> None:
        """Create the collection if needed.  Idempotent.

        Must raise :class:`~nutrition_import.errors.EmbeddingDimensionError`
        when an existing collection was created for a different dimension.
        """
        ...

    @abstractmethod
    def upsert_batch(self, records: list[FoodVectorRecord]) -> None:
        """Insert-or-replace *records* keyed by ``id``, atomically per call."""
        ...

    @abstractmethod
    def similarity_search(self, vector: list[float], *, k: int = 5) -> list[dict[str, Any]]:
        """Return the top-*k* foods nearest to *vector*.

        Each result dict **must** contain ``"id"``, ``"name"``,
        ``"category_id"`` and ``"score"`` (higher = more similar).
        """
        ...

    @abstractmethod
    def health_check(self) -> bool:
        """Return ``True`` when the backend is reachable and ready."""
        ...

    # -- optional overrides ---------------------------------------------------

    def upsert(self, record: FoodVectorRecord) -> None:
        """Insert-or-replace a single record."""
        self.upsert_batch([record])
