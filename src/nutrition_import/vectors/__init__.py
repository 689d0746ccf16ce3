"""
Vectors — embedding generation and the vector collection of foods.

Public surface
--------------
- :class:`FoodVectorStore` — abstract backend (subclass for Qdrant, pgvector, …).
- :class:`ChromaFoodStore` — default Chroma backend.
- :class:`EmbeddingClient` — retrying, dimension-checked embedding calls.
- :class:`EmbeddingBatchGenerator` — per-food embedding with batched upserts.
"""

from nutrition_import.vectors.base import FoodVectorRecord, FoodVectorStore
from nutrition_import.vectors.embedder import EmbeddingClient, get_embedding_function
from nutrition_import.vectors.generator import EmbeddingBatchGenerator

__all__ = [
    "ChromaFoodStore",
    "EmbeddingBatchGenerator",
    "EmbeddingClient",
    "FoodVectorRecord",
    "FoodVectorStore",
    "get_embedding_function",
]


def __getattr__(name: str):  # noqa: ANN001
    """Lazy-import ChromaFoodStore to avoid pulling in chromadb at import time."""
    if name == "ChromaFoodStore":
        from nutrition_import.vectors.chroma_store import ChromaFoodStore

        return ChromaFoodStore
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
