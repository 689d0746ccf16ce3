"""Embedding client — one text in, one fixed-size vector out.

Wraps any LangChain :class:`~langchain_core.embeddings.Embeddings`
implementation and adds the two guarantees the import relies on:

* a bounded retry with exponential backoff around the network call, and
* a dimension check against the configured collection size.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

from nutrition_import.config import Settings, settings
from nutrition_import.errors import EmbeddingDimensionError, EmbeddingGenerationError

if TYPE_CHECKING:
    from langchain_core.embeddings import Embeddings

logger = logging.getLogger(__name__)


def get_embedding_function(config: Settings = settings) -> Embeddings:
    """Return the configured LangChain embedding model.

    ``huggingface`` runs a sentence-transformer in-process; ``ollama``
    calls a local Ollama server (``all-minilm`` → 384 dims,
    ``nomic-embed-text`` → 768 dims).
    """
    if config.embedding_provider == "ollama":
        from langchain_ollama import OllamaEmbeddings

        logger.info("Using Ollama embeddings %s at %s", config.embedding_model, config.ollama_base_url)
        return OllamaEmbeddings(model=config.embedding_model, base_url=config.ollama_base_url)

    from langchain_huggingface import HuggingFaceEmbeddings

    logger.info("Using HuggingFace embeddings %s", config.embedding_model)
    return HuggingFaceEmbeddings(model_name=config.embedding_model)


class EmbeddingClient:
    """Synchronous, retrying embedding generator.

    Parameters
    ----------
    embeddings:
        The underlying LangChain embedding model.
    dimension:
        Required vector length.
    max_retries:
        Total attempts per text before giving up.
    backoff_seconds:
        Base wait; attempt *n* waits ``backoff_seconds * 2 ** (n - 1)``.
    """

    def __init__(
        self,
        embeddings: Embeddings,
        *,
        dimension: int,
        max_retries: int = 3,
        backoff_seconds: float = 1.0,
    ) -> None:
        self._embeddings = embeddings
        self.dimension = dimension
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds

    @classmethod
    def from_settings(cls, config: Settings = settings) -> EmbeddingClient:
        return cls(
            get_embedding_function(config),
            dimension=config.embedding_dimension,
            max_retries=config.embedding_max_retries,
            backoff_seconds=config.embedding_backoff_seconds,
        )

    def generate(self, text: str) -> list[float]:
        """Embed *text*, retrying transient failures.

        Raises
        ------
        EmbeddingGenerationError
            After ``max_retries`` failed attempts.
        EmbeddingDimensionError
            When the model returns a vector of the wrong size.  Not retried.
        """
        last_exc: Exception | None = None
        for attempt in range(1, self.max_retries + 1):
            try:
                vector = self._embeddings.embed_query(text)
                break
            except Exception as exc:
                last_exc = exc
                if attempt < self.max_retries:
                    wait = self.backoff_seconds * 2 ** (attempt - 1)
                    logger.warning("Embedding retry %d/%d (wait %.1fs): %s",
                                   attempt, self.max_retries, wait, exc)
                    time.sleep(wait)
        else:
            raise EmbeddingGenerationError(
                f"Embedding failed after {self.max_retries} attempts for {text[:60]!r}"
            ) from last_exc

        if len(vector) != self.dimension:
            raise EmbeddingDimensionError(
                f"Embedding model returned {len(vector)} dims, configured dimension is {self.dimension}"
            )
        return [float(v) for v in vector]
