"""Exception hierarchy for the import pipeline.

Two families exist:

* **Absorbed** — :class:`SourceAbsentError` is caught by the stage that
  raised it; the stage continues with an empty collection.  Malformed rows
  never raise at all; they surface as ``Skipped`` outcomes.
* **Fatal** — everything else derived from :class:`ImportPipelineError`
  aborts the run and moves the importer into ``FAILED`` (or ``CANCELLED``
  for :class:`ImportCancelled`).
"""

from __future__ import annotations

from pathlib import Path


class ImportPipelineError(Exception):
    """Base class for all pipeline errors."""


class SourceAbsentError(ImportPipelineError):
    """A dataset file is missing.  Non-fatal: the stage imports nothing."""

    def __init__(self, path: Path) -> None:
        super().__init__(f"Source file not found: {path}")
        self.path = path


class DatasetNotFoundError(ImportPipelineError):
    """The dataset root itself is blank or not a directory."""


class MissingColumnsError(ImportPipelineError):
    """A source file lacks one or more required header names."""

    def __init__(self, path: Path, missing: list[str]) -> None:
        super().__init__(f"{path.name} is missing required columns: {', '.join(missing)}")
        self.path = path
        self.missing = missing


class StorageError(ImportPipelineError):
    """The relational store could not be read or written."""


class StorageWriteError(StorageError):
    """A relational transaction failed and was rolled back."""


class VectorStoreWriteError(ImportPipelineError):
    """A vector-store batch upsert failed."""


class EmbeddingGenerationError(ImportPipelineError):
    """The embedding service failed after all retry attempts."""


class EmbeddingDimensionError(ImportPipelineError):
    """Embedding size does not match the configured collection dimension."""


class InvalidTransitionError(ImportPipelineError):
    """The orchestrator attempted a state transition that is not allowed."""


class ImportCancelled(ImportPipelineError):
    """Cooperative cancellation was observed inside a stage."""
