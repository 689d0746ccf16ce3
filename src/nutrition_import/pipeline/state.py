"""Import run state machine.

The happy path is a straight line::

    IDLE → SCHEMA_ENSURED → CATEGORIES_LOADED → CATEGORIES_WRITTEN
         → NUTRIENTS_LOADED → NUTRIENTS_WRITTEN → FOODS_LOADED
         → FOODS_WRITTEN → ASSOCIATIONS_WRITTEN → EMBEDDINGS_WRITTEN
         → COMPLETED

``FAILED`` and ``CANCELLED`` can be entered from any non-terminal state
and are absorbing.
"""

from __future__ import annotations

from enum import Enum

from nutrition_import.errors import InvalidTransitionError


class ImportState(str, Enum):
    IDLE = "idle"
    SCHEMA_ENSURED = "schema_ensured"
    CATEGORIES_LOADED = "categories_loaded"
    CATEGORIES_WRITTEN = "categories_written"
    NUTRIENTS_LOADED = "nutrients_loaded"
    NUTRIENTS_WRITTEN = "nutrients_written"
    FOODS_LOADED = "foods_loaded"
    FOODS_WRITTEN = "foods_written"
    ASSOCIATIONS_WRITTEN = "associations_written"
    EMBEDDINGS_WRITTEN = "embeddings_written"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL


_SEQUENCE = [
    ImportState.IDLE,
    ImportState.SCHEMA_ENSURED,
    ImportState.CATEGORIES_LOADED,
    ImportState.CATEGORIES_WRITTEN,
    ImportState.NUTRIENTS_LOADED,
    ImportState.NUTRIENTS_WRITTEN,
    ImportState.FOODS_LOADED,
    ImportState.FOODS_WRITTEN,
    ImportState.ASSOCIATIONS_WRITTEN,
    ImportState.EMBEDDINGS_WRITTEN,
    ImportState.COMPLETED,
]

_TERMINAL = frozenset({ImportState.COMPLETED, ImportState.FAILED, ImportState.CANCELLED})

_NEXT = dict(zip(_SEQUENCE, _SEQUENCE[1:]))


class StateMachine:
    """Tracks the current state and the history of a single run."""

    def __init__(self) -> None:
        self.state = ImportState.IDLE
        self.history: list[ImportState] = [ImportState.IDLE]

    def advance(self, target: ImportState) -> None:
        """Move along the happy path.  Only the next state is accepted."""
        if _NEXT.get(self.state) is not target:
            raise InvalidTransitionError(f"Cannot move from {self.state.value} to {target.value}")
        self._enter(target)

    def fail(self) -> None:
        self._abort(ImportState.FAILED)

    def cancel(self) -> None:
        self._abort(ImportState.CANCELLED)

    def _abort(self, target: ImportState) -> None:
        if self.state.is_terminal:
            raise InvalidTransitionError(f"Run already finished in {self.state.value}")
        self._enter(target)

    def _enter(self, target: ImportState) -> None:
        self.state = target
        self.history.append(target)
