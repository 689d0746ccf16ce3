"""
Pipeline — the import orchestrator and its run state machine.

Public surface
--------------
- :class:`FoodDataImporter` — runs a full import and returns an :class:`ImportReport`.
- :func:`build_importer` — wires an importer from :mod:`nutrition_import.config`.
- :class:`ImportState` — states a run moves through.
"""

from nutrition_import.pipeline.importer import FoodDataImporter, build_importer
from nutrition_import.pipeline.state import ImportState, StateMachine

__all__ = [
    "FoodDataImporter",
    "ImportState",
    "StateMachine",
    "build_importer",
]
