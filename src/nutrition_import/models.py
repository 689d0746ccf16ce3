"""Domain models — normalized entities, parse outcomes, and run reports."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Generic, Literal, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field

UNCATEGORIZED_ID = 0


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------


class FoodCategory(BaseModel):
    """A food category (FDC ``food_category`` or WWEIA taxonomy entry)."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str = ""


class Nutrient(BaseModel):
    """A nutrient definition, e.g. ``Protein`` measured in ``G``."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str = ""
    unit_name: str = ""


class Food(BaseModel):
    """A food item keyed by its FDC id.

    Attributes
    ----------
    id:
        External FDC identifier, taken verbatim from the dataset.
    name:
        The food description; also the text that gets embedded.
    food_category_id:
        Category reference.  ``0`` marks an uncategorized food.
    description_embedding:
        Populated only on the way into the vector store.
    """

    model_config = ConfigDict(frozen=True)

    id: int
    name: str = ""
    food_category_id: int = UNCATEGORIZED_ID
    description_embedding: list[float] | None = None


class FoodNutrient(BaseModel):
    """Amount of one nutrient in one food."""

    model_config = ConfigDict(frozen=True)

    food_id: int
    nutrient_id: int
    amount: float = 0.0


Entity = Union[FoodCategory, Nutrient, Food, FoodNutrient]
E = TypeVar("E", FoodCategory, Nutrient, Food, FoodNutrient)


# ---------------------------------------------------------------------------
# Parse outcomes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Parsed(Generic[E]):
    entity: E


@dataclass(frozen=True)
class Skipped:
    reason: str
    line: int = 0


# ---------------------------------------------------------------------------
# Statistics and reporting
# ---------------------------------------------------------------------------


@dataclass
class StageStats:
    """Row accounting for a single stage."""

    name: str
    source_present: bool = True
    read: int = 0
    imported: int = 0
    skipped: Counter[str] = field(default_factory=Counter)

    @property
    def skipped_total(self) -> int:
        return sum(self.skipped.values())

    def skip(self, reason: str, count: int = 1) -> None:
        self.skipped[reason] += count


class ImportReport(BaseModel):
    """Outcome of one import run, as reported to the trigger surface.

    ``counts`` holds rows written per stage.  For food nutrients streamed in
    several batches a key repeated across batches is counted each time.
    """

    status: Literal["completed", "failed", "cancelled"]
    state: str
    dataset_root: str
    counts: dict[str, int] = Field(default_factory=dict)
    skipped: dict[str, dict[str, int]] = Field(default_factory=dict)
    history: list[str] = Field(default_factory=list)
    error: str | None = None
    elapsed_seconds: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.status == "completed"
