"""Shared pytest configuration and fixtures."""

from __future__ import annotations

import csv
import hashlib
from collections.abc import Iterator
from pathlib import Path
from typing import Any

import pytest
from langchain_core.embeddings import Embeddings

from nutrition_import.errors import VectorStoreWriteError
from nutrition_import.storage.writer import RelationalWriter
from nutrition_import.vectors.base import FoodVectorRecord, FoodVectorStore

DIM = 384


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: marks tests requiring external services")


# ── Fakes ───────────────────────────────────────────────────────────────


class FakeEmbeddings(Embeddings):
    """Deterministic embeddings that record every call."""

    def __init__(self, dim: int = DIM, fail_on: set[str] | None = None) -> None:
        self.dim = dim
        self.fail_on = fail_on or set()
        self.calls: list[str] = []

    def embed_query(self, text: str) -> list[float]:
        self.calls.append(text)
        if text in self.fail_on:
            raise ConnectionError(f"embedding service unavailable for {text!r}")
        digest = hashlib.sha256(text.encode()).digest()
        return [digest[i % len(digest)] / 255.0 for i in range(self.dim)]

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [self.embed_query(t) for t in texts]


class FakeFoodVectorStore(FoodVectorStore):
    """In-memory store that remembers every batch it received."""

    def __init__(self, dimension: int = DIM) -> None:
        super().__init__("test-foods", dimension)
        self.records: dict[int, FoodVectorRecord] = {}
        self.batches: list[list[int]] = []
        self.ensure_calls = 0

    def ensure_collection_exists(self) -> None:
        self.ensure_calls += 1

    def upsert_batch(self, records: list[FoodVectorRecord]) -> None:
        ids = [r.id for r in records]
        if len(set(ids)) != len(ids):
            # Chroma rejects a batch that repeats an id
            raise VectorStoreWriteError(f"Duplicate ids in batch: {ids}")
        self.batches.append(ids)
        for rec in records:
            self.records[rec.id] = rec

    def similarity_search(self, vector: list[float], *, k: int = 5) -> list[dict[str, Any]]:
        hits = [
            {"id": r.id, "name": r.name, "category_id": r.category_id, "score": 1.0}
            for r in self.records.values()
        ]
        return hits[:k]

    def health_check(self) -> bool:
        return True


# ── Helpers ─────────────────────────────────────────────────────────────


def write_csv(path: Path, header: list[str], rows: list[list[Any]]) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8", newline="") as fh:
        writer = csv.writer(fh)
        writer.writerow(header)
        writer.writerows(rows)
    return path


# ── Fixtures ────────────────────────────────────────────────────────────


@pytest.fixture()
def dataset(tmp_path: Path) -> Path:
    """A small FDC-shaped dataset: 2 categories, 3 nutrients, 2 foods."""
    root = tmp_path / "dataset"
    write_csv(
        root / "food_category.csv",
        ["id", "code", "description"],
        [[10, "0500", "Poultry Products"], [20, "0900", "Fruits and Fruit Juices"]],
    )
    write_csv(
        root / "nutrient.csv",
        ["id", "name", "unit_name", "nutrient_nbr"],
        [[1003, "Protein", "G", 203], [1004, "Total lipid (fat)", "G", 204], [1008, "Energy", "KCAL", 208]],
    )
    write_csv(
        root / "food.csv",
        ["fdc_id", "data_type", "description", "food_category_id", "publication_date"],
        [
            [1, "sr_legacy_food", "Chicken raw", 10, "2019-04-01"],
            [2, "sr_legacy_food", "Apple raw", 20, "2019-04-01"],
        ],
    )
    write_csv(
        root / "food_nutrient.csv",
        ["id", "fdc_id", "nutrient_id", "amount"],
        [
            [100, 1, 1003, 21.4],
            [101, 1, 1004, 3.1],
            [102, 1, 1008, 120],
            [103, 2, 1003, 0.26],
            [104, 2, 1008, ""],
        ],
    )
    return root


@pytest.fixture()
def db_url(tmp_path: Path) -> str:
    return f"sqlite:///{tmp_path / 'nutrition.db'}"


@pytest.fixture()
def writer(db_url: str) -> Iterator[RelationalWriter]:
    w = RelationalWriter.from_url(db_url)
    yield w
    w.dispose()


@pytest.fixture()
def strict_writer(tmp_path: Path) -> Iterator[RelationalWriter]:
    w = RelationalWriter.from_url(f"sqlite:///{tmp_path / 'strict.db'}", enforce_foreign_keys=True)
    yield w
    w.dispose()


@pytest.fixture()
def fake_embeddings() -> FakeEmbeddings:
    return FakeEmbeddings()


@pytest.fixture()
def fake_store() -> FakeFoodVectorStore:
    return FakeFoodVectorStore()
