"""End-to-end tests for the import orchestrator against SQLite and a fake vector store."""

from __future__ import annotations

import threading
from pathlib import Path

import pytest
from sqlalchemy import select

from conftest import DIM, FakeEmbeddings, FakeFoodVectorStore, write_csv
from nutrition_import.models import Entity
from nutrition_import.pipeline.importer import FoodDataImporter
from nutrition_import.storage.schema import FOOD, FOOD_CATEGORY, FOOD_NUTRIENT, NUTRIENT
from nutrition_import.storage.writer import RelationalWriter
from nutrition_import.vectors.embedder import EmbeddingClient


def _importer(
    writer: RelationalWriter,
    embeddings: FakeEmbeddings,
    store: FakeFoodVectorStore,
    **kwargs,
) -> FoodDataImporter:
    client = EmbeddingClient(embeddings, dimension=DIM, max_retries=1)
    return FoodDataImporter(writer, client, store, **kwargs)


def _snapshot(writer: RelationalWriter) -> dict[str, list[tuple]]:
    snapshot = {}
    with writer.engine.connect() as conn:
        for name, table in writer.metadata.tables.items():
            order = list(table.primary_key.columns)
            snapshot[name] = [tuple(r) for r in conn.execute(select(table).order_by(*order))]
    return snapshot


# ── Happy path ──────────────────────────────────────────────────────────


class TestCompletedRun:
    def test_imports_every_entity_family(
        self,
        dataset: Path,
        writer: RelationalWriter,
        fake_embeddings: FakeEmbeddings,
        fake_store: FakeFoodVectorStore,
    ) -> None:
        importer = _importer(writer, fake_embeddings, fake_store)
        report = importer.run(dataset)

        assert report.status == "completed"
        assert report.succeeded
        assert importer.state.value == "completed"
        assert report.counts == {
            "categories": 2,
            "nutrients": 3,
            "foods": 2,
            "food_nutrients": 5,
            "embeddings": 2,
        }
        assert report.history[0] == "idle"
        assert report.history[-1] == "completed"
        assert report.error is None

        tables = _snapshot(writer)
        assert tables[FOOD_CATEGORY] == [(10, "Poultry Products"), (20, "Fruits and Fruit Juices")]
        assert tables[FOOD] == [(1, "Chicken raw", 10), (2, "Apple raw", 20)]
        # empty amount becomes 0.0
        assert (2, 1008, 0.0) in tables[FOOD_NUTRIENT]

    def test_one_embedding_call_per_food(
        self,
        dataset: Path,
        writer: RelationalWriter,
        fake_embeddings: FakeEmbeddings,
        fake_store: FakeFoodVectorStore,
    ) -> None:
        _importer(writer, fake_embeddings, fake_store).run(dataset)
        assert fake_embeddings.calls == ["Chicken raw", "Apple raw"]
        assert set(fake_store.records) == {1, 2}
        assert fake_store.records[1].category_id == 10

    def test_rerun_leaves_tables_unchanged(
        self,
        dataset: Path,
        writer: RelationalWriter,
        fake_embeddings: FakeEmbeddings,
        fake_store: FakeFoodVectorStore,
    ) -> None:
        importer = _importer(writer, fake_embeddings, fake_store)
        importer.run(dataset)
        first = _snapshot(writer)
        second_report = importer.run(dataset)

        assert second_report.status == "completed"
        assert _snapshot(writer) == first
        assert len(fake_store.records) == 2

    def test_embeddings_can_be_disabled(
        self,
        dataset: Path,
        writer: RelationalWriter,
        fake_embeddings: FakeEmbeddings,
        fake_store: FakeFoodVectorStore,
    ) -> None:
        report = _importer(writer, fake_embeddings, fake_store).run(dataset, embed=False)
        assert report.status == "completed"
        assert report.counts["embeddings"] == 0
        assert fake_embeddings.calls == []

    def test_strict_policy_run(
        self,
        dataset: Path,
        strict_writer: RelationalWriter,
        fake_embeddings: FakeEmbeddings,
        fake_store: FakeFoodVectorStore,
    ) -> None:
        report = _importer(strict_writer, fake_embeddings, fake_store).run(dataset)
        assert report.status == "completed"
        assert strict_writer.count(FOOD_NUTRIENT) == 5
        # seeded sentinel plus the two file categories
        assert strict_writer.count(FOOD_CATEGORY) == 3


# ── Source-file variations ──────────────────────────────────────────────


class TestSourceFiles:
    def test_missing_category_file_is_not_fatal(
        self,
        dataset: Path,
        writer: RelationalWriter,
        fake_embeddings: FakeEmbeddings,
        fake_store: FakeFoodVectorStore,
    ) -> None:
        (dataset / "food_category.csv").unlink()
        report = _importer(writer, fake_embeddings, fake_store).run(dataset)

        assert report.status == "completed"
        assert report.counts["categories"] == 0
        assert report.counts["foods"] == 2
        assert writer.count(FOOD_CATEGORY) == 0

    def test_wweia_category_file_is_used_as_fallback(
        self,
        dataset: Path,
        writer: RelationalWriter,
        fake_embeddings: FakeEmbeddings,
        fake_store: FakeFoodVectorStore,
    ) -> None:
        (dataset / "food_category.csv").unlink()
        write_csv(
            dataset / "wweia_food_category.csv",
            ["wweia_food_category", "wweia_food_category_description"],
            [[1002, "Milk, whole"], [3004, "Turkey, duck, other poultry"]],
        )
        report = _importer(writer, fake_embeddings, fake_store).run(dataset)

        assert report.counts["categories"] == 2
        assert writer.existing_ids(FOOD_CATEGORY) == {1002, 3004}

    def test_malformed_category_id_is_skipped(
        self,
        dataset: Path,
        writer: RelationalWriter,
        fake_embeddings: FakeEmbeddings,
        fake_store: FakeFoodVectorStore,
    ) -> None:
        write_csv(
            dataset / "food_category.csv",
            ["id", "code", "description"],
            [[10, "0500", "Poultry Products"], ["abc", "9999", "Broken"], [20, "0900", "Fruits"]],
        )
        report = _importer(writer, fake_embeddings, fake_store).run(dataset)

        assert report.status == "completed"
        assert writer.existing_ids(FOOD_CATEGORY) == {10, 20}
        assert report.skipped["categories"] == {"non-numeric category id": 1}

    def test_association_with_unknown_food_is_skipped(
        self,
        dataset: Path,
        writer: RelationalWriter,
        fake_embeddings: FakeEmbeddings,
        fake_store: FakeFoodVectorStore,
    ) -> None:
        write_csv(
            dataset / "food_nutrient.csv",
            ["id", "fdc_id", "nutrient_id", "amount"],
            [[100, 1, 1003, 21.4], [101, 999, 1003, 1.0], [102, 2, 9999, 2.0]],
        )
        report = _importer(writer, fake_embeddings, fake_store).run(dataset)

        assert report.status == "completed"
        assert report.counts["food_nutrients"] == 1
        assert report.skipped["food_nutrients"] == {"unknown food id": 1, "unknown nutrient id": 1}
        assert _snapshot(writer)[FOOD_NUTRIENT] == [(1, 1003, 21.4)]

    def test_repeated_food_id_keeps_last_row_everywhere(
        self,
        dataset: Path,
        writer: RelationalWriter,
        fake_embeddings: FakeEmbeddings,
        fake_store: FakeFoodVectorStore,
    ) -> None:
        write_csv(
            dataset / "food.csv",
            ["fdc_id", "description", "food_category_id"],
            [[1, "Chicken raw", 10], [2, "Apple raw", 20], [1, "Chicken raw v2", 10]],
        )
        report = _importer(writer, fake_embeddings, fake_store).run(dataset)

        assert report.status == "completed"
        assert report.counts["foods"] == 2
        assert report.counts["embeddings"] == 2
        assert _snapshot(writer)[FOOD] == [(1, "Chicken raw v2", 10), (2, "Apple raw", 20)]
        assert fake_embeddings.calls == ["Chicken raw v2", "Apple raw"]
        assert fake_store.records[1].name == "Chicken raw v2"

    def test_undecodable_association_row_is_skipped(
        self,
        dataset: Path,
        writer: RelationalWriter,
        fake_embeddings: FakeEmbeddings,
        fake_store: FakeFoodVectorStore,
    ) -> None:
        with open(dataset / "food_nutrient.csv", "ab") as fh:
            fh.write(b"105,2,1004,\xff\xfe1.0\n")
        report = _importer(writer, fake_embeddings, fake_store).run(dataset)

        assert report.status == "completed"
        assert report.counts["food_nutrients"] == 5
        assert report.skipped["food_nutrients"] == {"unreadable row": 1}
        assert writer.count(FOOD_NUTRIENT) == 5

    def test_missing_required_column_fails_the_run(
        self,
        dataset: Path,
        writer: RelationalWriter,
        fake_embeddings: FakeEmbeddings,
        fake_store: FakeFoodVectorStore,
    ) -> None:
        write_csv(dataset / "nutrient.csv", ["id", "name"], [[1003, "Protein"]])
        report = _importer(writer, fake_embeddings, fake_store).run(dataset)

        assert report.status == "failed"
        assert "unit_name" in report.error
        assert writer.count(FOOD_CATEGORY) == 2
        assert writer.count(NUTRIENT) == 0


# ── Failure and cancellation ────────────────────────────────────────────


class TestAbortedRun:
    def test_missing_dataset_root_fails(
        self,
        tmp_path: Path,
        writer: RelationalWriter,
        fake_embeddings: FakeEmbeddings,
        fake_store: FakeFoodVectorStore,
    ) -> None:
        report = _importer(writer, fake_embeddings, fake_store).run(tmp_path / "nope")
        assert report.status == "failed"
        assert report.history == ["idle", "failed"]
        assert "was not found" in report.error

    def test_empty_dataset_root_fails(
        self,
        writer: RelationalWriter,
        fake_embeddings: FakeEmbeddings,
        fake_store: FakeFoodVectorStore,
    ) -> None:
        report = _importer(writer, fake_embeddings, fake_store).run("  ")
        assert report.status == "failed"
        assert "must be provided" in report.error

    def test_write_failure_keeps_earlier_stages(
        self,
        dataset: Path,
        strict_writer: RelationalWriter,
        fake_embeddings: FakeEmbeddings,
        fake_store: FakeFoodVectorStore,
    ) -> None:
        write_csv(
            dataset / "food.csv",
            ["fdc_id", "description", "food_category_id"],
            [[1, "Chicken raw", 10], [2, "Mystery meat", 99]],
        )
        report = _importer(strict_writer, fake_embeddings, fake_store).run(dataset)

        assert report.status == "failed"
        assert report.history[-2:] == ["foods_loaded", "failed"]
        assert strict_writer.count(NUTRIENT) == 3
        assert strict_writer.count(FOOD) == 0
        assert strict_writer.count(FOOD_NUTRIENT) == 0
        assert fake_embeddings.calls == []

    def test_embedding_failure_fails_after_relational_stages(
        self,
        dataset: Path,
        writer: RelationalWriter,
        fake_store: FakeFoodVectorStore,
    ) -> None:
        embeddings = FakeEmbeddings(fail_on={"Apple raw"})
        report = _importer(writer, embeddings, fake_store, embedding_batch_size=32).run(dataset)

        assert report.status == "failed"
        assert report.history[-2:] == ["associations_written", "failed"]
        assert writer.count(FOOD_NUTRIENT) == 5
        # the partial batch holding "Chicken raw" was never flushed
        assert fake_store.records == {}

    def test_unexpected_error_fails_with_report(
        self,
        dataset: Path,
        writer: RelationalWriter,
        fake_embeddings: FakeEmbeddings,
        fake_store: FakeFoodVectorStore,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        def broken(table_name: str) -> set[int]:
            raise OverflowError("Python int too large to convert to SQLite INTEGER")

        monkeypatch.setattr(writer, "existing_ids", broken)
        importer = _importer(writer, fake_embeddings, fake_store)
        report = importer.run(dataset)

        assert report.status == "failed"
        assert importer.state.value == "failed"
        assert report.history[-2:] == ["foods_written", "failed"]
        assert report.error.startswith("OverflowError")
        assert writer.count(FOOD) == 2

    def test_cancel_before_start_writes_nothing(
        self,
        dataset: Path,
        writer: RelationalWriter,
        fake_embeddings: FakeEmbeddings,
        fake_store: FakeFoodVectorStore,
    ) -> None:
        cancel = threading.Event()
        cancel.set()
        report = _importer(writer, fake_embeddings, fake_store).run(dataset, cancel)

        assert report.status == "cancelled"
        assert report.history[-2:] == ["schema_ensured", "cancelled"]
        assert writer.count(FOOD_CATEGORY) == 0

    def test_cancel_during_associations_keeps_committed_batches(
        self,
        dataset: Path,
        db_url: str,
        fake_embeddings: FakeEmbeddings,
        fake_store: FakeFoodVectorStore,
    ) -> None:
        cancel = threading.Event()

        class CancellingWriter(RelationalWriter):
            def _commit(self, table_name: str, batch: list[Entity]) -> int:
                written = super()._commit(table_name, batch)
                if table_name == FOOD_NUTRIENT:
                    cancel.set()
                return written

        writer = CancellingWriter.from_url(db_url)
        try:
            importer = _importer(writer, fake_embeddings, fake_store, association_batch_size=2)
            report = importer.run(dataset, cancel)

            assert report.status == "cancelled"
            assert importer.state.value == "cancelled"
            assert report.history[-2:] == ["foods_written", "cancelled"]
            assert report.counts["food_nutrients"] == 2
            assert writer.count(FOOD) == 2
            assert writer.count(FOOD_NUTRIENT) == 2
            assert fake_embeddings.calls == []
        finally:
            writer.dispose()


@pytest.mark.parametrize("status", ["failed", "cancelled"])
def test_terminal_report_is_serialisable(
    status: str,
    dataset: Path,
    writer: RelationalWriter,
    fake_embeddings: FakeEmbeddings,
    fake_store: FakeFoodVectorStore,
) -> None:
    cancel = threading.Event()
    if status == "cancelled":
        cancel.set()
        root: Path = dataset
    else:
        root = dataset / "missing"
    report = _importer(writer, fake_embeddings, fake_store).run(root, cancel)
    payload = report.model_dump()
    assert payload["status"] == status
    assert payload["state"] == status
