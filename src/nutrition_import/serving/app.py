"""FastAPI application exposing the importer and food search as a REST API."""

from __future__ import annotations

import logging
import threading
from functools import lru_cache

from fastapi import Depends, FastAPI, HTTPException, Query
from pydantic import BaseModel

from nutrition_import.config import settings
from nutrition_import.errors import ImportPipelineError
from nutrition_import.models import ImportReport
from nutrition_import.pipeline.importer import FoodDataImporter, build_importer

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Nutrition Import API",
    version="0.1.0",
    description="Triggers dataset imports and searches the food embedding collection.",
)

# Cancel handle of the import currently running, if any.
_active_run: threading.Event | None = None
_active_lock = threading.Lock()


@lru_cache(maxsize=1)
def get_importer() -> FoodDataImporter:
    """Build the importer once, on first use."""
    return build_importer(settings)


# ── Request / Response schemas ────────────────────────────────────────
class ImportRequest(BaseModel):
    """Where to read the dataset from."""

    dataset_root: str = settings.dataset_root
    embed: bool = True


class CancelResponse(BaseModel):
    cancelled: bool


class FoodHit(BaseModel):
    id: int
    name: str
    category_id: int | None = None
    score: float


# ── Routes ────────────────────────────────────────────────────────────
@app.get("/health")
async def health() -> dict[str, str]:
    """Liveness probe."""
    return {"status": "ok"}


@app.post("/import", response_model=ImportReport)
def run_import(
    request: ImportRequest,
    importer: FoodDataImporter = Depends(get_importer),
) -> ImportReport:
    """Run a full import.  Blocks until the run reaches a terminal state.

    Only one import runs at a time; a second request gets 409 so the
    running import stays cancellable through ``/import/cancel``.
    """
    global _active_run

    cancel_event = threading.Event()
    with _active_lock:
        if _active_run is not None:
            raise HTTPException(status_code=409, detail="An import is already running")
        _active_run = cancel_event
    try:
        report = importer.run(request.dataset_root, cancel_event, embed=request.embed)
    finally:
        with _active_lock:
            if _active_run is cancel_event:
                _active_run = None

    logger.info("Import finished: status=%s counts=%s", report.status, report.counts)
    return report


@app.post("/import/cancel", response_model=CancelResponse)
async def cancel_import() -> CancelResponse:
    """Ask the running import to stop at its next row."""
    with _active_lock:
        if _active_run is None:
            return CancelResponse(cancelled=False)
        _active_run.set()
    return CancelResponse(cancelled=True)


@app.get("/search", response_model=list[FoodHit])
def search(
    q: str = Query(..., min_length=1),
    k: int = Query(5, ge=1, le=100),
    importer: FoodDataImporter = Depends(get_importer),
) -> list[FoodHit]:
    """Return the foods whose descriptions are closest to *q*."""
    generator = importer.generator
    try:
        vector = generator.embedder.generate(q)
        hits = generator.store.similarity_search(vector, k=k)
    except ImportPipelineError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return [FoodHit(**hit) for hit in hits]
