"""FastAPI service exposing ITBI street records and derived market signals."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import date
from typing import Any

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware

from jobs.config import Settings, load_settings
from jobs.load_all import snapshot_loader
from pipelines.matching import filter_by_use, match_street, suggest_streets
from pipelines.model import PropertyRecord, UseClass
from pipelines.signals import build_street_insights
from pipelines.snapshot import RecordSnapshot, SnapshotStore
from pipelines.sources.itbi import FetchError

DEFAULT_LIMIT = 200
MAX_LIMIT = 5000
USE_CLASSES = {
    "residential": UseClass.RESIDENCIAL,
    "commercial": UseClass.NAO_RESIDENCIAL,
}
load_dotenv()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = load_settings()
    logging.basicConfig(level=settings.log_level)
    app.state.settings = settings
    app.state.store = SnapshotStore()
    app.state.loader = snapshot_loader(settings)
    if settings.load_on_startup:
        try:
            await app.state.store.refresh(app.state.loader)
        except FetchError:
            logger.warning("Starting without ITBI data; POST /refresh to retry.")
    yield


app = FastAPI(title="ITBI Street Signals API", version="0.1.0", lifespan=lifespan)


def _configure_cors(settings: Settings) -> None:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_methods=["*"],
        allow_headers=["*"],
        allow_credentials=True,
    )


_configure_cors(load_settings())


def get_store(request: Request) -> SnapshotStore:
    return request.app.state.store


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def _require_snapshot(store: SnapshotStore) -> RecordSnapshot:
    snapshot = store.snapshot
    if snapshot is None:
        detail = store.last_error or "ITBI data is still loading."
        raise HTTPException(status_code=503, detail=detail)
    return snapshot


def _records_for_use(snapshot: RecordSnapshot, use: str) -> list[PropertyRecord]:
    use_class = USE_CLASSES.get(use.lower())
    if use_class is None:
        raise HTTPException(status_code=400, detail=f"Unsupported use '{use}'.")
    return filter_by_use(snapshot.records, use_class)


@app.get("/health")
def health(store: SnapshotStore = Depends(get_store)) -> dict[str, Any]:
    snapshot = store.snapshot
    if snapshot is not None:
        return {
            "status": "ok",
            "records": len(snapshot.records),
            "loaded_at": snapshot.loaded_at.isoformat(),
        }
    if store.last_error:
        return {"status": "unavailable", "error": store.last_error}
    return {"status": "loading"}


@app.post("/refresh")
async def refresh(request: Request, store: SnapshotStore = Depends(get_store)) -> dict[str, Any]:
    try:
        snapshot = await store.refresh(request.app.state.loader)
    except FetchError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return {
        "records": len(snapshot.records),
        "fetched": snapshot.fetched_count,
        "skipped": snapshot.skipped_count,
        "loaded_at": snapshot.loaded_at.isoformat(),
    }


@app.get("/streets/suggest")
def get_suggestions(
    q: str = Query(..., description="Partial street name"),
    use: str = Query("residential", description="Property use: residential or commercial"),
    store: SnapshotStore = Depends(get_store),
):
    records = _records_for_use(_require_snapshot(store), use)
    suggestions = suggest_streets(records, q)
    return {
        "count": len(suggestions),
        "items": [item.model_dump(mode="json") for item in suggestions],
    }


@app.get("/streets/insights")
def get_insights(
    street: str = Query(..., min_length=1, description="Street name or fragment"),
    use: str = Query("residential", description="Property use: residential or commercial"),
    as_of: date | None = Query(None, description="Month that ends the trailing window"),
    store: SnapshotStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
):
    if not street.strip():
        raise HTTPException(status_code=400, detail="Street query must not be blank.")
    records = _records_for_use(_require_snapshot(store), use)
    insights = build_street_insights(
        records, street, now=as_of, thresholds=settings.thresholds
    )
    return insights.model_dump(mode="json")


@app.get("/records")
def get_records(
    street: str = Query(..., min_length=1, description="Street name or fragment"),
    use: str = Query("residential", description="Property use: residential or commercial"),
    limit: int = Query(DEFAULT_LIMIT, ge=1, le=MAX_LIMIT, description="Maximum records returned"),
    store: SnapshotStore = Depends(get_store),
):
    records = _records_for_use(_require_snapshot(store), use)
    matched = match_street(records, street)
    return {
        "count": len(matched),
        "items": [record.model_dump(mode="json") for record in matched[:limit]],
    }
