r"""backend/app/api/v1/history.py

Endpoints for stored prediction snapshots."""

from __future__ import annotations

import logging
from datetime import date as date_type
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Query, status
from pydantic import BaseModel, Field

from ...core.errors import HistoryStoreError
from ...models import schemas
from ...services.history_store import MongoHistoryStore

LOGGER = logging.getLogger(__name__)

router = APIRouter()

_history_store = MongoHistoryStore()


def _unavailable(exc: HistoryStoreError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail={"error": "history_unavailable", "message": str(exc)},
    )


class SnapshotRequest(BaseModel):
    branch: str = Field(..., min_length=1)
    date: Optional[date_type] = None
    timestamp: Optional[str] = None
    predictions: List[Dict[str, Any]] = Field(..., description="Raw predicted items")
    recommendations: List[Dict[str, Any]] = Field(default_factory=list)
    source: str = "manual"


@router.get("/history")
def get_history(
    branch: Optional[str] = None,
    limit: int = Query(50, ge=1, le=500),
) -> Dict[str, List[schemas.PredictionSnapshot]]:
    """Return stored snapshots, newest first."""

    try:
        snapshots = _history_store.list_snapshots(branch=branch, limit=limit)
    except HistoryStoreError as exc:
        LOGGER.exception("Failed to list history for branch=%s", branch)
        raise _unavailable(exc) from exc
    return {"history": snapshots}


@router.post("/history", status_code=status.HTTP_201_CREATED)
def create_snapshot(body: SnapshotRequest) -> Dict[str, Any]:
    """Store a prediction snapshot."""

    timestamp = body.timestamp or datetime.now(timezone.utc).isoformat()
    snapshot_date = body.date
    if snapshot_date is None:
        try:
            snapshot_date = date_type.fromisoformat(timestamp[:10])
        except ValueError as exc:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={
                    "error": "invalid_timestamp",
                    "message": "timestamp must be ISO 8601 when date is omitted.",
                },
            ) from exc
    snapshot = schemas.PredictionSnapshot(
        branch=body.branch,
        date=snapshot_date.isoformat(),
        timestamp=timestamp,
        predictions=body.predictions,
        recommendations=body.recommendations,
        source=body.source,
    )
    try:
        snapshot_id = _history_store.save_snapshot(snapshot)
    except HistoryStoreError as exc:
        raise _unavailable(exc) from exc
    return {"status": "ok", "id": snapshot_id}
