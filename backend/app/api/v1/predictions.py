r"""backend/app/api/v1/predictions.py

Routes that forward requests to the external prediction model."""

from __future__ import annotations

import logging
from datetime import date as date_type
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, Field

from ...core.config import get_settings, load_rules
from ...core.errors import HistoryStoreError, PredictionServiceError
from ...models import schemas
from ...services.branches import display_name
from ...services.history_store import MongoHistoryStore
from ...services.prediction_service import HttpPredictionService
from ...services.reconciliation_service import ReconciliationService, attach_stock
from ...services.stock_store import MongoStockStore, stock_or_empty

LOGGER = logging.getLogger(__name__)

router = APIRouter()

CONFIG_DIR = get_settings().config_dir

_prediction_service = HttpPredictionService()
_history_store = MongoHistoryStore()
_stock_store = MongoStockStore()


def _error_payload(code: str, message: str) -> dict[str, str]:
    """Return a standardised error payload."""

    return {"error": code, "message": message}


def _upstream_error(exc: PredictionServiceError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY,
        detail=_error_payload("prediction_service_error", str(exc)),
    )


class PredictionRequest(BaseModel):
    """Validated payload for running a prediction for one branch."""

    branch: str = Field(..., min_length=1, description="Branch name as known to the model")
    date: Optional[date_type] = Field(None, description="Prediction date, defaults to today")
    top_n: Optional[int] = Field(None, ge=1, le=1000, description="Number of products to predict")
    include_stock: bool = Field(True, description="Attach warehouse stock to each product")


class RecommendationRequest(BaseModel):
    branch: str = Field(..., min_length=1)
    date: Optional[date_type] = None
    limit: Optional[int] = Field(None, ge=1, le=1000)


class PredictionRunResponse(schemas.ReconciliationResult):
    """Reconciliation of a fresh prediction plus where it was stored."""

    snapshot_id: Optional[str] = None
    timestamp: str


class BranchEntry(BaseModel):
    branch: str
    display_name: str


@router.get("/predictions/status", response_model=schemas.ServiceStatus)
def prediction_status() -> schemas.ServiceStatus:
    """Report whether the external prediction model is reachable."""

    return _prediction_service.status()


@router.get("/branches", response_model=List[BranchEntry])
def list_branches() -> List[BranchEntry]:
    """Return the branches the model knows about, with display names."""

    try:
        names = _prediction_service.branches()
    except PredictionServiceError as exc:
        raise _upstream_error(exc) from exc

    mapping = load_rules(CONFIG_DIR).get("branch_display_names") or {}
    return [BranchEntry(branch=name, display_name=display_name(name, mapping)) for name in names]


@router.post("/recommendations")
def get_recommendations(body: RecommendationRequest) -> Dict[str, Any]:
    """Return the model's raw recommendations for a branch."""

    LOGGER.info("Recommendation request received for branch=%s date=%s", body.branch, body.date)
    try:
        recommendations = _prediction_service.recommend(body.branch, body.date, body.limit)
    except PredictionServiceError as exc:
        raise _upstream_error(exc) from exc
    return {
        "branch": body.branch,
        "date": (body.date or date_type.today()).isoformat(),
        "total": len(recommendations),
        "recommendations": recommendations,
    }


@router.post("/predictions", response_model=PredictionRunResponse)
def run_prediction(body: PredictionRequest) -> PredictionRunResponse:
    """Predict for a branch, store the snapshot and reconcile it."""

    rules = load_rules(CONFIG_DIR)
    prediction_date = body.date or date_type.today()
    top_n = body.top_n or int(rules.get("default_top_n", 100))
    LOGGER.info(
        "Prediction request received for branch=%s date=%s top_n=%s",
        body.branch,
        prediction_date,
        top_n,
    )

    try:
        bundle = _prediction_service.predict(body.branch, prediction_date, top_n)
        recommendations = bundle.recommendations
        if not recommendations:
            recommendations = _prediction_service.recommend(body.branch, prediction_date, top_n)
    except PredictionServiceError as exc:
        raise _upstream_error(exc) from exc

    timestamp = datetime.now(timezone.utc).isoformat()
    snapshot = schemas.PredictionSnapshot(
        branch=body.branch,
        date=prediction_date.isoformat(),
        timestamp=timestamp,
        predictions=bundle.predictions,
        recommendations=recommendations,
        source="api",
    )
    snapshot_id: Optional[str] = None
    try:
        snapshot_id = _history_store.save_snapshot(snapshot)
    except HistoryStoreError as exc:
        LOGGER.warning("Prediction for branch=%s was not stored: %s", body.branch, exc)

    result = ReconciliationService(config_root=CONFIG_DIR).run(
        bundle.predictions,
        recommendations,
        branch=body.branch,
        date=snapshot.date,
    )
    if body.include_stock:
        levels = stock_or_empty(_stock_store, [item.name for item in result.items], snapshot.date)
        result = result.model_copy(update={"items": attach_stock(result.items, levels)})
    mapping = rules.get("branch_display_names") or {}
    return PredictionRunResponse(
        **result.model_dump(exclude={"display_name"}),
        display_name=display_name(body.branch, mapping),
        snapshot_id=snapshot_id,
        timestamp=timestamp,
    )
