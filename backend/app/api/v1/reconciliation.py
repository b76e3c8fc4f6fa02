r"""backend/app/api/v1/reconciliation.py

Routes comparing predicted and recommended quantities."""

from __future__ import annotations

import logging
from typing import Any, List, Optional

from fastapi import APIRouter, HTTPException, Query, status
from pydantic import BaseModel, Field

from ...core.config import get_settings, load_rules
from ...core.errors import HistoryStoreError
from ...models import schemas
from ...services.branches import display_name
from ...services.history_store import MongoHistoryStore
from ...services.reconciliation_service import ReconciliationService, attach_stock
from ...services.stock_store import MongoStockStore, stock_or_empty

LOGGER = logging.getLogger(__name__)

router = APIRouter()

CONFIG_DIR = get_settings().config_dir

_history_store = MongoHistoryStore()
_stock_store = MongoStockStore()


def _error_payload(code: str, message: str) -> dict[str, str]:
    """Return a standardised error payload."""

    return {"error": code, "message": message}


class ReconcileRequest(BaseModel):
    """Two already-fetched lists to compare."""

    predictions: List[Any] = Field(default_factory=list)
    recommendations: List[Any] = Field(default_factory=list)
    branch: Optional[str] = None
    date: Optional[str] = None


class StoredReconciliation(schemas.ReconciliationResult):
    snapshot_id: Optional[str] = None
    timestamp: str


@router.post("/reconcile", response_model=schemas.ReconciliationResult)
def reconcile_lists(body: ReconcileRequest) -> schemas.ReconciliationResult:
    """Reconcile the supplied prediction and recommendation lists."""

    result = ReconciliationService(config_root=CONFIG_DIR).run(
        body.predictions,
        body.recommendations,
        branch=body.branch,
        date=body.date,
    )
    if body.branch:
        mapping = load_rules(CONFIG_DIR).get("branch_display_names") or {}
        result = result.model_copy(update={"display_name": display_name(body.branch, mapping)})
    return result


@router.get("/branches/{branch}/reconciliation", response_model=StoredReconciliation)
def branch_reconciliation(
    branch: str,
    timestamp: Optional[str] = Query(None, description="Snapshot timestamp, defaults to latest"),
    include_stock: bool = Query(True, description="Attach warehouse stock to each product"),
) -> StoredReconciliation:
    """Reconcile the latest stored snapshot of a branch, with order feedback."""

    LOGGER.info("Stored reconciliation requested for branch=%s timestamp=%s", branch, timestamp)
    try:
        snapshot = _history_store.latest_snapshot(branch, timestamp)
        if snapshot is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=_error_payload(
                    "snapshot_not_found", f"No stored predictions for branch '{branch}'."
                ),
            )
        feedback = [
            record
            for record in _history_store.list_feedback(snapshot.branch)
            if record.date == snapshot.date
        ]
    except HistoryStoreError as exc:
        LOGGER.exception("History unavailable while reconciling branch=%s", branch)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=_error_payload("history_unavailable", str(exc)),
        ) from exc

    result = ReconciliationService(config_root=CONFIG_DIR).run(
        snapshot.predictions,
        snapshot.recommendations,
        branch=snapshot.branch,
        date=snapshot.date,
        feedback=feedback,
    )
    if include_stock:
        levels = stock_or_empty(_stock_store, [item.name for item in result.items], snapshot.date)
        result = result.model_copy(update={"items": attach_stock(result.items, levels)})
    mapping = load_rules(CONFIG_DIR).get("branch_display_names") or {}
    return StoredReconciliation(
        **result.model_dump(exclude={"display_name"}),
        display_name=display_name(snapshot.branch, mapping),
        snapshot_id=snapshot.id,
        timestamp=snapshot.timestamp,
    )
