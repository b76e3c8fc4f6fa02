r"""backend/app/api/v1/feedback.py

Endpoints recording whether recommended products were actually ordered."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Response, status

from ...core.errors import HistoryStoreError
from ...models import schemas
from ...services.history_store import MongoHistoryStore

LOGGER = logging.getLogger(__name__)

router = APIRouter()

_history_store = MongoHistoryStore()


@router.get("/feedback")
def get_feedback(branch: Optional[str] = None) -> Dict[str, List[schemas.OrderFeedback]]:
    """Return recorded order feedback, optionally for one branch."""

    try:
        records = _history_store.list_feedback(branch)
    except HistoryStoreError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"error": "history_unavailable", "message": str(exc)},
        ) from exc
    return {"feedback": records}


@router.post("/feedback", status_code=status.HTTP_201_CREATED)
def create_feedback(body: schemas.OrderFeedback, response: Response) -> Dict[str, Any]:
    """Record feedback once per product, branch, date and prediction."""

    if not body.ordered and body.not_ordered_reason is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "error": "missing_reason",
                "message": "not_ordered_reason is required when ordered is false.",
            },
        )

    try:
        created = _history_store.save_feedback(body)
    except HistoryStoreError as exc:
        LOGGER.exception("Failed to store feedback for product=%s", body.product)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"error": "history_unavailable", "message": str(exc)},
        ) from exc

    if not created:
        response.status_code = status.HTTP_200_OK
    return {"status": "ok", "created": created, "feedback": body}
