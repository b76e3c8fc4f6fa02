r"""backend/app/api/v1/stock.py

Read-only warehouse stock lookup."""

from __future__ import annotations

import logging
from datetime import date as date_type
from typing import Dict, List, Optional

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, Field

from ...core.errors import StockStoreError
from ...models import schemas
from ...services.stock_store import MongoStockStore

LOGGER = logging.getLogger(__name__)

router = APIRouter()

_stock_store = MongoStockStore()


def _error_payload(code: str, message: str) -> dict[str, str]:
    """Return a standardised error payload."""

    return {"error": code, "message": message}


class StockRequest(BaseModel):
    products: List[str] = Field(..., min_length=1, description="Product names to look up")
    date: Optional[date_type] = Field(
        None, description="Use the inventory upload closest to this date instead of the current one"
    )


class StockResponse(BaseModel):
    found: Dict[str, schemas.StockLevel]
    missing: List[str]


@router.post("/stock", response_model=StockResponse)
def lookup_stock(body: StockRequest) -> StockResponse:
    """Return warehouse stock for each product that can be matched to an article."""

    LOGGER.info("Stock lookup received for %d product(s) date=%s", len(body.products), body.date)
    try:
        found = _stock_store.lookup(body.products, body.date)
    except StockStoreError as exc:
        LOGGER.exception("Warehouse inventory unavailable")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=_error_payload("stock_unavailable", str(exc)),
        ) from exc
    missing = [name for name in dict.fromkeys(body.products) if name not in found]
    return StockResponse(found=found, missing=missing)
