r"""backend\app\models\schemas.py

Pydantic models used throughout the API.

These models serve as both request payload validators and response
serialisation schemas.  Item models accept the English field names as well as
the Spanish keys used by the upstream prediction API and by historical
documents, but always serialise with the English names.
"""

from __future__ import annotations

import math
from datetime import datetime
from numbers import Real
from typing import Annotated, Any, Dict, List, Literal, Optional

from pydantic import AliasChoices, BaseModel, BeforeValidator, ConfigDict, Field, field_validator


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero."""

    if value >= 0:
        return int(math.floor(value + 0.5))
    return -int(math.floor(-value + 0.5))


def _coerce_quantity(value: Any) -> Any:
    # Fractional quantities are rounded; anything else is left to pydantic.
    if isinstance(value, bool):
        return value
    if isinstance(value, Real) and math.isfinite(float(value)):
        return round_half_up(float(value))
    if isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return value
        if math.isfinite(number):
            return round_half_up(number)
    return value


def _clamp_confidence(value: Any) -> Any:
    if isinstance(value, bool):
        return value
    if isinstance(value, (Real, str)):
        try:
            number = float(value)
        except ValueError:
            return value
        if math.isfinite(number):
            return max(0.0, min(number, 100.0))
    return value


def finite_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, Real):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


# Descriptive fields never reject an item: unusable values become None.
def _optional_int(value: Any) -> Optional[int]:
    number = finite_number(value)
    return None if number is None else round_half_up(number)


def _optional_float(value: Any) -> Optional[float]:
    return finite_number(value)


def _optional_text(value: Any) -> Optional[str]:
    if isinstance(value, str):
        return value
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, Real):
        return str(value)
    return None


def _recent_order_entries(value: Any) -> List[Any]:
    if not isinstance(value, list):
        return []
    return [entry for entry in value if isinstance(entry, (dict, BaseModel))]


Quantity = Annotated[int, BeforeValidator(_coerce_quantity)]
Confidence = Annotated[float, BeforeValidator(_clamp_confidence)]
OptionalInt = Annotated[Optional[int], BeforeValidator(_optional_int)]
OptionalFloat = Annotated[Optional[float], BeforeValidator(_optional_float)]
OptionalText = Annotated[Optional[str], BeforeValidator(_optional_text)]


class RecentOrder(BaseModel):
    """An order for the same product placed recently by another branch."""

    branch: OptionalText = Field(None, validation_alias=AliasChoices("branch", "sucursal"))
    days_since_order: OptionalInt = Field(
        None, validation_alias=AliasChoices("days_since_order", "dias_desde_pedido")
    )
    quantity: OptionalFloat = Field(None, validation_alias=AliasChoices("quantity", "cantidad"))


class PredictedItem(BaseModel):
    """A model-estimated demand quantity for one product."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(
        ..., min_length=1, validation_alias=AliasChoices("name", "nombre", "nombre_articulo")
    )
    predicted_quantity: Quantity = Field(
        ..., ge=0, validation_alias=AliasChoices("predicted_quantity", "cantidad")
    )
    confidence: Confidence = Field(
        ..., ge=0, le=100, validation_alias=AliasChoices("confidence", "confianza", "probabilidad")
    )
    external_id: OptionalText = Field(
        None, validation_alias=AliasChoices("external_id", "articulo_id")
    )


class RecommendedItem(BaseModel):
    """A suggested order quantity for one product.

    Only ``name``, ``suggested_quantity`` and ``confidence`` are checked
    strictly; the descriptive fields fall back to ``None`` (or ``""`` for
    ``category``) when the upstream sends something unusable.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(
        ..., min_length=1, validation_alias=AliasChoices("name", "nombre", "nombre_articulo")
    )
    suggested_quantity: Quantity = Field(
        ..., ge=0, validation_alias=AliasChoices("suggested_quantity", "cantidad_sugerida")
    )
    confidence: Confidence = Field(
        ..., ge=0, le=100, validation_alias=AliasChoices("confidence", "confianza", "probabilidad")
    )
    category: str = Field("", validation_alias=AliasChoices("category", "tipo"))
    rationale: OptionalText = Field(None, validation_alias=AliasChoices("rationale", "motivo"))
    min_quantity: OptionalFloat = Field(
        None, validation_alias=AliasChoices("min_quantity", "min_cantidad")
    )
    max_quantity: OptionalFloat = Field(
        None, validation_alias=AliasChoices("max_quantity", "max_cantidad")
    )
    recommendation_type: OptionalText = Field(
        None, validation_alias=AliasChoices("recommendation_type", "tipo_recomendacion")
    )
    frequency_in_other_branches: OptionalFloat = Field(
        None, validation_alias=AliasChoices("frequency_in_other_branches", "frecuencia_otras")
    )
    branch_count: OptionalInt = Field(
        None, validation_alias=AliasChoices("branch_count", "num_sucursales")
    )
    recommendation_level: OptionalInt = Field(
        None, validation_alias=AliasChoices("recommendation_level", "nivel_recomendacion")
    )
    recent_orders: List[RecentOrder] = Field(
        default_factory=list,
        validation_alias=AliasChoices("recent_orders", "pedidos_recientes_otras"),
    )
    last_order_date: OptionalText = Field(
        None, validation_alias=AliasChoices("last_order_date", "ultima_fecha_pedido")
    )
    days_since_last_order: OptionalInt = Field(
        None, validation_alias=AliasChoices("days_since_last_order", "dias_desde_ultimo_pedido")
    )
    last_order_quantity: OptionalFloat = Field(
        None, validation_alias=AliasChoices("last_order_quantity", "cantidad_ultimo_pedido")
    )

    @field_validator("category", mode="before")
    @classmethod
    def _blank_category(cls, value: Any) -> Any:
        return _optional_text(value) or ""

    @field_validator("recent_orders", mode="before")
    @classmethod
    def _usable_orders(cls, value: Any) -> Any:
        return _recent_order_entries(value)


NotOrderedReason = Literal["in_stock_at_store", "unavailable_at_warehouse", "other"]


class ReconciledItem(BaseModel):
    """A product present in both the prediction and the recommendation."""

    model_config = ConfigDict(frozen=True)

    name: str
    predicted_quantity: int
    suggested_quantity: int
    prediction_confidence: float
    recommendation_confidence: float
    difference_abs: int = Field(..., description="suggested_quantity - predicted_quantity")
    difference_pct: float = Field(
        ..., description="difference_abs relative to the prediction, 100 when the prediction is 0"
    )
    average_quantity: int = Field(..., description="Mean of both quantities, rounded half up")
    recommendation_level: int = Field(..., ge=1, le=5)
    confidence_label: str = Field("", description="Band of the recommendation confidence")
    category: str = ""
    rationale: Optional[str] = None
    external_id: Optional[str] = None
    min_quantity: Optional[float] = None
    max_quantity: Optional[float] = None
    recommendation_type: Optional[str] = None
    frequency_in_other_branches: Optional[float] = None
    branch_count: Optional[int] = None
    recent_orders: List[RecentOrder] = Field(default_factory=list)
    last_order_date: Optional[str] = None
    days_since_last_order: Optional[int] = None
    last_order_quantity: Optional[float] = None
    ordered: Optional[bool] = None
    not_ordered_reason: Optional[NotOrderedReason] = None
    not_ordered_comment: Optional[str] = None
    warehouse_stock: Optional[float] = Field(
        None, description="Units on hand at the warehouse, None when not looked up or not found"
    )


class ReconciliationSummary(BaseModel):
    """Counts shown next to a reconciliation table."""

    predicted_count: int
    recommended_count: int
    matched_count: int
    skipped_count: int = 0
    increase_count: int
    decrease_count: int
    unchanged_count: int
    mean_abs_difference_pct: float


class ReconciliationResult(BaseModel):
    """Ordered reconciled items plus their summary."""

    branch: Optional[str] = None
    display_name: Optional[str] = None
    date: Optional[str] = None
    items: List[ReconciledItem]
    summary: ReconciliationSummary


class PredictionSnapshot(BaseModel):
    """A stored pair of prediction and recommendation lists for a branch/date."""

    id: Optional[str] = None
    branch: str = Field(..., min_length=1)
    date: str
    timestamp: str
    predictions: List[Dict[str, Any]] = Field(default_factory=list)
    recommendations: List[Dict[str, Any]] = Field(default_factory=list)
    source: str = "api"


class OrderFeedback(BaseModel):
    """Whether a reconciled product was actually ordered."""

    product: str = Field(..., min_length=1, validation_alias=AliasChoices("product", "producto"))
    branch: str = Field(..., min_length=1, validation_alias=AliasChoices("branch", "sucursal"))
    date: str = Field(..., min_length=1, validation_alias=AliasChoices("date", "fecha"))
    ordered: bool = Field(..., validation_alias=AliasChoices("ordered", "ordenado"))
    quantity: Optional[float] = Field(None, validation_alias=AliasChoices("quantity", "cantidad"))
    not_ordered_reason: Optional[NotOrderedReason] = Field(
        None, validation_alias=AliasChoices("not_ordered_reason", "razon_no_ordenado")
    )
    comment: Optional[str] = Field(None, validation_alias=AliasChoices("comment", "comentario"))
    prediction_id: Optional[str] = Field(
        None, validation_alias=AliasChoices("prediction_id", "predictionId")
    )
    recorded_at: Optional[datetime] = None

    @field_validator("not_ordered_reason", mode="before")
    @classmethod
    def _legacy_reason(cls, value: Any) -> Any:
        legacy = {
            "hay_en_tienda": "in_stock_at_store",
            "no_hay_en_cedis": "unavailable_at_warehouse",
            "otro": "other",
        }
        if isinstance(value, str):
            return legacy.get(value, value)
        return value


class ServiceStatus(BaseModel):
    """Availability of the external prediction service."""

    online: bool
    message: str
    upstream: Dict[str, Any] = Field(default_factory=dict)


class StockLevel(BaseModel):
    """Warehouse stock found for one product."""

    product: str
    article: str = Field(..., description="Article name as stored in the inventory")
    quantity: float
    available: bool
    collection: str
