"""Match predicted and recommended items by product name and compare them."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Type, TypeVar

import numpy as np
from pydantic import BaseModel, ValidationError

from ..core.config import load_rules
from ..models.schemas import (
    OrderFeedback,
    PredictedItem,
    ReconciledItem,
    ReconciliationResult,
    ReconciliationSummary,
    RecommendedItem,
    StockLevel,
    finite_number,
    round_half_up,
)

LOGGER = logging.getLogger(__name__)

ItemT = TypeVar("ItemT", PredictedItem, RecommendedItem)

# Keys a numeric field may arrive under, in the order pydantic resolves them.
_NUMERIC_KEYS: Dict[str, Tuple[str, ...]] = {
    "predicted_quantity": ("predicted_quantity", "cantidad"),
    "suggested_quantity": ("suggested_quantity", "cantidad_sugerida"),
    "confidence": ("confidence", "confianza", "probabilidad"),
}
_REQUIRED_KEYS: Dict[str, Tuple[str, ...]] = {
    "name": ("name", "nombre", "nombre_articulo"),
    **_NUMERIC_KEYS,
}


class MalformedItemPolicy(str, Enum):
    """What to do with an item whose quantity or confidence is unusable."""

    SKIP = "skip"
    ZERO = "zero"


class DuplicatePolicy(str, Enum):
    """Which predicted item wins when a product name repeats."""

    LAST = "last"
    FIRST = "first"


# ---------------------------------------------------------------------------
def confidence_to_level(confidence: float) -> int:
    """Map a 0-100 confidence onto a 1-5 recommendation level."""

    if confidence >= 90:
        return 5
    if confidence >= 80:
        return 4
    if confidence >= 70:
        return 3
    if confidence >= 60:
        return 2
    return 1


def confidence_label(confidence: float) -> str:
    return {
        5: "very_high",
        4: "high",
        3: "medium",
        2: "low",
        1: "very_low",
    }[confidence_to_level(confidence)]


def _resolve_required(raw: Mapping[str, Any], model: Type[BaseModel]) -> Dict[str, Any]:
    """Collapse each group of alias keys onto its field name.

    A key holding ``None`` does not shadow a later alias carrying a value, so
    ``{"predicted_quantity": None, "cantidad": 10}`` resolves to 10.
    """

    resolved = dict(raw)
    for field_name, keys in _REQUIRED_KEYS.items():
        if field_name not in model.model_fields:
            continue
        value = next((raw[key] for key in keys if raw.get(key) is not None), None)
        for key in keys:
            resolved.pop(key, None)
        if value is not None:
            resolved[field_name] = value
    return resolved


def _zero_fill(resolved: Mapping[str, Any], model: Type[BaseModel]) -> Dict[str, Any]:
    """Return a copy of ``resolved`` with unusable numeric fields set to 0."""

    patched = dict(resolved)
    for field_name in _NUMERIC_KEYS:
        if field_name not in model.model_fields:
            continue
        number = finite_number(resolved.get(field_name))
        if number is None or number < 0:
            patched[field_name] = 0
    return patched


def coerce_item(
    raw: Any,
    model: Type[ItemT],
    policy: MalformedItemPolicy | str = MalformedItemPolicy.SKIP,
) -> Optional[ItemT]:
    """Build ``model`` from ``raw`` or return ``None`` when it must be rejected."""

    policy = MalformedItemPolicy(policy)
    if isinstance(raw, model):
        return raw
    if isinstance(raw, BaseModel):
        raw = raw.model_dump()
    if not isinstance(raw, Mapping):
        LOGGER.warning("Rejecting %s: expected a mapping, got %s", model.__name__, type(raw).__name__)
        return None

    resolved = _resolve_required(raw, model)
    try:
        return model.model_validate(resolved)
    except ValidationError as exc:
        if policy is not MalformedItemPolicy.ZERO:
            LOGGER.warning(
                "Skipping malformed %s %r: %d validation error(s)",
                model.__name__,
                resolved.get("name"),
                exc.error_count(),
            )
            return None

    try:
        item = model.model_validate(_zero_fill(resolved, model))
    except ValidationError as exc:
        LOGGER.warning(
            "Dropping %s that cannot be repaired: %s", model.__name__, exc.errors()[0].get("msg")
        )
        return None
    LOGGER.info("Defaulted unusable numeric fields of %s %r to 0", model.__name__, item.name)
    return item


def coerce_items(
    raw_items: Iterable[Any],
    model: Type[ItemT],
    policy: MalformedItemPolicy | str = MalformedItemPolicy.SKIP,
) -> Tuple[List[ItemT], int]:
    """Coerce every element of ``raw_items``; return the items and the rejected count."""

    items: List[ItemT] = []
    rejected = 0
    for raw in raw_items or []:
        item = coerce_item(raw, model, policy)
        if item is None:
            rejected += 1
        else:
            items.append(item)
    return items, rejected


def _join_key(name: str, case_insensitive: bool) -> str:
    return name.strip().casefold() if case_insensitive else name


def _build_item(predicted: PredictedItem, recommended: RecommendedItem) -> ReconciledItem:
    predicted_qty = predicted.predicted_quantity
    suggested_qty = recommended.suggested_quantity
    difference_abs = suggested_qty - predicted_qty
    if predicted_qty == 0:
        difference_pct = 100.0
    else:
        difference_pct = (difference_abs / predicted_qty) * 100.0

    level = recommended.recommendation_level
    if level is None or not 1 <= level <= 5:
        level = confidence_to_level(recommended.confidence)

    return ReconciledItem(
        name=recommended.name,
        predicted_quantity=predicted_qty,
        suggested_quantity=suggested_qty,
        prediction_confidence=predicted.confidence,
        recommendation_confidence=recommended.confidence,
        difference_abs=difference_abs,
        difference_pct=difference_pct,
        average_quantity=round_half_up((predicted_qty + suggested_qty) / 2),
        recommendation_level=level,
        confidence_label=confidence_label(recommended.confidence),
        category=recommended.category,
        rationale=recommended.rationale,
        external_id=predicted.external_id,
        min_quantity=recommended.min_quantity,
        max_quantity=recommended.max_quantity,
        recommendation_type=recommended.recommendation_type,
        frequency_in_other_branches=recommended.frequency_in_other_branches,
        branch_count=recommended.branch_count,
        recent_orders=list(recommended.recent_orders),
        last_order_date=recommended.last_order_date,
        days_since_last_order=recommended.days_since_last_order,
        last_order_quantity=recommended.last_order_quantity,
    )


# ---------------------------------------------------------------------------
def reconcile(
    predicted: Iterable[PredictedItem | Mapping[str, Any]],
    recommended: Iterable[RecommendedItem | Mapping[str, Any]],
    *,
    malformed_policy: MalformedItemPolicy | str = MalformedItemPolicy.SKIP,
    duplicate_policy: DuplicatePolicy | str = DuplicatePolicy.LAST,
    case_insensitive: bool = False,
) -> List[ReconciledItem]:
    """Return the products present in both lists, largest relative gap first.

    The predicted list is indexed by name (``duplicate_policy`` decides which
    entry survives a repeated name).  The recommended list is walked in order
    and each name found in the index yields one :class:`ReconciledItem`; a
    recommended name is only emitted once.  The result is stably sorted by
    descending ``abs(difference_pct)`` so equal gaps keep recommended order.
    """

    malformed_policy = MalformedItemPolicy(malformed_policy)
    duplicate_policy = DuplicatePolicy(duplicate_policy)

    predicted_items, _ = coerce_items(predicted, PredictedItem, malformed_policy)
    recommended_items, _ = coerce_items(recommended, RecommendedItem, malformed_policy)

    lookup: Dict[str, PredictedItem] = {}
    for item in predicted_items:
        key = _join_key(item.name, case_insensitive)
        if duplicate_policy is DuplicatePolicy.FIRST and key in lookup:
            continue
        lookup[key] = item

    matched: List[ReconciledItem] = []
    seen: set[str] = set()
    for rec in recommended_items:
        key = _join_key(rec.name, case_insensitive)
        if key in seen:
            continue
        prediction = lookup.get(key)
        if prediction is None:
            continue
        seen.add(key)
        matched.append(_build_item(prediction, rec))

    return sorted(matched, key=lambda item: -abs(item.difference_pct))


def summarize(
    items: Sequence[ReconciledItem],
    predicted_count: int,
    recommended_count: int,
    skipped_count: int = 0,
) -> ReconciliationSummary:
    """Count matches and the direction of each quantity gap."""

    diffs = np.array([item.difference_abs for item in items], dtype=float)
    pcts = np.array([abs(item.difference_pct) for item in items], dtype=float)
    mean_pct = float(np.mean(pcts)) if pcts.size else 0.0
    return ReconciliationSummary(
        predicted_count=predicted_count,
        recommended_count=recommended_count,
        matched_count=len(items),
        skipped_count=skipped_count,
        increase_count=int(np.sum(diffs > 0)),
        decrease_count=int(np.sum(diffs < 0)),
        unchanged_count=int(np.sum(diffs == 0)),
        mean_abs_difference_pct=round(mean_pct, 4),
    )


def apply_feedback(
    items: Sequence[ReconciledItem],
    feedback: Iterable[OrderFeedback],
    case_insensitive: bool = False,
) -> List[ReconciledItem]:
    """Overlay order feedback onto copies of ``items``, keeping their order.

    Products are matched the same way ``reconcile`` joins names.
    """

    by_product: Dict[str, OrderFeedback] = {}
    for record in feedback:
        by_product[_join_key(record.product, case_insensitive)] = record
    if not by_product:
        return list(items)

    merged: List[ReconciledItem] = []
    for item in items:
        record = by_product.get(_join_key(item.name, case_insensitive))
        if record is None:
            merged.append(item)
            continue
        merged.append(
            item.model_copy(
                update={
                    "ordered": record.ordered,
                    "not_ordered_reason": record.not_ordered_reason,
                    "not_ordered_comment": record.comment,
                }
            )
        )
    return merged


def attach_stock(
    items: Sequence[ReconciledItem],
    levels: Mapping[str, StockLevel],
) -> List[ReconciledItem]:
    """Copy warehouse quantities from ``levels`` (keyed by product name) onto ``items``."""

    if not levels:
        return list(items)
    return [
        item.model_copy(update={"warehouse_stock": levels[item.name].quantity})
        if item.name in levels
        else item
        for item in items
    ]


class ReconciliationService:
    """Reconciler configured from ``settings.yaml``."""

    def __init__(self, config_root: str | None = None) -> None:
        rules = load_rules(config_root)
        self.malformed_policy = MalformedItemPolicy(
            str(rules.get("malformed_item_policy", "skip")).lower()
        )
        self.duplicate_policy = DuplicatePolicy(
            str(rules.get("predicted_duplicate_policy", "last")).lower()
        )
        self.case_insensitive = bool(rules.get("match_names_case_insensitive", False))

    # ------------------------------------------------------------------
    def run(
        self,
        predicted: Iterable[Any],
        recommended: Iterable[Any],
        *,
        branch: str | None = None,
        date: str | None = None,
        feedback: Iterable[OrderFeedback] = (),
    ) -> ReconciliationResult:
        predicted_items, predicted_rejected = coerce_items(
            predicted, PredictedItem, self.malformed_policy
        )
        recommended_items, recommended_rejected = coerce_items(
            recommended, RecommendedItem, self.malformed_policy
        )

        items = reconcile(
            predicted_items,
            recommended_items,
            malformed_policy=self.malformed_policy,
            duplicate_policy=self.duplicate_policy,
            case_insensitive=self.case_insensitive,
        )
        items = apply_feedback(items, feedback, self.case_insensitive)
        summary = summarize(
            items,
            predicted_count=len(predicted_items) + predicted_rejected,
            recommended_count=len(recommended_items) + recommended_rejected,
            skipped_count=predicted_rejected + recommended_rejected,
        )

        LOGGER.info(
            "Reconciled branch=%s date=%s predicted=%d recommended=%d matched=%d skipped=%d",
            branch,
            date,
            summary.predicted_count,
            summary.recommended_count,
            summary.matched_count,
            summary.skipped_count,
        )
        return ReconciliationResult(branch=branch, date=date, items=items, summary=summary)
