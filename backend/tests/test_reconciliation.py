from __future__ import annotations

import sys
from pathlib import Path

import pytest
import yaml

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

from backend.app.models.schemas import OrderFeedback, PredictedItem, RecommendedItem, StockLevel
from backend.app.services.reconciliation_service import (
    ReconciliationService,
    apply_feedback,
    attach_stock,
    coerce_item,
    confidence_label,
    confidence_to_level,
    reconcile,
    summarize,
)


def _pred(name: str, qty: object, conf: object = 80.0) -> dict:
    return {"name": name, "predicted_quantity": qty, "confidence": conf}


def _rec(name: str, qty: object, conf: object = 70.0, category: str = "type1") -> dict:
    return {"name": name, "suggested_quantity": qty, "confidence": conf, "category": category}


def test_single_match_metrics() -> None:
    items = reconcile([_pred("A", 10, 80)], [_rec("A", 15, 70, "type1")])

    assert len(items) == 1
    item = items[0]
    assert item.name == "A"
    assert item.predicted_quantity == 10
    assert item.suggested_quantity == 15
    assert item.difference_abs == 5
    assert item.difference_pct == pytest.approx(50.0)
    assert item.average_quantity == 13
    assert item.prediction_confidence == 80.0
    assert item.recommendation_confidence == 70.0
    assert item.category == "type1"


def test_zero_prediction_uses_hundred_percent_and_rounds_half_up() -> None:
    items = reconcile([_pred("B", 0, 50)], [_rec("B", 5, 60, "t")])

    assert items[0].difference_pct == 100.0
    assert items[0].average_quantity == 3


def test_empty_inputs_yield_empty_output() -> None:
    some = [_pred("A", 1)]
    assert reconcile([], [_rec("A", 1)]) == []
    assert reconcile(some, []) == []
    assert reconcile([], []) == []


def test_only_names_in_both_lists_are_emitted() -> None:
    predicted = [_pred("A", 10), _pred("B", 10), _pred("C", 10)]
    recommended = [_rec("B", 12), _rec("D", 3), _rec("C", 4)]

    items = reconcile(predicted, recommended)

    names = {item.name for item in items}
    assert names == {"B", "C"}
    predicted_names = {p["name"] for p in predicted}
    recommended_names = {r["name"] for r in recommended}
    assert all(item.name in predicted_names and item.name in recommended_names for item in items)


def test_sorted_by_absolute_percentage_descending() -> None:
    predicted = [_pred("small", 100), _pred("drop", 10), _pred("big", 10)]
    recommended = [_rec("small", 105), _rec("drop", 2), _rec("big", 30)]

    items = reconcile(predicted, recommended)

    assert [item.name for item in items] == ["big", "drop", "small"]
    assert items[1].difference_pct == pytest.approx(-80.0)


def test_ties_keep_recommended_order() -> None:
    # +50% and -50% share abs(difference_pct); so do the two zero-prediction items.
    predicted = [_pred("up", 10), _pred("down", 10), _pred("z1", 0), _pred("z2", 0)]
    recommended = [_rec("z2", 1), _rec("down", 5), _rec("z1", 7), _rec("up", 15)]

    items = reconcile(predicted, recommended)

    assert [item.name for item in items] == ["z2", "z1", "down", "up"]


def test_duplicate_predicted_names_last_wins_by_default() -> None:
    predicted = [_pred("A", 10), _pred("A", 20)]

    items = reconcile(predicted, [_rec("A", 20)])

    assert len(items) == 1
    assert items[0].predicted_quantity == 20
    assert items[0].difference_abs == 0


def test_duplicate_predicted_names_first_wins_when_configured() -> None:
    predicted = [_pred("A", 10), _pred("A", 20)]

    items = reconcile(predicted, [_rec("A", 20)], duplicate_policy="first")

    assert items[0].predicted_quantity == 10


def test_duplicate_recommended_names_emit_once() -> None:
    items = reconcile([_pred("A", 10)], [_rec("A", 12), _rec("A", 40)])

    assert len(items) == 1
    assert items[0].suggested_quantity == 12


def test_output_never_longer_than_either_input() -> None:
    predicted = [_pred("A", 1), _pred("A", 2), _pred("B", 3)]
    recommended = [_rec("A", 1), _rec("B", 1), _rec("B", 2), _rec("C", 1)]

    items = reconcile(predicted, recommended)

    assert len(items) <= min(2, len(recommended))


def test_reconcile_is_deterministic() -> None:
    predicted = [_pred("A", 10), _pred("B", 0), _pred("C", 7)]
    recommended = [_rec("C", 3), _rec("A", 15), _rec("B", 4)]

    first = reconcile(predicted, recommended)
    second = reconcile(predicted, recommended)

    assert [item.model_dump() for item in first] == [item.model_dump() for item in second]


def test_malformed_items_are_skipped_by_default() -> None:
    predicted = [
        _pred("A", 10),
        {"name": "B", "confidence": 50},
        _pred("C", "lots"),
        _pred("D", -3),
        "not a mapping",
    ]
    recommended = [_rec("A", 12), _rec("B", 5), _rec("C", 5), _rec("D", 5)]

    items = reconcile(predicted, recommended)

    assert [item.name for item in items] == ["A"]


def test_malformed_items_default_to_zero_when_configured() -> None:
    predicted = [{"name": "B", "confidence": 50}, _pred("C", "lots", None)]
    recommended = [_rec("B", 5), _rec("C", 4, "high")]

    items = reconcile(predicted, recommended, malformed_policy="zero")

    by_name = {item.name: item for item in items}
    assert by_name["B"].predicted_quantity == 0
    assert by_name["B"].difference_pct == 100.0
    assert by_name["C"].prediction_confidence == 0.0
    assert by_name["C"].recommendation_confidence == 0.0


def test_items_without_name_are_dropped_even_when_zero_filling() -> None:
    assert coerce_item({"predicted_quantity": 3, "confidence": 10}, PredictedItem, "zero") is None


def test_upstream_field_names_are_accepted() -> None:
    predicted = [{"nombre": "Chocolate", "cantidad": 8, "confianza": 91.5, "articulo_id": 1234}]
    recommended = [
        {
            "nombre": "Chocolate",
            "cantidad_sugerida": 12.4,
            "confianza": 88,
            "tipo": "frecuente",
            "motivo": "Pedido en otras sucursales",
            "nivel_recomendacion": 4,
            "pedidos_recientes_otras": [
                {"sucursal": "CENTRO", "dias_desde_pedido": 2, "cantidad": 10}
            ],
        }
    ]

    item = reconcile(predicted, recommended)[0]

    assert item.external_id == "1234"
    assert item.suggested_quantity == 12
    assert item.category == "frecuente"
    assert item.rationale == "Pedido en otras sucursales"
    assert item.recommendation_level == 4
    assert item.recent_orders[0].branch == "CENTRO"
    assert "nombre" not in item.model_dump()


def test_confidence_is_clamped_and_fractional_quantity_rounded_half_up() -> None:
    item = PredictedItem.model_validate({"name": "X", "predicted_quantity": 2.5, "confidence": 130})

    assert item.predicted_quantity == 3
    assert item.confidence == 100.0


def test_case_insensitive_matching_is_opt_in() -> None:
    predicted = [_pred("Paleta Fresa", 4)]
    recommended = [_rec("paleta fresa ", 6)]

    assert reconcile(predicted, recommended) == []
    items = reconcile(predicted, recommended, case_insensitive=True)
    assert items[0].name == "paleta fresa "


def test_recommendation_level_falls_back_to_confidence() -> None:
    item = reconcile([_pred("A", 1)], [_rec("A", 1, conf=83)])[0]

    assert item.recommendation_level == 4
    assert confidence_to_level(95) == 5
    assert confidence_to_level(59.9) == 1
    assert confidence_label(72) == "medium"


def test_reconciled_items_are_immutable() -> None:
    item = reconcile([_pred("A", 1)], [_rec("A", 2)])[0]

    with pytest.raises(Exception):
        item.suggested_quantity = 99  # type: ignore[misc]


def test_summarize_counts_directions() -> None:
    items = reconcile(
        [_pred("A", 10), _pred("B", 10), _pred("C", 10)],
        [_rec("A", 15), _rec("B", 5), _rec("C", 10)],
    )

    summary = summarize(items, predicted_count=3, recommended_count=3)

    assert summary.matched_count == 3
    assert summary.increase_count == 1
    assert summary.decrease_count == 1
    assert summary.unchanged_count == 1
    assert summary.mean_abs_difference_pct == pytest.approx(100.0 / 3, rel=1e-3)


def test_summarize_empty() -> None:
    summary = summarize([], predicted_count=0, recommended_count=2)

    assert summary.matched_count == 0
    assert summary.mean_abs_difference_pct == 0.0


def test_apply_feedback_overlays_copies() -> None:
    items = reconcile([_pred("A", 10), _pred("B", 10)], [_rec("A", 20), _rec("B", 11)])
    feedback = [
        OrderFeedback(
            product="B",
            branch="CENTRO",
            date="2024-05-01",
            ordered=False,
            not_ordered_reason="hay_en_tienda",
            comment="shelf full",
        )
    ]

    merged = apply_feedback(items, feedback)

    assert [item.name for item in merged] == [item.name for item in items]
    assert merged[1].ordered is False
    assert merged[1].not_ordered_reason == "in_stock_at_store"
    assert merged[1].not_ordered_comment == "shelf full"
    assert items[1].ordered is None
    assert merged[0] is items[0]


def test_service_reads_policies_from_yaml(tmp_path: Path) -> None:
    (tmp_path / "settings.yaml").write_text(
        yaml.safe_dump({"malformed_item_policy": "zero", "predicted_duplicate_policy": "first"})
    )
    service = ReconciliationService(config_root=str(tmp_path))

    result = service.run(
        [_pred("A", 10), _pred("A", 99), {"name": "B", "confidence": 10}],
        [_rec("A", 20), _rec("B", 4), {"name": "C"}],
        branch="CENTRO",
        date="2024-05-01",
    )

    assert result.branch == "CENTRO"
    assert [item.name for item in result.items] == ["A", "B"]
    assert {item.name: item.predicted_quantity for item in result.items} == {"A": 10, "B": 0}
    assert result.summary.skipped_count == 0
    assert result.summary.predicted_count == 3
    assert result.summary.recommended_count == 3


def test_service_counts_skipped_items(tmp_path: Path) -> None:
    service = ReconciliationService(config_root=str(tmp_path))

    result = service.run(
        [_pred("A", 10), _pred("B", None)],
        [_rec("A", 10), _rec("B", 3, conf="n/a")],
    )

    assert [item.name for item in result.items] == ["A"]
    assert result.summary.skipped_count == 2
    assert result.summary.predicted_count == 2
    assert result.summary.matched_count == 1


def test_recommended_item_defaults() -> None:
    item = RecommendedItem.model_validate({"nombre": "X", "cantidad_sugerida": 1, "confianza": 5})

    assert item.category == ""
    assert item.recent_orders == []


@pytest.mark.parametrize("policy", ["skip", "zero"])
def test_descriptive_fields_never_reject_an_item(policy: str) -> None:
    recommended = [
        {
            "nombre": "A",
            "cantidad_sugerida": 6,
            "confianza": 85,
            "dias_desde_ultimo_pedido": 2.5,
            "num_sucursales": 2.5,
            "nivel_recomendacion": "alta",
            "frecuencia_otras": "n/a",
            "ultima_fecha_pedido": 20240501,
            "pedidos_recientes_otras": [
                {"dias_desde_pedido": 1, "cantidad": 3},
                "garbage",
                {"sucursal": "NORTE", "dias_desde_pedido": "ayer", "cantidad": 2},
            ],
        }
    ]

    items = reconcile([_pred("A", 4)], recommended, malformed_policy=policy)

    assert len(items) == 1
    item = items[0]
    assert item.suggested_quantity == 6
    assert item.days_since_last_order == 3
    assert item.branch_count == 3
    assert item.recommendation_level == 4
    assert item.frequency_in_other_branches is None
    assert item.last_order_date == "20240501"
    assert [order.branch for order in item.recent_orders] == [None, "NORTE"]
    assert item.recent_orders[1].days_since_order is None


@pytest.mark.parametrize("policy", ["skip", "zero"])
def test_null_alias_does_not_hide_a_usable_value(policy: str) -> None:
    predicted = [{"name": "A", "predicted_quantity": None, "cantidad": 10, "confidence": 80}]
    recommended = [
        {"name": None, "nombre": "A", "suggested_quantity": 12, "confidence": None, "confianza": 70}
    ]

    items = reconcile(predicted, recommended, malformed_policy=policy)

    assert len(items) == 1
    assert items[0].predicted_quantity == 10
    assert items[0].recommendation_confidence == 70.0
    assert items[0].difference_abs == 2


def test_null_alias_without_fallback_is_still_malformed() -> None:
    raw = {"name": "A", "predicted_quantity": None, "confidence": 80}

    assert coerce_item(raw, PredictedItem, "skip") is None
    assert coerce_item(raw, PredictedItem, "zero").predicted_quantity == 0


def test_apply_feedback_follows_case_insensitive_matching() -> None:
    items = reconcile([_pred("Paleta Fresa", 4)], [_rec("paleta fresa", 6)], case_insensitive=True)
    feedback = [OrderFeedback(product="PALETA FRESA", branch="CENTRO", date="2024-05-01", ordered=True)]

    assert apply_feedback(items, feedback)[0].ordered is None
    assert apply_feedback(items, feedback, case_insensitive=True)[0].ordered is True


def test_service_applies_feedback_with_configured_matching(tmp_path: Path) -> None:
    (tmp_path / "settings.yaml").write_text(yaml.safe_dump({"match_names_case_insensitive": True}))
    feedback = [
        OrderFeedback(
            product="chicle menta",
            branch="CENTRO",
            date="2024-05-01",
            ordered=False,
            not_ordered_reason="other",
        )
    ]

    result = ReconciliationService(config_root=str(tmp_path)).run(
        [_pred("Chicle Menta", 4)], [_rec("Chicle Menta", 2)], feedback=feedback
    )

    assert result.items[0].ordered is False
    assert result.items[0].not_ordered_reason == "other"


def test_reconciled_items_carry_confidence_label() -> None:
    items = reconcile(
        [_pred("A", 1), _pred("B", 1)], [_rec("A", 2, conf=93), _rec("B", 2, conf=41)]
    )

    assert {item.name: item.confidence_label for item in items} == {
        "A": "very_high",
        "B": "very_low",
    }


def test_attach_stock_sets_quantities_on_copies() -> None:
    items = reconcile([_pred("A", 1), _pred("B", 1)], [_rec("A", 2), _rec("B", 3)])
    levels = {
        "A": StockLevel(
            product="A", article="A 1KG", quantity=12.0, available=True, collection="inventariocedis"
        )
    }

    stocked = attach_stock(items, levels)

    assert {item.name: item.warehouse_stock for item in stocked} == {"A": 12.0, "B": None}
    assert all(item.warehouse_stock is None for item in items)
    assert attach_stock(items, {}) == items
