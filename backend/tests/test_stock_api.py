r"""backend/tests/test_stock_api.py"""

from __future__ import annotations

import sys
from pathlib import Path

from fastapi.testclient import TestClient

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

from backend.app.core.errors import StockStoreError  # noqa: E402
from backend.app.main import app  # noqa: E402
from backend.app.models.schemas import PredictionSnapshot  # noqa: E402

client = TestClient(app)


class BrokenStockStore:
    def lookup(self, products, date=None):
        raise StockStoreError("server selection timeout")


def _store_snapshot(history_store) -> None:
    history_store.save_snapshot(
        PredictionSnapshot(
            branch="CENTRO",
            date="2024-05-01",
            timestamp="2024-05-01T08:00:00+00:00",
            predictions=[
                {"nombre": "Paleta Fresa", "cantidad": 10, "confianza": 80},
                {"nombre": "Chicle Menta", "cantidad": 4, "confianza": 80},
            ],
            recommendations=[
                {"nombre": "Paleta Fresa", "cantidad_sugerida": 12, "confianza": 85},
                {"nombre": "Chicle Menta", "cantidad_sugerida": 2, "confianza": 75},
            ],
        )
    )


def test_stock_lookup_reports_found_and_missing(stock_store) -> None:
    stock_store.articles = {"PALETA FRESA 12 PZ": 0.0, "Chicle Menta": 25.0}

    response = client.post(
        "/api/v1/stock",
        json={"products": ["Chicle Menta", "Paleta Fresa", "Mazapan"], "date": "2024-05-01"},
    )
    assert response.status_code == 200
    payload = response.json()

    assert payload["missing"] == ["Mazapan"]
    assert payload["found"]["Chicle Menta"]["quantity"] == 25.0
    assert payload["found"]["Chicle Menta"]["available"] is True
    assert payload["found"]["Paleta Fresa"]["article"] == "PALETA FRESA 12 PZ"
    assert payload["found"]["Paleta Fresa"]["available"] is False
    assert stock_store.requests[0][1].isoformat() == "2024-05-01"


def test_stock_lookup_validation_and_outage(monkeypatch) -> None:
    assert client.post("/api/v1/stock", json={"products": []}).status_code == 422

    monkeypatch.setattr("backend.app.api.v1.stock._stock_store", BrokenStockStore())
    response = client.post("/api/v1/stock", json={"products": ["Chicle Menta"]})
    assert response.status_code == 503
    assert response.json()["detail"]["error"] == "stock_unavailable"


def test_branch_reconciliation_attaches_stock(history_store, stock_store, config_dir) -> None:
    _store_snapshot(history_store)
    stock_store.articles = {"chicle menta": 9.0}

    payload = client.get("/api/v1/branches/CENTRO/reconciliation").json()
    by_name = {item["name"]: item for item in payload["items"]}
    assert by_name["Chicle Menta"]["warehouse_stock"] == 9.0
    assert by_name["Paleta Fresa"]["warehouse_stock"] is None
    assert stock_store.requests[0][1] == "2024-05-01"

    without = client.get(
        "/api/v1/branches/CENTRO/reconciliation", params={"include_stock": "false"}
    ).json()
    assert all(item["warehouse_stock"] is None for item in without["items"])


def test_branch_reconciliation_survives_stock_outage(
    monkeypatch, history_store, config_dir
) -> None:
    _store_snapshot(history_store)
    monkeypatch.setattr("backend.app.api.v1.reconciliation._stock_store", BrokenStockStore())

    response = client.get("/api/v1/branches/CENTRO/reconciliation")
    assert response.status_code == 200
    assert [item["warehouse_stock"] for item in response.json()["items"]] == [None, None]
