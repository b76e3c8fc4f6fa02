from __future__ import annotations

import sys
from collections import defaultdict, deque
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import pytest

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

from backend.app.core import observability as obs  # noqa: E402
from backend.app.models.schemas import OrderFeedback, PredictionSnapshot, StockLevel  # noqa: E402
from backend.app.services.history_store import HistoryStore  # noqa: E402
from backend.app.services.stock_store import StockStore, match_article  # noqa: E402

_HISTORY_MODULES = (
    "backend.app.api.v1.predictions",
    "backend.app.api.v1.reconciliation",
    "backend.app.api.v1.history",
    "backend.app.api.v1.feedback",
)
_STOCK_MODULES = (
    "backend.app.api.v1.predictions",
    "backend.app.api.v1.reconciliation",
    "backend.app.api.v1.stock",
)


class InMemoryHistoryStore(HistoryStore):
    def __init__(self) -> None:
        self.snapshots: List[PredictionSnapshot] = []
        self.feedback: List[OrderFeedback] = []

    def save_snapshot(self, snapshot: PredictionSnapshot) -> str:
        snapshot_id = f"snap-{len(self.snapshots) + 1}"
        self.snapshots.append(snapshot.model_copy(update={"id": snapshot_id}))
        return snapshot_id

    def latest_snapshot(
        self, branch: str, timestamp: Optional[str] = None
    ) -> Optional[PredictionSnapshot]:
        matches = [s for s in self.snapshots if s.branch.lower() == branch.lower()]
        if timestamp:
            exact = [s for s in matches if s.timestamp == timestamp]
            if exact:
                return exact[-1]
        matches.sort(key=lambda s: s.timestamp)
        return matches[-1] if matches else None

    def list_snapshots(
        self, branch: Optional[str] = None, limit: int = 50
    ) -> List[PredictionSnapshot]:
        matches = [
            s for s in self.snapshots if branch is None or s.branch.lower() == branch.lower()
        ]
        return sorted(matches, key=lambda s: s.timestamp, reverse=True)[:limit]

    def save_feedback(self, feedback: OrderFeedback) -> bool:
        for existing in self.feedback:
            if (existing.product, existing.branch, existing.date, existing.prediction_id) == (
                feedback.product,
                feedback.branch,
                feedback.date,
                feedback.prediction_id,
            ):
                return False
        self.feedback.append(feedback)
        return True

    def list_feedback(self, branch: Optional[str] = None) -> List[OrderFeedback]:
        return [f for f in self.feedback if branch is None or f.branch.lower() == branch.lower()]


class InMemoryStockStore(StockStore):
    def __init__(self) -> None:
        self.articles: Dict[str, float] = {}
        self.requests: List[tuple] = []

    def lookup(self, products: Sequence[str], date: Any = None) -> Dict[str, StockLevel]:
        self.requests.append((list(products), date))
        levels: Dict[str, StockLevel] = {}
        for product in products:
            article = match_article(product, list(self.articles))
            if article is not None:
                quantity = self.articles[article]
                levels[product] = StockLevel(
                    product=product,
                    article=article,
                    quantity=quantity,
                    available=quantity > 0,
                    collection="inventariocedis",
                )
        return levels


@pytest.fixture(autouse=True)
def _open_middleware(monkeypatch):
    """Disable auth and rate limiting unless a test turns them back on."""

    monkeypatch.setattr(obs.TokenAndRateLimitMiddleware, "_token", None, raising=False)
    monkeypatch.setattr(obs.TokenAndRateLimitMiddleware, "_per_minute", 0, raising=False)
    monkeypatch.setattr(
        obs.TokenAndRateLimitMiddleware, "_buckets", defaultdict(deque), raising=False
    )


@pytest.fixture
def history_store(monkeypatch) -> InMemoryHistoryStore:
    store = InMemoryHistoryStore()
    for module in _HISTORY_MODULES:
        monkeypatch.setattr(f"{module}._history_store", store)
    return store


@pytest.fixture
def config_dir(monkeypatch, tmp_path: Path) -> Path:
    for module in (
        "backend.app.api.v1.predictions",
        "backend.app.api.v1.reconciliation",
        "backend.app.api.v1.configs",
    ):
        monkeypatch.setattr(f"{module}.CONFIG_DIR", str(tmp_path))
    return tmp_path


@pytest.fixture(autouse=True)
def stock_store(monkeypatch) -> InMemoryStockStore:
    """Keep route tests away from a real inventory database."""

    store = InMemoryStockStore()
    for module in _STOCK_MODULES:
        monkeypatch.setattr(f"{module}._stock_store", store)
    return store
