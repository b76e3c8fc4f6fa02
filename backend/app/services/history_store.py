r"""backend/app/services/history_store.py

Persistence for prediction snapshots and order feedback.

Snapshots live in the ``predictions_history`` collection and feedback in
``feedback``.  Older documents were written with Spanish keys (``sucursal``,
``fecha``, ``predicciones``, ``recomendaciones``); they are normalised on
read so callers only ever see :class:`PredictionSnapshot` objects.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pymongo import DESCENDING, MongoClient
from pymongo.errors import PyMongoError

from ..core.config import Settings, get_settings
from ..core.errors import HistoryStoreError
from ..models.schemas import OrderFeedback, PredictionSnapshot

LOGGER = logging.getLogger(__name__)

HISTORY_COLLECTION = "predictions_history"
FEEDBACK_COLLECTION = "feedback"


def _branch_filter(branch: str) -> Dict[str, Any]:
    pattern = {"$regex": f"^{re.escape(branch.strip())}$", "$options": "i"}
    return {"$or": [{"branch": pattern}, {"sucursal": pattern}]}


def normalize_snapshot(document: Dict[str, Any]) -> PredictionSnapshot:
    """Build a snapshot from a stored document, tolerating legacy field names."""

    timestamp = document.get("timestamp")
    if isinstance(timestamp, datetime):
        timestamp = timestamp.isoformat()
    timestamp = str(timestamp or "")

    snapshot_date = document.get("date") or document.get("fecha")
    if not snapshot_date and timestamp:
        snapshot_date = timestamp[:10]

    raw_id = document.get("_id", document.get("id"))
    return PredictionSnapshot(
        id=str(raw_id) if raw_id is not None else None,
        branch=document.get("branch") or document.get("sucursal") or "unknown",
        date=str(snapshot_date or ""),
        timestamp=timestamp,
        predictions=list(document.get("predictions") or document.get("predicciones") or []),
        recommendations=list(
            document.get("recommendations") or document.get("recomendaciones") or []
        ),
        source=document.get("source") or "api",
    )


class HistoryStore(ABC):
    """Narrow interface over the history database."""

    @abstractmethod
    def save_snapshot(self, snapshot: PredictionSnapshot) -> str:
        ...

    @abstractmethod
    def latest_snapshot(
        self, branch: str, timestamp: Optional[str] = None
    ) -> Optional[PredictionSnapshot]:
        ...

    @abstractmethod
    def list_snapshots(
        self, branch: Optional[str] = None, limit: int = 50
    ) -> List[PredictionSnapshot]:
        ...

    @abstractmethod
    def save_feedback(self, feedback: OrderFeedback) -> bool:
        ...

    @abstractmethod
    def list_feedback(self, branch: Optional[str] = None) -> List[OrderFeedback]:
        ...


class MongoConnection:
    """Lazily opened handle on one MongoDB database.

    ``MongoClient`` is only created on first use, so URI and connection errors
    surface as ``PyMongoError`` from inside the store methods.
    """

    def __init__(
        self,
        uri: str | None = None,
        db_name: str | None = None,
        *,
        database: Any = None,
        settings: Settings | None = None,
    ) -> None:
        settings = settings or get_settings()
        self.uri = uri or settings.mongodb_uri
        self.db_name = db_name or settings.mongodb_db
        self._client: Optional[MongoClient] = None
        self._db = database

    # ------------------------------------------------------------------
    def _database(self) -> Any:
        if self._db is None:
            LOGGER.info("Opening MongoDB connection to database %s", self.db_name)
            self._client = MongoClient(self.uri, serverSelectionTimeoutMS=5000)
            self._db = self._client[self.db_name]
        return self._db

    def _collection(self, name: str) -> Any:
        return self._database()[name]

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
            self._db = None


class MongoHistoryStore(MongoConnection, HistoryStore):
    """:class:`HistoryStore` backed by MongoDB."""

    # ------------------------------------------------------------------
    def save_snapshot(self, snapshot: PredictionSnapshot) -> str:
        document = snapshot.model_dump(exclude={"id"})
        try:
            result = self._collection(HISTORY_COLLECTION).insert_one(document)
        except PyMongoError as exc:
            LOGGER.exception("Failed to store snapshot for branch=%s", snapshot.branch)
            raise HistoryStoreError(f"Unable to store snapshot: {exc}") from exc
        inserted_id = str(result.inserted_id)
        LOGGER.info(
            "Stored snapshot %s for branch=%s date=%s", inserted_id, snapshot.branch, snapshot.date
        )
        return inserted_id

    def latest_snapshot(
        self, branch: str, timestamp: Optional[str] = None
    ) -> Optional[PredictionSnapshot]:
        query = _branch_filter(branch)
        try:
            collection = self._collection(HISTORY_COLLECTION)
            if timestamp:
                exact = list(
                    collection.find({**query, "timestamp": timestamp})
                    .sort("timestamp", DESCENDING)
                    .limit(1)
                )
                if exact:
                    return normalize_snapshot(exact[0])
                LOGGER.info(
                    "No snapshot for branch=%s at %s; falling back to the latest", branch, timestamp
                )
            documents = list(collection.find(query).sort("timestamp", DESCENDING).limit(1))
        except PyMongoError as exc:
            raise HistoryStoreError(f"Unable to read history for {branch}: {exc}") from exc
        return normalize_snapshot(documents[0]) if documents else None

    def list_snapshots(
        self, branch: Optional[str] = None, limit: int = 50
    ) -> List[PredictionSnapshot]:
        query = _branch_filter(branch) if branch else {}
        try:
            cursor = self._collection(HISTORY_COLLECTION).find(query).sort("timestamp", DESCENDING)
            if limit > 0:
                cursor = cursor.limit(limit)
            documents = list(cursor)
        except PyMongoError as exc:
            raise HistoryStoreError(f"Unable to list history: {exc}") from exc
        return [normalize_snapshot(doc) for doc in documents]

    def save_feedback(self, feedback: OrderFeedback) -> bool:
        key = {
            "product": feedback.product,
            "branch": feedback.branch,
            "date": feedback.date,
            "prediction_id": feedback.prediction_id,
        }
        document = feedback.model_dump()
        document["recorded_at"] = feedback.recorded_at or datetime.now(timezone.utc)
        try:
            collection = self._collection(FEEDBACK_COLLECTION)
            if collection.find_one(key) is not None:
                LOGGER.info(
                    "Feedback already recorded for product=%s branch=%s date=%s",
                    feedback.product,
                    feedback.branch,
                    feedback.date,
                )
                return False
            collection.insert_one(document)
        except PyMongoError as exc:
            raise HistoryStoreError(f"Unable to store feedback: {exc}") from exc
        return True

    def list_feedback(self, branch: Optional[str] = None) -> List[OrderFeedback]:
        query = _branch_filter(branch) if branch else {}
        try:
            documents = list(self._collection(FEEDBACK_COLLECTION).find(query))
        except PyMongoError as exc:
            raise HistoryStoreError(f"Unable to read feedback: {exc}") from exc

        records: List[OrderFeedback] = []
        for doc in documents:
            doc = {key: value for key, value in doc.items() if key != "_id"}
            try:
                records.append(OrderFeedback.model_validate(doc))
            except ValueError as exc:
                LOGGER.warning("Ignoring unreadable feedback document: %s", exc)
        return records
