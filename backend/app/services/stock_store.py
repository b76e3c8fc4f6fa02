r"""backend/app/services/stock_store.py

Read-only lookup of warehouse (CEDIS) stock.

The current inventory lives in ``inventariocedis`` with one document per
article (``articulo``, ``existencia``).  Earlier uploads are kept in their own
collections, listed in ``inventariocedis_metadata`` with the upload
``timestamp`` and ``collectionName``; a lookup for a date reads the upload
closest to it.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from datetime import date as date_type
from datetime import datetime, time, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from pymongo import ASCENDING
from pymongo.errors import PyMongoError

from ..core.errors import StockStoreError
from ..models.schemas import StockLevel, finite_number
from .history_store import MongoConnection

LOGGER = logging.getLogger(__name__)

INVENTORY_COLLECTION = "inventariocedis"
METADATA_COLLECTION = "inventariocedis_metadata"


def _normalize(name: str) -> str:
    return " ".join(name.split()).casefold()


def _as_utc(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, date_type):
        moment = datetime.combine(value, time.min)
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            moment = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


def closest_collection(metadata: Iterable[Mapping[str, Any]], target: Any) -> Optional[str]:
    """Pick the inventory collection uploaded closest to ``target``.

    ``metadata`` must be in ascending ``timestamp`` order.  The scan stops at
    the first upload later than ``target``.  Returns ``None`` when nothing
    usable is listed.
    """

    target_time = _as_utc(target)
    if target_time is None:
        return None

    closest: Optional[Mapping[str, Any]] = None
    min_diff: Optional[float] = None
    for record in metadata:
        stamp = _as_utc(record.get("timestamp"))
        if stamp is None:
            continue
        diff = abs((stamp - target_time).total_seconds())
        if min_diff is None or diff < min_diff:
            closest, min_diff = record, diff
        if stamp > target_time:
            break
    if closest is None:
        return None
    return closest.get("collectionName") or None


def match_article(product: str, articles: Sequence[str]) -> Optional[str]:
    """Return the inventory article that best names ``product``.

    Tried in order: same name ignoring case, same name once whitespace is
    collapsed, then either name containing the other.
    """

    wanted = product.strip().casefold()
    for article in articles:
        if article.strip().casefold() == wanted:
            return article

    wanted = _normalize(product)
    for article in articles:
        if _normalize(article) == wanted:
            return article

    for article in articles:
        candidate = _normalize(article)
        if candidate and (wanted in candidate or candidate in wanted):
            return article
    return None


class StockStore(ABC):
    """Narrow interface over the warehouse inventory."""

    @abstractmethod
    def lookup(self, products: Sequence[str], date: Any = None) -> Dict[str, StockLevel]:
        """Return stock for the products that were found, keyed by product name."""


class MongoStockStore(MongoConnection, StockStore):
    """:class:`StockStore` reading the inventory collections in MongoDB."""

    def _collection_for(self, date: Any) -> str:
        if date is None:
            return INVENTORY_COLLECTION
        metadata = self._collection(METADATA_COLLECTION).find().sort("timestamp", ASCENDING)
        name = closest_collection(metadata, date)
        if name is None:
            LOGGER.info("No inventory upload listed for %s; using current inventory", date)
            return INVENTORY_COLLECTION
        return name

    def lookup(self, products: Sequence[str], date: Any = None) -> Dict[str, StockLevel]:
        wanted = [name for name in dict.fromkeys(products) if name and name.strip()]
        if not wanted:
            return {}
        query = {
            "$or": [
                {"articulo": {"$regex": re.escape(" ".join(name.split())), "$options": "i"}}
                for name in wanted
            ]
        }
        try:
            collection_name = self._collection_for(date)
            documents = list(self._collection(collection_name).find(query))
        except PyMongoError as exc:
            raise StockStoreError(f"Unable to read warehouse inventory: {exc}") from exc

        by_article: Dict[str, Dict[str, Any]] = {}
        for doc in documents:
            article = doc.get("articulo")
            if isinstance(article, str) and article not in by_article:
                by_article[article] = doc
        articles: List[str] = list(by_article)

        levels: Dict[str, StockLevel] = {}
        for product in wanted:
            article = match_article(product, articles)
            if article is None:
                continue
            quantity = finite_number(by_article[article].get("existencia")) or 0.0
            levels[product] = StockLevel(
                product=product,
                article=article,
                quantity=quantity,
                available=quantity > 0,
                collection=collection_name,
            )
        LOGGER.info(
            "Stock lookup in %s: requested=%d found=%d", collection_name, len(wanted), len(levels)
        )
        return levels


def stock_or_empty(
    store: StockStore, products: Sequence[str], date: Any = None
) -> Dict[str, StockLevel]:
    """Like ``store.lookup`` but an unreadable inventory yields no stock at all."""

    try:
        return store.lookup(products, date)
    except StockStoreError as exc:
        LOGGER.warning("Warehouse stock not attached: %s", exc)
        return {}
