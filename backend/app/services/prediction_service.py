r"""backend/app/services/prediction_service.py

Client for the externally hosted prediction model.

The model exposes a small JSON API (status, branch list, daily prediction and
recommendations).  Routes depend on the :class:`PredictionService` interface
so tests can substitute a stub and the reconciler never sees transport
details.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date as date_type
from datetime import datetime
from typing import Any, Dict, List, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..core.config import Settings, get_settings
from ..core.errors import PredictionServiceError
from ..models.schemas import ServiceStatus

LOGGER = logging.getLogger(__name__)

RETRY_STATUSES = (429, 500, 502, 503, 504)


@dataclass(frozen=True)
class PredictionBundle:
    """Raw prediction items plus any recommendations returned alongside them."""

    predictions: List[Dict[str, Any]] = field(default_factory=list)
    recommendations: List[Dict[str, Any]] = field(default_factory=list)


def format_upstream_date(value: date_type | str | None) -> Optional[str]:
    """Convert an ISO date (``YYYY-MM-DD``) to the ``DD/MM/YYYY`` the model expects."""

    if value is None or value == "":
        return None
    if isinstance(value, str):
        try:
            value = datetime.strptime(value, "%Y-%m-%d").date()
        except ValueError:
            # Already in upstream format (or something the model can parse itself)
            return value
    return value.strftime("%d/%m/%Y")


class PredictionService(ABC):
    """Narrow interface over the prediction model."""

    @abstractmethod
    def status(self) -> ServiceStatus:
        ...

    @abstractmethod
    def branches(self) -> List[str]:
        ...

    @abstractmethod
    def predict(self, branch: str, date: date_type | str, top_n: int = 100) -> PredictionBundle:
        ...

    @abstractmethod
    def recommend(
        self,
        branch: str,
        date: date_type | str | None = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        ...


class HttpPredictionService(PredictionService):
    """:class:`PredictionService` backed by the model's HTTP API."""

    def __init__(
        self,
        base_url: str | None = None,
        *,
        timeout: float | None = None,
        max_retries: int | None = None,
        session: requests.Session | None = None,
        settings: Settings | None = None,
    ) -> None:
        settings = settings or get_settings()
        self.base_url = (base_url or settings.prediction_api_url).rstrip("/")
        self.timeout = float(timeout if timeout is not None else settings.prediction_api_timeout)
        retries = int(max_retries if max_retries is not None else settings.prediction_api_max_retries)
        self._session = session or self._build_session(retries)

    @staticmethod
    def _build_session(max_retries: int) -> requests.Session:
        retry = Retry(
            total=max_retries,
            backoff_factor=1.5,
            status_forcelist=RETRY_STATUSES,
            allowed_methods=frozenset({"GET", "POST"}),
            raise_on_status=False,
        )
        session = requests.Session()
        adapter = HTTPAdapter(max_retries=retry)
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        session.headers.update({"Content-Type": "application/json"})
        return session

    # ------------------------------------------------------------------
    def _url(self, endpoint: str) -> str:
        return f"{self.base_url}/api/{endpoint.lstrip('/')}"

    def _request(self, method: str, endpoint: str, payload: Dict[str, Any] | None = None) -> Dict[str, Any]:
        url = self._url(endpoint)
        LOGGER.info("Calling prediction API %s %s", method, url)
        try:
            response = self._session.request(method, url, json=payload, timeout=self.timeout)
        except requests.RequestException as exc:
            LOGGER.warning("Prediction API %s unreachable: %s", endpoint, exc)
            raise PredictionServiceError(f"Prediction API unreachable: {exc}") from exc

        if not response.ok:
            LOGGER.warning(
                "Prediction API %s answered %s: %s", endpoint, response.status_code, response.text[:200]
            )
            raise PredictionServiceError(
                f"Prediction API returned {response.status_code} for {endpoint}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise PredictionServiceError(
                f"Prediction API returned a non-JSON body for {endpoint}",
                status_code=response.status_code,
            ) from exc
        if not isinstance(data, dict):
            raise PredictionServiceError(
                f"Prediction API returned an unexpected payload for {endpoint}",
                status_code=response.status_code,
            )
        return data

    # ------------------------------------------------------------------
    def status(self) -> ServiceStatus:
        """Report whether the model is up; never raises for an offline model."""

        url = self._url("estado")
        try:
            response = self._session.get(url, timeout=self.timeout)
        except requests.RequestException as exc:
            LOGGER.warning("Prediction API status check failed: %s", exc)
            return ServiceStatus(online=False, message=f"Prediction API unreachable: {exc}")

        try:
            data = response.json()
        except ValueError:
            return ServiceStatus(online=False, message="Failed to parse prediction API status")
        if not isinstance(data, dict):
            data = {"raw": data}

        try:
            branch_count = int(data.get("branches") or 0)
        except (TypeError, ValueError):
            branch_count = 0
        online = response.ok or branch_count > 0 or data.get("model_loaded") == "Yes"
        message = "Prediction API is operational" if online else "Prediction API is not operational"
        return ServiceStatus(online=online, message=message, upstream=data)

    def branches(self) -> List[str]:
        data = self._request("GET", "sucursales")
        names: List[str] = []
        for entry in data.get("sucursales") or []:
            if isinstance(entry, str):
                name = entry
            elif isinstance(entry, dict):
                name = entry.get("nombre") or entry.get("name") or entry.get("id")
            else:
                name = None
            if name:
                names.append(str(name))
        return names

    def predict(self, branch: str, date: date_type | str, top_n: int = 100) -> PredictionBundle:
        payload = {
            "fecha": format_upstream_date(date),
            "sucursal": branch,
            "top_n": int(top_n),
            "modo": "avanzado",
            "num_muestras": 15,
            "incluir_recomendaciones": True,
        }
        data = self._request("POST", "predecir", payload)
        predictions = data.get("predicciones") or []
        recommendations = data.get("recomendaciones") or []
        LOGGER.info(
            "Prediction API returned %d predictions and %d recommendations for branch=%s",
            len(predictions),
            len(recommendations),
            branch,
        )
        return PredictionBundle(predictions=list(predictions), recommendations=list(recommendations))

    def recommend(
        self,
        branch: str,
        date: date_type | str | None = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        payload: Dict[str, Any] = {"sucursal": branch}
        upstream_date = format_upstream_date(date)
        if upstream_date:
            payload["fecha"] = upstream_date
        if limit:
            payload["top_n"] = int(limit)
        data = self._request("POST", "recomendaciones", payload)
        return list(data.get("recomendaciones") or [])
