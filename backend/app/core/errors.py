"""Exceptions raised by the collaborators behind the API routes."""

from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for failures of an external collaborator."""


class PredictionServiceError(ServiceError):
    """The external prediction API could not be reached or answered badly."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class HistoryStoreError(ServiceError):
    """The document store could not read or write history."""


class StockStoreError(ServiceError):
    """The warehouse inventory could not be read."""
