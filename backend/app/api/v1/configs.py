"""API endpoints for reading and updating the reconciliation rules YAML."""

from __future__ import annotations

import os
import shutil
import tempfile
from typing import Any, Dict, Literal, Optional

import yaml
from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, Field

from ...core.config import get_settings

router = APIRouter()

CONFIG_DIR = get_settings().config_dir


def _settings_path() -> str:
    return os.path.join(CONFIG_DIR, "settings.yaml")


def _load_yaml(path: str) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as handle:
        return yaml.safe_load(handle) or {}


def _safe_write_yaml(path: str, payload: Dict[str, Any]) -> None:
    directory = os.path.dirname(path) or "."
    os.makedirs(directory, exist_ok=True)

    fd, tmp_path = tempfile.mkstemp(
        prefix=".tmp-", suffix=".yaml", dir=directory
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            yaml.safe_dump(payload, handle, sort_keys=False, allow_unicode=True)
        shutil.move(tmp_path, path)
    finally:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)


class SettingsUpdate(BaseModel):
    malformed_item_policy: Optional[Literal["skip", "zero"]] = None
    predicted_duplicate_policy: Optional[Literal["last", "first"]] = None
    match_names_case_insensitive: Optional[bool] = None
    default_top_n: Optional[int] = Field(None, ge=1, le=1000)
    branch_display_names: Optional[Dict[str, str]] = None


def _merge_updates(original: Dict[str, Any], updates: Dict[str, Any]) -> Dict[str, Any]:
    result = original.copy()
    result.update({k: v for k, v in updates.items() if v is not None})
    return result


@router.get("/configs/settings")
def get_settings() -> Dict[str, Any]:
    try:
        return _load_yaml(_settings_path())
    except FileNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={
                "error": "not_found",
                "message": "settings.yaml not found",
            },
        ) from exc


@router.put("/configs/settings")
def put_settings(body: SettingsUpdate) -> Dict[str, Any]:
    path = _settings_path()
    try:
        current = _load_yaml(path)
    except FileNotFoundError:
        current = {}

    updated = _merge_updates(current, body.model_dump(exclude_none=True))
    if updated == current:
        return current

    try:
        _safe_write_yaml(path, updated)
    except OSError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "write_failed", "message": str(exc)},
        ) from exc
    return updated
