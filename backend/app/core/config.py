"""
Application configuration utilities.

This module defines the ``Settings`` class used throughout the service for
environment variables and provides helper functions to load the YAML file
holding the reconciliation rules and branch display names.
"""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Any, Dict

import yaml
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_RULES: Dict[str, Any] = {
    "malformed_item_policy": "skip",
    "predicted_duplicate_policy": "last",
    "match_names_case_insensitive": False,
    "default_top_n": 100,
    "branch_display_names": {},
}


class Settings(BaseSettings):
    """Configuration loaded from environment variables or a .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # API server configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # External prediction service
    prediction_api_url: str = "https://rotosaurio-candymodel.hf.space"
    prediction_api_timeout: float = 30.0
    prediction_api_max_retries: int = 3

    # Document store holding prediction history and order feedback
    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_db: str = "inventory_predictions"

    config_dir: str = "configs"


@lru_cache(maxsize=None)
def get_settings() -> Settings:
    """Return a cached instance of ``Settings``.

    Using a cache ensures that environment variables are only read once.
    """
    return Settings()


def load_yaml(file_path: str) -> dict:
    """Load a YAML file from the given path and return its contents.

    If the file does not exist, an empty dictionary is returned.
    """
    if not os.path.exists(file_path):
        return {}
    with open(file_path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def load_rules(config_root: str | None = None) -> Dict[str, Any]:
    """Return ``settings.yaml`` merged over :data:`DEFAULT_RULES`."""

    root = config_root or get_settings().config_dir
    loaded = load_yaml(os.path.join(root, "settings.yaml"))
    rules = dict(DEFAULT_RULES)
    if isinstance(loaded, dict):
        rules.update({key: value for key, value in loaded.items() if value is not None})
    return rules
