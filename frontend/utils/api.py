r"""frontend\utils\api.py"""

import os
from typing import Any, Dict, Optional

import requests
import streamlit as st

API_URL = os.getenv("API_URL", "http://localhost:8000/api/v1")


def get_api_token() -> str:
    """Return the API token from session state or the environment."""

    return (st.session_state.get("api_token") or os.getenv("API_TOKEN", "")).strip()


def get_headers(token: Optional[str] = None) -> dict:
    """Return default headers for API requests.

    If an API token is present in Streamlit's session state or the
    ``API_TOKEN`` environment variable, include it as a bearer token in the
    ``Authorization`` header.
    """

    resolved_token = token.strip() if isinstance(token, str) else get_api_token()
    return {"Authorization": f"Bearer {resolved_token}"} if resolved_token else {}


def error_detail(exc: requests.RequestException) -> str:
    """Extract the backend's error message from a failed request."""

    response = getattr(exc, "response", None)
    if response is None:
        return str(exc)
    try:
        detail: Any = response.json().get("detail")
    except ValueError:
        return response.text or str(exc)
    if isinstance(detail, dict):
        return str(detail.get("message") or detail.get("error") or detail)
    return str(detail or exc)


@st.cache_data(ttl=300)
def fetch_branches(api_token: str = "") -> list:
    """Return ``[{"branch", "display_name"}]`` from the backend, empty on failure."""

    try:
        response = requests.get(f"{API_URL}/branches", headers=get_headers(api_token), timeout=30)
        response.raise_for_status()
    except requests.RequestException:
        return []
    payload = response.json()
    return payload if isinstance(payload, list) else []


def branch_label(entry: Dict[str, Any]) -> str:
    name = entry.get("branch", "")
    shown = entry.get("display_name") or name
    return shown if shown == name else f"{shown} ({name})"
