r"""frontend/utils/state.py

Per-page state kept in ``st.session_state`` so widget reruns keep results."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Type, TypeVar

import streamlit as st

StateT = TypeVar("StateT")


@dataclass
class ComparisonState:
    branch: Optional[str] = None
    date: Optional[str] = None
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


@dataclass
class HistoryState:
    branch: Optional[str] = None
    snapshots: List[Dict[str, Any]] = field(default_factory=list)
    selected_timestamp: Optional[str] = None
    result: Optional[Dict[str, Any]] = None


def page_state(key: str, factory: Type[StateT]) -> StateT:
    """Return the state object stored under ``key``, creating it on first use."""

    state = st.session_state.get(key)
    if not isinstance(state, factory):
        state = factory()
        st.session_state[key] = state
    return state
