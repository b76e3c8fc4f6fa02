r"""frontend/pages/2_History.py

Browse stored predictions and reconcile any of them again."""

from __future__ import annotations

from typing import Any, Dict, List

import pandas as pd
import requests
import streamlit as st

from utils.api import API_URL, error_detail, get_headers
from utils.state import HistoryState, page_state
from utils.tables import render_reconciliation

state = page_state("history_state", HistoryState)


def _fetch_history(branch: str, limit: int) -> List[Dict[str, Any]]:
    params: Dict[str, Any] = {"limit": limit}
    if branch:
        params["branch"] = branch
    response = requests.get(f"{API_URL}/history", params=params, headers=get_headers(), timeout=30)
    response.raise_for_status()
    history = (response.json() or {}).get("history", [])
    return history if isinstance(history, list) else []


st.title("🗂️ Prediction History")
st.caption("Every prediction run is stored; pick one to see its comparison again.")

with st.form("history_form"):
    branch = st.text_input("Branch (blank for all)", value=state.branch or "")
    limit = st.slider("Entries", min_value=5, max_value=200, value=50, step=5)
    load = st.form_submit_button("Load history")

if load:
    state.branch = branch.strip()
    state.result = None
    try:
        with st.spinner("Loading history…"):
            state.snapshots = _fetch_history(state.branch, int(limit))
    except requests.Timeout:
        st.error("History request timed out. Please retry shortly.")
        state.snapshots = []
    except requests.RequestException as exc:
        st.error(f"Failed to fetch history: {error_detail(exc)}")
        state.snapshots = []

if not state.snapshots:
    st.info("No stored predictions loaded.")
else:
    df = pd.DataFrame(state.snapshots)
    df["predictions"] = df["predictions"].map(len)
    df["recommendations"] = df["recommendations"].map(len)
    columns = [c for c in ("timestamp", "branch", "date", "predictions", "recommendations", "source") if c in df.columns]
    st.dataframe(df[columns], use_container_width=True, hide_index=True)

    options = [(s["branch"], s["timestamp"]) for s in state.snapshots]
    selected = st.selectbox(
        "Snapshot",
        options,
        format_func=lambda option: f"{option[0]} · {option[1]}",
    )
    if st.button("Reconcile selected"):
        selected_branch, timestamp = selected
        state.selected_timestamp = timestamp
        try:
            response = requests.get(
                f"{API_URL}/branches/{selected_branch}/reconciliation",
                params={"timestamp": timestamp},
                headers=get_headers(),
                timeout=30,
            )
            response.raise_for_status()
        except requests.RequestException as exc:
            st.error(f"Failed to reconcile snapshot: {error_detail(exc)}")
            state.result = None
        else:
            state.result = response.json()

if state.result:
    render_reconciliation(state.result, key=f"history::{state.selected_timestamp}")
