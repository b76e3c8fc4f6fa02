r"""frontend/pages/1_Branch_Comparison.py

Compare predicted and recommended quantities for one branch."""

from __future__ import annotations

from datetime import date

import requests
import streamlit as st

from utils.api import API_URL, branch_label, error_detail, fetch_branches, get_api_token, get_headers
from utils.state import ComparisonState, page_state
from utils.tables import render_reconciliation

state = page_state("comparison_state", ComparisonState)

st.title("🏪 Branch Comparison")
st.caption(
    "Products present in both the prediction and the recommendation, largest "
    "relative difference first."
)

branches = fetch_branches(api_token=get_api_token())

with st.form("comparison_form"):
    if branches:
        names = [entry["branch"] for entry in branches]
        labels = {entry["branch"]: branch_label(entry) for entry in branches}
        index = names.index(state.branch) if state.branch in names else 0
        branch = st.selectbox(
            "Branch", names, index=index, format_func=lambda name: labels.get(name, name)
        )
    else:
        st.info("Branch list unavailable; type the branch name instead.")
        branch = st.text_input("Branch", value=state.branch or "")
    selected_date = st.date_input("Date", value=date.today())
    top_n = st.number_input("Products to predict", min_value=1, max_value=1000, value=100, step=10)
    include_stock = st.checkbox("Show warehouse stock", value=True)
    col_run, col_latest = st.columns(2)
    run_prediction = col_run.form_submit_button("▶️ Run prediction")
    load_latest = col_latest.form_submit_button("🕘 Load latest stored")

if run_prediction or load_latest:
    state.branch = branch
    state.date = selected_date.isoformat()
    state.error = None
    try:
        if run_prediction:
            with st.spinner("Requesting prediction from the model… this can take a minute."):
                response = requests.post(
                    f"{API_URL}/predictions",
                    json={
                        "branch": branch,
                        "date": state.date,
                        "top_n": int(top_n),
                        "include_stock": include_stock,
                    },
                    headers=get_headers(),
                    timeout=180,
                )
        else:
            with st.spinner("Loading the latest stored prediction…"):
                response = requests.get(
                    f"{API_URL}/branches/{branch}/reconciliation",
                    params={"include_stock": str(include_stock).lower()},
                    headers=get_headers(),
                    timeout=30,
                )
        response.raise_for_status()
    except requests.Timeout:
        state.result = None
        state.error = "The request timed out. The model may be waking up; retry in a moment."
    except requests.RequestException as exc:
        state.result = None
        state.error = f"API error: {error_detail(exc)}"
    else:
        state.result = response.json()

if state.error:
    st.error(state.error)
elif state.result:
    render_reconciliation(state.result, key="comparison")
    if state.result.get("snapshot_id"):
        st.caption(f"Stored as snapshot `{state.result['snapshot_id']}` at {state.result.get('timestamp')}.")

    products = [item["name"] for item in state.result.get("items", [])]
    if products and state.result.get("branch"):
        with st.expander("Record order feedback", expanded=False):
            with st.form("feedback_form", clear_on_submit=True):
                product = st.selectbox("Product", products)
                ordered = st.radio("Was it ordered?", ["Yes", "No"], horizontal=True) == "Yes"
                reason = st.selectbox(
                    "Reason (if not ordered)",
                    ["in_stock_at_store", "unavailable_at_warehouse", "other"],
                )
                comment = st.text_input("Comment")
                send = st.form_submit_button("Save feedback")
            if send:
                body = {
                    "product": product,
                    "branch": state.result["branch"],
                    "date": state.result.get("date") or state.date,
                    "ordered": ordered,
                    "not_ordered_reason": None if ordered else reason,
                    "comment": comment or None,
                    "prediction_id": state.result.get("snapshot_id"),
                }
                try:
                    resp = requests.post(
                        f"{API_URL}/feedback", json=body, headers=get_headers(), timeout=20
                    )
                    resp.raise_for_status()
                except requests.RequestException as exc:
                    st.error(f"Failed to save feedback: {error_detail(exc)}")
                else:
                    if resp.json().get("created"):
                        st.success(f"Feedback saved for {product}.")
                    else:
                        st.info(f"Feedback for {product} was already recorded.")
