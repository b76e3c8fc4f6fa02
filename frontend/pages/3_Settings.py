"""
Settings page for the reconciliation rules.

Values come from the backend's ``configs/settings.yaml`` and are saved back
through ``PUT /configs/settings``.
"""

import requests
import streamlit as st

from utils.api import API_URL, error_detail, get_headers

POLICY_OPTIONS = ["skip", "zero"]
DUPLICATE_OPTIONS = ["last", "first"]

st.title("⚙️ Settings")

try:
    response = requests.get(f"{API_URL}/configs/settings", headers=get_headers(), timeout=10)
    response.raise_for_status()
    settings_data = response.json() or {}
except requests.RequestException as exc:
    st.warning(f"Could not load settings from the backend: {error_detail(exc)}")
    settings_data = {}

st.subheader("Current rules (settings.yaml)")
st.json(settings_data)

st.markdown("---")
st.subheader("Edit & Save")

with st.form("edit_settings"):
    col1, col2 = st.columns(2)
    with col1:
        current_policy = settings_data.get("malformed_item_policy", "skip")
        malformed = st.selectbox(
            "Malformed items",
            POLICY_OPTIONS,
            index=POLICY_OPTIONS.index(current_policy) if current_policy in POLICY_OPTIONS else 0,
            help="skip drops items with a missing or non-numeric quantity; zero treats it as 0.",
        )
        current_dup = settings_data.get("predicted_duplicate_policy", "last")
        duplicates = st.selectbox(
            "Repeated predicted product",
            DUPLICATE_OPTIONS,
            index=DUPLICATE_OPTIONS.index(current_dup) if current_dup in DUPLICATE_OPTIONS else 0,
        )
    with col2:
        case_insensitive = st.checkbox(
            "Match product names ignoring case",
            value=bool(settings_data.get("match_names_case_insensitive", False)),
        )
        top_n = st.number_input(
            "Default products per prediction",
            min_value=1,
            max_value=1000,
            value=int(settings_data.get("default_top_n", 100)),
            step=10,
        )

    st.markdown("**Branch display names**")
    names = settings_data.get("branch_display_names") or {}
    edited = st.data_editor(
        [{"branch": key, "display_name": value} for key, value in names.items()],
        num_rows="dynamic",
        use_container_width=True,
    )

    submitted = st.form_submit_button("Save")
    if submitted:
        payload = {
            "malformed_item_policy": malformed,
            "predicted_duplicate_policy": duplicates,
            "match_names_case_insensitive": case_insensitive,
            "default_top_n": int(top_n),
            "branch_display_names": {
                row["branch"]: row["display_name"]
                for row in edited
                if row.get("branch") and row.get("display_name")
            },
        }
        try:
            saved = requests.put(
                f"{API_URL}/configs/settings",
                json=payload,
                headers=get_headers(),
                timeout=20,
            )
            saved.raise_for_status()
        except requests.RequestException as exc:
            st.error(f"Backend did not accept updates: {error_detail(exc)}")
        else:
            st.success("Saved to backend.")
