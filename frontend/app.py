r"""frontend/app.py

Streamlit multipage application for branch reconciliation.

This file configures global options and provides a simple welcome page.
Individual pages live in the ``pages/`` subdirectory; Streamlit will
automatically load them.  To run the app locally use:

```bash
streamlit run app.py
```
"""

import requests
import streamlit as st

from utils.api import API_URL, get_headers

st.set_page_config(page_title="Branch Reconciliation", layout="wide")

st.title("Branch Order Reconciliation")

status = "⚠️ not reachable"

try:
    response = requests.get(f"{API_URL}/health", headers=get_headers(), timeout=5)
except requests.RequestException:
    response = None

if response is not None and response.ok:
    status = "✅ healthy"

st.caption(f"Backend API: {status} · {API_URL}  ·  Set `API_URL` if needed.")

model_status = None
try:
    model_response = requests.get(
        f"{API_URL}/predictions/status", headers=get_headers(), timeout=10
    )
    if model_response.ok:
        model_status = model_response.json()
except requests.RequestException:
    model_status = None

if model_status is not None:
    icon = "🟢" if model_status.get("online") else "🔴"
    st.caption(f"Prediction model: {icon} {model_status.get('message', '')}")

with st.sidebar.expander("Auth", expanded=False):
    default_token = st.session_state.get("api_token") or ""
    token = st.text_input("API token", value=default_token, type="password")
    st.session_state["api_token"] = token

st.markdown(
    """
    Compare what the demand model predicts for each branch with the order
    quantities it recommends.  Use **Branch Comparison** to run a prediction
    or reload the latest stored one, **History** to revisit earlier runs and
    **Settings** to change how malformed or duplicated items are handled.
    The app talks to the FastAPI backend; make sure it is running and that
    `API_URL` points at it (see `.env`).
    """
)
