r"""frontend/utils/tables.py

Rendering shared by the comparison and history pages."""

from __future__ import annotations

from typing import Any, Dict

import altair as alt
import pandas as pd
import streamlit as st

LEVEL_ICONS = {5: "⭐⭐⭐⭐⭐", 4: "⭐⭐⭐⭐", 3: "⭐⭐⭐", 2: "⭐⭐", 1: "⭐"}
REASON_LABELS = {
    "in_stock_at_store": "In stock at store",
    "unavailable_at_warehouse": "Unavailable at warehouse",
    "other": "Other",
}
CONFIDENCE_LABELS = {
    "very_high": "Very high",
    "high": "High",
    "medium": "Medium",
    "low": "Low",
    "very_low": "Very low",
}

_COLUMNS = {
    "name": "Product",
    "predicted_quantity": "Predicted",
    "suggested_quantity": "Recommended",
    "difference_abs": "Difference",
    "difference_pct": "Difference %",
    "average_quantity": "Average",
    "prediction_confidence": "Prediction conf. %",
    "recommendation_confidence": "Recommendation conf. %",
    "level": "Level",
    "confidence_label": "Confidence",
    "category": "Type",
    "warehouse_stock": "Warehouse stock",
    "ordered": "Ordered",
    "not_ordered_reason": "Reason not ordered",
}


def items_frame(result: Dict[str, Any]) -> pd.DataFrame:
    """Return the reconciled items as a DataFrame in backend order."""

    df = pd.DataFrame(result.get("items") or [])
    if df.empty:
        return df
    df["level"] = df["recommendation_level"].map(LEVEL_ICONS)
    if "confidence_label" in df.columns:
        df["confidence_label"] = df["confidence_label"].map(CONFIDENCE_LABELS)
    if "not_ordered_reason" in df.columns:
        df["not_ordered_reason"] = df["not_ordered_reason"].map(REASON_LABELS)
    return df


def render_summary(result: Dict[str, Any]) -> None:
    summary = result.get("summary") or {}
    c1, c2, c3, c4 = st.columns(4)
    c1.metric("Matched products", summary.get("matched_count", 0))
    c2.metric("Predicted / recommended", f"{summary.get('predicted_count', 0)} / {summary.get('recommended_count', 0)}")
    c3.metric("Raise / lower / same", f"{summary.get('increase_count', 0)} / {summary.get('decrease_count', 0)} / {summary.get('unchanged_count', 0)}")
    c4.metric("Mean |difference|", f"{summary.get('mean_abs_difference_pct', 0.0):.1f}%")
    skipped = summary.get("skipped_count", 0)
    if skipped:
        st.caption(f"{skipped} malformed item(s) were skipped.")


def render_reconciliation(result: Dict[str, Any], key: str) -> None:
    """Render the summary panel, table, chart and CSV export for a result."""

    title = result.get("display_name") or result.get("branch") or "Ad-hoc comparison"
    st.subheader(f"{title} · {result.get('date') or ''}")
    render_summary(result)

    df = items_frame(result)
    if df.empty:
        st.info("No product appears in both the prediction and the recommendation.")
        return

    shown = [column for column in _COLUMNS if column in df.columns]
    st.dataframe(
        df[shown].rename(columns=_COLUMNS),
        use_container_width=True,
        hide_index=True,
    )

    chart = (
        alt.Chart(df[["name", "predicted_quantity", "suggested_quantity", "difference_pct"]])
        .mark_bar()
        .encode(
            x=alt.X("difference_pct:Q", title="Difference %"),
            y=alt.Y("name:N", sort=None, title="Product"),
            color=alt.condition(
                alt.datum.difference_pct >= 0, alt.value("#2e7d32"), alt.value("#c62828")
            ),
            tooltip=["name", "predicted_quantity", "suggested_quantity", "difference_pct"],
        )
        .properties(height=max(200, 18 * len(df)))
    )
    st.altair_chart(chart, use_container_width=True)

    branch = result.get("branch") or "adhoc"
    st.download_button(
        "Download CSV",
        df[shown].to_csv(index=False).encode("utf-8"),
        file_name=f"reconciliation_{branch}_{result.get('date') or 'latest'}.csv",
        mime="text/csv",
        key=f"download::{key}",
    )
