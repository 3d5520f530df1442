"""
Lightweight Plotly HTML dashboard for interactive exploration of a dataset.

Inputs:
- raw DataFrame, optionally with a label column

Outputs:
- Single self-contained HTML file with interactive plots (hover/zoom/filter via built-in controls).
"""

from pathlib import Path
from typing import Optional

import numpy as np
import pandas as pd
import plotly.graph_objects as go
from plotly.subplots import make_subplots


def build_dashboard(
    df: pd.DataFrame,
    output_path: Path,
    *,
    label: Optional[str] = None,
    title: str = "Interactive Data Exploration Dashboard",
) -> Path:
    """
    Create a static HTML dashboard (no server required) for quick interactive review.

    Sections:
    - Label distribution (or first numeric column when no label is given)
    - Missing values per column
    - Correlation heatmap of numeric columns
    - Overlaid numeric histograms (toggle via legend)
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    if df.empty:
        fig = go.Figure()
        fig.add_annotation(
            text="No data available for visualization",
            xref="paper",
            yref="paper",
            x=0.5,
            y=0.5,
            showarrow=False,
            font=dict(size=20, color="red"),
        )
        fig.update_layout(title=title, template="plotly_white", height=400, showlegend=False)
        fig.write_html(str(output_path), include_plotlyjs="cdn", full_html=True)
        return output_path

    numeric = [c for c in df.select_dtypes(include=np.number).columns if c != label]
    target = label if label is not None and label in df.columns else (numeric[0] if numeric else df.columns[0])

    fig = make_subplots(
        rows=2,
        cols=2,
        subplot_titles=(
            f"Distribution of {target}",
            "Missing values (%)",
            "Correlation heatmap",
            "Numeric histograms",
        ),
    )

    # Label distribution
    if pd.api.types.is_numeric_dtype(df[target]) and df[target].nunique() > 20:
        fig.add_trace(go.Histogram(x=df[target], nbinsx=40, marker=dict(color="#1f77b4"), name=str(target)),
                      row=1, col=1)
    else:
        counts = df[target].astype(str).value_counts()
        fig.add_trace(go.Bar(x=counts.index, y=counts.values, marker=dict(color="#1f77b4"), name=str(target)),
                      row=1, col=1)

    # Missing values
    missing = df.isna().mean().mul(100).sort_values(ascending=False)
    fig.add_trace(go.Bar(x=missing.index.astype(str), y=missing.values, marker=dict(color="firebrick"),
                         name="% missing"), row=1, col=2)

    # Correlation heatmap
    if len(numeric) >= 2:
        corr = df[numeric].corr()
        fig.add_trace(go.Heatmap(z=corr.values, x=corr.columns.astype(str), y=corr.index.astype(str),
                                 colorscale="RdBu", zmin=-1, zmax=1, name="correlation"), row=2, col=1)

    # Histograms
    for col in numeric[:10]:
        fig.add_trace(go.Histogram(x=df[col], name=str(col), opacity=0.6, nbinsx=40), row=2, col=2)

    fig.update_layout(
        title=title,
        height=900,
        template="plotly_white",
        barmode="overlay",
        showlegend=True,
    )

    fig.write_html(str(output_path), include_plotlyjs="cdn", full_html=True)
    return output_path
