import logging
from pathlib import Path
from typing import Dict, List, Optional

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns
from matplotlib.figure import Figure

from fastml.utils.exceptions import ConfigurationError
from fastml.utils import constants
from .base_plotter import BasePlotter, PlotTask

MAX_PANELS = 12
MAX_LEVELS = 20


class ExplorationPlotter(BasePlotter):
    """
    Generates the fastexplore() plot suite for a raw DataFrame.
    """

    def plot(self, df: pd.DataFrame, label: Optional[str] = None, plots: Optional[List[str]] = None,
             output_dir: Optional[Path] = None) -> Dict[str, Figure]:
        plots = constants.EXPLORE_PLOTS if plots is None else list(plots)
        unknown = [p for p in plots if p not in constants.EXPLORE_PLOTS]
        if unknown:
            raise ConfigurationError(f"Unknown plot(s) {unknown}. Available: {constants.EXPLORE_PLOTS}")

        numeric = [c for c in df.select_dtypes(include=np.number).columns if c != label]
        categorical = [c for c in df.columns if c not in numeric and c != label]

        tasks: List[PlotTask] = []
        for kind in plots:
            if kind in ('histogram', 'boxplot', 'heatmap', 'scatterplot') and not numeric:
                self.logger.warning(f"Plot '{kind}' needs numeric columns; skipping.")
                continue
            if kind == 'heatmap' and len(numeric) < 2:
                self.logger.warning("Plot 'heatmap' needs at least two numeric columns; skipping.")
                continue
            if kind == 'barplot' and not categorical and (label is None or label not in df.columns):
                self.logger.warning("Plot 'barplot' needs categorical columns; skipping.")
                continue
            if kind == 'missing' and not df.isna().any().any():
                self.logger.info("No missing values; skipping 'missing' plot.")
                continue
            tasks.append((kind, self._task_for(kind, df, label, numeric, categorical)))

        return self._run_tasks(tasks, output_dir)

    def _task_for(self, kind, df, label, numeric, categorical):
        return {
            'histogram': lambda: self.plot_histograms(df, numeric[:MAX_PANELS]),
            'boxplot': lambda: self.plot_boxplots(df, numeric[:MAX_PANELS], label),
            'barplot': lambda: self.plot_barplots(df, categorical, label),
            'heatmap': lambda: self.plot_correlation_heatmap(df[numeric]),
            'scatterplot': lambda: self.plot_scatter(df, numeric, label),
            'missing': lambda: self.plot_missing(df),
        }[kind]

    def plot_histograms(self, df: pd.DataFrame, columns: List[str]) -> Figure:
        fig, axes = self._grid(len(columns))
        for ax, col in zip(axes, columns):
            sns.histplot(df[col].dropna(), kde=True, ax=ax, color='#1f77b4')
            ax.set_title(col)
            ax.set_xlabel("")
        fig.suptitle("Numeric distributions")
        fig.tight_layout()
        return fig

    def plot_boxplots(self, df: pd.DataFrame, columns: List[str], label: Optional[str]) -> Figure:
        by_label = label is not None and label in df.columns and df[label].nunique() <= MAX_LEVELS \
            and not pd.api.types.is_float_dtype(df[label])
        fig, axes = self._grid(len(columns))
        for ax, col in zip(axes, columns):
            if by_label:
                sns.boxplot(x=df[label].astype(str), y=df[col], ax=ax)
                ax.set_xlabel(label)
            else:
                sns.boxplot(y=df[col], ax=ax)
            ax.set_title(col)
        fig.suptitle(f"Box plots{' by ' + label if by_label else ''}")
        fig.tight_layout()
        return fig

    def plot_barplots(self, df: pd.DataFrame, columns: List[str], label: Optional[str]) -> Figure:
        columns = list(columns)
        if label is not None and label in df.columns and label not in columns \
                and (not pd.api.types.is_numeric_dtype(df[label]) or df[label].nunique() <= MAX_LEVELS):
            columns = [label] + columns
        columns = columns[:MAX_PANELS]
        fig, axes = self._grid(len(columns))
        for ax, col in zip(axes, columns):
            counts = df[col].astype(str).value_counts().head(MAX_LEVELS)
            sns.barplot(x=counts.values, y=counts.index, ax=ax, color='#2ca02c')
            ax.set_title(col if col != label else f"{col} (label)")
            ax.set_xlabel("count")
        fig.suptitle("Level frequencies")
        fig.tight_layout()
        return fig

    def plot_correlation_heatmap(self, numeric_df: pd.DataFrame) -> Figure:
        corr = numeric_df.corr()
        size = max(6, 0.5 * len(corr) + 3)
        fig, ax = plt.subplots(figsize=(size, size * 0.85))
        mask = np.triu(np.ones_like(corr, dtype=bool), k=1)
        sns.heatmap(corr, mask=mask, annot=len(corr) <= 15, fmt=".2f", cmap="coolwarm",
                    vmin=-1, vmax=1, square=True, ax=ax)
        ax.set_title("Pearson correlation")
        fig.tight_layout()
        return fig

    def plot_scatter(self, df: pd.DataFrame, numeric: List[str], label: Optional[str]) -> Figure:
        has_label = label is not None and label in df.columns
        if has_label and pd.api.types.is_numeric_dtype(df[label]) and df[label].nunique() > MAX_LEVELS:
            columns = numeric[:MAX_PANELS]
            fig, axes = self._grid(len(columns))
            for ax, col in zip(axes, columns):
                sns.scatterplot(x=df[col], y=df[label], ax=ax, s=12, alpha=0.6)
                ax.set_title(f"{label} vs {col}")
            fig.tight_layout()
            return fig

        # Pairwise view of the highest-variance numeric columns, colored by a categorical label
        top = df[numeric].var().sort_values(ascending=False).index[:4].tolist()
        frame = df[top].copy()
        hue = None
        if has_label:
            frame[label] = df[label].astype(str)
            hue = label
        grid = sns.pairplot(frame, hue=hue, corner=True, plot_kws={'s': 12, 'alpha': 0.6})
        grid.figure.suptitle("Pairwise scatter plots", y=1.02)
        return grid.figure

    def plot_missing(self, df: pd.DataFrame) -> Figure:
        missing_pct = df.isna().mean().mul(100)
        missing_pct = missing_pct[missing_pct > 0].sort_values(ascending=False)
        fig, axes = plt.subplots(1, 2, figsize=(14, max(4, 0.35 * len(df.columns) + 2)))
        sns.heatmap(df.isna().T.astype(int), cbar=False, cmap=['#f0f0f0', '#d62728'], ax=axes[0], xticklabels=False)
        axes[0].set_title("Missing cells (red) by row")
        sns.barplot(x=missing_pct.values, y=missing_pct.index, ax=axes[1], color='#d62728')
        axes[1].set_xlabel("% missing")
        axes[1].set_title("Missing values per column")
        fig.tight_layout()
        return fig
