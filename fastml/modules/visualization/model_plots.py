"""
Static diagnostics for a fitted FastMLResult: metric comparison, ROC, confusion
matrices, calibration, residuals and the learning curve.
"""
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns
from matplotlib.figure import Figure
from sklearn.calibration import calibration_curve
from sklearn.metrics import roc_curve

from fastml.utils.exceptions import ConfigurationError
from fastml.utils import constants
from .base_plotter import BasePlotter, PlotTask


class ModelPlotter(BasePlotter):
    """
    Generates the plot() figures for a fitted result.

    Covers:
    1. Metric comparison bars (with bootstrap intervals when available).
    2. ROC curves and calibration curves (classification).
    3. Confusion matrix heatmaps (classification).
    4. Residual diagnostics (regression).
    5. Learning curve of the best model.
    """

    def plot(self, result: Any, type: Union[str, List[str]] = "all",
             output_dir: Optional[Path] = None) -> Dict[str, Figure]:
        """
        Build the requested figures. Inapplicable types are skipped with a warning.

        Returns:
            dict mapping plot name to matplotlib Figure.
        """
        requested = constants.MODEL_PLOTS if type == "all" else ([type] if isinstance(type, str) else list(type))
        unknown = [t for t in requested if t not in constants.MODEL_PLOTS]
        if unknown:
            raise ConfigurationError(f"Unknown plot type(s) {unknown}. Available: {constants.MODEL_PLOTS + ['all']}")

        classification = result.task == constants.CLASSIFICATION
        tasks: List[PlotTask] = []
        for kind in requested:
            if kind in ('roc', 'confusion_matrix', 'calibration') and not classification:
                self.logger.warning(f"Plot '{kind}' applies to classification only; skipping.")
                continue
            if kind == 'residual' and classification:
                self.logger.warning("Plot 'residual' applies to regression only; skipping.")
                continue
            if kind == 'calibration' and len(result.classes) != 2:
                self.logger.warning("Plot 'calibration' is available for binary classification only; skipping.")
                continue
            if kind == 'learning_curve' and result.learning_curve is None:
                self.logger.warning("No learning curve stored; run fastml(..., learning_curve=True). Skipping.")
                continue
            tasks.append((kind, self._task_for(kind, result)))

        return self._run_tasks(tasks, output_dir)

    def _task_for(self, kind: str, result: Any):
        return {
            'bar': lambda: self.plot_metric_bars(result.performance_table(), result.metric, list(result.best_model)),
            'roc': lambda: self.plot_roc(result),
            'confusion_matrix': lambda: self.plot_confusion_matrices(result),
            'calibration': lambda: self.plot_calibration(result),
            'residual': lambda: self.plot_residuals(result),
            'learning_curve': lambda: self.plot_learning_curve(result.learning_curve),
        }[kind]

    def plot_metric_bars(self, table: pd.DataFrame, metric: str, best: List[str]) -> Figure:
        metrics = list(dict.fromkeys(table['metric']))
        fig, axes = self._grid(len(metrics), ncols=3, size=(5.0, 0.45 * table['model'].nunique() + 1.8))
        for ax, name in zip(axes, metrics):
            sub = table[table['metric'] == name].sort_values(
                'estimate', ascending=name in constants.LOWER_IS_BETTER
            )
            colors = ['#d62728' if m in best else '#1f77b4' for m in sub['model']]
            ax.barh(sub['model'], sub['estimate'], color=colors)
            if sub['lower'].notna().any():
                err = np.vstack([
                    (sub['estimate'] - sub['lower']).clip(lower=0).fillna(0),
                    (sub['upper'] - sub['estimate']).clip(lower=0).fillna(0),
                ])
                ax.errorbar(sub['estimate'], sub['model'], xerr=err, fmt='none', ecolor='black', capsize=3)
            ax.invert_yaxis()
            title = f"{name} (selection metric)" if name == metric else name
            ax.set_title(title)
        fig.suptitle("Test-set performance by model (best in red)")
        fig.tight_layout()
        return fig

    def plot_roc(self, result: Any) -> Figure:
        predictions = result.flat_predictions()
        classes = list(result.classes)
        fig, ax = plt.subplots(figsize=(7, 6))

        if len(classes) == 2:
            pos = result.positive_class
            for name, df in predictions.items():
                col = f"prob_{pos}"
                if col not in df.columns:
                    continue
                fpr, tpr, _ = roc_curve((df['truth'] == pos).astype(int), df[col])
                ax.plot(fpr, tpr, label=name)
            ax.set_title(f"ROC curves (event class: {pos})")
        else:
            # One-vs-rest curves of the best model
            name = next(iter(result.best_model))
            df = predictions[name]
            for cls in classes:
                col = f"prob_{cls}"
                if col not in df.columns or (df['truth'] == cls).sum() == 0:
                    continue
                fpr, tpr, _ = roc_curve((df['truth'] == cls).astype(int), df[col])
                ax.plot(fpr, tpr, label=f"{cls} vs rest")
            ax.set_title(f"One-vs-rest ROC curves: {name}")

        ax.plot([0, 1], [0, 1], linestyle='--', color='grey', linewidth=1)
        ax.set_xlabel("False positive rate (1 - specificity)")
        ax.set_ylabel("True positive rate (sensitivity)")
        ax.legend(loc='lower right', fontsize=8)
        fig.tight_layout()
        return fig

    def plot_confusion_matrices(self, result: Any) -> Figure:
        names = list(result.best_model)
        fig, axes = self._grid(len(names), ncols=2, size=(5.5, 4.5))
        for ax, name in zip(axes, names):
            cm = result.confusion_matrices[name]
            sns.heatmap(cm, annot=True, fmt="d", cmap="Blues", cbar=False, ax=ax)
            ax.set_title(name)
            ax.set_xlabel("Prediction")
            ax.set_ylabel("Truth")
        fig.tight_layout()
        return fig

    def plot_calibration(self, result: Any) -> Figure:
        pos = result.positive_class
        fig, ax = plt.subplots(figsize=(7, 6))
        for name, df in result.flat_predictions().items():
            col = f"prob_{pos}"
            if col not in df.columns:
                continue
            frac_pos, mean_pred = calibration_curve((df['truth'] == pos).astype(int), df[col],
                                                    n_bins=10, strategy='uniform')
            ax.plot(mean_pred, frac_pos, marker='o', label=name)
        ax.plot([0, 1], [0, 1], linestyle='--', color='grey', linewidth=1, label='Perfectly calibrated')
        ax.set_xlabel(f"Mean predicted probability of '{pos}'")
        ax.set_ylabel("Observed event rate")
        ax.set_title("Calibration curves")
        ax.legend(loc='upper left', fontsize=8)
        fig.tight_layout()
        return fig

    def plot_residuals(self, result: Any) -> Figure:
        predictions = result.flat_predictions()
        names = list(result.best_model)
        fig, axes = plt.subplots(len(names), 3, figsize=(15, 4.5 * len(names)), squeeze=False)
        for row, name in zip(axes, names):
            df = predictions[name]
            residuals = df['truth'] - df['estimate']

            row[0].scatter(df['truth'], df['estimate'], alpha=0.6, s=15)
            lims = [min(df['truth'].min(), df['estimate'].min()), max(df['truth'].max(), df['estimate'].max())]
            row[0].plot(lims, lims, 'r--', linewidth=1)
            row[0].set_xlabel("Truth")
            row[0].set_ylabel("Prediction")
            row[0].set_title(f"{name}: truth vs prediction")

            row[1].scatter(df['estimate'], residuals, alpha=0.6, s=15)
            row[1].axhline(0, color='red', linestyle='--', linewidth=1)
            row[1].set_xlabel("Prediction")
            row[1].set_ylabel("Residual")
            row[1].set_title("Residuals vs fitted")

            sns.histplot(residuals, kde=True, ax=row[2])
            row[2].set_title("Residual distribution")
        fig.tight_layout()
        return fig

    def plot_learning_curve(self, curve: pd.DataFrame) -> Figure:
        fig, ax = plt.subplots(figsize=(8, 5))
        for prefix, label, color in (('train', 'Training', '#1f77b4'), ('test', 'Resampled', '#ff7f0e')):
            mean = curve[f'{prefix}_mean']
            std = curve[f'{prefix}_std']
            ax.plot(curve['train_size'], mean, marker='o', label=label, color=color)
            ax.fill_between(curve['train_size'], mean - std, mean + std, alpha=0.2, color=color)
        ax.set_xlabel("Training rows")
        ax.set_ylabel(curve['metric'].iloc[0])
        ax.set_title("Learning curve (best model)")
        ax.legend()
        fig.tight_layout()
        return fig
