"""
Performance metrics for classification and regression workflows.

Classification metrics work on integer class codes ``0..K-1``. Binary metrics are
computed for the positive (event) class; multiclass metrics are macro averages.
"""
import warnings
from typing import Dict, Optional, List

import numpy as np
from sklearn.metrics import (
    accuracy_score,
    cohen_kappa_score,
    confusion_matrix,
    f1_score,
    log_loss,
    mean_absolute_error,
    mean_squared_error,
    precision_score,
    recall_score,
    roc_auc_score,
)

from fastml.utils import constants


def specificity(y_true: np.ndarray, y_pred: np.ndarray, n_classes: int,
                positive_index: Optional[int] = None) -> float:
    """True-negative rate; macro-averaged over classes for multiclass problems."""
    cm = confusion_matrix(y_true, y_pred, labels=list(range(n_classes)))
    total = cm.sum()
    rates = []
    classes = [positive_index] if positive_index is not None else range(n_classes)
    for k in classes:
        tp = cm[k, k]
        fp = cm[:, k].sum() - tp
        fn = cm[k, :].sum() - tp
        tn = total - tp - fp - fn
        denom = tn + fp
        rates.append(tn / denom if denom > 0 else np.nan)
    return float(np.nanmean(rates)) if not np.all(np.isnan(rates)) else np.nan


def roc_auc(y_true: np.ndarray, proba: Optional[np.ndarray], n_classes: int,
            positive_index: Optional[int] = None) -> float:
    """Binary ROC AUC for the positive class, Hand-Till (one-vs-one macro) AUC otherwise."""
    if proba is None:
        return np.nan
    try:
        if n_classes == 2:
            pos = 1 if positive_index is None else positive_index
            return float(roc_auc_score((y_true == pos).astype(int), proba[:, pos]))
        return float(roc_auc_score(y_true, proba, multi_class='ovo', average='macro',
                                   labels=list(range(n_classes))))
    except ValueError:
        # Only one class present in y_true
        return np.nan


def classification_metrics(y_true: np.ndarray, y_pred: np.ndarray, proba: Optional[np.ndarray],
                           n_classes: int, positive_index: Optional[int] = None,
                           metrics: Optional[List[str]] = None) -> Dict[str, float]:
    """Compute the classification metric suite (or the subset named in ``metrics``)."""
    y_true = np.asarray(y_true).astype(int)
    y_pred = np.asarray(y_pred).astype(int)
    wanted = metrics or constants.CLASSIFICATION_METRICS
    binary = n_classes == 2 and positive_index is not None
    average_kw = {'average': 'binary', 'pos_label': positive_index} if binary else {'average': 'macro'}
    labels = [positive_index] if binary else list(range(n_classes))

    results: Dict[str, float] = {}
    with warnings.catch_warnings():
        # Undefined precision/recall for absent classes is reported as 0, not warned about
        warnings.simplefilter("ignore")
        for name in wanted:
            if name == 'accuracy':
                results[name] = float(accuracy_score(y_true, y_pred))
            elif name == 'kap':
                results[name] = float(cohen_kappa_score(y_true, y_pred))
            elif name == 'sens':
                results[name] = float(recall_score(y_true, y_pred, labels=labels, zero_division=0, **average_kw))
            elif name == 'spec':
                results[name] = specificity(y_true, y_pred, n_classes, positive_index if binary else None)
            elif name == 'precision':
                results[name] = float(precision_score(y_true, y_pred, labels=labels, zero_division=0, **average_kw))
            elif name == 'f_meas':
                results[name] = float(f1_score(y_true, y_pred, labels=labels, zero_division=0, **average_kw))
            elif name == 'roc_auc':
                results[name] = roc_auc(y_true, proba, n_classes, positive_index)
            elif name == 'logloss':
                results[name] = (float(log_loss(y_true, proba, labels=list(range(n_classes))))
                                 if proba is not None else np.nan)
            else:
                raise ValueError(f"Unknown classification metric '{name}'")
    return results


def regression_metrics(y_true: np.ndarray, y_pred: np.ndarray,
                       metrics: Optional[List[str]] = None) -> Dict[str, float]:
    """
    Compute the regression metric suite. ``rsq`` is the squared Pearson correlation
    between truth and estimate; ``mape`` is expressed in percent.
    """
    y_true = np.asarray(y_true, dtype=float)
    y_pred = np.asarray(y_pred, dtype=float).ravel()
    wanted = metrics or constants.REGRESSION_METRICS

    results: Dict[str, float] = {}
    for name in wanted:
        if name == 'rmse':
            results[name] = float(np.sqrt(mean_squared_error(y_true, y_pred)))
        elif name == 'mae':
            results[name] = float(mean_absolute_error(y_true, y_pred))
        elif name == 'rsq':
            if np.std(y_true) == 0 or np.std(y_pred) == 0:
                results[name] = np.nan
            else:
                results[name] = float(np.corrcoef(y_true, y_pred)[0, 1] ** 2)
        elif name == 'mape':
            with np.errstate(divide='ignore', invalid='ignore'):
                results[name] = float(np.mean(np.abs((y_true - y_pred) / y_true)) * 100)
        else:
            raise ValueError(f"Unknown regression metric '{name}'")
    return results


def full_proba(estimator, X, n_classes: int) -> np.ndarray:
    """
    ``predict_proba`` widened to all ``n_classes`` codes. Resampled fits can miss a
    rare class; its column is filled with zeros.
    """
    proba = np.asarray(estimator.predict_proba(X))
    classes = getattr(estimator, 'classes_', None)
    if classes is None or proba.shape[1] == n_classes:
        return proba
    widened = np.zeros((proba.shape[0], n_classes))
    widened[:, np.asarray(classes, dtype=int)] = proba
    return widened


def is_better(candidate: float, incumbent: float, metric: str) -> bool:
    """True when ``candidate`` beats ``incumbent`` on ``metric``."""
    if np.isnan(candidate):
        return False
    if np.isnan(incumbent):
        return True
    if metric in constants.LOWER_IS_BETTER:
        return candidate < incumbent
    return candidate > incumbent


class MetricScorer:
    """
    scikit-learn compatible scorer (``scorer(estimator, X, y)``) for a single metric.

    Lower-is-better metrics are negated so that searches always maximise.
    """

    def __init__(self, metric: str, task: str, n_classes: Optional[int] = None,
                 positive_index: Optional[int] = None):
        self.metric = metric
        self.task = task
        self.n_classes = n_classes
        self.positive_index = positive_index
        self.sign = -1.0 if metric in constants.LOWER_IS_BETTER else 1.0

    def score(self, estimator, X, y) -> float:
        """Raw (un-negated) metric value."""
        if self.task == constants.CLASSIFICATION:
            proba = None
            if self.metric in constants.PROBABILITY_METRICS:
                proba = full_proba(estimator, X, self.n_classes)
            y_pred = estimator.predict(X)
            return classification_metrics(y, y_pred, proba, self.n_classes, self.positive_index,
                                          metrics=[self.metric])[self.metric]
        return regression_metrics(y, estimator.predict(X), metrics=[self.metric])[self.metric]

    def __call__(self, estimator, X, y) -> float:
        return self.sign * self.score(estimator, X, y)

    def __repr__(self) -> str:
        return f"MetricScorer(metric={self.metric!r}, task={self.task!r})"
