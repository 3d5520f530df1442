from .evaluation_engine import EvaluationEngine
from .metrics import (
    MetricScorer,
    classification_metrics,
    full_proba,
    is_better,
    regression_metrics,
)
from .cv_analysis import cv_fold_consistency, overfitting_gaps

__all__ = [
    'EvaluationEngine',
    'MetricScorer',
    'classification_metrics',
    'regression_metrics',
    'full_proba',
    'is_better',
    'cv_fold_consistency',
    'overfitting_gaps',
]
