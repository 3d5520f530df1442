"""
fastml: train, compare, explain and deploy tabular machine-learning models
with a single call.
"""

from fastml.api import (
    fastexplain,
    fastexplore,
    fastml,
    load_model,
    plot,
    predict,
    save_model,
    save_report,
    summary,
)
from fastml.result import FastMLResult
from fastml.utils.exceptions import (
    ConfigurationError,
    DataValidationError,
    ExplanationError,
    FastMLException,
    ModelTrainingError,
    PredictionError,
    TuningError,
)

__version__ = "0.1.0"

__all__ = [
    'fastml', 'fastexplore', 'fastexplain', 'summary', 'plot', 'predict',
    'save_model', 'load_model', 'save_report', 'FastMLResult',
    'FastMLException', 'ConfigurationError', 'DataValidationError', 'ModelTrainingError',
    'TuningError', 'PredictionError', 'ExplanationError',
]
