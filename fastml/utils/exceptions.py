"""
Custom exception hierarchy for fastml.
"""

class FastMLException(Exception):
    """Base exception for all fastml errors."""
    pass

class ConfigurationError(FastMLException):
    """Configuration validation failed."""
    pass

class DataValidationError(FastMLException):
    """Data validation failed."""
    pass

class ModelTrainingError(FastMLException):
    """Model training failed."""
    pass

class TuningError(FastMLException):
    """Hyperparameter search failed."""
    pass

class PredictionError(FastMLException):
    """Prediction generation failed."""
    pass

class ExplanationError(FastMLException):
    """Model explanation failed."""
    pass
