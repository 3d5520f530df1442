from .prediction_engine import PredictionEngine, PREDICTION_TYPES

__all__ = ['PredictionEngine', 'PREDICTION_TYPES']
