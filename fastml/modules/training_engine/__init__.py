"""
Training Engine Module
======================

Responsibility:
- Resolves the requested algorithms and engines for the task.
- Assembles recipe + model workflows via RecipeBuilder and ModelFactory.
- Delegates resampling/tuning to the TuningEngine and records timing.
- Persists fitted workflows (.joblib) and training metadata (.json).
- Manages memory cleanup between models.
"""

from .training_engine import TrainingEngine

__all__ = ['TrainingEngine']
