"""
Model Factory Module
====================

Responsibility:
- Registry of algorithms and the engines (libraries) implementing them.
- Instantiation with parameter filtering and seed injection.
- Default hyperparameter search spaces.
"""

from .model_factory import ModelFactory
from .search_spaces import SEARCH_SPACES, regular_grid

__all__ = ['ModelFactory', 'SEARCH_SPACES', 'regular_grid']
