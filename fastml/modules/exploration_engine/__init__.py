"""
Exploration Engine Module
=========================

Responsibility:
- Summary statistics, missingness, correlation, outlier and normality tables.
- Static plot suite and optional interactive dashboard for raw data.
"""

from .exploration_engine import ExplorationEngine

__all__ = ['ExplorationEngine']
