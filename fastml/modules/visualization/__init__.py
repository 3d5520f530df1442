"""
Visualization Module.

Responsible for generating all static and interactive plots for the package.
"""

from .base_plotter import BasePlotter
from .exploration_plots import ExplorationPlotter
from .interactive_dashboard import build_dashboard
from .model_plots import ModelPlotter

__all__ = [
    'BasePlotter',
    'ExplorationPlotter',
    'ModelPlotter',
    'build_dashboard',
]
