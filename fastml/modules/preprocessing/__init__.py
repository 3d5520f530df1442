"""
Preprocessing Module
====================

Builds the "recipe": the preprocessing transformer (imputation, encoding, scaling)
placed in front of every model inside a workflow.
"""

from .recipe_builder import RecipeBuilder

__all__ = ['RecipeBuilder']
