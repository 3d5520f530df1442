"""
Explainability Engine Module
============================

Responsibility:
- Permutation importance with the selected metric.
- SHAP values (tree explainer, kernel fallback) on recipe-transformed features.
- Partial dependence and ICE curves for numeric predictors.
"""

from .explainability_engine import ExplainabilityEngine

__all__ = ['ExplainabilityEngine']
