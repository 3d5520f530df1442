"""
Reporting Engine Module
=======================

Responsibility:
- Console model summaries (comparison table, hyperparameters, confusion matrices).
- PDF reports for fitted results and exploratory analyses.
"""

from .reporting_engine import ReportingEngine, SUMMARY_TYPES

__all__ = ['ReportingEngine', 'SUMMARY_TYPES']
