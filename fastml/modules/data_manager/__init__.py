"""
Data Manager Module
===================

Responsibility:
- Validation of user frames, label and column selections.
- Task detection (classification vs regression).
- Train/test splitting with stratification fallback.
- Class balancing and label encoding for the training data.
"""

from .data_manager import DataManager, PreparedData, detect_task

__all__ = ['DataManager', 'PreparedData', 'detect_task']
