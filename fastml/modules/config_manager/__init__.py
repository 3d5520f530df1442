"""
Configuration Manager Module
============================

Responsibility:
- Merging user settings over the packaged defaults.
- Enforcement of schema constraints and logical rules.
- Resource usage guardrails (tuning grid size, memory).
- Deterministic seed propagation for reproducibility.
"""

from .config_manager import ConfigurationManager, deep_merge

__all__ = ['ConfigurationManager', 'deep_merge']
