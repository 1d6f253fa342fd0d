# planflow/safety/__init__.py
"""
Safety validation for plan steps.
"""
from .validator import (
    SAFE, SAFETY_RULES, SafetyGate, SafetyValidator, SafetyVerdict, Severity,
)

__all__ = ['SAFE', 'SAFETY_RULES', 'SafetyGate', 'SafetyValidator', 'SafetyVerdict', 'Severity']
