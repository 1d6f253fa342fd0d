# planflow/core/__init__.py
"""
Core components: the capability contract, the registry and the error types.
"""
from .exceptions import (
    FlowError, PlanValidationError, CapabilityRegistrationError,
    UnknownCapabilityError, SafetyViolationError, CapabilityExecutionError,
    ExecutionTimeoutError,
)
from .registry import Capability, CapabilityRegistry

__all__ = [
    'Capability',
    'CapabilityRegistry',
    'FlowError',
    'PlanValidationError',
    'CapabilityRegistrationError',
    'UnknownCapabilityError',
    'SafetyViolationError',
    'CapabilityExecutionError',
    'ExecutionTimeoutError',
]
