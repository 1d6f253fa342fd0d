# planflow/core/exceptions.py
"""
Exception hierarchy for planflow.

Only the errors below ever end a step as a failure. Unmet preconditions,
non-critical safety verdicts and unresolved templates are handled as skips
or absent values and never raise.
"""
from typing import Optional


class FlowError(Exception):
    """Base class for every error raised by the engine."""

    def __init__(self, message: str, step_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.step_id = step_id


class PlanValidationError(FlowError):
    """Raised when a plan document is structurally invalid."""
    pass


class CapabilityRegistrationError(FlowError):
    """Raised when a capability does not satisfy the registry contract."""
    pass


class UnknownCapabilityError(FlowError):
    """Raised when a step names a capability the registry does not know."""

    def __init__(self, capability: str, step_id: Optional[str] = None):
        super().__init__(f"Capability not found: {capability}", step_id)
        self.capability = capability


class SafetyViolationError(FlowError):
    """Raised when the safety gate returns a critical verdict."""

    def __init__(self, warning: str, step_id: Optional[str] = None):
        super().__init__(f"Safety violation: {warning}", step_id)
        self.warning = warning


class CapabilityExecutionError(FlowError):
    """Raised when a capability invocation fails or its postconditions are unmet."""

    def __init__(self, message: str, step_id: Optional[str] = None,
                 capability: Optional[str] = None):
        super().__init__(message, step_id)
        self.capability = capability


class ExecutionTimeoutError(FlowError):
    """Raised when a run exceeds its wall-clock budget."""

    def __init__(self, budget_ms: float):
        super().__init__("Execution timeout exceeded")
        self.budget_ms = budget_ms
