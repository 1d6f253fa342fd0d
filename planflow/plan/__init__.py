# planflow/plan/__init__.py
"""Plan documents: models and loading."""
from .models import (
    Condition, ConditionType, ErrorHandling, ExecutionOptions, LoopSpec,
    Plan, PlanExecutionReport, Step, StepResult,
)
from .loader import load_plan, parse_plan, validate_plan

__all__ = [
    "Condition", "ConditionType", "ErrorHandling", "ExecutionOptions", "LoopSpec",
    "Plan", "PlanExecutionReport", "Step", "StepResult",
    "load_plan", "parse_plan", "validate_plan",
]
