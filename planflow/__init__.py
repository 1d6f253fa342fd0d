# planflow/__init__.py
"""
planflow: an execution engine for declarative, multi-step capability plans.
"""

__version__ = '0.1.0'

from planflow.context.manager import ExecutionContext
from planflow.core.registry import Capability, CapabilityRegistry
from planflow.execution.engine import PlanExecutor
from planflow.execution.step_executor import StepExecutor
from planflow.plan.models import Plan, Step, ExecutionOptions, PlanExecutionReport

__all__ = [
    "__version__",
    "Capability",
    "CapabilityRegistry",
    "ExecutionContext",
    "ExecutionOptions",
    "Plan",
    "PlanExecutionReport",
    "PlanExecutor",
    "Step",
    "StepExecutor",
]
