# planflow/execution/__init__.py
"""
Plan and step execution.

The executors live in ``planflow.execution.engine`` and
``planflow.execution.step_executor``; they are not imported here because the
safety gate depends on the resolver in this package.
"""
from .conditions import ConditionEvaluator
from .parameters import ParameterResolver

__all__ = ["ConditionEvaluator", "ParameterResolver"]
