# planflow/plan/loader.py
"""
Loading plan documents from JSON or TOML files.
"""
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Union

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from pydantic import ValidationError

from planflow.core.exceptions import PlanValidationError
from planflow.plan.models import Plan, Step
from planflow.utils.logging import get_logger

logger = get_logger(__name__)

SUPPORTED_SUFFIXES = (".json", ".toml")


def parse_plan(data: Dict[str, Any]) -> Plan:
    """
    Validate a plan document.

    Args:
        data: Plan document, camelCase or snake_case keys

    Returns:
        The validated plan

    Raises:
        PlanValidationError: If the document does not describe a valid plan
    """
    if not isinstance(data, dict):
        raise PlanValidationError(f"Plan document must be an object, got {type(data).__name__}")
    try:
        return Plan.model_validate(data)
    except ValidationError as e:
        raise PlanValidationError(f"Invalid plan: {e}") from e


def load_plan(path: Union[str, Path]) -> Plan:
    """
    Read and validate a plan file.

    Raises:
        PlanValidationError: If the file is missing, unreadable, of an
            unsupported type or not a valid plan
    """
    path = Path(path)
    suffix = path.suffix.lower()
    if suffix not in SUPPORTED_SUFFIXES:
        raise PlanValidationError(f"Unsupported plan file type: {path.suffix or path.name}")

    logger.debug(f"Loading plan from {path}")
    try:
        if suffix == ".json":
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        else:
            with open(path, "rb") as f:
                data = tomllib.load(f)
    except FileNotFoundError as e:
        raise PlanValidationError(f"Plan file not found: {path}") from e
    except (json.JSONDecodeError, tomllib.TOMLDecodeError) as e:
        raise PlanValidationError(f"Could not parse {path}: {e}") from e
    except OSError as e:
        raise PlanValidationError(f"Could not read {path}: {e}") from e

    return parse_plan(data)


def validate_plan(plan: Plan, registry: Optional[Any] = None) -> List[str]:
    """
    Static checks that go beyond the document schema.

    Reports conditions missing what their predicate needs, dependencies on
    ids that are unknown or only declared later, and, when a registry is
    given, capabilities it does not know.

    Returns:
        A list of problems; empty when the plan looks runnable
    """
    from planflow.execution.conditions import validate_condition

    problems: List[str] = []
    known = set(plan.step_ids())

    def _check(steps: List[Step], declared: Set[str]) -> None:
        for step in steps:
            for dep in step.depends_on:
                if dep not in known:
                    problems.append(f"{step.id}: depends on unknown step '{dep}'")
                elif dep not in declared:
                    problems.append(f"{step.id}: depends on '{dep}', which runs later")

            conditions = list(step.conditions)
            if step.loop:
                conditions.append(step.loop.condition)
            for condition in conditions:
                valid, message = validate_condition(condition)
                if not valid:
                    problems.append(f"{step.id}: {message}")

            if registry is not None and step.capability and step.capability not in registry:
                problems.append(f"{step.id}: unknown capability '{step.capability}'")
            if not step.capability and not step.loop and step.condition is None:
                problems.append(f"{step.id}: step has no capability, condition or loop")

            declared.add(step.id)
            _check(step.children(), declared)

    _check(plan.steps, set())
    return problems
