# planflow/execution/parameters.py
"""
Template resolution for step parameters.

Supported forms, in priority order for a string value:

- ``"{{expr}}"``: the whole value is replaced by the referenced value with
  its native type.
- ``"text {{a}} and {{b}}"``: every expression is spliced in as a string.
- ``"$name"``: variable lookup only.
- ``"stepResults.<id>.<path>"``: lookup into a step's recorded output.
- ``"@lastUsers"`` / ``"@lastMessages"`` / ``"@lastChannels"``: the context's
  "last referenced" buckets.

Unresolved references become None (or an empty string when spliced). The
resolver never raises.
"""
import json
import re
from typing import Any, Dict

from planflow.constants import REFERENCE_TOKENS
from planflow.context.manager import ExecutionContext
from planflow.utils.logging import get_logger
from planflow.utils.paths import MISSING, split_path, walk_path

logger = get_logger(__name__)

TEMPLATE_PATTERN = re.compile(r"\{\{([^}]+)\}\}")
LEGACY_STEP_PREFIXES = ("stepResults.", "step_outputs.")
VARIABLE_SIGIL = "$"


class ParameterResolver:
    """Resolves templated parameter values against an execution context."""

    def __init__(self):
        self._logger = logger

    def resolve(self, params: Dict[str, Any], context: ExecutionContext) -> Dict[str, Any]:
        """
        Resolve every value of a parameter mapping.

        Args:
            params: Raw parameters as written in the plan
            context: Execution context providing variables and step outputs

        Returns:
            A new mapping with no template syntax left in it
        """
        return {key: self.resolve_value(value, context) for key, value in params.items()}

    def resolve_value(self, value: Any, context: ExecutionContext) -> Any:
        if isinstance(value, str):
            return self._resolve_string(value, context)
        if isinstance(value, dict):
            return {key: self.resolve_value(item, context) for key, item in value.items()}
        if isinstance(value, list):
            return [self.resolve_value(item, context) for item in value]
        return value

    def _resolve_string(self, value: str, context: ExecutionContext) -> Any:
        whole = TEMPLATE_PATTERN.fullmatch(value.strip())
        if whole:
            return self._none_if_missing(self.resolve_expression(whole.group(1), context))

        if TEMPLATE_PATTERN.search(value):
            return TEMPLATE_PATTERN.sub(
                lambda match: self._stringify(self.resolve_expression(match.group(1), context)),
                value,
            )

        if value in REFERENCE_TOKENS:
            return context.last_referenced.get(REFERENCE_TOKENS[value])

        if value.startswith(LEGACY_STEP_PREFIXES):
            _, remainder = value.split(".", 1)
            return self._none_if_missing(self._lookup_step_path(remainder, context))

        if value.startswith(VARIABLE_SIGIL) and len(value) > 1:
            return context.variables.get(value[1:])

        return value

    def resolve_expression(self, expression: str, context: ExecutionContext) -> Any:
        """
        Resolve the inside of a ``{{...}}`` template.

        A declared variable wins, then ``<step_id>.<path>`` into a step
        output, then the expression taken as a plain step id.

        Returns:
            The value, or MISSING when nothing matches
        """
        expression = expression.strip()

        if expression in context.variables:
            return context.variables[expression]

        if "." in expression:
            return self._lookup_step_path(expression, context)

        return context.step_outputs.get(expression, MISSING)

    @staticmethod
    def _lookup_step_path(path: str, context: ExecutionContext) -> Any:
        segments = split_path(path)
        if not segments:
            return MISSING
        step_id, rest = segments[0], segments[1:]
        if step_id not in context.step_outputs:
            return MISSING
        return walk_path(context.step_outputs[step_id], rest)

    @staticmethod
    def _none_if_missing(value: Any) -> Any:
        return None if value is MISSING else value

    @staticmethod
    def _stringify(value: Any) -> str:
        if value is MISSING or value is None:
            return ""
        if isinstance(value, str):
            return value
        return json.dumps(value, default=str)
