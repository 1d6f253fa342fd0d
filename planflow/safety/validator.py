# planflow/safety/validator.py
"""
Safety validation for plan steps.

Steps are checked before execution in two tiers. Deterministic rules (bulk
thresholds, privileged targets) run first and short-circuit. Only when all of
them pass is the optional model review consulted. Both tiers fail open: an
error while validating lets the step through.
"""
import json
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from planflow.ai.models import GenerationRequest
from planflow.ai.parser import ModelReplyError, parse_model_reply
from planflow.config import SafetyConfig
from planflow.constants import (
    BULK_MESSAGE_CAPABILITIES, BULK_TARGET_CAPABILITIES,
    PRIVILEGED_SENSITIVE_CAPABILITIES, RISK_LEVELS,
)
from planflow.context.manager import ExecutionContext
from planflow.execution.parameters import ParameterResolver
from planflow.plan.models import Step
from planflow.utils.logging import get_logger

logger = get_logger(__name__)

# Parameter keys that carry target principals
TARGET_LIST_KEYS = ("user_ids", "userIds", "targets")
TARGET_KEYS = ("user_id", "userId", "target")


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def risk_level(self) -> int:
        return RISK_LEVELS[self.name]


class SafetyVerdict(BaseModel):
    """Result of a safety check."""
    model_config = ConfigDict(extra="forbid")

    safe: bool = Field(..., description="Whether the step may run")
    severity: Optional[Severity] = Field(None, description="How bad the violation is")
    warning: Optional[str] = Field(None, description="Why the step is unsafe")
    requires_confirmation: bool = Field(False, description="An interactive layer should ask first")

    @property
    def is_critical(self) -> bool:
        return not self.safe and self.severity == Severity.CRITICAL


SAFE = SafetyVerdict(safe=True)

SafetyRule = Callable[[Step, Dict[str, Any], SafetyConfig, ExecutionContext], Optional[SafetyVerdict]]


class SafetyGate(ABC):
    """Interface consulted by the step executor before a step runs."""

    @abstractmethod
    async def validate(self, step: Step, context: ExecutionContext) -> SafetyVerdict:
        """Decide whether ``step`` may run in ``context``."""


def _target_ids(params: Dict[str, Any]) -> List[Any]:
    targets: List[Any] = []
    for key in TARGET_LIST_KEYS:
        value = params.get(key)
        if isinstance(value, (list, tuple)):
            targets.extend(value)
    for key in TARGET_KEYS:
        value = params.get(key)
        if value is not None and not isinstance(value, (list, tuple, dict)):
            targets.append(value)
    return targets


def check_bulk_targets(step: Step, params: Dict[str, Any], settings: SafetyConfig,
                       context: ExecutionContext) -> Optional[SafetyVerdict]:
    """Mass bans and kicks are critical."""
    if step.capability not in BULK_TARGET_CAPABILITIES:
        return None
    count = len(_target_ids(params))
    if count > settings.bulk_target_limit:
        return SafetyVerdict(
            safe=False,
            severity=Severity.CRITICAL,
            warning=f"Attempting to {step.capability} {count} users at once",
            requires_confirmation=True,
        )
    return None


def check_bulk_messages(step: Step, params: Dict[str, Any], settings: SafetyConfig,
                        context: ExecutionContext) -> Optional[SafetyVerdict]:
    """Large message deletions are high severity."""
    if step.capability not in BULK_MESSAGE_CAPABILITIES:
        return None
    try:
        count = int(params.get("count") or 0)
    except (TypeError, ValueError):
        return None
    if count > settings.bulk_message_limit:
        return SafetyVerdict(
            safe=False,
            severity=Severity.HIGH,
            warning=f"Attempting to delete {count} messages",
            requires_confirmation=True,
        )
    return None


def check_privileged_targets(step: Step, params: Dict[str, Any], settings: SafetyConfig,
                             context: ExecutionContext) -> Optional[SafetyVerdict]:
    """Privileged principals (administrators, owners) are never valid targets."""
    if step.capability not in PRIVILEGED_SENSITIVE_CAPABILITIES:
        return None
    privileged = {str(target) for target in settings.privileged_targets}
    privileged.update(str(target) for target in context.services.get("privileged_targets") or ())
    hits = [target for target in _target_ids(params) if str(target) in privileged]
    if hits:
        return SafetyVerdict(
            safe=False,
            severity=Severity.CRITICAL,
            warning=f"Attempting to {step.capability} a privileged user",
            requires_confirmation=True,
        )
    return None


SAFETY_RULES: List[SafetyRule] = [
    check_bulk_targets,
    check_bulk_messages,
    check_privileged_targets,
]

REVIEW_SYSTEM_PROMPT = """You are a safety reviewer for automated moderation and data actions.

Decide whether the action below is safe to execute.

Reply with exactly one JSON object and nothing else:
{
  "safe": true or false,
  "severity": "low" | "medium" | "high" | "critical" | null,
  "warning": "<why it is unsafe>" | null,
  "requires_confirmation": true or false
}"""


class SafetyValidator(SafetyGate):
    """
    Default safety gate: deterministic rules, then an optional model review.

    Args:
        settings: Rule thresholds and privileged ids
        model_client: Object with ``async generate_text(GenerationRequest)``;
            the model review is skipped when it is None
        rules: Override the deterministic rule list
    """

    def __init__(self, settings: Optional[SafetyConfig] = None, model_client: Any = None,
                 rules: Optional[List[SafetyRule]] = None):
        self._settings = settings or SafetyConfig()
        self._model_client = model_client
        self._rules = list(SAFETY_RULES if rules is None else rules)
        self._resolver = ParameterResolver()
        self._logger = logger

    async def validate(self, step: Step, context: ExecutionContext) -> SafetyVerdict:
        try:
            params = self._resolver.resolve(step.params, context)

            verdict = self.check_rules(step, params, context)
            if not verdict.safe:
                self._logger.warning(f"Step '{step.id}' blocked: {verdict.warning}")
                return verdict

            if self._model_client is None:
                return verdict

            return await self._review(step, params, context)

        except Exception as e:
            self._logger.error(f"Safety validation error for step '{step.id}': {e}")
            return SAFE

    def check_rules(self, step: Step, params: Dict[str, Any], context: ExecutionContext) -> SafetyVerdict:
        """Run the deterministic rules, returning the first violation."""
        for rule in self._rules:
            verdict = rule(step, params, self._settings, context)
            if verdict is not None and not verdict.safe:
                return verdict
        return SAFE

    async def _review(self, step: Step, params: Dict[str, Any], context: ExecutionContext) -> SafetyVerdict:
        prompt = (
            f"Action: {step.capability}\n"
            f"Parameters: {json.dumps(params, indent=2, default=str)}\n"
            f"Recent conversation:\n{context.conversation_summary()}\n\n"
            "Is this safe?"
        )
        response = await self._model_client.generate_text(
            GenerationRequest(prompt=prompt, system_prompt=REVIEW_SYSTEM_PROMPT)
        )
        try:
            verdict = parse_model_reply(response.text, SafetyVerdict)
        except ModelReplyError as e:
            self._logger.warning(f"Ignoring safety review for step '{step.id}': {e}")
            return SAFE

        if not verdict.safe:
            self._logger.warning(f"Model review flagged step '{step.id}': {verdict.warning}")
        return verdict
