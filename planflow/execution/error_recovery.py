# planflow/execution/error_recovery.py
"""
Self-healing advice for steps that exhausted their retries.

The step executor asks an advisor at most once per failing step. The advisor
answers with a HealingDecision: retry with corrected parameters, switch to an
alternative capability, skip the step, or give up.
"""
import json
import re
from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator

from planflow.ai.models import GenerationRequest
from planflow.ai.parser import ModelReplyError, parse_model_reply
from planflow.context.manager import ExecutionContext
from planflow.core.registry import CapabilityRegistry
from planflow.plan.models import Step
from planflow.utils.logging import get_logger

logger = get_logger(__name__)

MAX_ALTERNATIVES = 5


class HealingAction(str, Enum):
    """What to do with a step that failed every attempt."""
    RETRY = "retry"                 # Retry once with corrected parameters
    ALTERNATIVE = "alternative"     # Run a different capability once
    SKIP = "skip"                   # Skip the step and continue
    FAIL = "fail"                   # Give up, fall through to the fallback


class HealingDecision(BaseModel):
    """An advisor's answer for one failed step."""
    model_config = ConfigDict(extra="forbid")

    action: HealingAction = Field(..., description="Recovery action")
    reasoning: str = Field("", description="Why this action was chosen")
    corrected_params: Optional[Dict[str, Any]] = Field(None, description="Parameters to merge for a retry")
    alternative_capability: Optional[str] = Field(None, description="Capability to use instead")
    alternative_params: Optional[Dict[str, Any]] = Field(None, description="Parameters for the alternative")

    @model_validator(mode="after")
    def _check_action_payload(self) -> "HealingDecision":
        if self.action == HealingAction.RETRY and not self.corrected_params:
            raise ValueError("retry requires corrected_params")
        if self.action == HealingAction.ALTERNATIVE and not self.alternative_capability:
            raise ValueError("alternative requires alternative_capability")
        return self

    @classmethod
    def fail(cls, reasoning: str) -> "HealingDecision":
        return cls(action=HealingAction.FAIL, reasoning=reasoning)


class SelfHealingAdvisor(ABC):
    """Interface for failure-recovery advice."""

    @abstractmethod
    async def heal(self, step: Step, error_message: str, context: ExecutionContext) -> HealingDecision:
        """Suggest a recovery for ``step``, which failed with ``error_message``."""

    def record_outcome(self, step: Step, error_message: str, decision: HealingDecision,
                       succeeded: bool) -> None:
        """Called by the executor after a retry or alternative was attempted."""
        return None


class RuleBasedHealingAdvisor(SelfHealingAdvisor):
    """Advisor that never heals; failures go straight to the fallback."""

    async def heal(self, step: Step, error_message: str, context: ExecutionContext) -> HealingDecision:
        return HealingDecision.fail("No self-healing configured")


HEALING_SYSTEM_PROMPT = """You are a self-healing assistant for a capability execution pipeline.

A capability failed. Analyze the error and suggest a fix.

Reply with exactly one JSON object and nothing else:
{
  "action": "retry" | "alternative" | "skip" | "fail",
  "reasoning": "<why this action>",
  "corrected_params": {<params>} (required for retry),
  "alternative_capability": "<capability name>" (required for alternative),
  "alternative_params": {<params>} (optional, for alternative)
}

Actions:
- retry: fix the parameters and try again
- alternative: use a different capability that achieves the same goal
- skip: skip this step and continue the plan
- fail: cannot recover"""

# Ordered from most to least specific
COMMON_ERROR_PATTERNS: List[Tuple[str, str]] = [
    (r"not found|no such|does not exist|unknown", "not_found"),
    (r"permission|forbidden|not allowed|unauthori[sz]ed", "permission_denied"),
    (r"timed? ?out|timeout", "timeout"),
    (r"rate ?limit|too many requests", "rate_limited"),
    (r"invalid|malformed|must be|required", "invalid_input"),
    (r"connection|network|unreachable", "connection_error"),
]


def extract_error_pattern(error_message: str) -> str:
    """Reduce an error message to a coarse pattern used as a memory key."""
    for pattern, name in COMMON_ERROR_PATTERNS:
        if re.search(pattern, error_message, re.IGNORECASE):
            return name

    first_line = error_message.split("\n")[0][:50]
    if first_line:
        return f"generic:{first_line}"
    return "unknown_error"


class ModelHealingAdvisor(SelfHealingAdvisor):
    """
    Advisor backed by a model client.

    Decisions that led to a successful recovery are remembered per capability
    and error pattern. When the same failure shows up again the remembered
    decision is returned without asking the model.

    Args:
        registry: Capability registry, used to describe the failed capability
            and offer alternatives from the same category
        model_client: Object with ``async generate_text(GenerationRequest)``
    """

    def __init__(self, registry: CapabilityRegistry, model_client: Any):
        self._registry = registry
        self._model_client = model_client
        self._success_patterns: Dict[str, Dict[str, Any]] = {}
        self._logger = logger

    async def heal(self, step: Step, error_message: str, context: ExecutionContext) -> HealingDecision:
        self._logger.info(f"Attempting to heal failed step: {step.id} ({step.capability})")

        capability = self._registry.get(step.capability) if step.capability else None
        if capability is None:
            return HealingDecision.fail("Capability not found")

        remembered = self._success_patterns.get(self._memory_key(step, error_message))
        if remembered:
            self._logger.info(
                f"Reusing recovery for {step.capability} "
                f"(succeeded {remembered['success_count']} times)"
            )
            return remembered["decision"]

        alternatives = [
            candidate for candidate in self._registry.get_by_category(capability.category)
            if candidate.name != capability.name
        ][:MAX_ALTERNATIVES]

        prompt = (
            f"Failed capability: {capability.name}\n"
            f"Description: {capability.description}\n"
            f"Parameters: {json.dumps(step.params, indent=2, default=str)}\n"
            f"Error: {error_message}\n\n"
            "Available alternative capabilities:\n"
            + ("\n".join(f"- {c.name}: {c.description}" for c in alternatives) or "- none")
            + "\n\nWhat should we do?"
        )

        try:
            response = await self._model_client.generate_text(
                GenerationRequest(prompt=prompt, system_prompt=HEALING_SYSTEM_PROMPT)
            )
            decision = parse_model_reply(response.text, HealingDecision)
        except ModelReplyError as e:
            self._logger.warning(f"Malformed healing decision for step '{step.id}': {e}")
            return HealingDecision.fail("Invalid advisor response")
        except Exception as e:
            self._logger.error(f"Self-healing error for step '{step.id}': {e}")
            return HealingDecision.fail(str(e))

        self._logger.info(f"Healing decision for {step.id}: {decision.action.value}")
        return decision

    def record_outcome(self, step: Step, error_message: str, decision: HealingDecision,
                       succeeded: bool) -> None:
        """Remember decisions that recovered a step."""
        if not succeeded:
            return

        key = self._memory_key(step, error_message)
        record = self._success_patterns.setdefault(key, {"decision": decision, "success_count": 0})
        record["decision"] = decision
        record["success_count"] += 1
        record["last_success"] = datetime.now().isoformat()
        self._logger.debug(f"Learned recovery {decision.action.value} for pattern {key}")

    @staticmethod
    def _memory_key(step: Step, error_message: str) -> str:
        return f"{step.capability}:{extract_error_pattern(error_message)}"
