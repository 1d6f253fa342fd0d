# planflow/execution/step_executor.py
"""
Execution of a single plan step.

A step is either a capability call, a conditional router (``if_true`` /
``if_false``) or a bounded loop. ``execute_step`` returns a StepResult, None
when the step was skipped, or raises a FlowError subclass for terminal
failures.
"""
import asyncio
import time
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError

from planflow.config import ExecutionConfig
from planflow.constants import LOOP_CAPABILITY
from planflow.context.manager import ExecutionContext
from planflow.core.exceptions import (
    CapabilityExecutionError, SafetyViolationError, UnknownCapabilityError,
)
from planflow.core.registry import Capability, CapabilityRegistry
from planflow.execution.conditions import ConditionEvaluator, describe_condition
from planflow.execution.error_recovery import (
    HealingAction, HealingDecision, RuleBasedHealingAdvisor, SelfHealingAdvisor,
)
from planflow.execution.parameters import ParameterResolver
from planflow.plan.models import (
    CapabilityResult, ExecutionOptions, Step, StepResult,
)
from planflow.safety.validator import SAFE, SafetyGate, SafetyVerdict
from planflow.utils.logging import get_logger

logger = get_logger(__name__)


class StepExecutor:
    """
    Runs one step: gating, routing, loops, retries, healing and fallback.

    Args:
        registry: Where capabilities are looked up by name
        safety_gate: Consulted before every step; None disables the check
        advisor: Asked once when a step exhausts its retries
        settings: Backoff base and the default loop bound
    """

    def __init__(
        self,
        registry: CapabilityRegistry,
        safety_gate: Optional[SafetyGate] = None,
        advisor: Optional[SelfHealingAdvisor] = None,
        settings: Optional[ExecutionConfig] = None,
    ):
        self._registry = registry
        self._safety_gate = safety_gate
        self._advisor = advisor or RuleBasedHealingAdvisor()
        self._settings = settings or ExecutionConfig()
        self._resolver = ParameterResolver()
        self._conditions = ConditionEvaluator()
        self._logger = logger

    @property
    def resolver(self) -> ParameterResolver:
        return self._resolver

    @property
    def conditions(self) -> ConditionEvaluator:
        return self._conditions

    async def execute_step(
        self,
        step: Step,
        context: ExecutionContext,
        options: Optional[ExecutionOptions] = None,
    ) -> Optional[StepResult]:
        """
        Execute a step against the context.

        Args:
            step: The step to run
            context: Shared execution context, written with the step output
            options: Dry-run and verbosity switches

        Returns:
            The step result, or None when the step was skipped

        Raises:
            UnknownCapabilityError: The step names an unregistered capability
            SafetyViolationError: The safety gate returned a critical verdict
            CapabilityExecutionError: Every attempt, healing and fallback failed
        """
        options = options or ExecutionOptions()
        log = self._logger.with_context(step_id=step.id)

        missing = [dep for dep in step.depends_on if not context.has_step_output(dep)]
        if missing:
            log.warning(f"Skipping step {step.id}: unmet dependencies {missing}")
            return None

        capability: Optional[Capability] = None
        if step.capability:
            capability = self._registry.get(step.capability)
            if capability is None:
                raise UnknownCapabilityError(step.capability, step.id)

            if capability.preconditions and not self._conditions.evaluate_all(capability.preconditions, context):
                log.info(f"Preconditions not met for {step.capability}, skipping")
                return None

        verdict = await self._check_safety(step, context)
        if not verdict.safe:
            if verdict.is_critical:
                raise SafetyViolationError(verdict.warning or "critical action blocked", step.id)
            log.warning(f"Skipping unsafe step {step.id}: {verdict.warning}")
            return None

        if step.condition is not None:
            routed, proceed = await self._route(step, context, options)
            if not proceed:
                return routed

        if step.loop is not None:
            return await self._run_loop(step, context, options)

        if capability is None:
            log.warning(f"Step {step.id} has neither a capability nor a loop, skipping")
            return None

        params = self._resolver.resolve(step.params, context)
        if options.verbose:
            log.info(f"Resolved params for {step.capability}: {params}")

        if options.dry_run:
            log.info(f"[DRY RUN] Would execute {step.capability} with params: {params}")
            payload = CapabilityResult(success=True, data={"dryRun": True})
            self._store_output(step, payload.data, context)
            return StepResult(step_id=step.id, capability=capability.name, payload=payload, elapsed_ms=0.0)

        return await self._run_with_recovery(step, capability, context, options)

    # --- Gating and routing ---

    async def _check_safety(self, step: Step, context: ExecutionContext) -> SafetyVerdict:
        if self._safety_gate is None:
            return SAFE
        try:
            return await self._safety_gate.validate(step, context)
        except Exception as e:
            self._logger.error(f"Safety gate error for step {step.id}, allowing: {e}")
            return SAFE

    async def _route(
        self, step: Step, context: ExecutionContext, options: ExecutionOptions,
    ) -> Tuple[Optional[StepResult], bool]:
        """
        Evaluate the guard condition.

        Returns:
            Tuple of (result, proceed). When ``proceed`` is False the step is
            finished and ``result`` is what ``execute_step`` returns.
        """
        holds = self._conditions.evaluate_all(step.conditions, context)
        if options.verbose:
            rendered = " AND ".join(describe_condition(c) for c in step.conditions)
            self._logger.info(f"Condition for {step.id} ({rendered}) evaluated to {holds}")

        branch = step.if_true if holds else step.if_false
        if branch:
            for branch_step in branch:
                await self.execute_step(branch_step, context, options)
            return None, False

        if not holds:
            self._logger.debug(f"Condition false for {step.id}, skipping")
            return None, False

        return None, True

    async def _run_loop(self, step: Step, context: ExecutionContext, options: ExecutionOptions) -> StepResult:
        loop = step.loop
        max_iterations = loop.max_iterations
        if "max_iterations" not in loop.model_fields_set:
            max_iterations = self._settings.default_max_iterations
        started = time.perf_counter()
        iterations = 0
        results: List[StepResult] = []

        while iterations < max_iterations and self._conditions.evaluate(loop.condition, context):
            for body_step in loop.steps:
                result = await self.execute_step(body_step, context, options)
                if result is not None:
                    results.append(result)
            iterations += 1

        if iterations >= max_iterations:
            self._logger.warning(f"Loop {step.id} reached max iterations ({max_iterations})")

        output = {
            "iterations": iterations,
            "results": [result.model_dump() for result in results],
        }
        self._store_output(step, output, context)
        self._logger.info(f"Loop {step.id} finished after {iterations} iterations")

        return StepResult(
            step_id=step.id,
            capability=LOOP_CAPABILITY,
            payload=CapabilityResult(success=True, data=output),
            elapsed_ms=(time.perf_counter() - started) * 1000,
        )

    # --- Invocation ---

    async def _run_with_recovery(
        self, step: Step, capability: Capability, context: ExecutionContext, options: ExecutionOptions,
    ) -> Optional[StepResult]:
        log = self._logger.with_context(step_id=step.id, capability=capability.name)
        started = time.perf_counter()
        max_retries = step.retry_limit
        last_error = f"{capability.name} failed"

        for attempt in range(max_retries + 1):
            if attempt > 0:
                log.info(f"Retry attempt {attempt}/{max_retries} for {capability.name}")

            params = self._resolver.resolve(step.params, context)
            result, error = await self._invoke(step, capability, params, context, started)
            if result is not None:
                log.info(f"Step {step.id} completed in {result.elapsed_ms:.0f}ms")
                return result

            last_error = error
            log.warning(f"Step {step.id} failed (attempt {attempt + 1}): {error}")

            if attempt < max_retries:
                await asyncio.sleep(self._settings.backoff_base ** attempt)

        healed, outcome = await self._heal(step, capability, last_error, context, started)
        if outcome == HealingAction.SKIP:
            return None
        if healed is not None:
            return healed

        fallback = step.on_error.fallback if step.on_error else []
        if fallback:
            log.info(f"Executing fallback steps for {step.id}")
            for fallback_step in fallback:
                await self.execute_step(fallback_step, context, options)

            if step.on_error.continue_on_error:
                log.warning(f"Continuing after failed step {step.id}: {last_error}")
                return None

        raise CapabilityExecutionError(last_error, step.id, capability.name)

    async def _heal(
        self, step: Step, capability: Capability, error: str, context: ExecutionContext, started: float,
    ) -> Tuple[Optional[StepResult], HealingAction]:
        """Ask the advisor once and apply its decision."""
        self._logger.warning(f"Step {step.id} failed after all retries, attempting self-healing")
        try:
            decision = await self._advisor.heal(step, error, context)
            if not isinstance(decision, HealingDecision):
                decision = HealingDecision.model_validate(decision)
        except Exception as e:
            self._logger.error(f"Self-healing advisor failed for {step.id}: {e}")
            return None, HealingAction.FAIL

        if decision.action == HealingAction.SKIP:
            self._logger.info(f"Self-healing: skipping failed step {step.id}")
            return None, HealingAction.SKIP

        if decision.action == HealingAction.RETRY:
            self._logger.info(f"Self-healing: retrying {step.id} with corrected params")
            params = self._resolver.resolve(step.params, context)
            params.update(decision.corrected_params or {})
            result, healed_error = await self._invoke(step, capability, params, context, started)

        elif decision.action == HealingAction.ALTERNATIVE:
            alternative = self._registry.get(decision.alternative_capability)
            if alternative is None:
                self._logger.error(f"Alternative capability not found: {decision.alternative_capability}")
                return None, HealingAction.FAIL
            self._logger.info(f"Self-healing: using alternative {alternative.name} for {step.id}")
            params = (
                self._resolver.resolve(decision.alternative_params, context)
                if decision.alternative_params is not None
                else self._resolver.resolve(step.params, context)
            )
            result, healed_error = await self._invoke(step, alternative, params, context, started)

        else:
            return None, HealingAction.FAIL

        self._advisor.record_outcome(step, error, decision, result is not None)
        if result is None:
            self._logger.error(f"Self-healing {decision.action.value} failed for {step.id}: {healed_error}")
            return None, HealingAction.FAIL
        return result, decision.action

    async def _invoke(
        self, step: Step, capability: Capability, params: Dict[str, Any],
        context: ExecutionContext, started: float,
    ) -> Tuple[Optional[StepResult], str]:
        """
        Invoke a capability once.

        Returns:
            Tuple of (result, error). ``result`` is None when the invocation
            raised, reported failure or left its postconditions unmet.
        """
        call_started = time.perf_counter()
        try:
            payload = await capability.execute(params, context)
        except Exception as e:
            return None, str(e) or type(e).__name__

        if not isinstance(payload, CapabilityResult):
            try:
                payload = CapabilityResult.model_validate(payload)
            except ValidationError as e:
                return None, f"{capability.name} returned a malformed result: {e.error_count()} error(s)"

        if not payload.success:
            return None, payload.error or payload.message or f"{capability.name} reported failure"

        if capability.postconditions and not self._conditions.evaluate_all(capability.postconditions, context):
            return None, f"Postconditions not met for {capability.name}"

        if payload.metadata.execution_time is None:
            payload.metadata.execution_time = (time.perf_counter() - call_started) * 1000

        self._store_output(step, payload.data, context)
        return StepResult(
            step_id=step.id,
            capability=capability.name,
            payload=payload,
            elapsed_ms=(time.perf_counter() - started) * 1000,
        ), ""

    @staticmethod
    def _store_output(step: Step, data: Any, context: ExecutionContext) -> None:
        context.set_step_output(step.id, data)
        if step.output_as:
            context.set_variable(step.output_as, data)
