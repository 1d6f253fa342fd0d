# planflow/execution/engine.py
"""
Plan execution.

The PlanExecutor walks a plan's top-level steps in declared order, gates them
on their dependencies, delegates each one to the StepExecutor and assembles a
PlanExecutionReport. It never raises: every failure ends up in the report.
"""
import inspect
import time
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import ValidationError

from planflow.config import ExecutionConfig
from planflow.constants import EXECUTOR_STEP_ID, LOOP_CAPABILITY
from planflow.context.manager import ExecutionContext
from planflow.core.exceptions import ExecutionTimeoutError, FlowError
from planflow.core.registry import CapabilityRegistry
from planflow.execution.error_recovery import SelfHealingAdvisor
from planflow.execution.step_executor import StepExecutor
from planflow.plan.models import (
    ExecutionOptions, ExecutionProgress, ExecutionStats, ExecutionStatus,
    Plan, PlanExecutionReport, StepError, StepResult,
)
from planflow.safety.validator import SafetyGate
from planflow.utils.logging import get_logger

logger = get_logger(__name__)

ProgressCallback = Callable[[ExecutionProgress], Any]


class PlanExecutor:
    """
    Executes plans against an execution context.

    Args:
        registry: Capability registry shared with the step executor
        safety_gate: Optional gate consulted before every step
        advisor: Optional self-healing advisor
        progress_callback: Called with ExecutionProgress at each top-level
            step boundary; may be a plain function or a coroutine function
        settings: Execution tunables, defaults from ExecutionConfig
    """

    def __init__(
        self,
        registry: CapabilityRegistry,
        safety_gate: Optional[SafetyGate] = None,
        advisor: Optional[SelfHealingAdvisor] = None,
        progress_callback: Optional[ProgressCallback] = None,
        settings: Optional[ExecutionConfig] = None,
    ):
        self._registry = registry
        self._settings = settings or ExecutionConfig()
        self._step_executor = StepExecutor(
            registry, safety_gate=safety_gate, advisor=advisor, settings=self._settings,
        )
        self._progress_callback = progress_callback
        self._logger = logger

    @property
    def step_executor(self) -> StepExecutor:
        return self._step_executor

    def set_progress_callback(self, callback: Optional[ProgressCallback]) -> None:
        """Set (or clear) the progress callback."""
        self._progress_callback = callback

    async def execute(
        self,
        plan: Union[Plan, Dict[str, Any]],
        context: ExecutionContext,
        options: Optional[ExecutionOptions] = None,
    ) -> PlanExecutionReport:
        """
        Execute a plan.

        Args:
            plan: The plan, as a Plan or a plan document dict
            context: Shared context; step outputs and history are written to it
            options: Dry-run, verbosity, pause-on-error and time budget

        Returns:
            The execution report
        """
        options = options or ExecutionOptions()
        start_time = time.perf_counter()

        if not isinstance(plan, Plan):
            try:
                plan = Plan.model_validate(plan)
            except ValidationError as e:
                plan_id = plan.get("id", "unknown") if isinstance(plan, dict) else "unknown"
                self._logger.error(f"Invalid plan {plan_id}: {e}")
                return PlanExecutionReport(
                    plan_id=str(plan_id),
                    success=False,
                    errors=[StepError(step_id=EXECUTOR_STEP_ID, error=f"Invalid plan: {e}")],
                    final_output=f"Execution failed: invalid plan {plan_id}",
                )

        log = self._logger.with_context(plan_id=plan.id)
        log.info(f"Executing plan: {plan.id} ({len(plan.steps)} steps)")

        budget_ms = options.max_execution_time
        if budget_ms is None:
            budget_ms = self._settings.max_execution_time_ms

        context.current_plan = plan
        results: List[StepResult] = []
        errors: List[StepError] = []
        stats = ExecutionStats()
        timed_out = False

        try:
            for index, step in enumerate(plan.steps):
                await self._report_progress(ExecutionProgress(
                    total_steps=len(plan.steps),
                    completed_steps=index,
                    current_step_id=step.id,
                    status=ExecutionStatus.RUNNING,
                ))

                elapsed_ms = (time.perf_counter() - start_time) * 1000
                if budget_ms and elapsed_ms > budget_ms:
                    timeout = ExecutionTimeoutError(budget_ms)
                    log.error(f"{timeout.message} after {elapsed_ms:.0f}ms (budget {budget_ms}ms)")
                    errors.append(StepError(step_id=EXECUTOR_STEP_ID, error=timeout.message))
                    timed_out = True
                    break

                unmet = [dep for dep in step.depends_on if not context.has_step_output(dep)]
                if unmet:
                    log.warning(f"Step {step.id} has unmet dependencies: {', '.join(unmet)}")
                    stats.steps_skipped += 1
                    continue

                try:
                    result = await self._step_executor.execute_step(step, context, options)
                except Exception as e:
                    message = e.message if isinstance(e, FlowError) else str(e)
                    log.error(f"Error executing step {step.id}: {message}")
                    errors.append(StepError(step_id=step.id, error=message))
                    if options.pause_on_error:
                        log.warning(f"Pausing plan {plan.id} after error in step {step.id}")
                        break
                    continue

                if result is None:
                    stats.steps_skipped += 1
                    continue

                results.append(result)
                stats.steps_executed += 1
                if result.capability == LOOP_CAPABILITY or result.payload.metadata.loop_back:
                    stats.loops_executed += 1

        except Exception as e:
            log.exception(f"Fatal execution error: {e}")
            errors.append(StepError(step_id=EXECUTOR_STEP_ID, error=str(e)))

        final_output = self._generate_summary(results, errors, plan.query)
        stats.total_time_ms = (time.perf_counter() - start_time) * 1000

        try:
            context.add_to_history(plan.query, context.step_outputs)
            context.update_references({
                result.step_id: result.payload.metadata.model_dump(exclude_none=True)
                for result in results
            })
        except Exception as e:
            log.error(f"Failed to record history for plan {plan.id}: {e}")

        await self._report_progress(ExecutionProgress(
            total_steps=len(plan.steps),
            completed_steps=len(plan.steps) if not errors else len(results),
            status=ExecutionStatus.COMPLETED if not errors else ExecutionStatus.FAILED,
        ))

        log.info(
            f"Plan execution completed: {stats.steps_executed} executed, "
            f"{stats.steps_skipped} skipped, {len(errors)} errors in {stats.total_time_ms:.0f}ms"
        )

        return PlanExecutionReport(
            plan_id=plan.id,
            success=not errors,
            results=results,
            errors=errors,
            final_output=final_output,
            timed_out=timed_out,
            stats=stats,
        )

    @staticmethod
    def _generate_summary(results: List[StepResult], errors: List[StepError], query: str) -> str:
        """Deterministic summary built from results and errors only."""
        parts: List[str] = []

        if errors:
            parts.append(f"Failed to complete \"{query}\". Errors occurred:")
            parts.extend(f"- {error.step_id}: {error.error}" for error in errors)
        else:
            parts.append(f"Successfully completed \"{query}\".")

        if results:
            parts.append(f"\nExecuted {len(results)} step(s):")
            parts.extend(
                f"{'+' if result.payload.success else 'x'} {result.capability} ({result.step_id})"
                for result in results
            )

        return "\n".join(parts)

    async def _report_progress(self, progress: ExecutionProgress) -> None:
        if self._progress_callback is None:
            return
        try:
            outcome = self._progress_callback(progress)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            self._logger.error(f"Progress callback failed: {e}")
