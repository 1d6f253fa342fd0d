# tests/test_engine.py
"""Tests for plan execution."""
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from planflow.execution.engine import PlanExecutor
from planflow.plan.models import (
    CapabilityResult, ExecutionOptions, ExecutionStatus, Plan, ResultMetadata,
)
from tests.conftest import ok


def plan(*steps, query="moderate the server", plan_id="p1"):
    return Plan(id=plan_id, query=query, steps=list(steps))


@pytest.mark.asyncio
async def test_executes_steps_in_order(registry, stub, context):
    calls = []

    def recorder(name):
        async def _execute(params, ctx):
            calls.append(name)
            return ok({"users": [f"{name}_user"]})
        return _execute

    stub("fetch", side_effect=recorder("fetch"))
    stub("ban", side_effect=recorder("ban"))
    report = await PlanExecutor(registry).execute(plan(
        {"id": "a", "toolName": "fetch"},
        {"id": "b", "toolName": "ban", "dependsOn": ["a"]},
    ), context)

    assert report.success
    assert calls == ["fetch", "ban"]
    assert [r.step_id for r in report.results] == ["a", "b"]
    assert report.stats.steps_executed == 2
    assert report.stats.steps_skipped == 0
    assert report.final_output.startswith("Successfully completed \"moderate the server\".")
    assert context.current_plan.id == "p1"


@pytest.mark.asyncio
async def test_unadmitted_dependency_is_skipped(registry, stub, context):
    capability = stub("ban")

    report = await PlanExecutor(registry).execute(plan(
        {"id": "b", "toolName": "ban", "dependsOn": ["never_ran"]},
    ), context)

    assert report.success
    assert report.results == []
    assert report.stats.steps_skipped == 1
    capability.execute.assert_not_awaited()


@pytest.mark.asyncio
async def test_exhausted_failure_produces_one_error(registry, stub, context, no_sleep):
    stub("ban", side_effect=RuntimeError("Missing permissions"))
    stub("warn")

    report = await PlanExecutor(registry).execute(plan(
        {"id": "b", "toolName": "ban", "onError": {"retry": 1}},
        {"id": "w", "toolName": "warn"},
    ), context)

    assert report.success is False
    assert len(report.errors) == 1
    assert report.errors[0].step_id == "b"
    assert report.errors[0].error == "Missing permissions"
    # The run continues past the failure
    assert [r.step_id for r in report.results] == ["w"]
    assert "Failed to complete" in report.final_output
    assert "- b: Missing permissions" in report.final_output


@pytest.mark.asyncio
async def test_pause_on_error_stops_the_run(registry, stub, context):
    stub("ban", side_effect=RuntimeError("nope"))
    warn = stub("warn")

    report = await PlanExecutor(registry).execute(
        plan({"id": "b", "toolName": "ban"}, {"id": "w", "toolName": "warn"}),
        context,
        ExecutionOptions(pause_on_error=True),
    )

    assert not report.success
    assert len(report.errors) == 1
    warn.execute.assert_not_awaited()
    assert len(context.history) == 1


@pytest.mark.asyncio
async def test_unknown_capability_is_reported(registry, context):
    report = await PlanExecutor(registry).execute(plan({"id": "x", "toolName": "ghost"}), context)

    assert not report.success
    assert report.errors[0].error == "Capability not found: ghost"


@pytest.mark.asyncio
async def test_dry_run(registry, stub, context):
    capability = stub("ban")

    report = await PlanExecutor(registry).execute(
        plan({"id": "b", "toolName": "ban", "outputAs": "banned"}), context, ExecutionOptions(dry_run=True),
    )

    assert report.success
    assert context.get_step_output("b") == {"dryRun": True}
    assert context.get_variable("banned") == {"dryRun": True}
    capability.execute.assert_not_awaited()


@pytest.mark.asyncio
async def test_timeout_yields_partial_report(registry, stub, context):
    stub("slow")
    clock = iter([0.0, 0.0, 0.0, 5.0, 5.0, 5.0, 5.0, 5.0, 5.0, 5.0])

    with patch("planflow.execution.engine.time.perf_counter", side_effect=lambda: next(clock, 5.0)):
        report = await PlanExecutor(registry).execute(
            plan({"id": "a", "toolName": "slow"}, {"id": "b", "toolName": "slow"}),
            context,
            ExecutionOptions(max_execution_time=1000),
        )

    assert report.timed_out
    assert not report.success
    assert report.errors[-1].step_id == "executor"
    assert report.errors[-1].error == "Execution timeout exceeded"
    assert [r.step_id for r in report.results] == ["a"]


@pytest.mark.asyncio
async def test_loops_are_counted(registry, stub, context):
    stub("again", result=CapabilityResult(success=True, data=1, metadata=ResultMetadata(loop_back=True)))
    stub("tick")

    report = await PlanExecutor(registry).execute(plan(
        {"id": "a", "toolName": "again"},
        {"id": "l", "loop": {
            "condition": {"type": "notExists", "field": "variables.stop"},
            "maxIterations": 2,
            "steps": [{"id": "t", "toolName": "tick"}],
        }},
    ), context)

    assert report.stats.loops_executed == 2
    assert report.stats.steps_executed == 2


@pytest.mark.asyncio
async def test_history_and_references_are_updated(registry, stub, context):
    stub("scan", result=CapabilityResult(
        success=True,
        data={"messages": ["m1"]},
        metadata=ResultMetadata(affected_users=["u1", "u2"]),
    ))

    await PlanExecutor(registry).execute(plan({"id": "s", "toolName": "scan"}, query="scan spam"), context)

    assert context.last_query() == "scan spam"
    assert context.last_referenced["messages"] == ["m1"]
    assert context.last_referenced["users"] == ["u1", "u2"]


@pytest.mark.asyncio
async def test_history_stays_bounded_across_runs(registry, stub, context):
    stub("noop")
    executor = PlanExecutor(registry)

    for index in range(12):
        await executor.execute(plan({"id": "n", "toolName": "noop"}, query=f"run {index}"), context)

    assert len(context.history) == 10


@pytest.mark.asyncio
async def test_progress_callback(registry, stub, context):
    stub("noop")
    updates = []
    executor = PlanExecutor(registry)
    executor.set_progress_callback(updates.append)

    await executor.execute(plan({"id": "a", "toolName": "noop"}, {"id": "b", "toolName": "noop"}), context)

    assert [u.current_step_id for u in updates[:2]] == ["a", "b"]
    assert updates[0].status == ExecutionStatus.RUNNING
    assert updates[-1].status == ExecutionStatus.COMPLETED
    assert updates[-1].completed_steps == 2


@pytest.mark.asyncio
async def test_async_and_failing_progress_callbacks(registry, stub, context):
    stub("noop")
    async_callback = AsyncMock()
    report = await PlanExecutor(registry, progress_callback=async_callback).execute(
        plan({"id": "a", "toolName": "noop"}), context
    )
    assert report.success
    assert async_callback.await_count == 2

    broken = MagicMock(side_effect=RuntimeError("ui gone"))
    report = await PlanExecutor(registry, progress_callback=broken).execute(
        plan({"id": "a2", "toolName": "noop"}), context
    )
    assert report.success


@pytest.mark.asyncio
async def test_plan_documents_are_validated(registry, context):
    executor = PlanExecutor(registry)

    report = await executor.execute({"id": "p", "steps": [{"id": "a"}, {"id": "a"}]}, context)

    assert not report.success
    assert report.plan_id == "p"
    assert report.errors[0].step_id == "executor"
    assert "Duplicate step id" in report.errors[0].error


@pytest.mark.asyncio
async def test_summary_is_deterministic(registry, stub, context):
    stub("noop")
    first = await PlanExecutor(registry).execute(plan({"id": "a", "toolName": "noop"}), context)
    second = await PlanExecutor(registry).execute(plan({"id": "a", "toolName": "noop"}), context.clone())

    assert first.final_output == second.final_output
    assert first.final_output.endswith("+ noop (a)")


@pytest.mark.asyncio
async def test_zero_time_limit_means_unlimited(registry, stub, context):
    stub("slow")
    clock = iter([0.0, 5.0, 10.0, 15.0, 20.0, 25.0, 30.0])

    with patch("planflow.execution.engine.time.perf_counter", side_effect=lambda: next(clock, 30.0)):
        report = await PlanExecutor(registry).execute(
            plan({"id": "a", "toolName": "slow"}, {"id": "b", "toolName": "slow"}),
            context,
            ExecutionOptions(max_execution_time=0),
        )

    assert not report.timed_out
    assert report.success
    assert [r.step_id for r in report.results] == ["a", "b"]
