"""
Main command-line interface for planflow.
"""
import sys
import json
import asyncio
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from planflow import __version__
from planflow.capabilities import register_builtin_capabilities
from planflow.config import config_manager
from planflow.context.manager import ExecutionContext
from planflow.core.exceptions import PlanValidationError
from planflow.core.registry import CapabilityRegistry
from planflow.execution.engine import PlanExecutor
from planflow.execution.error_recovery import ModelHealingAdvisor, SelfHealingAdvisor
from planflow.plan.loader import load_plan, validate_plan
from planflow.plan.models import ExecutionOptions, PlanExecutionReport
from planflow.safety.validator import SafetyValidator
from planflow.utils.logging import setup_logging, get_logger

# Create the app
app = typer.Typer(help="planflow: execute multi-step capability plans")
logger = get_logger(__name__)
console = Console()


def version_callback(value: bool):
    """Display version information and exit."""
    if value:
        console.print(f"planflow version: {__version__}")
        sys.exit(0)


@app.callback()
def main(
    debug: bool = typer.Option(
        False, "--debug", "-d", help="Enable debug mode"
    ),
    version: bool = typer.Option(
        False, "--version", "-v", callback=version_callback, is_eager=True, help="Show version and exit"
    ),
):
    """planflow: execute multi-step capability plans"""
    config_manager.config.debug = debug or config_manager.config.debug
    setup_logging(debug=config_manager.config.debug)


def build_registry() -> CapabilityRegistry:
    """Registry holding every capability available from the command line."""
    registry = CapabilityRegistry()
    register_builtin_capabilities(registry)
    return registry


def parse_variables(assignments: List[str]) -> Dict[str, Any]:
    """
    Parse ``name=value`` pairs. Values that are valid JSON keep their JSON
    type, anything else is taken as a string.
    """
    variables: Dict[str, Any] = {}
    for assignment in assignments:
        name, sep, raw = assignment.partition("=")
        name = name.strip()
        if not sep or not name:
            raise typer.BadParameter(f"Expected NAME=VALUE, got '{assignment}'")
        try:
            variables[name] = json.loads(raw)
        except json.JSONDecodeError:
            variables[name] = raw
    return variables


def _build_advisors(registry: CapabilityRegistry, use_model: bool) -> Tuple[SafetyValidator, Optional[SelfHealingAdvisor]]:
    settings = config_manager.config
    if not use_model:
        return SafetyValidator(settings=settings.safety), None

    # Imported here so the model SDK is only loaded when it is used
    from planflow.ai.client import GeminiClient

    try:
        client = GeminiClient()
    except ValueError as e:
        console.print(f"[yellow]Model advisor disabled:[/yellow] {e}")
        return SafetyValidator(settings=settings.safety), None

    review_client = client if settings.safety.advisory_enabled else None
    return (
        SafetyValidator(settings=settings.safety, model_client=review_client),
        ModelHealingAdvisor(registry, client),
    )


def render_report(report: PlanExecutionReport) -> None:
    """Print the results table, any errors and the summary panel."""
    if report.results:
        table = Table(title=f"Plan {report.plan_id}")
        table.add_column("Step", style="cyan", no_wrap=True)
        table.add_column("Capability", style="magenta", no_wrap=True)
        table.add_column("Status")
        table.add_column("Time (ms)", justify="right")
        for result in report.results:
            status = "[green]ok[/green]" if result.payload.success else "[red]failed[/red]"
            table.add_row(result.step_id, result.capability, status, f"{result.elapsed_ms:.1f}")
        console.print(table)

    if report.errors:
        console.print("[bold red]Errors:[/bold red]")
        for error in report.errors:
            console.print(f"  [red]{escape(error.step_id)}[/red]: {escape(error.error)}")

    stats = report.stats
    footer = (
        f"executed {stats.steps_executed}, skipped {stats.steps_skipped}, "
        f"loops {stats.loops_executed}, {stats.total_time_ms:.0f}ms"
    )
    console.print(Panel(
        f"{escape(report.final_output)}\n\n[dim]{footer}[/dim]",
        title="Summary",
        expand=False,
        border_style="green" if report.success else "red",
    ))


@app.command()
def run(
    plan_file: Path = typer.Argument(..., help="Plan document (.json or .toml)"),
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Resolve parameters without invoking capabilities."
    ),
    pause_on_error: bool = typer.Option(
        False, "--pause-on-error", help="Stop at the first unrecovered error."
    ),
    max_time: Optional[float] = typer.Option(
        None, "--max-time", help="Wall-clock budget in milliseconds."
    ),
    var: List[str] = typer.Option(
        [], "--var", help="Initial variable as NAME=VALUE (repeatable)."
    ),
    advisor: bool = typer.Option(
        False, "--advisor/--no-advisor", help="Use the model-backed self-healing advisor."
    ),
    as_json: bool = typer.Option(
        False, "--json", help="Print the raw execution report as JSON."
    ),
):
    """Execute a plan with the built-in capabilities."""
    try:
        plan = load_plan(plan_file)
    except PlanValidationError as e:
        console.print(f"[bold red]Error:[/bold red] {escape(e.message)}")
        sys.exit(1)

    registry = build_registry()
    safety_gate, healing_advisor = _build_advisors(registry, advisor)
    executor = PlanExecutor(
        registry,
        safety_gate=safety_gate,
        advisor=healing_advisor,
        settings=config_manager.config.execution,
    )

    execution = config_manager.config.execution
    context = ExecutionContext(history_limit=execution.history_limit, cache_ttl=execution.cache_ttl_seconds)
    context.variables.update(parse_variables(var))

    options = ExecutionOptions(
        dry_run=dry_run,
        verbose=config_manager.config.debug,
        pause_on_error=pause_on_error,
        max_execution_time=max_time,
    )

    report = asyncio.run(executor.execute(plan, context, options))

    if as_json:
        typer.echo(report.model_dump_json(indent=2))
    else:
        render_report(report)

    if not report.success:
        sys.exit(1)


@app.command()
def validate(
    plan_file: Path = typer.Argument(..., help="Plan document (.json or .toml)"),
):
    """Check a plan document without running it."""
    try:
        plan = load_plan(plan_file)
    except PlanValidationError as e:
        console.print(f"[bold red]Invalid plan:[/bold red] {escape(e.message)}")
        sys.exit(1)

    problems = validate_plan(plan, build_registry())
    if problems:
        console.print(f"[bold red]Plan {plan.id} has {len(problems)} problem(s):[/bold red]")
        for problem in problems:
            console.print(f"  - {escape(problem)}")
        sys.exit(1)

    console.print(f"[green]Plan {plan.id} is valid[/green] ({len(plan.step_ids())} steps)")


@app.command()
def capabilities(
    category: Optional[str] = typer.Option(None, "--category", "-c", help="Only show this category."),
):
    """List the registered capabilities."""
    registry = build_registry()
    items = registry.get_by_category(category) if category else registry.get_all()

    table = Table(title="Capabilities")
    table.add_column("Name", style="cyan", no_wrap=True)
    table.add_column("Category", style="magenta", no_wrap=True)
    table.add_column("Description")
    for capability in sorted(items, key=lambda c: c.name):
        table.add_row(capability.name, capability.category, capability.description)
    console.print(table)
