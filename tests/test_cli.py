# tests/test_cli.py
"""Tests for the command-line interface."""
import json

import pytest
from typer.testing import CliRunner
from unittest.mock import patch

from planflow import __version__
from planflow.cli.main import app, parse_variables

runner = CliRunner()

PIPELINE = {
    "id": "cli_plan",
    "query": "count spam",
    "steps": [
        {"id": "spam", "toolName": "data_filter",
         "params": {"data": "{{reports}}", "field": "type", "value": "spam"}},
        {"id": "total", "toolName": "data_aggregate",
         "params": {"data": "{{spam}}", "operation": "count"}},
    ],
}


@pytest.fixture(autouse=True)
def quiet_logging():
    with patch("planflow.cli.main.setup_logging"):
        yield


@pytest.fixture
def plan_file(tmp_path):
    path = tmp_path / "plan.json"
    path.write_text(json.dumps(PIPELINE))
    return path


def test_version():
    result = runner.invoke(app, ["--version"])

    assert result.exit_code == 0
    assert __version__ in result.stdout


def test_run_success(plan_file):
    reports = json.dumps([{"type": "spam"}, {"type": "raid"}, {"type": "spam"}])

    result = runner.invoke(app, ["run", str(plan_file), "--var", f"reports={reports}", "--json"])

    assert result.exit_code == 0, result.stdout
    report = json.loads(result.stdout)
    assert report["success"] is True
    assert report["results"][-1]["payload"]["data"] == 2


def test_run_failure_exits_non_zero(plan_file):
    # Without the variable, data_filter receives None and fails
    result = runner.invoke(app, ["run", str(plan_file)])

    assert result.exit_code == 1
    assert "Failed to complete" in result.stdout


def test_run_dry_run(plan_file):
    result = runner.invoke(app, ["run", str(plan_file), "--dry-run"])

    assert result.exit_code == 0
    assert "Successfully completed" in result.stdout


def test_run_invalid_plan(tmp_path):
    path = tmp_path / "plan.txt"
    path.write_text("nothing")

    result = runner.invoke(app, ["run", str(path)])

    assert result.exit_code == 1
    assert "Unsupported plan file type" in result.stdout


def test_validate(plan_file, tmp_path):
    assert runner.invoke(app, ["validate", str(plan_file)]).exit_code == 0

    bad = tmp_path / "bad.json"
    bad.write_text(json.dumps({"id": "bad", "steps": [{"id": "x", "toolName": "ghost"}]}))
    result = runner.invoke(app, ["validate", str(bad)])

    assert result.exit_code == 1
    assert "unknown capability 'ghost'" in result.stdout


def test_capabilities_lists_builtins():
    result = runner.invoke(app, ["capabilities", "--category", "data"])

    assert result.exit_code == 0
    for name in ("data_filter", "data_sort", "data_slice", "data_aggregate"):
        assert name in result.stdout


def test_parse_variables():
    assert parse_variables(["a=1", "b=text", "c=[1, 2]", "d="]) == {"a": 1, "b": "text", "c": [1, 2], "d": ""}
