# tests/conftest.py
"""
Common test fixtures for planflow.
"""
import pytest
from unittest.mock import AsyncMock, patch

from planflow.context.manager import ExecutionContext
from planflow.core.registry import Capability, CapabilityRegistry
from planflow.plan.models import CapabilityResult


class StubCapability(Capability):
    """Capability whose ``execute`` is an AsyncMock, so calls can be asserted."""

    def __init__(self, name, result=None, side_effect=None, category="test",
                 preconditions=None, postconditions=None, parameters=None):
        self.name = name
        self.description = f"Stub capability {name}"
        self.category = category
        self.parameters = parameters or {}
        self.preconditions = preconditions or []
        self.postconditions = postconditions or []
        self.execute = AsyncMock(
            return_value=result if result is not None else CapabilityResult(success=True, data={"ok": True}),
            side_effect=side_effect,
        )

    async def execute(self, params, context):  # replaced per instance in __init__
        return CapabilityResult(success=True)


def ok(data=None, **kwargs):
    """Shorthand for a successful capability payload."""
    return CapabilityResult(success=True, data=data, **kwargs)


def failed(error="boom"):
    return CapabilityResult(success=False, error=error)


@pytest.fixture
def registry():
    """An empty capability registry."""
    return CapabilityRegistry()


@pytest.fixture
def context():
    """A fresh execution context."""
    return ExecutionContext()


@pytest.fixture
def stub(registry):
    """Factory that creates a StubCapability and registers it."""
    def _make(name, **kwargs):
        capability = StubCapability(name, **kwargs)
        registry.register(capability)
        return capability
    return _make


@pytest.fixture
def no_sleep():
    """Make retry backoff instantaneous and observable."""
    with patch("planflow.execution.step_executor.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
        yield mock_sleep
