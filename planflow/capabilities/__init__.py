# planflow/capabilities/__init__.py
"""Capabilities shipped with planflow."""
from .data import (
    BUILTIN_CAPABILITIES,
    DataAggregateCapability,
    DataFilterCapability,
    DataSliceCapability,
    DataSortCapability,
    register_builtin_capabilities,
)

__all__ = [
    "BUILTIN_CAPABILITIES",
    "DataAggregateCapability",
    "DataFilterCapability",
    "DataSliceCapability",
    "DataSortCapability",
    "register_builtin_capabilities",
]
