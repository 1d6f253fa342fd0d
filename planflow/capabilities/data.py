# planflow/capabilities/data.py
"""
Built-in data manipulation capabilities.

These operate on lists of records, usually the output of an earlier step
referenced with a template such as ``"{{fetch.items}}"``. Invalid input is
reported through ``CapabilityResult(success=False)`` rather than raised.
"""
import math
from numbers import Number
from typing import Any, Dict, List, Optional

from planflow.core.registry import Capability, CapabilityRegistry
from planflow.plan.models import CapabilityResult, ParameterSchema, ResultMetadata
from planflow.utils.logging import get_logger
from planflow.utils.paths import MISSING, split_path, walk_path

logger = get_logger(__name__)

DATA_CATEGORY = "data"


def get_nested_value(item: Any, path: Optional[str]) -> Any:
    """Dot-path lookup into a record; None when any segment is missing."""
    if not path:
        return item
    value = walk_path(item, split_path(path))
    return None if value is MISSING else value


def _as_number(value: Any) -> float:
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, Number):
        return float(value)
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _data_error(message: str) -> CapabilityResult:
    return CapabilityResult(success=False, error=message)


_DATA_PARAM = ParameterSchema(
    type="array",
    description="Records to operate on, usually a reference to an earlier step",
    required=True,
)


class DataFilterCapability(Capability):
    """Keep the records whose field satisfies a comparison."""

    name = "data_filter"
    description = "Filter an array of records on a field (equals, contains, greater_than, ...)"
    category = DATA_CATEGORY
    parameters = {
        "data": _DATA_PARAM,
        "field": ParameterSchema(type="string", description="Dot path of the field to compare", required=False),
        "condition": ParameterSchema(
            type="string",
            description="Comparison to apply",
            required=False,
            default="equals",
            enum=["equals", "not_equals", "contains", "greater_than", "less_than", "in_array"],
        ),
        "value": ParameterSchema(type="string", description="Value to compare against", required=False),
    }
    can_chain_to = ["data_sort", "data_slice", "data_aggregate"]

    async def execute(self, params: Dict[str, Any], context) -> CapabilityResult:
        data = params.get("data")
        field = params.get("field")
        condition = params.get("condition") or "equals"
        value = params.get("value")

        if not isinstance(data, list):
            return _data_error("Data must be an array")
        if condition not in self.parameters["condition"].enum:
            return _data_error(f"Unsupported filter condition: {condition}")
        if not field:
            logger.warning("No filter field specified, returning original data")
            return CapabilityResult(
                success=True, data=list(data), message=f"No filters applied. Returned {len(data)} items."
            )

        def _keep(item: Any) -> bool:
            actual = get_nested_value(item, field)
            if condition == "equals":
                return actual == value
            if condition == "not_equals":
                return actual != value
            if condition == "contains":
                return isinstance(actual, str) and str(value).lower() in actual.lower()
            if condition == "greater_than":
                return _as_number(actual) > _as_number(value)
            if condition == "less_than":
                return _as_number(actual) < _as_number(value)
            return isinstance(value, list) and actual in value

        filtered = [item for item in data if _keep(item)]
        logger.info(f"Filtered {len(data)} items to {len(filtered)} using {condition} on {field}")

        return CapabilityResult(
            success=True,
            data=filtered,
            message=f"Filtered from {len(data)} to {len(filtered)} items using {condition} on {field}",
            metadata=ResultMetadata(original_count=len(data), filtered_count=len(filtered)),
        )


class DataSortCapability(Capability):
    """Sort records by a field; records without the field go last."""

    name = "data_sort"
    description = "Sort an array of records by a field in ascending or descending order"
    category = DATA_CATEGORY
    parameters = {
        "data": _DATA_PARAM,
        "by": ParameterSchema(type="string", description="Dot path of the sort key", required=True),
        "order": ParameterSchema(
            type="string", description="Sort order", required=False, default="asc",
            enum=["asc", "desc", "ascending", "descending"],
        ),
    }
    can_chain_to = ["data_slice", "data_aggregate"]

    async def execute(self, params: Dict[str, Any], context) -> CapabilityResult:
        data = params.get("data")
        by = params.get("by")
        order = params.get("order") or "asc"

        if not isinstance(data, list):
            return _data_error("Data must be an array")
        if not by:
            return _data_error("Sort field 'by' is required")
        if order not in self.parameters["order"].enum:
            return _data_error(f"Unsupported sort order: {order}")

        descending = order in ("desc", "descending")
        present = [item for item in data if get_nested_value(item, by) is not None]
        absent = [item for item in data if get_nested_value(item, by) is None]

        def _key(item: Any):
            value = get_nested_value(item, by)
            if isinstance(value, Number) and not isinstance(value, bool):
                return (0, value, "")
            return (1, 0, str(value))

        ordered = sorted(present, key=_key, reverse=descending) + absent
        normalized = "descending" if descending else "ascending"
        logger.info(f"Sorted {len(ordered)} items by {by} in {normalized} order")

        return CapabilityResult(
            success=True,
            data=ordered,
            message=f"Sorted {len(ordered)} items by {by} in {normalized} order",
        )


class DataSliceCapability(Capability):
    name = "data_slice"
    description = "Take the first or last N records, or a start/end range"
    category = DATA_CATEGORY
    parameters = {
        "data": _DATA_PARAM,
        "mode": ParameterSchema(
            type="string", description="Slice mode", required=False, default="first",
            enum=["first", "last", "range"],
        ),
        "count": ParameterSchema(type="number", description="Items to take in first/last mode", required=False, default=1),
        "start": ParameterSchema(type="number", description="Start index in range mode", required=False),
        "end": ParameterSchema(type="number", description="End index in range mode", required=False),
    }
    can_chain_to = ["data_aggregate"]

    async def execute(self, params: Dict[str, Any], context) -> CapabilityResult:
        data = params.get("data")
        mode = params.get("mode") or "first"

        if not isinstance(data, list):
            return _data_error("Data must be an array")

        try:
            count = int(params.get("count") or 1)
            start = int(params.get("start") or 0)
            end = params.get("end")
            end = None if end is None else int(end)
        except (TypeError, ValueError):
            return _data_error("count, start and end must be numbers")

        if count < 0:
            return _data_error("count must not be negative")

        if mode == "first":
            sliced = data[:count]
        elif mode == "last":
            sliced = data[-count:] if count else []
        elif mode == "range":
            sliced = data[start:end]
        else:
            return _data_error(f"Unsupported slice mode: {mode}")

        return CapabilityResult(
            success=True,
            data=sliced,
            message=f"Took {len(sliced)} of {len(data)} items ({mode})",
        )


class DataAggregateCapability(Capability):
    """count, sum, avg, min or max over a field, optionally grouped."""

    name = "data_aggregate"
    description = "Aggregate records: count, sum, avg, min or max, optionally grouped by a field"
    category = DATA_CATEGORY
    parameters = {
        "data": _DATA_PARAM,
        "operation": ParameterSchema(
            type="string", description="Aggregation to perform", required=True,
            enum=["count", "sum", "avg", "average", "min", "max"],
        ),
        "field": ParameterSchema(type="string", description="Field to aggregate (not needed for count)", required=False),
        "group_by": ParameterSchema(type="string", description="Field to group by first", required=False),
    }

    async def execute(self, params: Dict[str, Any], context) -> CapabilityResult:
        data = params.get("data")
        operation = params.get("operation")
        field = params.get("field")
        group_by = params.get("group_by") or params.get("groupBy")

        if not isinstance(data, list):
            return _data_error("Data must be an array")
        if operation not in self.parameters["operation"].enum:
            return _data_error(f"Unsupported aggregation: {operation}")
        if operation != "count" and not field:
            return _data_error(f"Field required for {operation} operation")

        if group_by:
            groups: Dict[str, List[Any]] = {}
            for item in data:
                groups.setdefault(str(get_nested_value(item, group_by)), []).append(item)
            result: Any = {key: self._aggregate(items, operation, field) for key, items in groups.items()}
        else:
            result = self._aggregate(data, operation, field)

        logger.info(f"Aggregated {len(data)} items with {operation}")
        return CapabilityResult(
            success=True,
            data=result,
            metadata=ResultMetadata(operation=operation, total_items=len(data)),
        )

    @staticmethod
    def _aggregate(items: List[Any], operation: str, field: Optional[str]) -> Any:
        if operation == "count":
            return len(items)
        if not items:
            return 0

        values = [_as_number(get_nested_value(item, field)) for item in items]
        if operation == "sum":
            total = math.fsum(values)
        elif operation in ("avg", "average"):
            total = math.fsum(values) / len(values)
        elif operation == "min":
            total = min(values)
        else:
            total = max(values)
        return int(total) if float(total).is_integer() else total


BUILTIN_CAPABILITIES = [
    DataFilterCapability,
    DataSortCapability,
    DataSliceCapability,
    DataAggregateCapability,
]


def register_builtin_capabilities(registry: CapabilityRegistry) -> List[Capability]:
    """Register the data capabilities, returning the instances."""
    registered = [registry.register(capability_cls()) for capability_cls in BUILTIN_CAPABILITIES]
    logger.debug(f"Registered {len(registered)} built-in capabilities")
    return registered
