# planflow/plan/models.py
"""
Data models for plans, steps, capability payloads and execution reports.

Plan documents produced by planners use camelCase keys (``toolName``,
``dependsOn``, ``onError``...). Every model here accepts those as well as the
snake_case field names.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from planflow.constants import DEFAULT_MAX_ITERATIONS


class _PlanModel(BaseModel):
    """Base for plan-document models: camelCase aliases, snake_case names."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ConditionType(str, Enum):
    """Predicate tags understood by the condition evaluator."""
    EQUALS = "equals"
    NOT_EQUALS = "notEquals"
    GREATER_THAN = "greaterThan"
    LESS_THAN = "lessThan"
    GREATER_THAN_OR_EQUAL = "greaterThanOrEqual"
    LESS_THAN_OR_EQUAL = "lessThanOrEqual"
    CONTAINS = "contains"
    NOT_CONTAINS = "notContains"
    MATCHES = "matches"
    EXISTS = "exists"
    NOT_EXISTS = "notExists"
    CUSTOM = "custom"


class Condition(_PlanModel):
    """A single predicate over the execution context."""
    type: ConditionType = Field(..., description="Predicate tag")
    field: str = Field("", description="Dot path into the context, e.g. step_outputs.check.score")
    value: Any = Field(None, description="Comparison value where the predicate needs one")
    custom_fn: Optional[Callable[[Any], bool]] = Field(
        None, exclude=True, description="Predicate called with the context for custom conditions"
    )
    message: Optional[str] = Field(None, description="Human readable description")


ConditionSpec = Union[Condition, List[Condition]]


class LoopSpec(_PlanModel):
    """Bounded loop: run ``steps`` while ``condition`` holds."""
    condition: Condition = Field(..., description="Checked before every iteration")
    max_iterations: int = Field(DEFAULT_MAX_ITERATIONS, ge=0, description="Iteration bound")
    steps: List["Step"] = Field(default_factory=list, description="Loop body")


class ErrorHandling(_PlanModel):
    """What to do once a step has failed."""
    retry: int = Field(0, ge=0, description="Extra attempts after the first failure")
    fallback: List["Step"] = Field(default_factory=list, description="Steps run once retries and healing are exhausted")
    continue_on_error: bool = Field(False, description="Skip instead of failing after the fallback")


class Step(_PlanModel):
    """One node of a plan: a capability call, a conditional router or a loop."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str = Field(..., min_length=1, description="Unique id within the plan")
    capability: Optional[str] = Field(None, alias="toolName", description="Name of the capability to invoke")
    params: Dict[str, Any] = Field(default_factory=dict, description="Parameters, may contain templates")
    condition: Optional[ConditionSpec] = Field(None, description="Guard condition, AND across a list")
    if_true: Optional[List["Step"]] = Field(None, description="Steps run when the condition holds")
    if_false: Optional[List["Step"]] = Field(None, description="Steps run when the condition fails")
    loop: Optional[LoopSpec] = Field(None, description="Loop specification")
    on_error: Optional[ErrorHandling] = Field(None, description="Retry, fallback and continue-on-error")
    output_as: Optional[str] = Field(None, description="Variable that receives the step output")
    depends_on: List[str] = Field(default_factory=list, description="Step ids that must have produced output")

    @property
    def conditions(self) -> List[Condition]:
        """The guard condition normalised to a list."""
        if self.condition is None:
            return []
        if isinstance(self.condition, list):
            return list(self.condition)
        return [self.condition]

    @property
    def retry_limit(self) -> int:
        return self.on_error.retry if self.on_error else 0

    def children(self) -> List["Step"]:
        """Every directly nested step: branches, loop body and fallback."""
        nested: List[Step] = []
        nested.extend(self.if_true or [])
        nested.extend(self.if_false or [])
        if self.loop:
            nested.extend(self.loop.steps)
        if self.on_error:
            nested.extend(self.on_error.fallback)
        return nested


class PlanMetadata(_PlanModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    created_at: datetime = Field(default_factory=datetime.now)
    estimated_time: Optional[float] = None
    requires_user_input: bool = False
    affects_users: Optional[int] = None
    affects_messages: Optional[int] = None


class Plan(_PlanModel):
    """An ordered sequence of steps produced from one query."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str = Field(..., min_length=1, description="Plan id")
    query: str = Field("", description="The request this plan was built for")
    steps: List[Step] = Field(default_factory=list, description="Top-level steps in execution order")
    metadata: Optional[PlanMetadata] = Field(None, description="Planner metadata")

    @model_validator(mode="after")
    def _check_unique_ids(self) -> "Plan":
        seen: Set[str] = set()
        pending = list(self.steps)
        while pending:
            step = pending.pop()
            if step.id in seen:
                raise ValueError(f"Duplicate step id: {step.id}")
            seen.add(step.id)
            pending.extend(step.children())
        return self

    def iter_steps(self):
        """Yield every step in the plan, depth first, in declared order."""
        def _walk(steps):
            for step in steps:
                yield step
                yield from _walk(step.children())
        return _walk(self.steps)

    def step_ids(self) -> List[str]:
        return [step.id for step in self.iter_steps()]


# --- Capability contract payloads ---

class ParameterSchema(_PlanModel):
    """Declared shape of one capability parameter."""
    type: str = Field(..., description="string, number, boolean, array, object or an id type")
    description: str = Field(..., description="What the parameter is for")
    required: bool = Field(..., description="Whether the capability needs it")
    default: Any = None
    enum: Optional[List[Any]] = None
    items: Optional["ParameterSchema"] = None
    properties: Optional[Dict[str, "ParameterSchema"]] = None


class MissingParameter(_PlanModel):
    """A parameter the capability cannot run without, plus how to ask for it."""
    param: str
    prompt: str
    type: str = Field("text", description="text, button or select")
    options: List[Dict[str, Any]] = Field(default_factory=list)


class ResultMetadata(_PlanModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    execution_time: Optional[float] = Field(None, description="Milliseconds spent in the capability")
    affected_users: Optional[List[Any]] = None
    affected_messages: Optional[List[Any]] = None
    loop_back: bool = Field(False, description="The capability suggests running it again")
    next_suggested_capability: Optional[str] = Field(
        None, alias="nextSuggestedTool", description="Hint for the next step"
    )


class CapabilityResult(_PlanModel):
    """What a capability returns."""
    success: bool
    data: Any = None
    error: Optional[str] = None
    message: Optional[str] = None
    metadata: ResultMetadata = Field(default_factory=ResultMetadata)


class StepResult(BaseModel):
    """Outcome of one executed step."""
    step_id: str = Field(..., description="ID of the executed step")
    capability: str = Field(..., description="Capability actually invoked")
    payload: CapabilityResult = Field(..., description="What the capability returned")
    elapsed_ms: float = Field(0.0, description="Time taken in milliseconds")


class StepError(BaseModel):
    step_id: str
    error: str


class ExecutionStats(BaseModel):
    total_time_ms: float = 0.0
    steps_executed: int = 0
    steps_skipped: int = 0
    loops_executed: int = 0


class PlanExecutionReport(BaseModel):
    """Everything the host gets back from a run."""
    plan_id: str = Field(..., description="ID of the executed plan")
    success: bool = Field(..., description="True when no unrecovered error occurred")
    results: List[StepResult] = Field(default_factory=list)
    errors: List[StepError] = Field(default_factory=list)
    final_output: str = Field("", description="Deterministic natural-language summary")
    timed_out: bool = Field(False, description="The wall-clock budget was exhausted")
    stats: ExecutionStats = Field(default_factory=ExecutionStats)


class ExecutionOptions(_PlanModel):
    dry_run: bool = Field(False, description="Resolve and record, but never invoke capabilities")
    verbose: bool = Field(False, description="Log resolved parameters and decisions")
    pause_on_error: bool = Field(False, description="Stop at the first unrecovered error")
    max_execution_time: Optional[float] = Field(None, ge=0, description="Wall-clock budget in milliseconds")


class ExecutionStatus(str, Enum):
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"


class ExecutionProgress(BaseModel):
    total_steps: int
    completed_steps: int
    current_step_id: Optional[str] = None
    status: ExecutionStatus = ExecutionStatus.RUNNING


class HistoryEntry(BaseModel):
    """One past run as remembered by the context."""
    query: str
    timestamp: datetime = Field(default_factory=datetime.now)
    results: Dict[str, Any] = Field(default_factory=dict)


LoopSpec.model_rebuild()
ErrorHandling.model_rebuild()
Step.model_rebuild()
ParameterSchema.model_rebuild()
