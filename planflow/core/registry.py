# planflow/core/registry.py
"""
Capability contract and registry.

The registry is an explicit value: it is constructed once by the host and
passed by reference into the executors. There is no module-level instance.
"""
import json
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, TYPE_CHECKING

from planflow.core.exceptions import CapabilityRegistrationError
from planflow.plan.models import (
    CapabilityResult, Condition, MissingParameter, ParameterSchema,
)
from planflow.utils.logging import get_logger

if TYPE_CHECKING:
    from planflow.context.manager import ExecutionContext

logger = get_logger(__name__)


class Capability(ABC):
    """
    A named, side-effecting or query operation the engine can invoke.

    Subclasses set the class attributes and implement ``execute``. Parameter
    schemas are used for presence checks only; values are passed through as
    plain JSON-like data.
    """

    name: str = ""
    description: str = ""
    category: str = "utility"
    parameters: Dict[str, ParameterSchema] = {}

    # Conditions checked against the context before and after execution
    preconditions: List[Condition] = []
    postconditions: List[Condition] = []

    # Chaining and UI hints, consumed by planners and interactive layers
    can_chain_to: List[str] = []
    can_loop_back: bool = False
    requires_confirmation: bool = False

    @abstractmethod
    async def execute(self, params: Dict[str, Any], context: "ExecutionContext") -> CapabilityResult:
        """Run the capability with fully resolved parameters."""

    def detect_missing(self, params: Dict[str, Any], context: "ExecutionContext") -> Optional[MissingParameter]:
        """
        Report the first required parameter that has no value.

        Args:
            params: Resolved parameters
            context: The execution context

        Returns:
            A MissingParameter prompt, or None when everything required is present
        """
        for param_name, schema in self.parameters.items():
            if schema.required and params.get(param_name) is None and schema.default is None:
                return MissingParameter(
                    param=param_name,
                    prompt=f"Please provide {param_name}: {schema.description}",
                    type="select" if schema.enum else "text",
                    options=[{"label": str(option), "value": option} for option in (schema.enum or [])],
                )
        return None

    def confirmation_message(self, params: Dict[str, Any]) -> str:
        rendered = ", ".join(f"{key}={value!r}" for key, value in params.items())
        return f"Run {self.name}({rendered})?"

    def describe(self) -> Dict[str, Any]:
        """Serializable description used by exports and prompts."""
        return {
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "parameters": {
                key: schema.model_dump(exclude_none=True) for key, schema in self.parameters.items()
            },
            "can_chain_to": list(self.can_chain_to),
            "can_loop_back": self.can_loop_back,
            "requires_confirmation": self.requires_confirmation,
        }


class CapabilityRegistry:
    """
    Registry of capabilities, indexed by name and by category.

    Access is guarded by a re-entrant lock so a registry can be shared by
    several conversations running on different threads.
    """

    def __init__(self):
        self._capabilities: Dict[str, Capability] = {}
        self._category_index: Dict[str, List[str]] = {}
        self._lock = threading.RLock()
        self._logger = logger

    def register(self, capability: Capability) -> Capability:
        """
        Register a capability with the registry.

        Args:
            capability: The capability instance to register

        Returns:
            The registered capability (for method chaining)

        Raises:
            CapabilityRegistrationError: If the capability is malformed
        """
        error = self._validate(capability)
        if error:
            raise CapabilityRegistrationError(f"Invalid capability \"{getattr(capability, 'name', '')}\": {error}")

        with self._lock:
            if capability.name in self._capabilities:
                self._logger.warning(f"Capability \"{capability.name}\" is already registered, overwriting")
                self._drop_from_index(capability.name)

            self._capabilities[capability.name] = capability
            self._category_index.setdefault(capability.category, []).append(capability.name)

        self._logger.debug(f"Registered capability: {capability.name} ({capability.category})")
        return capability

    def unregister(self, name: str) -> bool:
        """
        Remove a capability.

        Returns:
            True if it was registered
        """
        with self._lock:
            if name not in self._capabilities:
                self._logger.warning(f"Capability \"{name}\" not found")
                return False
            self._drop_from_index(name)
            del self._capabilities[name]

        self._logger.debug(f"Unregistered capability: {name}")
        return True

    def _drop_from_index(self, name: str) -> None:
        category = self._capabilities[name].category
        members = self._category_index.get(category, [])
        if name in members:
            members.remove(name)
        if not members:
            self._category_index.pop(category, None)

    def get(self, name: str) -> Optional[Capability]:
        return self._capabilities.get(name)

    def get_all(self) -> List[Capability]:
        with self._lock:
            return list(self._capabilities.values())

    def get_by_category(self, category: str) -> List[Capability]:
        with self._lock:
            return [self._capabilities[name] for name in self._category_index.get(category, [])]

    def search(self, query: str) -> List[Capability]:
        """Capabilities whose name, description or category contains ``query``."""
        needle = query.lower().strip()
        if not needle:
            return []
        return [
            capability for capability in self.get_all()
            if needle in capability.name.lower()
            or needle in capability.description.lower()
            or needle in capability.category.lower()
        ]

    def find_best_matches(self, query: str, limit: int = 5) -> List[Capability]:
        """
        Rank capabilities against a free-text query.

        Exact name matches score highest, followed by name, description and
        category hits, then individual words of three letters or more.

        Args:
            query: Free text, usually a fragment of the user request
            limit: Maximum number of capabilities to return

        Returns:
            Best matches first, only those with a positive score
        """
        needle = query.lower().strip()
        if not needle:
            return []

        scored = []
        for capability in self.get_all():
            name = capability.name.lower()
            description = capability.description.lower()
            score = 0
            if name == needle:
                score += 100
            if needle in name:
                score += 50
            if needle in description:
                score += 30
            if capability.category.lower() == needle:
                score += 20
            for word in needle.split():
                if len(word) < 3:
                    continue
                if word in name:
                    score += 10
                if word in description:
                    score += 5
            if score > 0:
                scored.append((score, capability))

        scored.sort(key=lambda item: item[0], reverse=True)
        return [capability for _, capability in scored[:limit]]

    def get_chainable_from(self, name: str) -> List[Capability]:
        """Capabilities that declare they can chain into ``name``."""
        return [capability for capability in self.get_all() if name in capability.can_chain_to]

    def get_chainable_to(self, name: str) -> List[Capability]:
        """Capabilities that ``name`` declares it can chain into."""
        capability = self.get(name)
        if capability is None:
            return []
        return [self._capabilities[target] for target in capability.can_chain_to if target in self._capabilities]

    def get_loopable(self) -> List[Capability]:
        return [capability for capability in self.get_all() if capability.can_loop_back]

    def get_stats(self) -> Dict[str, Any]:
        capabilities = self.get_all()
        categories: Dict[str, int] = {}
        for capability in capabilities:
            categories[capability.category] = categories.get(capability.category, 0) + 1
        return {
            "total_capabilities": len(capabilities),
            "categories": categories,
            "loopable_capabilities": sum(1 for c in capabilities if c.can_loop_back),
            "capabilities_with_chaining": sum(1 for c in capabilities if c.can_chain_to),
        }

    def export_capabilities(self) -> str:
        """Export every capability description as a JSON document."""
        return json.dumps([capability.describe() for capability in self.get_all()], indent=2, default=str)

    def clear(self) -> None:
        with self._lock:
            self._logger.debug("Clearing capability registry")
            self._capabilities.clear()
            self._category_index.clear()

    def __contains__(self, name: str) -> bool:
        return name in self._capabilities

    def __len__(self) -> int:
        return len(self._capabilities)

    @staticmethod
    def _validate(capability: Any) -> Optional[str]:
        """Return a description of the first contract violation, or None."""
        if not isinstance(capability, Capability):
            return "must be a Capability instance"
        if not capability.name or not isinstance(capability.name, str):
            return "name is required and must be a string"
        if not capability.description or not isinstance(capability.description, str):
            return "description is required and must be a string"
        if not capability.category:
            return "category is required"
        if not isinstance(capability.parameters, dict):
            return "parameters must be a mapping"
        for param_name, schema in capability.parameters.items():
            if not isinstance(schema, ParameterSchema):
                return f"parameter \"{param_name}\" must be declared with a ParameterSchema"
        return None
