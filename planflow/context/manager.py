# planflow/context/manager.py
"""
Execution context: the shared, mutable state of one conversation.

A context outlives a single run. Variables, step outputs, the bounded run
history and the "last referenced" buckets carry over from one plan to the
next, which is what lets a later request say "ban them".
"""
import copy
import time
from collections import deque
from typing import Any, Deque, Dict, List, Mapping, Optional, Tuple

from planflow.constants import CACHE_TTL_SECONDS, HISTORY_LIMIT, REFERENCE_KEYS, SUMMARY_HISTORY_WINDOW
from planflow.plan.models import HistoryEntry
from planflow.utils.logging import get_logger
from planflow.utils.paths import MISSING, split_path, walk_path

logger = get_logger(__name__)

# camelCase roots accepted in condition field paths
_FIELD_ALIASES = {
    "stepResults": ("step_outputs",),
    "stepOutputs": ("step_outputs",),
    "currentPlan": ("current_plan",),
    "lastReferenced": ("last_referenced",),
    "lastUsers": ("last_referenced", "users"),
    "lastMessages": ("last_referenced", "messages"),
    "lastChannels": ("last_referenced", "channels"),
}

_FIELD_ROOTS = ("variables", "step_outputs", "last_referenced", "services", "history", "current_plan")

# Phrases that refer back to each bucket, checked in order
_REFERENCE_PHRASES: List[Tuple[str, Tuple[str, ...]]] = [
    ("users", ("them", "those users", "these users", "the users")),
    ("messages", ("those messages", "these messages", "the messages")),
    ("channels", ("that channel", "those channels", "the channel")),
]


class ExecutionContext:
    """
    Shared state for one conversation.

    Holds the variables and step outputs written by plans, a ring buffer of
    recent runs, the "last referenced" entity buckets, a short-TTL cache and
    the injected service handles that are passed through to capabilities.
    """

    def __init__(
        self,
        services: Optional[Dict[str, Any]] = None,
        history_limit: int = HISTORY_LIMIT,
        cache_ttl: float = CACHE_TTL_SECONDS,
    ):
        self.services: Dict[str, Any] = dict(services or {})
        self.variables: Dict[str, Any] = {}
        self.step_outputs: Dict[str, Any] = {}
        self.history: Deque[HistoryEntry] = deque(maxlen=history_limit)
        self.last_referenced: Dict[str, List[Any]] = {}
        self.current_plan = None

        self._cache: Dict[str, Tuple[Any, float]] = {}
        self._cache_ttl = cache_ttl
        self._logger = logger

    # --- Step outputs and variables ---

    def get_step_output(self, step_id: str) -> Any:
        return self.step_outputs.get(step_id)

    def set_step_output(self, step_id: str, output: Any) -> None:
        self.step_outputs[step_id] = output

    def has_step_output(self, step_id: str) -> bool:
        return step_id in self.step_outputs

    def get_variable(self, name: str) -> Any:
        return self.variables.get(name)

    def set_variable(self, name: str, value: Any) -> None:
        self.variables[name] = value

    def has_variable(self, name: str) -> bool:
        return name in self.variables

    # --- Field paths ---

    def resolve_field(self, path: str) -> Any:
        """
        Resolve a dot path such as ``step_outputs.check_trust.score``.

        The first segment names a context root (``variables``,
        ``step_outputs``, ``last_referenced``, ``services``, ``history``,
        ``current_plan``) or one of its camelCase aliases.

        Returns:
            The value, or MISSING when any segment is absent
        """
        segments = split_path(path)
        if not segments:
            return MISSING

        head, rest = segments[0], segments[1:]
        if head in _FIELD_ALIASES:
            segments = list(_FIELD_ALIASES[head]) + rest
        elif head not in _FIELD_ROOTS:
            return MISSING

        root = {name: getattr(self, name) for name in _FIELD_ROOTS}
        root["history"] = list(self.history)
        return walk_path(root, segments)

    # --- History and references ---

    def add_to_history(self, query: str, results: Mapping[str, Any]) -> None:
        """
        Record a finished run and refresh the reference buckets from it.

        Args:
            query: The query the plan was built for
            results: Step outputs to remember (copied)
        """
        self.history.append(HistoryEntry(query=query, results=copy.deepcopy(dict(results))))
        self.update_references(results)

    def update_references(self, results: Mapping[str, Any]) -> None:
        """Scan result payloads for users, messages and channels."""
        for step_id, result in results.items():
            if not result:
                continue

            if isinstance(result, Mapping):
                for bucket, keys in REFERENCE_KEYS.items():
                    for key in keys:
                        found = result.get(key)
                        if found:
                            self.last_referenced[bucket] = (
                                list(found) if isinstance(found, (list, tuple, set)) else [found]
                            )
                            break

            # Lists of objects carrying ids are treated as principals
            elif isinstance(result, (list, tuple)):
                user_ids = [
                    item.get("user_id") or item.get("userId") or item.get("id")
                    for item in result
                    if isinstance(item, Mapping)
                    and (item.get("user_id") or item.get("userId") or item.get("id"))
                ]
                if user_ids:
                    self.last_referenced["users"] = user_ids

    def resolve_reference(self, reference: str) -> Optional[List[Any]]:
        """
        Resolve an anaphoric phrase ("them", "those messages", "that channel").

        Returns:
            The matching bucket, or None when nothing applies
        """
        normalized = reference.lower().strip()

        for bucket, phrases in _REFERENCE_PHRASES:
            if any(phrase in normalized for phrase in phrases):
                return self.last_referenced.get(bucket)

        if normalized in ("that", "it"):
            for bucket in ("users", "messages", "channels"):
                if self.last_referenced.get(bucket):
                    return self.last_referenced[bucket]

        return None

    def conversation_summary(self) -> str:
        """Short description of the last few runs, for prompts."""
        if not self.history:
            return "No previous conversation"

        recent = list(self.history)[-SUMMARY_HISTORY_WINDOW:]
        return "\n".join(
            f"{index}. \"{entry.query}\" ({len(entry.results)} results)"
            for index, entry in enumerate(recent, start=1)
        )

    def last_query(self) -> Optional[str]:
        return self.history[-1].query if self.history else None

    def search_history(self, keyword: str) -> List[HistoryEntry]:
        keyword = keyword.lower()
        return [entry for entry in self.history if keyword in entry.query.lower()]

    # --- Cache ---

    def get_cache(self, key: str) -> Any:
        """Return a cached value, or None once it is older than the TTL."""
        cached = self._cache.get(key)
        if cached is None:
            return None

        value, stored_at = cached
        if time.monotonic() - stored_at > self._cache_ttl:
            del self._cache[key]
            return None
        return value

    def set_cache(self, key: str, value: Any) -> None:
        self._cache[key] = (value, time.monotonic())

    def clear_cache(self) -> None:
        self._cache.clear()

    # --- Inspection and copying ---

    def snapshot(self) -> Dict[str, Any]:
        """Debug view of the context."""
        return {
            "history": len(self.history),
            "step_outputs": len(self.step_outputs),
            "variables": dict(self.variables),
            "last_referenced": {bucket: len(items) for bucket, items in self.last_referenced.items()},
            "cache_size": len(self._cache),
            "services": sorted(self.services),
            "current_plan": getattr(self.current_plan, "id", None),
        }

    def clone(self) -> "ExecutionContext":
        """
        Copy the context for an isolated run.

        State is deep-copied. Service handles are shared, since they are
        opaque connections rather than conversation state.
        """
        cloned = ExecutionContext(
            services=self.services,
            history_limit=self.history.maxlen or HISTORY_LIMIT,
            cache_ttl=self._cache_ttl,
        )
        cloned.variables = copy.deepcopy(self.variables)
        cloned.step_outputs = copy.deepcopy(self.step_outputs)
        cloned.history.extend(entry.model_copy(deep=True) for entry in self.history)
        cloned.last_referenced = copy.deepcopy(self.last_referenced)
        cloned.current_plan = self.current_plan
        return cloned
