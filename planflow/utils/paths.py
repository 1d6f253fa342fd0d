# planflow/utils/paths.py
"""
Dot-path traversal over step outputs and context state.
"""
from collections.abc import Mapping, Sequence
from typing import Any, Iterable


class _Missing:
    """Marker for a path segment that could not be resolved."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING = _Missing()


def get_segment(current: Any, segment: str) -> Any:
    """
    Look up one path segment on ``current``.

    Mappings use key lookup, lists and tuples accept integer indexes, and any
    other object exposes its public attributes.

    Returns:
        The value, or MISSING when the segment does not exist.
    """
    if current is None or current is MISSING:
        return MISSING

    if isinstance(current, Mapping):
        return current.get(segment, MISSING)

    if isinstance(current, Sequence) and not isinstance(current, (str, bytes)):
        try:
            return current[int(segment)]
        except (ValueError, IndexError):
            return MISSING

    if segment.startswith("_"):
        return MISSING
    return getattr(current, segment, MISSING)


def walk_path(root: Any, segments: Iterable[str]) -> Any:
    """Follow ``segments`` from ``root``, returning MISSING on the first gap."""
    current = root
    for segment in segments:
        current = get_segment(current, segment)
        if current is MISSING:
            return MISSING
    return current


def split_path(path: str) -> list:
    return [part for part in path.split(".") if part != ""]
