# planflow/ai/parser.py
"""
Strict parsing of model replies into pydantic models.

A reply must be exactly one JSON object, optionally wrapped in a single
markdown code fence. Prose around the object, several objects, or fields
outside the target schema are all rejected.
"""
import re
from typing import Type, TypeVar

from pydantic import BaseModel, ValidationError

from planflow.utils.logging import get_logger

logger = get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

_FENCED_REPLY = re.compile(r"^```(?:json)?\s*\n?(.*?)\n?```$", re.DOTALL)


class ModelReplyError(ValueError):
    """Raised when a model reply does not match the expected schema."""
    pass


def unwrap_reply(response_text: str) -> str:
    """Strip surrounding whitespace and one enclosing code fence."""
    text = response_text.strip()
    fenced = _FENCED_REPLY.match(text)
    if fenced:
        text = fenced.group(1).strip()
    return text


def parse_model_reply(response_text: str, model: Type[ModelT]) -> ModelT:
    """
    Validate a model reply against ``model``.

    Args:
        response_text: Raw text returned by the model client
        model: Pydantic model the reply must satisfy

    Returns:
        The validated model instance

    Raises:
        ModelReplyError: If the reply is not a single valid JSON object
    """
    payload = unwrap_reply(response_text)
    if not payload.startswith("{") or not payload.endswith("}"):
        raise ModelReplyError("Reply is not a single JSON object")

    try:
        parsed = model.model_validate_json(payload)
    except ValidationError as e:
        logger.debug(f"Rejected model reply: {response_text!r}")
        raise ModelReplyError(f"Reply does not match {model.__name__}: {e.error_count()} error(s)") from e

    logger.debug(f"Parsed model reply into {model.__name__}")
    return parsed
