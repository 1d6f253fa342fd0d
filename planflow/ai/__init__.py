# planflow/ai/__init__.py
"""
Model access for the advisory collaborators.

The client module imports google-generativeai, so it is only imported by
callers that actually build a GeminiClient.
"""
from .models import GenerationRequest, GenerationResponse
from .parser import ModelReplyError, parse_model_reply, unwrap_reply

__all__ = [
    'GenerationRequest',
    'GenerationResponse',
    'ModelReplyError',
    'parse_model_reply',
    'unwrap_reply',
]
