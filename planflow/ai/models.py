# planflow/ai/models.py
"""
Request and response models shared by model clients.
"""
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from planflow.constants import GEMINI_MAX_TOKENS, GEMINI_TEMPERATURE


class GenerationRequest(BaseModel):
    prompt: str
    system_prompt: Optional[str] = None
    temperature: float = Field(default=GEMINI_TEMPERATURE)
    max_output_tokens: int = Field(default=GEMINI_MAX_TOKENS)


class GenerationResponse(BaseModel):
    text: str
    raw_response: Dict[str, Any] = Field(default_factory=dict)
