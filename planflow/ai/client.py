# planflow/ai/client.py
"""
Model client used by the advisory collaborators (safety review, self-healing).
"""
import asyncio
import random
from typing import Any, Dict, Optional

import google.generativeai as genai
from google.generativeai.types import GenerationConfig

from planflow.ai.models import GenerationRequest, GenerationResponse
from planflow.config import config_manager
from planflow.constants import REQUEST_TIMEOUT
from planflow.utils.logging import get_logger

logger = get_logger(__name__)


class GeminiClient:
    """Thin async wrapper around the Gemini generative model."""

    def __init__(self, api_key: Optional[str] = None, model_name: Optional[str] = None,
                 max_retries: int = 1, base_delay: float = 2.0):
        api_settings = config_manager.config.api
        api_key = api_key or api_settings.gemini_api_key
        if not api_key:
            logger.error("Gemini API key is not configured.")
            raise ValueError("Gemini API key is not configured. Set GEMINI_API_KEY.")

        genai.configure(api_key=api_key)
        self._model_name = model_name or api_settings.gemini_model
        self._max_retries = max_retries
        self._base_delay = base_delay
        logger.debug(f"Gemini client initialized with model: {self._model_name}")

    def _model(self, system_prompt: Optional[str]):
        if system_prompt:
            return genai.GenerativeModel(self._model_name, system_instruction=system_prompt)
        return genai.GenerativeModel(self._model_name)

    async def generate_text(self, request: GenerationRequest) -> GenerationResponse:
        """
        Generate a completion, retrying once on transient failures.

        Args:
            request: Prompt and sampling settings

        Returns:
            The generated text

        Raises:
            RuntimeError: If every attempt fails
        """
        model = self._model(request.system_prompt)
        config = GenerationConfig(
            temperature=request.temperature,
            max_output_tokens=request.max_output_tokens,
        )
        last_exception: Optional[Exception] = None

        for attempt in range(self._max_retries + 1):
            try:
                logger.debug(
                    f"Model request (attempt {attempt + 1}/{self._max_retries + 1}), "
                    f"prompt of {len(request.prompt)} chars"
                )
                response = await asyncio.wait_for(
                    asyncio.to_thread(model.generate_content, request.prompt, generation_config=config),
                    timeout=REQUEST_TIMEOUT,
                )

                feedback = getattr(response, "prompt_feedback", None)
                if feedback is not None and getattr(feedback, "block_reason", None):
                    raise ValueError(f"Prompt blocked by API safety filters: {feedback.block_reason}")

                text = getattr(response, "text", "") or ""
                if not text:
                    raise ValueError("Empty response from the model")

                raw: Dict[str, Any] = {}
                candidates = getattr(response, "candidates", None)
                if candidates and hasattr(candidates[0], "to_dict"):
                    raw = candidates[0].to_dict()
                return GenerationResponse(text=text, raw_response=raw)

            except Exception as e:
                last_exception = e
                logger.warning(
                    f"Model call failed (attempt {attempt + 1}/{self._max_retries + 1}): "
                    f"{type(e).__name__} - {e}"
                )

            if attempt < self._max_retries:
                delay = self._base_delay * (2 ** attempt) + random.uniform(0, 0.5)
                logger.info(f"Retrying model call in {delay:.2f} seconds")
                await asyncio.sleep(delay)

        raise RuntimeError(
            f"Failed to generate text after {self._max_retries + 1} attempts: {last_exception}"
        )
