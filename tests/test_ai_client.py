# tests/test_ai_client.py
"""Tests for the model client and strict reply parsing."""
import pytest
from pydantic import BaseModel
from unittest.mock import AsyncMock, MagicMock, patch

from planflow.ai.client import GeminiClient
from planflow.ai.models import GenerationRequest
from planflow.ai.parser import ModelReplyError, parse_model_reply, unwrap_reply


class Reply(BaseModel):
    action: str
    count: int = 0


def test_unwrap_reply():
    assert unwrap_reply('  {"a": 1}  ') == '{"a": 1}'
    assert unwrap_reply('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert unwrap_reply('```\n{"a": 1}\n```') == '{"a": 1}'


def test_parse_model_reply():
    assert parse_model_reply('{"action": "skip", "count": 2}', Reply) == Reply(action="skip", count=2)

    for text in ('Sure! {"action": "skip"}', '{"count": 1}', '{"action": "skip"', "[]"):
        with pytest.raises(ModelReplyError):
            parse_model_reply(text, Reply)


def fake_response(text="ok", block_reason=None):
    response = MagicMock()
    response.text = text
    response.prompt_feedback = MagicMock(block_reason=block_reason)
    response.candidates = []
    return response


@pytest.fixture
def mock_genai():
    with patch("planflow.ai.client.genai") as genai:
        yield genai


def test_client_requires_an_api_key(mock_genai):
    with patch("planflow.ai.client.config_manager") as manager:
        manager.config.api.gemini_api_key = None
        with pytest.raises(ValueError):
            GeminiClient()
    mock_genai.configure.assert_not_called()


@pytest.mark.asyncio
async def test_generate_text(mock_genai):
    model = mock_genai.GenerativeModel.return_value
    model.generate_content.return_value = fake_response('{"safe": true}')
    client = GeminiClient(api_key="key", model_name="test-model")

    response = await client.generate_text(GenerationRequest(prompt="hello", system_prompt="be strict"))

    assert response.text == '{"safe": true}'
    mock_genai.configure.assert_called_once_with(api_key="key")
    mock_genai.GenerativeModel.assert_called_once_with("test-model", system_instruction="be strict")


@pytest.mark.asyncio
async def test_generate_text_retries_then_fails(mock_genai):
    model = mock_genai.GenerativeModel.return_value
    model.generate_content.side_effect = [fake_response(""), fake_response("x", block_reason="SAFETY")]
    client = GeminiClient(api_key="key", max_retries=1)

    with patch("planflow.ai.client.asyncio.sleep", new_callable=AsyncMock) as sleep:
        with pytest.raises(RuntimeError, match="after 2 attempts"):
            await client.generate_text(GenerationRequest(prompt="hello"))

    assert model.generate_content.call_count == 2
    sleep.assert_awaited_once()
