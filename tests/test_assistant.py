"""
Tests for assistant backends.

The generative assistant is exercised against a mocked requests.Session;
no network access is needed.
"""

import random
from unittest.mock import MagicMock

import pytest
import requests

from meshsim.assistant import CannedAssistant, DEFAULT_TEMPLATES, GenerativeAPIAssistant
from meshsim.errors import ExternalServiceError


def api_response(text: str) -> MagicMock:
    response = MagicMock()
    response.raise_for_status.return_value = None
    response.json.return_value = {
        "candidates": [{"content": {"role": "model", "parts": [{"text": text}]}}]
    }
    return response


class TestCannedAssistant:

    @pytest.mark.asyncio
    async def test_includes_query_snippet(self):
        assistant = CannedAssistant(rng=random.Random(0))
        query = "how does routing work in this network?"

        answer = await assistant.ask(query)

        assert query[:20] in answer
        assert query[20:] not in answer

    @pytest.mark.asyncio
    async def test_uses_custom_templates(self):
        assistant = CannedAssistant(templates=["You asked: {query}"])
        assert await assistant.ask("ping") == "You asked: ping"

    def test_requires_templates(self):
        assert len(DEFAULT_TEMPLATES) == 5
        with pytest.raises(ValueError):
            CannedAssistant(templates=[])


class TestGenerativeAPIAssistant:

    def test_requires_api_key(self):
        with pytest.raises(ValueError):
            GenerativeAPIAssistant(api_key="")

    @pytest.mark.asyncio
    async def test_posts_generate_content_request(self):
        session = MagicMock()
        session.post.return_value = api_response("Hi there")
        assistant = GenerativeAPIAssistant(api_key="test-key", model="test-model",
                                           base_url="https://api.example.com/v1/",
                                           session=session)

        answer = await assistant.ask("hello")

        assert answer == "Hi there"
        args, kwargs = session.post.call_args
        assert args[0] == "https://api.example.com/v1/models/test-model:generateContent"
        assert kwargs["headers"] == {"x-goog-api-key": "test-key"}
        assert kwargs["json"]["contents"] == [{"role": "user", "parts": [{"text": "hello"}]}]
        assert kwargs["json"]["generationConfig"] == {"maxOutputTokens": 200}

    @pytest.mark.asyncio
    async def test_keeps_history_between_calls(self):
        session = MagicMock()
        session.post.side_effect = [api_response("first"), api_response("second")]
        assistant = GenerativeAPIAssistant(api_key="k", session=session)

        await assistant.ask("one")
        await assistant.ask("two")

        contents = session.post.call_args.kwargs["json"]["contents"]
        assert [c["role"] for c in contents] == ["user", "model", "user"]
        assert len(assistant.history) == 4

    @pytest.mark.asyncio
    async def test_http_error_resets_session(self):
        session = MagicMock()
        failing = MagicMock()
        failing.raise_for_status.side_effect = requests.HTTPError("429 Too Many Requests")
        session.post.side_effect = [api_response("first"), failing]
        assistant = GenerativeAPIAssistant(api_key="k", session=session)

        await assistant.ask("one")
        with pytest.raises(ExternalServiceError, match="429"):
            await assistant.ask("two")

        assert assistant.history == []

    @pytest.mark.asyncio
    async def test_connection_error_wrapped(self):
        session = MagicMock()
        session.post.side_effect = requests.ConnectionError("unreachable")
        assistant = GenerativeAPIAssistant(api_key="k", session=session)

        with pytest.raises(ExternalServiceError, match="unreachable"):
            await assistant.ask("hello")

    @pytest.mark.asyncio
    async def test_empty_candidates(self):
        session = MagicMock()
        response = MagicMock()
        response.json.return_value = {"candidates": []}
        session.post.return_value = response
        assistant = GenerativeAPIAssistant(api_key="k", session=session)

        with pytest.raises(ExternalServiceError):
            await assistant.ask("hello")
        assert assistant.history == []

    def test_reset_clears_history(self):
        assistant = GenerativeAPIAssistant(api_key="k", session=MagicMock())
        assistant._history = [{"role": "user", "parts": [{"text": "x"}]}]

        assistant.reset()

        assert assistant.history == []
