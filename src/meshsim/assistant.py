"""
Assistant backends for the query orchestrator.

The orchestrator only needs `await ask(query) -> str` and `reset()`, so the
canned simulation and a live generative API are interchangeable.

- CannedAssistant: random template, no I/O
- GenerativeAPIAssistant: generateContent-style REST API via requests,
  keeping a chat history as its session

Credentials are passed in (see config.py, MESHSIM_ASSISTANT_API_KEY); they
are never part of the source.
"""

import asyncio
import logging
import random
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import requests

from .errors import ExternalServiceError

logger = logging.getLogger(__name__)


DEFAULT_TEMPLATES = [
    'Based on analysis across the decentralized network, "{snippet}..." touches on '
    'questions of network topology and routing efficiency.',
    'The distributed nodes processed "{snippet}..." and reached agreement that the '
    'answer depends on how content is replicated between storage peers.',
    'After relaying "{snippet}..." through several peers, the assistant node found '
    'relevant patterns in recent network traffic.',
    'Your query "{snippet}..." was stored on content nodes and answered by the '
    'assistant node; latency could improve with more direct connections.',
    'The network handled "{snippet}..." successfully. Adding more active relay '
    'nodes would increase throughput for similar requests.',
]


class Assistant(ABC):
    """Something that turns a prompt into a response string."""

    name = "assistant"

    @abstractmethod
    async def ask(self, query: str) -> str:
        """
        Produce a response for query.

        Raises:
            ExternalServiceError: If a remote service fails
        """
        pass

    def reset(self) -> None:
        """Drop any conversational state."""
        pass


class CannedAssistant(Assistant):
    """Picks one of a small set of response templates at random."""

    name = "canned"

    def __init__(self, templates: Optional[List[str]] = None, rng: Optional[random.Random] = None):
        self.templates = list(templates or DEFAULT_TEMPLATES)
        if not self.templates:
            raise ValueError("At least one response template is required")
        self.rng = rng or random.Random()

    async def ask(self, query: str) -> str:
        template = self.rng.choice(self.templates)
        return template.format(snippet=query[:20], query=query)


class GenerativeAPIAssistant(Assistant):
    """
    Chat with a hosted generative model over HTTP.

    The request body follows the generateContent shape:
        {"contents": [{"role": "user", "parts": [{"text": ...}]}, ...],
         "generationConfig": {"maxOutputTokens": 200}}

    History is kept across calls and cleared by reset() or by any failure,
    so the next call after an error starts a clean session.
    """

    name = "generative"

    DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
    DEFAULT_MODEL = "gemini-1.5-flash"

    def __init__(self,
                 api_key: str,
                 model: str = DEFAULT_MODEL,
                 base_url: str = DEFAULT_BASE_URL,
                 timeout: float = 30.0,
                 max_output_tokens: int = 200,
                 session: Optional[requests.Session] = None):
        if not api_key:
            raise ValueError("api_key is required for the generative assistant")
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_output_tokens = max_output_tokens
        self._session = session or requests.Session()
        self._history: List[Dict[str, Any]] = []

    @property
    def history(self) -> List[Dict[str, Any]]:
        return list(self._history)

    def reset(self) -> None:
        self._history = []
        logger.info("Generative assistant chat session has been reset")

    def _endpoint(self) -> str:
        return f"{self.base_url}/models/{self.model}:generateContent"

    def _post(self, contents: List[Dict[str, Any]]) -> Dict[str, Any]:
        response = self._session.post(
            self._endpoint(),
            json={
                "contents": contents,
                "generationConfig": {"maxOutputTokens": self.max_output_tokens},
            },
            headers={"x-goog-api-key": self.api_key},
            timeout=self.timeout,
        )
        response.raise_for_status()
        return response.json()

    @staticmethod
    def _extract_text(payload: Dict[str, Any]) -> str:
        candidates = payload.get("candidates") or []
        if not candidates:
            raise ExternalServiceError("Response contained no candidates")
        parts = (candidates[0].get("content") or {}).get("parts") or []
        text = "".join(part.get("text", "") for part in parts)
        if not text:
            raise ExternalServiceError("Response contained no text")
        return text

    async def ask(self, query: str) -> str:
        user_turn = {"role": "user", "parts": [{"text": query}]}
        contents = self._history + [user_turn]
        try:
            payload = await asyncio.to_thread(self._post, contents)
            text = self._extract_text(payload)
        except ExternalServiceError:
            self.reset()
            raise
        except (requests.RequestException, ValueError) as e:
            self.reset()
            raise ExternalServiceError(str(e)) from e

        self._history = contents + [{"role": "model", "parts": [{"text": text}]}]
        return text


__all__ = ["Assistant", "CannedAssistant", "GenerativeAPIAssistant", "DEFAULT_TEMPLATES"]
