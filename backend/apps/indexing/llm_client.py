"""
LLM client abstraction used for document analysis.

Provides a unified chat interface over:
- Ollama (local inference)
- OpenAI or any OpenAI-compatible API

The provider is chosen with the LLM_PROVIDER setting.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional

import httpx
from django.conf import settings

from apps.docs.errors import ProcessingError

logger = logging.getLogger(__name__)


@dataclass
class LLMMessage:
    """A message in a chat conversation."""
    role: str  # "system", "user", or "assistant"
    content: str


@dataclass
class LLMResponse:
    """Response from an LLM call."""
    content: str
    model: str
    usage: Optional[Dict[str, int]] = None


class LLMError(ProcessingError):
    """Raised when an LLM call fails."""
    pass


class BaseLLMClient(ABC):
    """Abstract base class for LLM clients."""

    @abstractmethod
    def chat(
        self,
        messages: List[LLMMessage],
        temperature: float = 0.3,
        max_tokens: int = 1500,
        json_mode: bool = False,
    ) -> LLMResponse:
        """
        Send a chat completion request.

        Args:
            messages: List of messages in the conversation
            temperature: Sampling temperature (0-1)
            max_tokens: Maximum tokens in response
            json_mode: Ask the provider to return a JSON object

        Raises:
            LLMError: If the request fails
        """

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Return the model name being used."""


class OllamaClient(BaseLLMClient):
    """LLM client for Ollama local inference."""

    def __init__(self, base_url: Optional[str] = None, model: Optional[str] = None,
                 timeout: Optional[float] = None):
        self.base_url = base_url or getattr(settings, 'OLLAMA_BASE_URL', 'http://ollama:11434')
        self.model = model or getattr(settings, 'OLLAMA_CHAT_MODEL', 'llama3.2')
        self.timeout = timeout or getattr(settings, 'OLLAMA_CHAT_TIMEOUT', 600)

    @property
    def model_name(self) -> str:
        return self.model

    def chat(self, messages, temperature=0.3, max_tokens=1500, json_mode=False) -> LLMResponse:
        logger.info(f"Calling Ollama chat: model={self.model}, temp={temperature}")

        body = {
            "model": self.model,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
            "stream": False,
            "options": {
                "temperature": temperature,
                "num_predict": max_tokens,
            },
        }
        if json_mode:
            body["format"] = "json"

        try:
            with httpx.Client(timeout=float(self.timeout)) as client:
                response = client.post(f"{self.base_url}/api/chat", json=body)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"Ollama HTTP error: {e}")
            raise LLMError(f"Ollama service error: {e.response.status_code}")
        except httpx.TimeoutException:
            logger.error("Ollama request timed out")
            raise LLMError("Ollama service timed out")
        except httpx.RequestError as e:
            logger.error(f"Ollama connection error: {e}")
            raise LLMError("Could not connect to Ollama")

        content = data.get("message", {}).get("content", "")
        if not content:
            raise LLMError("Empty response from Ollama")

        logger.info(f"Ollama response: {len(content)} chars")
        return LLMResponse(content=content, model=self.model)


class OpenAICompatibleClient(BaseLLMClient):
    """LLM client for OpenAI or compatible chat completion APIs."""

    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None,
                 model: Optional[str] = None, timeout: Optional[float] = None):
        self.api_key = api_key or getattr(settings, 'OPENAI_API_KEY', '')
        self.base_url = base_url or getattr(settings, 'OPENAI_BASE_URL', 'https://api.openai.com/v1')
        self.model = model or getattr(settings, 'OPENAI_MODEL', 'gpt-4o-mini')
        self.timeout = timeout or getattr(settings, 'OPENAI_TIMEOUT', 120)

        if not self.api_key:
            raise LLMError("OPENAI_API_KEY not configured")

    @property
    def model_name(self) -> str:
        return self.model

    def chat(self, messages, temperature=0.3, max_tokens=1500, json_mode=False) -> LLMResponse:
        logger.info(f"Calling OpenAI API: model={self.model}, temp={temperature}")

        body = {
            "model": self.model,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if json_mode:
            body["response_format"] = {"type": "json_object"}

        try:
            with httpx.Client(timeout=float(self.timeout)) as client:
                response = client.post(
                    f"{self.base_url}/chat/completions",
                    json=body,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"OpenAI HTTP error: {e}")
            raise LLMError(f"OpenAI API error: {e.response.status_code}")
        except httpx.TimeoutException:
            logger.error("OpenAI request timed out")
            raise LLMError("OpenAI API timed out")
        except httpx.RequestError as e:
            logger.error(f"OpenAI connection error: {e}")
            raise LLMError("Could not connect to OpenAI API")

        choices = data.get("choices", [])
        if not choices:
            raise LLMError("No choices in OpenAI response")

        content = choices[0].get("message", {}).get("content", "")
        if not content:
            raise LLMError("Empty response from OpenAI")

        return LLMResponse(content=content, model=self.model, usage=data.get("usage"))


def build_llm_client(provider: Optional[str] = None) -> BaseLLMClient:
    """
    Create the configured LLM client.

    Uses LLM_PROVIDER to choose:
    - "ollama" (default): Local Ollama inference
    - "openai": OpenAI or compatible API
    """
    provider = (provider or getattr(settings, 'LLM_PROVIDER', 'ollama')).lower()

    if provider == 'openai':
        logger.info("Using OpenAI-compatible API for document analysis")
        return OpenAICompatibleClient()

    logger.info("Using Ollama for document analysis")
    return OllamaClient()
