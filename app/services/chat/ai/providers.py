# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

"""
AI provider strategies.

The set of providers is closed and resolved once at startup by name. An
unknown name, or a remote provider without credentials, resolves to the
rule-based DefaultProvider instead of failing.
"""

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)


@dataclass
class ProviderConfig:
    """Configuration for an AI provider."""

    api_key: Optional[str] = None
    base_url: Optional[str] = None
    model_id: str = "gpt-3.5-turbo"
    api_version: str = "2023-05-15"
    timeout: float = 30.0
    max_tokens: int = 1000
    temperature: float = 0.7
    persona: str = "helpful assistant"


class AIProvider(ABC):
    """
    Abstract base class for AI providers.

    `generate` receives chat messages as [{"role", "content"}] and returns
    the reply text. It is synchronous and runs in a worker thread behind the
    circuit breaker.
    """

    def __init__(self, config: ProviderConfig, client: Optional[httpx.Client] = None):
        self.config = config
        self.client = client

    @property
    @abstractmethod
    def provider_name(self) -> str:
        pass

    @abstractmethod
    def generate(self, messages: list[dict[str, Any]]) -> str:
        pass

    def _system_message(self) -> dict[str, str]:
        return {
            "role": "system",
            "content": f"You are a {self.config.persona} inside a task management app.",
        }

    def _http(self) -> httpx.Client:
        if self.client is None:
            self.client = httpx.Client(timeout=self.config.timeout)
        return self.client

    def _post_chat(self, url: str, headers: dict[str, str], body: dict) -> str:
        response = self._http().post(url, headers=headers, json=body)
        response.raise_for_status()
        data = response.json()
        try:
            return data["choices"][0]["message"]["content"].strip()
        except (KeyError, IndexError, TypeError, AttributeError) as e:
            raise ValueError(f"Unexpected {self.provider_name} response shape") from e


class DefaultProvider(AIProvider):
    """Rule-based responder used when no remote provider is configured."""

    _GREETING = re.compile(r"\b(hello|hi)\b")

    @property
    def provider_name(self) -> str:
        return "default"

    def generate(self, messages: list[dict[str, Any]]) -> str:
        query = messages[-1].get("content", "") if messages else ""
        lowered = query.lower()

        if self._GREETING.search(lowered):
            return "Hello! How can I assist you today?"
        if "help" in lowered:
            return (
                "I'm here to help! You can ask me about tasks, projects, "
                "or any other assistance you need."
            )
        if "thank" in lowered:
            return "You're welcome! Is there anything else I can help with?"
        if "task" in lowered or "project" in lowered:
            return (
                "I can help you manage your tasks and projects. Would you like me "
                "to show you how to create a new task or project?"
            )
        return f'I received your message: "{query}". How can I assist you with this?'


class OpenAIProvider(AIProvider):
    """OpenAI chat completions API."""

    DEFAULT_BASE_URL = "https://api.openai.com/v1"

    @property
    def provider_name(self) -> str:
        return "openai"

    def generate(self, messages: list[dict[str, Any]]) -> str:
        base_url = (self.config.base_url or self.DEFAULT_BASE_URL).rstrip("/")
        body = {
            "model": self.config.model_id,
            "messages": [self._system_message(), *messages],
            "max_tokens": self.config.max_tokens,
            "temperature": self.config.temperature,
        }
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.config.api_key}",
        }
        return self._post_chat(f"{base_url}/chat/completions", headers, body)


class AzureOpenAIProvider(AIProvider):
    """Azure OpenAI deployment; `model_id` is the deployment name."""

    @property
    def provider_name(self) -> str:
        return "azure"

    def generate(self, messages: list[dict[str, Any]]) -> str:
        if not self.config.base_url:
            raise ValueError("Azure OpenAI requires AI_API_ENDPOINT")
        base_url = self.config.base_url.rstrip("/")
        url = (
            f"{base_url}/openai/deployments/{self.config.model_id}/chat/completions"
            f"?api-version={self.config.api_version}"
        )
        body = {
            "messages": [self._system_message(), *messages],
            "max_tokens": self.config.max_tokens,
            "temperature": self.config.temperature,
        }
        headers = {"Content-Type": "application/json", "api-key": self.config.api_key or ""}
        return self._post_chat(url, headers, body)


PROVIDERS: dict[str, type[AIProvider]] = {
    "default": DefaultProvider,
    "openai": OpenAIProvider,
    "azure": AzureOpenAIProvider,
}

_REMOTE_PROVIDERS = {"openai", "azure"}


def resolve_provider(
    name: Optional[str], config: ProviderConfig, client: Optional[httpx.Client] = None
) -> AIProvider:
    """Pick the provider for `name`, falling back to the rule-based default."""
    key = (name or "default").strip().lower()
    provider_cls = PROVIDERS.get(key)
    if provider_cls is None:
        logger.warning(f"[AIResponder] Unknown AI provider '{name}', using default")
        return DefaultProvider(config)
    if key in _REMOTE_PROVIDERS and not config.api_key:
        logger.warning(f"[AIResponder] No API key for '{key}', using default")
        return DefaultProvider(config)
    return provider_cls(config, client)


def format_messages(context_window: list[dict[str, Any]]) -> list[dict[str, str]]:
    """Map context entries to chat roles: assistant for AI entries, user otherwise."""
    return [
        {
            "role": "assistant" if entry.get("isAI") else "user",
            "content": entry.get("content", ""),
        }
        for entry in context_window
    ]
