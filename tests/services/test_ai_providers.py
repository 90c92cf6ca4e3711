# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

import json

import httpx
import pytest

from app.services.chat.ai.providers import (
    AzureOpenAIProvider,
    DefaultProvider,
    OpenAIProvider,
    ProviderConfig,
    format_messages,
    resolve_provider,
)


def _user(text):
    return [{"role": "user", "content": text}]


def _client(handler):
    return httpx.Client(transport=httpx.MockTransport(handler))


def _completion(text):
    return httpx.Response(200, json={"choices": [{"message": {"content": f" {text} "}}]})


@pytest.mark.unit
class TestDefaultProvider:
    @pytest.fixture
    def provider(self):
        return DefaultProvider(ProviderConfig())

    def test_greeting_matches_whole_words(self, provider):
        assert provider.generate(_user("Hi there")).startswith("Hello!")
        assert not provider.generate(_user("this is a thing")).startswith("Hello!")

    def test_help_and_thanks(self, provider):
        assert "here to help" in provider.generate(_user("I need help"))
        assert provider.generate(_user("thanks!")).startswith("You're welcome")

    def test_task_talk(self, provider):
        assert "tasks and projects" in provider.generate(_user("new task please"))

    def test_echo_fallback(self, provider):
        assert provider.generate(_user("weather?")) == (
            'I received your message: "weather?". How can I assist you with this?'
        )


@pytest.mark.unit
class TestRemoteProviders:
    def test_openai_request_shape(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return _completion("Sure")

        config = ProviderConfig(api_key="sk-test", model_id="gpt-4o-mini", persona="planner")
        provider = OpenAIProvider(config, _client(handler))

        assert provider.generate(_user("plan my day")) == "Sure"
        assert seen["url"] == "https://api.openai.com/v1/chat/completions"
        assert seen["auth"] == "Bearer sk-test"
        assert seen["body"]["model"] == "gpt-4o-mini"
        assert seen["body"]["messages"][0]["role"] == "system"
        assert "planner" in seen["body"]["messages"][0]["content"]

    def test_azure_uses_deployment_url(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["key"] = request.headers["api-key"]
            return _completion("ok")

        config = ProviderConfig(
            api_key="az", base_url="https://acme.openai.azure.com/", model_id="dep1"
        )

        assert AzureOpenAIProvider(config, _client(handler)).generate(_user("x")) == "ok"
        assert seen["url"].startswith(
            "https://acme.openai.azure.com/openai/deployments/dep1/chat/completions"
        )
        assert "api-version=2023-05-15" in seen["url"]
        assert seen["key"] == "az"

    def test_http_error_propagates(self):
        provider = OpenAIProvider(
            ProviderConfig(api_key="k"), _client(lambda r: httpx.Response(500))
        )

        with pytest.raises(httpx.HTTPStatusError):
            provider.generate(_user("x"))

    def test_unexpected_shape_is_value_error(self):
        provider = OpenAIProvider(
            ProviderConfig(api_key="k"),
            _client(lambda r: httpx.Response(200, json={"choices": []})),
        )

        with pytest.raises(ValueError):
            provider.generate(_user("x"))


@pytest.mark.unit
class TestResolveProvider:
    def test_known_remote_provider_with_key(self):
        provider = resolve_provider("OpenAI", ProviderConfig(api_key="k"))

        assert provider.provider_name == "openai"

    def test_remote_provider_without_key_falls_back(self):
        assert resolve_provider("azure", ProviderConfig()).provider_name == "default"

    def test_unknown_provider_falls_back(self):
        assert resolve_provider("llama", ProviderConfig()).provider_name == "default"

    def test_format_messages_maps_roles(self):
        assert format_messages(
            [{"content": "q", "isAI": False}, {"content": "a", "isAI": True}]
        ) == [
            {"role": "user", "content": "q"},
            {"role": "assistant", "content": "a"},
        ]
