"""Tests for the LLM text generation service."""

import asyncio
import json

import httpx
import pytest

from topix.server.exceptions import LLMError
from topix.server.services.llm_service import LLMService

OLLAMA = {
    "provider": "ollama",
    "ollama": {"endpoint": "http://llm.test:11434/", "model": "llama3.2:3b", "timeout": 5.0},
}

OPENROUTER = {
    "provider": "openrouter",
    "ollama": OLLAMA["ollama"],
    "openrouter": {
        "endpoint": "https://router.test/api/v1/chat/completions",
        "model": "meta-llama/llama-3.1-8b-instruct",
        "api_key": "sk-test",
        "timeout": 5.0,
    },
}


def service_for(config):
    return LLMService(lambda: config)


class TestLLMService:
    """Test cases for LLMService."""

    def test_disabled_provider(self):
        service = service_for({"provider": "none"})

        assert not service.is_available()
        with pytest.raises(LLMError, match="disabled"):
            asyncio.run(service.generate_text("hi"))

    def test_ollama_request(self, httpx_mock):
        httpx_mock.add_response(
            method="POST",
            url="http://llm.test:11434/api/generate",
            json={"response": "  0.8  "},
        )

        text = asyncio.run(service_for(OLLAMA).generate_text("Rate this", temperature=0.2, max_tokens=50))

        assert text == "0.8"
        body = json.loads(httpx_mock.get_requests()[0].content)
        assert body["model"] == "llama3.2:3b"
        assert body["stream"] is False
        assert body["options"] == {"temperature": 0.2, "num_predict": 50}

    def test_openrouter_request(self, httpx_mock):
        httpx_mock.add_response(
            method="POST",
            url="https://router.test/api/v1/chat/completions",
            json={"choices": [{"message": {"content": "Generated"}}]},
        )

        assert asyncio.run(service_for(OPENROUTER).generate_text("Hello")) == "Generated"
        request = httpx_mock.get_requests()[0]
        assert request.headers["Authorization"] == "Bearer sk-test"
        assert json.loads(request.content)["messages"] == [{"role": "user", "content": "Hello"}]

    def test_openrouter_missing_section(self):
        with pytest.raises(LLMError, match="OpenRouter configuration is missing"):
            asyncio.run(service_for({"provider": "openrouter", "openrouter": None}).generate_text("x"))

    def test_http_error_status(self, httpx_mock):
        httpx_mock.add_response(method="POST", status_code=500, text="boom")

        with pytest.raises(LLMError, match="Ollama API error: 500"):
            asyncio.run(service_for(OLLAMA).generate_text("x"))

    def test_timeout(self, httpx_mock):
        httpx_mock.add_exception(httpx.ReadTimeout("slow"))

        with pytest.raises(LLMError, match="timed out"):
            asyncio.run(service_for(OLLAMA).generate_text("x"))

    def test_connection_error(self, httpx_mock):
        httpx_mock.add_exception(httpx.ConnectError("refused"))

        with pytest.raises(LLMError, match="request failed"):
            asyncio.run(service_for(OLLAMA).generate_text("x"))

    def test_missing_response_field(self, httpx_mock):
        httpx_mock.add_response(method="POST", json={"done": True})

        with pytest.raises(LLMError, match="unexpected response"):
            asyncio.run(service_for(OLLAMA).generate_text("x"))

    def test_choice_without_message(self, httpx_mock):
        httpx_mock.add_response(method="POST", json={"choices": [{"delta": {}}]})

        with pytest.raises(LLMError, match="unexpected response"):
            asyncio.run(service_for(OPENROUTER).generate_text("x"))

    def test_empty_choices(self, httpx_mock):
        httpx_mock.add_response(method="POST", json={"choices": []})

        with pytest.raises(LLMError, match="no choices"):
            asyncio.run(service_for(OPENROUTER).generate_text("x"))

    def test_config_read_per_call(self):
        config = {"provider": "none"}
        service = LLMService(lambda: config)
        assert not service.is_available()

        config["provider"] = "ollama"
        assert service.is_available()
        assert service.provider == "ollama"
