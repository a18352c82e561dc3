"""LLM text generation service.

Provides text generation through the configured provider (Ollama or
OpenRouter). Callers treat any ``LLMError`` as a signal to fall back to
non-LLM behavior.
"""

import logging
from typing import Any, Callable, Dict, Optional

import httpx

from topix.server.exceptions import LLMError

logger = logging.getLogger(__name__)

LLMConfigProvider = Callable[[], Dict[str, Any]]


class LLMService:
    """Text generation client for the configured LLM provider.

    The provider settings are read on every call, so config reloads apply
    immediately.
    """

    def __init__(self, config_provider: LLMConfigProvider):
        """Initialize LLM service.

        Args:
            config_provider: Returns the current ``llm`` config section
        """
        self._config_provider = config_provider

    @property
    def provider(self) -> str:
        return self._config_provider().get("provider", "none")

    def is_available(self) -> bool:
        return self.provider != "none"

    async def generate_text(self, prompt: str, temperature: float = 0.7, max_tokens: int = 500) -> str:
        """Generate text for a prompt.

        Args:
            prompt: Prompt text
            temperature: Sampling temperature
            max_tokens: Maximum number of tokens to generate

        Returns:
            Generated text, stripped

        Raises:
            LLMError: If no provider is configured or the request fails
        """
        config = self._config_provider()
        provider = config.get("provider", "none")

        if provider == "none":
            raise LLMError("LLM provider is disabled. Configure an LLM provider to use AI features.")
        if provider == "ollama":
            if not config.get("ollama"):
                raise LLMError("Ollama configuration is missing")
            return await self._generate_with_ollama(prompt, config["ollama"], temperature, max_tokens)
        if provider == "openrouter":
            if not config.get("openrouter"):
                raise LLMError("OpenRouter configuration is missing")
            return await self._generate_with_openrouter(prompt, config["openrouter"], temperature, max_tokens)
        raise LLMError(f"Unsupported LLM provider: {provider}")

    async def _generate_with_ollama(
        self, prompt: str, config: Dict[str, Any], temperature: float, max_tokens: int
    ) -> str:
        endpoint = config["endpoint"].rstrip("/")
        data = await self._post(
            "Ollama",
            f"{endpoint}/api/generate",
            config.get("timeout", 30.0),
            json={
                "model": config["model"],
                "prompt": prompt,
                "stream": False,
                "options": {"temperature": temperature, "num_predict": max_tokens},
            },
        )
        try:
            return str(data["response"]).strip()
        except (KeyError, TypeError) as e:
            raise LLMError(f"Ollama returned an unexpected response: {e!r}") from e

    async def _generate_with_openrouter(
        self, prompt: str, config: Dict[str, Any], temperature: float, max_tokens: int
    ) -> str:
        data = await self._post(
            "OpenRouter",
            config["endpoint"],
            config.get("timeout", 30.0),
            json={
                "model": config["model"],
                "messages": [{"role": "user", "content": prompt}],
                "temperature": temperature,
                "max_tokens": max_tokens,
            },
            headers={
                "Authorization": f"Bearer {config.get('api_key', '')}",
                "X-Title": "Topix",
            },
        )
        try:
            choices = data["choices"]
            if not choices:
                raise LLMError("OpenRouter returned no choices")
            return str(choices[0]["message"]["content"]).strip()
        except (KeyError, IndexError, TypeError) as e:
            raise LLMError(f"OpenRouter returned an unexpected response: {e!r}") from e

    async def _post(
        self,
        name: str,
        url: str,
        timeout: float,
        json: Dict[str, Any],
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        try:
            async with httpx.AsyncClient(timeout=timeout) as client:
                response = await client.post(url, json=json, headers=headers)
        except httpx.TimeoutException as e:
            raise LLMError(f"{name} request timed out after {timeout}s") from e
        except httpx.HTTPError as e:
            raise LLMError(f"{name} request failed: {e}") from e

        if response.status_code != 200:
            raise LLMError(f"{name} API error: {response.status_code} {response.text}")
        try:
            return response.json()
        except ValueError as e:
            raise LLMError(f"{name} returned invalid JSON") from e
