"""
LLM Provider - OpenAI-compatible APIs (OpenAI, Groq, Together, ...) and Ollama
"""
from dataclasses import dataclass
from typing import Optional

import httpx
from openai import AsyncOpenAI, OpenAIError

from ..config import Settings
from ..core.exceptions import ServiceUnavailableError
from ..utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class CompletionResult:
    text: str
    model: str
    provider: str
    tokens_used: int = 0


class LLMProvider:
    """
    Unified completion client.

    Constructed once by the application lifespan: ``initialize()`` opens the
    underlying client, ``close()`` releases it. Until ``initialize()`` succeeds
    the provider reports itself as not ready and every AI feature answers 503.
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self.provider = settings.llm_provider.lower()
        self._openai: Optional[AsyncOpenAI] = None
        self._http: Optional[httpx.AsyncClient] = None
        self._ready = False

    async def initialize(self) -> None:
        if self.provider == "ollama":
            self._http = httpx.AsyncClient(
                base_url=self.settings.ollama_base_url,
                timeout=self.settings.llm_timeout_seconds
            )
            self._ready = True
        elif self.settings.openai_api_key:
            self._openai = AsyncOpenAI(
                api_key=self.settings.openai_api_key,
                base_url=self.settings.openai_base_url,
                timeout=self.settings.llm_timeout_seconds
            )
            self._ready = True
        else:
            logger.warning("OPENAI_API_KEY not set, AI features are disabled")
            return

        logger.info("Initialized LLM provider: %s", self.provider)

    async def close(self) -> None:
        if self._openai is not None:
            await self._openai.close()
            self._openai = None
        if self._http is not None:
            await self._http.aclose()
            self._http = None
        self._ready = False

    def is_ready(self) -> bool:
        return self._ready

    @property
    def model_name(self) -> str:
        if self.provider == "ollama":
            return self.settings.ollama_model
        return self.settings.openai_model

    async def generate_completion(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None
    ) -> CompletionResult:
        """Generate completion using the configured provider"""
        if not self._ready:
            raise ServiceUnavailableError()

        max_tokens = max_tokens or self.settings.max_tokens
        if temperature is None:
            temperature = self.settings.openai_temperature

        if self.provider == "ollama":
            return await self._ollama_completion(prompt, system_prompt, max_tokens, temperature)
        return await self._openai_compatible_completion(prompt, system_prompt, max_tokens, temperature)

    async def _ollama_completion(
        self,
        prompt: str,
        system_prompt: Optional[str],
        max_tokens: int,
        temperature: float
    ) -> CompletionResult:
        """Call Ollama API"""
        full_prompt = prompt
        if system_prompt:
            full_prompt = f"{system_prompt}\n\n{prompt}"

        try:
            response = await self._http.post(
                "/api/generate",
                json={
                    "model": self.settings.ollama_model,
                    "prompt": full_prompt,
                    "stream": False,
                    "options": {
                        "temperature": temperature,
                        "num_predict": max_tokens
                    }
                }
            )
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Ollama API error: %s", e)
            raise ServiceUnavailableError("AI service request failed") from e

        return CompletionResult(
            text=data.get("response", ""),
            model=self.settings.ollama_model,
            provider="ollama",
            tokens_used=data.get("eval_count", 0) + data.get("prompt_eval_count", 0)
        )

    async def _openai_compatible_completion(
        self,
        prompt: str,
        system_prompt: Optional[str],
        max_tokens: int,
        temperature: float
    ) -> CompletionResult:
        """Call OpenAI-compatible API"""
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        try:
            response = await self._openai.chat.completions.create(
                model=self.settings.openai_model,
                messages=messages,
                max_tokens=max_tokens,
                temperature=temperature
            )
        except OpenAIError as e:
            logger.error("LLM API error: %s", e)
            raise ServiceUnavailableError("AI service request failed") from e

        if not response.choices:
            logger.error("LLM API returned no choices")
            raise ServiceUnavailableError("AI service request failed")

        return CompletionResult(
            text=response.choices[0].message.content or "",
            model=response.model,
            provider=self.provider,
            tokens_used=response.usage.total_tokens if response.usage else 0
        )
