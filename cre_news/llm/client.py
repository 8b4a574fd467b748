"""LLM API client wrapper with provider abstraction."""

import asyncio
import json
import re
from typing import Any, Optional

import structlog
from tenacity import retry, stop_after_attempt, wait_exponential

from ..config.settings import settings

logger = structlog.get_logger()

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def parse_json_response(text: str) -> Any:
    """Parse a JSON payload from a model response.

    Tolerates markdown code fences and leading or trailing prose around
    the outermost array or object.
    """
    if text is None:
        raise ValueError("Empty LLM response")
    cleaned = _FENCE_RE.sub("", text.strip()).strip()
    if not cleaned:
        raise ValueError("Empty LLM response")

    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass

    starts = [i for i in (cleaned.find("["), cleaned.find("{")) if i != -1]
    if not starts:
        raise ValueError(f"No JSON found in LLM response: {cleaned[:200]}")
    start = min(starts)
    end = max(cleaned.rfind("]"), cleaned.rfind("}"))
    return json.loads(cleaned[start:end + 1])


class LLMClient:
    """Unified LLM client supporting Gemini, Anthropic, and OpenAI."""

    def __init__(self, provider: str = None, api_key: str = None):
        self.provider = provider or settings.llm_provider
        self._api_key = api_key
        self._client = None

    def _resolve_key(self) -> Optional[str]:
        if self._api_key:
            return self._api_key
        return {
            "gemini": settings.gemini_api_key,
            "anthropic": settings.anthropic_api_key,
            "openai": settings.openai_api_key,
        }.get(self.provider)

    def is_configured(self) -> bool:
        """Whether an API key is available for the provider."""
        return bool(self._resolve_key())

    def _get_client(self):
        """Lazy initialization of the client."""
        if self._client is not None:
            return self._client

        api_key = self._resolve_key()
        if self.provider == "gemini":
            from google import genai
            if not api_key:
                raise ValueError("Gemini API key not configured. Set CRE_GEMINI_API_KEY environment variable.")
            self._client = genai.Client(api_key=api_key)

        elif self.provider == "anthropic":
            import anthropic
            if not api_key:
                raise ValueError("Anthropic API key not configured")
            self._client = anthropic.AsyncAnthropic(api_key=api_key)

        elif self.provider == "openai":
            import openai
            if not api_key:
                raise ValueError("OpenAI API key not configured")
            self._client = openai.AsyncOpenAI(api_key=api_key)

        else:
            raise ValueError(f"Unknown LLM provider: {self.provider}")

        return self._client

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True
    )
    async def complete(
        self,
        prompt: str,
        system: str = None,
        model: str = None,
        max_tokens: int = None,
        temperature: float = None,
        response_schema: dict = None,
        operation: str = None
    ) -> str:
        """Generate a completion from the LLM.

        `response_schema` switches Gemini into JSON mode. The other
        providers rely on the prompt asking for JSON.
        """
        client = self._get_client()
        model = model or settings.llm_model
        max_tokens = max_tokens or settings.llm_max_tokens
        temperature = temperature if temperature is not None else settings.llm_temperature

        try:
            if self.provider == "gemini":
                text = await self._complete_gemini(
                    client, prompt, system, model, max_tokens, temperature, response_schema
                )
            elif self.provider == "anthropic":
                text = await self._complete_anthropic(client, prompt, system, model, max_tokens, temperature)
            else:
                text = await self._complete_openai(client, prompt, system, model, max_tokens, temperature)
        except Exception as e:
            logger.error("llm_call_failed", provider=self.provider, operation=operation, error=str(e))
            raise

        logger.debug("llm_call_completed", provider=self.provider, operation=operation, model=model)
        return text

    async def complete_json(self, prompt: str, **kwargs) -> Any:
        """Complete and parse the response as JSON."""
        text = await self.complete(prompt, **kwargs)
        return parse_json_response(text)

    async def _complete_gemini(self, client, prompt: str, system: str, model: str,
                               max_tokens: int, temperature: float, response_schema: dict) -> str:
        """Call Gemini API."""
        from google.genai import types

        full_prompt = prompt
        if system:
            full_prompt = f"{system}\n\n{prompt}"

        config_kwargs = {
            "temperature": temperature,
            "max_output_tokens": max_tokens,
        }
        if response_schema is not None:
            config_kwargs["response_mime_type"] = "application/json"
            config_kwargs["response_schema"] = response_schema

        # Gemini client is sync, run in executor
        def _sync_call():
            response = client.models.generate_content(
                model=model,
                contents=full_prompt,
                config=types.GenerateContentConfig(**config_kwargs),
            )
            return response.text

        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, _sync_call)

    async def _complete_anthropic(self, client, prompt: str, system: str, model: str,
                                  max_tokens: int, temperature: float) -> str:
        """Call Anthropic API."""
        kwargs = {
            "model": model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [{"role": "user", "content": prompt}]
        }
        if system:
            kwargs["system"] = system

        response = await client.messages.create(**kwargs)
        return response.content[0].text

    async def _complete_openai(self, client, prompt: str, system: str, model: str,
                               max_tokens: int, temperature: float) -> str:
        """Call OpenAI API."""
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        response = await client.chat.completions.create(
            model=model,
            max_tokens=max_tokens,
            temperature=temperature,
            messages=messages
        )
        return response.choices[0].message.content
