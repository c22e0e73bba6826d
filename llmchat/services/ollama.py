import asyncio
import logging
from typing import List, Optional, Protocol

import httpx
from pydantic import BaseModel, ValidationError as SchemaError

from llmchat.errors import ProviderError, ProviderUnavailable

logger = logging.getLogger(__name__)


class GenerateResponse(BaseModel):
    response: str


class ModelTag(BaseModel):
    name: Optional[str] = None


class TagsResponse(BaseModel):
    models: List[ModelTag] = []


class GenerationProvider(Protocol):
    async def generate(self, prompt: str, model: str) -> str: ...

    async def is_available(self) -> bool: ...

    async def list_models(self) -> List[str]: ...


class OllamaProvider:
    """Non-streaming client for an Ollama server's /api/generate and /api/tags."""

    def __init__(self, settings):
        self.settings = settings

    @property
    def base_url(self) -> str:
        return self.settings.get_ollama_base_url()

    async def generate(self, prompt: str, model: str) -> str:
        url = f"{self.base_url}/api/generate"
        payload = {"model": model, "prompt": prompt, "stream": False}

        async with httpx.AsyncClient() as client:
            try:
                response = await client.post(url, json=payload, timeout=self.settings.generation_timeout)
            except httpx.HTTPError as e:
                raise ProviderUnavailable(f"Could not reach {url}: {e}") from e

        if not 200 <= response.status_code < 300:
            raise ProviderError(f"{url} returned {response.status_code}: {response.text[:200]}")

        try:
            return GenerateResponse.model_validate(response.json()).response
        except (ValueError, SchemaError) as e:
            raise ProviderError(f"Malformed reply from {url}: {e}") from e

    async def is_available(self) -> bool:
        try:
            async with httpx.AsyncClient() as client:
                response = await client.get(f"{self.base_url}/api/tags", timeout=5.0)
            return 200 <= response.status_code < 300
        except httpx.HTTPError:
            return False

    async def list_models(self) -> List[str]:
        url = f"{self.base_url}/api/tags"
        try:
            async with httpx.AsyncClient() as client:
                response = await client.get(url, timeout=10.0)
        except httpx.HTTPError as e:
            logger.warning("Model listing failed: %s", e)
            return []

        if not 200 <= response.status_code < 300:
            logger.warning("%s returned %s", url, response.status_code)
            return []

        try:
            tags = TagsResponse.model_validate(response.json())
        except (ValueError, SchemaError) as e:
            logger.warning("Unreadable model list from %s: %s", url, e)
            return []
        return [m.name for m in tags.models if m.name]


class RetryingProvider:
    """Retries a provider's generate() when the provider cannot be reached."""

    def __init__(self, inner: GenerationProvider, attempts: int = 3, backoff: float = 0.5):
        self.inner = inner
        self.attempts = max(1, attempts)
        self.backoff = backoff

    async def generate(self, prompt: str, model: str) -> str:
        for attempt in range(1, self.attempts + 1):
            try:
                return await self.inner.generate(prompt, model)
            except ProviderUnavailable as e:
                if attempt == self.attempts:
                    raise
                delay = self.backoff * (2 ** (attempt - 1))
                logger.info("Provider unavailable (attempt %d/%d), retrying in %.1fs: %s",
                            attempt, self.attempts, delay, e)
                await asyncio.sleep(delay)

    async def is_available(self) -> bool:
        return await self.inner.is_available()

    async def list_models(self) -> List[str]:
        return await self.inner.list_models()


def build_provider(settings) -> GenerationProvider:
    provider = OllamaProvider(settings)
    if settings.provider_retries > 1:
        return RetryingProvider(provider, attempts=settings.provider_retries, backoff=settings.retry_backoff)
    return provider
