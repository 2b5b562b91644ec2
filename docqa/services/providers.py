"""
Model Providers
One adapter per embedding/chat backend behind a common interface.
"""
import abc
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

import httpx
import structlog
from openai import APIConnectionError, APIStatusError, AsyncOpenAI, RateLimitError
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)
from tenacity.wait import wait_base

from docqa.config import ProviderName, Settings, get_settings
from docqa.exceptions import (
    ConfigurationError,
    ProviderError,
    ProviderRateLimitError,
    ProviderUnavailableError,
)

logger = structlog.get_logger()

RATE_LIMIT_MARKERS = (
    "quota exceeded",
    "rate limit",
    "too many requests",
    "resource_exhausted",
    "insufficient_quota",
)


def is_rate_limit_message(text: str) -> bool:
    """Check an error body for quota/rate-limit wording."""
    lowered = (text or "").lower()
    return any(marker in lowered for marker in RATE_LIMIT_MARKERS)


class ModelProvider(abc.ABC):
    """Converts text into vectors and prompts into completions."""

    name: str = "provider"

    def __init__(self, settings: Settings, http_client: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        self._http = http_client

    @property
    def http(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self.settings.request_timeout)
        return self._http

    @abc.abstractmethod
    async def embed(self, text: str) -> List[float]:
        """Return the embedding vector for ``text``."""

    @abc.abstractmethod
    async def generate(self, prompt: str, system_prompt: Optional[str] = None) -> str:
        """Return the model's completion for ``prompt``."""

    async def aclose(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    async def _post_json(
        self,
        url: str,
        payload: Dict[str, Any],
        headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """POST a JSON payload and map transport/status failures onto provider errors."""
        try:
            response = await self.http.post(url, json=payload, headers=headers)
        except httpx.TransportError as exc:
            logger.error("Provider unreachable", provider=self.name, url=url, error=str(exc))
            raise ProviderUnavailableError(self.name) from exc

        if response.status_code == 429 or (
            response.status_code >= 400 and is_rate_limit_message(response.text)
        ):
            logger.warning("Provider rate limit hit", provider=self.name, status=response.status_code)
            raise ProviderRateLimitError(self.name, details={"status": response.status_code})

        if response.status_code >= 400:
            logger.error(
                "Provider returned error status",
                provider=self.name,
                status=response.status_code,
                body=response.text[:300],
            )
            raise ProviderError(self.name, details={"status": response.status_code})

        try:
            return response.json()
        except ValueError as exc:
            raise ProviderError(self.name, f"{self.name} returned a non-JSON response") from exc

    def _require_vector(self, values: Any) -> List[float]:
        if not isinstance(values, list) or not values:
            raise ProviderError(self.name, f"Invalid embedding response from {self.name}")
        logger.debug("Generated embedding", provider=self.name, dimension=len(values))
        return values


class OllamaProvider(ModelProvider):
    """Local Ollama server via its native REST API."""

    name = "Ollama"

    def __init__(self, settings: Settings, http_client: Optional[httpx.AsyncClient] = None):
        super().__init__(settings, http_client)
        self.host = settings.ollama_host.rstrip("/")

    async def embed(self, text: str) -> List[float]:
        data = await self._post_json(
            f"{self.host}/api/embeddings",
            {"model": self.settings.ollama_embedding_model, "prompt": text},
        )
        return self._require_vector(data.get("embedding"))

    async def generate(self, prompt: str, system_prompt: Optional[str] = None) -> str:
        payload: Dict[str, Any] = {
            "model": self.settings.ollama_chat_model,
            "prompt": prompt,
            "stream": False,
            "options": {"temperature": self.settings.chat_temperature},
        }
        if system_prompt:
            payload["system"] = system_prompt
        data = await self._post_json(f"{self.host}/api/generate", payload)
        return data.get("response") or ""


class GoogleProvider(ModelProvider):
    """Google Gemini, the default hosted provider. Embeddings retry on rate limits."""

    name = "Google AI"
    MAX_ATTEMPTS = 3

    def __init__(
        self,
        settings: Settings,
        http_client: Optional[httpx.AsyncClient] = None,
        retry_wait: Optional[wait_base] = None,
    ):
        super().__init__(settings, http_client)
        self.base_url = settings.google_api_base.rstrip("/")
        # 1s, 2s, 4s ... plus up to 0.5s of jitter
        self.retry_wait = retry_wait or wait_exponential_jitter(initial=1, exp_base=2, jitter=0.5)

    @property
    def _headers(self) -> Dict[str, str]:
        return {"x-goog-api-key": self.settings.google_api_key}

    async def embed(self, text: str) -> List[float]:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.MAX_ATTEMPTS),
            wait=self.retry_wait,
            retry=retry_if_exception_type(ProviderRateLimitError),
            before_sleep=self._log_retry,
            reraise=True,
        ):
            with attempt:
                return await self._embed_once(text)
        raise ProviderRateLimitError(self.name)  # pragma: no cover

    async def _embed_once(self, text: str) -> List[float]:
        model = self.settings.google_embedding_model
        data = await self._post_json(
            f"{self.base_url}/models/{model}:embedContent",
            {"model": f"models/{model}", "content": {"parts": [{"text": text}]}},
            headers=self._headers,
        )
        return self._require_vector((data.get("embedding") or {}).get("values"))

    async def generate(self, prompt: str, system_prompt: Optional[str] = None) -> str:
        payload: Dict[str, Any] = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": self.settings.chat_temperature,
                "maxOutputTokens": self.settings.chat_max_tokens,
            },
        }
        if system_prompt:
            payload["systemInstruction"] = {"parts": [{"text": system_prompt}]}

        data = await self._post_json(
            f"{self.base_url}/models/{self.settings.google_chat_model}:generateContent",
            payload,
            headers=self._headers,
        )
        candidates = data.get("candidates") or []
        if not candidates:
            raise ProviderError(self.name, "Google AI returned no candidates")
        parts = (candidates[0].get("content") or {}).get("parts") or []
        return "".join(part.get("text", "") for part in parts)

    def _log_retry(self, retry_state: RetryCallState) -> None:
        logger.warning(
            "Rate limit hit, retrying embedding",
            provider=self.name,
            attempt=retry_state.attempt_number,
            max_attempts=self.MAX_ATTEMPTS,
            wait_seconds=round(retry_state.next_action.sleep, 2) if retry_state.next_action else None,
        )


@contextmanager
def _openai_errors(provider: str) -> Iterator[None]:
    """Translate OpenAI SDK exceptions into provider errors."""
    try:
        yield
    except RateLimitError as exc:
        raise ProviderRateLimitError(provider) from exc
    except APIConnectionError as exc:
        logger.error("Provider unreachable", provider=provider, error=str(exc))
        raise ProviderUnavailableError(provider) from exc
    except APIStatusError as exc:
        logger.error("Provider returned error status", provider=provider, status=exc.status_code)
        raise ProviderError(provider, details={"status": exc.status_code}) from exc


class OpenAICompatibleProvider(ModelProvider):
    """Any backend speaking the OpenAI embeddings/chat-completions API."""

    def __init__(
        self,
        settings: Settings,
        *,
        api_key: str,
        base_url: Optional[str],
        embedding_model: str,
        chat_model: str,
    ):
        super().__init__(settings)
        self.embedding_model = embedding_model
        self.chat_model = chat_model
        self.client = AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            timeout=settings.request_timeout,
            max_retries=0,
        )

    async def embed(self, text: str) -> List[float]:
        with _openai_errors(self.name):
            response = await self.client.embeddings.create(
                model=self.embedding_model,
                input=text,
                encoding_format="float",
            )
        if not response.data:
            raise ProviderError(self.name, f"Invalid embedding response from {self.name}")
        return self._require_vector(list(response.data[0].embedding))

    async def generate(self, prompt: str, system_prompt: Optional[str] = None) -> str:
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        with _openai_errors(self.name):
            response = await self.client.chat.completions.create(
                model=self.chat_model,
                messages=messages,
                temperature=self.settings.chat_temperature,
                max_tokens=self.settings.chat_max_tokens,
            )
        if not response.choices:
            raise ProviderError(self.name, f"Invalid chat response from {self.name}")
        return response.choices[0].message.content or ""

    async def aclose(self) -> None:
        await self.client.close()
        await super().aclose()


class OpenAIProvider(OpenAICompatibleProvider):
    name = "OpenAI"

    def __init__(self, settings: Settings):
        super().__init__(
            settings,
            api_key=settings.openai_api_key,
            base_url=None,
            embedding_model=settings.openai_embedding_model,
            chat_model=settings.openai_chat_model,
        )


class FastChatProvider(OpenAICompatibleProvider):
    name = "FastChat"

    def __init__(self, settings: Settings):
        super().__init__(
            settings,
            api_key="EMPTY",
            base_url=f"{settings.fastchat_host.rstrip('/')}/v1",
            embedding_model=settings.fastchat_embedding_model,
            chat_model=settings.fastchat_chat_model,
        )


class VLLMProvider(OpenAICompatibleProvider):
    name = "vLLM"

    def __init__(self, settings: Settings):
        super().__init__(
            settings,
            api_key="EMPTY",
            base_url=f"{settings.vllm_host.rstrip('/')}/v1",
            embedding_model=settings.vllm_embedding_model,
            chat_model=settings.vllm_chat_model,
        )


class TogetherProvider(OpenAICompatibleProvider):
    name = "Together AI"

    def __init__(self, settings: Settings):
        super().__init__(
            settings,
            api_key=settings.together_api_key,
            base_url=settings.together_base_url,
            embedding_model=settings.together_embedding_model,
            chat_model=settings.together_chat_model,
        )


PROVIDER_CLASSES = {
    ProviderName.OLLAMA: OllamaProvider,
    ProviderName.FASTCHAT: FastChatProvider,
    ProviderName.OPENAI: OpenAIProvider,
    ProviderName.VLLM: VLLMProvider,
    ProviderName.TOGETHER: TogetherProvider,
    ProviderName.GOOGLE: GoogleProvider,
}

# Provider -> (settings attribute, env var) that must be non-empty
_REQUIRED_KEYS = {
    ProviderName.OPENAI: ("openai_api_key", "OPENAI_API_KEY"),
    ProviderName.TOGETHER: ("together_api_key", "TOGETHER_API_KEY"),
    ProviderName.GOOGLE: ("google_api_key", "GOOGLE_API_KEY"),
}


def create_provider(name: ProviderName, settings: Optional[Settings] = None) -> ModelProvider:
    """Build the adapter for ``name``, failing fast on missing credentials."""
    settings = settings or get_settings()
    required = _REQUIRED_KEYS.get(name)
    if required and not getattr(settings, required[0]):
        raise ConfigurationError(
            f"{required[1]} is missing. Set it, or select another provider with MODEL_PROVIDER.",
            details={"provider": name.value},
        )
    return PROVIDER_CLASSES[name](settings)


# Singleton instances
_chat_provider: Optional[ModelProvider] = None
_embedding_provider: Optional[ModelProvider] = None


def get_chat_provider() -> ModelProvider:
    """Get singleton chat provider instance."""
    global _chat_provider
    if _chat_provider is None:
        settings = get_settings()
        _chat_provider = create_provider(settings.resolve_provider(), settings)
        logger.info("Chat provider selected", provider=_chat_provider.name)
    return _chat_provider


def get_embedding_provider() -> ModelProvider:
    """Get singleton embedding provider, shared with chat unless overridden."""
    global _embedding_provider
    if _embedding_provider is None:
        settings = get_settings()
        name = settings.resolve_embedding_provider()
        if name == settings.resolve_provider():
            _embedding_provider = get_chat_provider()
        else:
            _embedding_provider = create_provider(name, settings)
            logger.info("Embedding provider selected", provider=_embedding_provider.name)
    return _embedding_provider


async def close_providers() -> None:
    """Release HTTP clients held by the provider singletons."""
    global _chat_provider, _embedding_provider
    for provider in {id(p): p for p in (_chat_provider, _embedding_provider) if p}.values():
        await provider.aclose()
    _chat_provider = None
    _embedding_provider = None
