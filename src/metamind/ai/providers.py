"""
LLM Provider Adapters

Each adapter turns (prompt, expected shape, model, credential) into a parsed
structured value by calling exactly one external API:
- Gemini generateContent (httpx)
- OpenAI chat completions (httpx)
- Anthropic Messages (anthropic SDK)

Adapters never retry and never rotate keys; the orchestrator owns that.
"""

import time
from abc import ABC, abstractmethod
from typing import Any, Optional

import anthropic
import httpx

from .parsing import extract_structured
from .types import ExpectedShape, StructuredValue
from ..config import ProviderConfig
from ..exceptions import (
    ConfigurationError,
    InvalidRequestError,
    EmptyResponseError,
    ProviderConnectionError,
    ProviderHttpError,
    ProviderTimeoutError,
)
from ..logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_TEMPERATURE = 0

# Coaching copy trips the default filters on words like "kill" and "execute"
GEMINI_SAFETY_SETTINGS = [
    {"category": "HARM_CATEGORY_HARASSMENT", "threshold": "BLOCK_NONE"},
    {"category": "HARM_CATEGORY_HATE_SPEECH", "threshold": "BLOCK_NONE"},
    {"category": "HARM_CATEGORY_SEXUALLY_EXPLICIT", "threshold": "BLOCK_NONE"},
    {"category": "HARM_CATEGORY_DANGEROUS_CONTENT", "threshold": "BLOCK_NONE"},
]


class Provider(ABC):
    """
    Uniform call contract over one LLM API.

    Subclasses implement `_generate` and return the raw model text; `call`
    validates input, times the request and parses the payload.
    """

    name: str = "provider"

    def __init__(self, default_model: str, timeout_seconds: float = 30.0):
        self.default_model = default_model
        self.timeout_seconds = timeout_seconds

    async def call(
        self,
        prompt: str,
        expected_shape: ExpectedShape,
        model: Optional[str],
        credential: str
    ) -> StructuredValue:
        """
        Invoke the provider once and parse its answer.

        Raises:
            InvalidRequestError: Empty prompt
            ProviderError: Any provider-side failure (HTTP, empty, malformed, transport)
        """
        if not prompt or not prompt.strip():
            raise InvalidRequestError.empty_prompt()

        model = model or self.default_model
        started = time.perf_counter()
        raw_text = await self._generate(prompt, model, credential)
        elapsed_ms = int((time.perf_counter() - started) * 1000)

        logger.info(
            f"{self.name} OK ({model}) in {elapsed_ms}ms",
            extra={"provider": self.name, "model": model, "elapsed_ms": elapsed_ms}
        )
        return extract_structured(raw_text, expected_shape, provider=self.name)

    @abstractmethod
    async def _generate(self, prompt: str, model: str, credential: str) -> str:
        """Send the prompt and return the model's raw text"""

    async def close(self) -> None:
        """Release network resources"""


class HttpProvider(Provider):
    """Provider talking plain JSON over httpx"""

    def __init__(
        self,
        default_model: str,
        base_url: str,
        timeout_seconds: float = 30.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        super().__init__(default_model, timeout_seconds)
        self.base_url = base_url.rstrip("/")
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout_seconds)
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _post(
        self,
        url: str,
        payload: dict,
        headers: Optional[dict] = None,
        params: Optional[dict] = None
    ) -> dict:
        """POST JSON and return the decoded body, mapping failures to ProviderError"""
        client = await self._get_client()
        try:
            response = await client.post(url, json=payload, headers=headers, params=params)
        except httpx.TimeoutException:
            raise ProviderTimeoutError(self.name, self.timeout_seconds)
        except httpx.HTTPError as e:
            raise ProviderConnectionError(self.name, str(e) or type(e).__name__)

        try:
            data = response.json()
        except ValueError:
            data = None

        if not response.is_success:
            body: Any = response.text
            if isinstance(data, dict):
                body = data.get("error", data)
            logger.warning(
                f"{self.name} returned HTTP {response.status_code}",
                extra={"provider": self.name, "status_code": response.status_code}
            )
            raise ProviderHttpError(self.name, response.status_code, body)

        if not isinstance(data, dict):
            raise EmptyResponseError(self.name)
        return data


class GeminiProvider(HttpProvider):
    """Google Gemini generateContent API"""

    name = "gemini"

    async def _generate(self, prompt: str, model: str, credential: str) -> str:
        payload = {
            "contents": [{"parts": [{"text": prompt}]}],
            "safetySettings": GEMINI_SAFETY_SETTINGS,
        }
        data = await self._post(
            f"{self.base_url}/models/{model}:generateContent",
            payload,
            headers={"Content-Type": "application/json"},
            params={"key": credential},
        )

        try:
            text = data["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError):
            text = None
        if not text or not str(text).strip():
            raise EmptyResponseError(self.name)
        return text


class OpenAIProvider(HttpProvider):
    """OpenAI chat completions API"""

    name = "openai"

    async def _generate(self, prompt: str, model: str, credential: str) -> str:
        payload = {
            "model": model,
            "temperature": DEFAULT_TEMPERATURE,
            "messages": [{"role": "user", "content": prompt}],
        }
        data = await self._post(
            f"{self.base_url}/chat/completions",
            payload,
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {credential}",
            },
        )

        try:
            text = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            text = None
        if not text or not str(text).strip():
            raise EmptyResponseError(self.name)
        return text


class ClaudeProvider(Provider):
    """Anthropic Messages API through the official SDK"""

    name = "claude"

    def __init__(self, default_model: str, timeout_seconds: float = 60.0, max_tokens: int = 1500):
        super().__init__(default_model, timeout_seconds)
        self.max_tokens = max_tokens
        # One SDK client per rotation key
        self._clients: dict[str, anthropic.AsyncAnthropic] = {}

    def _client_for(self, credential: str) -> anthropic.AsyncAnthropic:
        client = self._clients.get(credential)
        if client is None:
            client = anthropic.AsyncAnthropic(
                api_key=credential,
                timeout=self.timeout_seconds,
                max_retries=0,
            )
            self._clients[credential] = client
        return client

    async def _generate(self, prompt: str, model: str, credential: str) -> str:
        client = self._client_for(credential)
        try:
            response = await client.messages.create(
                model=model,
                max_tokens=self.max_tokens,
                temperature=DEFAULT_TEMPERATURE,
                messages=[{"role": "user", "content": prompt}],
            )

        except anthropic.AuthenticationError as e:
            raise ProviderHttpError.authentication_failed(self.name, str(e))

        except anthropic.RateLimitError as e:
            raise ProviderHttpError.rate_limited(self.name, str(e))

        except anthropic.APIStatusError as e:
            if e.status_code == 529:
                raise ProviderHttpError.overloaded(self.name)
            raise ProviderHttpError(self.name, e.status_code, str(e))

        except anthropic.APITimeoutError:
            raise ProviderTimeoutError(self.name, self.timeout_seconds)

        except anthropic.APIConnectionError as e:
            raise ProviderConnectionError(self.name, str(e))

        text = "".join(
            getattr(block, "text", "") for block in (response.content or [])
            if getattr(block, "type", "text") == "text"
        )
        if not text.strip():
            raise EmptyResponseError(self.name)
        return text

    async def close(self) -> None:
        for client in self._clients.values():
            await client.close()
        self._clients.clear()


PROVIDER_CLASSES: dict[str, type[Provider]] = {
    GeminiProvider.name: GeminiProvider,
    OpenAIProvider.name: OpenAIProvider,
    ClaudeProvider.name: ClaudeProvider,
}


def create_provider(config: ProviderConfig) -> Provider:
    """Instantiate the adapter for a configured provider"""
    if config.name == ClaudeProvider.name:
        return ClaudeProvider(config.default_model, timeout_seconds=config.timeout_seconds)
    cls = PROVIDER_CLASSES.get(config.name)
    if cls is None or not issubclass(cls, HttpProvider):
        raise ConfigurationError(f"Unknown provider: {config.name}")
    return cls(config.default_model, config.base_url, timeout_seconds=config.timeout_seconds)
