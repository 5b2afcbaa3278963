"""
Text-generation backends.

Every backend exposes ``generate(messages) -> str`` where ``messages`` is an
ordered list of ``{"role": "system" | "user", "content": str}``. The concrete
class is chosen once, by provider key, from ``BACKENDS``.
"""

import abc

import httpx
from loguru import logger

from ...core.config import Settings
from ...core.errors import ConfigurationError

Messages = list[dict[str, str]]


class GenerationBackend(abc.ABC):
    """Contract that every generation backend implements"""

    name: str = "base"

    def __init__(self, model: str, *, temperature: float = 0.0, max_tokens: int = 2048,
                 timeout_seconds: float = 60.0):
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout_seconds = timeout_seconds

    @abc.abstractmethod
    async def generate(self, messages: Messages) -> str:
        """Send ``messages`` and return the completion text; raise on transport or HTTP errors"""

    @classmethod
    @abc.abstractmethod
    def from_settings(cls, settings: Settings) -> "GenerationBackend":
        ...


class OllamaBackend(GenerationBackend):
    """Local Ollama server, chat endpoint with JSON output mode"""

    name = "ollama"

    def __init__(self, base_url: str = "http://localhost:11434", model: str = "llama3.2:3b", **kwargs):
        super().__init__(model, **kwargs)
        self.base_url = base_url.rstrip("/")

    @classmethod
    def from_settings(cls, settings: Settings) -> "OllamaBackend":
        return cls(
            base_url=settings.ollama_url,
            model=settings.llm_model or settings.ollama_model,
            temperature=settings.llm_temperature,
            max_tokens=settings.llm_max_tokens,
            timeout_seconds=settings.llm_timeout_seconds,
        )

    async def generate(self, messages: Messages) -> str:
        async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
            resp = await client.post(
                f"{self.base_url}/api/chat",
                json={
                    "model": self.model,
                    "messages": messages,
                    "stream": False,
                    "format": "json",
                    "options": {
                        "temperature": self.temperature,
                        "num_predict": self.max_tokens,
                    },
                },
            )
            resp.raise_for_status()
            data = resp.json()
        return data.get("message", {}).get("content", "")


class OpenAICompatibleBackend(GenerationBackend):
    """Hosted chat-completions API (``POST {base_url}/chat/completions``) with bearer auth"""

    name = "openai"
    default_base_url = "https://api.openai.com/v1"
    default_model = "gpt-4o-mini"
    json_mode = True

    def __init__(self, api_key: str | None, model: str | None = None, base_url: str | None = None,
                 **kwargs):
        if not api_key:
            raise ConfigurationError(f"LLM_PROVIDER={self.name} requires LLM_API_KEY")
        super().__init__(model or self.default_model, **kwargs)
        self.api_key = api_key
        self.base_url = (base_url or self.default_base_url).rstrip("/")

    @classmethod
    def from_settings(cls, settings: Settings) -> "OpenAICompatibleBackend":
        return cls(
            api_key=settings.llm_api_key,
            model=settings.llm_model,
            base_url=settings.llm_base_url,
            temperature=settings.llm_temperature,
            max_tokens=settings.llm_max_tokens,
            timeout_seconds=settings.llm_timeout_seconds,
        )

    def headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def payload(self, messages: Messages) -> dict:
        body = {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        if self.json_mode:
            body["response_format"] = {"type": "json_object"}
        return body

    async def generate(self, messages: Messages) -> str:
        async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
            resp = await client.post(
                f"{self.base_url}/chat/completions",
                headers=self.headers(),
                json=self.payload(messages),
            )
            resp.raise_for_status()
            data = resp.json()

        usage = data.get("usage", {})
        logger.debug(
            "Completion received",
            provider=self.name,
            model=self.model,
            prompt_tokens=usage.get("prompt_tokens", 0),
            completion_tokens=usage.get("completion_tokens", 0),
        )
        choices = data.get("choices") or [{}]
        return choices[0].get("message", {}).get("content") or ""


class GroqBackend(OpenAICompatibleBackend):
    name = "groq"
    default_base_url = "https://api.groq.com/openai/v1"
    default_model = "llama-3.2-3b-preview"


class TogetherBackend(OpenAICompatibleBackend):
    name = "together"
    default_base_url = "https://api.together.xyz/v1"
    default_model = "meta-llama/Llama-3.2-3B-Instruct-Turbo"
    json_mode = False


class OpenRouterBackend(OpenAICompatibleBackend):
    name = "openrouter"
    default_base_url = "https://openrouter.ai/api/v1"
    default_model = "meta-llama/llama-3.2-3b-instruct:free"
    json_mode = False
    referer = "http://localhost"

    def headers(self) -> dict[str, str]:
        headers = super().headers()
        headers["HTTP-Referer"] = self.referer
        headers["X-Title"] = "ledgerscan"
        return headers


BACKENDS: dict[str, type[GenerationBackend]] = {
    "ollama": OllamaBackend,
    "groq": GroqBackend,
    "together": TogetherBackend,
    "openrouter": OpenRouterBackend,
    "openai": OpenAICompatibleBackend,
}

DISABLED_PROVIDERS = {"none", "disabled", "off"}


def build_backend(settings: Settings) -> GenerationBackend | None:
    """
    Construct the backend named by LLM_PROVIDER.

    Returns:
        The backend, or None when generation is disabled

    Raises:
        ConfigurationError: if the provider needs credentials that are not set
    """
    provider = (settings.llm_provider or "ollama").strip().lower()
    if provider in DISABLED_PROVIDERS:
        logger.info("Generation backend disabled, deterministic extraction only")
        return None
    if provider not in BACKENDS:
        logger.warning("Unknown LLM provider, using ollama", provider=provider)
        provider = "ollama"

    backend = BACKENDS[provider].from_settings(settings)
    logger.info("Generation backend configured", provider=backend.name, model=backend.model)
    return backend
