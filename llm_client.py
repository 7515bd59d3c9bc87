import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

import httpx
from google import genai
from google.genai import types as genai_types
from openai import AsyncOpenAI

from errors import FailureCause, ProviderFailure, cause_from_status
from log_utils import get_logger, preview
from settings import FEATURE_IDS, ModelSettings

LOGGER = get_logger("llm_client")

# You can override these via environment variables:
#   GEMINI_MODEL=gemini-1.5-flash
#   GEMINI_VERTEX_MODEL=gemini-2.0-flash
#   OPENROUTER_MODEL=google/gemini-2.5-pro-preview
#   LLM_MODEL=gpt-4.1-mini
#   LOCAL_LLM_MODEL=llama3.2:3b-instruct
DEFAULT_GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-1.5-flash")
DEFAULT_GEMINI_VERTEX_MODEL = os.getenv("GEMINI_VERTEX_MODEL", "gemini-2.0-flash")
DEFAULT_OPENROUTER_MODEL = os.getenv("OPENROUTER_MODEL", "google/gemini-2.5-pro-preview")
DEFAULT_OPENAI_MODEL = os.getenv("LLM_MODEL", "gpt-4.1-mini")
DEFAULT_LOCAL_MODEL = os.getenv("LOCAL_LLM_MODEL", "llama3.2:3b-instruct")

OPENROUTER_BASE_URL = os.getenv("OPENROUTER_BASE_URL", "https://openrouter.ai/api/v1")
LOCAL_LLM_URL = os.getenv("LOCAL_LLM_URL", "http://localhost:11434")


@dataclass
class RequestOptions:
    """
    Provider-neutral generation knobs.

    Each provider translates these into its own envelope; the prompt text
    itself is always sent unchanged.
    """

    model: Optional[str] = None
    temperature: float = 0.7
    max_tokens: int = 2048
    top_p: float = 0.95
    json_mode: bool = False


def _status_from_exception(exc: BaseException) -> Optional[int]:
    # openai: .status_code, google-genai: .code, httpx: .response.status_code
    for attr in ("status_code", "code"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(exc, "response", None)
    value = getattr(response, "status_code", None)
    if isinstance(value, int):
        return value
    return None


def failure_from_exception(provider_id: str, exc: BaseException) -> ProviderFailure:
    status = _status_from_exception(exc)
    cause = cause_from_status(status)
    LOGGER.warning(
        "provider_failure",
        provider=provider_id,
        cause=cause.value,
        status=status,
        error=type(exc).__name__,
    )
    return ProviderFailure(cause, provider_id, str(exc))


class ProviderClient(ABC):
    provider_id = ""

    @abstractmethod
    async def complete(self, prompt: str, options: RequestOptions) -> str:
        """Return the completion text or raise ProviderFailure."""


# ===================== GEMINI (google-genai) =====================

def _gemini_text(response: Any) -> str:
    # For text-only responses, .text is the primary field
    text = getattr(response, "text", None)
    if isinstance(text, str) and text:
        return text

    # Otherwise assemble from candidate parts
    parts = []
    for cand in getattr(response, "candidates", None) or []:
        content = getattr(cand, "content", None)
        if not content:
            continue
        for part in getattr(content, "parts", None) or []:
            t = getattr(part, "text", None)
            if isinstance(t, str):
                parts.append(t)
    return "\n".join(parts)


class GeminiProvider(ProviderClient):
    provider_id = "gemini"

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None, client: Any = None) -> None:
        self.api_key = api_key if api_key is not None else (
            os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY")
        )
        self.model = model or DEFAULT_GEMINI_MODEL
        self._client = client

    def _get_client(self) -> Any:
        """
        Lazily create a Google GenAI client.

        A missing key is reported as Unauthorized rather than surfacing the
        SDK's own configuration error.
        """
        if self._client is None:
            if not self.api_key:
                raise ProviderFailure(
                    FailureCause.UNAUTHORIZED,
                    self.provider_id,
                    "GEMINI_API_KEY (or GOOGLE_API_KEY) is not set",
                )
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    def _config(self, options: RequestOptions) -> genai_types.GenerateContentConfig:
        cfg_kwargs: Dict[str, Any] = {
            "temperature": float(options.temperature),
            "top_p": float(options.top_p),
            "top_k": 40,
            "max_output_tokens": int(options.max_tokens),
        }
        if options.json_mode:
            cfg_kwargs["response_mime_type"] = "application/json"
        return genai_types.GenerateContentConfig(**cfg_kwargs)

    async def complete(self, prompt: str, options: RequestOptions) -> str:
        client = self._get_client()
        used_model = options.model or self.model
        try:
            response = await client.aio.models.generate_content(
                model=used_model,
                contents=prompt,
                config=self._config(options),
            )
        except Exception as exc:
            raise failure_from_exception(self.provider_id, exc) from exc

        text = _gemini_text(response)
        if not text:
            raise ProviderFailure(FailureCause.UNKNOWN, self.provider_id, "empty completion")
        return text


class GeminiVertexProvider(GeminiProvider):
    provider_id = "gemini-vertex"

    def __init__(
        self,
        project: Optional[str] = None,
        location: Optional[str] = None,
        model: Optional[str] = None,
        client: Any = None,
    ) -> None:
        super().__init__(api_key="", model=model or DEFAULT_GEMINI_VERTEX_MODEL, client=client)
        self.project = project if project is not None else os.getenv("GOOGLE_CLOUD_PROJECT")
        self.location = location or os.getenv("GOOGLE_CLOUD_LOCATION", "us-central1")

    def _get_client(self) -> Any:
        if self._client is None:
            if not self.project:
                raise ProviderFailure(
                    FailureCause.UNAUTHORIZED,
                    self.provider_id,
                    "GOOGLE_CLOUD_PROJECT is not set",
                )
            self._client = genai.Client(vertexai=True, project=self.project, location=self.location)
        return self._client


# ===================== OPENAI-COMPATIBLE =====================

class OpenAICompatibleProvider(ProviderClient):
    """Chat-completions providers reached through the OpenAI SDK."""

    provider_id = "openai"
    key_env = "OPENAI_API_KEY"
    base_url: Optional[str] = None
    default_model = DEFAULT_OPENAI_MODEL
    supports_json_mode = True

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None, client: Any = None) -> None:
        self.api_key = api_key if api_key is not None else os.getenv(self.key_env)
        self.model = model or self.default_model
        self._client = client

    def _extra_headers(self) -> Dict[str, str]:
        return {}

    def _get_client(self) -> Any:
        if self._client is None:
            if not self.api_key:
                raise ProviderFailure(
                    FailureCause.UNAUTHORIZED,
                    self.provider_id,
                    f"{self.key_env} is not set",
                )
            kwargs: Dict[str, Any] = {"api_key": self.api_key, "max_retries": 0}
            if self.base_url:
                kwargs["base_url"] = self.base_url
            headers = self._extra_headers()
            if headers:
                kwargs["default_headers"] = headers
            self._client = AsyncOpenAI(**kwargs)
        return self._client

    def _payload(self, prompt: str, options: RequestOptions) -> Dict[str, Any]:
        used_model = options.model or self.model
        payload: Dict[str, Any] = {
            "model": used_model,
            "messages": [{"role": "user", "content": prompt}],
        }
        # gpt-5 family only accepts default sampling and max_completion_tokens.
        if used_model.startswith("gpt-5"):
            payload["max_completion_tokens"] = int(options.max_tokens)
        else:
            payload["max_tokens"] = int(options.max_tokens)
            payload["temperature"] = float(options.temperature)
            payload["top_p"] = float(options.top_p)
        if options.json_mode and self.supports_json_mode:
            payload["response_format"] = {"type": "json_object"}
        return payload

    async def complete(self, prompt: str, options: RequestOptions) -> str:
        client = self._get_client()
        try:
            resp = await client.chat.completions.create(**self._payload(prompt, options))
        except Exception as exc:
            raise failure_from_exception(self.provider_id, exc) from exc

        content = resp.choices[0].message.content if resp.choices else None
        if not content:
            raise ProviderFailure(FailureCause.UNKNOWN, self.provider_id, "empty completion")
        return content


class OpenAIProvider(OpenAICompatibleProvider):
    provider_id = "openai"


class OpenRouterProvider(OpenAICompatibleProvider):
    provider_id = "openrouter"
    key_env = "OPENROUTER_API_KEY"
    base_url = OPENROUTER_BASE_URL
    default_model = DEFAULT_OPENROUTER_MODEL
    # OpenRouter does not guarantee response_format across upstream models;
    # the prompt itself asks for JSON.
    supports_json_mode = False

    def _extra_headers(self) -> Dict[str, str]:
        return {
            "HTTP-Referer": os.getenv("OPENROUTER_REFERER", "https://resuprompt.com"),
            "X-Title": os.getenv("OPENROUTER_TITLE", "ResuPrompt ATS Optimizer"),
        }


# ===================== LOCAL (Ollama) =====================

class LocalProvider(ProviderClient):
    provider_id = "local"

    def __init__(
        self,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        timeout_s: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = (base_url or LOCAL_LLM_URL).rstrip("/")
        self.model = model or DEFAULT_LOCAL_MODEL
        # Local models on CPU can be slow; None keeps httpx's default.
        self.timeout_s = timeout_s
        self._transport = transport

    async def complete(self, prompt: str, options: RequestOptions) -> str:
        payload: Dict[str, Any] = {
            "model": options.model or self.model,
            "prompt": prompt,
            "stream": False,
            "options": {
                "temperature": float(options.temperature),
                "top_p": float(options.top_p),
                "num_predict": int(options.max_tokens),
            },
        }
        if options.json_mode:
            payload["format"] = "json"

        client_kwargs: Dict[str, Any] = {"base_url": self.base_url}
        if self.timeout_s is not None:
            client_kwargs["timeout"] = self.timeout_s
        if self._transport is not None:
            client_kwargs["transport"] = self._transport

        try:
            async with httpx.AsyncClient(**client_kwargs) as client:
                resp = await client.post("/api/generate", json=payload)
                resp.raise_for_status()
                data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise failure_from_exception(self.provider_id, exc) from exc

        text = data.get("response") if isinstance(data, dict) else None
        if not isinstance(text, str) or not text:
            raise ProviderFailure(FailureCause.UNKNOWN, self.provider_id, "empty completion")
        return text


# ===================== GATEWAY =====================

def build_default_providers() -> Dict[str, ProviderClient]:
    """One client per provider id; keys and models come from the environment."""
    return {
        "gemini": GeminiProvider(),
        "gemini-vertex": GeminiVertexProvider(),
        "openrouter": OpenRouterProvider(),
        "openai": OpenAIProvider(),
        "local": LocalProvider(),
    }


class ModelGateway:
    """
    Routes a prompt to the provider configured for a logical feature.

    The provider map and the feature settings are both passed in; swapping
    either is just constructing a new gateway or calling update_settings.
    """

    def __init__(self, providers: Mapping[str, ProviderClient], settings: ModelSettings) -> None:
        self._providers = dict(providers)
        self._settings = settings

    @property
    def settings(self) -> ModelSettings:
        return self._settings

    def update_settings(self, settings: ModelSettings) -> None:
        self._settings = settings

    def provider_id_for(self, feature_id: str) -> str:
        if feature_id not in FEATURE_IDS:
            raise ProviderFailure(FailureCause.BAD_REQUEST, "gateway", f"unknown feature: {feature_id}")
        return self._settings.provider_for(feature_id)

    def _provider(self, provider_id: str) -> ProviderClient:
        provider = self._providers.get(provider_id)
        if provider is None:
            raise ProviderFailure(FailureCause.BAD_REQUEST, provider_id, "provider is not configured")
        return provider

    async def request(self, feature_id: str, prompt: str, options: Optional[RequestOptions] = None) -> str:
        provider_id = self.provider_id_for(feature_id)
        return await self.request_with(provider_id, prompt, options, feature_id=feature_id)

    async def request_with(
        self,
        provider_id: str,
        prompt: str,
        options: Optional[RequestOptions] = None,
        feature_id: str = "",
    ) -> str:
        provider = self._provider(provider_id)
        options = options or RequestOptions()
        LOGGER.info(
            "provider_request",
            feature=feature_id,
            provider=provider_id,
            model=options.model or getattr(provider, "model", None),
            prompt_chars=len(prompt),
        )
        text = await provider.complete(prompt, options)
        LOGGER.debug("provider_response", provider=provider_id, chars=len(text), text=preview(text))
        return text
