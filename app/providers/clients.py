"""
Classification backend clients.

Each backend exposes one coroutine, classify(model, text), returning the
backend output in {label, score} pair shape (flat or singly nested), or
raising on transport and authorization errors.

- HuggingFaceBackend: Hugging Face Inference text classification over httpx
- OpenAIModerationBackend: OpenAI moderation endpoint via the async SDK

BackendClients owns one lazily-created backend per provider. It is created
and closed by whoever owns the moderation provider (the application, or a
test), so tests can hand in fake backends without any process-wide state.
"""

import logging
from typing import Any, Protocol

import httpx
from openai import AsyncOpenAI

from app.config import Settings, get_settings
from app.registry.models import ProviderName

logger = logging.getLogger(__name__)


class ClassificationBackend(Protocol):
    async def classify(self, model: str, text: str) -> Any: ...


class BackendCredentialMissing(RuntimeError):
    """The backend has no credential configured."""


class BackendHTTPError(RuntimeError):
    """Non-success HTTP status from a backend."""

    def __init__(self, status_code: int, message: str):
        super().__init__(f"HTTP {status_code}: {message}")
        self.status_code = status_code


class HuggingFaceBackend:
    """
    Hugging Face Inference text classification.

    POSTs {"inputs": text} to {base_url}/models/{model}. The API answers with
    [[{label, score}, ...]] for a single input.
    """

    def __init__(self, settings: Settings):
        self._settings = settings
        self._client: httpx.AsyncClient | None = None

    @property
    def client(self) -> httpx.AsyncClient:
        """
        Get the HTTP client (lazy initialization).

        Raises:
            BackendCredentialMissing: If HF_API_TOKEN is not configured.
        """
        if self._client is None:
            token = self._settings.secret_or_none("hf_api_token")
            if token is None:
                raise BackendCredentialMissing("HF_API_TOKEN is not configured")
            self._client = httpx.AsyncClient(
                base_url=self._settings.hf_inference_base_url.rstrip("/"),
                headers={"Authorization": f"Bearer {token}"},
                timeout=self._settings.provider_timeout_seconds,
            )
            logger.debug("Initialized Hugging Face inference client")
        return self._client

    async def classify(self, model: str, text: str) -> Any:
        response = await self.client.post(f"/models/{model}", json={"inputs": text})

        if response.status_code >= 400:
            raise BackendHTTPError(response.status_code, _error_message(response))

        try:
            return response.json()
        except ValueError:
            # Non-JSON body; normalization treats it as unusable.
            return None

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:500]
    if isinstance(body, dict) and "error" in body:
        return str(body["error"])
    return str(body)[:500]


class OpenAIModerationBackend:
    """
    OpenAI moderation endpoint.

    The category score mapping of the first result is converted to
    [{label, score}, ...] so it normalizes like any other backend.
    """

    def __init__(self, settings: Settings):
        self._settings = settings
        self._client: AsyncOpenAI | None = None

    @property
    def client(self) -> AsyncOpenAI:
        """
        Get the OpenAI client (lazy initialization).

        Raises:
            BackendCredentialMissing: If OPENAI_API_KEY is not configured.
        """
        if self._client is None:
            api_key = self._settings.secret_or_none("openai_api_key")
            if api_key is None:
                raise BackendCredentialMissing("OPENAI_API_KEY is not configured")
            self._client = AsyncOpenAI(
                api_key=api_key,
                timeout=self._settings.provider_timeout_seconds,
                max_retries=0,
            )
            logger.debug("Initialized OpenAI client")
        return self._client

    async def classify(self, model: str, text: str) -> Any:
        response = await self.client.moderations.create(model=model, input=text)

        if not response.results:
            return []

        scores = response.results[0].category_scores.model_dump(by_alias=True)
        return [
            {"label": label, "score": score}
            for label, score in scores.items()
            if score is not None
        ]

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None


class BackendClients:
    """
    Lazily-created classification backends, one per provider.

    Backends are created on first use to avoid initialization errors when
    credentials are not configured for unused providers.

    Usage:
        clients = BackendClients(settings)
        backend = clients.get(ProviderName.UNITARY)

        # tests
        clients = BackendClients(settings, overrides={ProviderName.UNITARY: fake})
    """

    def __init__(
        self,
        settings: Settings | None = None,
        overrides: dict[ProviderName, ClassificationBackend] | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._backends: dict[ProviderName, ClassificationBackend] = dict(overrides or {})

    def get(self, provider: ProviderName) -> ClassificationBackend:
        backend = self._backends.get(provider)
        if backend is None:
            match provider:
                case ProviderName.UNITARY:
                    backend = HuggingFaceBackend(self._settings)
                case ProviderName.OPENAI:
                    backend = OpenAIModerationBackend(self._settings)
                case _:
                    raise ValueError(f"Unknown provider: {provider}")
            self._backends[provider] = backend
        return backend

    def is_configured(self, provider: ProviderName) -> bool:
        """Whether a credential (or an injected backend) exists for `provider`."""
        if provider in self._backends and not isinstance(
            self._backends[provider], (HuggingFaceBackend, OpenAIModerationBackend)
        ):
            return True
        match provider:
            case ProviderName.UNITARY:
                return self._settings.secret_or_none("hf_api_token") is not None
            case ProviderName.OPENAI:
                return self._settings.secret_or_none("openai_api_key") is not None
        return False

    async def aclose(self) -> None:
        for backend in self._backends.values():
            close = getattr(backend, "aclose", None)
            if close is not None:
                await close()
