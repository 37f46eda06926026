"""
Moderation Provider Adapter

Invokes a classification backend for a model key and normalizes its output
into a NormalizedModerationResult.

Moderation fails closed: an authentication failure, any other backend
error, a timeout, or a response without a single usable label/score pair is
returned as a failure. None of them ever becomes an "allow" decision.

Authentication failures are classified separately (HTTP 401/403 or a known
error message) because they indicate a misconfigured backend credential
that an operator has to fix, not a problem with the request.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any

from app.config import Settings, get_settings
from app.errors import Failure, FailureKind
from app.policy.decision import Decision, DecisionPolicy
from app.providers.clients import BackendClients, BackendCredentialMissing
from app.providers.normalize import categorize, extract_label_scores, overall_score
from app.registry.models import ModelConfig, ModelRegistry, get_model_registry
from app.schemas.moderation import NormalizedModerationResult

logger = logging.getLogger(__name__)


AUTH_ERROR_STATUS_CODES = frozenset({401, 403})

AUTH_ERROR_KEYWORDS: tuple[str, ...] = (
    "unauthorized",
    "forbidden",
    "invalid token",
    "authentication",
    "invalid api key",
    "invalid api token",
    "authentication failed",
    "invalid credentials",
)


@dataclass
class ModerationOutcome:
    """
    Result of one provider invocation.

    Exactly one of `result` and `failure` is set.

    Attributes:
        model: Configuration of the model key that was used (None if unknown)
        result: Normalized result on success
        raw_response: Backend output as received (stored in the audit log)
        latency_ms: Backend call duration in milliseconds
        failure: Failure on error
    """

    model: ModelConfig | None
    result: NormalizedModerationResult | None = None
    raw_response: Any = None
    latency_ms: float = 0.0
    failure: Failure | None = None

    @property
    def success(self) -> bool:
        return self.failure is None


def is_auth_error(exc: BaseException) -> bool:
    """
    Whether a backend error is an authentication/authorization failure.

    Checks an HTTP status carried by the exception (status_code, or
    response.status_code for httpx errors), then falls back to a
    case-insensitive keyword match on the message.
    """
    if isinstance(exc, BackendCredentialMissing):
        return True

    status = getattr(exc, "status_code", None)
    if status is None:
        response = getattr(exc, "response", None)
        status = getattr(response, "status_code", None)
    if status in AUTH_ERROR_STATUS_CODES:
        return True

    message = str(exc).lower()
    return any(keyword in message for keyword in AUTH_ERROR_KEYWORDS)


class ModerationProvider:
    """
    Normalizing front for all classification backends.

    Usage:
        provider = ModerationProvider(clients=BackendClients(settings))
        outcome = await provider.moderate("You are disgusting", "english-basic")
        if outcome.success:
            print(outcome.result.decision)
    """

    def __init__(
        self,
        clients: BackendClients | None = None,
        registry: ModelRegistry | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._clients = clients or BackendClients(self._settings)
        self._registry = registry or get_model_registry()

    @property
    def clients(self) -> BackendClients:
        return self._clients

    @property
    def registry(self) -> ModelRegistry:
        return self._registry

    def policy_for(self, model: ModelConfig) -> DecisionPolicy:
        """Flag at the model's threshold, block only when configured."""
        return DecisionPolicy.tiered(
            flag_at=model.default_threshold,
            block_at=self._settings.block_threshold,
        )

    def normalize(self, model: ModelConfig, raw: Any) -> NormalizedModerationResult | None:
        """
        Normalize a raw backend response.

        Returns:
            The normalized result, or None when the response holds no usable
            label/score pair.
        """
        pairs = extract_label_scores(raw)
        if not pairs:
            return None

        categories = categorize(pairs, model.label_rules)
        score = overall_score(categories)
        policy = self.policy_for(model)
        decision = policy.decide(score)

        return NormalizedModerationResult(
            overall_score=score,
            is_toxic=decision is not Decision.ALLOW,
            categories=categories,
            provider=model.provider.value,
            provider_model=model.provider_model,
            decision=decision,
            threshold=policy.flag_threshold,
        )

    async def moderate(self, text: str, model_key: str) -> ModerationOutcome:
        """
        Moderate `text` with the model registered under `model_key`.

        Args:
            text: Input text
            model_key: Registered model key

        Returns:
            ModerationOutcome with either a result or a failure
        """
        model = self._registry.get_model(model_key)
        if model is None:
            # Callers resolve model keys before moderating; reaching this is
            # a programming error, reported as a backend-side failure.
            return ModerationOutcome(
                model=None,
                failure=Failure(
                    kind=FailureKind.PROVIDER_UNAVAILABLE,
                    message="Unknown model key",
                    detail=f"No model registered for key {model_key!r}",
                ),
            )

        start_time = time.perf_counter()

        try:
            backend = self._clients.get(model.provider)
            raw = await asyncio.wait_for(
                backend.classify(model.provider_model, text),
                timeout=self._settings.provider_timeout_seconds,
            )
        except asyncio.TimeoutError:
            latency_ms = (time.perf_counter() - start_time) * 1000
            logger.error(
                f"{model.provider.value} backend timed out after {latency_ms:.0f}ms "
                f"(model={model.provider_model})"
            )
            return ModerationOutcome(
                model=model,
                latency_ms=latency_ms,
                failure=Failure(
                    kind=FailureKind.PROVIDER_UNAVAILABLE,
                    message="Classification backend timed out",
                    detail=f"timeout after {latency_ms:.0f}ms",
                ),
            )
        except Exception as e:
            latency_ms = (time.perf_counter() - start_time) * 1000
            if is_auth_error(e):
                logger.error(
                    f"{model.provider.value} backend rejected our credentials "
                    f"(model={model.provider_model}): {e}. "
                    "Operator action required: check the backend API token."
                )
                kind = FailureKind.PROVIDER_AUTH_MISCONFIGURED
            else:
                logger.error(f"{model.provider.value} backend call failed: {e}")
                kind = FailureKind.PROVIDER_UNAVAILABLE
            return ModerationOutcome(
                model=model,
                latency_ms=latency_ms,
                failure=Failure(kind=kind, message="Classification backend error", detail=str(e)),
            )

        latency_ms = (time.perf_counter() - start_time) * 1000

        result = self.normalize(model, raw)
        if result is None:
            logger.warning(
                f"{model.provider.value} backend returned no label scores "
                f"(model={model.provider_model}): {str(raw)[:200]}"
            )
            return ModerationOutcome(
                model=model,
                raw_response=raw,
                latency_ms=latency_ms,
                failure=Failure(
                    kind=FailureKind.PROVIDER_MALFORMED_RESPONSE,
                    message="Classification backend returned no label scores",
                    detail=str(raw)[:500],
                ),
            )

        logger.info(
            f"{model.provider.value} moderation completed: model={model.provider_model}, "
            f"latency={latency_ms:.0f}ms, overall_score={result.overall_score:.3f}, "
            f"decision={result.decision.value}"
        )

        return ModerationOutcome(
            model=model,
            result=result,
            raw_response=raw,
            latency_ms=latency_ms,
        )
