"""
Moderation Request Pipeline

Sequences one moderation request through its stages:

    AUTHENTICATING -> PARSING -> QUOTA_CHECK -> MODERATING
        -> LOGGING -> RECORDING_USAGE -> RESPONDING

Each stage either advances or terminates the request with a Failure. Stages
never raise for expected failure modes; run() returns PipelineSuccess or a
Failure and the HTTP layer maps the failure kind to a status code.

Fatal vs recoverable:
- Provider failures terminate the request and no log row is written.
- A log write failure terminates the request: no success is ever returned
  for an unlogged decision.
- Usage recording failures are retried and queued by the ledger, never
  surfaced, since the decision has already been made and logged.

Store writes are shielded so a client disconnect cannot tear them.
"""

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from pydantic import ValidationError

from app.auth.credentials import CredentialStore, Tenant
from app.config import Settings, get_settings
from app.errors import Failure, FailureKind
from app.metrics.store import MetricsStore, RequestMetric
from app.providers.adapter import ModerationProvider
from app.quota.ledger import QuotaExceeded, QuotaLedger
from app.registry.models import ModelRegistry
from app.schemas.moderation import ModerateRequest, ModerateResponse
from app.store.audit import AuditLogWriter
from app.store.models import utcnow

logger = logging.getLogger(__name__)


MISSING_KEY_MESSAGE = "Missing API key. Use Authorization: Bearer <KEY> or x-api-key."
INVALID_KEY_MESSAGE = "Invalid or inactive API key."


class PipelineStage(str, Enum):
    AUTHENTICATING = "authenticating"
    PARSING = "parsing"
    QUOTA_CHECK = "quota_check"
    MODERATING = "moderating"
    LOGGING = "logging"
    RECORDING_USAGE = "recording_usage"
    RESPONDING = "responding"


@dataclass(frozen=True)
class PipelineSuccess:
    response: ModerateResponse


def _validation_message(error: ValidationError) -> str:
    first = error.errors()[0] if error.errors() else None
    if first is None:
        return "Invalid request body"
    if first.get("type") == "json_invalid":
        return "Invalid JSON body"
    location = ".".join(str(part) for part in first.get("loc", ()))
    message = first.get("msg", "invalid value")
    return f"{location}: {message}" if location else message


class ModerationPipeline:
    """
    Orchestrates a moderation request.

    Example:
        pipeline = ModerationPipeline(
            credentials=CredentialStore(db),
            ledger=QuotaLedger(db, settings),
            provider=ModerationProvider(settings=settings),
            audit_log=AuditLogWriter(db),
        )
        outcome = await pipeline.run(raw_secret, request_body)
        match outcome:
            case PipelineSuccess(response=response):
                ...
            case Failure() as failure:
                ...
    """

    def __init__(
        self,
        credentials: CredentialStore,
        ledger: QuotaLedger,
        provider: ModerationProvider,
        audit_log: AuditLogWriter,
        registry: ModelRegistry | None = None,
        settings: Settings | None = None,
        metrics: MetricsStore | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.credentials = credentials
        self.ledger = ledger
        self.provider = provider
        self.audit_log = audit_log
        self.registry = registry or provider.registry
        self.settings = settings or get_settings()
        self.metrics = metrics
        self._clock = clock

    def default_model_for(self, tenant: Tenant) -> str:
        """First model key of the tenant's plan that is registered, else DEFAULT_MODEL."""
        for model_key in tenant.models_allowed:
            if self.registry.get_model(model_key) is not None:
                return model_key
        return self.settings.default_model

    def resolve_model_key(self, tenant: Tenant, requested: str | None) -> str:
        """
        Pick the model key for a request.

        A requested key is used when it is registered and the tenant's plan
        allows it (tenants without a plan may use any registered key).
        Anything else falls back to the tenant's default model.
        """
        if requested and self.registry.get_model(requested) is not None:
            if not tenant.models_allowed or requested in tenant.models_allowed:
                return requested
            logger.info(f"Model '{requested}' not in plan for org {tenant.id}, using default")
        elif requested:
            logger.info(f"Unknown model '{requested}' for org {tenant.id}, using default")
        return self.default_model_for(tenant)

    async def run(self, raw_secret: str | None, body: bytes | str) -> PipelineSuccess | Failure:
        """
        Run one request through every stage.

        Args:
            raw_secret: API key extracted from the request headers, if any
            body: Raw JSON request body

        Returns:
            PipelineSuccess with the response, or the Failure that ended the request
        """
        stage = PipelineStage.AUTHENTICATING
        now = self._clock()

        if not raw_secret:
            return Failure(kind=FailureKind.UNAUTHORIZED, message=MISSING_KEY_MESSAGE)

        resolved = await self.credentials.resolve(raw_secret)
        if resolved is None:
            return Failure(kind=FailureKind.UNAUTHORIZED, message=INVALID_KEY_MESSAGE)

        tenant = resolved.tenant
        await self.credentials.touch_last_used(resolved.api_key_id, now)

        stage = PipelineStage.PARSING
        try:
            request = ModerateRequest.model_validate_json(body)
        except ValidationError as e:
            return Failure(kind=FailureKind.BAD_REQUEST, message=_validation_message(e))

        model_key = self.resolve_model_key(tenant, request.model)

        stage = PipelineStage.QUOTA_CHECK
        try:
            admission = await self.ledger.check_and_admit(tenant, now)
        except Exception as e:
            logger.error(f"Quota check failed for org {tenant.id} at stage {stage.value}: {e}")
            return Failure(kind=FailureKind.PERSISTENCE_ERROR, message="Usage lookup failed", detail=str(e))

        if isinstance(admission, QuotaExceeded):
            return Failure(
                kind=FailureKind.QUOTA_EXCEEDED,
                message="Monthly quota exceeded",
                quota=admission.quota,
                used=admission.used,
            )

        stage = PipelineStage.MODERATING
        outcome = await self.provider.moderate(request.text, model_key)
        if not outcome.success:
            logger.warning(
                f"Moderation failed for org {tenant.id} at stage {stage.value}: "
                f"{outcome.failure.kind.value} ({outcome.failure.detail})"
            )
            return outcome.failure

        result = outcome.result

        stage = PipelineStage.LOGGING
        try:
            record = await asyncio.shield(
                self.audit_log.write(
                    org_id=tenant.id,
                    api_key_id=resolved.api_key_id,
                    model_key=model_key,
                    text=request.text,
                    result=result,
                    raw_response=outcome.raw_response,
                    store_input_preview=tenant.store_input_preview,
                    created_at=now,
                )
            )
        except Exception as e:
            logger.error(f"Failed to write moderation log for org {tenant.id}: {e}")
            return Failure(
                kind=FailureKind.PERSISTENCE_ERROR,
                message="Moderation log write failed",
                detail=str(e),
            )

        stage = PipelineStage.RECORDING_USAGE
        await asyncio.shield(self.ledger.record_usage(tenant, now))

        if self.metrics is not None:
            self.metrics.record(
                RequestMetric(
                    timestamp=time.time(),
                    org_id=tenant.id,
                    model_key=model_key,
                    provider=result.provider,
                    decision=result.decision.value,
                    overall_score=result.overall_score,
                    provider_latency_ms=outcome.latency_ms,
                )
            )

        stage = PipelineStage.RESPONDING
        logger.debug(f"Request for org {tenant.id} reached stage {stage.value}, log {record.id}")

        return PipelineSuccess(
            response=ModerateResponse.from_result(
                log_id=record.id,
                model_key=model_key,
                result=result,
                created_at=record.created_at,
            )
        )
