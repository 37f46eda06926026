"""
Pydantic Schemas for the Moderation API

This module defines the request and response models for CleanMod:
- ModerateRequest: Input text with an optional model key
- NormalizedModerationResult: Provider-agnostic scoring schema
- ModerateResponse: Decision, scores, and log identifiers
- Error responses, metrics, and health check schemas

All schemas follow Pydantic v2 patterns with field descriptions and
OpenAPI documentation support.
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.policy.decision import Decision


# =============================================================================
# REQUEST MODELS
# =============================================================================


class ModerateRequest(BaseModel):
    """
    Request body for POST /api/v1/moderate.

    Example:
        {
            "text": "You are disgusting",
            "model": "english-basic"
        }
    """

    text: str = Field(
        ...,
        min_length=1,
        description="The text content to moderate",
    )

    model: str | None = Field(
        default=None,
        description="Model key; the tenant's default model is used when omitted or unknown",
    )

    @field_validator("text")
    @classmethod
    def validate_text_not_whitespace(cls, v: str) -> str:
        """Ensure text is not empty or whitespace only."""
        if not v.strip():
            raise ValueError("Text cannot be empty or whitespace only")
        return v

    @field_validator("model")
    @classmethod
    def blank_model_is_none(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        return v.strip()

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {"text": "Great article, thanks for sharing!"},
                {"text": "You are disgusting", "model": "english-basic"},
            ]
        }
    )


# =============================================================================
# RESULT MODELS
# =============================================================================


class NormalizedModerationResult(BaseModel):
    """
    Provider-agnostic moderation result.

    overall_score is the maximum across populated categories (0.0 when none
    are populated); the decision is derived from it.
    """

    overall_score: float = Field(..., ge=0.0, le=1.0)

    is_toxic: bool

    categories: dict[str, float] = Field(default_factory=dict)

    provider: str = Field(..., description="Provider identifier, e.g. 'unitary'")

    provider_model: str = Field(..., description="Backend model identifier")

    decision: Decision

    threshold: float = Field(..., ge=0.0, le=1.0)


class ModerateResponse(BaseModel):
    """
    Successful response from POST /api/v1/moderate.

    Example:
        {
            "id": "3f0c4b1e9d8a4c52a1f1b7f1c0e2d3a4",
            "model": "english-basic",
            "provider": "unitary",
            "providerModel": "unitary/multilingual-toxic-xlm-roberta",
            "decision": "flag",
            "overall_score": 0.91,
            "threshold": 0.8,
            "categories": {"toxicity": 0.91, "insult": 0.88},
            "created_at": "2026-10-16T12:00:00+00:00"
        }
    """

    id: str = Field(..., description="Moderation log identifier")

    model: str = Field(..., description="Model key that was used")

    provider: str

    provider_model: str = Field(..., alias="providerModel")

    decision: Decision

    overall_score: float = Field(..., ge=0.0, le=1.0)

    threshold: float = Field(..., ge=0.0, le=1.0)

    categories: dict[str, float] = Field(default_factory=dict)

    created_at: datetime

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_result(
        cls,
        log_id: str,
        model_key: str,
        result: NormalizedModerationResult,
        created_at: datetime,
    ) -> "ModerateResponse":
        return cls(
            id=log_id,
            model=model_key,
            provider=result.provider,
            provider_model=result.provider_model,
            decision=result.decision,
            overall_score=result.overall_score,
            threshold=result.threshold,
            categories=result.categories,
            created_at=created_at,
        )


# =============================================================================
# ERROR MODELS
# =============================================================================


class ErrorResponse(BaseModel):
    """
    Standard error response format for all API errors.

    Example:
        {
            "error": "Invalid or inactive API key.",
            "code": "unauthorized"
        }
    """

    error: str = Field(..., description="Human-readable error message")

    code: str = Field(..., description="Machine-readable error code")


class QuotaExceededResponse(ErrorResponse):
    """Error body for 429 responses, with diagnostic quota numbers."""

    quota: int = Field(..., ge=0)

    used: int = Field(..., ge=0)


# =============================================================================
# METRICS MODELS
# =============================================================================


class MetricsResponse(BaseModel):
    """
    Response from the /metrics endpoint.

    Aggregates successful moderation requests handled by this process.
    """

    total_requests: int = Field(default=0, ge=0)

    requests_by_decision: dict[str, int] = Field(default_factory=dict)

    requests_by_model: dict[str, int] = Field(default_factory=dict)

    avg_provider_latency_ms: float = Field(default=0.0, ge=0.0)

    avg_overall_score: float = Field(default=0.0, ge=0.0, le=1.0)

    pending_usage_increments: int = Field(
        default=0,
        ge=0,
        description="Usage increments queued after a store failure",
    )


# =============================================================================
# HEALTH MODELS
# =============================================================================


class ComponentHealth(BaseModel):
    """Health status of an individual system component."""

    name: str = Field(..., description="Component name (e.g., 'database', 'registry')")

    status: Literal["healthy", "degraded", "unhealthy"]

    latency_ms: float | None = Field(default=None, ge=0.0)

    message: str | None = None


class HealthResponse(BaseModel):
    """
    Response from the /health endpoint.

    Example:
        {
            "status": "healthy",
            "service": "cleanmod",
            "version": "0.1.0",
            "components": [
                {"name": "database", "status": "healthy", "latency_ms": 1.2},
                {"name": "registry", "status": "healthy"}
            ],
            "uptime_seconds": 3600.5
        }
    """

    status: Literal["healthy", "degraded", "unhealthy"]

    service: str = Field(default="cleanmod")

    version: str

    components: list[ComponentHealth] = Field(default_factory=list)

    uptime_seconds: float | None = Field(default=None, ge=0.0)
