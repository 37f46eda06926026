"""
Schemas module: Pydantic request/response models.

This module provides validated data models for the CleanMod API:
- Request/response models for POST /api/v1/moderate
- The normalized moderation result shared by providers, logs and responses
- Error, metrics and health check response models
"""

from app.schemas.moderation import (
    # Request models
    ModerateRequest,
    # Result and response models
    NormalizedModerationResult,
    ModerateResponse,
    # Error models
    ErrorResponse,
    QuotaExceededResponse,
    # Metrics models
    MetricsResponse,
    # Health models
    ComponentHealth,
    HealthResponse,
)

__all__ = [
    "ModerateRequest",
    "NormalizedModerationResult",
    "ModerateResponse",
    "ErrorResponse",
    "QuotaExceededResponse",
    "MetricsResponse",
    "ComponentHealth",
    "HealthResponse",
]
