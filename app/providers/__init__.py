"""
Providers module: classification backends and response normalization.

Key exports:
- ModerationProvider: moderate(text, model_key) -> ModerationOutcome
- ModerationOutcome: Tagged result (normalized result or failure)
- BackendClients: Lazily-created, injectable backend handles
- extract_label_scores / categorize / overall_score: normalization steps
"""

from app.providers.adapter import (
    AUTH_ERROR_KEYWORDS,
    ModerationOutcome,
    ModerationProvider,
    is_auth_error,
)
from app.providers.clients import (
    BackendClients,
    BackendCredentialMissing,
    BackendHTTPError,
    ClassificationBackend,
    HuggingFaceBackend,
    OpenAIModerationBackend,
)
from app.providers.normalize import (
    LabelScore,
    categorize,
    extract_label_scores,
    match_category,
    overall_score,
)

__all__ = [
    "AUTH_ERROR_KEYWORDS",
    "ModerationOutcome",
    "ModerationProvider",
    "is_auth_error",
    "BackendClients",
    "BackendCredentialMissing",
    "BackendHTTPError",
    "ClassificationBackend",
    "HuggingFaceBackend",
    "OpenAIModerationBackend",
    "LabelScore",
    "categorize",
    "extract_label_scores",
    "match_category",
    "overall_score",
]
